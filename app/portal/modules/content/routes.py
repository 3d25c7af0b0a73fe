from __future__ import annotations

import logging
import uuid

from flask import Blueprint, request
from flask_limiter.util import get_remote_address

from app.portal import mailer
from app.portal.audit import record_event
from app.portal.db import db_session
from app.portal.http import BadRequest, NotFound, get_json_body, ok
from app.portal.modules.captcha.service import check_optional_captcha
from app.portal.modules.content import catalog
from app.portal.rbac import current_user, require_auth
from app.portal.validation import CONTACT_RULES, Field, require_valid

bp = Blueprint("content", __name__)
logger = logging.getLogger(__name__)

PREINSCRIPTION_USER_RULES = (
    Field("name", min_len=2, max_len=100, aliases=("nombre",)),
    Field("email", kind="email"),
    Field("phone", kind="phone", required=False, aliases=("telefono",)),
)

AFFILIATION_REQUEST_RULES = (
    Field("name", max_len=100, message="Nombre y email son requeridos"),
    Field("email", kind="email", message="Nombre y email son requeridos"),
    Field("phone", kind="phone", required=False),
    Field("department", required=False, max_len=100),
    Field("comments", required=False, max_len=2000),
)


@bp.get("/courses")
def courses():
    status = request.args.get("status")
    if status and status not in catalog.COURSE_LISTED_STATUSES:
        raise BadRequest("Estado de curso no válido")
    items = catalog.list_courses(status)
    return ok({"courses": items, "total": len(items)})


@bp.post("/courses/preinscription")
def course_preinscription():
    payload = get_json_body()
    data = require_valid(
        payload,
        (Field("courseId", max_len=64), Field("userData", kind="dict"), Field("comments", required=False, max_len=1000)),
    )
    applicant = require_valid(data["userData"], PREINSCRIPTION_USER_RULES)
    course = catalog.find_course(data["courseId"])
    if course is None:
        raise NotFound("Curso no encontrado")

    preinscription_id = uuid.uuid4().hex
    s = db_session()
    record_event(
        s, actor=current_user(), action="course.preinscription", entity_type="Course", entity_id=course["id"],
        metadata={"preinscription_id": preinscription_id, "email": applicant["email"]},
    )
    s.commit()
    logger.info("Preinscription %s for course %s", preinscription_id, course["id"])
    return ok({"preinscriptionId": preinscription_id}, message="Preinscripción enviada correctamente", status=201)


@bp.get("/documents")
@require_auth
def union_documents():
    return ok({"documents": list(catalog.UNION_DOCUMENTS), "total": len(catalog.UNION_DOCUMENTS)})


@bp.post("/contact/submit")
def contact_submit():
    payload = get_json_body()
    data = require_valid(payload, CONTACT_RULES + (Field("phone", kind="phone", required=False),))
    check_optional_captcha(payload)
    contact_id = uuid.uuid4().hex
    s = db_session()
    record_event(
        s, actor=current_user(), action="contact.submit", entity_type="Contact", entity_id=contact_id,
        metadata={"email": data["email"], "subject": data.get("subject"), "ip": get_remote_address()},
    )
    s.commit()
    sent, detail = mailer.send_contact_notification(data)
    if not sent:
        logger.warning("Contact %s admin notification failed: %s", contact_id, detail)
    return ok(
        {"contactId": contact_id},
        message="Mensaje enviado correctamente. Nos pondremos en contacto contigo pronto.",
        status=201,
    )


@bp.post("/affiliations/submit")
def affiliation_submit():
    data = require_valid(get_json_body(), AFFILIATION_REQUEST_RULES)
    affiliation_id = uuid.uuid4().hex
    s = db_session()
    record_event(
        s, actor=current_user(), action="affiliation.request", entity_type="AffiliationRequest",
        entity_id=affiliation_id, metadata={"email": data["email"], "department": data.get("department")},
    )
    s.commit()
    sent, detail = mailer.send_affiliation_notification(data)
    if not sent:
        logger.warning("Affiliation request %s admin notification failed: %s", affiliation_id, detail)
    return ok(
        {"affiliationId": affiliation_id},
        message="Solicitud de afiliación recibida. Nos contactaremos pronto con los siguientes pasos.",
        status=201,
    )
