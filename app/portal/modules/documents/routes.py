from __future__ import annotations

import re
from datetime import date

from flask import Blueprint, Response, current_app

from app.portal.db import db_session
from app.portal.http import get_json_body, ok
from app.portal.modules.documents import pdf, service
from app.portal.rbac import authenticated_user, require_active_membership, require_auth
from app.portal.validation import Field, require_valid

bp = Blueprint("documents", __name__)

GENERATE_RULES = (
    Field("type", max_len=32),
    Field("paymentData", kind="dict", required=False),
    Field("courseData", kind="dict", required=False),
)

CERTIFICATE_RULES = (
    Field("courseType", max_len=100),
    Field("participantName", max_len=200),
    Field("participantEmail", kind="email"),
    Field("duration", required=False, max_len=50),
    Field("completionDate", kind="date", required=False),
)


def _pdf_response(raw: bytes, filename: str) -> Response:
    resp = Response(raw, mimetype="application/pdf")
    resp.headers["Content-Disposition"] = f'attachment; filename="{filename}"'
    resp.headers["Content-Length"] = str(len(raw))
    return resp


@bp.get("/user/documents")
@require_auth
def documents_list():
    docs = service.list_documents(db_session(), authenticated_user())
    return ok({"documents": [d.to_dict() for d in docs], "count": len(docs)})


@bp.get("/user/documents/<int:document_id>")
@require_auth
def document_get(document_id: int):
    doc = service.get_owned_document(db_session(), authenticated_user(), document_id)
    return ok({"document": doc.to_dict(include_file=True)})


@bp.get("/user/documents/<int:document_id>/download")
@require_auth
def document_download(document_id: int):
    doc = service.get_owned_document(db_session(), authenticated_user(), document_id)
    return _pdf_response(pdf.RenderedPdf(doc.file_data, doc.file_size).raw, doc.filename)


@bp.post("/user/documents/generate")
@require_auth
def document_generate():
    user = authenticated_user()
    data = require_valid(get_json_body(), GENERATE_RULES)
    s = db_session()
    doc = service.generate_for_user(
        s, user, data["type"], payment_data=data.get("paymentData"), course_data=data.get("courseData")
    )
    s.commit()
    current_app.logger.info("Document %s (%s) generated for user_id=%s", doc.id, doc.doc_type, user.id)
    return ok({"document": doc.to_dict()}, message="Documento generado correctamente", status=201)


@bp.delete("/user/documents/<int:document_id>")
@require_auth
def document_delete(document_id: int):
    s = db_session()
    service.delete_document(s, authenticated_user(), document_id)
    s.commit()
    return ok(message="Documento eliminado correctamente")


@bp.post("/certificates/generate")
@require_active_membership
def certificate_generate():
    user = authenticated_user()
    data = require_valid(get_json_body(), CERTIFICATE_RULES)
    completion = data.get("completionDate") or date.today()
    rendered = pdf.generate_course_certificate(
        user,
        {
            "participantName": data["participantName"],
            "courseName": data["courseType"],
            "duration": data.get("duration") or "20 horas",
            "completionDate": completion,
        },
    )
    slug = re.sub(r"[^a-z0-9]+", "-", data["participantName"].lower()).strip("-")
    course_slug = re.sub(r"[^a-z0-9]+", "-", data["courseType"].lower()).strip("-")
    current_app.logger.info("Course certificate %s issued for user_id=%s", data["courseType"], user.id)
    return _pdf_response(rendered.raw, f"certificado-{course_slug}-{slug}.pdf")


@bp.get("/certificates/check-eligibility/<course_type>")
@require_auth
def certificate_eligibility(course_type: str):
    user = authenticated_user()
    enrolled = any(e.course_id == course_type and e.status != "cancelled" for e in user.enrollments)
    return ok(
        {
            "eligible": user.is_membership_active() and enrolled,
            "courseType": course_type,
            "user": {
                "name": user.name,
                "email": user.email,
                "membershipStatus": user.membership_status,
                "role": user.role,
            },
        }
    )
