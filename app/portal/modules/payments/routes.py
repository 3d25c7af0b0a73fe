from __future__ import annotations

import logging

from flask import Blueprint, request
from flask_limiter.util import get_remote_address
from sqlalchemy.exc import SQLAlchemyError

from app.portal.audit import record_event
from app.portal.auth import issue_session_tokens
from app.portal.config import get_settings
from app.portal.db import db_session
from app.portal.http import BadRequest, Conflict, error, get_json_body, ok
from app.portal.models import MEMBERSHIP_ACTIVE
from app.portal.modules.documents.pdf import PdfGenerationError
from app.portal.modules.documents.service import create_affiliation_certificate
from app.portal.modules.members import service as members
from app.portal.modules.payments import service
from app.portal.modules.payments.models import UnmatchedPayment
from app.portal.modules.payments.stripe_client import InvalidWebhook
from app.portal.ratelimit import limiter
from app.portal.rbac import authenticated_user, require_admin
from app.portal.validation import Field, require_valid

bp = Blueprint("payments", __name__)
logger = logging.getLogger(__name__)


@bp.post("/stripe/create-affiliation-session")
def create_affiliation_session():
    data = require_valid(get_json_body(), service.AFFILIATION_SESSION_RULES)
    checkout = service.start_affiliation_checkout(service.get_gateway(), get_settings(), data)
    return ok({"sessionId": checkout.id, "url": checkout.url})


@bp.post("/stripe/create-course-session")
def create_course_session():
    data = require_valid(get_json_body(), service.COURSE_SESSION_RULES)
    checkout = service.start_course_checkout(service.get_gateway(), get_settings(), data)
    return ok({"sessionId": checkout.id, "url": checkout.url})


@bp.get("/stripe/session/<session_id>")
def checkout_session_status(session_id: str):
    checkout = service.lookup_session(service.get_gateway(), session_id)
    return ok(
        {
            "id": checkout.id,
            "status": checkout.status,
            "paymentStatus": checkout.payment_status,
            "amountTotal": checkout.amount_total,
            "currency": checkout.currency,
            "customerEmail": checkout.customer_email,
            "metadata": checkout.metadata or {},
        }
    )


@bp.post("/webhook")
@limiter.exempt
def stripe_webhook():
    """
    Raw-body endpoint for Stripe. Once the signature checks out the answer is always
    200, so Stripe never redelivers because of our own processing errors.
    """
    try:
        event = service.get_gateway().parse_webhook(request.get_data(cache=False), request.headers.get("Stripe-Signature"))
    except InvalidWebhook as e:
        logger.warning("Rejected webhook (ip=%s): %s", get_remote_address(), e)
        return error(f"Webhook Error: {e}", 400)

    event_type = event.get("type")
    obj = (event.get("data") or {}).get("object") or {}
    logger.info("Stripe webhook received: %s (%s)", event_type, event.get("id"))

    if event_type == "checkout.session.completed":
        s = db_session()
        try:
            result = service.reconcile_checkout_session(s, obj)
            s.commit()
            logger.info("Checkout %s reconciliation: %s", obj.get("id"), result.outcome)
        except Exception:
            s.rollback()
            logger.exception("Webhook reconciliation failed for session %s", obj.get("id"))
    elif event_type == "checkout.session.expired":
        logger.info("Checkout session expired: %s", obj.get("id"))
    elif event_type == "payment_intent.payment_failed":
        reason = (obj.get("last_payment_error") or {}).get("message")
        logger.warning("Payment failed: %s (%s)", obj.get("id"), reason)
    else:
        logger.info("Unhandled Stripe event type: %s", event_type)

    return {"received": True}, 200


@bp.post("/complete-registration")
def complete_registration():
    """Create the paid affiliate's account once Stripe confirms the checkout."""
    data = require_valid(get_json_body(), service.COMPLETE_REGISTRATION_RULES)
    s = db_session()
    if members.find_user_by_email(s, data["email"]) is not None:
        raise Conflict("Este email ya está registrado. Por favor inicia sesión.")

    checkout = service.lookup_session(service.get_gateway(), data["sessionId"])
    if not checkout.is_paid:
        raise BadRequest("El pago de esta sesión no está completado")
    if checkout.customer_email and checkout.customer_email.lower() != data["email"]:
        raise BadRequest("El email no coincide con el del pago")

    user = members.register_user(
        s, data, ip=get_remote_address(), user_agent=request.headers.get("User-Agent"), membership_status=MEMBERSHIP_ACTIVE
    )
    user.renew_membership(12)
    pending = s.query(UnmatchedPayment).filter(
        UnmatchedPayment.stripe_session_id == checkout.id, UnmatchedPayment.resolved_at.is_(None)
    ).one_or_none()
    if pending is not None:
        service.resolve_unmatched(s, pending.id, user.id, user)
    tokens = issue_session_tokens(s, user)
    record_event(
        s, actor=user, action="user.complete_registration", entity_type="User", entity_id=user.id,
        metadata={"session_id": checkout.id},
    )
    s.commit()
    logger.info("Registration completed for user %s (session %s)", user.id, checkout.id)

    try:
        create_affiliation_certificate(s, user)
        s.commit()
    except (PdfGenerationError, SQLAlchemyError):
        s.rollback()
        logger.exception("Affiliation certificate generation failed for user %s", user.id)

    return ok(
        {"user": user.to_public_dict(), **tokens},
        message="¡Registro completado! Ya puedes iniciar sesión",
        status=201,
    )


@bp.get("/admin/unmatched-payments")
@require_admin
def unmatched_list():
    include_resolved = (request.args.get("all") or "").lower() == "true"
    rows = service.list_unmatched(db_session(), include_resolved=include_resolved)
    return ok({"payments": [r.to_dict() for r in rows], "count": len(rows)})


@bp.post("/admin/unmatched-payments/<int:unmatched_id>/resolve")
@require_admin
def unmatched_resolve(unmatched_id: int):
    data = require_valid(get_json_body(), (Field("userId", kind="int"),))
    s = db_session()
    unmatched, payment = service.resolve_unmatched(s, unmatched_id, data["userId"], authenticated_user())
    s.commit()
    return ok({"payment": payment.to_dict(), "unmatched": unmatched.to_dict()}, message="Pago asignado al usuario")
