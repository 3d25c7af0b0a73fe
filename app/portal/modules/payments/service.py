from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from flask import current_app
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from app.portal.audit import record_event
from app.portal.http import BadRequest, Conflict, NotFound, UpstreamError
from app.portal.models import PaymentRecord, User
from app.portal.modules.documents import service as documents
from app.portal.modules.documents.pdf import PdfGenerationError
from app.portal.modules.documents.models import Document
from app.portal.modules.members.service import find_user_by_email
from app.portal.modules.payments.models import UnmatchedPayment
from app.portal.modules.payments.stripe_client import CheckoutSession, StripeGateway, StripeGatewayError
from app.portal.validation import Field

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.portal.config import Settings

logger = logging.getLogger(__name__)

AFFILIATION_DESCRIPTION = "Afiliación anual UGT-CLM-UGR"

AFFILIATION_SESSION_RULES = (
    Field("name", min_len=2, max_len=100, aliases=("nombre",)),
    Field("email", kind="email"),
    Field("phone", kind="phone", required=False, aliases=("telefono",)),
    Field("department", required=False, max_len=100, aliases=("departamento",)),
)

COURSE_SESSION_RULES = (
    *AFFILIATION_SESSION_RULES,
    Field("courseType", max_len=100),
    Field("isMember", kind="bool"),
)

COMPLETE_REGISTRATION_RULES = (
    Field("email", kind="email"),
    Field("password", min_len=6, max_len=128),
    Field("sessionId", max_len=255),
    Field("name", min_len=2, max_len=100, aliases=("nombre",), message="El nombre es obligatorio"),
    Field("phone", kind="phone", required=False, aliases=("telefono",)),
    Field("department", required=False, max_len=100, aliases=("departamento",)),
)


@dataclass(frozen=True)
class Reconciliation:
    outcome: str  # recorded | duplicate | unmatched | ignored
    payment_id: int | None = None
    document_id: int | None = None
    unmatched_id: int | None = None


def get_gateway() -> StripeGateway:
    return current_app.extensions["stripe_gateway"]


def payment_description(metadata: dict[str, Any] | None) -> str:
    metadata = metadata or {}
    if metadata.get("type") == "affiliation":
        return AFFILIATION_DESCRIPTION
    return f"Curso de {metadata.get('courseType') or 'Formación'}"


def _metadata(data: dict[str, Any], kind: str) -> dict[str, str]:
    meta = {
        "type": kind,
        "name": data["name"],
        "email": data["email"],
        "timestamp": datetime.utcnow().isoformat(),
    }
    for key in ("phone", "department"):
        if data.get(key):
            meta[key] = data[key]
    return meta


def start_affiliation_checkout(gateway: StripeGateway, settings: "Settings", data: dict[str, Any]) -> CheckoutSession:
    try:
        session = gateway.create_checkout_session(
            email=data["email"],
            product_name="Afiliación Anual UGT-CLM-UGR",
            product_description="Cuota anual de afiliación a la Sección Sindical UGT-CLM-UGR Granada",
            unit_amount=settings.affiliation_price_cents,
            metadata=_metadata(data, "affiliation"),
        )
    except StripeGatewayError as e:
        logger.error("Affiliation checkout failed for %s: %s", data["email"], e)
        raise UpstreamError("Error al crear la sesión de pago") from e
    logger.info("Affiliation checkout session %s created for %s", session.id, data["email"])
    return session


def start_course_checkout(gateway: StripeGateway, settings: "Settings", data: dict[str, Any]) -> CheckoutSession:
    is_member = bool(data["isMember"])
    price = settings.course_price_member_cents if is_member else settings.course_price_external_cents
    audience = "Afiliado UGT" if is_member else "Externo"
    metadata = _metadata(data, "course")
    metadata.update({"courseType": data["courseType"], "isMember": str(is_member).lower(), "price": str(price)})
    try:
        session = gateway.create_checkout_session(
            email=data["email"],
            product_name=f"Curso {data['courseType']} - {audience}",
            product_description=f"Acceso completo al curso ({audience})",
            unit_amount=price,
            metadata=metadata,
            success_query=f"&course={data['courseType']}",
        )
    except StripeGatewayError as e:
        logger.error("Course checkout failed for %s: %s", data["email"], e)
        raise UpstreamError("Error al crear la sesión de pago") from e
    logger.info("Course checkout session %s created for %s (price=%s)", session.id, data["email"], price)
    return session


def lookup_session(gateway: StripeGateway, session_id: str) -> CheckoutSession:
    try:
        return gateway.retrieve_checkout_session(session_id)
    except StripeGatewayError as e:
        logger.warning("Checkout session %s lookup failed: %s", session_id, e)
        raise UpstreamError("No se pudo consultar la sesión de pago") from e


def _already_reconciled(s: "Session", session_id: str) -> bool:
    if s.scalar(select(PaymentRecord.id).where(PaymentRecord.stripe_session_id == session_id)) is not None:
        return True
    return s.scalar(select(UnmatchedPayment.id).where(UnmatchedPayment.stripe_session_id == session_id)) is not None


def record_payment(
    s: "Session", user: User, *, session_id: str, amount: Decimal, currency: str, description: str,
    actor: User | None = None,
) -> tuple[PaymentRecord, Document | None]:
    """
    Append the payment to the user's history, then store its receipt in a SAVEPOINT.
    A receipt that cannot be produced is logged and leaves the payment in place; it can
    be generated later from the stored payment.
    """
    payment = PaymentRecord(
        stripe_session_id=session_id,
        amount=amount,
        currency=currency,
        description=description,
        status="completed",
        paid_at=datetime.utcnow(),
    )
    user.payments.append(payment)
    s.flush()
    try:
        with s.begin_nested():
            receipt = documents.create_receipt(s, user, payment, actor=actor)
    except (PdfGenerationError, SQLAlchemyError):
        logger.exception("Receipt generation failed for payment %s (session %s)", payment.id, session_id)
        receipt = None
    return payment, receipt


def reconcile_checkout_session(s: "Session", checkout: dict[str, Any]) -> Reconciliation:
    """
    Apply a completed checkout session to the matching account. A session id is
    applied at most once; without a matching account the payment is queued.
    """
    session_id = checkout.get("id")
    if not session_id:
        return Reconciliation("ignored")
    if _already_reconciled(s, session_id):
        logger.info("Checkout session %s already reconciled", session_id)
        return Reconciliation("duplicate")

    metadata = checkout.get("metadata") or {}
    details = checkout.get("customer_details") or {}
    email = checkout.get("customer_email") or details.get("email") or metadata.get("email")
    amount = Decimal(int(checkout.get("amount_total") or 0)) / Decimal(100)
    currency = (checkout.get("currency") or "eur").lower()
    description = payment_description(metadata)

    user = find_user_by_email(s, email) if email else None
    if user is None:
        unmatched = UnmatchedPayment(
            stripe_session_id=session_id,
            email=(email or "").lower() or None,
            amount=amount,
            currency=currency,
            description=description,
            metadata_json=dict(metadata),
        )
        s.add(unmatched)
        s.flush()
        record_event(
            s, actor=None, action="payment.unmatched", entity_type="UnmatchedPayment", entity_id=unmatched.id,
            metadata={"session_id": session_id, "email": email},
        )
        logger.warning("Checkout session %s has no matching user (%s); queued as %s", session_id, email, unmatched.id)
        return Reconciliation("unmatched", unmatched_id=unmatched.id)

    payment, receipt = record_payment(
        s, user, session_id=session_id, amount=amount, currency=currency, description=description
    )
    receipt_id = receipt.id if receipt else None
    record_event(
        s, actor=None, action="payment.reconciled", entity_type="PaymentRecord", entity_id=payment.id,
        metadata={"session_id": session_id, "user_id": user.id, "receipt_id": receipt_id},
    )
    logger.info("Checkout session %s reconciled to user %s (receipt %s)", session_id, user.id, receipt_id)
    return Reconciliation("recorded", payment_id=payment.id, document_id=receipt_id)


def list_unmatched(s: "Session", *, include_resolved: bool = False) -> list[UnmatchedPayment]:
    stmt = select(UnmatchedPayment)
    if not include_resolved:
        stmt = stmt.where(UnmatchedPayment.resolved_at.is_(None))
    return list(s.scalars(stmt.order_by(UnmatchedPayment.received_at.desc())).all())


def resolve_unmatched(s: "Session", unmatched_id: int, user_id: int, actor: User) -> tuple[UnmatchedPayment, PaymentRecord]:
    unmatched = s.get(UnmatchedPayment, unmatched_id)
    if unmatched is None:
        raise NotFound("Pago no encontrado")
    if unmatched.is_resolved:
        raise Conflict("El pago ya fue asignado")
    user = s.get(User, user_id)
    if user is None:
        raise BadRequest("Usuario no encontrado", details=[{"field": "userId", "message": "No existe"}])
    if s.scalar(select(PaymentRecord.id).where(PaymentRecord.stripe_session_id == unmatched.stripe_session_id)):
        raise Conflict("La sesión de pago ya está registrada")

    payment, receipt = record_payment(
        s, user, session_id=unmatched.stripe_session_id, amount=unmatched.amount, currency=unmatched.currency,
        description=unmatched.description or payment_description(unmatched.metadata_json), actor=actor,
    )
    unmatched.resolved_at = datetime.utcnow()
    unmatched.resolved_user_id = user.id
    unmatched.resolved_by_user_id = actor.id
    record_event(
        s, actor=actor, action="payment.unmatched_resolved", entity_type="UnmatchedPayment", entity_id=unmatched.id,
        metadata={"user_id": user.id, "payment_id": payment.id, "receipt_id": receipt.id if receipt else None},
    )
    return unmatched, payment
