from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any

from app.portal.audit import record_event
from app.portal.http import BadRequest, Forbidden, NotFound
from app.portal.models import PaymentRecord, money
from app.portal.modules.documents import pdf
from app.portal.modules.documents.models import (
    DOC_AFFILIATION_CERTIFICATE,
    DOC_COURSE_CERTIFICATE,
    DOC_MEMBERSHIP_FORM,
    DOC_PAYMENT_RECEIPT,
    DOCUMENT_TYPES,
    Document,
)
from app.portal.validation import Field, require_valid

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.portal.models import User

logger = logging.getLogger(__name__)

COURSE_DATA_RULES = (
    Field("courseName", max_len=200, message="Se requiere el nombre del curso"),
    Field("courseId", required=False, max_len=100),
    Field("participantName", required=False, max_len=200),
    Field("duration", required=False, max_len=50),
    Field("completionDate", kind="date", required=False),
)


def list_documents(s: "Session", user: "User") -> list[Document]:
    return (
        s.query(Document)
        .filter(Document.user_id == user.id)
        .order_by(Document.generated_at.desc(), Document.id.desc())
        .all()
    )


def get_owned_document(s: "Session", user: "User", document_id: int) -> Document:
    """Another user's document is reported as missing, never as forbidden."""
    doc = s.query(Document).filter(Document.id == document_id, Document.user_id == user.id).one_or_none()
    if doc is None:
        raise NotFound("Documento no encontrado")
    return doc


def _store(
    s: "Session",
    user: "User",
    *,
    doc_type: str,
    title: str,
    description: str,
    rendered: pdf.RenderedPdf,
    metadata: dict[str, Any],
    actor: "User | None",
) -> Document:
    doc = Document(
        user_id=user.id,
        doc_type=doc_type,
        title=title[:200],
        description=description[:500],
        file_data=rendered.file_data,
        file_size=rendered.file_size,
        mime_type="application/pdf",
        metadata_json={**metadata, "generatedBy": "system"},
        generated_at=datetime.utcnow(),
    )
    s.add(doc)
    s.flush()
    record_event(
        s, actor=actor, action="document.generate", entity_type="Document", entity_id=doc.id,
        metadata={"type": doc_type, "user_id": user.id},
    )
    return doc


def payment_as_dict(payment: PaymentRecord) -> dict[str, Any]:
    return {
        "stripeSessionId": payment.stripe_session_id,
        "amount": money(payment.amount),
        "currency": payment.currency,
        "description": payment.description,
        "status": payment.status,
        "date": payment.paid_at,
    }


def create_receipt(s: "Session", user: "User", payment: PaymentRecord, *, actor: "User | None" = None) -> Document:
    data = payment_as_dict(payment)
    rendered = pdf.generate_payment_receipt(user, data)
    return _store(
        s,
        user,
        doc_type=DOC_PAYMENT_RECEIPT,
        title="Recibo de Pago",
        description=f"Recibo de pago de {data['amount']:.2f} {payment.currency.upper()}",
        rendered=rendered,
        metadata={
            "amount": data["amount"],
            "currency": payment.currency,
            "stripeSessionId": payment.stripe_session_id,
        },
        actor=actor,
    )


def create_affiliation_certificate(s: "Session", user: "User", *, actor: "User | None" = None) -> Document:
    return _store(
        s,
        user,
        doc_type=DOC_AFFILIATION_CERTIFICATE,
        title="Certificado de Afiliación",
        description=f"Certificado de afiliación para {user.name}",
        rendered=pdf.generate_affiliation_certificate(user),
        metadata={},
        actor=actor,
    )


def create_membership_form(s: "Session", user: "User", *, actor: "User | None" = None) -> Document:
    return _store(
        s,
        user,
        doc_type=DOC_MEMBERSHIP_FORM,
        title="Ficha de Afiliación",
        description=f"Ficha de afiliación de {user.name}",
        rendered=pdf.generate_membership_form(user),
        metadata={},
        actor=actor,
    )


def create_course_certificate(s: "Session", user: "User", course: dict[str, Any], *, actor: "User | None" = None) -> Document:
    return _store(
        s,
        user,
        doc_type=DOC_COURSE_CERTIFICATE,
        title="Certificado de Curso",
        description=f"Certificado del curso: {course['courseName']}",
        rendered=pdf.generate_course_certificate(user, course),
        metadata={
            "courseId": course.get("courseId"),
            "courseName": course["courseName"],
            "completionDate": course["completionDate"].date().isoformat() if course.get("completionDate") else None,
        },
        actor=actor,
    )


def generate_for_user(
    s: "Session",
    user: "User",
    doc_type: str,
    *,
    payment_data: dict[str, Any] | None = None,
    course_data: dict[str, Any] | None = None,
) -> Document:
    """
    Member-initiated generation. Receipts are only produced for payments already on
    the member's own history; the request names the session, never the amount.
    """
    if doc_type not in DOCUMENT_TYPES:
        raise BadRequest("Tipo de documento inválido", details=[{"field": "type", "message": "Tipo no soportado"}])

    if doc_type == DOC_AFFILIATION_CERTIFICATE:
        if not user.is_membership_active():
            raise Forbidden("Necesitas una afiliación activa para generar el certificado")
        return create_affiliation_certificate(s, user, actor=user)

    if doc_type == DOC_MEMBERSHIP_FORM:
        return create_membership_form(s, user, actor=user)

    if doc_type == DOC_PAYMENT_RECEIPT:
        session_id = (payment_data or {}).get("stripeSessionId")
        if not session_id:
            raise BadRequest("Se requieren datos de pago para generar recibo")
        payment = next((p for p in user.payments if p.stripe_session_id == session_id), None)
        if payment is None:
            raise NotFound("Pago no encontrado")
        return create_receipt(s, user, payment, actor=user)

    if not course_data:
        raise BadRequest("Se requieren datos del curso para generar certificado")
    return create_course_certificate(s, user, require_valid(course_data, COURSE_DATA_RULES), actor=user)


def delete_document(s: "Session", user: "User", document_id: int) -> None:
    doc = get_owned_document(s, user, document_id)
    record_event(
        s, actor=user, action="document.delete", entity_type="Document", entity_id=doc.id,
        metadata={"type": doc.doc_type},
    )
    s.delete(doc)
