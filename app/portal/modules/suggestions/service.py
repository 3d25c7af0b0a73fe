from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, select

from app.portal import mailer
from app.portal.audit import record_event
from app.portal.http import BadRequest, NotFound
from app.portal.models import User
from app.portal.modules.suggestions.models import SUGGESTION_STATUSES, SUGGESTION_TYPES, URGENCIES, Suggestion
from app.portal.validation import Field

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

SUBMIT_RULES = (
    Field("type", choices=SUGGESTION_TYPES),
    Field("subject", min_len=5, max_len=200),
    Field("message", min_len=10, max_len=5000),
    Field("urgency", required=False, choices=URGENCIES),
    Field("isAnonymous", kind="bool", required=False),
    Field("name", required=False, max_len=100),
    Field("email", kind="email", required=False),
    Field("department", required=False, max_len=100),
)

MODERATE_RULES = (
    Field("status", required=False, choices=SUGGESTION_STATUSES),
    Field("adminNotes", required=False, max_len=1000),
)

ALLOWED_TRANSITIONS = {
    "pendiente": {"en-revision", "procesada", "archivada"},
    "en-revision": {"procesada", "archivada"},
    "procesada": {"archivada"},
    "archivada": set(),
}


def create_suggestion(
    s: "Session", data: dict[str, Any], *, ip: str | None = None, user_agent: str | None = None
) -> Suggestion:
    """
    Persist a public submission. Anonymous submissions are stripped of every identity
    field before they touch the database.
    """
    anonymous = bool(data.get("isAnonymous", False))
    suggestion = Suggestion(
        suggestion_type=data["type"],
        subject=data["subject"],
        message=data["message"],
        urgency=data.get("urgency") or "media",
        is_anonymous=anonymous,
        status="pendiente",
    )
    if not anonymous:
        suggestion.name = data.get("name") or None
        suggestion.email = data.get("email") or None
        suggestion.department = data.get("department") or None
        suggestion.ip_address = ip
        suggestion.user_agent = (user_agent or "")[:512] or None
        if suggestion.email:
            user = s.query(User).filter(User.email == suggestion.email).one_or_none()
            if user is not None:
                suggestion.user_id = user.id
                suggestion.name = suggestion.name or user.name
                suggestion.department = suggestion.department or user.department
    s.add(suggestion)
    s.flush()
    record_event(
        s, actor=None, action="suggestion.create", entity_type="Suggestion", entity_id=suggestion.id,
        metadata={"type": suggestion.suggestion_type, "urgency": suggestion.urgency, "anonymous": anonymous},
    )
    return suggestion


def notify_new_suggestion(suggestion: Suggestion) -> None:
    sent, detail = mailer.send_suggestion_confirmation(suggestion)
    if not sent and detail != "anonymous":
        logger.warning("Suggestion %s confirmation email failed: %s", suggestion.id, detail)
    sent, detail = mailer.send_suggestion_admin_notification(suggestion)
    if not sent:
        logger.warning("Suggestion %s admin notification failed: %s", suggestion.id, detail)


def get_suggestion_or_404(s: "Session", suggestion_id: int) -> Suggestion:
    suggestion = s.get(Suggestion, suggestion_id)
    if suggestion is None:
        raise NotFound("Sugerencia no encontrada")
    return suggestion


def list_suggestions(
    s: "Session",
    *,
    page: int,
    limit: int,
    status: str | None = None,
    suggestion_type: str | None = None,
    urgency: str | None = None,
) -> tuple[list[Suggestion], int]:
    stmt = select(Suggestion)
    if status:
        stmt = stmt.where(Suggestion.status == status)
    if suggestion_type:
        stmt = stmt.where(Suggestion.suggestion_type == suggestion_type)
    if urgency:
        stmt = stmt.where(Suggestion.urgency == urgency)
    total = s.scalar(select(func.count()).select_from(stmt.subquery())) or 0
    rows = s.scalars(
        stmt.order_by(Suggestion.created_at.desc(), Suggestion.id.desc()).offset((page - 1) * limit).limit(limit)
    ).all()
    return list(rows), total


def moderate(s: "Session", suggestion: Suggestion, data: dict[str, Any], actor: User) -> str | None:
    """
    Apply a status change and/or admin notes. Returns the new status when it changed,
    so the caller can notify the submitter after commit.
    """
    new_status = data.get("status")
    changed_status = None
    if new_status and new_status != suggestion.status:
        if new_status not in ALLOWED_TRANSITIONS[suggestion.status]:
            raise BadRequest(
                f"Transición de estado no permitida: {suggestion.status} -> {new_status}",
                details=[{"field": "status", "message": "Transición no permitida"}],
            )
        changed_status = new_status
        old_status = suggestion.status
        suggestion.status = new_status
        if new_status == "procesada":
            suggestion.processed_at = datetime.utcnow()
            suggestion.processed_by_user_id = actor.id
    if "adminNotes" in data:
        suggestion.admin_notes = data["adminNotes"]
    suggestion.updated_at = datetime.utcnow()
    record_event(
        s, actor=actor, action="suggestion.moderate", entity_type="Suggestion", entity_id=suggestion.id,
        metadata={"from": old_status, "to": changed_status} if changed_status else {"notes": True},
    )
    return changed_status


def delete_suggestion(s: "Session", suggestion: Suggestion, actor: User) -> None:
    record_event(s, actor=actor, action="suggestion.delete", entity_type="Suggestion", entity_id=suggestion.id)
    s.delete(suggestion)


def suggestion_stats(s: "Session") -> dict[str, Any]:
    by_status = dict(s.execute(select(Suggestion.status, func.count(Suggestion.id)).group_by(Suggestion.status)).all())
    by_type = dict(
        s.execute(select(Suggestion.suggestion_type, func.count(Suggestion.id)).group_by(Suggestion.suggestion_type)).all()
    )
    by_urgency = dict(s.execute(select(Suggestion.urgency, func.count(Suggestion.id)).group_by(Suggestion.urgency)).all())
    return {
        "total": sum(by_status.values()),
        "byStatus": {st: by_status.get(st, 0) for st in SUGGESTION_STATUSES},
        "byType": {t: by_type.get(t, 0) for t in SUGGESTION_TYPES},
        "byUrgency": {u: by_urgency.get(u, 0) for u in URGENCIES},
    }
