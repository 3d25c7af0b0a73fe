from __future__ import annotations

from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, select

from app.portal.audit import record_event
from app.portal.http import BadRequest, NotFound
from app.portal.modules.events.models import AUDIENCES, EVENT_PRIORITIES, EVENT_STATUSES, EVENT_TYPES, Event
from app.portal.validation import Field, require_valid

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.portal.models import User


def _event_rules(partial: bool) -> tuple[Field, ...]:
    required = not partial
    return (
        Field("type", required=required, choices=EVENT_TYPES),
        Field("title", required=required, min_len=3, max_len=200),
        Field("description", required=required, min_len=1, max_len=2000),
        Field("eventDate", kind="date", required=False),
        Field("deadline", kind="date", required=False),
        Field("location", required=False, max_len=255),
        Field("link", required=False, max_len=512),
        Field("priority", required=False, choices=EVENT_PRIORITIES),
        Field("status", required=False, choices=EVENT_STATUSES),
        Field("targetAudience", required=False, choices=AUDIENCES),
        Field("targetUsers", kind="list", required=False),
        Field("metadata", kind="dict", required=False),
    )


_COLUMN_FOR_FIELD = {
    "type": "event_type",
    "title": "title",
    "description": "description",
    "eventDate": "event_date",
    "deadline": "deadline",
    "location": "location",
    "link": "link",
    "priority": "priority",
    "status": "status",
    "targetAudience": "target_audience",
    "metadata": "metadata_json",
}


def _target_ids(raw: list[Any]) -> list[int]:
    try:
        return sorted({int(v) for v in raw})
    except (TypeError, ValueError) as e:
        raise BadRequest("Datos inválidos", details=[{"field": "targetUsers", "message": "Ids de usuario inválidos"}]) from e


def _check_audience(event: Event) -> None:
    if event.target_audience == "specific" and not event.target_user_ids:
        raise BadRequest(
            "Datos inválidos",
            details=[{"field": "targetUsers", "message": "Indica al menos un usuario para la audiencia 'specific'"}],
        )


def get_event_or_404(s: "Session", event_id: int) -> Event:
    event = s.get(Event, event_id)
    if event is None:
        raise NotFound("Evento no encontrado")
    return event


def create_event(s: "Session", payload: dict, actor: "User") -> Event:
    data = require_valid(payload, _event_rules(partial=False))
    event = Event(created_by_user_id=actor.id, priority="normal", status="published", target_audience="affiliates")
    for field, column in _COLUMN_FOR_FIELD.items():
        if field in data:
            setattr(event, column, data[field])
    if "targetUsers" in data:
        event.target_user_ids = _target_ids(data["targetUsers"])
    _check_audience(event)
    s.add(event)
    s.flush()
    record_event(s, actor=actor, action="event.create", entity_type="Event", entity_id=event.id, metadata={"title": event.title})
    return event


def update_event(s: "Session", event: Event, payload: dict, actor: "User") -> Event:
    data = require_valid(payload, _event_rules(partial=True))
    for field, column in _COLUMN_FOR_FIELD.items():
        if field in data:
            setattr(event, column, data[field])
    if "targetUsers" in data:
        event.target_user_ids = _target_ids(data["targetUsers"])
    _check_audience(event)
    event.updated_at = datetime.utcnow()
    record_event(s, actor=actor, action="event.update", entity_type="Event", entity_id=event.id, metadata={"fields": sorted(data)})
    return event


def delete_event(s: "Session", event: Event, actor: "User") -> None:
    record_event(s, actor=actor, action="event.delete", entity_type="Event", entity_id=event.id, metadata={"title": event.title})
    s.delete(event)


def list_events_admin(
    s: "Session", *, page: int, limit: int, status: str | None = None, event_type: str | None = None
) -> tuple[list[Event], int]:
    stmt = select(Event)
    if status:
        stmt = stmt.where(Event.status == status)
    if event_type:
        stmt = stmt.where(Event.event_type == event_type)
    total = s.scalar(select(func.count()).select_from(stmt.subquery())) or 0
    events = s.scalars(stmt.order_by(Event.created_at.desc(), Event.id.desc()).offset((page - 1) * limit).limit(limit)).all()
    return list(events), total


def visible_events(
    s: "Session", user: "User | None", *, upcoming_days: int | None = None, event_type: str | None = None
) -> list[Event]:
    """Published events the viewer may see, soonest first; undated events last."""
    stmt = select(Event).where(Event.status == "published")
    if event_type:
        stmt = stmt.where(Event.event_type == event_type)
    if upcoming_days is not None:
        now = datetime.utcnow()
        stmt = stmt.where(Event.event_date >= now, Event.event_date <= now + timedelta(days=upcoming_days))
    events = [e for e in s.scalars(stmt).all() if e.is_visible_for(user)]
    events.sort(key=lambda e: (e.event_date is None, e.event_date or datetime.max, -e.id))
    return events


def mark_read(s: "Session", event: Event, user: "User") -> bool:
    if not event.is_visible_for(user):
        raise NotFound("Evento no encontrado")
    created = event.mark_read_by(user.id)
    if created:
        s.flush()
    return created


def event_stats(s: "Session") -> dict[str, Any]:
    by_status = dict(s.execute(select(Event.status, func.count(Event.id)).group_by(Event.status)).all())
    by_type = dict(s.execute(select(Event.event_type, func.count(Event.id)).group_by(Event.event_type)).all())
    upcoming = s.scalar(
        select(func.count(Event.id)).where(Event.status == "published", Event.event_date >= datetime.utcnow())
    ) or 0
    return {
        "total": sum(by_status.values()),
        "byStatus": {st: by_status.get(st, 0) for st in EVENT_STATUSES},
        "byType": {t: by_type.get(t, 0) for t in EVENT_TYPES},
        "upcoming": upcoming,
    }
