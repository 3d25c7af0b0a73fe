from __future__ import annotations

from flask import Blueprint, request

from app.portal.db import db_session
from app.portal.http import get_json_body, ok, page_meta, pagination_args
from app.portal.modules.events import service
from app.portal.rbac import authenticated_user, current_user, require_admin, require_auth

bp = Blueprint("events", __name__)


@bp.get("/events")
def events_list():
    """Published events visible to the caller; anonymous visitors only see audience "all"."""
    viewer = current_user()
    upcoming = request.args.get("upcoming")
    days = None
    if upcoming is not None:
        days = int(upcoming) if upcoming.isdigit() else 30
    events = service.visible_events(db_session(), viewer, upcoming_days=days, event_type=request.args.get("type"))
    return ok({"events": [e.to_dict(viewer) for e in events], "count": len(events)})


@bp.post("/events/<int:event_id>/read")
@require_auth
def event_mark_read(event_id: int):
    user = authenticated_user()
    s = db_session()
    event = service.get_event_or_404(s, event_id)
    created = service.mark_read(s, event, user)
    s.commit()
    return ok({"event": event.to_dict(user)}, message="Marcado como leído" if created else "Ya estaba marcado como leído")


@bp.get("/admin/events")
@require_admin
def admin_events_list():
    page, limit = pagination_args()
    events, total = service.list_events_admin(
        db_session(), page=page, limit=limit, status=request.args.get("status"), event_type=request.args.get("type")
    )
    viewer = authenticated_user()
    return ok({"events": [e.to_dict(viewer) for e in events], "pagination": page_meta(total, page, limit)})


@bp.get("/admin/events/stats")
@require_admin
def admin_events_stats():
    return ok({"stats": service.event_stats(db_session())})


@bp.post("/admin/events")
@require_admin
def admin_event_create():
    actor = authenticated_user()
    s = db_session()
    event = service.create_event(s, get_json_body(), actor)
    s.commit()
    return ok({"event": event.to_dict(actor)}, message="Evento creado", status=201)


@bp.get("/admin/events/<int:event_id>")
@require_admin
def admin_event_get(event_id: int):
    event = service.get_event_or_404(db_session(), event_id)
    return ok({"event": event.to_dict(authenticated_user())})


@bp.put("/admin/events/<int:event_id>")
@require_admin
def admin_event_update(event_id: int):
    actor = authenticated_user()
    s = db_session()
    event = service.update_event(s, service.get_event_or_404(s, event_id), get_json_body(), actor)
    s.commit()
    return ok({"event": event.to_dict(actor)}, message="Evento actualizado")


@bp.delete("/admin/events/<int:event_id>")
@require_admin
def admin_event_delete(event_id: int):
    actor = authenticated_user()
    s = db_session()
    service.delete_event(s, service.get_event_or_404(s, event_id), actor)
    s.commit()
    return ok(message="Evento eliminado")
