from __future__ import annotations

from flask import Blueprint, current_app, request
from flask_limiter.util import get_remote_address

from app.portal import mailer
from app.portal.db import db_session
from app.portal.http import get_json_body, ok, page_meta, pagination_args
from app.portal.modules.captcha.service import check_optional_captcha
from app.portal.modules.suggestions import service
from app.portal.ratelimit import SUGGESTIONS_LIMIT, SUGGESTIONS_MESSAGE, limiter
from app.portal.rbac import authenticated_user, require_admin
from app.portal.validation import require_valid

bp = Blueprint("suggestions", __name__)


@bp.post("/suggestions")
@limiter.limit(SUGGESTIONS_LIMIT, error_message=SUGGESTIONS_MESSAGE)
def suggestion_submit():
    payload = get_json_body()
    data = require_valid(payload, service.SUBMIT_RULES)
    check_optional_captcha(payload)
    s = db_session()
    suggestion = service.create_suggestion(s, data, ip=get_remote_address(), user_agent=request.headers.get("User-Agent"))
    s.commit()
    current_app.logger.info(
        "Suggestion %s received (type=%s urgency=%s anonymous=%s)",
        suggestion.id, suggestion.suggestion_type, suggestion.urgency, suggestion.is_anonymous,
    )
    service.notify_new_suggestion(suggestion)
    return ok(
        {
            "id": suggestion.id,
            "type": suggestion.suggestion_type,
            "createdAt": suggestion.created_at.isoformat(),
            "trackingId": suggestion.tracking_id,
        },
        message="Sugerencia enviada correctamente. Gracias por tu participación.",
        status=201,
    )


@bp.get("/suggestions/stats")
def suggestion_stats():
    return ok({"stats": service.suggestion_stats(db_session())})


@bp.get("/suggestions/admin")
@require_admin
def suggestions_admin_list():
    page, limit = pagination_args()
    rows, total = service.list_suggestions(
        db_session(),
        page=page,
        limit=limit,
        status=request.args.get("status"),
        suggestion_type=request.args.get("type"),
        urgency=request.args.get("urgency"),
    )
    return ok({"suggestions": [r.to_admin_dict() for r in rows], "pagination": page_meta(total, page, limit)})


@bp.get("/suggestions/admin/<int:suggestion_id>")
@require_admin
def suggestion_admin_get(suggestion_id: int):
    return ok({"suggestion": service.get_suggestion_or_404(db_session(), suggestion_id).to_admin_dict()})


@bp.patch("/suggestions/admin/<int:suggestion_id>")
@require_admin
def suggestion_admin_update(suggestion_id: int):
    data = require_valid(get_json_body(), service.MODERATE_RULES)
    s = db_session()
    suggestion = service.get_suggestion_or_404(s, suggestion_id)
    new_status = service.moderate(s, suggestion, data, authenticated_user())
    s.commit()
    if new_status:
        mailer.send_suggestion_status_update(suggestion, new_status, suggestion.admin_notes)
    return ok({"suggestion": suggestion.to_admin_dict()}, message="Sugerencia actualizada")


@bp.delete("/suggestions/admin/<int:suggestion_id>")
@require_admin
def suggestion_admin_delete(suggestion_id: int):
    s = db_session()
    service.delete_suggestion(s, service.get_suggestion_or_404(s, suggestion_id), authenticated_user())
    s.commit()
    return ok(message="Sugerencia eliminada")
