from __future__ import annotations

from flask import Blueprint

from app.portal.http import error, get_json_body, ok
from app.portal.modules.captcha import service
from app.portal.rbac import require_admin
from app.portal.validation import Field, require_valid

bp = Blueprint("captcha", __name__)


@bp.get("/captcha")
def captcha_new():
    return ok(service.generate_challenge(service.get_store()))


@bp.post("/captcha/verify")
def captcha_verify():
    data = require_valid(get_json_body(), (Field("captchaId", max_len=64), Field("captchaAnswer", aliases=("answer",))))
    result = service.verify_challenge(service.get_store(), data["captchaId"], data["captchaAnswer"])
    if not result.valid:
        details = None
        if result.remaining_attempts is not None:
            details = [{"field": "captchaAnswer", "message": f"Intentos restantes: {result.remaining_attempts}"}]
        return error(result.message or "CAPTCHA inválido", 400, details=details)
    return ok({"valid": True})


@bp.get("/captcha/stats")
@require_admin
def captcha_stats():
    store = service.get_store()
    return ok({"active": store.count_active()})
