import time
from datetime import datetime

from flask import Blueprint, current_app
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from app.portal.config import get_settings
from app.portal.db import db_session
from app.portal.ratelimit import limiter

bp = Blueprint("routes", __name__)

STARTED_AT = time.monotonic()


def _uptime() -> float:
    return round(time.monotonic() - STARTED_AT, 1)


@bp.get("/api/health")
@limiter.exempt
def health():
    """Liveness summary. Returns JSON."""
    return {
        "status": "ok",
        "env": get_settings().env,
        "uptime": _uptime(),
        "timestamp": datetime.utcnow().isoformat(),
    }


@bp.get("/api/health/detailed")
@limiter.exempt
def health_detailed():
    settings = get_settings()
    checks: dict[str, dict] = {}
    try:
        db_session().execute(text("SELECT 1"))
        checks["database"] = {"status": "ok"}
    except SQLAlchemyError as e:
        current_app.logger.error("Health check: database unreachable: %s", e)
        checks["database"] = {"status": "error", "error": "database unreachable"}
    checks["stripe"] = {
        "status": "ok" if settings.stripe_secret_key and settings.stripe_webhook_secret else "error",
        "mode": "live" if settings.stripe_secret_key.startswith("sk_live") else "test",
    }
    checks["email"] = {"status": "ok" if settings.email_user and settings.email_pass else "not_configured"}

    healthy = all(c["status"] != "error" for c in checks.values())
    body = {
        "status": "ok" if healthy else "degraded",
        "env": settings.env,
        "uptime": _uptime(),
        "timestamp": datetime.utcnow().isoformat(),
        "checks": checks,
    }
    return body, 200 if healthy else 503


@bp.get("/api/health/ping")
@limiter.exempt
def ping():
    return {"pong": True}


@bp.get("/healthz")
def healthz():
    """
    Fast probe for the load balancer. No DB access, minimal overhead.
    """
    return "ok", 200
