from __future__ import annotations

from flask import Flask, request
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

GLOBAL_LIMIT = "100 per 15 minutes"
LOGIN_LIMIT = "10 per 15 minutes"
REGISTER_LIMIT = "5 per hour"
SUGGESTIONS_LIMIT = "3 per 15 minutes"

LOGIN_MESSAGE = "Demasiados intentos de inicio de sesión. Inténtalo en 15 minutos."
REGISTER_MESSAGE = "Demasiados registros desde esta dirección. Inténtalo más tarde."
SUGGESTIONS_MESSAGE = "Has enviado demasiadas sugerencias. Inténtalo de nuevo en 15 minutos."

# Keyed on request.remote_addr; X-Forwarded-For only counts once ProxyFix has rewritten it.
limiter = Limiter(key_func=get_remote_address, application_limits=[GLOBAL_LIMIT])


@limiter.request_filter
def _outside_api() -> bool:
    return request.method == "OPTIONS" or not request.path.startswith("/api/")


def failed_login(response) -> bool:
    """Only failed attempts use up the login allowance."""
    return response.status_code != 200


def init_limiter(app: Flask) -> Limiter:
    limiter.init_app(app)
    return limiter
