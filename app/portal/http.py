from __future__ import annotations

from typing import Any

from flask import jsonify


def ok(data: Any = None, message: str | None = None, status: int = 200):
    body: dict[str, Any] = {"success": True}
    if data is not None:
        body["data"] = data
    if message:
        body["message"] = message
    return jsonify(body), status


def error(message: str, status: int = 400, *, details: list[dict] | None = None, code: str | None = None):
    body: dict[str, Any] = {"success": False, "error": message}
    if details:
        body["details"] = details
    if code:
        body["code"] = code
    return jsonify(body), status


class ApiError(Exception):
    status = 500
    default_message = "Error interno del servidor"

    def __init__(self, message: str | None = None, *, details: list[dict] | None = None, code: str | None = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        self.details = details
        self.code = code

    def to_response(self):
        return error(self.message, self.status, details=self.details, code=self.code)


class BadRequest(ApiError):
    status = 400
    default_message = "Datos inválidos"


class Unauthorized(ApiError):
    status = 401
    default_message = "No autorizado"


class Forbidden(ApiError):
    status = 403
    default_message = "Acceso denegado"


class NotFound(ApiError):
    status = 404
    default_message = "Recurso no encontrado"


class Conflict(ApiError):
    status = 409
    default_message = "Conflicto"


class TooManyRequests(ApiError):
    status = 429
    default_message = "Demasiadas solicitudes. Inténtalo más tarde."


class UpstreamError(ApiError):
    status = 502
    default_message = "Error del proveedor de pagos"


def get_json_body() -> dict:
    """Parsed JSON object body, or {} for empty/non-object payloads."""
    from flask import request

    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}


def pagination_args(default_limit: int = 20, max_limit: int = 100) -> tuple[int, int]:
    from flask import request

    try:
        page = max(1, int(request.args.get("page", 1)))
    except (TypeError, ValueError):
        page = 1
    try:
        limit = min(max_limit, max(1, int(request.args.get("limit", default_limit))))
    except (TypeError, ValueError):
        limit = default_limit
    return page, limit


def page_meta(total: int, page: int, limit: int) -> dict[str, int]:
    return {"page": page, "limit": limit, "total": total, "pages": (total + limit - 1) // limit if limit else 0}
