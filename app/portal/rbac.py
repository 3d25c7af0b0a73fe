from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import g

from app.portal.http import Forbidden, Unauthorized
from app.portal.models import User


def current_user() -> User | None:
    return getattr(g, "current_user", None)


def authenticated_user() -> User:
    """The caller's User, or Unauthorized carrying the token failure code."""
    user = current_user()
    if user is not None:
        return user
    failure = getattr(g, "auth_failure", None)
    if failure is not None:
        message, code = failure
        raise Unauthorized(message, code=code)
    raise Unauthorized("Token de acceso requerido", code="TOKEN_MISSING")


def require_auth(fn: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        authenticated_user()
        return fn(*args, **kwargs)

    return wrapped


def admin_user() -> User:
    user = authenticated_user()
    if not user.is_admin:
        g.missing_permission = "admin"
        raise Forbidden("Acceso denegado. Se requieren permisos de administrador.")
    return user


def require_admin(fn: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        admin_user()
        return fn(*args, **kwargs)

    return wrapped


def require_active_membership(fn: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        user = authenticated_user()
        if not user.is_admin and not user.is_membership_active():
            raise Forbidden("Se requiere una afiliación activa.", code="MEMBERSHIP_INACTIVE")
        return fn(*args, **kwargs)

    return wrapped
