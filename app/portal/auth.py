from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any

from flask import Blueprint, current_app, g, request
from flask_limiter.util import get_remote_address
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from app.portal.audit import record_event
from app.portal.config import get_settings
from app.portal.db import db_session
from app.portal.http import Unauthorized, get_json_body, ok
from app.portal.models import RefreshToken, User
from app.portal.modules.documents.pdf import PdfGenerationError
from app.portal.modules.documents.service import create_membership_form
from app.portal.modules.members import service as members
from app.portal.modules.members.routes import change_password_response
from app.portal.ratelimit import LOGIN_LIMIT, LOGIN_MESSAGE, REGISTER_LIMIT, REGISTER_MESSAGE, failed_login, limiter
from app.portal.rbac import authenticated_user, require_auth
from app.portal.security import (
    MAX_REFRESH_TOKENS,
    TokenError,
    check_password,
    issue_access_token,
    issue_refresh_token,
    token_fingerprint,
    verify_token,
)
from app.portal.validation import LOGIN_RULES, REGISTER_RULES, Field, require_valid

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

bp = Blueprint("auth", __name__)
logger = logging.getLogger(__name__)

INVALID_CREDENTIALS = "Credenciales inválidas"


def _bearer_token() -> str | None:
    header = request.headers.get("Authorization") or ""
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def load_current_user() -> None:
    """
    Resolve g.current_user from the Bearer token. Anonymous requests carry on with
    None; a bad token is remembered in g.auth_failure for endpoints that need a user.
    """
    g.current_user = None
    g.auth_failure = None
    token = _bearer_token()
    if token is None:
        return
    try:
        claims = verify_token(get_settings(), token)
    except TokenError as e:
        g.auth_failure = (str(e), e.code)
        return
    try:
        user = db_session().get(User, claims["user_id"])
    except SQLAlchemyError as e:
        current_app.logger.error("load_current_user DB error (treating as anonymous): %s", e)
        g.auth_failure = ("No se pudo verificar el token", "TOKEN_INVALID")
        return
    if user is None or not user.is_active:
        g.auth_failure = ("Usuario no encontrado o inactivo", "USER_INACTIVE")
        return
    g.current_user = user


def issue_session_tokens(s: "Session", user: User) -> dict[str, Any]:
    """Mint an access/refresh pair; only the refresh token's fingerprint is stored."""
    settings = get_settings()
    access = issue_access_token(settings, user_id=user.id, email=user.email, role=user.role)
    refresh, expires_at = issue_refresh_token(settings, user_id=user.id)

    now = datetime.utcnow()
    live = [t for t in user.refresh_tokens if t.expires_at > now]
    for stale in [t for t in user.refresh_tokens if t.expires_at <= now]:
        user.refresh_tokens.remove(stale)
    # Keep the newest MAX_REFRESH_TOKENS including the one being issued.
    live.sort(key=lambda t: t.created_at)
    while len(live) >= MAX_REFRESH_TOKENS:
        user.refresh_tokens.remove(live.pop(0))
    user.refresh_tokens.append(RefreshToken(token_hash=token_fingerprint(refresh), expires_at=expires_at, created_at=now))
    s.flush()
    return {"accessToken": access, "refreshToken": refresh, "tokenType": "Bearer"}


def _stored_refresh_token(s: "Session", token: str) -> RefreshToken | None:
    return s.scalar(select(RefreshToken).where(RefreshToken.token_hash == token_fingerprint(token)))


@bp.post("/register")
@limiter.limit(REGISTER_LIMIT, error_message=REGISTER_MESSAGE)
def register():
    data = require_valid(get_json_body(), REGISTER_RULES)
    s = db_session()
    user = members.register_user(s, data, ip=get_remote_address(), user_agent=request.headers.get("User-Agent"))
    tokens = issue_session_tokens(s, user)
    s.commit()
    logger.info("New affiliate registered: user_id=%s", user.id)

    try:
        create_membership_form(s, user)
        s.commit()
    except (PdfGenerationError, SQLAlchemyError):
        s.rollback()
        logger.exception("Membership form generation failed for user %s", user.id)

    return ok(
        {"user": user.to_public_dict(), **tokens},
        message="Usuario registrado exitosamente",
        status=201,
    )


@bp.post("/login")
@limiter.limit(LOGIN_LIMIT, error_message=LOGIN_MESSAGE, deduct_when=failed_login)
def login():
    data = require_valid(get_json_body(), LOGIN_RULES)
    s = db_session()
    user = members.find_user_by_email(s, data["email"])
    if user is None or not user.is_active or not check_password(data["password"], user.password_hash):
        record_event(
            s,
            actor=None,
            action="auth.login_failed",
            entity_type="User",
            entity_id=data["email"],
            reason="Invalid credentials",
            metadata={"email": data["email"]},
        )
        s.commit()
        raise Unauthorized(INVALID_CREDENTIALS)

    user.update_last_login(get_remote_address(), request.headers.get("User-Agent"))
    tokens = issue_session_tokens(s, user)
    record_event(s, actor=user, action="auth.login", entity_type="User", entity_id=user.id)
    s.commit()
    return ok({"user": user.to_public_dict(), **tokens}, message="Login exitoso")


@bp.post("/refresh")
def refresh():
    data = require_valid(get_json_body(), (Field("refreshToken", message="Refresh token requerido"),))
    token = data["refreshToken"]
    try:
        claims = verify_token(get_settings(), token, expected_type="refresh")
    except TokenError as e:
        raise Unauthorized("Refresh token inválido o expirado", code=e.code) from e

    s = db_session()
    stored = _stored_refresh_token(s, token)
    if stored is None or stored.user_id != claims["user_id"] or stored.expires_at <= datetime.utcnow():
        raise Unauthorized("Refresh token inválido o expirado", code="TOKEN_INVALID")
    user = s.get(User, stored.user_id)
    if user is None or not user.is_active:
        raise Unauthorized("Usuario no encontrado o inactivo", code="USER_INACTIVE")

    access = issue_access_token(get_settings(), user_id=user.id, email=user.email, role=user.role)
    return ok({"accessToken": access, "tokenType": "Bearer"})


@bp.post("/logout")
@require_auth
def logout():
    user = authenticated_user()
    token = get_json_body().get("refreshToken")
    s = db_session()
    if isinstance(token, str) and token:
        stored = _stored_refresh_token(s, token)
        if stored is not None and stored.user_id == user.id:
            user.refresh_tokens.remove(stored)
    record_event(s, actor=user, action="auth.logout", entity_type="User", entity_id=user.id)
    s.commit()
    return ok(message="Sesión cerrada exitosamente")


@bp.post("/logout-all")
@require_auth
def logout_all():
    user = authenticated_user()
    s = db_session()
    revoked = len(user.refresh_tokens)
    user.refresh_tokens.clear()
    record_event(
        s, actor=user, action="auth.logout_all", entity_type="User", entity_id=user.id, metadata={"revoked": revoked}
    )
    s.commit()
    return ok(message="Todas las sesiones han sido cerradas")


@bp.get("/me")
@require_auth
def me():
    return ok({"user": authenticated_user().to_public_dict(include_history=True)})


@bp.route("/verify", methods=["GET", "POST"])
@require_auth
def verify():
    return ok({"valid": True, "user": authenticated_user().to_public_dict()})


@bp.post("/change-password")
@require_auth
def change_password():
    return change_password_response()
