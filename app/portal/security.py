"""
Password hashing and signed session tokens.

Access tokens are short-lived JWTs carrying the user id and role. Refresh tokens are
JWTs too, but a copy of their sha256 is persisted so they can be revoked on logout or
password change.
"""
from __future__ import annotations

import hashlib
import uuid
from datetime import datetime, timedelta
from typing import Any

import jwt
from werkzeug.security import check_password_hash, generate_password_hash

from app.portal.config import Settings

JWT_ALGORITHM = "HS256"
MAX_REFRESH_TOKENS = 5
PASSWORD_HASH_METHOD = "scrypt:32768:8:1"


class TokenError(Exception):
    code = "TOKEN_INVALID"


class InvalidToken(TokenError):
    code = "TOKEN_INVALID"


class ExpiredToken(TokenError):
    code = "TOKEN_EXPIRED"


def hash_password(plaintext: str) -> str:
    return generate_password_hash(plaintext, method=PASSWORD_HASH_METHOD)


def check_password(plaintext: str, digest: str | None) -> bool:
    if not digest:
        return False
    return check_password_hash(digest, plaintext)


def _encode(claims: dict[str, Any], secret: str, ttl: timedelta) -> str:
    now = datetime.utcnow()
    payload = dict(claims)
    payload.update({"iat": now, "exp": now + ttl, "jti": uuid.uuid4().hex})
    return jwt.encode(payload, secret, algorithm=JWT_ALGORITHM)


def issue_access_token(settings: Settings, *, user_id: int, email: str, role: str) -> str:
    claims = {"sub": str(user_id), "email": email, "role": role, "type": "access"}
    return _encode(claims, settings.jwt_secret, timedelta(hours=settings.jwt_access_ttl_hours))


def issue_refresh_token(settings: Settings, *, user_id: int) -> tuple[str, datetime]:
    ttl = timedelta(days=settings.jwt_refresh_ttl_days)
    token = _encode({"sub": str(user_id), "type": "refresh"}, settings.jwt_secret, ttl)
    return token, datetime.utcnow() + ttl


def verify_token(settings: Settings, token: str, *, expected_type: str = "access") -> dict[str, Any]:
    """
    Decode and check a token. Raises ExpiredToken or InvalidToken, so callers can tell
    "refresh and retry" apart from "log in again".
    """
    if not token:
        raise InvalidToken("Token vacío")
    try:
        claims = jwt.decode(token, settings.jwt_secret, algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError as e:
        raise ExpiredToken("Token expirado") from e
    except jwt.InvalidTokenError as e:
        raise InvalidToken("Token inválido") from e
    if claims.get("type") != expected_type:
        raise InvalidToken("Tipo de token inválido")
    try:
        claims["user_id"] = int(claims["sub"])
    except (KeyError, TypeError, ValueError) as e:
        raise InvalidToken("Token inválido") from e
    return claims


def token_fingerprint(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()
