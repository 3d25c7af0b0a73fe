from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta

from flask import current_app

from app.portal.http import BadRequest
from app.portal.modules.captcha.store import CaptchaStore

logger = logging.getLogger(__name__)

CAPTCHA_TTL = timedelta(minutes=5)
MAX_ATTEMPTS = 3


@dataclass(frozen=True)
class Verification:
    valid: bool
    message: str | None = None
    remaining_attempts: int | None = None


def get_store() -> CaptchaStore:
    return current_app.extensions["captcha_store"]


def generate_challenge(store: CaptchaStore, now: datetime | None = None) -> dict:
    now = now or datetime.utcnow()
    a = secrets.randbelow(10) + 1
    b = secrets.randbelow(10) + 1
    captcha_id = secrets.token_hex(16)
    expires_at = now + CAPTCHA_TTL
    store.purge_expired(now)
    store.put(captcha_id, a + b, expires_at)
    return {"captchaId": captcha_id, "question": f"¿Cuánto es {a} + {b}?", "expiresAt": expires_at.isoformat()}


def verify_challenge(store: CaptchaStore, captcha_id: str, answer: object, now: datetime | None = None) -> Verification:
    """
    A challenge is single-use: success deletes it, and so do expiry and a fourth try.
    """
    now = now or datetime.utcnow()
    item = store.get(captcha_id) if captcha_id else None
    if item is None:
        return Verification(False, "CAPTCHA inválido o expirado")
    if now > item.expires_at:
        store.delete(captcha_id)
        return Verification(False, "CAPTCHA expirado")
    if item.attempts >= MAX_ATTEMPTS:
        store.delete(captcha_id)
        return Verification(False, "Demasiados intentos. Genera un nuevo CAPTCHA")

    attempts = store.increment_attempts(captcha_id)
    try:
        correct = int(str(answer).strip()) == item.answer
    except ValueError:
        correct = False
    if correct:
        store.delete(captcha_id)
        return Verification(True)
    return Verification(
        False,
        f"Respuesta incorrecta. Intento {attempts}/{MAX_ATTEMPTS}",
        remaining_attempts=max(0, MAX_ATTEMPTS - attempts),
    )


def check_optional_captcha(payload: dict) -> None:
    """Forms may carry a captcha; when an id is present it must verify."""
    captcha_id = payload.get("captchaId")
    if not captcha_id:
        return
    result = verify_challenge(get_store(), str(captcha_id), payload.get("captchaAnswer"))
    if not result.valid:
        logger.info("Captcha rejected: %s", result.message)
        details = [{"field": "captchaAnswer", "message": result.message or "CAPTCHA inválido"}]
        raise BadRequest("CAPTCHA inválido", details=details)
