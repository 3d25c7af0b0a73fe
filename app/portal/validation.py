"""
Declarative request validation.

Each endpoint declares a tuple of ``Field`` rules; ``validate_payload`` returns the
cleaned values plus a list of ``{field, message}`` errors, and ``require_valid``
raises ``BadRequest`` with that list so the handler never sees bad input.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from app.portal.http import BadRequest

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
PHONE_RE = re.compile(r"^[0-9]{9,15}$")
_PHONE_STRIP_RE = re.compile(r"[\s\-().]")
PHOTO_DATA_URL_RE = re.compile(r"^data:image/(png|jpg|jpeg|gif|webp);base64,")
MAX_PHOTO_LENGTH = 2_700_000

_MISSING = object()


@dataclass(frozen=True)
class Field:
    name: str
    kind: str = "str"  # str | email | phone | int | decimal | bool | date | dict | list
    required: bool = True
    min_len: int | None = None
    max_len: int | None = None
    min_value: float | None = None
    max_value: float | None = None
    choices: tuple[Any, ...] | None = None
    pattern: re.Pattern[str] | None = None
    aliases: tuple[str, ...] = ()
    message: str | None = None


def sanitize_phone(raw: str) -> str:
    cleaned = _PHONE_STRIP_RE.sub("", raw or "")
    return cleaned[1:] if cleaned.startswith("+") else cleaned


def is_email(value: str) -> bool:
    return bool(value) and len(value) <= 320 and bool(EMAIL_RE.match(value))


def parse_date(value: Any) -> datetime | None:
    """Accept YYYY-MM-DD or a full ISO timestamp."""
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1]
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        d = date.fromisoformat(text[:10])
        return datetime(d.year, d.month, d.day)


def _lookup(payload: dict, rule: Field) -> Any:
    for key in (rule.name, *rule.aliases):
        if key in payload:
            return payload[key]
    return _MISSING


def _coerce(rule: Field, value: Any) -> tuple[Any, str | None]:
    if rule.kind in ("str", "email", "phone"):
        if not isinstance(value, (str, int, float)) or isinstance(value, bool):
            return None, "Debe ser texto"
        text = str(value).strip()
        if rule.kind == "email":
            text = text.lower()
            if not is_email(text):
                return None, "Email inválido"
        if rule.kind == "phone":
            text = sanitize_phone(text)
            if not PHONE_RE.match(text):
                return None, "Teléfono inválido (9-15 dígitos)"
        if rule.min_len is not None and len(text) < rule.min_len:
            if rule.max_len is not None:
                return None, f"Debe tener entre {rule.min_len} y {rule.max_len} caracteres"
            return None, f"Debe tener al menos {rule.min_len} caracteres"
        if rule.max_len is not None and len(text) > rule.max_len:
            return None, f"No puede superar {rule.max_len} caracteres"
        if rule.pattern is not None and not rule.pattern.match(text):
            return None, "Formato inválido"
        return text, None
    if rule.kind == "int":
        if isinstance(value, bool):
            return None, "Debe ser un número entero"
        try:
            number = int(value)
        except (TypeError, ValueError):
            return None, "Debe ser un número entero"
        if isinstance(value, float) and number != value:
            return None, "Debe ser un número entero"
        return _check_range(rule, number)
    if rule.kind == "decimal":
        if isinstance(value, bool):
            return None, "Debe ser un número"
        try:
            number = Decimal(str(value))
        except (InvalidOperation, ValueError):
            return None, "Debe ser un número"
        if not number.is_finite():
            return None, "Debe ser un número"
        return _check_range(rule, number)
    if rule.kind == "bool":
        if isinstance(value, bool):
            return value, None
        if isinstance(value, str) and value.lower() in ("true", "false", "1", "0"):
            return value.lower() in ("true", "1"), None
        return None, "Debe ser verdadero o falso"
    if rule.kind == "date":
        try:
            return parse_date(value), None
        except ValueError:
            return None, "Fecha inválida"
    if rule.kind == "dict":
        return (value, None) if isinstance(value, dict) else (None, "Debe ser un objeto")
    if rule.kind == "list":
        return (value, None) if isinstance(value, list) else (None, "Debe ser una lista")
    raise ValueError(f"Unknown field kind: {rule.kind}")


def _check_range(rule: Field, number: Any) -> tuple[Any, str | None]:
    if rule.min_value is not None and number < rule.min_value:
        return None, f"Debe ser mayor o igual que {rule.min_value}"
    if rule.max_value is not None and number > rule.max_value:
        return None, f"Debe ser menor o igual que {rule.max_value}"
    return number, None


def validate_payload(payload: dict, rules: tuple[Field, ...]) -> tuple[dict[str, Any], list[dict[str, str]]]:
    cleaned: dict[str, Any] = {}
    errors: list[dict[str, str]] = []
    for rule in rules:
        raw = _lookup(payload, rule)
        if raw is _MISSING or raw is None or (isinstance(raw, str) and not raw.strip()):
            if rule.required:
                errors.append({"field": rule.name, "message": rule.message or "Campo requerido"})
            continue
        value, problem = _coerce(rule, raw)
        if problem is None and rule.choices is not None and value not in rule.choices:
            problem = "Valor no permitido. Opciones: " + ", ".join(str(c) for c in rule.choices)
        if problem is not None:
            errors.append({"field": rule.name, "message": rule.message or problem})
            continue
        cleaned[rule.name] = value
    return cleaned, errors


def require_valid(payload: dict, rules: tuple[Field, ...]) -> dict[str, Any]:
    cleaned, errors = validate_payload(payload, rules)
    if errors:
        raise BadRequest("Datos inválidos", details=errors)
    return cleaned


def password_strength_errors(password: str, field: str = "newPassword") -> list[dict[str, str]]:
    problems = []
    if len(password) < 8:
        problems.append("al menos 8 caracteres")
    if not re.search(r"[a-z]", password):
        problems.append("una minúscula")
    if not re.search(r"[A-Z]", password):
        problems.append("una mayúscula")
    if not re.search(r"[0-9]", password):
        problems.append("un número")
    if not re.search(r"[^A-Za-z0-9]", password):
        problems.append("un carácter especial")
    if not problems:
        return []
    return [{"field": field, "message": "La contraseña debe contener " + ", ".join(problems)}]


# Shared rule sets

REGISTER_RULES = (
    Field("name", min_len=2, max_len=100, aliases=("nombre",)),
    Field("email", kind="email"),
    Field("password", min_len=6, max_len=128),
    Field("phone", kind="phone", required=False, aliases=("telefono",)),
    Field("department", required=False, max_len=100, aliases=("departamento",)),
)

LOGIN_RULES = (
    Field("email", kind="email"),
    Field("password", max_len=128),
)

CHANGE_PASSWORD_RULES = (
    Field("currentPassword", max_len=128),
    Field("newPassword", max_len=128),
)

PROFILE_RULES = (
    Field("name", required=False, min_len=2, max_len=100, aliases=("nombre",)),
    Field("phone", kind="phone", required=False, aliases=("telefono",)),
    Field("department", required=False, max_len=100, aliases=("departamento",)),
)

CONTACT_RULES = (
    Field("name", min_len=2, max_len=100),
    Field("email", kind="email"),
    Field("subject", required=False, max_len=200),
    Field("message", min_len=10, max_len=2000),
)
