import hashlib
import hmac
import json
import time

import pytest

from app.portal import create_app
from app.portal.db import session_scope
from app.portal.models import MEMBERSHIP_ACTIVE, ROLE_ADMIN, Base, User
from app.portal.ratelimit import limiter
from app.portal.security import hash_password

WEBHOOK_SECRET = "whsec_test_secret"
ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "Admin123!"
MEMBER_PASSWORD = "Abc123!"


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("JWT_SECRET", "test-jwt-secret-with-enough-length-for-hs256")
    monkeypatch.setenv("STRIPE_SECRET_KEY", "sk_test_dummy")
    monkeypatch.setenv("STRIPE_WEBHOOK_SECRET", WEBHOOK_SECRET)
    for k in (
        "ALLOWED_ORIGINS",
        "EMAIL_USER",
        "EMAIL_PASS",
        "ADMIN_NOTIFY_EMAIL",
        "CAPTCHA_BACKEND",
        "TRUSTED_PROXY_HOPS",
        "RATELIMIT_STORAGE_URI",
    ):
        monkeypatch.delenv(k, raising=False)

    app = create_app()
    app.config["MAIL_BACKGROUND"] = False

    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    limiter.reset()

    with session_scope(app) as s:
        s.add(
            User(
                email=ADMIN_EMAIL,
                password_hash=hash_password(ADMIN_PASSWORD),
                name="Admin",
                role=ROLE_ADMIN,
                is_active=True,
                membership_status=MEMBERSHIP_ACTIVE,
            )
        )

    yield app

    limiter.reset()


@pytest.fixture()
def client(app):
    return app.test_client()


def bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def admin_headers(client):
    r = client.post("/api/auth/login", json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD})
    assert r.status_code == 200, r.json
    return bearer(r.json["data"]["accessToken"])


@pytest.fixture()
def register_member(client):
    """Registers an affiliate and returns (user dict, auth headers)."""

    def _register(email: str, name: str = "Ana García", password: str = MEMBER_PASSWORD):
        r = client.post("/api/auth/register", json={"email": email, "password": password, "name": name})
        assert r.status_code == 201, r.json
        data = r.json["data"]
        return data["user"], bearer(data["accessToken"])

    return _register


def stripe_signature(payload: str, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    ts = int(time.time()) if timestamp is None else timestamp
    digest = hmac.new(secret.encode("utf-8"), f"{ts}.{payload}".encode("utf-8"), hashlib.sha256).hexdigest()
    return f"t={ts},v1={digest}"


def checkout_completed_event(session_id: str, email: str, amount_total: int = 1500, **metadata) -> str:
    event = {
        "id": f"evt_{session_id}",
        "type": "checkout.session.completed",
        "data": {
            "object": {
                "id": session_id,
                "object": "checkout.session",
                "customer_email": email,
                "amount_total": amount_total,
                "currency": "eur",
                "payment_status": "paid",
                "metadata": {"type": "affiliation", "email": email, **metadata},
            }
        },
    }
    return json.dumps(event)
