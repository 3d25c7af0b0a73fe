from sqlalchemy.exc import SQLAlchemyError

from app.portal import auth
from app.portal.db import session_scope
from app.portal.models import AuditEvent, RefreshToken, User
from app.portal.modules.documents import pdf
from app.portal.modules.documents.models import Document

from conftest import ADMIN_EMAIL, ADMIN_PASSWORD, MEMBER_PASSWORD, bearer


def test_register_returns_tokens_without_password(client):
    r = client.post("/api/auth/register", json={"email": "a@b.com", "password": "Abc123!", "name": "Ana"})
    assert r.status_code == 201
    data = r.json["data"]
    assert data["accessToken"]
    assert data["refreshToken"]
    assert data["tokenType"] == "Bearer"
    assert data["user"]["email"] == "a@b.com"
    assert data["user"]["role"] == "afiliado"
    assert data["user"]["membershipStatus"] == "pendiente"
    assert "password" not in data["user"]
    assert "passwordHash" not in data["user"]


def test_register_duplicate_email_is_conflict(app, client):
    payload = {"email": "a@b.com", "password": "Abc123!", "name": "Ana"}
    assert client.post("/api/auth/register", json=payload).status_code == 201
    r = client.post("/api/auth/register", json={**payload, "email": "A@B.com"})
    assert r.status_code == 409
    with session_scope(app) as s:
        assert s.query(User).filter(User.email == "a@b.com").count() == 1


def test_register_validation_lists_fields(client):
    r = client.post("/api/auth/register", json={"email": "not-an-email", "password": "123", "name": "A"})
    assert r.status_code == 400
    fields = {d["field"] for d in r.json["details"]}
    assert fields == {"email", "password", "name"}


def test_register_stores_membership_form(client):
    r = client.post("/api/auth/register", json={"email": "a@b.com", "password": "Abc123!", "name": "Ana"})
    headers = bearer(r.json["data"]["accessToken"])
    docs = client.get("/api/user/documents", headers=headers).json["data"]["documents"]
    assert [d["type"] for d in docs] == ["ficha-afiliacion"]


def test_login_errors_are_identical(client, register_member):
    register_member("ana@example.com")
    wrong_password = client.post("/api/auth/login", json={"email": "ana@example.com", "password": "nope"})
    unknown_email = client.post("/api/auth/login", json={"email": "ghost@example.com", "password": "nope"})
    assert wrong_password.status_code == unknown_email.status_code == 401
    assert wrong_password.json == unknown_email.json


def test_failed_login_is_audited(app, client):
    client.post("/api/auth/login", json={"email": ADMIN_EMAIL, "password": "wrong"})
    with session_scope(app) as s:
        ev = s.query(AuditEvent).filter(AuditEvent.action == "auth.login_failed").one()
        assert ev.actor_user_id is None
        assert ev.entity_id == ADMIN_EMAIL


def test_login_rate_limit(client):
    for _ in range(10):
        assert client.post("/api/auth/login", json={"email": "x@example.com", "password": "bad"}).status_code == 401
    r = client.post("/api/auth/login", json={"email": "x@example.com", "password": "bad"})
    assert r.status_code == 429


def test_successful_login_does_not_count_against_limit(client):
    for _ in range(9):
        assert client.post("/api/auth/login", json={"email": ADMIN_EMAIL, "password": "bad"}).status_code == 401
    assert client.post("/api/auth/login", json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD}).status_code == 200
    assert client.post("/api/auth/login", json={"email": ADMIN_EMAIL, "password": "bad"}).status_code == 401
    assert client.post("/api/auth/login", json={"email": ADMIN_EMAIL, "password": "bad"}).status_code == 429


def test_inactive_user_cannot_login(client, admin_headers, register_member):
    user, _ = register_member("ana@example.com")
    r = client.put(f"/api/user/{user['id']}/status", json={"isActive": False}, headers=admin_headers)
    assert r.status_code == 200
    r = client.post("/api/auth/login", json={"email": "ana@example.com", "password": MEMBER_PASSWORD})
    assert r.status_code == 401


def test_me_requires_token(client):
    r = client.get("/api/auth/me")
    assert r.status_code == 401
    assert r.json["code"] == "TOKEN_MISSING"
    r = client.get("/api/auth/me", headers=bearer("garbage"))
    assert r.status_code == 401
    assert r.json["code"] == "TOKEN_INVALID"


def test_me_and_verify(client, register_member):
    user, headers = register_member("ana@example.com")
    r = client.get("/api/auth/me", headers=headers)
    assert r.status_code == 200
    assert r.json["data"]["user"]["id"] == user["id"]
    assert r.json["data"]["user"]["paymentHistory"] == []
    assert client.post("/api/auth/verify", headers=headers).json["data"]["valid"] is True


def test_refresh_issues_new_access_token(client):
    r = client.post("/api/auth/register", json={"email": "a@b.com", "password": "Abc123!", "name": "Ana"})
    refresh_token = r.json["data"]["refreshToken"]
    r = client.post("/api/auth/refresh", json={"refreshToken": refresh_token})
    assert r.status_code == 200
    assert client.get("/api/auth/me", headers=bearer(r.json["data"]["accessToken"])).status_code == 200


def test_refresh_rejects_access_token(client):
    r = client.post("/api/auth/register", json={"email": "a@b.com", "password": "Abc123!", "name": "Ana"})
    r = client.post("/api/auth/refresh", json={"refreshToken": r.json["data"]["accessToken"]})
    assert r.status_code == 401


def test_logout_revokes_refresh_token(client):
    r = client.post("/api/auth/register", json={"email": "a@b.com", "password": "Abc123!", "name": "Ana"})
    data = r.json["data"]
    r = client.post("/api/auth/logout", json={"refreshToken": data["refreshToken"]}, headers=bearer(data["accessToken"]))
    assert r.status_code == 200
    r = client.post("/api/auth/refresh", json={"refreshToken": data["refreshToken"]})
    assert r.status_code == 401


def test_refresh_tokens_are_capped(app, client, register_member):
    user, _ = register_member("ana@example.com")
    for _ in range(7):
        assert client.post("/api/auth/login", json={"email": "ana@example.com", "password": MEMBER_PASSWORD}).status_code == 200
    with session_scope(app) as s:
        assert s.query(RefreshToken).filter(RefreshToken.user_id == user["id"]).count() == 5


def test_change_password_rejects_same_password(client, register_member):
    _, headers = register_member("ana@example.com")
    r = client.post(
        "/api/auth/change-password",
        json={"currentPassword": MEMBER_PASSWORD, "newPassword": MEMBER_PASSWORD},
        headers=headers,
    )
    assert r.status_code == 400
    assert r.json["details"][0]["field"] == "newPassword"


def test_change_password_rejects_wrong_current(client, register_member):
    _, headers = register_member("ana@example.com")
    r = client.put(
        "/api/user/password", json={"currentPassword": "wrong", "newPassword": "N3w-Passw0rd"}, headers=headers
    )
    assert r.status_code == 401


def test_change_password_enforces_strength(client, register_member):
    _, headers = register_member("ana@example.com")
    r = client.put(
        "/api/user/password", json={"currentPassword": MEMBER_PASSWORD, "newPassword": "weakpass"}, headers=headers
    )
    assert r.status_code == 400


def test_change_password_revokes_sessions(client):
    r = client.post("/api/auth/register", json={"email": "a@b.com", "password": MEMBER_PASSWORD, "name": "Ana"})
    data = r.json["data"]
    r = client.put(
        "/api/user/password",
        json={"currentPassword": MEMBER_PASSWORD, "newPassword": "N3w-Passw0rd"},
        headers=bearer(data["accessToken"]),
    )
    assert r.status_code == 200
    assert client.post("/api/auth/refresh", json={"refreshToken": data["refreshToken"]}).status_code == 401
    assert client.post("/api/auth/login", json={"email": "a@b.com", "password": "N3w-Passw0rd"}).status_code == 200


def _register_and_check_tokens(app, client):
    r = client.post("/api/auth/register", json={"email": "ana@example.com", "password": "Abc123!", "name": "Ana"})
    assert r.status_code == 201
    data = r.json["data"]
    assert data["user"]["email"] == "ana@example.com"
    assert client.get("/api/auth/me", headers=bearer(data["accessToken"])).status_code == 200
    with session_scope(app) as s:
        user = s.query(User).filter(User.email == "ana@example.com").one()
        assert s.query(Document).filter(Document.user_id == user.id).count() == 0


def test_register_survives_pdf_failure(app, client, monkeypatch):
    def broken(*args, **kwargs):
        raise pdf.PdfGenerationError("renderer unavailable")

    monkeypatch.setattr(pdf, "generate_membership_form", broken)
    _register_and_check_tokens(app, client)


def test_register_survives_document_storage_failure(app, client, monkeypatch):
    def broken(*args, **kwargs):
        raise SQLAlchemyError("documents table unavailable")

    monkeypatch.setattr(auth, "create_membership_form", broken)
    _register_and_check_tokens(app, client)
