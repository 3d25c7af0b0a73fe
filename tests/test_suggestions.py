import pytest

from app.portal import create_app
from app.portal.ratelimit import limiter

SUGGESTION = {
    "type": "propuesta",
    "subject": "Más cursos online",
    "message": "Propongo ampliar la oferta de cursos en formato online.",
    "name": "Ana García",
    "email": "ana@example.com",
    "department": "Biblioteca",
}


def _submit(client, **overrides):
    return client.post("/api/suggestions", json={**SUGGESTION, **overrides})


def test_submit_suggestion(client):
    r = _submit(client, urgency="alta")
    assert r.status_code == 201
    data = r.json["data"]
    assert data["type"] == "propuesta"
    assert data["trackingId"] == f"#{data['id']:08d}"


@pytest.mark.parametrize(
    "overrides,field",
    [
        ({"type": "reclamacion"}, "type"),
        ({"subject": "Hola"}, "subject"),
        ({"message": "Corto"}, "message"),
        ({"urgency": "critica"}, "urgency"),
    ],
)
def test_submit_validation(client, overrides, field):
    r = _submit(client, **overrides)
    assert r.status_code == 400
    assert [d["field"] for d in r.json["details"]] == [field]


def test_anonymous_submission_hides_identity(client, admin_headers):
    suggestion_id = _submit(client, isAnonymous=True, type="denuncia").json["data"]["id"]
    r = client.get(f"/api/suggestions/admin/{suggestion_id}", headers=admin_headers)
    assert r.status_code == 200
    data = r.json["data"]["suggestion"]
    assert data["isAnonymous"] is True
    assert data["displayName"] == "Anónimo"
    for key in ("name", "email", "department", "userId", "ipAddress"):
        assert key not in data


def test_named_submission_links_member(client, admin_headers, register_member):
    user, _ = register_member("ana@example.com")
    suggestion_id = _submit(client).json["data"]["id"]
    data = client.get(f"/api/suggestions/admin/{suggestion_id}", headers=admin_headers).json["data"]["suggestion"]
    assert data["userId"] == user["id"]
    assert data["displayName"] == "Ana García"
    assert data["email"] == "ana@example.com"


def test_submission_rate_limit(client):
    for _ in range(3):
        assert _submit(client).status_code == 201
    r = _submit(client)
    assert r.status_code == 429
    assert r.json["success"] is False


def test_forwarded_header_does_not_reset_the_limit(client):
    codes = [
        client.post("/api/suggestions", json=SUGGESTION, headers={"X-Forwarded-For": f"10.0.0.{i}"}).status_code
        for i in range(5)
    ]
    assert codes == [201, 201, 201, 429, 429]


def test_trusted_proxy_limits_per_forwarded_address(app, monkeypatch):
    monkeypatch.setenv("TRUSTED_PROXY_HOPS", "1")
    proxied = create_app()
    proxied.config["MAIL_BACKGROUND"] = False
    limiter.reset()
    client = proxied.test_client()

    def submit(addr):
        return client.post("/api/suggestions", json=SUGGESTION, headers={"X-Forwarded-For": addr}).status_code

    assert [submit("203.0.113.7") for _ in range(4)] == [201, 201, 201, 429]
    assert submit("203.0.113.8") == 201


def test_admin_endpoints_require_admin(client, register_member):
    _, headers = register_member("ana@example.com")
    assert client.get("/api/suggestions/admin").status_code == 401
    assert client.get("/api/suggestions/admin", headers=headers).status_code == 403


def test_moderation_transitions(client, admin_headers):
    suggestion_id = _submit(client).json["data"]["id"]
    url = f"/api/suggestions/admin/{suggestion_id}"

    r = client.patch(url, json={"status": "en-revision", "adminNotes": "Revisando"}, headers=admin_headers)
    assert r.status_code == 200
    assert r.json["data"]["suggestion"]["status"] == "en-revision"
    assert r.json["data"]["suggestion"]["adminNotes"] == "Revisando"

    r = client.patch(url, json={"status": "procesada"}, headers=admin_headers)
    data = r.json["data"]["suggestion"]
    assert data["status"] == "procesada"
    assert data["processedAt"]
    assert data["processedBy"] is not None

    r = client.patch(url, json={"status": "pendiente"}, headers=admin_headers)
    assert r.status_code == 400

    assert client.patch(url, json={"status": "archivada"}, headers=admin_headers).status_code == 200
    assert client.patch(url, json={"status": "en-revision"}, headers=admin_headers).status_code == 400


def test_list_filters_and_stats(client, admin_headers):
    _submit(client)
    _submit(client, type="queja", urgency="alta")

    r = client.get("/api/suggestions/admin?type=queja", headers=admin_headers)
    data = r.json["data"]
    assert data["pagination"]["total"] == 1
    assert data["suggestions"][0]["type"] == "queja"

    stats = client.get("/api/suggestions/stats").json["data"]["stats"]
    assert stats["total"] == 2
    assert stats["byType"]["propuesta"] == 1
    assert stats["byType"]["queja"] == 1
    assert stats["byUrgency"]["alta"] == 1
    assert stats["byStatus"]["pendiente"] == 2


def test_delete_suggestion(client, admin_headers):
    suggestion_id = _submit(client).json["data"]["id"]
    assert client.delete(f"/api/suggestions/admin/{suggestion_id}", headers=admin_headers).status_code == 200
    assert client.get(f"/api/suggestions/admin/{suggestion_id}", headers=admin_headers).status_code == 404
