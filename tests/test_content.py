from app.portal.db import session_scope
from app.portal.models import AuditEvent


def test_courses_listing(client):
    r = client.get("/api/courses")
    assert r.status_code == 200
    data = r.json["data"]
    assert data["total"] == len(data["courses"])
    assert {c["status"] for c in data["courses"]} <= {"active", "upcoming"}

    active = client.get("/api/courses?status=active").json["data"]["courses"]
    assert active and all(c["status"] == "active" for c in active)

    assert client.get("/api/courses?status=cancelled").status_code == 400


def test_preinscription(app, client):
    applicant = {"name": "Luis Pérez", "email": "luis@example.com", "phone": "+34 600 123 456"}
    r = client.post("/api/courses/preinscription", json={"courseId": "1", "userData": applicant})
    assert r.status_code == 201
    preinscription_id = r.json["data"]["preinscriptionId"]

    with session_scope(app) as s:
        ev = s.query(AuditEvent).filter(AuditEvent.action == "course.preinscription").one()
        assert ev.metadata_json["preinscription_id"] == preinscription_id

    r = client.post("/api/courses/preinscription", json={"courseId": "999", "userData": applicant})
    assert r.status_code == 404

    r = client.post("/api/courses/preinscription", json={"courseId": "1", "userData": {"name": "L"}})
    assert r.status_code == 400


def test_union_documents_require_login(client, register_member):
    assert client.get("/api/documents").status_code == 401
    _, headers = register_member("ana@example.com")
    r = client.get("/api/documents", headers=headers)
    assert r.status_code == 200
    assert r.json["data"]["total"] == len(r.json["data"]["documents"])


def test_contact_without_captcha(client):
    r = client.post(
        "/api/contact/submit",
        json={"name": "Luis Pérez", "email": "luis@example.com", "message": "Corto"},
    )
    assert r.status_code == 400
    r = client.post(
        "/api/contact/submit",
        json={"name": "Luis Pérez", "email": "luis@example.com", "message": "Quisiera información sobre cursos."},
    )
    assert r.status_code == 201


def test_affiliation_request(app, client):
    r = client.post("/api/affiliations/submit", json={"name": "Luis Pérez"})
    assert r.status_code == 400

    r = client.post(
        "/api/affiliations/submit",
        json={"name": "Luis Pérez", "email": "luis@example.com", "department": "Informática"},
    )
    assert r.status_code == 201
    with session_scope(app) as s:
        ev = s.query(AuditEvent).filter(AuditEvent.action == "affiliation.request").one()
        assert ev.entity_id == r.json["data"]["affiliationId"]
