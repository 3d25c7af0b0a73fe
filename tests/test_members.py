import base64

from conftest import ADMIN_EMAIL

PHOTO = "data:image/png;base64," + base64.b64encode(b"\x89PNG fake image").decode()


def test_profile_roundtrip(client, register_member):
    _, headers = register_member("ana@example.com")
    r = client.put(
        "/api/user/profile",
        json={"nombre": "Ana María García", "telefono": "600-123-456", "departamento": "Biblioteca"},
        headers=headers,
    )
    assert r.status_code == 200
    user = r.json["data"]["user"]
    assert user["name"] == "Ana María García"
    assert user["phone"] == "600123456"
    assert user["department"] == "Biblioteca"

    profile = client.get("/api/user/profile", headers=headers).json["data"]["user"]
    assert profile["name"] == "Ana María García"
    assert profile["coursesEnrolled"] == []


def test_profile_rejects_bad_phone(client, register_member):
    _, headers = register_member("ana@example.com")
    r = client.put("/api/user/profile", json={"phone": "12"}, headers=headers)
    assert r.status_code == 400
    assert r.json["details"][0]["field"] == "phone"


def test_profile_photo(client, register_member):
    _, headers = register_member("ana@example.com")
    assert client.post("/api/user/photo", json={"photo": "not-an-image"}, headers=headers).status_code == 400

    r = client.post("/api/user/photo", json={"photo": PHOTO}, headers=headers)
    assert r.status_code == 200
    assert r.json["data"]["profilePhoto"] == PHOTO

    assert client.delete("/api/user/photo", headers=headers).status_code == 200
    assert client.get("/api/user/profile", headers=headers).json["data"]["user"]["profilePhoto"] is None


def test_enroll_rejects_duplicates(client, register_member):
    _, headers = register_member("ana@example.com")
    course = {"courseId": "1", "courseName": "Inteligencia Artificial"}
    r = client.post("/api/user/enroll", json=course, headers=headers)
    assert r.status_code == 201
    assert r.json["data"]["enrollment"]["status"] == "enrolled"

    assert client.post("/api/user/enroll", json=course, headers=headers).status_code == 409

    courses = client.get("/api/user/courses", headers=headers).json["data"]["courses"]
    assert [c["courseId"] for c in courses] == ["1"]


def test_membership_renewal(client, register_member):
    _, headers = register_member("ana@example.com")
    membership = client.get("/api/user/membership", headers=headers).json["data"]["membership"]
    assert membership["status"] == "pendiente"
    assert membership["isActive"] is False

    r = client.post("/api/user/renew-membership", json={"months": 6}, headers=headers)
    assert r.status_code == 200
    membership = r.json["data"]["membership"]
    assert membership["status"] == "activo"
    assert membership["isActive"] is True
    assert 180 <= membership["daysUntilExpiry"] <= 185

    first_expiry = membership["expiryDate"]
    membership = client.post("/api/user/renew-membership", json={}, headers=headers).json["data"]["membership"]
    assert membership["expiryDate"] > first_expiry

    assert client.post("/api/user/renew-membership", json={"months": 0}, headers=headers).status_code == 400


def test_user_admin_endpoints_require_admin(client, register_member):
    user, headers = register_member("ana@example.com")
    assert client.get("/api/user/all", headers=headers).status_code == 403
    assert client.get("/api/user/stats", headers=headers).status_code == 403
    assert client.put(f"/api/user/{user['id']}/role", json={"role": "admin"}, headers=headers).status_code == 403


def test_admin_lists_and_searches_users(client, admin_headers, register_member):
    register_member("ana@example.com")
    register_member("luis@example.com", name="Luis Pérez")

    data = client.get("/api/user/all", headers=admin_headers).json["data"]
    assert data["pagination"]["total"] == 3

    data = client.get("/api/user/all?search=luis", headers=admin_headers).json["data"]
    assert [u["email"] for u in data["users"]] == ["luis@example.com"]

    data = client.get("/api/user/all?role=admin", headers=admin_headers).json["data"]
    assert [u["email"] for u in data["users"]] == [ADMIN_EMAIL]

    stats = client.get("/api/user/stats", headers=admin_headers).json["data"]["stats"]
    assert stats["total"] == 3
    assert stats["byRole"] == {"afiliado": 2, "admin": 1}
    assert stats["byMembershipStatus"]["pendiente"] == 2


def test_admin_changes_status_and_role(client, admin_headers, register_member):
    user, headers = register_member("ana@example.com")

    r = client.put(f"/api/user/{user['id']}/status", json={"membershipStatus": "activo"}, headers=admin_headers)
    assert r.status_code == 200
    assert r.json["data"]["user"]["membershipStatus"] == "activo"

    r = client.put(f"/api/user/{user['id']}/status", json={"membershipStatus": "dormido"}, headers=admin_headers)
    assert r.status_code == 400
    assert client.put(f"/api/user/{user['id']}/status", json={}, headers=admin_headers).status_code == 400

    r = client.put(f"/api/user/{user['id']}/role", json={"role": "admin"}, headers=admin_headers)
    assert r.status_code == 200
    assert r.json["data"]["user"]["role"] == "admin"

    r = client.put(f"/api/user/{user['id']}/status", json={"isActive": False}, headers=admin_headers)
    assert r.status_code == 200
    r = client.get("/api/user/profile", headers=headers)
    assert r.status_code == 401
    assert r.json["code"] == "USER_INACTIVE"


def test_admin_cannot_demote_or_delete_self(client, admin_headers):
    me = client.get("/api/auth/me", headers=admin_headers).json["data"]["user"]
    assert client.put(f"/api/user/{me['id']}/role", json={"role": "afiliado"}, headers=admin_headers).status_code == 400
    assert client.put(f"/api/user/{me['id']}/status", json={"isActive": False}, headers=admin_headers).status_code == 400
    assert client.delete(f"/api/user/{me['id']}", headers=admin_headers).status_code == 400


def test_admin_deletes_user(client, admin_headers, register_member):
    user, _ = register_member("ana@example.com")
    assert client.delete(f"/api/user/{user['id']}", headers=admin_headers).status_code == 200
    assert client.get(f"/api/admin/users/{user['id']}", headers=admin_headers).status_code == 404
    assert client.delete("/api/user/9999", headers=admin_headers).status_code == 404
