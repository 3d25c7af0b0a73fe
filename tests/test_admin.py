from conftest import checkout_completed_event, stripe_signature


def test_admin_blueprint_requires_admin(client, register_member):
    assert client.get("/api/admin/stats").status_code == 401
    _, headers = register_member("ana@example.com")
    r = client.get("/api/admin/stats", headers=headers)
    assert r.status_code == 403
    assert r.json["success"] is False


def test_dashboard_stats(client, admin_headers, register_member):
    _, headers = register_member("ana@example.com")
    client.post("/api/user/enroll", json={"courseId": "1", "courseName": "IA Aplicada"}, headers=headers)

    payload = checkout_completed_event("cs_test_stats", "ana@example.com", amount_total=1500)
    client.post(
        "/api/webhook",
        data=payload,
        content_type="application/json",
        headers={"Stripe-Signature": stripe_signature(payload)},
    )

    stats = client.get("/api/admin/stats", headers=admin_headers).json["data"]["stats"]
    assert stats["users"]["total"] == 2
    assert stats["enrollments"]["total"] == 1
    assert stats["enrollments"]["byCourse"] == [{"courseId": "1", "courseName": "IA Aplicada", "count": 1}]
    assert stats["revenue"]["total"] == 15.0
    assert stats["revenue"]["payments"] == 1
    assert stats["growth"]["newUsersLast30Days"] == 2
    assert stats["growth"]["percent"] == 100.0


def test_user_detail_and_enrollments(client, admin_headers, register_member):
    user, headers = register_member("ana@example.com")
    client.post("/api/user/enroll", json={"courseId": "2", "courseName": "Negociación"}, headers=headers)

    detail = client.get(f"/api/admin/users/{user['id']}", headers=admin_headers).json["data"]["user"]
    assert detail["coursesEnrolled"][0]["courseId"] == "2"

    data = client.get("/api/admin/enrollments?courseId=2", headers=admin_headers).json["data"]
    assert data["pagination"]["total"] == 1
    assert data["enrollments"][0]["user"]["email"] == "ana@example.com"

    data = client.get("/api/admin/users?search=ana", headers=admin_headers).json["data"]
    assert [u["id"] for u in data["users"]] == [user["id"]]


def test_recent_activity(client, admin_headers, register_member):
    register_member("ana@example.com")
    register_member("luis@example.com", name="Luis Pérez")
    data = client.get("/api/admin/recent?limit=2", headers=admin_headers).json["data"]
    assert [u["email"] for u in data["users"]] == ["luis@example.com", "ana@example.com"]
    assert data["payments"] == []
