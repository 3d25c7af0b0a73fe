def test_health_ok(client):
    r = client.get("/api/health")
    assert r.status_code == 200
    assert r.json["status"] == "ok"
    assert r.json["env"] == "test"


def test_healthz_is_plain(client):
    r = client.get("/healthz")
    assert r.status_code == 200
    assert r.data == b"ok"


def test_detailed_health_checks_database(client):
    r = client.get("/api/health/detailed")
    assert r.status_code == 200
    assert r.json["checks"]["database"]["status"] == "ok"
    assert r.json["checks"]["stripe"]["mode"] == "test"
    assert r.json["checks"]["email"]["status"] == "not_configured"


def test_ping(client):
    assert client.get("/api/health/ping").json == {"pong": True}


def test_request_id_header(client):
    r = client.get("/api/health")
    assert len(r.headers["X-Request-ID"]) == 32
    r = client.get("/api/health", headers={"X-Request-ID": "abc123"})
    assert r.headers["X-Request-ID"] == "abc123"


def test_unknown_route_returns_json_envelope(client):
    r = client.get("/api/does-not-exist")
    assert r.status_code == 404
    assert r.json["success"] is False
    assert r.json["code"] == "NOT_FOUND"


def test_wrong_method_returns_json_envelope(client):
    r = client.delete("/api/courses")
    assert r.status_code == 405
    assert r.json["success"] is False


def test_cors_preflight_allows_dev_origin(client):
    r = client.options(
        "/api/auth/login",
        headers={"Origin": "http://localhost:3000", "Access-Control-Request-Method": "POST"},
    )
    assert r.headers.get("Access-Control-Allow-Origin") == "http://localhost:3000"


def test_global_rate_limit_skips_webhook_and_health(client):
    for _ in range(100):
        assert client.get("/api/courses").status_code == 200
    r = client.get("/api/courses")
    assert r.status_code == 429
    assert r.json["success"] is False
    # Stripe retries must still reach the webhook (rejected here only for the bad signature).
    r = client.post("/api/webhook", data="{}", headers={"Stripe-Signature": "t=1,v1=bad"})
    assert r.status_code == 400
    assert client.get("/api/health").status_code == 200
