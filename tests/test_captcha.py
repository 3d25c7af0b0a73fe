import re

QUESTION_RE = re.compile(r"¿Cuánto es (\d+) \+ (\d+)\?")


def _challenge(client):
    r = client.get("/api/captcha")
    assert r.status_code == 200
    data = r.json["data"]
    a, b = (int(x) for x in QUESTION_RE.fullmatch(data["question"]).groups())
    return data["captchaId"], a + b


def test_challenge_shape(client):
    data = client.get("/api/captcha").json["data"]
    assert len(data["captchaId"]) == 32
    assert data["expiresAt"]
    a, b = (int(x) for x in QUESTION_RE.fullmatch(data["question"]).groups())
    assert 1 <= a <= 10 and 1 <= b <= 10


def test_correct_answer_is_single_use(client):
    captcha_id, answer = _challenge(client)
    r = client.post("/api/captcha/verify", json={"captchaId": captcha_id, "captchaAnswer": answer})
    assert r.status_code == 200
    assert r.json["data"]["valid"] is True

    r = client.post("/api/captcha/verify", json={"captchaId": captcha_id, "captchaAnswer": answer})
    assert r.status_code == 400


def test_wrong_answers_count_down(client):
    captcha_id, answer = _challenge(client)
    wrong = answer + 1
    r = client.post("/api/captcha/verify", json={"captchaId": captcha_id, "captchaAnswer": wrong})
    assert r.status_code == 400
    assert r.json["details"][0]["message"] == "Intentos restantes: 2"

    client.post("/api/captcha/verify", json={"captchaId": captcha_id, "captchaAnswer": wrong})
    r = client.post("/api/captcha/verify", json={"captchaId": captcha_id, "captchaAnswer": wrong})
    assert r.json["details"][0]["message"] == "Intentos restantes: 0"

    r = client.post("/api/captcha/verify", json={"captchaId": captcha_id, "captchaAnswer": answer})
    assert r.status_code == 400
    assert "details" not in r.json


def test_non_numeric_answer_is_wrong(client):
    captcha_id, _ = _challenge(client)
    r = client.post("/api/captcha/verify", json={"captchaId": captcha_id, "captchaAnswer": "siete"})
    assert r.status_code == 400


def test_unknown_challenge(client):
    r = client.post("/api/captcha/verify", json={"captchaId": "f" * 32, "captchaAnswer": 3})
    assert r.status_code == 400


def test_stats_are_admin_only(client, admin_headers):
    _challenge(client)
    assert client.get("/api/captcha/stats").status_code == 401
    r = client.get("/api/captcha/stats", headers=admin_headers)
    assert r.status_code == 200
    assert r.json["data"]["active"] == 1


def test_contact_form_checks_captcha(client):
    form = {"name": "Luis Pérez", "email": "luis@example.com", "message": "Quisiera información sobre afiliación."}
    captcha_id, answer = _challenge(client)

    r = client.post("/api/contact/submit", json={**form, "captchaId": captcha_id, "captchaAnswer": answer + 1})
    assert r.status_code == 400

    r = client.post("/api/contact/submit", json={**form, "captchaId": captcha_id, "captchaAnswer": answer})
    assert r.status_code == 201
    assert r.json["data"]["contactId"]


def test_memory_backend(app, client):
    from app.portal.modules.captcha.store import MemoryCaptchaStore

    app.extensions["captcha_store"] = MemoryCaptchaStore()
    captcha_id, answer = _challenge(client)
    r = client.post("/api/captcha/verify", json={"captchaId": captcha_id, "captchaAnswer": str(answer)})
    assert r.status_code == 200
