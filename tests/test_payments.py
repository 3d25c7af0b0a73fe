from types import SimpleNamespace

import pytest
import stripe

from app.portal.db import session_scope
from app.portal.models import PaymentRecord
from app.portal.modules.documents import pdf
from app.portal.modules.documents.models import Document
from app.portal.modules.payments.models import UnmatchedPayment

from conftest import MEMBER_PASSWORD, checkout_completed_event, stripe_signature


def _deliver(client, payload, signature=None):
    return client.post(
        "/api/webhook",
        data=payload,
        content_type="application/json",
        headers={"Stripe-Signature": signature or stripe_signature(payload)},
    )


def _receipts(s, user_id):
    return s.query(Document).filter(Document.user_id == user_id, Document.doc_type == "recibo-pago").count()


def test_webhook_rejects_bad_signature(app, client):
    payload = checkout_completed_event("cs_test_bad", "ana@example.com")
    r = _deliver(client, payload, signature=stripe_signature(payload, secret="whsec_wrong"))
    assert r.status_code == 400
    assert "Webhook Error" in r.json["error"]
    with session_scope(app) as s:
        assert s.query(PaymentRecord).count() == 0
        assert s.query(UnmatchedPayment).count() == 0


def test_webhook_rejects_missing_signature(client):
    r = client.post("/api/webhook", data="{}", content_type="application/json")
    assert r.status_code == 400


def test_webhook_rejects_stale_timestamp(client):
    payload = checkout_completed_event("cs_test_old", "ana@example.com")
    r = _deliver(client, payload, signature=stripe_signature(payload, timestamp=1_000_000))
    assert r.status_code == 400


def test_webhook_records_payment_once(app, client, register_member):
    user, headers = register_member("ana@example.com")
    payload = checkout_completed_event("cs_test_1", "ana@example.com", amount_total=1500)

    r = _deliver(client, payload)
    assert r.status_code == 200
    assert r.json == {"received": True}

    r = _deliver(client, payload)
    assert r.status_code == 200

    with session_scope(app) as s:
        payments = s.query(PaymentRecord).filter(PaymentRecord.user_id == user["id"]).all()
        assert len(payments) == 1
        assert float(payments[0].amount) == 15.0
        assert payments[0].description == "Afiliación anual UGT-CLM-UGR"
        assert _receipts(s, user["id"]) == 1

    history = client.get("/api/auth/me", headers=headers).json["data"]["user"]["paymentHistory"]
    assert [p["stripeSessionId"] for p in history] == ["cs_test_1"]

    r = client.post(
        "/api/user/documents/generate",
        json={"type": "recibo-pago", "paymentData": {"stripeSessionId": "cs_test_1"}},
        headers=headers,
    )
    assert r.status_code == 201
    assert r.json["data"]["document"]["metadata"]["amount"] == 15.0


def test_webhook_ignores_other_events(app, client):
    payload = '{"id": "evt_x", "type": "customer.created", "data": {"object": {}}}'
    r = _deliver(client, payload)
    assert r.status_code == 200
    assert r.json == {"received": True}


def test_unmatched_payment_is_queued_and_resolved(app, client, admin_headers, register_member):
    payload = checkout_completed_event("cs_test_orphan", "nadie@example.com", amount_total=2000)
    assert _deliver(client, payload).status_code == 200

    listing = client.get("/api/admin/unmatched-payments", headers=admin_headers).json["data"]
    assert listing["count"] == 1
    pending = listing["payments"][0]
    assert pending["email"] == "nadie@example.com"
    assert pending["amount"] == 20.0

    user, headers = register_member("luis@example.com", name="Luis Pérez")
    r = client.post(
        f"/api/admin/unmatched-payments/{pending['id']}/resolve", json={"userId": user["id"]}, headers=admin_headers
    )
    assert r.status_code == 200
    assert r.json["data"]["payment"]["stripeSessionId"] == "cs_test_orphan"

    r = client.post(
        f"/api/admin/unmatched-payments/{pending['id']}/resolve", json={"userId": user["id"]}, headers=admin_headers
    )
    assert r.status_code == 409

    assert client.get("/api/admin/unmatched-payments", headers=admin_headers).json["data"]["count"] == 0
    everything = client.get("/api/admin/unmatched-payments?all=true", headers=admin_headers).json["data"]
    assert everything["payments"][0]["resolvedUserId"] == user["id"]

    with session_scope(app) as s:
        assert _receipts(s, user["id"]) == 1

    assert _deliver(client, payload).status_code == 200
    with session_scope(app) as s:
        assert s.query(PaymentRecord).filter(PaymentRecord.stripe_session_id == "cs_test_orphan").count() == 1


def test_unmatched_payments_are_admin_only(client, register_member):
    _, headers = register_member("ana@example.com")
    assert client.get("/api/admin/unmatched-payments", headers=headers).status_code == 403


def _paid_session(session_id, email, **overrides):
    fields = {
        "id": session_id,
        "url": None,
        "status": "complete",
        "payment_status": "paid",
        "amount_total": 1500,
        "currency": "eur",
        "customer_email": email,
        "customer_details": None,
        "metadata": {"type": "affiliation", "email": email},
    }
    fields.update(overrides)
    return SimpleNamespace(**fields)


@pytest.fixture()
def fake_retrieve(monkeypatch):
    sessions = {}

    def retrieve(session_id, **kwargs):
        if session_id not in sessions:
            raise stripe.InvalidRequestError("No such checkout.session", "id")
        return sessions[session_id]

    monkeypatch.setattr(stripe.checkout.Session, "retrieve", retrieve)
    return sessions


def test_complete_registration_links_queued_payment(app, client, fake_retrieve):
    payload = checkout_completed_event("cs_test_new", "nuevo@example.com")
    assert _deliver(client, payload).status_code == 200
    fake_retrieve["cs_test_new"] = _paid_session("cs_test_new", "nuevo@example.com")

    r = client.post(
        "/api/complete-registration",
        json={"email": "nuevo@example.com", "password": MEMBER_PASSWORD, "sessionId": "cs_test_new", "name": "Nuevo"},
    )
    assert r.status_code == 201
    user = r.json["data"]["user"]
    assert user["membershipStatus"] == "activo"
    assert user["membershipExpiryDate"]
    assert r.json["data"]["accessToken"]

    with session_scope(app) as s:
        payment = s.query(PaymentRecord).filter(PaymentRecord.stripe_session_id == "cs_test_new").one()
        assert payment.user_id == user["id"]
        assert s.query(UnmatchedPayment).one().resolved_user_id == user["id"]
        types = {d.doc_type for d in s.query(Document).filter(Document.user_id == user["id"])}
        assert types == {"recibo-pago", "certificado-afiliado"}


def test_complete_registration_requires_paid_session(client, fake_retrieve):
    fake_retrieve["cs_test_unpaid"] = _paid_session("cs_test_unpaid", "x@example.com", payment_status="unpaid")
    r = client.post(
        "/api/complete-registration",
        json={"email": "x@example.com", "password": MEMBER_PASSWORD, "sessionId": "cs_test_unpaid", "name": "Equis"},
    )
    assert r.status_code == 400


def test_complete_registration_rejects_other_email(client, fake_retrieve):
    fake_retrieve["cs_test_other"] = _paid_session("cs_test_other", "owner@example.com")
    r = client.post(
        "/api/complete-registration",
        json={"email": "thief@example.com", "password": MEMBER_PASSWORD, "sessionId": "cs_test_other", "name": "Ladrón"},
    )
    assert r.status_code == 400


def test_complete_registration_existing_email_conflicts(client, register_member, fake_retrieve):
    register_member("ana@example.com")
    r = client.post(
        "/api/complete-registration",
        json={"email": "ana@example.com", "password": MEMBER_PASSWORD, "sessionId": "cs_any", "name": "Ana"},
    )
    assert r.status_code == 409


def test_complete_registration_unknown_session_is_upstream_error(client, fake_retrieve):
    r = client.post(
        "/api/complete-registration",
        json={"email": "x@example.com", "password": MEMBER_PASSWORD, "sessionId": "cs_missing", "name": "Equis"},
    )
    assert r.status_code == 502


def test_create_affiliation_session(client, monkeypatch):
    captured = {}

    def create(**kwargs):
        captured.update(kwargs)
        return SimpleNamespace(id="cs_test_created", url="https://checkout.stripe.com/c/pay/cs_test_created")

    monkeypatch.setattr(stripe.checkout.Session, "create", create)
    r = client.post("/api/stripe/create-affiliation-session", json={"name": "Ana García", "email": "Ana@Example.com"})
    assert r.status_code == 200
    assert r.json["data"] == {
        "sessionId": "cs_test_created",
        "url": "https://checkout.stripe.com/c/pay/cs_test_created",
    }
    line = captured["line_items"][0]
    assert line["price_data"]["unit_amount"] == 1500
    assert line["price_data"]["currency"] == "eur"
    assert captured["customer_email"] == "ana@example.com"
    assert captured["metadata"]["type"] == "affiliation"
    assert "{CHECKOUT_SESSION_ID}" in captured["success_url"]


def test_course_session_prices_depend_on_membership(client, monkeypatch):
    amounts = []

    def create(**kwargs):
        amounts.append(kwargs["line_items"][0]["price_data"]["unit_amount"])
        return SimpleNamespace(id=f"cs_{len(amounts)}", url="https://checkout.stripe.com")

    monkeypatch.setattr(stripe.checkout.Session, "create", create)
    base = {"name": "Ana García", "email": "ana@example.com", "courseType": "ia"}
    assert client.post("/api/stripe/create-course-session", json={**base, "isMember": True}).status_code == 200
    assert client.post("/api/stripe/create-course-session", json={**base, "isMember": False}).status_code == 200
    assert amounts == [1500, 16000]


def test_create_session_validates_input(client):
    r = client.post("/api/stripe/create-affiliation-session", json={"email": "nope"})
    assert r.status_code == 400
    assert {d["field"] for d in r.json["details"]} == {"name", "email"}


def test_webhook_receipt_failure_keeps_payment(app, client, register_member, monkeypatch):
    user, headers = register_member("ana@example.com")
    payload = checkout_completed_event("cs_test_nopdf", "ana@example.com", amount_total=1500)

    def broken_receipt(*args, **kwargs):
        raise pdf.PdfGenerationError("renderer unavailable")

    with monkeypatch.context() as m:
        m.setattr(pdf, "generate_payment_receipt", broken_receipt)
        r = _deliver(client, payload)
    assert r.status_code == 200

    with session_scope(app) as s:
        payment = s.query(PaymentRecord).filter(PaymentRecord.stripe_session_id == "cs_test_nopdf").one()
        assert payment.user_id == user["id"]
        assert _receipts(s, user["id"]) == 0
        assert s.query(UnmatchedPayment).count() == 0

    # Redelivery is still a duplicate; the receipt can be produced from the stored payment.
    assert _deliver(client, payload).status_code == 200
    r = client.post(
        "/api/user/documents/generate",
        json={"type": "recibo-pago", "paymentData": {"stripeSessionId": "cs_test_nopdf"}},
        headers=headers,
    )
    assert r.status_code == 201
    with session_scope(app) as s:
        assert s.query(PaymentRecord).count() == 1
        assert _receipts(s, user["id"]) == 1


def test_complete_registration_survives_certificate_failure(app, client, fake_retrieve, monkeypatch):
    payload = checkout_completed_event("cs_test_nocert", "nuevo@example.com")
    assert _deliver(client, payload).status_code == 200
    fake_retrieve["cs_test_nocert"] = _paid_session("cs_test_nocert", "nuevo@example.com")

    def broken(*args, **kwargs):
        raise pdf.PdfGenerationError("renderer unavailable")

    monkeypatch.setattr(pdf, "generate_affiliation_certificate", broken)
    r = client.post(
        "/api/complete-registration",
        json={"email": "nuevo@example.com", "password": MEMBER_PASSWORD, "sessionId": "cs_test_nocert", "name": "Nuevo"},
    )
    assert r.status_code == 201
    user = r.json["data"]["user"]
    assert r.json["data"]["accessToken"]

    with session_scope(app) as s:
        assert s.query(PaymentRecord).filter(PaymentRecord.user_id == user["id"]).count() == 1
        types = {d.doc_type for d in s.query(Document).filter(Document.user_id == user["id"])}
        assert types == {"recibo-pago"}
