from datetime import date

import pytest

from conftest import bearer

YEAR = date.today().year


@pytest.fixture()
def active_members(client, admin_headers, register_member):
    users = []
    for email, name in (("ana@example.com", "Ana García"), ("luis@example.com", "Luis Pérez")):
        user, _ = register_member(email, name=name)
        r = client.put(f"/api/user/{user['id']}/status", json={"membershipStatus": "activo"}, headers=admin_headers)
        assert r.status_code == 200
        users.append(user)
    return users


def _invoice(client, headers, items, **extra):
    payload = {"type": "income", "clientProvider": {"name": "Universidad de Granada"}, "items": items, **extra}
    return client.post("/api/accounting/invoices", json=payload, headers=headers)


def test_requires_admin(client, register_member):
    assert client.get("/api/accounting/dashboard").status_code == 401
    _, headers = register_member("ana@example.com")
    assert client.get("/api/accounting/dashboard", headers=headers).status_code == 403
    assert client.get("/api/accounting/dashboard", headers=bearer("nope")).status_code == 401


def test_invoice_totals_and_numbering(client, admin_headers):
    r = _invoice(client, admin_headers, [{"description": "Formación", "quantity": 2, "unitPrice": 10, "taxRate": 21}])
    assert r.status_code == 201
    first = r.json["data"]["invoice"]
    assert first["status"] == "draft"
    assert first["invoiceNumber"] == f"A-{YEAR}-0001"
    assert (first["subtotal"], first["taxAmount"], first["total"]) == (20.0, 4.2, 24.2)
    assert first["pendingAmount"] == 24.2

    r = _invoice(
        client,
        admin_headers,
        [
            {"description": "Sesión 1", "unitPrice": 10, "taxRate": 21},
            {"description": "Sesión 2", "quantity": 1, "unitPrice": 10},
        ],
    )
    second = r.json["data"]["invoice"]
    assert second["invoiceNumber"] == f"A-{YEAR}-0002"
    assert (second["subtotal"], second["taxAmount"], second["total"]) == (20.0, 4.2, 24.2)
    assert [i["subtotal"] for i in second["items"]] == [10.0, 10.0]


def test_invoice_validation(client, admin_headers):
    r = _invoice(client, admin_headers, [])
    assert r.status_code == 400

    r = _invoice(client, admin_headers, [{"description": "Sin precio"}])
    assert r.status_code == 400
    assert r.json["details"][0]["field"] == "items[0].unitPrice"

    r = client.post(
        "/api/accounting/invoices",
        json={"type": "income", "clientProvider": {}, "items": [{"description": "x", "unitPrice": 1}]},
        headers=admin_headers,
    )
    assert r.status_code == 400


def test_invoice_lifecycle(client, admin_headers):
    invoice = _invoice(client, admin_headers, [{"description": "Formación", "quantity": 2, "unitPrice": 10}]).json[
        "data"
    ]["invoice"]
    base = f"/api/accounting/invoices/{invoice['id']}"

    r = client.post(f"{base}/payments", json={"amount": 5}, headers=admin_headers)
    assert r.status_code == 400

    r = client.put(f"{base}/issue", headers=admin_headers)
    assert r.status_code == 200
    assert r.json["data"]["invoice"]["status"] == "issued"
    assert client.put(f"{base}/issue", headers=admin_headers).status_code == 400

    r = client.post(f"{base}/payments", json={"amount": 10}, headers=admin_headers)
    data = r.json["data"]["invoice"]
    assert data["status"] == "partially_paid"
    assert data["paidAmount"] == 10.0
    assert data["pendingAmount"] == 14.2

    r = client.post(f"{base}/payments", json={"amount": 14.2, "method": "cash"}, headers=admin_headers)
    data = r.json["data"]["invoice"]
    assert data["status"] == "paid"
    assert data["pendingAmount"] == 0.0
    assert len(data["payments"]) == 2

    assert client.put(f"{base}/cancel", headers=admin_headers).status_code == 400


def test_cancelled_invoice_rejects_payments(client, admin_headers):
    invoice = _invoice(client, admin_headers, [{"description": "Cuota", "unitPrice": 50}]).json["data"]["invoice"]
    base = f"/api/accounting/invoices/{invoice['id']}"
    client.put(f"{base}/issue", headers=admin_headers)
    r = client.put(f"{base}/cancel", headers=admin_headers)
    assert r.json["data"]["invoice"]["status"] == "cancelled"
    assert client.post(f"{base}/payments", json={"amount": 5}, headers=admin_headers).status_code == 400

    listing = client.get("/api/accounting/invoices?status=cancelled", headers=admin_headers).json["data"]
    assert listing["pagination"]["total"] == 1
    assert client.get("/api/accounting/invoices?status=lost", headers=admin_headers).status_code == 400


def test_transaction_category_must_match_type(client, admin_headers):
    r = client.post(
        "/api/accounting/transactions",
        json={"type": "income", "category": "rent", "amount": 100, "description": "Alquiler"},
        headers=admin_headers,
    )
    assert r.status_code == 400
    assert r.json["details"][0]["field"] == "category"


def test_transaction_approval_flow(client, admin_headers):
    r = client.post(
        "/api/accounting/transactions",
        json={
            "type": "expense",
            "category": "office_supplies",
            "amount": "45.50",
            "description": "Material de oficina",
            "transactionDate": f"{YEAR}-02-10",
            "requiresApproval": True,
        },
        headers=admin_headers,
    )
    assert r.status_code == 201
    tx = r.json["data"]["transaction"]
    assert tx["status"] == "pending"
    assert tx["fiscalYear"] == YEAR
    assert tx["fiscalQuarter"] == 1
    assert tx["categoryName"] == "Material de oficina"

    dashboard = client.get("/api/accounting/dashboard", headers=admin_headers).json["data"]
    assert dashboard["alerts"]["pendingApprovals"] == 1

    r = client.put(f"/api/accounting/transactions/{tx['id']}/approve", headers=admin_headers)
    assert r.status_code == 200
    approved = r.json["data"]["transaction"]
    assert approved["status"] == "completed"
    assert approved["approvedBy"] is not None
    assert client.put(f"/api/accounting/transactions/{tx['id']}/approve", headers=admin_headers).status_code == 400


def test_transaction_update_cancel_and_totals(client, admin_headers):
    def create(**fields):
        r = client.post("/api/accounting/transactions", json=fields, headers=admin_headers)
        assert r.status_code == 201, r.json
        return r.json["data"]["transaction"]

    donation = create(type="income", category="donation", amount=200, description="Donación")
    create(type="income", category="subsidy", amount=500, description="Subvención")
    rent = create(type="expense", category="rent", amount=300, description="Alquiler")

    r = client.put(f"/api/accounting/transactions/{donation['id']}", json={"amount": 250}, headers=admin_headers)
    assert r.json["data"]["transaction"]["amount"] == 250.0
    r = client.put(f"/api/accounting/transactions/{donation['id']}", json={"category": "rent"}, headers=admin_headers)
    assert r.status_code == 400

    r = client.delete(f"/api/accounting/transactions/{rent['id']}", headers=admin_headers)
    assert r.json["data"]["transaction"]["status"] == "cancelled"

    categories = client.get("/api/accounting/transactions/stats/by-category", headers=admin_headers).json["data"]
    assert [(c["category"], c["total"]) for c in categories["categories"]] == [("subsidy", 500.0), ("donation", 250.0)]

    report = client.get(f"/api/accounting/reports/annual?year={YEAR}", headers=admin_headers).json["data"]
    assert report["balance"] == {"income": 750.0, "expense": 0.0, "balance": 750.0}
    assert sum(m["income"] for m in report["monthly"]) == 750.0

    listing = client.get("/api/accounting/transactions?type=income", headers=admin_headers).json["data"]
    assert listing["pagination"]["total"] == 2
    assert client.get("/api/accounting/transactions?year=abc", headers=admin_headers).status_code == 400
    assert client.get("/api/accounting/transactions/9999", headers=admin_headers).status_code == 404


def test_fee_generation_is_idempotent(client, admin_headers, active_members):
    payload = {"year": YEAR, "month": 12, "amount": 15}
    r = client.post("/api/accounting/membership-fees/generate", json=payload, headers=admin_headers)
    assert r.status_code == 201
    assert r.json["data"] == {"created": 2, "skipped": 0, "errors": []}

    r = client.post("/api/accounting/membership-fees/generate", json=payload, headers=admin_headers)
    assert r.json["data"] == {"created": 0, "skipped": 2, "errors": []}

    fees = client.get(f"/api/accounting/membership-fees?year={YEAR}&month=12", headers=admin_headers).json["data"]
    assert fees["pagination"]["total"] == 2
    assert {f["user"]["id"] for f in fees["fees"]} == {u["id"] for u in active_members}
    assert all(f["dueDate"] == f"{YEAR}-12-31" for f in fees["fees"])


def test_fee_generation_validates_period(client, admin_headers):
    r = client.post(
        "/api/accounting/membership-fees/generate", json={"year": YEAR, "month": 13, "amount": 15}, headers=admin_headers
    )
    assert r.status_code == 400


def test_mark_fee_paid_books_income(client, admin_headers, active_members):
    client.post(
        "/api/accounting/membership-fees/generate", json={"year": YEAR, "month": 12, "amount": 15}, headers=admin_headers
    )
    fee = client.get("/api/accounting/membership-fees", headers=admin_headers).json["data"]["fees"][0]

    r = client.put(
        f"/api/accounting/membership-fees/{fee['id']}/mark-paid", json={"method": "domiciliation"}, headers=admin_headers
    )
    assert r.status_code == 200
    paid = r.json["data"]["fee"]
    assert paid["status"] == "paid"
    assert paid["relatedTransactionId"]

    tx = client.get(f"/api/accounting/transactions/{paid['relatedTransactionId']}", headers=admin_headers).json["data"][
        "transaction"
    ]
    assert (tx["type"], tx["category"], tx["amount"]) == ("income", "membership_fee", 15.0)
    assert tx["paymentMethod"] == "direct_debit"
    assert tx["relatedUserId"] == fee["user"]["id"]

    assert client.put(f"/api/accounting/membership-fees/{fee['id']}/mark-paid", headers=admin_headers).status_code == 400
    r = client.put(f"/api/accounting/membership-fees/{fee['id']}/waive", json={"reason": "x"}, headers=admin_headers)
    assert r.status_code == 400


def test_waive_and_overdue(client, admin_headers, active_members):
    client.post(
        "/api/accounting/membership-fees/generate", json={"year": 2020, "month": 1, "amount": 15}, headers=admin_headers
    )
    overdue = client.get("/api/accounting/membership-fees/overdue", headers=admin_headers).json["data"]
    assert overdue["count"] == 2
    assert all(f["status"] == "overdue" for f in overdue["fees"])

    fee_id = overdue["fees"][0]["id"]
    r = client.put(
        f"/api/accounting/membership-fees/{fee_id}/waive", json={"reason": "Situación de desempleo"}, headers=admin_headers
    )
    assert r.status_code == 200
    assert r.json["data"]["fee"]["status"] == "waived"
    assert r.json["data"]["fee"]["notes"] == "Situación de desempleo"

    overdue = client.get("/api/accounting/membership-fees/overdue", headers=admin_headers).json["data"]
    assert overdue["count"] == 1

    dashboard = client.get("/api/accounting/dashboard", headers=admin_headers).json["data"]
    assert dashboard["alerts"]["overdueFees"] == 1
    assert dashboard["alerts"]["overdueAmount"] == 15.0
