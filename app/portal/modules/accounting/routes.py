from __future__ import annotations

from datetime import date

from flask import Blueprint, request

from app.portal.db import db_session
from app.portal.http import BadRequest, get_json_body, ok, page_meta, pagination_args
from app.portal.modules.accounting import service
from app.portal.rbac import admin_user, authenticated_user

bp = Blueprint("accounting", __name__)


@bp.before_request
def _admins_only():
    if request.method != "OPTIONS":
        admin_user()


def _int_arg(name: str) -> int | None:
    raw = request.args.get(name)
    if raw in (None, ""):
        return None
    try:
        return int(raw)
    except ValueError:
        raise BadRequest(f"Parámetro '{name}' inválido") from None


def _date_arg(name: str) -> date | None:
    raw = request.args.get(name)
    if not raw:
        return None
    try:
        return date.fromisoformat(raw[:10])
    except ValueError:
        raise BadRequest(f"Parámetro '{name}' inválido") from None


@bp.get("/dashboard")
def dashboard():
    s = db_session()
    data = service.dashboard(s)
    s.commit()
    return ok(data)


# Transactions


@bp.get("/transactions")
def transactions_list():
    page, limit = pagination_args(default_limit=50)
    rows, total = service.list_transactions(
        db_session(),
        page=page,
        limit=limit,
        transaction_type=request.args.get("type"),
        category=request.args.get("category"),
        status=request.args.get("status"),
        year=_int_arg("year"),
        date_from=_date_arg("from"),
        date_to=_date_arg("to"),
    )
    return ok({"transactions": [t.to_dict() for t in rows], "pagination": page_meta(total, page, limit)})


@bp.post("/transactions")
def transactions_create():
    s = db_session()
    tx = service.create_transaction(s, get_json_body(), authenticated_user())
    s.commit()
    return ok({"transaction": tx.to_dict()}, message="Transacción registrada correctamente", status=201)


@bp.get("/transactions/stats/by-category")
def transactions_by_category():
    year = _int_arg("year") or date.today().year
    data = service.totals_by_category(db_session(), year=year, transaction_type=request.args.get("type"))
    return ok({"year": year, "categories": data})


@bp.get("/transactions/<int:transaction_id>")
def transactions_get(transaction_id: int):
    return ok({"transaction": service.get_transaction_or_404(db_session(), transaction_id).to_dict()})


@bp.put("/transactions/<int:transaction_id>")
def transactions_update(transaction_id: int):
    s = db_session()
    tx = service.get_transaction_or_404(s, transaction_id)
    service.update_transaction(s, tx, get_json_body(), authenticated_user())
    s.commit()
    return ok({"transaction": tx.to_dict()}, message="Transacción actualizada")


@bp.delete("/transactions/<int:transaction_id>")
def transactions_cancel(transaction_id: int):
    s = db_session()
    tx = service.get_transaction_or_404(s, transaction_id)
    service.cancel_transaction(s, tx, authenticated_user())
    s.commit()
    return ok({"transaction": tx.to_dict()}, message="Transacción cancelada")


@bp.put("/transactions/<int:transaction_id>/approve")
def transactions_approve(transaction_id: int):
    s = db_session()
    tx = service.get_transaction_or_404(s, transaction_id)
    service.approve_transaction(s, tx, authenticated_user())
    s.commit()
    return ok({"transaction": tx.to_dict()}, message="Transacción aprobada")


# Invoices


@bp.get("/invoices")
def invoices_list():
    page, limit = pagination_args()
    rows, total = service.list_invoices(
        db_session(),
        page=page,
        limit=limit,
        status=request.args.get("status"),
        invoice_type=request.args.get("type"),
        year=_int_arg("year"),
    )
    return ok(
        {"invoices": [i.to_dict(include_lines=False) for i in rows], "pagination": page_meta(total, page, limit)}
    )


@bp.post("/invoices")
def invoices_create():
    s = db_session()
    invoice = service.create_invoice(s, get_json_body(), authenticated_user())
    s.commit()
    return ok({"invoice": invoice.to_dict()}, message="Factura creada correctamente", status=201)


@bp.get("/invoices/<int:invoice_id>")
def invoices_get(invoice_id: int):
    return ok({"invoice": service.get_invoice_or_404(db_session(), invoice_id).to_dict()})


@bp.put("/invoices/<int:invoice_id>/issue")
def invoices_issue(invoice_id: int):
    s = db_session()
    invoice = service.issue_invoice(s, service.get_invoice_or_404(s, invoice_id), authenticated_user())
    s.commit()
    return ok({"invoice": invoice.to_dict()}, message="Factura emitida")


@bp.put("/invoices/<int:invoice_id>/cancel")
def invoices_cancel(invoice_id: int):
    s = db_session()
    invoice = service.cancel_invoice(s, service.get_invoice_or_404(s, invoice_id), authenticated_user())
    s.commit()
    return ok({"invoice": invoice.to_dict()}, message="Factura cancelada")


@bp.post("/invoices/<int:invoice_id>/payments")
def invoices_add_payment(invoice_id: int):
    s = db_session()
    invoice = service.get_invoice_or_404(s, invoice_id)
    service.add_invoice_payment(s, invoice, get_json_body(), authenticated_user())
    s.commit()
    return ok({"invoice": invoice.to_dict()}, message="Pago registrado correctamente")


# Membership fees


@bp.get("/membership-fees")
def fees_list():
    page, limit = pagination_args(default_limit=50)
    rows, total = service.list_fees(
        db_session(),
        page=page,
        limit=limit,
        status=request.args.get("status"),
        year=_int_arg("year"),
        month=_int_arg("month"),
        user_id=_int_arg("userId"),
    )
    return ok({"fees": [f.to_dict() for f in rows], "pagination": page_meta(total, page, limit)})


@bp.post("/membership-fees/generate")
def fees_generate():
    s = db_session()
    result = service.generate_fees(s, get_json_body(), authenticated_user())
    s.commit()
    return ok(result, message=f"{result['created']} cuotas generadas", status=201)


@bp.put("/membership-fees/<int:fee_id>/mark-paid")
def fees_mark_paid(fee_id: int):
    s = db_session()
    fee = service.mark_fee_paid(s, service.get_fee_or_404(s, fee_id), get_json_body(), authenticated_user())
    s.commit()
    return ok({"fee": fee.to_dict()}, message="Cuota marcada como pagada")


@bp.put("/membership-fees/<int:fee_id>/waive")
def fees_waive(fee_id: int):
    s = db_session()
    reason = get_json_body().get("reason")
    fee = service.waive_fee(s, service.get_fee_or_404(s, fee_id), str(reason)[:500] if reason else None, authenticated_user())
    s.commit()
    return ok({"fee": fee.to_dict()}, message="Cuota exonerada")


@bp.get("/membership-fees/overdue")
def fees_overdue():
    s = db_session()
    fees = service.overdue_fees(s)
    s.commit()
    return ok({"fees": [f.to_dict() for f in fees], "count": len(fees)})


# Reports


@bp.get("/reports/annual")
def report_annual():
    year = _int_arg("year") or date.today().year
    return ok(service.annual_report(db_session(), year))
