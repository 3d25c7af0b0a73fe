from __future__ import annotations

import dataclasses
import logging
from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from sqlalchemy import and_, extract, func, select
from sqlalchemy.exc import IntegrityError

from app.portal.audit import record_event
from app.portal.http import BadRequest, NotFound
from app.portal.models import MEMBERSHIP_ACTIVE, ROLE_MEMBER, User, money
from app.portal.modules.accounting.models import (
    CATEGORIES,
    CATEGORY_NAMES,
    CURRENCIES,
    EXPENSE_CATEGORIES,
    FEE_PAYMENT_METHODS,
    FEE_STATUSES,
    INCOME_CATEGORIES,
    INVOICE_OPEN_STATUSES,
    INVOICE_STATUSES,
    TRANSACTION_PAYMENT_METHODS,
    TRANSACTION_STATUSES,
    TRANSACTION_TYPES,
    Invoice,
    InvoiceItem,
    InvoicePayment,
    MembershipFee,
    Transaction,
    cents,
    default_due_date,
    to_decimal,
)
from app.portal.validation import Field, require_valid, validate_payload

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

TRANSACTION_RULES = (
    Field("type", choices=TRANSACTION_TYPES),
    Field("category", choices=CATEGORIES),
    Field("amount", kind="decimal", min_value=0.01, message="El monto debe ser mayor que 0"),
    Field("description", max_len=500),
    Field("transactionDate", kind="date", required=False),
    Field("paymentMethod", required=False, choices=TRANSACTION_PAYMENT_METHODS),
    Field("reference", required=False, max_len=128),
    Field("relatedUserId", kind="int", required=False),
    Field("relatedInvoiceId", kind="int", required=False),
    Field("status", required=False, choices=TRANSACTION_STATUSES),
    Field("requiresApproval", kind="bool", required=False),
    Field("notes", required=False, max_len=1000),
)

INVOICE_RULES = (
    Field("type", choices=TRANSACTION_TYPES),
    Field("series", required=False, max_len=8, min_len=1),
    Field("issueDate", kind="date", required=False),
    Field("dueDate", kind="date", required=False),
    Field("clientProvider", kind="dict"),
    Field("items", kind="list"),
    Field("currency", required=False, choices=CURRENCIES),
    Field("relatedUserId", kind="int", required=False),
    Field("notes", required=False, max_len=1000),
)

INVOICE_ITEM_RULES = (
    Field("description", max_len=500),
    Field("quantity", kind="decimal", required=False, min_value=0),
    Field("unitPrice", kind="decimal", min_value=0),
    Field("taxRate", kind="decimal", required=False, min_value=0, max_value=100),
)

CLIENT_RULES = (
    Field("name", max_len=200, message="El nombre del cliente/proveedor es obligatorio"),
    Field("taxId", required=False, max_len=32),
    Field("address", required=False, max_len=500),
    Field("email", kind="email", required=False),
    Field("phone", required=False, max_len=32),
)

INVOICE_PAYMENT_RULES = (
    Field("amount", kind="decimal", min_value=0.01, message="El monto debe ser mayor que 0"),
    Field("date", kind="date", required=False),
    Field("method", required=False, max_len=32),
    Field("reference", required=False, max_len=128),
    Field("notes", required=False, max_len=500),
)

FEE_GENERATE_RULES = (
    Field("year", kind="int", min_value=2000, max_value=2100),
    Field("month", kind="int", min_value=1, max_value=12),
    Field("amount", kind="decimal", min_value=0.01),
)

FEE_PAYMENT_RULES = (
    Field("date", kind="date", required=False),
    Field("method", required=False, choices=FEE_PAYMENT_METHODS),
    Field("reference", required=False, max_len=128),
)


def _as_date(value: datetime | None) -> date | None:
    return value.date() if value is not None else None


def _nested_errors(prefix: str, errors: list[dict[str, str]]) -> list[dict[str, str]]:
    return [{"field": f"{prefix}.{e['field']}", "message": e["message"]} for e in errors]


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------


def _check_category(transaction_type: str, category: str) -> None:
    allowed = INCOME_CATEGORIES if transaction_type == "income" else EXPENSE_CATEGORIES
    if category not in allowed:
        raise BadRequest(
            "Categoría no válida para el tipo de transacción",
            details=[{"field": "category", "message": f"'{category}' no es una categoría de {transaction_type}"}],
        )


def get_transaction_or_404(s: "Session", transaction_id: int) -> Transaction:
    tx = s.get(Transaction, transaction_id)
    if tx is None:
        raise NotFound("Transacción no encontrada")
    return tx


def create_transaction(s: "Session", payload: dict[str, Any], actor: User) -> Transaction:
    data = require_valid(payload, TRANSACTION_RULES)
    _check_category(data["type"], data["category"])
    requires_approval = bool(data.get("requiresApproval", False))
    tx = Transaction(
        transaction_type=data["type"],
        category=data["category"],
        amount=cents(data["amount"]),
        description=data["description"],
        transaction_date=_as_date(data.get("transactionDate")) or date.today(),
        payment_method=data.get("paymentMethod") or "bank_transfer",
        reference=data.get("reference"),
        related_user_id=data.get("relatedUserId"),
        related_invoice_id=data.get("relatedInvoiceId"),
        status=data.get("status") or ("pending" if requires_approval else "completed"),
        requires_approval=requires_approval,
        notes=data.get("notes"),
        registered_by_user_id=actor.id,
    )
    s.add(tx)
    s.flush()
    record_event(
        s, actor=actor, action="accounting.transaction.create", entity_type="Transaction", entity_id=tx.id,
        metadata={"type": tx.transaction_type, "category": tx.category, "amount": money(tx.amount)},
    )
    return tx


def update_transaction(s: "Session", tx: Transaction, payload: dict[str, Any], actor: User) -> Transaction:
    rules = tuple(dataclasses.replace(r, required=False) for r in TRANSACTION_RULES)
    data = require_valid(payload, rules)
    if "type" in data or "category" in data:
        _check_category(data.get("type", tx.transaction_type), data.get("category", tx.category))
    mapping = {
        "type": "transaction_type",
        "category": "category",
        "description": "description",
        "paymentMethod": "payment_method",
        "reference": "reference",
        "relatedUserId": "related_user_id",
        "relatedInvoiceId": "related_invoice_id",
        "status": "status",
        "requiresApproval": "requires_approval",
        "notes": "notes",
    }
    for key, attr in mapping.items():
        if key in data:
            setattr(tx, attr, data[key])
    if "amount" in data:
        tx.amount = cents(data["amount"])
    if "transactionDate" in data:
        tx.transaction_date = _as_date(data["transactionDate"])
    record_event(
        s, actor=actor, action="accounting.transaction.update", entity_type="Transaction", entity_id=tx.id,
        metadata={"fields": sorted(data)},
    )
    return tx


def cancel_transaction(s: "Session", tx: Transaction, actor: User) -> Transaction:
    tx.status = "cancelled"
    record_event(s, actor=actor, action="accounting.transaction.cancel", entity_type="Transaction", entity_id=tx.id)
    return tx


def approve_transaction(s: "Session", tx: Transaction, actor: User) -> Transaction:
    if tx.status != "pending":
        raise BadRequest("Solo se pueden aprobar transacciones pendientes")
    tx.approve(actor.id)
    record_event(s, actor=actor, action="accounting.transaction.approve", entity_type="Transaction", entity_id=tx.id)
    return tx


def list_transactions(
    s: "Session",
    *,
    page: int,
    limit: int,
    transaction_type: str | None = None,
    category: str | None = None,
    status: str | None = None,
    year: int | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
) -> tuple[list[Transaction], int]:
    stmt = select(Transaction)
    if transaction_type:
        stmt = stmt.where(Transaction.transaction_type == transaction_type)
    if category:
        stmt = stmt.where(Transaction.category == category)
    if status:
        stmt = stmt.where(Transaction.status == status)
    if year:
        stmt = stmt.where(Transaction.fiscal_year == year)
    if date_from:
        stmt = stmt.where(Transaction.transaction_date >= date_from)
    if date_to:
        stmt = stmt.where(Transaction.transaction_date <= date_to)
    total = s.scalar(select(func.count()).select_from(stmt.subquery())) or 0
    rows = s.scalars(
        stmt.order_by(Transaction.transaction_date.desc(), Transaction.id.desc()).offset((page - 1) * limit).limit(limit)
    ).all()
    return list(rows), total


def balance(s: "Session", *, year: int | None = None) -> dict[str, float]:
    stmt = select(Transaction.transaction_type, func.coalesce(func.sum(Transaction.amount), 0)).where(
        Transaction.status == "completed"
    )
    if year:
        stmt = stmt.where(Transaction.fiscal_year == year)
    totals = {t: to_decimal(v) for t, v in s.execute(stmt.group_by(Transaction.transaction_type)).all()}
    income = totals.get("income", Decimal("0"))
    expense = totals.get("expense", Decimal("0"))
    return {"income": money(income), "expense": money(expense), "balance": money(income - expense)}


def totals_by_category(s: "Session", *, year: int | None = None, transaction_type: str | None = None) -> list[dict]:
    stmt = select(
        Transaction.transaction_type,
        Transaction.category,
        func.count(Transaction.id),
        func.coalesce(func.sum(Transaction.amount), 0),
    ).where(Transaction.status == "completed")
    if year:
        stmt = stmt.where(Transaction.fiscal_year == year)
    if transaction_type:
        stmt = stmt.where(Transaction.transaction_type == transaction_type)
    rows = s.execute(stmt.group_by(Transaction.transaction_type, Transaction.category)).all()
    out = [
        {
            "type": t,
            "category": c,
            "categoryName": CATEGORY_NAMES.get(c, c),
            "count": n,
            "total": money(to_decimal(total)),
        }
        for t, c, n, total in rows
    ]
    out.sort(key=lambda r: r["total"], reverse=True)
    return out


def monthly_stats(s: "Session", year: int) -> list[dict[str, Any]]:
    month = extract("month", Transaction.transaction_date)
    rows = s.execute(
        select(month, Transaction.transaction_type, func.coalesce(func.sum(Transaction.amount), 0))
        .where(and_(Transaction.status == "completed", Transaction.fiscal_year == year))
        .group_by(month, Transaction.transaction_type)
    ).all()
    months = {m: {"month": m, "income": Decimal("0"), "expense": Decimal("0")} for m in range(1, 13)}
    for m, t, total in rows:
        months[int(m)][t] = to_decimal(total)
    return [
        {
            "month": m,
            "income": money(v["income"]),
            "expense": money(v["expense"]),
            "balance": money(v["income"] - v["expense"]),
        }
        for m, v in sorted(months.items())
    ]


# ---------------------------------------------------------------------------
# Invoices
# ---------------------------------------------------------------------------


def next_invoice_number(s: "Session", series: str, year: int) -> str:
    prefix = f"{series}-{year}-"
    numbers = s.scalars(select(Invoice.invoice_number).where(Invoice.invoice_number.like(f"{prefix}%"))).all()
    last = 0
    for number in numbers:
        tail = number[len(prefix):]
        if tail.isdigit():
            last = max(last, int(tail))
    return f"{prefix}{last + 1:04d}"


def get_invoice_or_404(s: "Session", invoice_id: int) -> Invoice:
    invoice = s.get(Invoice, invoice_id)
    if invoice is None:
        raise NotFound("Factura no encontrada")
    return invoice


def create_invoice(s: "Session", payload: dict[str, Any], actor: User) -> Invoice:
    data = require_valid(payload, INVOICE_RULES)
    if not data["items"]:
        raise BadRequest("Faltan campos obligatorios", details=[{"field": "items", "message": "Debe incluir al menos una línea"}])

    client = require_valid(data["clientProvider"], CLIENT_RULES)
    items: list[InvoiceItem] = []
    errors: list[dict[str, str]] = []
    for idx, raw in enumerate(data["items"]):
        if not isinstance(raw, dict):
            errors.append({"field": f"items[{idx}]", "message": "Debe ser un objeto"})
            continue
        line, line_errors = validate_payload(raw, INVOICE_ITEM_RULES)
        if line_errors:
            errors.extend(_nested_errors(f"items[{idx}]", line_errors))
            continue
        items.append(
            InvoiceItem(
                position=idx,
                description=line["description"],
                quantity=line.get("quantity", Decimal("1")),
                unit_price=line["unitPrice"],
                tax_rate=line.get("taxRate", Decimal("21")),
            )
        )
    if errors:
        raise BadRequest("Datos inválidos", details=errors)

    issue_date = _as_date(data.get("issueDate")) or date.today()
    series = data.get("series") or "A"
    invoice = Invoice(
        invoice_number=next_invoice_number(s, series, issue_date.year),
        invoice_type=data["type"],
        series=series,
        issue_date=issue_date,
        due_date=_as_date(data.get("dueDate")) or default_due_date(issue_date),
        client_name=client["name"],
        client_tax_id=client.get("taxId"),
        client_address=client.get("address"),
        client_email=client.get("email"),
        client_phone=client.get("phone"),
        related_user_id=data.get("relatedUserId"),
        currency=data.get("currency") or "EUR",
        status="draft",
        notes=data.get("notes"),
        created_by_user_id=actor.id,
    )
    invoice.items = items
    s.add(invoice)
    s.flush()
    record_event(
        s, actor=actor, action="accounting.invoice.create", entity_type="Invoice", entity_id=invoice.id,
        metadata={"number": invoice.invoice_number, "total": money(invoice.total)},
    )
    logger.info("Invoice %s created (total=%s)", invoice.invoice_number, invoice.total)
    return invoice


def issue_invoice(s: "Session", invoice: Invoice, actor: User) -> Invoice:
    if invoice.status != "draft":
        raise BadRequest("Solo se pueden emitir facturas en borrador")
    invoice.status = "issued"
    invoice.recompute()
    record_event(s, actor=actor, action="accounting.invoice.issue", entity_type="Invoice", entity_id=invoice.id)
    return invoice


def cancel_invoice(s: "Session", invoice: Invoice, actor: User) -> Invoice:
    if invoice.status == "paid":
        raise BadRequest("No se puede cancelar una factura pagada")
    invoice.status = "cancelled"
    record_event(s, actor=actor, action="accounting.invoice.cancel", entity_type="Invoice", entity_id=invoice.id)
    return invoice


def add_invoice_payment(s: "Session", invoice: Invoice, payload: dict[str, Any], actor: User) -> Invoice:
    data = require_valid(payload, INVOICE_PAYMENT_RULES)
    if invoice.status in ("draft", "cancelled"):
        raise BadRequest("La factura debe estar emitida para registrar pagos")
    invoice.payments.append(
        InvoicePayment(
            amount=cents(data["amount"]),
            paid_on=_as_date(data.get("date")) or date.today(),
            method=data.get("method") or "bank_transfer",
            reference=data.get("reference"),
            notes=data.get("notes"),
        )
    )
    invoice.recompute()
    record_event(
        s, actor=actor, action="accounting.invoice.payment", entity_type="Invoice", entity_id=invoice.id,
        metadata={"amount": money(data["amount"]), "status": invoice.status},
    )
    return invoice


def list_invoices(
    s: "Session",
    *,
    page: int,
    limit: int,
    status: str | None = None,
    invoice_type: str | None = None,
    year: int | None = None,
) -> tuple[list[Invoice], int]:
    stmt = select(Invoice)
    if status:
        if status not in INVOICE_STATUSES:
            raise BadRequest("Estado de factura no válido")
        stmt = stmt.where(Invoice.status == status)
    if invoice_type:
        stmt = stmt.where(Invoice.invoice_type == invoice_type)
    if year:
        stmt = stmt.where(Invoice.invoice_number.like(f"%-{year}-%"))
    total = s.scalar(select(func.count()).select_from(stmt.subquery())) or 0
    rows = s.scalars(stmt.order_by(Invoice.issue_date.desc(), Invoice.id.desc()).offset((page - 1) * limit).limit(limit)).all()
    return list(rows), total


def invoice_summary(s: "Session", statuses: tuple[str, ...] = INVOICE_OPEN_STATUSES) -> dict[str, Any]:
    rows = s.execute(
        select(
            Invoice.status,
            func.count(Invoice.id),
            func.coalesce(func.sum(Invoice.total), 0),
            func.coalesce(func.sum(Invoice.paid_amount), 0),
            func.coalesce(func.sum(Invoice.pending_amount), 0),
        )
        .where(Invoice.status.in_(statuses))
        .group_by(Invoice.status)
    ).all()
    by_status = {
        st: {"count": n, "total": money(to_decimal(t)), "paid": money(to_decimal(p)), "pending": money(to_decimal(pe))}
        for st, n, t, p, pe in rows
    }
    return {
        "count": sum(v["count"] for v in by_status.values()),
        "pendingAmount": money(sum((Decimal(str(v["pending"])) for v in by_status.values()), Decimal("0"))),
        "byStatus": by_status,
    }


# ---------------------------------------------------------------------------
# Membership fees
# ---------------------------------------------------------------------------


def get_fee_or_404(s: "Session", fee_id: int) -> MembershipFee:
    fee = s.get(MembershipFee, fee_id)
    if fee is None:
        raise NotFound("Cuota no encontrada")
    return fee


def list_fees(
    s: "Session",
    *,
    page: int,
    limit: int,
    status: str | None = None,
    year: int | None = None,
    month: int | None = None,
    user_id: int | None = None,
) -> tuple[list[MembershipFee], int]:
    stmt = select(MembershipFee)
    if status:
        if status not in FEE_STATUSES:
            raise BadRequest("Estado de cuota no válido")
        stmt = stmt.where(MembershipFee.status == status)
    if year:
        stmt = stmt.where(MembershipFee.year == year)
    if month:
        stmt = stmt.where(MembershipFee.month == month)
    if user_id:
        stmt = stmt.where(MembershipFee.user_id == user_id)
    total = s.scalar(select(func.count()).select_from(stmt.subquery())) or 0
    rows = s.scalars(
        stmt.order_by(MembershipFee.year.desc(), MembershipFee.month.desc(), MembershipFee.id)
        .offset((page - 1) * limit)
        .limit(limit)
    ).all()
    return list(rows), total


def generate_fees(s: "Session", payload: dict[str, Any], actor: User) -> dict[str, Any]:
    """
    Create one pending fee per active affiliate for the period. Existing fees are
    skipped; a failure for one member is reported and does not stop the batch.
    """
    data = require_valid(payload, FEE_GENERATE_RULES)
    year, month, amount = data["year"], data["month"], data["amount"]
    members = s.scalars(
        select(User).where(
            User.role == ROLE_MEMBER, User.membership_status == MEMBERSHIP_ACTIVE, User.is_active.is_(True)
        )
    ).all()
    existing = set(
        s.scalars(
            select(MembershipFee.user_id).where(MembershipFee.year == year, MembershipFee.month == month)
        ).all()
    )
    created = 0
    skipped = 0
    errors: list[dict[str, Any]] = []
    for member in members:
        if member.id in existing:
            skipped += 1
            continue
        try:
            with s.begin_nested():
                s.add(MembershipFee.for_period(member.id, year, month, amount))
        except IntegrityError as e:
            errors.append({"userId": member.id, "userName": member.name, "error": str(e.orig)})
            continue
        created += 1
    record_event(
        s, actor=actor, action="accounting.fees.generate", entity_type="MembershipFee", entity_id=f"{year}-{month:02d}",
        metadata={"created": created, "skipped": skipped, "errors": len(errors)},
    )
    logger.info("Membership fees %s-%02d: created=%s skipped=%s errors=%s", year, month, created, skipped, len(errors))
    return {"created": created, "skipped": skipped, "errors": errors}


def mark_fee_paid(s: "Session", fee: MembershipFee, payload: dict[str, Any], actor: User) -> MembershipFee:
    """Marks the fee paid and books the matching membership_fee income."""
    if fee.status in ("paid", "waived", "cancelled"):
        raise BadRequest(f"La cuota ya está en estado '{fee.status}'")
    data = require_valid(payload, FEE_PAYMENT_RULES)
    paid_on = _as_date(data.get("date")) or date.today()
    fee.mark_paid(paid_on=paid_on, method=data.get("method"), reference=data.get("reference"))

    tx_method = fee.payment_method if fee.payment_method in ("cash", "bank_transfer", "card") else "other"
    if fee.payment_method == "domiciliation":
        tx_method = "direct_debit"
    tx = Transaction(
        transaction_type="income",
        category="membership_fee",
        amount=fee.amount,
        description=f"Cuota de afiliación {fee.month:02d}/{fee.year}",
        transaction_date=paid_on,
        payment_method=tx_method,
        reference=fee.payment_reference,
        related_user_id=fee.user_id,
        status="completed",
        registered_by_user_id=actor.id,
    )
    s.add(tx)
    s.flush()
    fee.related_transaction_id = tx.id
    record_event(
        s, actor=actor, action="accounting.fee.paid", entity_type="MembershipFee", entity_id=fee.id,
        metadata={"transactionId": tx.id, "amount": money(fee.amount)},
    )
    return fee


def waive_fee(s: "Session", fee: MembershipFee, reason: str | None, actor: User) -> MembershipFee:
    if fee.status == "paid":
        raise BadRequest("No se puede exonerar una cuota pagada")
    fee.waive(reason)
    record_event(s, actor=actor, action="accounting.fee.waive", entity_type="MembershipFee", entity_id=fee.id, reason=reason)
    return fee


def overdue_fees(s: "Session", today: date | None = None) -> list[MembershipFee]:
    """Pending fees past their due date are flipped to overdue as they are read."""
    today = today or date.today()
    stale = s.scalars(
        select(MembershipFee).where(MembershipFee.status == "pending", MembershipFee.due_date < today)
    ).all()
    for fee in stale:
        fee.refresh_overdue(today)
    if stale:
        s.flush()
    return list(
        s.scalars(
            select(MembershipFee).where(MembershipFee.status == "overdue").order_by(MembershipFee.due_date)
        ).all()
    )


def fee_summary(s: "Session", *, year: int) -> dict[str, Any]:
    rows = s.execute(
        select(MembershipFee.status, func.count(MembershipFee.id), func.coalesce(func.sum(MembershipFee.amount), 0))
        .where(MembershipFee.year == year)
        .group_by(MembershipFee.status)
    ).all()
    by_status = {st: {"count": n, "amount": money(to_decimal(a))} for st, n, a in rows}
    return {st: by_status.get(st, {"count": 0, "amount": 0.0}) for st in FEE_STATUSES}


# ---------------------------------------------------------------------------
# Dashboard and reports
# ---------------------------------------------------------------------------


def dashboard(s: "Session", today: date | None = None) -> dict[str, Any]:
    today = today or date.today()
    overdue = overdue_fees(s, today)
    fees = fee_summary(s, year=today.year)
    month_row = monthly_stats(s, today.year)[today.month - 1]
    pending_approvals = s.scalars(
        select(Transaction)
        .where(Transaction.transaction_type == "expense", Transaction.requires_approval.is_(True), Transaction.status == "pending")
        .order_by(Transaction.created_at.desc())
    ).all()
    recent = s.scalars(
        select(Transaction).order_by(Transaction.transaction_date.desc(), Transaction.id.desc()).limit(10)
    ).all()
    return {
        "balance": {"total": balance(s), "currentYear": balance(s, year=today.year)},
        "currentMonth": month_row,
        "membershipFees": fees,
        "pendingFees": fees["pending"],
        "invoices": {"pending": invoice_summary(s)},
        "alerts": {
            "overdueFees": len(overdue),
            "overdueAmount": money(sum((to_decimal(f.amount) for f in overdue), Decimal("0"))),
            "pendingApprovals": len(pending_approvals),
        },
        "pendingApprovals": [t.to_dict() for t in pending_approvals],
        "recentTransactions": [t.to_dict() for t in recent],
        "monthlyStats": monthly_stats(s, today.year),
    }


def annual_report(s: "Session", year: int) -> dict[str, Any]:
    return {
        "year": year,
        "balance": balance(s, year=year),
        "monthly": monthly_stats(s, year),
        "byCategory": totals_by_category(s, year=year),
        "membershipFees": fee_summary(s, year=year),
    }
