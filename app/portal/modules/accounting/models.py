from __future__ import annotations

import calendar
from datetime import date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING, Any

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    event,
)
from sqlalchemy.orm import Mapped, Session, mapped_column, relationship

from app.portal.models import Base, JSONType, iso, money

if TYPE_CHECKING:
    from app.portal.models import User

CENT = Decimal("0.01")

TRANSACTION_TYPES = ("income", "expense")

INCOME_CATEGORIES = {
    "membership_fee": "Cuota de afiliación",
    "donation": "Donación",
    "course_payment": "Pago de curso",
    "subsidy": "Subvención",
    "other_income": "Otros ingresos",
}
EXPENSE_CATEGORIES = {
    "office_supplies": "Material de oficina",
    "services": "Servicios",
    "salaries": "Salarios",
    "rent": "Alquiler",
    "legal_fees": "Gastos legales",
    "events": "Eventos",
    "communication": "Comunicación",
    "training": "Formación",
    "transport": "Transporte",
    "other_expense": "Otros gastos",
}
CATEGORY_NAMES = {**INCOME_CATEGORIES, **EXPENSE_CATEGORIES}
CATEGORIES = tuple(CATEGORY_NAMES)

TRANSACTION_PAYMENT_METHODS = ("cash", "bank_transfer", "card", "direct_debit", "check", "other")
TRANSACTION_STATUSES = ("pending", "completed", "cancelled", "refunded")

CURRENCIES = ("EUR", "USD", "GBP")
INVOICE_STATUSES = ("draft", "issued", "paid", "partially_paid", "overdue", "cancelled")
INVOICE_OPEN_STATUSES = ("issued", "partially_paid", "overdue")
DEFAULT_TAX_RATE = Decimal("21")
INVOICE_DUE_DAYS = 30

FEE_STATUSES = ("pending", "paid", "overdue", "waived", "cancelled")
FEE_PAYMENT_METHODS = ("cash", "bank_transfer", "card", "stripe", "paypal", "domiciliation", "other")


def to_decimal(value: Any) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value if value is not None else 0))


def cents(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def month_end(year: int, month: int) -> date:
    return date(year, month, calendar.monthrange(year, month)[1])


class Transaction(Base):
    __tablename__ = "transactions"
    __table_args__ = (
        Index("idx_transactions_date", "transaction_date"),
        Index("idx_transactions_type_category", "transaction_type", "category"),
        Index("idx_transactions_fiscal", "fiscal_year", "fiscal_quarter"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    transaction_type: Mapped[str] = mapped_column(String(16), nullable=False)
    category: Mapped[str] = mapped_column(String(32), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    transaction_date: Mapped[date] = mapped_column(Date, nullable=False, default=date.today)
    fiscal_year: Mapped[int | None] = mapped_column(Integer, nullable=True)
    fiscal_quarter: Mapped[int | None] = mapped_column(Integer, nullable=True)

    payment_method: Mapped[str] = mapped_column(String(32), nullable=False, default="bank_transfer")
    reference: Mapped[str | None] = mapped_column(String(128), nullable=True)
    related_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    related_invoice_id: Mapped[int | None] = mapped_column(
        ForeignKey("invoices.id", ondelete="SET NULL"), nullable=True
    )

    status: Mapped[str] = mapped_column(String(16), nullable=False, default="completed")
    requires_approval: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    approved_by_user_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    approval_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    notes: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    registered_by_user_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    @property
    def category_name(self) -> str:
        return CATEGORY_NAMES.get(self.category, self.category)

    @property
    def signed_amount(self) -> Decimal:
        amount = to_decimal(self.amount)
        return amount if self.transaction_type == "income" else -amount

    def derive_fiscal_period(self) -> None:
        d = self.transaction_date or date.today()
        self.fiscal_year = d.year
        self.fiscal_quarter = (d.month - 1) // 3 + 1

    def approve(self, user_id: int) -> None:
        self.status = "completed"
        self.approved_by_user_id = user_id
        self.approval_date = datetime.utcnow()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.transaction_type,
            "category": self.category,
            "categoryName": self.category_name,
            "amount": money(self.amount),
            "description": self.description,
            "transactionDate": iso(self.transaction_date),
            "fiscalYear": self.fiscal_year,
            "fiscalQuarter": self.fiscal_quarter,
            "paymentMethod": self.payment_method,
            "reference": self.reference,
            "relatedUserId": self.related_user_id,
            "relatedInvoiceId": self.related_invoice_id,
            "status": self.status,
            "requiresApproval": self.requires_approval,
            "approvedBy": self.approved_by_user_id,
            "approvalDate": iso(self.approval_date),
            "notes": self.notes,
            "registeredBy": self.registered_by_user_id,
            "createdAt": iso(self.created_at),
        }


class Invoice(Base):
    """
    Stored totals are derived from items and payments. ``recompute()`` runs before
    every flush that touches the invoice or any of its lines.
    """

    __tablename__ = "invoices"
    __table_args__ = (
        UniqueConstraint("invoice_number", name="uq_invoices_invoice_number"),
        Index("idx_invoices_status_due", "status", "due_date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    invoice_number: Mapped[str] = mapped_column(String(32), nullable=False)
    invoice_type: Mapped[str] = mapped_column(String(16), nullable=False)
    series: Mapped[str] = mapped_column(String(8), nullable=False, default="A")
    issue_date: Mapped[date] = mapped_column(Date, nullable=False, default=date.today)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)

    client_name: Mapped[str] = mapped_column(String(200), nullable=False)
    client_tax_id: Mapped[str | None] = mapped_column(String(32), nullable=True)
    client_address: Mapped[str | None] = mapped_column(String(500), nullable=True)
    client_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    client_phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    related_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="EUR")
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="draft")
    subtotal: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    tax_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    total: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    paid_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    pending_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    notes: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    created_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    items: Mapped[list["InvoiceItem"]] = relationship(
        back_populates="invoice", cascade="all, delete-orphan", lazy="selectin", order_by="InvoiceItem.position"
    )
    payments: Mapped[list["InvoicePayment"]] = relationship(
        back_populates="invoice", cascade="all, delete-orphan", lazy="selectin", order_by="InvoicePayment.paid_on"
    )

    def recompute(self, today: date | None = None) -> None:
        today = today or date.today()
        subtotal = Decimal("0")
        tax = Decimal("0")
        for item in self.items:
            item.subtotal = cents(to_decimal(item.quantity) * to_decimal(item.unit_price))
            subtotal += item.subtotal
            tax += item.subtotal * to_decimal(item.tax_rate) / Decimal("100")
        self.subtotal = cents(subtotal)
        self.tax_amount = cents(tax)
        self.total = self.subtotal + self.tax_amount
        self.paid_amount = cents(sum((to_decimal(p.amount) for p in self.payments), Decimal("0")))
        self.pending_amount = max(Decimal("0"), self.total - self.paid_amount)

        if self.status in ("draft", "cancelled"):
            return
        if self.paid_amount >= self.total:
            self.status = "paid"
        elif self.paid_amount > 0:
            self.status = "partially_paid"
        elif self.status == "issued" and self.due_date and self.due_date < today:
            self.status = "overdue"

    def to_dict(self, *, include_lines: bool = True) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "invoiceNumber": self.invoice_number,
            "type": self.invoice_type,
            "series": self.series,
            "issueDate": iso(self.issue_date),
            "dueDate": iso(self.due_date),
            "clientProvider": {
                "name": self.client_name,
                "taxId": self.client_tax_id,
                "address": self.client_address,
                "email": self.client_email,
                "phone": self.client_phone,
            },
            "relatedUserId": self.related_user_id,
            "currency": self.currency,
            "status": self.status,
            "subtotal": money(self.subtotal),
            "taxAmount": money(self.tax_amount),
            "total": money(self.total),
            "paidAmount": money(self.paid_amount),
            "pendingAmount": money(self.pending_amount),
            "notes": self.notes,
            "createdAt": iso(self.created_at),
        }
        if include_lines:
            data["items"] = [i.to_dict() for i in self.items]
            data["payments"] = [p.to_dict() for p in self.payments]
        return data


class InvoiceItem(Base):
    __tablename__ = "invoice_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    invoice_id: Mapped[int] = mapped_column(ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("1"))
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    tax_rate: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False, default=DEFAULT_TAX_RATE)
    subtotal: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))

    invoice: Mapped[Invoice] = relationship(back_populates="items")

    def to_dict(self) -> dict[str, Any]:
        return {
            "description": self.description,
            "quantity": money(self.quantity),
            "unitPrice": money(self.unit_price),
            "taxRate": money(self.tax_rate),
            "subtotal": money(self.subtotal),
        }


class InvoicePayment(Base):
    __tablename__ = "invoice_payments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    invoice_id: Mapped[int] = mapped_column(ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    paid_on: Mapped[date] = mapped_column(Date, nullable=False, default=date.today)
    method: Mapped[str] = mapped_column(String(32), nullable=False, default="bank_transfer")
    reference: Mapped[str | None] = mapped_column(String(128), nullable=True)
    notes: Mapped[str | None] = mapped_column(String(500), nullable=True)

    invoice: Mapped[Invoice] = relationship(back_populates="payments")

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "amount": money(self.amount),
            "date": iso(self.paid_on),
            "method": self.method,
            "reference": self.reference,
            "notes": self.notes,
        }


class MembershipFee(Base):
    __tablename__ = "membership_fees"
    __table_args__ = (
        UniqueConstraint("user_id", "year", "month", name="uq_membership_fees_user_period"),
        Index("idx_membership_fees_status", "status"),
        Index("idx_membership_fees_due", "due_date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="EUR")
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    due_date: Mapped[date] = mapped_column(Date, nullable=False)

    paid_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    payment_method: Mapped[str | None] = mapped_column(String(32), nullable=True)
    payment_reference: Mapped[str | None] = mapped_column(String(128), nullable=True)
    related_transaction_id: Mapped[int | None] = mapped_column(
        ForeignKey("transactions.id", ondelete="SET NULL"), nullable=True
    )
    notes: Mapped[str | None] = mapped_column(String(500), nullable=True)
    reminders: Mapped[list | None] = mapped_column(JSONType, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    user: Mapped["User"] = relationship(lazy="selectin")

    @classmethod
    def for_period(cls, user_id: int, year: int, month: int, amount: Decimal) -> "MembershipFee":
        return cls(
            user_id=user_id, year=year, month=month, amount=cents(to_decimal(amount)),
            status="pending", due_date=month_end(year, month),
        )

    def refresh_overdue(self, today: date | None = None) -> None:
        today = today or date.today()
        if self.status == "pending" and self.due_date and self.due_date < today:
            self.status = "overdue"

    def mark_paid(self, *, paid_on: date | None = None, method: str | None = None, reference: str | None = None) -> None:
        self.status = "paid"
        self.paid_date = paid_on or date.today()
        self.payment_method = method or "bank_transfer"
        self.payment_reference = reference or None

    def waive(self, reason: str | None = None) -> None:
        self.status = "waived"
        self.notes = reason or "Cuota exonerada"

    def to_dict(self) -> dict[str, Any]:
        user = self.user
        return {
            "id": self.id,
            "user": {"id": user.id, "name": user.name, "email": user.email} if user is not None else None,
            "period": {"year": self.year, "month": self.month},
            "amount": money(self.amount),
            "currency": self.currency,
            "status": self.status,
            "dueDate": iso(self.due_date),
            "paidDate": iso(self.paid_date),
            "paymentMethod": self.payment_method,
            "paymentReference": self.payment_reference,
            "relatedTransactionId": self.related_transaction_id,
            "notes": self.notes,
            "reminders": self.reminders or [],
        }


def default_due_date(issue_date: date) -> date:
    return issue_date + timedelta(days=INVOICE_DUE_DAYS)


@event.listens_for(Session, "before_flush")
def _derive_accounting_fields(session: Session, flush_context, instances) -> None:
    invoices: set[Invoice] = set()
    for obj in list(session.new) + list(session.dirty):
        if isinstance(obj, Invoice):
            invoices.add(obj)
        elif isinstance(obj, (InvoiceItem, InvoicePayment)) and obj.invoice is not None:
            invoices.add(obj.invoice)
        elif isinstance(obj, MembershipFee):
            obj.refresh_overdue()
        elif isinstance(obj, Transaction):
            obj.derive_fiscal_period()
    for invoice in invoices:
        if invoice not in session.deleted:
            invoice.recompute()
