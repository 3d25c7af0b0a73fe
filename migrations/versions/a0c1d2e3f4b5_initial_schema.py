"""initial schema

Revision ID: a0c1d2e3f4b5
Revises:
Create Date: 2026-10-19 10:12:41.208553

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = 'a0c1d2e3f4b5'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSONType = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    ]


def _user_fk(name: str, ondelete: str = "SET NULL", nullable: bool = True) -> sa.Column:
    return sa.Column(name, sa.Integer(), sa.ForeignKey("users.id", ondelete=ondelete), nullable=nullable)


def upgrade() -> None:
    """Users, payments, documents, events, suggestions, accounting and captcha tables."""
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(320), nullable=False, unique=True),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("phone", sa.String(15), nullable=True),
        sa.Column("department", sa.String(100), nullable=True),
        sa.Column("profile_photo", sa.Text(), nullable=True),
        sa.Column("role", sa.String(16), nullable=False, server_default="afiliado"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("is_email_verified", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("membership_status", sa.String(16), nullable=False, server_default="pendiente"),
        sa.Column("membership_start_date", sa.DateTime(), nullable=True),
        sa.Column("membership_expiry_date", sa.DateTime(), nullable=True),
        sa.Column("last_login", sa.DateTime(), nullable=True),
        sa.Column("login_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("ip_address", sa.String(64), nullable=True),
        sa.Column("user_agent", sa.String(512), nullable=True),
        *_timestamps(),
    )
    op.create_index("idx_users_role", "users", ["role"])
    op.create_index("idx_users_membership_status", "users", ["membership_status"])

    op.create_table(
        "payment_records",
        sa.Column("id", sa.Integer(), primary_key=True),
        _user_fk("user_id", ondelete="CASCADE", nullable=False),
        sa.Column("stripe_session_id", sa.String(255), nullable=True),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(8), nullable=False, server_default="eur"),
        sa.Column("description", sa.String(255), nullable=True),
        sa.Column("status", sa.String(32), nullable=False, server_default="completed"),
        sa.Column("paid_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("stripe_session_id", name="uq_payment_records_stripe_session_id"),
    )
    op.create_index("idx_payment_records_user_id", "payment_records", ["user_id", "paid_at"])

    op.create_table(
        "course_enrollments",
        sa.Column("id", sa.Integer(), primary_key=True),
        _user_fk("user_id", ondelete="CASCADE", nullable=False),
        sa.Column("course_id", sa.String(64), nullable=False),
        sa.Column("course_name", sa.String(255), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="enrolled"),
        sa.Column("enrolled_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("idx_course_enrollments_user_id", "course_enrollments", ["user_id"])

    op.create_table(
        "refresh_tokens",
        sa.Column("id", sa.Integer(), primary_key=True),
        _user_fk("user_id", ondelete="CASCADE", nullable=False),
        sa.Column("token_hash", sa.String(64), nullable=False, unique=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
    )

    op.create_table(
        "audit_events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("request_id", sa.String(64), nullable=True),
        _user_fk("actor_user_id"),
        sa.Column("actor_user_email", sa.String(320), nullable=True),
        sa.Column("action", sa.String(128), nullable=False),
        sa.Column("entity_type", sa.String(128), nullable=True),
        sa.Column("entity_id", sa.String(128), nullable=True),
        sa.Column("reason", sa.String(512), nullable=True),
        sa.Column("metadata_json", JSONType, nullable=True),
        sa.Column("client_ip", sa.String(64), nullable=True),
    )
    op.create_index("idx_audit_events_entity", "audit_events", ["entity_type", "entity_id"])

    op.create_table(
        "documents",
        sa.Column("id", sa.Integer(), primary_key=True),
        _user_fk("user_id", ondelete="CASCADE", nullable=False),
        sa.Column("doc_type", sa.String(32), nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("description", sa.String(500), nullable=True),
        sa.Column("file_data", sa.Text(), nullable=False),
        sa.Column("file_size", sa.Integer(), nullable=False),
        sa.Column("mime_type", sa.String(64), nullable=False, server_default="application/pdf"),
        sa.Column("metadata_json", JSONType, nullable=True),
        sa.Column("generated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("expires_at", sa.DateTime(), nullable=True),
    )
    op.create_index("idx_documents_user_generated", "documents", ["user_id", "generated_at"])
    op.create_index("idx_documents_type", "documents", ["doc_type"])

    op.create_table(
        "events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("event_type", sa.String(32), nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("event_date", sa.DateTime(), nullable=True),
        sa.Column("deadline", sa.DateTime(), nullable=True),
        sa.Column("location", sa.String(255), nullable=True),
        sa.Column("link", sa.String(512), nullable=True),
        sa.Column("priority", sa.String(16), nullable=False, server_default="normal"),
        sa.Column("status", sa.String(16), nullable=False, server_default="published"),
        sa.Column("target_audience", sa.String(16), nullable=False, server_default="affiliates"),
        sa.Column("target_user_ids", JSONType, nullable=True),
        sa.Column("metadata_json", JSONType, nullable=True),
        _user_fk("created_by_user_id"),
        *_timestamps(),
    )
    op.create_index("idx_events_status_date", "events", ["status", "event_date"])
    op.create_index("idx_events_audience", "events", ["target_audience"])

    op.create_table(
        "event_reads",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("event_id", sa.Integer(), sa.ForeignKey("events.id", ondelete="CASCADE"), nullable=False),
        _user_fk("user_id", ondelete="CASCADE", nullable=False),
        sa.Column("read_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("event_id", "user_id", name="uq_event_reads_event_user"),
    )

    op.create_table(
        "suggestions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(100), nullable=True),
        sa.Column("email", sa.String(320), nullable=True),
        sa.Column("department", sa.String(100), nullable=True),
        _user_fk("user_id"),
        sa.Column("suggestion_type", sa.String(16), nullable=False),
        sa.Column("subject", sa.String(200), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("urgency", sa.String(8), nullable=False, server_default="media"),
        sa.Column("is_anonymous", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("status", sa.String(16), nullable=False, server_default="pendiente"),
        sa.Column("admin_notes", sa.String(1000), nullable=True),
        sa.Column("processed_at", sa.DateTime(), nullable=True),
        _user_fk("processed_by_user_id"),
        sa.Column("ip_address", sa.String(64), nullable=True),
        sa.Column("user_agent", sa.String(512), nullable=True),
        *_timestamps(),
    )
    op.create_index("idx_suggestions_status_created", "suggestions", ["status", "created_at"])
    op.create_index("idx_suggestions_type", "suggestions", ["suggestion_type"])

    op.create_table(
        "invoices",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("invoice_number", sa.String(32), nullable=False),
        sa.Column("invoice_type", sa.String(16), nullable=False),
        sa.Column("series", sa.String(8), nullable=False, server_default="A"),
        sa.Column("issue_date", sa.Date(), nullable=False),
        sa.Column("due_date", sa.Date(), nullable=False),
        sa.Column("client_name", sa.String(200), nullable=False),
        sa.Column("client_tax_id", sa.String(32), nullable=True),
        sa.Column("client_address", sa.String(500), nullable=True),
        sa.Column("client_email", sa.String(320), nullable=True),
        sa.Column("client_phone", sa.String(32), nullable=True),
        _user_fk("related_user_id"),
        sa.Column("currency", sa.String(3), nullable=False, server_default="EUR"),
        sa.Column("status", sa.String(16), nullable=False, server_default="draft"),
        sa.Column("subtotal", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("tax_amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("total", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("paid_amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("pending_amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("notes", sa.String(1000), nullable=True),
        _user_fk("created_by_user_id"),
        *_timestamps(),
        sa.UniqueConstraint("invoice_number", name="uq_invoices_invoice_number"),
    )
    op.create_index("idx_invoices_status_due", "invoices", ["status", "due_date"])

    op.create_table(
        "invoice_items",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("invoice_id", sa.Integer(), sa.ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("description", sa.String(500), nullable=False),
        sa.Column("quantity", sa.Numeric(12, 2), nullable=False, server_default="1"),
        sa.Column("unit_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("tax_rate", sa.Numeric(5, 2), nullable=False, server_default="21"),
        sa.Column("subtotal", sa.Numeric(12, 2), nullable=False, server_default="0"),
    )

    op.create_table(
        "invoice_payments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("invoice_id", sa.Integer(), sa.ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("paid_on", sa.Date(), nullable=False),
        sa.Column("method", sa.String(32), nullable=False, server_default="bank_transfer"),
        sa.Column("reference", sa.String(128), nullable=True),
        sa.Column("notes", sa.String(500), nullable=True),
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("transaction_type", sa.String(16), nullable=False),
        sa.Column("category", sa.String(32), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("description", sa.String(500), nullable=False),
        sa.Column("transaction_date", sa.Date(), nullable=False),
        sa.Column("fiscal_year", sa.Integer(), nullable=True),
        sa.Column("fiscal_quarter", sa.Integer(), nullable=True),
        sa.Column("payment_method", sa.String(32), nullable=False, server_default="bank_transfer"),
        sa.Column("reference", sa.String(128), nullable=True),
        _user_fk("related_user_id"),
        sa.Column(
            "related_invoice_id", sa.Integer(), sa.ForeignKey("invoices.id", ondelete="SET NULL"), nullable=True
        ),
        sa.Column("status", sa.String(16), nullable=False, server_default="completed"),
        sa.Column("requires_approval", sa.Boolean(), nullable=False, server_default=sa.false()),
        _user_fk("approved_by_user_id"),
        sa.Column("approval_date", sa.DateTime(), nullable=True),
        sa.Column("notes", sa.String(1000), nullable=True),
        _user_fk("registered_by_user_id"),
        *_timestamps(),
    )
    op.create_index("idx_transactions_date", "transactions", ["transaction_date"])
    op.create_index("idx_transactions_type_category", "transactions", ["transaction_type", "category"])
    op.create_index("idx_transactions_fiscal", "transactions", ["fiscal_year", "fiscal_quarter"])

    op.create_table(
        "membership_fees",
        sa.Column("id", sa.Integer(), primary_key=True),
        _user_fk("user_id", ondelete="CASCADE", nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("month", sa.Integer(), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="EUR"),
        sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("due_date", sa.Date(), nullable=False),
        sa.Column("paid_date", sa.Date(), nullable=True),
        sa.Column("payment_method", sa.String(32), nullable=True),
        sa.Column("payment_reference", sa.String(128), nullable=True),
        sa.Column(
            "related_transaction_id",
            sa.Integer(),
            sa.ForeignKey("transactions.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("notes", sa.String(500), nullable=True),
        sa.Column("reminders", JSONType, nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "year", "month", name="uq_membership_fees_user_period"),
    )
    op.create_index("idx_membership_fees_status", "membership_fees", ["status"])
    op.create_index("idx_membership_fees_due", "membership_fees", ["due_date"])

    op.create_table(
        "unmatched_payments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("stripe_session_id", sa.String(255), nullable=False),
        sa.Column("email", sa.String(320), nullable=True),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(8), nullable=False, server_default="eur"),
        sa.Column("description", sa.String(255), nullable=True),
        sa.Column("metadata_json", JSONType, nullable=True),
        sa.Column("received_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("resolved_at", sa.DateTime(), nullable=True),
        _user_fk("resolved_user_id"),
        _user_fk("resolved_by_user_id"),
        sa.UniqueConstraint("stripe_session_id", name="uq_unmatched_payments_stripe_session_id"),
    )

    op.create_table(
        "captcha_challenges",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column("answer", sa.Integer(), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
    )
    op.create_index("idx_captcha_challenges_expires_at", "captcha_challenges", ["expires_at"])


def downgrade() -> None:
    for table in (
        "captcha_challenges",
        "unmatched_payments",
        "membership_fees",
        "transactions",
        "invoice_payments",
        "invoice_items",
        "invoices",
        "suggestions",
        "event_reads",
        "events",
        "documents",
        "audit_events",
        "refresh_tokens",
        "course_enrollments",
        "payment_records",
        "users",
    ):
        op.drop_table(table)
