from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import DateTime, ForeignKey, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.portal.models import Base, JSONType, iso, money


class UnmatchedPayment(Base):
    """
    A completed checkout whose email has no account yet. Kept until an admin
    attaches it to a user.
    """

    __tablename__ = "unmatched_payments"
    __table_args__ = (UniqueConstraint("stripe_session_id", name="uq_unmatched_payments_stripe_session_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    stripe_session_id: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(8), nullable=False, default="eur")
    description: Mapped[str | None] = mapped_column(String(255), nullable=True)
    metadata_json: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    received_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    resolved_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    resolved_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    @property
    def is_resolved(self) -> bool:
        return self.resolved_at is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "stripeSessionId": self.stripe_session_id,
            "email": self.email,
            "amount": money(self.amount),
            "currency": self.currency,
            "description": self.description,
            "metadata": self.metadata_json or {},
            "receivedAt": iso(self.received_at),
            "resolvedAt": iso(self.resolved_at),
            "resolvedUserId": self.resolved_user_id,
        }
