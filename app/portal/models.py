from __future__ import annotations

import calendar
from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, Integer, Numeric, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

if TYPE_CHECKING:
    from app.portal.modules.documents.models import Document

JSONType = JSON().with_variant(JSONB(), "postgresql")

ROLE_MEMBER = "afiliado"
ROLE_ADMIN = "admin"
ROLES = (ROLE_MEMBER, ROLE_ADMIN)

MEMBERSHIP_ACTIVE = "activo"
MEMBERSHIP_PENDING = "pendiente"
MEMBERSHIP_INACTIVE = "inactivo"
MEMBERSHIP_SUSPENDED = "suspendido"
MEMBERSHIP_STATUSES = (MEMBERSHIP_ACTIVE, MEMBERSHIP_PENDING, MEMBERSHIP_INACTIVE, MEMBERSHIP_SUSPENDED)

ENROLLMENT_STATUSES = ("enrolled", "in-progress", "completed", "cancelled")


class Base(DeclarativeBase):
    pass


def iso(value: datetime | date | None) -> str | None:
    return value.isoformat() if value is not None else None


def money(value: Decimal | float | int | None) -> float:
    if value is None:
        return 0.0
    return float(Decimal(value).quantize(Decimal("0.01")))


def add_months(d: datetime, months: int) -> datetime:
    month_index = d.month - 1 + months
    year = d.year + month_index // 12
    month = month_index % 12 + 1
    day = min(d.day, calendar.monthrange(year, month)[1])
    return d.replace(year=year, month=month, day=day)


class User(Base):
    __tablename__ = "users"
    __table_args__ = (
        Index("idx_users_role", "role"),
        Index("idx_users_membership_status", "membership_status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)

    name: Mapped[str] = mapped_column(String(100), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(15), nullable=True)
    department: Mapped[str | None] = mapped_column(String(100), nullable=True)
    profile_photo: Mapped[str | None] = mapped_column(Text, nullable=True)  # data: URL

    role: Mapped[str] = mapped_column(String(16), nullable=False, default=ROLE_MEMBER)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_email_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    membership_status: Mapped[str] = mapped_column(String(16), nullable=False, default=MEMBERSHIP_PENDING)
    membership_start_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    membership_expiry_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    last_login: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    login_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(512), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    payments: Mapped[list["PaymentRecord"]] = relationship(
        back_populates="user", cascade="all, delete-orphan", lazy="selectin", order_by="PaymentRecord.paid_at"
    )
    enrollments: Mapped[list["CourseEnrollment"]] = relationship(
        back_populates="user", cascade="all, delete-orphan", lazy="selectin", order_by="CourseEnrollment.enrolled_at"
    )
    refresh_tokens: Mapped[list["RefreshToken"]] = relationship(
        back_populates="user", cascade="all, delete-orphan", lazy="selectin", order_by="RefreshToken.created_at"
    )
    documents: Mapped[list["Document"]] = relationship(
        back_populates="user", cascade="all, delete-orphan", lazy="select", passive_deletes=True
    )

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    def is_membership_active(self, now: datetime | None = None) -> bool:
        now = now or datetime.utcnow()
        if self.membership_status != MEMBERSHIP_ACTIVE:
            return False
        return self.membership_expiry_date is None or self.membership_expiry_date > now

    def days_until_expiry(self, now: datetime | None = None) -> int | None:
        if self.membership_expiry_date is None:
            return None
        now = now or datetime.utcnow()
        delta = self.membership_expiry_date - now
        return max(0, delta.days + (1 if delta.seconds else 0))

    def renew_membership(self, months: int = 12, now: datetime | None = None) -> None:
        """Extend from the current expiry if still valid, otherwise from now."""
        now = now or datetime.utcnow()
        if self.membership_expiry_date and self.membership_expiry_date > now:
            base = self.membership_expiry_date
        else:
            base = now
            self.membership_start_date = now
        self.membership_expiry_date = add_months(base, months)
        self.membership_status = MEMBERSHIP_ACTIVE

    def update_last_login(self, ip: str | None = None, user_agent: str | None = None) -> None:
        self.last_login = datetime.utcnow()
        self.login_count = (self.login_count or 0) + 1
        self.ip_address = ip
        self.user_agent = (user_agent or "")[:512] or None

    def enroll_in_course(self, course_id: str, course_name: str) -> "CourseEnrollment":
        if any(e.course_id == course_id and e.status != "cancelled" for e in self.enrollments):
            raise ValueError("Ya estás inscrito en este curso")
        enrollment = CourseEnrollment(course_id=course_id, course_name=course_name, status="enrolled")
        self.enrollments.append(enrollment)
        return enrollment

    def to_public_dict(self, *, include_history: bool = False) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "department": self.department,
            "profilePhoto": self.profile_photo,
            "role": self.role,
            "isActive": self.is_active,
            "isEmailVerified": self.is_email_verified,
            "membershipStatus": self.membership_status,
            "membershipStartDate": iso(self.membership_start_date),
            "membershipExpiryDate": iso(self.membership_expiry_date),
            "lastLogin": iso(self.last_login),
            "loginCount": self.login_count,
            "createdAt": iso(self.created_at),
        }
        if include_history:
            data["paymentHistory"] = [p.to_dict() for p in self.payments]
            data["coursesEnrolled"] = [e.to_dict() for e in self.enrollments]
        return data


class PaymentRecord(Base):
    __tablename__ = "payment_records"
    __table_args__ = (
        UniqueConstraint("stripe_session_id", name="uq_payment_records_stripe_session_id"),
        Index("idx_payment_records_user_id", "user_id", "paid_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    stripe_session_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(8), nullable=False, default="eur")
    description: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="completed")
    paid_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    user: Mapped[User] = relationship(back_populates="payments")

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "stripeSessionId": self.stripe_session_id,
            "amount": money(self.amount),
            "currency": self.currency,
            "description": self.description,
            "status": self.status,
            "date": iso(self.paid_at),
        }


class CourseEnrollment(Base):
    __tablename__ = "course_enrollments"
    __table_args__ = (Index("idx_course_enrollments_user_id", "user_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    course_id: Mapped[str] = mapped_column(String(64), nullable=False)
    course_name: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="enrolled")
    enrolled_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    user: Mapped[User] = relationship(back_populates="enrollments")

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "courseId": self.course_id,
            "courseName": self.course_name,
            "status": self.status,
            "enrollmentDate": iso(self.enrolled_at),
        }


class RefreshToken(Base):
    __tablename__ = "refresh_tokens"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    token_hash: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)  # sha256 hex
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)

    user: Mapped[User] = relationship(back_populates="refresh_tokens")


class AuditEvent(Base):
    """
    Append-only audit trail. Actor columns are denormalized so rows survive user deletion.
    """

    __tablename__ = "audit_events"
    __table_args__ = (Index("idx_audit_events_entity", "entity_type", "entity_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    request_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    actor_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    actor_user_email: Mapped[str | None] = mapped_column(String(320), nullable=True)

    action: Mapped[str] = mapped_column(String(128), nullable=False)  # e.g. "auth.login"
    entity_type: Mapped[str | None] = mapped_column(String(128), nullable=True)
    entity_id: Mapped[str | None] = mapped_column(String(128), nullable=True)

    reason: Mapped[str | None] = mapped_column(String(512), nullable=True)
    metadata_json: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    client_ip: Mapped[str | None] = mapped_column(String(64), nullable=True)


# Module models must be imported so Base.metadata includes their tables.
# (Kept at bottom to avoid circular imports.)
from app.portal.modules.documents.models import Document  # noqa: E402,F401
from app.portal.modules.events.models import Event, EventRead  # noqa: E402,F401
from app.portal.modules.suggestions.models import Suggestion  # noqa: E402,F401
from app.portal.modules.accounting.models import (  # noqa: E402,F401
    Invoice,
    InvoiceItem,
    InvoicePayment,
    MembershipFee,
    Transaction,
)
from app.portal.modules.payments.models import UnmatchedPayment  # noqa: E402,F401
from app.portal.modules.captcha.models import CaptchaChallenge  # noqa: E402,F401
