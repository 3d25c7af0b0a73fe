from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.portal.models import Base, iso

SUGGESTION_TYPES = ("sugerencia", "queja", "propuesta", "denuncia", "consulta")
URGENCIES = ("baja", "media", "alta")
SUGGESTION_STATUSES = ("pendiente", "en-revision", "procesada", "archivada")


class Suggestion(Base):
    __tablename__ = "suggestions"
    __table_args__ = (
        Index("idx_suggestions_status_created", "status", "created_at"),
        Index("idx_suggestions_type", "suggestion_type"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    department: Mapped[str | None] = mapped_column(String(100), nullable=True)
    user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    suggestion_type: Mapped[str] = mapped_column(String(16), nullable=False)
    subject: Mapped[str] = mapped_column(String(200), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    urgency: Mapped[str] = mapped_column(String(8), nullable=False, default="media")
    is_anonymous: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pendiente")
    admin_notes: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    processed_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(512), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    @property
    def tracking_id(self) -> str:
        return f"#{self.id:08d}"

    @property
    def display_name(self) -> str:
        return "Anónimo" if self.is_anonymous or not self.name else self.name

    def to_public_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "trackingId": self.tracking_id,
            "type": self.suggestion_type,
            "subject": self.subject,
            "message": self.message,
            "urgency": self.urgency,
            "isAnonymous": self.is_anonymous,
            "status": self.status,
            "createdAt": iso(self.created_at),
        }
        if not self.is_anonymous:
            data.update({"name": self.name, "email": self.email, "department": self.department})
        return data

    def to_admin_dict(self) -> dict[str, Any]:
        data = self.to_public_dict()
        data.update(
            {
                "displayName": self.display_name,
                "adminNotes": self.admin_notes,
                "processedAt": iso(self.processed_at),
                "processedBy": self.processed_by_user_id,
                "updatedAt": iso(self.updated_at),
            }
        )
        if not self.is_anonymous:
            data.update({"userId": self.user_id, "ipAddress": self.ip_address, "userAgent": self.user_agent})
        return data
