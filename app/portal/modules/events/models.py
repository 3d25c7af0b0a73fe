from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.portal.models import Base, JSONType, iso

if TYPE_CHECKING:
    from app.portal.models import User

EVENT_TYPES = ("announcement", "meeting", "course", "reminder", "notification")
EVENT_PRIORITIES = ("low", "normal", "high", "urgent")
EVENT_STATUSES = ("draft", "published", "archived")
AUDIENCES = ("all", "affiliates", "admins", "specific")

DEFAULT_EVENT_METADATA = {"color": "#1976d2", "icon": "fa-bell"}


class Event(Base):
    __tablename__ = "events"
    __table_args__ = (
        Index("idx_events_status_date", "status", "event_date"),
        Index("idx_events_audience", "target_audience"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    event_type: Mapped[str] = mapped_column(String(32), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)

    event_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    deadline: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    location: Mapped[str | None] = mapped_column(String(255), nullable=True)
    link: Mapped[str | None] = mapped_column(String(512), nullable=True)

    priority: Mapped[str] = mapped_column(String(16), nullable=False, default="normal")
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="published")
    target_audience: Mapped[str] = mapped_column(String(16), nullable=False, default="affiliates")
    target_user_ids: Mapped[list | None] = mapped_column(JSONType, nullable=True)  # for audience "specific"
    metadata_json: Mapped[dict | None] = mapped_column(JSONType, nullable=True)

    created_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    reads: Mapped[list["EventRead"]] = relationship(
        back_populates="event", cascade="all, delete-orphan", lazy="selectin"
    )

    def is_read_by(self, user_id: int) -> bool:
        return any(r.user_id == user_id for r in self.reads)

    def mark_read_by(self, user_id: int) -> bool:
        """Returns False when the receipt already existed."""
        if self.is_read_by(user_id):
            return False
        self.reads.append(EventRead(user_id=user_id, read_at=datetime.utcnow()))
        return True

    def is_visible_for(self, user: "User | None") -> bool:
        if self.status != "published":
            return user is not None and user.is_admin
        if user is not None and user.is_admin:
            return True
        if self.target_audience == "all":
            return True
        if user is None:
            return False
        if self.target_audience == "affiliates":
            return True
        if self.target_audience == "specific":
            return user.id in (self.target_user_ids or [])
        return False

    def to_dict(self, viewer: "User | None" = None) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "type": self.event_type,
            "title": self.title,
            "description": self.description,
            "eventDate": iso(self.event_date),
            "deadline": iso(self.deadline),
            "location": self.location,
            "link": self.link,
            "priority": self.priority,
            "status": self.status,
            "targetAudience": self.target_audience,
            "metadata": {**DEFAULT_EVENT_METADATA, **(self.metadata_json or {})},
            "createdAt": iso(self.created_at),
            "readCount": len(self.reads),
        }
        if viewer is not None:
            data["isRead"] = self.is_read_by(viewer.id)
            if viewer.is_admin:
                data["targetUsers"] = list(self.target_user_ids or [])
        return data


class EventRead(Base):
    __tablename__ = "event_reads"
    __table_args__ = (UniqueConstraint("event_id", "user_id", name="uq_event_reads_event_user"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    event_id: Mapped[int] = mapped_column(ForeignKey("events.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    read_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    event: Mapped[Event] = relationship(back_populates="reads")
