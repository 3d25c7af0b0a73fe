from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.portal.models import Base, JSONType, iso

if TYPE_CHECKING:
    from app.portal.models import User

DOC_AFFILIATION_CERTIFICATE = "certificado-afiliado"
DOC_PAYMENT_RECEIPT = "recibo-pago"
DOC_COURSE_CERTIFICATE = "certificado-curso"
DOC_MEMBERSHIP_FORM = "ficha-afiliacion"
DOCUMENT_TYPES = (DOC_AFFILIATION_CERTIFICATE, DOC_PAYMENT_RECEIPT, DOC_COURSE_CERTIFICATE, DOC_MEMBERSHIP_FORM)


def human_size(num_bytes: int) -> str:
    if num_bytes < 1024:
        return f"{num_bytes} B"
    if num_bytes < 1024 * 1024:
        return f"{num_bytes / 1024:.2f} KB"
    return f"{num_bytes / (1024 * 1024):.2f} MB"


class Document(Base):
    __tablename__ = "documents"
    __table_args__ = (
        Index("idx_documents_user_generated", "user_id", "generated_at"),
        Index("idx_documents_type", "doc_type"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    doc_type: Mapped[str] = mapped_column(String(32), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)

    file_data: Mapped[str] = mapped_column(Text, nullable=False)  # base64
    file_size: Mapped[int] = mapped_column(Integer, nullable=False)
    mime_type: Mapped[str] = mapped_column(String(64), nullable=False, default="application/pdf")

    # amount, currency, stripeSessionId, courseId, courseName, completionDate, generatedBy
    metadata_json: Mapped[dict | None] = mapped_column(JSONType, nullable=True)

    generated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    user: Mapped["User"] = relationship(back_populates="documents")

    @property
    def file_size_readable(self) -> str:
        return human_size(self.file_size or 0)

    @property
    def filename(self) -> str:
        return f"{self.doc_type}-{self.id}.pdf"

    def to_dict(self, *, include_file: bool = False) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "userId": self.user_id,
            "type": self.doc_type,
            "title": self.title,
            "description": self.description,
            "fileSize": self.file_size,
            "fileSizeReadable": self.file_size_readable,
            "mimeType": self.mime_type,
            "metadata": self.metadata_json or {},
            "generatedAt": iso(self.generated_at),
            "expiresAt": iso(self.expires_at),
        }
        if include_file:
            data["fileData"] = self.file_data
        return data
