"""
Inbound form submissions received through webhooks.
"""

from datetime import datetime, timezone
from enum import Enum as PyEnum
from typing import Any, Optional
from sqlalchemy import String, DateTime, ForeignKey, Enum, Text, Integer, JSON, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base


class WebhookStatus(str, PyEnum):
    PENDING = "Pending"
    PROCESSING = "Processing"
    COMPLETED = "Completed"
    FAILED = "Failed"


class WebhookSubmission(Base):
    """
    One submission from a form provider, stored before it is processed.

    (source, submission_id) is unique so redelivered webhooks are ignored.
    """

    __tablename__ = "webhook_submissions"
    __table_args__ = (UniqueConstraint("source", "submission_id", name="uq_webhook_source_submission"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    source: Mapped[str] = mapped_column(String(50), nullable=False)
    form_id: Mapped[str] = mapped_column(String(100), nullable=False)
    submission_id: Mapped[str] = mapped_column(String(100), nullable=False)
    form_type: Mapped[str] = mapped_column(String(50), nullable=False)
    payload: Mapped[Any] = mapped_column(JSON, nullable=False)
    status: Mapped[WebhookStatus] = mapped_column(
        Enum(WebhookStatus), default=WebhookStatus.PENDING, index=True
    )
    retry_count: Mapped[int] = mapped_column(Integer, default=0)
    processing_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    feedback_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("feedback.id", ondelete="SET NULL"), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc)
    )

    def __repr__(self) -> str:
        return f"<WebhookSubmission {self.source}:{self.submission_id} {self.status.value}>"
