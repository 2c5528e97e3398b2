"""
Learner, employer and industry feedback.
"""

from datetime import datetime, timezone
from enum import Enum as PyEnum
from typing import Optional, List
from sqlalchemy import String, Boolean, DateTime, ForeignKey, Enum, Text, Float, JSON
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base


class FeedbackType(str, PyEnum):
    LEARNER = "learner"
    EMPLOYER = "employer"
    INDUSTRY = "industry"


class Feedback(Base):
    """
    A single feedback submission.

    Sentiment (-1..1) and themes are supplied by the submitting client.
    """

    __tablename__ = "feedback"

    id: Mapped[int] = mapped_column(primary_key=True)
    type: Mapped[FeedbackType] = mapped_column(Enum(FeedbackType), nullable=False, index=True)
    training_product_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("training_products.id", ondelete="SET NULL"), nullable=True, index=True
    )
    trainer_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )
    course_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    rating: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    comments: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    anonymous: Mapped[bool] = mapped_column(Boolean, default=False)
    sentiment: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    themes: Mapped[List[str]] = mapped_column(JSON, default=list)
    submitted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        index=True
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
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<Feedback {self.type.value} rating={self.rating}>"
