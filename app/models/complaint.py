"""
Complaints and appeals with a status timeline.
"""

from datetime import datetime, timezone
from enum import Enum as PyEnum
from typing import Optional, List
from sqlalchemy import String, DateTime, ForeignKey, Enum, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base


class ComplaintSource(str, PyEnum):
    STUDENT = "Student"
    STAFF = "Staff"
    EMPLOYER = "Employer"
    EXTERNAL = "External"


class ComplaintStatus(str, PyEnum):
    NEW = "New"
    IN_REVIEW = "InReview"
    ACTIONED = "Actioned"
    ESCALATED = "Escalated"
    CLOSED = "Closed"


class Complaint(Base):
    """A complaint or appeal under Standard 6."""

    __tablename__ = "complaints"

    id: Mapped[int] = mapped_column(primary_key=True)
    source: Mapped[ComplaintSource] = mapped_column(Enum(ComplaintSource), nullable=False, index=True)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[ComplaintStatus] = mapped_column(
        Enum(ComplaintStatus), default=ComplaintStatus.NEW, index=True
    )
    student_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    trainer_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )
    training_product_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("training_products.id", ondelete="SET NULL"), nullable=True, index=True
    )
    course_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    root_cause: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    corrective_action: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    submitted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )
    closed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc)
    )

    notes: Mapped[List["ComplaintNote"]] = relationship(
        "ComplaintNote",
        back_populates="complaint",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="ComplaintNote.id",
    )

    def __repr__(self) -> str:
        return f"<Complaint {self.id} ({self.status.value})>"


class ComplaintNote(Base):
    """One entry on a complaint's timeline."""

    __tablename__ = "complaint_notes"

    id: Mapped[int] = mapped_column(primary_key=True)
    complaint_id: Mapped[int] = mapped_column(ForeignKey("complaints.id", ondelete="CASCADE"), index=True)
    status: Mapped[ComplaintStatus] = mapped_column(Enum(ComplaintStatus), nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_by_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )

    complaint: Mapped["Complaint"] = relationship("Complaint", back_populates="notes")
