"""
Staff compliance records: credentials and professional development.

Both carry a stored status that is refreshed from dates on write, on
read and by the nightly status job (see app.services.lifecycle).
"""

from datetime import datetime, timezone
from enum import Enum as PyEnum
from typing import Optional, TYPE_CHECKING
from sqlalchemy import String, DateTime, ForeignKey, Enum, Text, Float
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base

if TYPE_CHECKING:
    from app.models.user import User


class CredentialType(str, PyEnum):
    CERTIFICATE = "Certificate"
    LICENSE = "License"
    QUALIFICATION = "Qualification"


class CredentialStatus(str, PyEnum):
    ACTIVE = "Active"
    EXPIRED = "Expired"
    REVOKED = "Revoked"


class PDCategory(str, PyEnum):
    VOCATIONAL = "Vocational"
    INDUSTRY = "Industry"
    PEDAGOGICAL = "Pedagogical"


class PDStatus(str, PyEnum):
    PLANNED = "Planned"
    DUE = "Due"
    OVERDUE = "Overdue"
    COMPLETED = "Completed"
    VERIFIED = "Verified"


class Credential(Base):
    """A trainer/assessor credential with optional expiry."""

    __tablename__ = "credentials"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    type: Mapped[CredentialType] = mapped_column(Enum(CredentialType), nullable=False)
    issued_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    evidence_url: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    status: Mapped[CredentialStatus] = mapped_column(
        Enum(CredentialStatus), default=CredentialStatus.ACTIVE, index=True
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

    user: Mapped["User"] = relationship("User")

    def __repr__(self) -> str:
        return f"<Credential {self.name} ({self.status.value})>"


class PDItem(Base):
    """A professional development activity for a staff member."""

    __tablename__ = "pd_items"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    category: Mapped[Optional[PDCategory]] = mapped_column(Enum(PDCategory), nullable=True)
    hours: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    due_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    evidence_url: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    status: Mapped[PDStatus] = mapped_column(Enum(PDStatus), default=PDStatus.PLANNED, index=True)
    verified_by_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    verified_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc)
    )

    user: Mapped["User"] = relationship("User", foreign_keys=[user_id])

    def __repr__(self) -> str:
        return f"<PDItem {self.title} ({self.status.value})>"
