"""
Physical assets with service history and state transitions.
"""

from datetime import datetime, timezone
from enum import Enum as PyEnum
from typing import Optional, List
from sqlalchemy import String, DateTime, ForeignKey, Enum, Text, Float, JSON
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base


class AssetStatus(str, PyEnum):
    AVAILABLE = "Available"
    ASSIGNED = "Assigned"
    SERVICING = "Servicing"
    RETIRED = "Retired"


class Asset(Base):
    """Equipment or resource used in training delivery."""

    __tablename__ = "assets"

    id: Mapped[int] = mapped_column(primary_key=True)
    type: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    serial_number: Mapped[Optional[str]] = mapped_column(String(100), unique=True, nullable=True)
    location: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)
    status: Mapped[AssetStatus] = mapped_column(Enum(AssetStatus), default=AssetStatus.AVAILABLE, index=True)
    purchase_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    purchase_cost: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    last_service_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    next_service_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
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
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    services: Mapped[List["AssetService"]] = relationship(
        "AssetService",
        back_populates="asset",
        cascade="all, delete-orphan",
        order_by="AssetService.service_date.desc()",
    )
    state_changes: Mapped[List["AssetStateChange"]] = relationship(
        "AssetStateChange",
        back_populates="asset",
        cascade="all, delete-orphan",
        order_by="AssetStateChange.id.desc()",
    )

    def __repr__(self) -> str:
        return f"<Asset {self.name} ({self.status.value})>"


class AssetService(Base):
    """A maintenance or service event."""

    __tablename__ = "asset_services"

    id: Mapped[int] = mapped_column(primary_key=True)
    asset_id: Mapped[int] = mapped_column(ForeignKey("assets.id", ondelete="CASCADE"), index=True)
    service_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    serviced_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cost: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    documents: Mapped[List[str]] = mapped_column(JSON, default=list)
    created_by_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )

    asset: Mapped["Asset"] = relationship("Asset", back_populates="services")


class AssetStateChange(Base):
    """A recorded transition between asset states."""

    __tablename__ = "asset_state_changes"

    id: Mapped[int] = mapped_column(primary_key=True)
    asset_id: Mapped[int] = mapped_column(ForeignKey("assets.id", ondelete="CASCADE"), index=True)
    from_state: Mapped[AssetStatus] = mapped_column(Enum(AssetStatus), nullable=False)
    to_state: Mapped[AssetStatus] = mapped_column(Enum(AssetStatus), nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    changed_by_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )

    asset: Mapped["Asset"] = relationship("Asset", back_populates="state_changes")
