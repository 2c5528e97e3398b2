"""
Training products and standard operating procedures.
"""

from datetime import datetime, timezone
from enum import Enum as PyEnum
from typing import Optional, List
from sqlalchemy import (
    String, Boolean, DateTime, ForeignKey, Enum, Text, Integer, Table, Column
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base
from app.models.policy import Standard, sop_standard_mappings


class TrainingProductStatus(str, PyEnum):
    ACTIVE = "Active"
    INACTIVE = "Inactive"


# Many-to-many: training products <-> SOPs
training_product_sops = Table(
    "training_product_sops",
    Base.metadata,
    Column("training_product_id", Integer, ForeignKey("training_products.id", ondelete="CASCADE"), primary_key=True),
    Column("sop_id", Integer, ForeignKey("sops.id", ondelete="CASCADE"), primary_key=True),
)


class SOP(Base):
    """Standard operating procedure, optionally under a policy."""

    __tablename__ = "sops"

    id: Mapped[int] = mapped_column(primary_key=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    version: Mapped[str] = mapped_column(String(50), default="1.0")
    file_url: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    policy_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("policies.id", ondelete="SET NULL"), nullable=True, index=True
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

    standards: Mapped[List[Standard]] = relationship(
        Standard,
        secondary=sop_standard_mappings,
        lazy="selectin",
        order_by="Standard.code",
    )

    def __repr__(self) -> str:
        return f"<SOP {self.title} v{self.version}>"


class TrainingProduct(Base):
    """A qualification, course or unit delivered by the RTO."""

    __tablename__ = "training_products"

    id: Mapped[int] = mapped_column(primary_key=True)
    code: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[TrainingProductStatus] = mapped_column(
        Enum(TrainingProductStatus), default=TrainingProductStatus.ACTIVE, index=True
    )
    assessment_strategy_url: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    validation_report_url: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    is_accredited: Mapped[bool] = mapped_column(Boolean, default=False)
    owner_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True
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

    sops: Mapped[List[SOP]] = relationship(
        SOP,
        secondary=training_product_sops,
        lazy="selectin",
        order_by="SOP.title",
    )

    def __repr__(self) -> str:
        return f"<TrainingProduct {self.code}>"
