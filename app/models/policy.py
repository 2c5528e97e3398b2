"""
Policy, policy version and standard models.

Manages:
- RTO policies with versioned content and review dates
- The ASQA standards catalogue (seeded at startup)
- Policy-to-standard and SOP-to-standard mappings
"""

from datetime import datetime, timezone
from enum import Enum as PyEnum
from typing import Optional, List, TYPE_CHECKING
from sqlalchemy import (
    String, Boolean, DateTime, ForeignKey, Enum, Text, Integer, Table, Column
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base

if TYPE_CHECKING:
    from app.models.user import User


class PolicyStatus(str, PyEnum):
    DRAFT = "Draft"
    PUBLISHED = "Published"
    ARCHIVED = "Archived"


# Many-to-many: policies <-> standards
policy_standard_mappings = Table(
    "policy_standard_mappings",
    Base.metadata,
    Column("policy_id", Integer, ForeignKey("policies.id", ondelete="CASCADE"), primary_key=True),
    Column("standard_id", Integer, ForeignKey("standards.id", ondelete="CASCADE"), primary_key=True),
)

# Many-to-many: SOPs <-> standards
sop_standard_mappings = Table(
    "sop_standard_mappings",
    Base.metadata,
    Column("sop_id", Integer, ForeignKey("sops.id", ondelete="CASCADE"), primary_key=True),
    Column("standard_id", Integer, ForeignKey("standards.id", ondelete="CASCADE"), primary_key=True),
)


class Standard(Base):
    """A clause of the Standards for RTOs."""

    __tablename__ = "standards"

    id: Mapped[int] = mapped_column(primary_key=True)
    code: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    clause: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    category: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)

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
        return f"<Standard {self.code}>"


class Policy(Base):
    """
    An organisational policy.

    Content lives in PolicyVersion rows; exactly one version is current
    once the policy has been published.
    """

    __tablename__ = "policies"

    id: Mapped[int] = mapped_column(primary_key=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    owner_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )
    status: Mapped[PolicyStatus] = mapped_column(Enum(PolicyStatus), default=PolicyStatus.DRAFT, index=True)
    review_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    file_url: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)

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

    # Relationships
    owner: Mapped[Optional["User"]] = relationship("User", lazy="selectin")
    versions: Mapped[List["PolicyVersion"]] = relationship(
        "PolicyVersion",
        back_populates="policy",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="PolicyVersion.id.desc()",
    )
    standards: Mapped[List["Standard"]] = relationship(
        "Standard",
        secondary=policy_standard_mappings,
        lazy="selectin",
        order_by="Standard.code",
    )

    def __repr__(self) -> str:
        return f"<Policy {self.title}>"

    @property
    def current_version(self) -> Optional["PolicyVersion"]:
        return next((v for v in self.versions if v.is_current), None)


class PolicyVersion(Base):
    """A numbered revision of a policy's content."""

    __tablename__ = "policy_versions"

    id: Mapped[int] = mapped_column(primary_key=True)
    policy_id: Mapped[int] = mapped_column(ForeignKey("policies.id", ondelete="CASCADE"), index=True)
    version: Mapped[str] = mapped_column(String(50), nullable=False)
    content: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    file_url: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    is_current: Mapped[bool] = mapped_column(Boolean, default=False)
    published_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_by_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )

    policy: Mapped["Policy"] = relationship("Policy", back_populates="versions")

    def __repr__(self) -> str:
        return f"<PolicyVersion {self.policy_id} v{self.version}>"
