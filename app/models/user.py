"""
User, Role and Permission models for RBAC.

Security considerations:
- Passwords are hashed with Argon2id (memory-hard, side-channel resistant)
- Users synced from Xero/Accelerate have no password until reset
- Roles and permissions live in the database; a user may hold many roles
- All timestamps use UTC
"""

from datetime import datetime, timedelta, timezone
from enum import Enum as PyEnum
from typing import Optional, List
from sqlalchemy import (
    String, Boolean, DateTime, ForeignKey, Enum, Text, Table, Column, Integer, UniqueConstraint
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from argon2.exceptions import VerifyMismatchError, InvalidHashError

from app.auth.password import ph
from app.core.database import Base
from app.core.utils import as_utc

MAX_FAILED_LOGINS = 5
LOCKOUT_MINUTES = 15


class Department(str, PyEnum):
    TRAINING = "Training"
    ADMIN = "Admin"
    MANAGEMENT = "Management"
    SUPPORT = "Support"


class UserStatus(str, PyEnum):
    ACTIVE = "Active"
    INACTIVE = "Inactive"


class RoleName(str, PyEnum):
    """Built-in roles seeded at startup."""
    SYSTEM_ADMIN = "SystemAdmin"
    COMPLIANCE_ADMIN = "ComplianceAdmin"
    TRAINER = "Trainer"
    MANAGER = "Manager"
    STAFF = "Staff"


# Association table for user-role membership (many-to-many)
user_roles = Table(
    "user_roles",
    Base.metadata,
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("role_id", Integer, ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
)

# Association table for role-permission grants (many-to-many)
role_permissions = Table(
    "role_permissions",
    Base.metadata,
    Column("role_id", Integer, ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
    Column("permission_id", Integer, ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True),
)


class Permission(Base):
    """A single `resource.action` grant."""

    __tablename__ = "permissions"
    __table_args__ = (UniqueConstraint("resource", "action", name="uq_permission_resource_action"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    resource: Mapped[str] = mapped_column(String(50), nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    description: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    def __repr__(self) -> str:
        return f"<Permission {self.name}>"


class Role(Base):
    """Named bundle of permissions."""

    __tablename__ = "roles"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )

    permissions: Mapped[List["Permission"]] = relationship(
        "Permission",
        secondary=role_permissions,
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<Role {self.name}>"


class User(Base):
    """
    Staff member with secure authentication.

    Security features:
    - Argon2id password hashing
    - Account lockout after failed attempts
    - Soft delete support
    """

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True)

    # Authentication
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    password_hash: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Profile
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    department: Mapped[Department] = mapped_column(Enum(Department), nullable=False, default=Department.SUPPORT)
    status: Mapped[UserStatus] = mapped_column(Enum(UserStatus), nullable=False, default=UserStatus.ACTIVE)

    # Security: Account lockout
    failed_login_attempts: Mapped[int] = mapped_column(Integer, default=0)
    locked_until: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Email preferences
    email_opt_out: Mapped[bool] = mapped_column(Boolean, default=False)

    # External system identifiers
    xero_employee_id: Mapped[Optional[str]] = mapped_column(String(100), unique=True, nullable=True)
    accelerate_id: Mapped[Optional[str]] = mapped_column(String(100), unique=True, nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc)
    )
    last_login: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Soft delete
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Relationships
    roles: Mapped[List["Role"]] = relationship(
        "Role",
        secondary=user_roles,
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<User {self.email}>"

    @property
    def is_active(self) -> bool:
        return self.status == UserStatus.ACTIVE and self.deleted_at is None

    @property
    def role_names(self) -> list[str]:
        return sorted(role.name for role in self.roles)

    @property
    def permissions(self) -> set[str]:
        return {perm.name for role in self.roles for perm in role.permissions}

    def has_permission(self, permission: str) -> bool:
        return permission in self.permissions

    def has_role(self, role: str) -> bool:
        return role in self.role_names

    def set_password(self, password: str) -> None:
        """Hash and set password using Argon2id."""
        self.password_hash = ph.hash(password)

    def verify_password(self, password: str) -> bool:
        """
        Verify password against stored hash.
        Rehashes in place when the hashing parameters have changed.
        """
        if not self.password_hash:
            return False
        try:
            ph.verify(self.password_hash, password)
        except (VerifyMismatchError, InvalidHashError):
            return False
        if ph.check_needs_rehash(self.password_hash):
            self.set_password(password)
        return True

    def is_locked(self) -> bool:
        """Check if account is locked due to failed login attempts."""
        if self.locked_until is None:
            return False
        return datetime.now(timezone.utc) < as_utc(self.locked_until)

    def record_failed_login(self) -> None:
        """Record a failed login attempt. Lock account after 5 failures."""
        self.failed_login_attempts = (self.failed_login_attempts or 0) + 1
        if self.failed_login_attempts >= MAX_FAILED_LOGINS:
            self.locked_until = datetime.now(timezone.utc) + timedelta(minutes=LOCKOUT_MINUTES)

    def record_successful_login(self) -> None:
        """Reset failed login counter on successful login."""
        self.failed_login_attempts = 0
        self.locked_until = None
        self.last_login = datetime.now(timezone.utc)


# =============================================================================
# Default permission catalogue and role grants (seeded at startup)
# =============================================================================

CRUD = ("create", "read", "update", "delete")

PERMISSION_CATALOGUE = {
    "users": CRUD,
    "policies": CRUD,
    "standards": CRUD,
    "training": CRUD,
    "pd": CRUD,
    "credentials": CRUD,
    "feedback": CRUD,
    "assets": CRUD,
    "complaints": CRUD,
    "onboarding": CRUD,
    "reports": ("read",),
    "email": ("create", "read", "update"),
    "audit_logs": ("read", "export"),
    "sync": ("create", "read", "delete"),
    "integrations": ("create", "read"),
    "files": ("create", "read", "delete"),
}

ALL_PERMISSIONS = {
    (resource, action)
    for resource, actions in PERMISSION_CATALOGUE.items()
    for action in actions
}


def _grant(predicate) -> set[str]:
    return {f"{resource}.{action}" for resource, action in ALL_PERMISSIONS if predicate(resource, action)}


DEFAULT_ROLE_PERMISSIONS = {
    RoleName.SYSTEM_ADMIN: _grant(lambda r, a: True),
    # Everything except user management beyond reading
    RoleName.COMPLIANCE_ADMIN: _grant(lambda r, a: r != "users" or a == "read"),
    RoleName.TRAINER: _grant(
        lambda r, a: r in {"training", "pd", "feedback", "policies"} and a in {"read", "create", "update"}
    ),
    RoleName.MANAGER: _grant(lambda r, a: a == "read" or (r == "pd" and a == "update")),
    RoleName.STAFF: _grant(
        lambda r, a: (a == "read" and r in {"policies", "standards", "training"})
        or (r == "pd" and a in {"read", "create", "update"})
        or (r == "feedback" and a == "create")
    ),
}

ROLE_DESCRIPTIONS = {
    RoleName.SYSTEM_ADMIN: "Full system access",
    RoleName.COMPLIANCE_ADMIN: "Manages compliance records, policies and reporting",
    RoleName.TRAINER: "Delivers training and maintains own PD and feedback",
    RoleName.MANAGER: "Read access across the organisation and PD sign-off",
    RoleName.STAFF: "Basic access and own PD management",
}
