"""
Audit logging model for security and compliance.

Every significant action is logged for:
- Security monitoring
- Compliance evidence (who did what, when)
- Forensic investigation
"""

import json
from datetime import datetime, timezone
from enum import Enum as PyEnum
from typing import Any, Optional
from sqlalchemy import String, DateTime, ForeignKey, Enum, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base

REDACTED = "[REDACTED]"
SENSITIVE_KEYS = (
    "password",
    "token",
    "secret",
    "api_key",
    "authorization",
    "cookie",
    "credit_card",
)


def redact_sensitive(value: Any) -> Any:
    """Replace values stored under sensitive-looking keys, recursing into dicts and lists."""
    if isinstance(value, dict):
        redacted = {}
        for key, item in value.items():
            lowered = str(key).lower()
            if any(marker in lowered for marker in SENSITIVE_KEYS):
                redacted[key] = REDACTED
            else:
                redacted[key] = redact_sensitive(item)
        return redacted
    if isinstance(value, (list, tuple)):
        return [redact_sensitive(item) for item in value]
    return value


class AuditAction(str, PyEnum):
    """Categories of auditable actions."""
    # Authentication
    LOGIN_SUCCESS = "login_success"
    LOGIN_FAILURE = "login_failure"
    LOGOUT = "logout"
    PASSWORD_CHANGE = "password_change"
    PASSWORD_RESET_REQUESTED = "password_reset_requested"
    PASSWORD_RESET = "password_reset"
    ACCESS_DENIED = "access_denied"

    # Generic record lifecycle
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"

    # Domain operations
    PUBLISH = "publish"
    MAP = "map"
    COMPLETE = "complete"
    VERIFY = "verify"
    CLOSE = "close"
    ESCALATE = "escalate"
    LOG_SERVICE = "log_service"
    TRANSITION_STATE = "transition_state"
    ASSIGN = "assign"

    # Data movement
    EXPORT = "export"
    REPORT_GENERATED = "report_generated"
    FILE_UPLOADED = "file_uploaded"
    FILE_DELETED = "file_deleted"

    # Integrations and notifications
    INTEGRATION_CONNECTED = "integration_connected"
    INTEGRATION_DISCONNECTED = "integration_disconnected"
    SYNC = "sync"
    EMAIL_SENT = "email_sent"
    WEBHOOK_RECEIVED = "webhook_received"


class AuditLog(Base):
    """
    Immutable audit log entry.

    Security considerations:
    - Records are append-only (no updates/deletes in normal operation)
    - Details are redacted before they are stored
    - IP address, user agent and request ID captured for forensics
    """

    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(primary_key=True)

    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        index=True
    )

    # Who (null for system actions or failed auth)
    user_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )
    user_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)  # Preserved even if user deleted

    action: Mapped[AuditAction] = mapped_column(Enum(AuditAction), nullable=False, index=True)

    resource_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True, index=True)
    resource_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    resource_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    details: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    success: Mapped[bool] = mapped_column(default=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    ip_address: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)  # IPv6 max length
    user_agent: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    request_id: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    def __repr__(self) -> str:
        return f"<AuditLog {self.action.value} by {self.user_email} at {self.timestamp}>"

    @property
    def details_dict(self) -> Optional[dict]:
        if not self.details:
            return None
        return json.loads(self.details)

    @classmethod
    def create(
        cls,
        action: AuditAction,
        user_id: Optional[int] = None,
        user_email: Optional[str] = None,
        resource_type: Optional[str] = None,
        resource_id: Optional[Any] = None,
        resource_name: Optional[str] = None,
        details: Optional[dict] = None,
        success: bool = True,
        error_message: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> "AuditLog":
        """Factory method to create audit log entries with redacted details."""
        return cls(
            action=action,
            user_id=user_id,
            user_email=user_email,
            resource_type=resource_type,
            resource_id=str(resource_id) if resource_id is not None else None,
            resource_name=resource_name,
            details=json.dumps(redact_sensitive(details), default=str) if details else None,
            success=success,
            error_message=error_message,
            ip_address=ip_address,
            user_agent=user_agent,
            request_id=request_id,
        )
