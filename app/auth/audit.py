"""
Audit logging helper functions.

Centralizes audit log creation so every endpoint records the same
request context (IP, user agent, request ID).
"""

from typing import Any, Dict, Optional

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.logging_config import get_request_id
from app.models.user import User
from app.models.audit import AuditLog, AuditAction
from app.auth.dependencies import get_client_ip, get_user_agent


def create_audit_log(
    request: Request,
    user: Optional[User],
    action: AuditAction,
    resource_type: str,
    resource_id: Any = None,
    resource_name: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
    success: bool = True,
    error_message: Optional[str] = None,
    user_email: Optional[str] = None,
) -> AuditLog:
    """
    Create an audit log entry.

    This is a synchronous helper that creates an AuditLog object.
    The caller is responsible for adding it to the session and committing.

    Args:
        request: FastAPI Request object (for IP and user agent)
        user: The user performing the action (None for anonymous attempts)
        action: The audit action type
        resource_type: Type of resource (e.g., "user", "policy", "complaint")
        resource_id: Identifier of the resource
        resource_name: Optional human-readable name
        details: Optional dictionary of additional details, redacted on write
        user_email: Email to record when there is no user (failed logins)

    Example:
        audit = create_audit_log(
            request=request,
            user=current_user,
            action=AuditAction.CREATE,
            resource_type="policy",
            resource_id=policy.id,
            resource_name=policy.title,
        )
        db.add(audit)
    """
    return AuditLog.create(
        action=action,
        user_id=user.id if user else None,
        user_email=user.email if user else user_email,
        resource_type=resource_type,
        resource_id=resource_id,
        resource_name=resource_name,
        details=details,
        success=success,
        error_message=error_message,
        ip_address=get_client_ip(request),
        user_agent=get_user_agent(request),
        request_id=getattr(request.state, "request_id", None) or get_request_id() or None,
    )


async def log_action(
    db: AsyncSession,
    request: Request,
    user: Optional[User],
    action: AuditAction,
    resource_type: str,
    resource_id: Any = None,
    resource_name: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
    **kwargs,
) -> AuditLog:
    """
    Create and add an audit log entry to the session.

    The caller should commit the session; the entry then lands in the
    same transaction as the change it describes.
    """
    audit = create_audit_log(
        request=request,
        user=user,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        resource_name=resource_name,
        details=details,
        **kwargs,
    )
    db.add(audit)
    return audit
