"""
Audit log schemas.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel

from app.models.audit import AuditLog


class AuditLogResponse(BaseModel):
    id: int
    timestamp: datetime
    user_id: Optional[int] = None
    user_email: Optional[str] = None
    action: str
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None
    resource_name: Optional[str] = None
    details: Optional[Any] = None
    success: bool
    error_message: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    request_id: Optional[str] = None


def audit_log_to_response(log: AuditLog) -> AuditLogResponse:
    return AuditLogResponse(
        id=log.id,
        timestamp=log.timestamp,
        user_id=log.user_id,
        user_email=log.user_email,
        action=log.action.value,
        resource_type=log.resource_type,
        resource_id=log.resource_id,
        resource_name=log.resource_name,
        details=log.details_dict,
        success=log.success,
        error_message=log.error_message,
        ip_address=log.ip_address,
        user_agent=log.user_agent,
        request_id=log.request_id,
    )
