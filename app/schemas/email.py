"""
Email log and notification schemas.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, EmailStr, Field

from app.models.notification import EmailStatus


class TestEmailRequest(BaseModel):
    to: EmailStr
    template_name: str = Field("digest-summary", max_length=100)
    data: Dict[str, Any] = Field(default_factory=dict)


class EmailLogResponse(BaseModel):
    id: int
    notification_id: Optional[int] = None
    to_address: str
    from_address: str
    subject: str
    template_name: Optional[str] = None
    status: EmailStatus
    retry_count: int
    last_retry_at: Optional[datetime] = None
    sent_at: Optional[datetime] = None
    failure_reason: Optional[str] = None
    message_id: Optional[str] = None
    unsubscribed: bool = False
    created_at: datetime

    class Config:
        from_attributes = True


class JobResult(BaseModel):
    sent: int = 0
    failed: int = 0
