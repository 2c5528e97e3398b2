"""
Webhook schemas.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from app.models.webhook import WebhookStatus


class WebhookAcceptedResponse(BaseModel):
    message: str
    id: int
    submission_id: str


class WebhookSubmissionResponse(BaseModel):
    id: int
    source: str
    form_id: str
    submission_id: str
    form_type: str
    status: WebhookStatus
    retry_count: int
    processing_error: Optional[str] = None
    processed_at: Optional[datetime] = None
    feedback_id: Optional[int] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True
