"""
Complaint schemas.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from app.models.complaint import Complaint, ComplaintSource, ComplaintStatus
from app.schemas.common import UTCDateTime, reject_null
from app.services.lifecycle import complaint_sla_breached


class ComplaintCreate(BaseModel):
    source: ComplaintSource
    description: str = Field(..., min_length=1, max_length=10000)
    student_id: Optional[str] = Field(None, max_length=100)
    trainer_id: Optional[int] = None
    training_product_id: Optional[int] = None
    course_id: Optional[str] = Field(None, max_length=100)
    submitted_at: Optional[UTCDateTime] = None


class ComplaintUpdate(BaseModel):
    description: Optional[str] = Field(None, min_length=1, max_length=10000)
    status: Optional[ComplaintStatus] = None
    trainer_id: Optional[int] = None
    training_product_id: Optional[int] = None
    course_id: Optional[str] = Field(None, max_length=100)
    root_cause: Optional[str] = None
    corrective_action: Optional[str] = None
    notes: Optional[str] = Field(None, description="Recorded on the timeline with a status change")

    @field_validator("description", "status")
    @classmethod
    def not_null(cls, v):
        return reject_null(v)


class ComplaintCloseRequest(BaseModel):
    root_cause: str = Field(..., min_length=1)
    corrective_action: str = Field(..., min_length=1)
    notes: Optional[str] = None


class ComplaintEscalateRequest(BaseModel):
    notes: Optional[str] = None


class ComplaintNoteCreate(BaseModel):
    notes: str = Field(..., min_length=1, max_length=10000)


class ComplaintNoteResponse(BaseModel):
    id: int
    complaint_id: int
    status: ComplaintStatus
    notes: Optional[str] = None
    created_by_id: Optional[int] = None
    created_at: datetime

    class Config:
        from_attributes = True


class ComplaintResponse(BaseModel):
    id: int
    source: ComplaintSource
    description: str
    status: ComplaintStatus
    student_id: Optional[str] = None
    trainer_id: Optional[int] = None
    training_product_id: Optional[int] = None
    course_id: Optional[str] = None
    root_cause: Optional[str] = None
    corrective_action: Optional[str] = None
    submitted_at: datetime
    closed_at: Optional[datetime] = None
    sla_breach: bool
    created_at: datetime
    updated_at: datetime


class ComplaintDetailResponse(ComplaintResponse):
    timeline: List[ComplaintNoteResponse] = []


def complaint_to_response(complaint: Complaint) -> ComplaintResponse:
    return ComplaintResponse(
        id=complaint.id,
        source=complaint.source,
        description=complaint.description,
        status=complaint.status,
        student_id=complaint.student_id,
        trainer_id=complaint.trainer_id,
        training_product_id=complaint.training_product_id,
        course_id=complaint.course_id,
        root_cause=complaint.root_cause,
        corrective_action=complaint.corrective_action,
        submitted_at=complaint.submitted_at,
        closed_at=complaint.closed_at,
        sla_breach=complaint_sla_breached(complaint.status, complaint.updated_at or complaint.submitted_at),
        created_at=complaint.created_at,
        updated_at=complaint.updated_at,
    )


def complaint_to_detail(complaint: Complaint) -> ComplaintDetailResponse:
    return ComplaintDetailResponse(
        **complaint_to_response(complaint).model_dump(),
        timeline=[ComplaintNoteResponse.model_validate(n) for n in complaint.notes],
    )
