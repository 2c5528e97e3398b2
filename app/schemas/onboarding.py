"""
Onboarding workflow, assignment and task schemas.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from app.models.onboarding import (
    AssignmentStatus,
    OnboardingAssignment,
    OnboardingWorkflow,
    TaskStatus,
)
from app.models.staff import PDCategory
from app.models.user import Department
from app.schemas.common import reject_null


class TaskTemplateCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    task_type: str = Field(..., min_length=1, max_length=50)
    order_index: int = Field(0, ge=0)
    days_to_complete: int = Field(7, ge=0, le=365)
    department: Optional[Department] = None
    role: Optional[str] = Field(None, max_length=50)
    sop_id: Optional[int] = None
    pd_category: Optional[PDCategory] = None


class TaskTemplateResponse(BaseModel):
    id: int
    workflow_id: int
    title: str
    description: Optional[str] = None
    task_type: str
    order_index: int
    days_to_complete: int
    department: Optional[Department] = None
    role: Optional[str] = None
    sop_id: Optional[int] = None
    pd_category: Optional[PDCategory] = None

    class Config:
        from_attributes = True


class WorkflowCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    department: Optional[Department] = None
    is_active: bool = True
    templates: List[TaskTemplateCreate] = Field(default_factory=list)


class WorkflowUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    department: Optional[Department] = None
    is_active: Optional[bool] = None

    @field_validator("name", "is_active")
    @classmethod
    def not_null(cls, v):
        return reject_null(v)


class WorkflowResponse(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    department: Optional[Department] = None
    is_active: bool
    templates: List[TaskTemplateResponse] = []
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class AssignmentCreate(BaseModel):
    user_id: int
    workflow_id: int


class TaskUpdate(BaseModel):
    status: Optional[TaskStatus] = None
    notes: Optional[str] = None

    @field_validator("status")
    @classmethod
    def not_null(cls, v):
        return reject_null(v)


class TaskCompleteRequest(BaseModel):
    notes: Optional[str] = None


class TaskResponse(BaseModel):
    id: int
    assignment_id: int
    template_id: Optional[int] = None
    title: str
    description: Optional[str] = None
    task_type: str
    order_index: int
    sop_id: Optional[int] = None
    status: TaskStatus
    due_date: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    completed_by_id: Optional[int] = None
    notes: Optional[str] = None

    class Config:
        from_attributes = True


class AssignmentResponse(BaseModel):
    id: int
    user_id: int
    user_name: Optional[str] = None
    workflow_id: int
    workflow_name: Optional[str] = None
    status: AssignmentStatus
    started_at: datetime
    completed_at: Optional[datetime] = None
    progress: int
    tasks: List[TaskResponse] = []


def workflow_to_response(workflow: OnboardingWorkflow) -> WorkflowResponse:
    return WorkflowResponse.model_validate(workflow)


def assignment_to_response(assignment: OnboardingAssignment) -> AssignmentResponse:
    return AssignmentResponse(
        id=assignment.id,
        user_id=assignment.user_id,
        user_name=assignment.user.full_name if assignment.user else None,
        workflow_id=assignment.workflow_id,
        workflow_name=assignment.workflow.name if assignment.workflow else None,
        status=assignment.status,
        started_at=assignment.started_at,
        completed_at=assignment.completed_at,
        progress=assignment.progress,
        tasks=[TaskResponse.model_validate(t) for t in sorted(assignment.tasks, key=lambda t: t.order_index)],
    )
