"""
Onboarding workflow endpoints.

Workflows hold ordered task templates; assigning a workflow to a user
expands the applicable templates into tasks (and planned PD items).
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status, Query, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.utils import apply_filter, apply_search_filter, count_of, get_or_404, paginate, utcnow
from app.models.audit import AuditAction
from app.models.onboarding import (
    AssignmentStatus,
    OnboardingAssignment,
    OnboardingTask,
    OnboardingTaskTemplate,
    OnboardingWorkflow,
)
from app.models.user import Department, User
from app.auth.audit import log_action
from app.auth.dependencies import require_permission
from app.schemas.common import PaginatedResponse, DEFAULT_PER_PAGE, MAX_PER_PAGE
from app.schemas.onboarding import (
    AssignmentCreate,
    AssignmentResponse,
    TaskCompleteRequest,
    TaskResponse,
    TaskTemplateCreate,
    TaskTemplateResponse,
    TaskUpdate,
    WorkflowCreate,
    WorkflowResponse,
    WorkflowUpdate,
    assignment_to_response,
    workflow_to_response,
)
from app.services import onboarding as onboarding_service

router = APIRouter()


def _template(data: TaskTemplateCreate) -> OnboardingTaskTemplate:
    return OnboardingTaskTemplate(**data.model_dump())


async def _load_workflow(db: AsyncSession, workflow_id: int) -> OnboardingWorkflow:
    return await get_or_404(db, OnboardingWorkflow, workflow_id, "Workflow not found")


async def _load_assignment(db: AsyncSession, assignment_id: int) -> OnboardingAssignment:
    return await get_or_404(db, OnboardingAssignment, assignment_id, "Assignment not found")


# ============================================================================
# Workflows
# ============================================================================

@router.get("/workflows", response_model=PaginatedResponse[WorkflowResponse])
async def list_workflows(
    page: int = Query(1, ge=1),
    per_page: int = Query(DEFAULT_PER_PAGE, ge=1, le=MAX_PER_PAGE),
    department: Optional[Department] = None,
    is_active: Optional[bool] = None,
    q: Optional[str] = Query(None, max_length=100),
    current_user: User = Depends(require_permission("onboarding.read")),
    db: AsyncSession = Depends(get_db),
):
    query, count_query = apply_filter(
        select(OnboardingWorkflow), count_of(OnboardingWorkflow),
        OnboardingWorkflow.deleted_at.is_(None),
    )
    if department:
        query, count_query = apply_filter(query, count_query, OnboardingWorkflow.department == department)
    if is_active is not None:
        query, count_query = apply_filter(query, count_query, OnboardingWorkflow.is_active.is_(is_active))
    query, count_query = apply_search_filter(
        query, count_query, q, OnboardingWorkflow.name, OnboardingWorkflow.description,
    )

    items, total = await paginate(db, query, count_query, page, per_page, [OnboardingWorkflow.name.asc()])
    return PaginatedResponse.create(
        items=[workflow_to_response(w) for w in items],
        total=total,
        page=page,
        per_page=per_page,
    )


@router.post("/workflows", response_model=WorkflowResponse, status_code=status.HTTP_201_CREATED)
async def create_workflow(
    request: Request,
    data: WorkflowCreate,
    current_user: User = Depends(require_permission("onboarding.create")),
    db: AsyncSession = Depends(get_db),
):
    workflow = OnboardingWorkflow(
        **data.model_dump(exclude={"templates"}),
        templates=[_template(t) for t in data.templates],
    )
    db.add(workflow)
    await db.flush()

    await log_action(
        db, request, current_user, AuditAction.CREATE, "onboarding_workflow",
        resource_id=workflow.id, resource_name=workflow.name,
        details={"templates": len(workflow.templates)},
    )
    await db.commit()
    return workflow_to_response(workflow)


@router.get("/workflows/{workflow_id}", response_model=WorkflowResponse)
async def get_workflow(
    workflow_id: int,
    current_user: User = Depends(require_permission("onboarding.read")),
    db: AsyncSession = Depends(get_db),
):
    return workflow_to_response(await _load_workflow(db, workflow_id))


@router.patch("/workflows/{workflow_id}", response_model=WorkflowResponse)
async def update_workflow(
    request: Request,
    workflow_id: int,
    data: WorkflowUpdate,
    current_user: User = Depends(require_permission("onboarding.update")),
    db: AsyncSession = Depends(get_db),
):
    workflow = await _load_workflow(db, workflow_id)
    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(workflow, field, value)

    await log_action(
        db, request, current_user, AuditAction.UPDATE, "onboarding_workflow",
        resource_id=workflow.id, resource_name=workflow.name,
        details={"changes": data.model_dump(exclude_unset=True, mode="json")},
    )
    await db.commit()
    return workflow_to_response(workflow)


@router.delete("/workflows/{workflow_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_workflow(
    request: Request,
    workflow_id: int,
    current_user: User = Depends(require_permission("onboarding.delete")),
    db: AsyncSession = Depends(get_db),
):
    """Soft delete; existing assignments keep their tasks."""
    workflow = await _load_workflow(db, workflow_id)
    workflow.deleted_at = utcnow()
    workflow.is_active = False

    await log_action(
        db, request, current_user, AuditAction.DELETE, "onboarding_workflow",
        resource_id=workflow.id, resource_name=workflow.name,
    )
    await db.commit()


@router.post(
    "/workflows/{workflow_id}/templates",
    response_model=TaskTemplateResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_template(
    request: Request,
    workflow_id: int,
    data: TaskTemplateCreate,
    current_user: User = Depends(require_permission("onboarding.update")),
    db: AsyncSession = Depends(get_db),
):
    workflow = await _load_workflow(db, workflow_id)
    template = _template(data)
    workflow.templates.append(template)
    await db.flush()

    await log_action(
        db, request, current_user, AuditAction.UPDATE, "onboarding_workflow",
        resource_id=workflow.id, resource_name=workflow.name,
        details={"template_id": template.id, "title": template.title},
    )
    await db.commit()
    return TaskTemplateResponse.model_validate(template)


# ============================================================================
# Assignments
# ============================================================================

@router.get("/assignments", response_model=PaginatedResponse[AssignmentResponse])
async def list_assignments(
    page: int = Query(1, ge=1),
    per_page: int = Query(DEFAULT_PER_PAGE, ge=1, le=MAX_PER_PAGE),
    user_id: Optional[int] = None,
    workflow_id: Optional[int] = None,
    status_filter: Optional[AssignmentStatus] = Query(None, alias="status"),
    current_user: User = Depends(require_permission("onboarding.read")),
    db: AsyncSession = Depends(get_db),
):
    query, count_query = select(OnboardingAssignment), count_of(OnboardingAssignment)
    if user_id is not None:
        query, count_query = apply_filter(query, count_query, OnboardingAssignment.user_id == user_id)
    if workflow_id is not None:
        query, count_query = apply_filter(query, count_query, OnboardingAssignment.workflow_id == workflow_id)
    if status_filter:
        query, count_query = apply_filter(query, count_query, OnboardingAssignment.status == status_filter)

    items, total = await paginate(
        db, query, count_query, page, per_page, [OnboardingAssignment.started_at.desc()],
    )
    return PaginatedResponse.create(
        items=[assignment_to_response(a) for a in items],
        total=total,
        page=page,
        per_page=per_page,
    )


@router.post("/assignments", response_model=AssignmentResponse, status_code=status.HTTP_201_CREATED)
async def create_assignment(
    request: Request,
    data: AssignmentCreate,
    current_user: User = Depends(require_permission("onboarding.create")),
    db: AsyncSession = Depends(get_db),
):
    """Assign a workflow; tasks are generated from the applicable templates."""
    try:
        assignment = await onboarding_service.create_assignment(db, data.user_id, data.workflow_id)
    except onboarding_service.OnboardingError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)

    await log_action(
        db, request, current_user, AuditAction.ASSIGN, "onboarding_assignment",
        resource_id=assignment.id,
        details={
            "user_id": assignment.user_id,
            "workflow_id": assignment.workflow_id,
            "tasks": len(assignment.tasks),
        },
    )
    await db.commit()
    return assignment_to_response(assignment)


@router.get("/assignments/user/{user_id}", response_model=List[AssignmentResponse])
async def get_user_assignments(
    user_id: int,
    current_user: User = Depends(require_permission("onboarding.read")),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(OnboardingAssignment)
        .where(OnboardingAssignment.user_id == user_id)
        .order_by(OnboardingAssignment.started_at.desc())
    )
    return [assignment_to_response(a) for a in result.scalars().all()]


@router.get("/assignments/{assignment_id}", response_model=AssignmentResponse)
async def get_assignment(
    assignment_id: int,
    current_user: User = Depends(require_permission("onboarding.read")),
    db: AsyncSession = Depends(get_db),
):
    return assignment_to_response(await _load_assignment(db, assignment_id))


# ============================================================================
# Tasks
# ============================================================================

@router.patch("/tasks/{task_id}", response_model=TaskResponse)
async def update_task(
    request: Request,
    task_id: int,
    data: TaskUpdate,
    current_user: User = Depends(require_permission("onboarding.update")),
    db: AsyncSession = Depends(get_db),
):
    task = await get_or_404(db, OnboardingTask, task_id, "Task not found")

    await log_action(
        db, request, current_user, AuditAction.UPDATE, "onboarding_task",
        resource_id=task.id, resource_name=task.title,
        details={"changes": data.model_dump(exclude_unset=True, mode="json")},
    )
    await onboarding_service.update_task(db, task, current_user, data.status, data.notes)
    return TaskResponse.model_validate(task)


@router.post("/tasks/{task_id}/complete", response_model=AssignmentResponse)
async def complete_task(
    request: Request,
    task_id: int,
    data: Optional[TaskCompleteRequest] = None,
    current_user: User = Depends(require_permission("onboarding.update")),
    db: AsyncSession = Depends(get_db),
):
    """Complete a task and return the assignment with refreshed progress."""
    task = await get_or_404(db, OnboardingTask, task_id, "Task not found")

    await log_action(
        db, request, current_user, AuditAction.COMPLETE, "onboarding_task",
        resource_id=task.id, resource_name=task.title,
        details={"status": "Completed"},
    )
    assignment = await onboarding_service.complete_task(
        db, task, current_user, data.notes if data else None,
    )
    return assignment_to_response(assignment)


@router.get("/progress/{user_id}")
async def get_progress(
    user_id: int,
    current_user: User = Depends(require_permission("onboarding.read")),
    db: AsyncSession = Depends(get_db),
):
    """Per-assignment progress plus the rounded mean across assignments."""
    return await onboarding_service.get_user_progress(db, user_id)
