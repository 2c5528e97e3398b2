"""
Onboarding workflow assignment.

Assigning a workflow expands its task templates into tasks for one user.
Templates are filtered by the user's department and role names; templates
carrying a PD category also plan a PD item.
"""

import logging
from datetime import timedelta
from typing import Optional

from sqlalchemy import select, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.utils import utcnow
from app.models.onboarding import (
    OnboardingWorkflow,
    OnboardingAssignment,
    OnboardingTask,
    AssignmentStatus,
    TaskStatus,
)
from app.models.staff import PDItem, PDStatus
from app.models.user import User, UserStatus
from app.services.notifications import notify

logger = logging.getLogger(__name__)

REMINDER_INTERVAL = timedelta(days=7)


class OnboardingError(Exception):
    status_code = 400

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class OnboardingNotFound(OnboardingError):
    status_code = 404


class AssignmentExists(OnboardingError):
    status_code = 409

    def __init__(self, detail: str = "Assignment already exists for this user and workflow"):
        super().__init__(detail)


def build_assignment(user: User, workflow: OnboardingWorkflow) -> tuple[OnboardingAssignment, list[PDItem]]:
    """
    Create the assignment, its tasks and any PD items in the session's
    pending state. Nothing is flushed; the caller commits once.
    """
    now = utcnow()
    role_names = user.role_names

    assignment = OnboardingAssignment(
        user=user,
        workflow=workflow,
        status=AssignmentStatus.IN_PROGRESS,
        started_at=now,
    )

    templates = [t for t in workflow.templates if t.applies_to(user.department, role_names)]
    assignment.tasks = [
        OnboardingTask(
            template_id=template.id,
            title=template.title,
            description=template.description,
            task_type=template.task_type,
            order_index=template.order_index,
            sop_id=template.sop_id,
            status=TaskStatus.PENDING,
            due_date=now + timedelta(days=template.days_to_complete),
        )
        for template in sorted(templates, key=lambda t: t.order_index)
    ]

    pd_items = [
        PDItem(
            user_id=user.id,
            title=template.title,
            description=template.description,
            category=template.pd_category,
            due_at=now + timedelta(days=template.days_to_complete),
            status=PDStatus.PLANNED,
        )
        for template in templates
        if template.pd_category
    ]
    return assignment, pd_items


async def _existing_assignment(db: AsyncSession, user_id: int, workflow_id: int) -> Optional[OnboardingAssignment]:
    result = await db.execute(
        select(OnboardingAssignment).where(
            OnboardingAssignment.user_id == user_id,
            OnboardingAssignment.workflow_id == workflow_id,
        )
    )
    return result.scalar_one_or_none()


async def create_assignment(db: AsyncSession, user_id: int, workflow_id: int) -> OnboardingAssignment:
    """
    Assign a workflow to a user in a single transaction.

    Raises:
        OnboardingNotFound: unknown user or workflow
        AssignmentExists: the user already has this workflow
    """
    user = await db.scalar(select(User).where(User.id == user_id, User.deleted_at.is_(None)))
    if user is None:
        raise OnboardingNotFound("User not found")

    workflow = await db.scalar(
        select(OnboardingWorkflow).where(
            OnboardingWorkflow.id == workflow_id,
            OnboardingWorkflow.deleted_at.is_(None),
        )
    )
    if workflow is None:
        raise OnboardingNotFound("Workflow not found")

    if await _existing_assignment(db, user_id, workflow_id):
        raise AssignmentExists()

    assignment, pd_items = build_assignment(user, workflow)
    db.add(assignment)
    db.add_all(pd_items)
    try:
        await db.commit()
    except IntegrityError:
        # Lost a race with a concurrent assignment
        await db.rollback()
        raise AssignmentExists()

    logger.info(
        "Assigned workflow %s to user %s with %d tasks",
        workflow.id, user.id, len(assignment.tasks),
    )
    return assignment


async def complete_task(
    db: AsyncSession,
    task: OnboardingTask,
    user: User,
    notes: Optional[str] = None,
) -> OnboardingAssignment:
    """Mark a task completed; complete the assignment when nothing is left."""
    return await update_task(db, task, user, TaskStatus.COMPLETED, notes)


async def update_task(
    db: AsyncSession,
    task: OnboardingTask,
    user: User,
    status: Optional[TaskStatus] = None,
    notes: Optional[str] = None,
) -> OnboardingAssignment:
    """
    Apply a task status change and keep the assignment status in step:
    Completed once every task is Completed or Skipped, InProgress again
    if a finished task is reopened.
    """
    now = utcnow()
    if status is not None and status != task.status:
        task.status = status
        if status == TaskStatus.COMPLETED:
            task.completed_at = now
            task.completed_by_id = user.id
        else:
            task.completed_at = None
            task.completed_by_id = None
    if notes is not None:
        task.notes = notes

    assignment = await db.scalar(
        select(OnboardingAssignment).where(OnboardingAssignment.id == task.assignment_id)
    )
    if assignment.all_tasks_done:
        if assignment.status != AssignmentStatus.COMPLETED:
            assignment.status = AssignmentStatus.COMPLETED
            assignment.completed_at = now
            logger.info("Onboarding assignment %s completed", assignment.id)
    elif assignment.status == AssignmentStatus.COMPLETED:
        assignment.status = AssignmentStatus.IN_PROGRESS
        assignment.completed_at = None

    await db.commit()
    return assignment


def assignment_progress(assignment: OnboardingAssignment) -> dict:
    completed = sum(1 for t in assignment.tasks if t.status == TaskStatus.COMPLETED)
    return {
        "assignment_id": assignment.id,
        "workflow_id": assignment.workflow_id,
        "workflow_name": assignment.workflow.name if assignment.workflow else None,
        "status": assignment.status.value,
        "total_tasks": len(assignment.tasks),
        "completed_tasks": completed,
        "progress": assignment.progress,
    }


async def get_user_progress(db: AsyncSession, user_id: int) -> dict:
    result = await db.execute(
        select(OnboardingAssignment)
        .where(OnboardingAssignment.user_id == user_id)
        .order_by(OnboardingAssignment.started_at)
    )
    assignments = [assignment_progress(a) for a in result.scalars().all()]
    overall = (
        round(sum(a["progress"] for a in assignments) / len(assignments))
        if assignments else 0
    )
    return {"user_id": user_id, "assignments": assignments, "overall_progress": overall}


async def trigger_onboarding_for_new_user(db: AsyncSession, user: User) -> list[OnboardingAssignment]:
    """Assign every active workflow that applies to the user's department."""
    result = await db.execute(
        select(OnboardingWorkflow).where(
            OnboardingWorkflow.is_active.is_(True),
            OnboardingWorkflow.deleted_at.is_(None),
            or_(
                OnboardingWorkflow.department.is_(None),
                OnboardingWorkflow.department == user.department,
            ),
        )
    )

    created = []
    for workflow in result.scalars().all():
        if await _existing_assignment(db, user.id, workflow.id):
            continue
        assignment, pd_items = build_assignment(user, workflow)
        db.add(assignment)
        db.add_all(pd_items)
        created.append(assignment)

    if created:
        await db.commit()
        logger.info("Auto-assigned %d onboarding workflows to user %s", len(created), user.id)
    return created


async def check_incomplete_onboarding(db: AsyncSession) -> dict:
    """
    Remind users whose assignment has been in progress for a week.

    Reminders repeat at most weekly per assignment.
    """
    now = utcnow()
    cutoff = now - REMINDER_INTERVAL
    result = await db.execute(
        select(OnboardingAssignment).where(
            OnboardingAssignment.status == AssignmentStatus.IN_PROGRESS,
            OnboardingAssignment.started_at <= cutoff,
            or_(
                OnboardingAssignment.notification_sent_at.is_(None),
                OnboardingAssignment.notification_sent_at <= cutoff,
            ),
        )
    )

    sent = failed = 0
    for assignment in result.scalars().all():
        user = assignment.user
        if user is None or user.deleted_at is not None or user.status != UserStatus.ACTIVE:
            continue
        remaining = [t for t in assignment.tasks if t.status in (TaskStatus.PENDING, TaskStatus.IN_PROGRESS)]
        ok = await notify(
            db, user,
            "Incomplete Onboarding Tasks",
            f'You have {len(remaining)} incomplete onboarding tasks in the "{assignment.workflow.name}" workflow.',
            "onboarding-reminder",
            {
                "workflow_name": assignment.workflow.name,
                "progress": assignment.progress,
                "remaining_tasks": len(remaining),
            },
        )
        assignment.notification_sent_at = now
        if ok:
            sent += 1
        else:
            failed += 1

    await db.commit()
    logger.info("Incomplete onboarding check: %d sent, %d failed", sent, failed)
    return {"sent": sent, "failed": failed}
