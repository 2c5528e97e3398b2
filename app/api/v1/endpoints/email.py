"""
Email administration: test sends, delivery logs, manual job triggers and
the public unsubscribe link.
"""

from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status, Query, Request
from pydantic import EmailStr
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.utils import apply_filter, apply_search_filter, count_of, get_or_404, paginate, utcnow
from app.models.audit import AuditAction
from app.models.notification import EmailLog, EmailStatus
from app.models.onboarding import OnboardingAssignment, OnboardingTask, TaskStatus
from app.models.user import User
from app.auth.audit import log_action
from app.auth.dependencies import require_permission
from app.schemas.common import PaginatedResponse, SuccessResponse, DEFAULT_PER_PAGE, MAX_PER_PAGE
from app.schemas.email import EmailLogResponse, JobResult, TestEmailRequest
from app.services import notifications
from app.services.email_service import email_service
from app.services.email_templates import UnknownTemplateError

router = APIRouter()


async def _triggered(db: AsyncSession, request: Request, user: User, job: str, result: dict) -> JobResult:
    await log_action(
        db, request, user, AuditAction.EMAIL_SENT, "email_job",
        resource_name=job,
        details=result,
    )
    await db.commit()
    return JobResult(**result)


@router.post("/test", response_model=EmailLogResponse)
async def send_test_email(
    request: Request,
    data: TestEmailRequest,
    current_user: User = Depends(require_permission("email.create")),
    db: AsyncSession = Depends(get_db),
):
    """Send any registered template to an address; returns the delivery log."""
    try:
        log = await email_service.send_email(db, data.to, data.template_name, data.data)
    except UnknownTemplateError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    await log_action(
        db, request, current_user, AuditAction.EMAIL_SENT, "email",
        resource_id=log.id,
        details={"to": data.to, "template_name": data.template_name, "status": log.status.value},
    )
    await db.commit()
    return EmailLogResponse.model_validate(log)


@router.get("/logs", response_model=PaginatedResponse[EmailLogResponse])
async def list_email_logs(
    page: int = Query(1, ge=1),
    per_page: int = Query(DEFAULT_PER_PAGE, ge=1, le=MAX_PER_PAGE),
    status_filter: Optional[EmailStatus] = Query(None, alias="status"),
    template_name: Optional[str] = None,
    to: Optional[str] = Query(None, max_length=255),
    current_user: User = Depends(require_permission("email.read")),
    db: AsyncSession = Depends(get_db),
):
    query, count_query = select(EmailLog), count_of(EmailLog)
    if status_filter:
        query, count_query = apply_filter(query, count_query, EmailLog.status == status_filter)
    if template_name:
        query, count_query = apply_filter(query, count_query, EmailLog.template_name == template_name)
    query, count_query = apply_search_filter(query, count_query, to, EmailLog.to_address)

    items, total = await paginate(db, query, count_query, page, per_page, [EmailLog.created_at.desc()])
    return PaginatedResponse.create(
        items=[EmailLogResponse.model_validate(log) for log in items],
        total=total,
        page=page,
        per_page=per_page,
    )


@router.get("/stats")
async def get_email_stats(
    current_user: User = Depends(require_permission("email.read")),
    db: AsyncSession = Depends(get_db),
):
    """Totals by status and template, plus the last 24 hours."""
    by_status = await db.execute(select(EmailLog.status, func.count(EmailLog.id)).group_by(EmailLog.status))
    by_template = await db.execute(
        select(EmailLog.template_name, func.count(EmailLog.id)).group_by(EmailLog.template_name)
    )
    recent = await db.execute(
        select(EmailLog.status, func.count(EmailLog.id))
        .where(EmailLog.created_at >= utcnow() - timedelta(hours=24))
        .group_by(EmailLog.status)
    )

    status_counts = {s.value: count for s, count in by_status.all()}
    return {
        "total": sum(status_counts.values()),
        "by_status": status_counts,
        "by_template": {name or "none": count for name, count in by_template.all()},
        "last_24_hours": {s.value: count for s, count in recent.all()},
    }


@router.get("/unsubscribe", response_model=SuccessResponse)
async def unsubscribe(
    email: EmailStr,
    db: AsyncSession = Depends(get_db),
):
    """Public link from every email footer. Unknown addresses get the same answer."""
    await email_service.unsubscribe(db, email)
    return SuccessResponse(message="You have been unsubscribed from email notifications")


@router.post("/retry-failed")
async def retry_failed(
    request: Request,
    current_user: User = Depends(require_permission("email.update")),
    db: AsyncSession = Depends(get_db),
):
    result = await email_service.retry_failed_emails(db)
    await log_action(
        db, request, current_user, AuditAction.EMAIL_SENT, "email_job",
        resource_name="retry-failed",
        details=result,
    )
    await db.commit()
    return result


@router.post("/trigger/policy-reviews", response_model=JobResult)
async def trigger_policy_reviews(
    request: Request,
    current_user: User = Depends(require_permission("email.create")),
    db: AsyncSession = Depends(get_db),
):
    result = await notifications.send_policy_review_reminders(db)
    return await _triggered(db, request, current_user, "policy-reviews", result)


@router.post("/trigger/credential-expiry", response_model=JobResult)
async def trigger_credential_expiry(
    request: Request,
    current_user: User = Depends(require_permission("email.create")),
    db: AsyncSession = Depends(get_db),
):
    result = await notifications.send_credential_expiry_alerts(db)
    return await _triggered(db, request, current_user, "credential-expiry", result)


@router.post("/trigger/pd-reminders", response_model=JobResult)
async def trigger_pd_reminders(
    request: Request,
    current_user: User = Depends(require_permission("email.create")),
    db: AsyncSession = Depends(get_db),
):
    result = await notifications.send_pd_due_reminders(db)
    return await _triggered(db, request, current_user, "pd-reminders", result)


@router.post("/trigger/daily-digests", response_model=JobResult)
async def trigger_daily_digests(
    request: Request,
    current_user: User = Depends(require_permission("email.create")),
    db: AsyncSession = Depends(get_db),
):
    result = await notifications.send_daily_digests(db)
    return await _triggered(db, request, current_user, "daily-digests", result)


@router.post("/welcome/{user_id}", response_model=SuccessResponse)
async def send_welcome(
    request: Request,
    user_id: int,
    current_user: User = Depends(require_permission("email.create")),
    db: AsyncSession = Depends(get_db),
):
    user = await get_or_404(db, User, user_id, "User not found")
    task_count = await db.scalar(
        select(func.count(OnboardingTask.id))
        .join(OnboardingAssignment, OnboardingTask.assignment_id == OnboardingAssignment.id)
        .where(
            OnboardingAssignment.user_id == user.id,
            OnboardingTask.status.in_([TaskStatus.PENDING, TaskStatus.IN_PROGRESS]),
        )
    )

    sent = await notifications.send_welcome_email(db, user, task_count or 0)
    await log_action(
        db, request, current_user, AuditAction.EMAIL_SENT, "email",
        resource_name="welcome-onboarding",
        details={"user_id": user.id, "sent": sent},
    )
    await db.commit()
    return SuccessResponse(
        success=sent,
        message="Welcome email sent" if sent else "Welcome email could not be sent",
    )
