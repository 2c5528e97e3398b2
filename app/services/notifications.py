"""
Notification jobs.

Each job records a Notification row per recipient, sends the matching
email template and reports `{"sent": n, "failed": n}`.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.config import FRONTEND_URL
from app.core.utils import as_utc, days_until, utcnow
from app.models.complaint import Complaint, ComplaintStatus
from app.models.notification import Notification, NotificationType, EmailStatus
from app.models.policy import Policy, PolicyStatus
from app.models.staff import Credential, CredentialStatus, PDItem, PDStatus
from app.models.user import User, UserStatus, RoleName
from app.services.email_service import email_service

logger = logging.getLogger(__name__)

POLICY_REVIEW_WINDOW = timedelta(days=30)
CREDENTIAL_EXPIRY_WINDOW = timedelta(days=30)
PD_REMINDER_WINDOW = timedelta(days=14)
DIGEST_ITEM_LIMIT = 5
COMPLAINT_HANDLER_ROLES = {RoleName.SYSTEM_ADMIN.value, RoleName.COMPLIANCE_ADMIN.value}


def format_date(value: Optional[datetime]) -> str:
    """Australian date format used in notification copy."""
    if value is None:
        return "N/A"
    return as_utc(value).strftime("%d/%m/%Y")


async def notify(
    db: AsyncSession,
    user: User,
    title: str,
    message: str,
    template_name: str,
    data: Dict[str, Any],
) -> bool:
    """Record a notification for `user` and email it. Returns True when sent."""
    notification = Notification(
        user_id=user.id,
        type=NotificationType.EMAIL,
        title=title,
        message=message,
        sent_at=utcnow(),
    )
    db.add(notification)
    await db.flush()

    data.setdefault("user_name", user.full_name)
    log = await email_service.send_email(db, user.email, template_name, data, notification.id)
    return log.status == EmailStatus.SENT


def _tally(results) -> Dict[str, int]:
    sent = sum(1 for ok in results if ok)
    return {"sent": sent, "failed": len(results) - sent}


async def send_policy_review_reminders(db: AsyncSession) -> Dict[str, int]:
    """Remind owners of published policies whose review falls in the next 30 days."""
    now = utcnow()
    result = await db.execute(
        select(Policy).where(
            Policy.deleted_at.is_(None),
            Policy.status == PolicyStatus.PUBLISHED,
            Policy.owner_id.is_not(None),
            Policy.review_date >= now,
            Policy.review_date <= now + POLICY_REVIEW_WINDOW,
        )
    )

    results = []
    for policy in result.scalars().all():
        owner = policy.owner
        if owner is None or not owner.is_active:
            continue
        review_due = format_date(policy.review_date)
        results.append(await notify(
            db, owner,
            "Policy Review Due Soon",
            f'Policy "{policy.title}" is due for review on {review_due}',
            "policy-review-reminder",
            {
                "policy_title": policy.title,
                "review_due_date": review_due,
                "days_remaining": days_until(policy.review_date, now),
                "policy_url": f"{FRONTEND_URL}/policies/{policy.id}",
            },
        ))

    summary = _tally(results)
    logger.info("Policy review reminders: %s", summary)
    return summary


async def send_credential_expiry_alerts(db: AsyncSession) -> Dict[str, int]:
    """Alert holders of active credentials expiring in the next 30 days."""
    now = utcnow()
    result = await db.execute(
        select(Credential)
        .options(selectinload(Credential.user))
        .where(
            Credential.status == CredentialStatus.ACTIVE,
            Credential.expires_at >= now,
            Credential.expires_at <= now + CREDENTIAL_EXPIRY_WINDOW,
        )
    )

    results = []
    for credential in result.scalars().all():
        user = credential.user
        if user is None or not user.is_active:
            continue
        expiry = format_date(credential.expires_at)
        results.append(await notify(
            db, user,
            "Credential Expiring Soon",
            f'Your credential "{credential.name}" expires on {expiry}',
            "credential-expiry-alert",
            {
                "credential_name": credential.name,
                "credential_type": credential.type.value,
                "expiry_date": expiry,
                "days_remaining": days_until(credential.expires_at, now),
                "credential_url": f"{FRONTEND_URL}/credentials/{credential.id}",
            },
        ))

    summary = _tally(results)
    logger.info("Credential expiry alerts: %s", summary)
    return summary


async def send_pd_due_reminders(db: AsyncSession) -> Dict[str, int]:
    """Remind staff of planned or due PD items due in the next 14 days."""
    now = utcnow()
    result = await db.execute(
        select(PDItem)
        .options(selectinload(PDItem.user))
        .where(
            PDItem.status.in_([PDStatus.PLANNED, PDStatus.DUE]),
            PDItem.due_at >= now,
            PDItem.due_at <= now + PD_REMINDER_WINDOW,
        )
    )

    results = []
    for item in result.scalars().all():
        user = item.user
        if user is None or not user.is_active:
            continue
        due = format_date(item.due_at)
        results.append(await notify(
            db, user,
            "Professional Development Due",
            f'PD activity "{item.title}" is due on {due}',
            "pd-due-reminder",
            {
                "pd_title": item.title,
                "pd_category": item.category.value if item.category else None,
                "pd_hours": item.hours,
                "due_date": due,
                "days_remaining": days_until(item.due_at, now),
                "pd_url": f"{FRONTEND_URL}/pd/{item.id}",
            },
        ))

    summary = _tally(results)
    logger.info("PD due reminders: %s", summary)
    return summary


async def _complaint_handlers(db: AsyncSession) -> list[User]:
    result = await db.execute(
        select(User).where(User.deleted_at.is_(None), User.status == UserStatus.ACTIVE)
    )
    return [
        user for user in result.scalars().all()
        if user.has_role(RoleName.COMPLIANCE_ADMIN.value)
    ]


async def send_complaint_notification(db: AsyncSession, complaint: Complaint) -> Dict[str, int]:
    """Tell every compliance admin about a new complaint."""
    submitted = format_date(complaint.submitted_at)
    results = []
    for user in await _complaint_handlers(db):
        results.append(await notify(
            db, user,
            "New Complaint Submitted",
            f"Complaint #{complaint.id} from {complaint.source.value} requires attention",
            "complaint-notification",
            {
                "complaint_id": complaint.id,
                "source": complaint.source.value,
                "submitted_at": submitted,
                "description": complaint.description[:500],
                "complaint_url": f"{FRONTEND_URL}/complaints/{complaint.id}",
            },
        ))
    return _tally(results)


async def send_welcome_email(db: AsyncSession, user: User, task_count: int = 0) -> bool:
    return await notify(
        db, user,
        "Welcome to RTO Compliance Hub",
        "Your account has been created. Please complete your onboarding tasks.",
        "welcome-onboarding",
        {
            "email": user.email,
            "department": user.department.value,
            "task_count": task_count,
            "login_url": f"{FRONTEND_URL}/login",
        },
    )


async def build_digest(db: AsyncSession, user: User, now: Optional[datetime] = None) -> Dict[str, list]:
    """Collect up to five items per digest section for `user`."""
    now = now or utcnow()
    horizon = now + timedelta(days=30)

    policies = await db.execute(
        select(Policy).where(
            Policy.owner_id == user.id,
            Policy.deleted_at.is_(None),
            Policy.status == PolicyStatus.PUBLISHED,
            Policy.review_date >= now,
            Policy.review_date <= horizon,
        ).order_by(Policy.review_date).limit(DIGEST_ITEM_LIMIT)
    )
    credentials = await db.execute(
        select(Credential).where(
            Credential.user_id == user.id,
            Credential.status == CredentialStatus.ACTIVE,
            Credential.expires_at >= now,
            Credential.expires_at <= horizon,
        ).order_by(Credential.expires_at).limit(DIGEST_ITEM_LIMIT)
    )
    pd_items = await db.execute(
        select(PDItem).where(
            PDItem.user_id == user.id,
            PDItem.status.in_([PDStatus.PLANNED, PDStatus.DUE]),
            PDItem.due_at >= now,
            PDItem.due_at <= horizon,
        ).order_by(PDItem.due_at).limit(DIGEST_ITEM_LIMIT)
    )

    complaints = []
    if COMPLAINT_HANDLER_ROLES.intersection(user.role_names):
        rows = await db.execute(
            select(Complaint).where(
                Complaint.status.in_([ComplaintStatus.NEW, ComplaintStatus.IN_REVIEW])
            ).order_by(Complaint.submitted_at).limit(DIGEST_ITEM_LIMIT)
        )
        complaints = [
            {"title": f"Complaint #{c.id}", "detail": c.status.value}
            for c in rows.scalars().all()
        ]

    return {
        "policies": [
            {"title": p.title, "detail": f"review due {format_date(p.review_date)}"}
            for p in policies.scalars().all()
        ],
        "credentials": [
            {"title": c.name, "detail": f"expires {format_date(c.expires_at)}"}
            for c in credentials.scalars().all()
        ],
        "pd_items": [
            {"title": i.title, "detail": f"due {format_date(i.due_at)}"}
            for i in pd_items.scalars().all()
        ],
        "complaints": complaints,
    }


async def send_daily_digests(db: AsyncSession) -> Dict[str, int]:
    """Send each active user a digest when they have anything to report."""
    result = await db.execute(
        select(User).where(User.deleted_at.is_(None), User.status == UserStatus.ACTIVE)
    )

    results = []
    for user in result.scalars().all():
        digest = await build_digest(db, user)
        if not any(digest.values()):
            continue
        results.append(await notify(
            db, user,
            "Daily Compliance Digest",
            "Your daily summary of upcoming compliance items",
            "digest-summary",
            {**digest, "dashboard_url": FRONTEND_URL},
        ))

    summary = _tally(results)
    logger.info("Daily digests: %s", summary)
    return summary
