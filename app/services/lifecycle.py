"""
Date-driven status rules for credentials, PD items, policy reviews and
complaint SLAs, plus the nightly job that persists refreshed statuses.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.utils import as_utc, days_until, utcnow
from app.models.staff import Credential, CredentialStatus, PDItem, PDStatus
from app.models.complaint import ComplaintStatus

logger = logging.getLogger(__name__)

EXPIRING_SOON_DAYS = 30
PD_DUE_WINDOW_DAYS = 30
REVIEW_DUE_SOON_DAYS = 30
# Two business days expressed in calendar days
COMPLAINT_SLA = timedelta(days=2.8)


def credential_status(
    expires_at: Optional[datetime],
    manual_status: Optional[CredentialStatus] = None,
    now: Optional[datetime] = None,
) -> CredentialStatus:
    if manual_status == CredentialStatus.REVOKED:
        return CredentialStatus.REVOKED
    if expires_at is None:
        return CredentialStatus.ACTIVE
    now = now or utcnow()
    if now > as_utc(expires_at):
        return CredentialStatus.EXPIRED
    return CredentialStatus.ACTIVE


def credential_is_expiring_soon(expires_at: Optional[datetime], now: Optional[datetime] = None) -> bool:
    if expires_at is None:
        return False
    return 0 <= days_until(expires_at, now) <= EXPIRING_SOON_DAYS


def pd_status(
    due_at: Optional[datetime],
    completed_at: Optional[datetime],
    current_status: Optional[PDStatus] = None,
    now: Optional[datetime] = None,
) -> PDStatus:
    """Verified and completed items keep their status; the rest follow the due date."""
    if current_status == PDStatus.VERIFIED:
        return PDStatus.VERIFIED
    if completed_at is not None:
        return PDStatus.COMPLETED
    if due_at is None:
        return PDStatus.PLANNED
    remaining = days_until(due_at, now)
    if remaining < 0:
        return PDStatus.OVERDUE
    if remaining <= PD_DUE_WINDOW_DAYS:
        return PDStatus.DUE
    return PDStatus.PLANNED


def policy_review_status(review_date: Optional[datetime], now: Optional[datetime] = None) -> str:
    if review_date is None:
        return "NotScheduled"
    now = now or utcnow()
    if now > as_utc(review_date):
        return "Overdue"
    if days_until(review_date, now) <= REVIEW_DUE_SOON_DAYS:
        return "DueSoon"
    return "Current"


def complaint_sla_breached(
    status: ComplaintStatus,
    reference: Optional[datetime],
    now: Optional[datetime] = None,
) -> bool:
    """`reference` is the last status change (updated_at), falling back to submission."""
    if status == ComplaintStatus.CLOSED or reference is None:
        return False
    now = now or utcnow()
    return now - as_utc(reference) > COMPLAINT_SLA


def sla_cutoff(now: Optional[datetime] = None) -> datetime:
    """Complaints last touched before this instant are in breach."""
    return (now or utcnow()) - COMPLAINT_SLA


def refresh_credential(credential: Credential) -> Credential:
    credential.status = credential_status(credential.expires_at, credential.status)
    return credential


def refresh_pd_item(item: PDItem) -> PDItem:
    item.status = pd_status(item.due_at, item.completed_at, item.status)
    return item


async def refresh_statuses(db: AsyncSession) -> dict:
    """Persist date-derived statuses. Run nightly by the scheduler."""
    credentials_updated = 0
    result = await db.execute(
        select(Credential).where(Credential.status == CredentialStatus.ACTIVE)
    )
    for credential in result.scalars().all():
        previous = credential.status
        if refresh_credential(credential).status != previous:
            credentials_updated += 1

    pd_updated = 0
    result = await db.execute(
        select(PDItem).where(PDItem.status.in_([PDStatus.PLANNED, PDStatus.DUE, PDStatus.OVERDUE]))
    )
    for item in result.scalars().all():
        previous = item.status
        if refresh_pd_item(item).status != previous:
            pd_updated += 1

    await db.commit()
    logger.info(
        "Status refresh complete: %d credentials, %d PD items updated",
        credentials_updated, pd_updated,
    )
    return {"credentials_updated": credentials_updated, "pd_items_updated": pd_updated}
