"""
Background jobs.

Each job opens its own database session and logs failures instead of
raising, so one broken job never stops the scheduler.
"""

import logging
from typing import Awaitable, Callable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.core.database import async_session_maker
from app.services import lifecycle, notifications, onboarding, xero
from app.services.email_service import email_service

logger = logging.getLogger(__name__)

Job = Callable[[AsyncSession], Awaitable[object]]

_scheduler: Optional[AsyncIOScheduler] = None


async def run_job(name: str, job: Job) -> None:
    logger.info("Scheduled job %s started", name)
    try:
        async with async_session_maker() as db:
            result = await job(db)
    except Exception:
        logger.exception("Scheduled job %s failed", name)
        return
    logger.info("Scheduled job %s finished: %s", name, result)


async def _xero_sync(db: AsyncSession):
    if await xero.get_active_connection(db) is None:
        return "skipped (not connected)"
    sync_log = await xero.sync_employees(db)
    return sync_log.status


JOBS = [
    ("status-refresh", lifecycle.refresh_statuses, CronTrigger(hour=1, minute=0)),
    ("xero-sync", _xero_sync, CronTrigger(hour=2, minute=0)),
    ("onboarding-check", onboarding.check_incomplete_onboarding, CronTrigger(hour=3, minute=0)),
    ("daily-digest", notifications.send_daily_digests, CronTrigger(hour=7, minute=0)),
    ("policy-review-reminders", notifications.send_policy_review_reminders, CronTrigger(hour=8, minute=0)),
    ("credential-expiry-alerts", notifications.send_credential_expiry_alerts, CronTrigger(hour=8, minute=30)),
    ("pd-due-reminders", notifications.send_pd_due_reminders, CronTrigger(hour=9, minute=0)),
    ("email-retry", email_service.retry_failed_emails, IntervalTrigger(hours=2)),
]


def start_scheduler() -> Optional[AsyncIOScheduler]:
    global _scheduler
    if not config.SCHEDULER_ENABLED:
        logger.info("Scheduler disabled")
        return None
    if _scheduler is not None:
        return _scheduler

    scheduler = AsyncIOScheduler(timezone=config.SCHEDULER_TIMEZONE)
    for name, job, trigger in JOBS:
        scheduler.add_job(
            run_job,
            trigger=trigger,
            args=[name, job],
            id=name,
            name=name,
            coalesce=True,
            max_instances=1,
            replace_existing=True,
        )
    scheduler.start()
    _scheduler = scheduler
    logger.info("Scheduler started with %d jobs (%s)", len(JOBS), config.SCHEDULER_TIMEZONE)
    return scheduler


def stop_scheduler() -> None:
    global _scheduler
    if _scheduler is not None:
        _scheduler.shutdown(wait=False)
        _scheduler = None
        logger.info("Scheduler stopped")


def job_summaries() -> list[dict]:
    """Registered jobs with their next run time, for the admin view."""
    if _scheduler is None:
        return [{"id": name, "next_run_at": None} for name, _, _ in JOBS]
    return [
        {"id": job.id, "next_run_at": job.next_run_time}
        for job in _scheduler.get_jobs()
    ]
