"""
Compliance reports, downloadable as PDF or CSV or returned as JSON.
"""

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.models.audit import AuditAction
from app.models.user import User
from app.auth.audit import log_action
from app.auth.dependencies import PermissionChecker
from app.services import reports

router = APIRouter()

FORMAT_PATTERN = "^(pdf|csv|json)$"


def report_permission(permission: str) -> PermissionChecker:
    return PermissionChecker(["reports.read", permission], require_all=True)


async def _render(db: AsyncSession, request: Request, user: User, name: str, data: dict, fmt: str):
    await log_action(
        db, request, user, AuditAction.REPORT_GENERATED, "report",
        resource_name=name,
        details={"format": fmt},
    )
    await db.commit()
    return reports.render_report(name, data, fmt)


@router.get("/compliance-gaps")
async def compliance_gaps_report(
    request: Request,
    format: str = Query("pdf", pattern=FORMAT_PATTERN),
    current_user: User = Depends(report_permission("standards.read")),
    db: AsyncSession = Depends(get_db),
):
    """Standards with full, partial or no policy/SOP coverage."""
    data = await reports.compliance_gaps(db)
    return await _render(db, request, current_user, "compliance-gaps", data, format)


@router.get("/audit-readiness")
async def audit_readiness_report(
    request: Request,
    format: str = Query("pdf", pattern=FORMAT_PATTERN),
    current_user: User = Depends(report_permission("policies.read")),
    db: AsyncSession = Depends(get_db),
):
    data = await reports.audit_readiness(db)
    return await _render(db, request, current_user, "audit-readiness", data, format)


@router.get("/pd-completion")
async def pd_completion_report(
    request: Request,
    format: str = Query("pdf", pattern=FORMAT_PATTERN),
    current_user: User = Depends(report_permission("pd.read")),
    db: AsyncSession = Depends(get_db),
):
    data = await reports.pd_completion(db)
    return await _render(db, request, current_user, "pd-completion", data, format)


@router.get("/feedback-summary")
async def feedback_summary_report(
    request: Request,
    format: str = Query("pdf", pattern=FORMAT_PATTERN),
    current_user: User = Depends(report_permission("feedback.read")),
    db: AsyncSession = Depends(get_db),
):
    data = await reports.feedback_summary(db)
    return await _render(db, request, current_user, "feedback-summary", data, format)
