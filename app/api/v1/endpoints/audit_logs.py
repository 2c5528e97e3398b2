"""
Audit log API.

Read-only: entries are written by `log_action` and the audit middleware.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status, Query, Request
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.utils import apply_filter, apply_search_filter, count_of, paginate
from app.models.audit import AuditAction, AuditLog
from app.models.user import User
from app.auth.audit import log_action
from app.auth.dependencies import PermissionChecker, require_permission
from app.schemas.audit import AuditLogResponse, audit_log_to_response
from app.schemas.common import PaginatedResponse, UTCDateTime, DEFAULT_PER_PAGE, MAX_PER_PAGE
from app.services.export import csv_response

router = APIRouter()

TOP_USER_COUNT = 10
EXPORT_LIMIT = 10000

EXPORT_HEADERS = [
    "id", "timestamp", "user_id", "user_email", "action", "resource_type",
    "resource_id", "resource_name", "success", "ip_address", "request_id", "details",
]

can_export = PermissionChecker(["audit_logs.read", "audit_logs.export"], require_all=True)


def _filtered(query, count_query, user_id, resource_type, resource_id, action, date_from, date_to, q):
    if user_id is not None:
        query, count_query = apply_filter(query, count_query, AuditLog.user_id == user_id)
    if resource_type:
        query, count_query = apply_filter(query, count_query, AuditLog.resource_type == resource_type)
    if resource_id:
        query, count_query = apply_filter(query, count_query, AuditLog.resource_id == resource_id)
    if action:
        query, count_query = apply_filter(query, count_query, AuditLog.action == action)
    if date_from:
        query, count_query = apply_filter(query, count_query, AuditLog.timestamp >= date_from)
    if date_to:
        query, count_query = apply_filter(query, count_query, AuditLog.timestamp <= date_to)
    return apply_search_filter(
        query, count_query, q, AuditLog.user_email, AuditLog.resource_name, AuditLog.details,
    )


@router.get("", response_model=PaginatedResponse[AuditLogResponse])
async def list_audit_logs(
    page: int = Query(1, ge=1),
    per_page: int = Query(DEFAULT_PER_PAGE, ge=1, le=MAX_PER_PAGE),
    user_id: Optional[int] = None,
    resource_type: Optional[str] = None,
    resource_id: Optional[str] = None,
    action: Optional[AuditAction] = None,
    date_from: Optional[UTCDateTime] = None,
    date_to: Optional[UTCDateTime] = None,
    q: Optional[str] = Query(None, max_length=100),
    current_user: User = Depends(require_permission("audit_logs.read")),
    db: AsyncSession = Depends(get_db),
):
    """Newest first."""
    query, count_query = _filtered(
        select(AuditLog), count_of(AuditLog),
        user_id, resource_type, resource_id, action, date_from, date_to, q,
    )
    items, total = await paginate(
        db, query, count_query, page, per_page, [AuditLog.timestamp.desc(), AuditLog.id.desc()],
    )
    return PaginatedResponse.create(
        items=[audit_log_to_response(log) for log in items],
        total=total,
        page=page,
        per_page=per_page,
    )


@router.get("/stats")
async def get_audit_stats(
    date_from: Optional[UTCDateTime] = None,
    date_to: Optional[UTCDateTime] = None,
    current_user: User = Depends(require_permission("audit_logs.read")),
    db: AsyncSession = Depends(get_db),
):
    conditions = []
    if date_from:
        conditions.append(AuditLog.timestamp >= date_from)
    if date_to:
        conditions.append(AuditLog.timestamp <= date_to)

    total = await db.scalar(select(func.count(AuditLog.id)).where(*conditions))
    by_action = await db.execute(
        select(AuditLog.action, func.count(AuditLog.id)).where(*conditions).group_by(AuditLog.action)
    )
    by_resource = await db.execute(
        select(AuditLog.resource_type, func.count(AuditLog.id))
        .where(*conditions)
        .group_by(AuditLog.resource_type)
    )
    top_users = await db.execute(
        select(AuditLog.user_id, AuditLog.user_email, func.count(AuditLog.id).label("count"))
        .where(AuditLog.user_id.is_not(None), *conditions)
        .group_by(AuditLog.user_id, AuditLog.user_email)
        .order_by(func.count(AuditLog.id).desc())
        .limit(TOP_USER_COUNT)
    )

    return {
        "total": total or 0,
        "by_action": {a.value: count for a, count in by_action.all()},
        "by_resource_type": {r or "none": count for r, count in by_resource.all()},
        "top_users": [
            {"user_id": uid, "user_email": email, "count": count}
            for uid, email, count in top_users.all()
        ],
    }


@router.get("/export")
async def export_audit_logs(
    request: Request,
    user_id: Optional[int] = None,
    resource_type: Optional[str] = None,
    resource_id: Optional[str] = None,
    action: Optional[AuditAction] = None,
    date_from: Optional[UTCDateTime] = None,
    date_to: Optional[UTCDateTime] = None,
    q: Optional[str] = Query(None, max_length=100),
    current_user: User = Depends(can_export),
    db: AsyncSession = Depends(get_db),
):
    """CSV of matching entries, newest first, capped at 10,000 rows."""
    query, _ = _filtered(
        select(AuditLog), count_of(AuditLog),
        user_id, resource_type, resource_id, action, date_from, date_to, q,
    )
    result = await db.execute(query.order_by(AuditLog.timestamp.desc()).limit(EXPORT_LIMIT))
    rows = [
        [
            log.id, log.timestamp, log.user_id, log.user_email, log.action, log.resource_type,
            log.resource_id, log.resource_name, log.success, log.ip_address, log.request_id, log.details,
        ]
        for log in result.scalars().all()
    ]

    await log_action(
        db, request, current_user, AuditAction.EXPORT, "audit_log",
        details={"rows": len(rows)},
    )
    await db.commit()
    return csv_response(EXPORT_HEADERS, rows, "audit-logs")


@router.get("/entity/{resource_type}/{resource_id}", response_model=List[AuditLogResponse])
async def get_entity_history(
    resource_type: str,
    resource_id: str,
    limit: int = Query(100, ge=1, le=500),
    current_user: User = Depends(require_permission("audit_logs.read")),
    db: AsyncSession = Depends(get_db),
):
    """Every recorded action against one record."""
    result = await db.execute(
        select(AuditLog)
        .where(AuditLog.resource_type == resource_type, AuditLog.resource_id == resource_id)
        .order_by(AuditLog.timestamp.desc(), AuditLog.id.desc())
        .limit(limit)
    )
    return [audit_log_to_response(log) for log in result.scalars().all()]


@router.get("/{log_id}", response_model=AuditLogResponse)
async def get_audit_log(
    log_id: int,
    current_user: User = Depends(require_permission("audit_logs.read")),
    db: AsyncSession = Depends(get_db),
):
    log = await db.get(AuditLog, log_id)
    if log is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Audit log not found")
    return audit_log_to_response(log)
