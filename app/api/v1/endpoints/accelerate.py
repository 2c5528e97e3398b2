"""
Accelerate student management integration.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status, Query, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.utils import apply_filter, apply_search_filter, count_of, paginate
from app.models.audit import AuditAction
from app.models.integration import AccelerateMapping, AccelerateSyncLog
from app.models.user import User
from app.auth.audit import log_action
from app.auth.dependencies import require_permission
from app.schemas.common import PaginatedResponse, DEFAULT_PER_PAGE, MAX_PER_PAGE
from app.schemas.integration import (
    AccelerateMappingResponse,
    AccelerateStatusResponse,
    AccelerateSyncLogResponse,
    AccelerateSyncRequest,
    ConnectionTestResponse,
)
from app.services import accelerate
from app.services.integrations import IntegrationError

router = APIRouter()


async def _mappings(db: AsyncSession, entity_type: str, page: int, per_page: int, q: Optional[str]):
    query, count_query = apply_filter(
        select(AccelerateMapping), count_of(AccelerateMapping),
        AccelerateMapping.entity_type == entity_type,
    )
    query, count_query = apply_search_filter(query, count_query, q, AccelerateMapping.accelerate_id)
    items, total = await paginate(
        db, query, count_query, page, per_page, [AccelerateMapping.last_synced_at.desc()],
    )
    return PaginatedResponse.create(
        items=[AccelerateMappingResponse.model_validate(m) for m in items],
        total=total,
        page=page,
        per_page=per_page,
    )


@router.get("/test", response_model=ConnectionTestResponse)
async def test_connection(
    current_user: User = Depends(require_permission("integrations.read")),
):
    return ConnectionTestResponse(**await accelerate.accelerate_client.test_connection())


@router.post("/sync", response_model=AccelerateSyncLogResponse)
async def sync_now(
    request: Request,
    data: Optional[AccelerateSyncRequest] = None,
    current_user: User = Depends(require_permission("integrations.create")),
    db: AsyncSession = Depends(get_db),
):
    """Sync trainers, students, enrollments, or all three (default)."""
    sync_type = data.sync_type if data else "all"
    if not accelerate.accelerate_client.is_configured:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Accelerate integration is not configured",
        )
    try:
        sync_log = await accelerate.run_sync(db, sync_type, triggered_by=current_user)
    except IntegrationError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    await log_action(
        db, request, current_user, AuditAction.SYNC, "accelerate",
        resource_id=sync_log.id, resource_name=sync_type,
        details={
            "status": sync_log.status.value,
            "processed": sync_log.records_processed,
            "failed": sync_log.records_failed,
        },
    )
    await db.commit()
    return AccelerateSyncLogResponse.model_validate(sync_log)


@router.get("/status", response_model=AccelerateStatusResponse)
async def get_status(
    current_user: User = Depends(require_permission("integrations.read")),
    db: AsyncSession = Depends(get_db),
):
    last = await db.scalar(select(AccelerateSyncLog).order_by(AccelerateSyncLog.id.desc()).limit(1))
    return AccelerateStatusResponse(
        configured=accelerate.accelerate_client.is_configured,
        last_sync=AccelerateSyncLogResponse.model_validate(last) if last else None,
    )


@router.get("/stats")
async def get_stats(
    current_user: User = Depends(require_permission("integrations.read")),
    db: AsyncSession = Depends(get_db),
):
    return await accelerate.sync_stats(db)


@router.get("/students", response_model=PaginatedResponse[AccelerateMappingResponse])
async def list_students(
    page: int = Query(1, ge=1),
    per_page: int = Query(DEFAULT_PER_PAGE, ge=1, le=MAX_PER_PAGE),
    q: Optional[str] = Query(None, max_length=100),
    current_user: User = Depends(require_permission("integrations.read")),
    db: AsyncSession = Depends(get_db),
):
    return await _mappings(db, "student", page, per_page, q)


@router.get("/enrollments", response_model=PaginatedResponse[AccelerateMappingResponse])
async def list_enrollments(
    page: int = Query(1, ge=1),
    per_page: int = Query(DEFAULT_PER_PAGE, ge=1, le=MAX_PER_PAGE),
    q: Optional[str] = Query(None, max_length=100),
    current_user: User = Depends(require_permission("integrations.read")),
    db: AsyncSession = Depends(get_db),
):
    return await _mappings(db, "enrollment", page, per_page, q)
