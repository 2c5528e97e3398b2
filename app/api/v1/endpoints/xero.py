"""
Xero payroll integration: OAuth connection and employee sync.
"""

from typing import List

from fastapi import APIRouter, Depends, HTTPException, status, Query, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.models.audit import AuditAction
from app.models.integration import XeroSyncLog
from app.models.user import User
from app.auth.audit import log_action
from app.auth.dependencies import require_permission
from app.schemas.common import SuccessResponse
from app.schemas.integration import (
    AuthorizationURLResponse,
    ConnectionTestResponse,
    SyncLogResponse,
    XeroStatusResponse,
)
from app.services import xero
from app.services.integrations import IntegrationError, oauth_states

router = APIRouter()


def _integration_error(e: IntegrationError) -> HTTPException:
    return HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/authorize", response_model=AuthorizationURLResponse)
async def authorize(
    current_user: User = Depends(require_permission("sync.create")),
):
    """Start the OAuth flow; the frontend redirects the browser to the returned URL."""
    if not xero.xero_client.is_configured:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Xero integration is not configured")
    state = oauth_states.issue(current_user.id)
    return AuthorizationURLResponse(authorization_url=xero.xero_client.authorization_url(state), state=state)


@router.get("/callback", response_model=SuccessResponse)
async def callback(
    request: Request,
    code: str = Query(...),
    state: str = Query(...),
    db: AsyncSession = Depends(get_db),
):
    """OAuth redirect target. The one-time state identifies who started the flow."""
    valid, user_id = oauth_states.consume(state)
    if not valid:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid or expired OAuth state")

    try:
        connection = await xero.connect(db, code)
    except IntegrationError as e:
        raise _integration_error(e)

    user = await db.get(User, user_id) if user_id else None
    await log_action(
        db, request, user, AuditAction.INTEGRATION_CONNECTED, "xero",
        resource_id=connection.id, resource_name=connection.tenant_name,
    )
    await db.commit()
    return SuccessResponse(message=f"Connected to Xero organisation {connection.tenant_name or connection.tenant_id}")


@router.get("/test", response_model=ConnectionTestResponse)
async def test_connection(
    current_user: User = Depends(require_permission("sync.read")),
    db: AsyncSession = Depends(get_db),
):
    return ConnectionTestResponse(**await xero.test_connection(db))


@router.get("/status", response_model=XeroStatusResponse)
async def get_status(
    current_user: User = Depends(require_permission("sync.read")),
    db: AsyncSession = Depends(get_db),
):
    connection = await xero.get_active_connection(db)
    last = await db.scalar(select(XeroSyncLog).order_by(XeroSyncLog.id.desc()).limit(1))
    return XeroStatusResponse(
        connected=connection is not None,
        tenant_id=connection.tenant_id if connection else None,
        tenant_name=connection.tenant_name if connection else None,
        last_sync_at=connection.last_sync_at if connection else None,
        last_sync=SyncLogResponse.model_validate(last) if last else None,
    )


@router.post("/sync", response_model=SyncLogResponse)
async def sync_now(
    request: Request,
    current_user: User = Depends(require_permission("sync.create")),
    db: AsyncSession = Depends(get_db),
):
    """Run an employee sync immediately."""
    try:
        sync_log = await xero.sync_employees(db, triggered_by=current_user)
    except IntegrationError as e:
        raise _integration_error(e)

    await log_action(
        db, request, current_user, AuditAction.SYNC, "xero",
        resource_id=sync_log.id,
        details={
            "status": sync_log.status.value,
            "created": sync_log.records_created,
            "updated": sync_log.records_updated,
            "failed": sync_log.records_failed,
        },
    )
    await db.commit()
    return SyncLogResponse.model_validate(sync_log)


@router.get("/history", response_model=List[SyncLogResponse])
async def get_history(
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(require_permission("sync.read")),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(select(XeroSyncLog).order_by(XeroSyncLog.id.desc()).limit(limit))
    return [SyncLogResponse.model_validate(log) for log in result.scalars().all()]


@router.post("/disconnect", response_model=SuccessResponse)
async def disconnect(
    request: Request,
    current_user: User = Depends(require_permission("sync.delete")),
    db: AsyncSession = Depends(get_db),
):
    if not await xero.disconnect(db):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Xero is not connected")

    await log_action(db, request, current_user, AuditAction.INTEGRATION_DISCONNECTED, "xero")
    await db.commit()
    return SuccessResponse(message="Xero disconnected")
