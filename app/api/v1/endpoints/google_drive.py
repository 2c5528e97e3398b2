"""
Google Drive document storage.

Files are uploaded to a per-entity-type folder and tracked locally with a
version number per (entity, file name).
"""

from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, status, Query, Request, UploadFile
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.utils import apply_filter, count_of, get_or_404, paginate
from app.models.audit import AuditAction
from app.models.integration import GoogleDriveFile
from app.models.user import User
from app.auth.audit import log_action
from app.auth.dependencies import require_permission
from app.schemas.common import PaginatedResponse, SuccessResponse, DEFAULT_PER_PAGE, MAX_PER_PAGE
from app.schemas.integration import (
    AuthorizationURLResponse,
    ConnectionTestResponse,
    DriveFileResponse,
    DriveStatusResponse,
)
from app.services import google_drive
from app.services.integrations import IntegrationError, oauth_states

router = APIRouter()


def _integration_error(e: IntegrationError) -> HTTPException:
    return HTTPException(status_code=e.status_code, detail=e.message)


async def _load_file(db: AsyncSession, file_id: int) -> GoogleDriveFile:
    return await get_or_404(db, GoogleDriveFile, file_id, "File not found")


# ============================================================================
# Connection
# ============================================================================

@router.get("/auth/initiate", response_model=AuthorizationURLResponse)
async def initiate_auth(
    current_user: User = Depends(require_permission("files.create")),
):
    if not google_drive.drive_client.is_configured:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Google Drive integration is not configured",
        )
    state = oauth_states.issue(current_user.id)
    return AuthorizationURLResponse(
        authorization_url=google_drive.drive_client.authorization_url(state),
        state=state,
    )


@router.get("/auth/callback", response_model=SuccessResponse)
async def auth_callback(
    request: Request,
    code: str = Query(...),
    state: str = Query(...),
    db: AsyncSession = Depends(get_db),
):
    valid, user_id = oauth_states.consume(state)
    if not valid:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid or expired OAuth state")

    try:
        connection = await google_drive.connect(db, code, user_id)
    except IntegrationError as e:
        raise _integration_error(e)

    user = await db.get(User, user_id) if user_id else None
    await log_action(
        db, request, user, AuditAction.INTEGRATION_CONNECTED, "google_drive",
        resource_id=connection.id, resource_name=connection.account_email,
    )
    await db.commit()
    return SuccessResponse(message=f"Connected Google Drive account {connection.account_email}")


@router.post("/auth/disconnect", response_model=SuccessResponse)
async def disconnect(
    request: Request,
    current_user: User = Depends(require_permission("files.delete")),
    db: AsyncSession = Depends(get_db),
):
    if not await google_drive.disconnect(db):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Google Drive is not connected")

    await log_action(db, request, current_user, AuditAction.INTEGRATION_DISCONNECTED, "google_drive")
    await db.commit()
    return SuccessResponse(message="Google Drive disconnected")


@router.get("/test", response_model=ConnectionTestResponse)
async def test_connection(
    current_user: User = Depends(require_permission("files.read")),
    db: AsyncSession = Depends(get_db),
):
    return ConnectionTestResponse(**await google_drive.test_connection(db))


@router.get("/status", response_model=DriveStatusResponse)
async def get_status(
    current_user: User = Depends(require_permission("files.read")),
    db: AsyncSession = Depends(get_db),
):
    connection = await google_drive.get_active_connection(db)
    file_count = await db.scalar(
        select(func.count(GoogleDriveFile.id)).where(GoogleDriveFile.deleted_at.is_(None))
    )
    return DriveStatusResponse(
        connected=connection is not None,
        account_email=connection.account_email if connection else None,
        root_folder_id=connection.root_folder_id if connection else None,
        connected_at=connection.created_at if connection else None,
        file_count=file_count or 0,
    )


# ============================================================================
# Files
# ============================================================================

@router.post("/upload", response_model=DriveFileResponse, status_code=status.HTTP_201_CREATED)
async def upload(
    request: Request,
    file: UploadFile = File(...),
    entity_type: str = Form(..., min_length=1, max_length=50),
    entity_id: str = Form(..., min_length=1, max_length=100),
    current_user: User = Depends(require_permission("files.create")),
    db: AsyncSession = Depends(get_db),
):
    """Upload evidence for a record (policy, credential, asset, ...)."""
    content = await file.read()
    try:
        record = await google_drive.upload_file(
            db, current_user, file.filename, file.content_type, content, entity_type, entity_id,
        )
    except IntegrationError as e:
        raise _integration_error(e)

    await log_action(
        db, request, current_user, AuditAction.FILE_UPLOADED, "google_drive_file",
        resource_id=record.id, resource_name=record.file_name,
        details={"entity_type": entity_type, "entity_id": entity_id, "version": record.version},
    )
    await db.commit()
    return DriveFileResponse.model_validate(record)


@router.get("/files", response_model=PaginatedResponse[DriveFileResponse])
async def list_files(
    page: int = Query(1, ge=1),
    per_page: int = Query(DEFAULT_PER_PAGE, ge=1, le=MAX_PER_PAGE),
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    latest_only: bool = True,
    current_user: User = Depends(require_permission("files.read")),
    db: AsyncSession = Depends(get_db),
):
    query, count_query = apply_filter(
        select(GoogleDriveFile), count_of(GoogleDriveFile), GoogleDriveFile.deleted_at.is_(None),
    )
    if entity_type:
        query, count_query = apply_filter(query, count_query, GoogleDriveFile.entity_type == entity_type)
    if entity_id:
        query, count_query = apply_filter(query, count_query, GoogleDriveFile.entity_id == entity_id)
    if latest_only:
        query, count_query = apply_filter(query, count_query, GoogleDriveFile.is_latest.is_(True))

    items, total = await paginate(db, query, count_query, page, per_page, [GoogleDriveFile.created_at.desc()])
    return PaginatedResponse.create(
        items=[DriveFileResponse.model_validate(f) for f in items],
        total=total,
        page=page,
        per_page=per_page,
    )


@router.get("/files/{file_id}", response_model=DriveFileResponse)
async def get_file(
    file_id: int,
    current_user: User = Depends(require_permission("files.read")),
    db: AsyncSession = Depends(get_db),
):
    return DriveFileResponse.model_validate(await _load_file(db, file_id))


@router.delete("/files/{file_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_file(
    request: Request,
    file_id: int,
    current_user: User = Depends(require_permission("files.delete")),
    db: AsyncSession = Depends(get_db),
):
    record = await _load_file(db, file_id)
    try:
        await google_drive.delete_file(db, record)
    except IntegrationError as e:
        raise _integration_error(e)

    await log_action(
        db, request, current_user, AuditAction.FILE_DELETED, "google_drive_file",
        resource_id=record.id, resource_name=record.file_name,
    )
    await db.commit()


@router.get("/files/{file_id}/preview")
async def preview_file(
    file_id: int,
    current_user: User = Depends(require_permission("files.read")),
    db: AsyncSession = Depends(get_db),
):
    record = await _load_file(db, file_id)
    try:
        return await google_drive.preview(db, record)
    except IntegrationError as e:
        raise _integration_error(e)
