"""
Staff credential endpoints.

Status filters follow the derived status, so a credential past its
expiry matches `status=Expired` before the nightly refresh persists it.
"""

from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status, Query, Request
from sqlalchemy import select, and_, or_
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.utils import apply_filter, apply_search_filter, count_of, get_or_404, paginate, parse_sort, utcnow
from app.models.audit import AuditAction
from app.models.staff import Credential, CredentialStatus, CredentialType
from app.models.user import User
from app.auth.audit import log_action
from app.auth.dependencies import require_permission
from app.schemas.common import PaginatedResponse, UTCDateTime, DEFAULT_PER_PAGE, MAX_PER_PAGE
from app.schemas.staff import (
    CredentialCreate,
    CredentialUpdate,
    CredentialResponse,
    credential_to_response,
)
from app.services.lifecycle import EXPIRING_SOON_DAYS, refresh_credential

router = APIRouter()

SORTABLE = {
    "expires_at": Credential.expires_at,
    "issued_at": Credential.issued_at,
    "name": Credential.name,
    "created_at": Credential.created_at,
}


def status_condition(wanted: CredentialStatus, now):
    if wanted == CredentialStatus.REVOKED:
        return Credential.status == CredentialStatus.REVOKED
    lapsed = and_(Credential.expires_at.is_not(None), Credential.expires_at < now)
    if wanted == CredentialStatus.EXPIRED:
        return or_(
            Credential.status == CredentialStatus.EXPIRED,
            and_(Credential.status == CredentialStatus.ACTIVE, lapsed),
        )
    return and_(Credential.status == CredentialStatus.ACTIVE, ~lapsed)


@router.get("", response_model=PaginatedResponse[CredentialResponse])
async def list_credentials(
    page: int = Query(1, ge=1),
    per_page: int = Query(DEFAULT_PER_PAGE, ge=1, le=MAX_PER_PAGE),
    user_id: Optional[int] = None,
    status_filter: Optional[CredentialStatus] = Query(None, alias="status"),
    type_filter: Optional[CredentialType] = Query(None, alias="type"),
    expires_before: Optional[UTCDateTime] = None,
    expiring_soon: Optional[bool] = None,
    q: Optional[str] = Query(None, max_length=200),
    sort: Optional[str] = None,
    current_user: User = Depends(require_permission("credentials.read")),
    db: AsyncSession = Depends(get_db),
):
    now = utcnow()
    order_by = parse_sort(sort, SORTABLE, [Credential.expires_at.is_(None), Credential.expires_at, Credential.id])
    query = select(Credential)
    count_query = count_of(Credential)

    if user_id is not None:
        query, count_query = apply_filter(query, count_query, Credential.user_id == user_id)
    if status_filter:
        query, count_query = apply_filter(query, count_query, status_condition(status_filter, now))
    if type_filter:
        query, count_query = apply_filter(query, count_query, Credential.type == type_filter)
    if expires_before:
        query, count_query = apply_filter(query, count_query, Credential.expires_at <= expires_before)
    if expiring_soon:
        window = and_(
            Credential.expires_at >= now,
            Credential.expires_at <= now + timedelta(days=EXPIRING_SOON_DAYS),
            Credential.status != CredentialStatus.REVOKED,
        )
        query, count_query = apply_filter(query, count_query, window)
    query, count_query = apply_search_filter(query, count_query, q, Credential.name)

    credentials, total = await paginate(db, query, count_query, page, per_page, order_by)
    return PaginatedResponse.create(
        items=[credential_to_response(c) for c in credentials],
        total=total,
        page=page,
        per_page=per_page,
    )


@router.post("", response_model=CredentialResponse, status_code=status.HTTP_201_CREATED)
async def create_credential(
    request: Request,
    data: CredentialCreate,
    current_user: User = Depends(require_permission("credentials.create")),
    db: AsyncSession = Depends(get_db),
):
    owner = await db.scalar(select(User).where(User.id == data.user_id, User.deleted_at.is_(None)))
    if owner is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="User not found")

    credential = Credential(**data.model_dump(), status=CredentialStatus.ACTIVE)
    refresh_credential(credential)
    db.add(credential)
    await db.flush()

    await log_action(
        db, request, current_user, AuditAction.CREATE, "credential",
        resource_id=credential.id,
        resource_name=credential.name,
        details={"user_id": owner.id, "type": credential.type.value},
    )
    await db.commit()
    return credential_to_response(credential)


@router.get("/{credential_id}", response_model=CredentialResponse)
async def get_credential(
    credential_id: int,
    current_user: User = Depends(require_permission("credentials.read")),
    db: AsyncSession = Depends(get_db),
):
    return credential_to_response(await get_or_404(db, Credential, credential_id, "Credential not found"))


@router.patch("/{credential_id}", response_model=CredentialResponse)
async def update_credential(
    request: Request,
    credential_id: int,
    data: CredentialUpdate,
    current_user: User = Depends(require_permission("credentials.update")),
    db: AsyncSession = Depends(get_db),
):
    """
    Update a credential.

    Setting `status` to Revoked sticks; Active or Expired is recomputed
    from `expires_at`.
    """
    credential = await get_or_404(db, Credential, credential_id, "Credential not found")
    changes = data.model_dump(exclude_unset=True)
    for field, value in changes.items():
        setattr(credential, field, value)
    refresh_credential(credential)

    await log_action(
        db, request, current_user, AuditAction.UPDATE, "credential",
        resource_id=credential.id,
        resource_name=credential.name,
        details={"changes": data.model_dump(exclude_unset=True, mode="json")},
    )
    await db.commit()
    return credential_to_response(credential)
