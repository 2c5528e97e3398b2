"""
Professional development endpoints.

Callers without `users.read` only see and manage their own PD items.
"""

from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status, Query, Request
from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.utils import apply_filter, apply_search_filter, count_of, get_or_404, paginate, parse_sort, utcnow
from app.models.audit import AuditAction
from app.models.staff import PDCategory, PDItem, PDStatus
from app.models.user import User
from app.auth.audit import log_action
from app.auth.dependencies import require_permission
from app.schemas.common import PaginatedResponse, UTCDateTime, DEFAULT_PER_PAGE, MAX_PER_PAGE
from app.schemas.staff import (
    PDItemCreate,
    PDItemUpdate,
    PDItemResponse,
    PDCompleteRequest,
    PDVerifyRequest,
    pd_item_to_response,
)
from app.services.lifecycle import PD_DUE_WINDOW_DAYS, refresh_pd_item

router = APIRouter()

SORTABLE = {
    "due_at": PDItem.due_at,
    "title": PDItem.title,
    "status": PDItem.status,
    "created_at": PDItem.created_at,
    "completed_at": PDItem.completed_at,
}


def _sees_everyone(user: User) -> bool:
    return user.has_permission("users.read")


def status_condition(wanted: PDStatus, now):
    """SQL form of `pd_status`, so filters match the status shown on read."""
    if wanted == PDStatus.VERIFIED:
        return PDItem.status == PDStatus.VERIFIED
    if wanted == PDStatus.COMPLETED:
        return and_(PDItem.status != PDStatus.VERIFIED, PDItem.completed_at.is_not(None))

    open_item = and_(PDItem.status != PDStatus.VERIFIED, PDItem.completed_at.is_(None))
    # days_until rounds up, so an item turns Overdue a full day after its due date
    overdue_at = now - timedelta(days=1)
    due_until = now + timedelta(days=PD_DUE_WINDOW_DAYS)
    if wanted == PDStatus.OVERDUE:
        return and_(open_item, PDItem.due_at <= overdue_at)
    if wanted == PDStatus.DUE:
        return and_(open_item, PDItem.due_at > overdue_at, PDItem.due_at <= due_until)
    return and_(open_item, or_(PDItem.due_at.is_(None), PDItem.due_at > due_until))


async def _get_item(db: AsyncSession, item_id: int, user: User) -> PDItem:
    item = await get_or_404(db, PDItem, item_id, "PD item not found")
    if item.user_id != user.id and not _sees_everyone(user):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="PD item not found")
    return item


@router.get("", response_model=PaginatedResponse[PDItemResponse])
async def list_pd_items(
    page: int = Query(1, ge=1),
    per_page: int = Query(DEFAULT_PER_PAGE, ge=1, le=MAX_PER_PAGE),
    user_id: Optional[int] = None,
    status_filter: Optional[PDStatus] = Query(None, alias="status"),
    category: Optional[PDCategory] = None,
    due_before: Optional[UTCDateTime] = None,
    q: Optional[str] = Query(None, max_length=200),
    sort: Optional[str] = None,
    current_user: User = Depends(require_permission("pd.read")),
    db: AsyncSession = Depends(get_db),
):
    order_by = parse_sort(sort, SORTABLE, [PDItem.due_at.is_(None), PDItem.due_at, PDItem.id])
    query = select(PDItem)
    count_query = count_of(PDItem)

    if not _sees_everyone(current_user):
        user_id = current_user.id
    if user_id is not None:
        query, count_query = apply_filter(query, count_query, PDItem.user_id == user_id)
    if status_filter:
        query, count_query = apply_filter(query, count_query, status_condition(status_filter, utcnow()))
    if category:
        query, count_query = apply_filter(query, count_query, PDItem.category == category)
    if due_before:
        query, count_query = apply_filter(query, count_query, PDItem.due_at <= due_before)
    query, count_query = apply_search_filter(query, count_query, q, PDItem.title, PDItem.description)

    items, total = await paginate(db, query, count_query, page, per_page, order_by)
    return PaginatedResponse.create(
        items=[pd_item_to_response(i) for i in items],
        total=total,
        page=page,
        per_page=per_page,
    )


@router.post("", response_model=PDItemResponse, status_code=status.HTTP_201_CREATED)
async def create_pd_item(
    request: Request,
    data: PDItemCreate,
    current_user: User = Depends(require_permission("pd.create")),
    db: AsyncSession = Depends(get_db),
):
    user_id = data.user_id or current_user.id
    if user_id != current_user.id:
        if not _sees_everyone(current_user):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Cannot create PD items for other users",
            )
        owner = await db.scalar(select(User).where(User.id == user_id, User.deleted_at.is_(None)))
        if owner is None:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="User not found")

    item = PDItem(**data.model_dump(exclude={"user_id"}), user_id=user_id)
    refresh_pd_item(item)
    db.add(item)
    await db.flush()

    await log_action(
        db, request, current_user, AuditAction.CREATE, "pd_item",
        resource_id=item.id, resource_name=item.title, details={"user_id": user_id},
    )
    await db.commit()
    return pd_item_to_response(item)


@router.get("/{item_id}", response_model=PDItemResponse)
async def get_pd_item(
    item_id: int,
    current_user: User = Depends(require_permission("pd.read")),
    db: AsyncSession = Depends(get_db),
):
    return pd_item_to_response(await _get_item(db, item_id, current_user))


@router.patch("/{item_id}", response_model=PDItemResponse)
async def update_pd_item(
    request: Request,
    item_id: int,
    data: PDItemUpdate,
    current_user: User = Depends(require_permission("pd.update")),
    db: AsyncSession = Depends(get_db),
):
    item = await _get_item(db, item_id, current_user)
    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(item, field, value)
    refresh_pd_item(item)

    await log_action(
        db, request, current_user, AuditAction.UPDATE, "pd_item",
        resource_id=item.id,
        resource_name=item.title,
        details={"changes": data.model_dump(exclude_unset=True, mode="json")},
    )
    await db.commit()
    return pd_item_to_response(item)


@router.post("/{item_id}/complete", response_model=PDItemResponse)
async def complete_pd_item(
    request: Request,
    item_id: int,
    data: PDCompleteRequest,
    current_user: User = Depends(require_permission("pd.update")),
    db: AsyncSession = Depends(get_db),
):
    """Record completion evidence."""
    item = await _get_item(db, item_id, current_user)
    if item.status == PDStatus.VERIFIED:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="PD item has already been verified",
        )

    item.evidence_url = data.evidence_url
    item.completed_at = data.completed_at or utcnow()
    item.status = PDStatus.COMPLETED
    if data.hours is not None:
        item.hours = data.hours
    if data.notes is not None:
        item.notes = data.notes

    await log_action(
        db, request, current_user, AuditAction.COMPLETE, "pd_item",
        resource_id=item.id, resource_name=item.title,
    )
    await db.commit()
    return pd_item_to_response(item)


@router.post("/{item_id}/verify", response_model=PDItemResponse)
async def verify_pd_item(
    request: Request,
    item_id: int,
    data: PDVerifyRequest,
    current_user: User = Depends(require_permission("pd.update")),
    db: AsyncSession = Depends(get_db),
):
    """Sign off a completed item. Only Completed items can be verified."""
    if not _sees_everyone(current_user):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Verifying PD items requires access to all staff records",
        )
    item = await _get_item(db, item_id, current_user)
    if item.status != PDStatus.COMPLETED:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Only completed PD items can be verified",
        )

    item.status = PDStatus.VERIFIED
    item.verified_by_id = current_user.id
    item.verified_at = utcnow()
    if data.notes is not None:
        item.notes = data.notes

    await log_action(
        db, request, current_user, AuditAction.VERIFY, "pd_item",
        resource_id=item.id, resource_name=item.title,
    )
    await db.commit()
    return pd_item_to_response(item)
