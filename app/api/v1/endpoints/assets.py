"""
Asset register endpoints: CRUD, service records and state transitions.
"""

from datetime import timedelta
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status, Query, Request
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.utils import (
    apply_filter, apply_search_filter, as_utc, count_of, get_or_404, paginate, parse_sort, utcnow,
)
from app.models.asset import Asset, AssetService, AssetStateChange, AssetStatus
from app.models.audit import AuditAction
from app.models.user import User
from app.auth.audit import log_action
from app.auth.dependencies import require_permission
from app.schemas.common import PaginatedResponse, DEFAULT_PER_PAGE, MAX_PER_PAGE
from app.schemas.asset import (
    AssetCreate, AssetUpdate, AssetResponse, AssetDetailResponse, AssetHistoryResponse,
    AssetServiceCreate, AssetServiceResponse, AssetStateRequest,
    asset_to_detail, asset_history,
)
from app.services.export import csv_response

router = APIRouter()

SERVICE_DUE_DAYS = 30

SORTABLE = {
    "name": Asset.name,
    "type": Asset.type,
    "status": Asset.status,
    "next_service_at": Asset.next_service_at,
    "created_at": Asset.created_at,
}

EXPORT_HEADERS = [
    "id", "type", "name", "serial_number", "location", "status",
    "purchase_date", "purchase_cost", "last_service_at", "next_service_at",
]


def _filtered(query, count_query, asset_type, status_filter, location, service_due, q):
    query, count_query = apply_filter(query, count_query, Asset.deleted_at.is_(None))
    if asset_type:
        query, count_query = apply_filter(query, count_query, Asset.type == asset_type)
    if status_filter:
        query, count_query = apply_filter(query, count_query, Asset.status == status_filter)
    if location:
        query, count_query = apply_filter(query, count_query, Asset.location == location)
    if service_due:
        horizon = utcnow() + timedelta(days=SERVICE_DUE_DAYS)
        query, count_query = apply_filter(
            query, count_query,
            Asset.next_service_at.is_not(None) & (Asset.next_service_at <= horizon),
        )
    return apply_search_filter(query, count_query, q, Asset.name, Asset.serial_number, Asset.notes)


async def _services(db: AsyncSession, asset_id: int) -> List[AssetService]:
    result = await db.execute(
        select(AssetService)
        .where(AssetService.asset_id == asset_id)
        .order_by(AssetService.service_date.desc(), AssetService.id.desc())
    )
    return list(result.scalars().all())


@router.get("", response_model=PaginatedResponse[AssetResponse])
async def list_assets(
    page: int = Query(1, ge=1),
    per_page: int = Query(DEFAULT_PER_PAGE, ge=1, le=MAX_PER_PAGE),
    type_filter: Optional[str] = Query(None, alias="type"),
    status_filter: Optional[AssetStatus] = Query(None, alias="status"),
    location: Optional[str] = None,
    service_due: bool = Query(False, description=f"Next service within {SERVICE_DUE_DAYS} days or overdue"),
    q: Optional[str] = Query(None, max_length=100),
    sort: Optional[str] = None,
    current_user: User = Depends(require_permission("assets.read")),
    db: AsyncSession = Depends(get_db),
):
    order_by = parse_sort(sort, SORTABLE, [Asset.name.asc()])
    query, count_query = _filtered(
        select(Asset), count_of(Asset), type_filter, status_filter, location, service_due, q,
    )
    items, total = await paginate(db, query, count_query, page, per_page, order_by)
    return PaginatedResponse.create(
        items=[AssetResponse.model_validate(a) for a in items],
        total=total,
        page=page,
        per_page=per_page,
    )


@router.get("/export")
async def export_assets(
    request: Request,
    type_filter: Optional[str] = Query(None, alias="type"),
    status_filter: Optional[AssetStatus] = Query(None, alias="status"),
    location: Optional[str] = None,
    service_due: bool = False,
    q: Optional[str] = Query(None, max_length=100),
    current_user: User = Depends(require_permission("assets.read")),
    db: AsyncSession = Depends(get_db),
):
    query, _ = _filtered(
        select(Asset), count_of(Asset), type_filter, status_filter, location, service_due, q,
    )
    result = await db.execute(query.order_by(Asset.name.asc()))
    rows = [
        [
            a.id, a.type, a.name, a.serial_number, a.location, a.status,
            a.purchase_date, a.purchase_cost, a.last_service_at, a.next_service_at,
        ]
        for a in result.scalars().all()
    ]

    await log_action(db, request, current_user, AuditAction.EXPORT, "asset", details={"rows": len(rows)})
    await db.commit()
    return csv_response(EXPORT_HEADERS, rows, "assets")


@router.post("", response_model=AssetResponse, status_code=status.HTTP_201_CREATED)
async def create_asset(
    request: Request,
    data: AssetCreate,
    current_user: User = Depends(require_permission("assets.create")),
    db: AsyncSession = Depends(get_db),
):
    asset = Asset(**data.model_dump())
    db.add(asset)
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="An asset with this serial number already exists",
        )

    await log_action(
        db, request, current_user, AuditAction.CREATE, "asset",
        resource_id=asset.id, resource_name=asset.name,
    )
    await db.commit()
    return AssetResponse.model_validate(asset)


@router.get("/{asset_id}", response_model=AssetDetailResponse)
async def get_asset(
    asset_id: int,
    current_user: User = Depends(require_permission("assets.read")),
    db: AsyncSession = Depends(get_db),
):
    """Asset with its five most recent service records."""
    asset = await get_or_404(db, Asset, asset_id, "Asset not found")
    return asset_to_detail(asset, await _services(db, asset.id))


@router.patch("/{asset_id}", response_model=AssetResponse)
async def update_asset(
    request: Request,
    asset_id: int,
    data: AssetUpdate,
    current_user: User = Depends(require_permission("assets.update")),
    db: AsyncSession = Depends(get_db),
):
    asset = await get_or_404(db, Asset, asset_id, "Asset not found")
    changes = data.model_dump(exclude_unset=True)
    for field, value in changes.items():
        setattr(asset, field, value)

    await log_action(
        db, request, current_user, AuditAction.UPDATE, "asset",
        resource_id=asset.id, resource_name=asset.name,
        details={"changes": data.model_dump(exclude_unset=True, mode="json")},
    )
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="An asset with this serial number already exists",
        )
    return AssetResponse.model_validate(asset)


@router.delete("/{asset_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_asset(
    request: Request,
    asset_id: int,
    current_user: User = Depends(require_permission("assets.delete")),
    db: AsyncSession = Depends(get_db),
):
    asset = await get_or_404(db, Asset, asset_id, "Asset not found")
    asset.deleted_at = utcnow()

    await log_action(
        db, request, current_user, AuditAction.DELETE, "asset",
        resource_id=asset.id, resource_name=asset.name,
    )
    await db.commit()


@router.post("/{asset_id}/service", response_model=AssetServiceResponse, status_code=status.HTTP_201_CREATED)
async def record_service(
    request: Request,
    asset_id: int,
    data: AssetServiceCreate,
    current_user: User = Depends(require_permission("assets.update")),
    db: AsyncSession = Depends(get_db),
):
    """Log a service; the asset's last service date follows the newest record."""
    asset = await get_or_404(db, Asset, asset_id, "Asset not found")

    record = AssetService(
        asset_id=asset.id,
        created_by_id=current_user.id,
        **data.model_dump(exclude={"next_service_at"}),
    )
    db.add(record)
    if asset.last_service_at is None or data.service_date >= as_utc(asset.last_service_at):
        asset.last_service_at = data.service_date
    if data.next_service_at is not None:
        asset.next_service_at = data.next_service_at
    await db.flush()

    await log_action(
        db, request, current_user, AuditAction.LOG_SERVICE, "asset",
        resource_id=asset.id, resource_name=asset.name,
        details={"service_id": record.id, "service_date": data.service_date.isoformat()},
    )
    await db.commit()
    return AssetServiceResponse.model_validate(record)


@router.post("/{asset_id}/state", response_model=AssetResponse)
async def change_state(
    request: Request,
    asset_id: int,
    data: AssetStateRequest,
    current_user: User = Depends(require_permission("assets.update")),
    db: AsyncSession = Depends(get_db),
):
    """Move an asset between states. Retired is terminal."""
    asset = await get_or_404(db, Asset, asset_id, "Asset not found")

    if asset.status == AssetStatus.RETIRED:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Retired assets cannot change state")
    if asset.status == data.state:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Asset is already {data.state.value}",
        )

    previous = asset.status
    db.add(AssetStateChange(
        asset_id=asset.id,
        from_state=previous,
        to_state=data.state,
        notes=data.notes,
        changed_by_id=current_user.id,
    ))
    asset.status = data.state

    await log_action(
        db, request, current_user, AuditAction.TRANSITION_STATE, "asset",
        resource_id=asset.id, resource_name=asset.name,
        details={"from": previous.value, "to": data.state.value},
    )
    await db.commit()
    return AssetResponse.model_validate(asset)


@router.get("/{asset_id}/history", response_model=AssetHistoryResponse)
async def get_asset_history(
    asset_id: int,
    current_user: User = Depends(require_permission("assets.read")),
    db: AsyncSession = Depends(get_db),
):
    asset = await get_or_404(db, Asset, asset_id, "Asset not found")
    changes = await db.execute(
        select(AssetStateChange)
        .where(AssetStateChange.asset_id == asset.id)
        .order_by(AssetStateChange.id.desc())
    )
    return asset_history(asset.id, await _services(db, asset.id), list(changes.scalars().all()))
