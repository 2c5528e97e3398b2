"""
Training product endpoints.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status, Query, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.utils import (
    apply_filter,
    apply_search_filter,
    count_of,
    get_or_404,
    paginate,
    parse_sort,
    utcnow,
)
from app.models.audit import AuditAction
from app.models.training import SOP, TrainingProduct, TrainingProductStatus
from app.models.user import User
from app.auth.audit import log_action
from app.auth.dependencies import require_permission
from app.schemas.common import PaginatedResponse, DEFAULT_PER_PAGE, MAX_PER_PAGE
from app.schemas.training import (
    TrainingProductCreate,
    TrainingProductUpdate,
    TrainingProductResponse,
    TrainingProductSOPsRequest,
    training_product_to_response,
)

router = APIRouter()

SORTABLE = {
    "code": TrainingProduct.code,
    "name": TrainingProduct.name,
    "status": TrainingProduct.status,
    "created_at": TrainingProduct.created_at,
}


async def _code_taken(db: AsyncSession, code: str) -> bool:
    return (await db.execute(select(TrainingProduct.id).where(TrainingProduct.code == code))).first() is not None


@router.get("", response_model=PaginatedResponse[TrainingProductResponse])
async def list_training_products(
    page: int = Query(1, ge=1),
    per_page: int = Query(DEFAULT_PER_PAGE, ge=1, le=MAX_PER_PAGE),
    status_filter: Optional[TrainingProductStatus] = Query(None, alias="status"),
    is_accredited: Optional[bool] = None,
    q: Optional[str] = Query(None, max_length=200),
    sort: Optional[str] = None,
    current_user: User = Depends(require_permission("training.read")),
    db: AsyncSession = Depends(get_db),
):
    order_by = parse_sort(sort, SORTABLE, [TrainingProduct.code])
    query = select(TrainingProduct).where(TrainingProduct.deleted_at.is_(None))
    count_query = count_of(TrainingProduct).where(TrainingProduct.deleted_at.is_(None))

    if status_filter:
        query, count_query = apply_filter(query, count_query, TrainingProduct.status == status_filter)
    if is_accredited is not None:
        query, count_query = apply_filter(query, count_query, TrainingProduct.is_accredited.is_(is_accredited))
    query, count_query = apply_search_filter(query, count_query, q, TrainingProduct.code, TrainingProduct.name)

    products, total = await paginate(db, query, count_query, page, per_page, order_by)
    return PaginatedResponse.create(
        items=[training_product_to_response(p) for p in products],
        total=total,
        page=page,
        per_page=per_page,
    )


@router.post("", response_model=TrainingProductResponse, status_code=status.HTTP_201_CREATED)
async def create_training_product(
    request: Request,
    data: TrainingProductCreate,
    current_user: User = Depends(require_permission("training.create")),
    db: AsyncSession = Depends(get_db),
):
    if await _code_taken(db, data.code):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Training product code '{data.code}' already exists",
        )

    product = TrainingProduct(**data.model_dump(), sops=[])
    db.add(product)
    await db.flush()

    await log_action(
        db, request, current_user, AuditAction.CREATE, "training_product",
        resource_id=product.id, resource_name=product.code,
    )
    await db.commit()
    return training_product_to_response(product)


@router.get("/{product_id}", response_model=TrainingProductResponse)
async def get_training_product(
    product_id: int,
    current_user: User = Depends(require_permission("training.read")),
    db: AsyncSession = Depends(get_db),
):
    product = await get_or_404(db, TrainingProduct, product_id, "Training product not found")
    return training_product_to_response(product)


@router.patch("/{product_id}", response_model=TrainingProductResponse)
async def update_training_product(
    request: Request,
    product_id: int,
    data: TrainingProductUpdate,
    current_user: User = Depends(require_permission("training.update")),
    db: AsyncSession = Depends(get_db),
):
    product = await get_or_404(db, TrainingProduct, product_id, "Training product not found")
    changes = data.model_dump(exclude_unset=True)
    for field, value in changes.items():
        setattr(product, field, value)

    await log_action(
        db, request, current_user, AuditAction.UPDATE, "training_product",
        resource_id=product.id,
        resource_name=product.code,
        details={"changes": data.model_dump(exclude_unset=True, mode="json")},
    )
    await db.commit()
    return training_product_to_response(product)


@router.delete("/{product_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_training_product(
    request: Request,
    product_id: int,
    current_user: User = Depends(require_permission("training.delete")),
    db: AsyncSession = Depends(get_db),
):
    product = await get_or_404(db, TrainingProduct, product_id, "Training product not found")
    product.deleted_at = utcnow()

    await log_action(
        db, request, current_user, AuditAction.DELETE, "training_product",
        resource_id=product.id, resource_name=product.code,
    )
    await db.commit()


@router.post("/{product_id}/sops", response_model=TrainingProductResponse)
async def link_sops(
    request: Request,
    product_id: int,
    data: TrainingProductSOPsRequest,
    current_user: User = Depends(require_permission("training.update")),
    db: AsyncSession = Depends(get_db),
):
    """Replace the SOPs linked to a training product."""
    product = await get_or_404(db, TrainingProduct, product_id, "Training product not found")

    wanted = set(data.sop_ids)
    result = await db.execute(select(SOP).where(SOP.id.in_(wanted), SOP.deleted_at.is_(None)))
    sops = list(result.scalars().all())
    missing = sorted(wanted - {s.id for s in sops})
    if missing:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown SOP IDs: {', '.join(str(i) for i in missing)}",
        )

    product.sops = sorted(sops, key=lambda s: s.title)
    await log_action(
        db, request, current_user, AuditAction.MAP, "training_product",
        resource_id=product.id,
        resource_name=product.code,
        details={"sop_ids": sorted(wanted)},
    )
    await db.commit()
    return training_product_to_response(product)
