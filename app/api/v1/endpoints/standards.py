"""
ASQA standards catalogue (read-only, seeded at startup).
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.utils import apply_filter, apply_search_filter, count_of, get_or_404, paginate, parse_sort
from app.models.policy import Policy, Standard, policy_standard_mappings, sop_standard_mappings
from app.models.training import SOP
from app.models.user import User
from app.auth.dependencies import require_permission
from app.schemas.common import PaginatedResponse, MAX_PER_PAGE
from app.schemas.policy import (
    MappedItem,
    StandardMappingsResponse,
    StandardResponse,
    standard_to_response,
)

router = APIRouter()

SORTABLE = {"code": Standard.code, "title": Standard.title, "category": Standard.category}


@router.get("", response_model=PaginatedResponse[StandardResponse])
async def list_standards(
    page: int = Query(1, ge=1),
    per_page: int = Query(MAX_PER_PAGE, ge=1, le=MAX_PER_PAGE),
    category: Optional[str] = None,
    q: Optional[str] = Query(None, max_length=200),
    sort: Optional[str] = None,
    current_user: User = Depends(require_permission("standards.read")),
    db: AsyncSession = Depends(get_db),
):
    order_by = parse_sort(sort, SORTABLE, [Standard.id])
    query = select(Standard)
    count_query = count_of(Standard)

    if category:
        query, count_query = apply_filter(query, count_query, Standard.category == category)
    query, count_query = apply_search_filter(
        query, count_query, q, Standard.code, Standard.title, Standard.description
    )

    standards, total = await paginate(db, query, count_query, page, per_page, order_by)
    return PaginatedResponse.create(
        items=[standard_to_response(s) for s in standards],
        total=total,
        page=page,
        per_page=per_page,
    )


@router.get("/{standard_id}", response_model=StandardResponse)
async def get_standard(
    standard_id: int,
    current_user: User = Depends(require_permission("standards.read")),
    db: AsyncSession = Depends(get_db),
):
    return standard_to_response(await get_or_404(db, Standard, standard_id, "Standard not found"))


@router.get("/{standard_id}/mappings", response_model=StandardMappingsResponse)
async def get_standard_mappings(
    standard_id: int,
    current_user: User = Depends(require_permission("standards.read")),
    db: AsyncSession = Depends(get_db),
):
    """Policies and SOPs mapped to a standard."""
    standard = await get_or_404(db, Standard, standard_id, "Standard not found")

    policies = await db.execute(
        select(Policy.id, Policy.title, Policy.status)
        .join(policy_standard_mappings, policy_standard_mappings.c.policy_id == Policy.id)
        .where(policy_standard_mappings.c.standard_id == standard_id, Policy.deleted_at.is_(None))
        .order_by(Policy.title)
    )
    sops = await db.execute(
        select(SOP.id, SOP.title)
        .join(sop_standard_mappings, sop_standard_mappings.c.sop_id == SOP.id)
        .where(sop_standard_mappings.c.standard_id == standard_id, SOP.deleted_at.is_(None))
        .order_by(SOP.title)
    )

    return StandardMappingsResponse(
        standard=standard_to_response(standard),
        policies=[MappedItem(id=row.id, title=row.title, status=row.status.value) for row in policies],
        sops=[MappedItem(id=row.id, title=row.title) for row in sops],
    )
