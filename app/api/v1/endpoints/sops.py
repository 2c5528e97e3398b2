"""
Standard operating procedure endpoints.
"""

from typing import Optional

from fastapi import APIRouter, Depends, status, Query, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.endpoints.policies import load_standards
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
from app.models.policy import Policy
from app.models.training import SOP
from app.models.user import User
from app.auth.audit import log_action
from app.auth.dependencies import require_permission
from app.schemas.common import PaginatedResponse, DEFAULT_PER_PAGE, MAX_PER_PAGE
from app.schemas.training import (
    SOPCreate,
    SOPUpdate,
    SOPResponse,
    SOPStandardsRequest,
    sop_to_response,
)

router = APIRouter()

SORTABLE = {"title": SOP.title, "created_at": SOP.created_at, "updated_at": SOP.updated_at}


async def _check_policy(db: AsyncSession, policy_id: Optional[int]) -> None:
    if policy_id is not None:
        await get_or_404(db, Policy, policy_id, "Policy not found")


@router.get("", response_model=PaginatedResponse[SOPResponse])
async def list_sops(
    page: int = Query(1, ge=1),
    per_page: int = Query(DEFAULT_PER_PAGE, ge=1, le=MAX_PER_PAGE),
    policy_id: Optional[int] = None,
    q: Optional[str] = Query(None, max_length=200),
    sort: Optional[str] = None,
    current_user: User = Depends(require_permission("training.read")),
    db: AsyncSession = Depends(get_db),
):
    order_by = parse_sort(sort, SORTABLE, [SOP.title])
    query = select(SOP).where(SOP.deleted_at.is_(None))
    count_query = count_of(SOP).where(SOP.deleted_at.is_(None))

    if policy_id is not None:
        query, count_query = apply_filter(query, count_query, SOP.policy_id == policy_id)
    query, count_query = apply_search_filter(query, count_query, q, SOP.title, SOP.description)

    sops, total = await paginate(db, query, count_query, page, per_page, order_by)
    return PaginatedResponse.create(
        items=[sop_to_response(s) for s in sops],
        total=total,
        page=page,
        per_page=per_page,
    )


@router.post("", response_model=SOPResponse, status_code=status.HTTP_201_CREATED)
async def create_sop(
    request: Request,
    data: SOPCreate,
    current_user: User = Depends(require_permission("training.create")),
    db: AsyncSession = Depends(get_db),
):
    await _check_policy(db, data.policy_id)
    sop = SOP(**data.model_dump(), standards=[])
    db.add(sop)
    await db.flush()

    await log_action(
        db, request, current_user, AuditAction.CREATE, "sop",
        resource_id=sop.id, resource_name=sop.title,
    )
    await db.commit()
    return sop_to_response(sop)


@router.get("/{sop_id}", response_model=SOPResponse)
async def get_sop(
    sop_id: int,
    current_user: User = Depends(require_permission("training.read")),
    db: AsyncSession = Depends(get_db),
):
    return sop_to_response(await get_or_404(db, SOP, sop_id, "SOP not found"))


@router.patch("/{sop_id}", response_model=SOPResponse)
async def update_sop(
    request: Request,
    sop_id: int,
    data: SOPUpdate,
    current_user: User = Depends(require_permission("training.update")),
    db: AsyncSession = Depends(get_db),
):
    sop = await get_or_404(db, SOP, sop_id, "SOP not found")
    changes = data.model_dump(exclude_unset=True)
    if "policy_id" in changes:
        await _check_policy(db, changes["policy_id"])
    for field, value in changes.items():
        setattr(sop, field, value)

    await log_action(
        db, request, current_user, AuditAction.UPDATE, "sop",
        resource_id=sop.id,
        resource_name=sop.title,
        details={"changes": data.model_dump(exclude_unset=True, mode="json")},
    )
    await db.commit()
    return sop_to_response(sop)


@router.delete("/{sop_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_sop(
    request: Request,
    sop_id: int,
    current_user: User = Depends(require_permission("training.delete")),
    db: AsyncSession = Depends(get_db),
):
    sop = await get_or_404(db, SOP, sop_id, "SOP not found")
    sop.deleted_at = utcnow()

    await log_action(
        db, request, current_user, AuditAction.DELETE, "sop",
        resource_id=sop.id, resource_name=sop.title,
    )
    await db.commit()


@router.post("/{sop_id}/standards", response_model=SOPResponse)
async def map_sop_standards(
    request: Request,
    sop_id: int,
    data: SOPStandardsRequest,
    current_user: User = Depends(require_permission("training.update")),
    db: AsyncSession = Depends(get_db),
):
    """Replace the standards an SOP is mapped to."""
    sop = await get_or_404(db, SOP, sop_id, "SOP not found")
    standards = await load_standards(db, data.standard_ids)
    sop.standards = sorted(standards, key=lambda s: s.code)

    await log_action(
        db, request, current_user, AuditAction.MAP, "sop",
        resource_id=sop.id,
        resource_name=sop.title,
        details={"standard_ids": sorted(s.id for s in standards)},
    )
    await db.commit()
    return sop_to_response(sop)
