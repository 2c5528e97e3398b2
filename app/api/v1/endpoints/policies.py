"""
Policy management endpoints.

Policies carry versioned content. Publishing creates a new current
version in one transaction; mapping replaces the set of ASQA standards
a policy addresses.
"""

from datetime import timedelta
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status, Query, Request
from sqlalchemy import select, update
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
from app.models.policy import (
    Policy,
    PolicyStatus,
    PolicyVersion,
    Standard,
    policy_standard_mappings,
)
from app.models.user import User
from app.auth.audit import log_action
from app.auth.dependencies import require_permission
from app.schemas.common import PaginatedResponse, DEFAULT_PER_PAGE, MAX_PER_PAGE
from app.schemas.policy import (
    PolicyCreate,
    PolicyUpdate,
    PolicyResponse,
    PolicyPublishRequest,
    PolicyMapRequest,
    PolicyVersionResponse,
    policy_to_response,
    version_to_response,
)
from app.services.lifecycle import REVIEW_DUE_SOON_DAYS

router = APIRouter()

SORTABLE = {
    "title": Policy.title,
    "status": Policy.status,
    "review_date": Policy.review_date,
    "created_at": Policy.created_at,
    "updated_at": Policy.updated_at,
}


async def _get_policy(db: AsyncSession, policy_id: int) -> Policy:
    return await get_or_404(db, Policy, policy_id, "Policy not found")


async def load_standards(db: AsyncSession, standard_ids: List[int]) -> List[Standard]:
    """Fetch standards by ID; any unknown ID is a 400 and nothing changes."""
    wanted = set(standard_ids)
    result = await db.execute(select(Standard).where(Standard.id.in_(wanted)))
    standards = list(result.scalars().all())
    missing = sorted(wanted - {s.id for s in standards})
    if missing:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown standard IDs: {', '.join(str(i) for i in missing)}",
        )
    return standards


@router.get("", response_model=PaginatedResponse[PolicyResponse])
async def list_policies(
    page: int = Query(1, ge=1),
    per_page: int = Query(DEFAULT_PER_PAGE, ge=1, le=MAX_PER_PAGE),
    standard_id: Optional[int] = None,
    status_filter: Optional[PolicyStatus] = Query(None, alias="status"),
    owner_id: Optional[int] = None,
    review_due: Optional[bool] = Query(None, description="Review date within 30 days"),
    q: Optional[str] = Query(None, max_length=200),
    sort: Optional[str] = None,
    current_user: User = Depends(require_permission("policies.read")),
    db: AsyncSession = Depends(get_db),
):
    """List policies with filtering and pagination."""
    order_by = parse_sort(sort, SORTABLE, [Policy.updated_at.desc()])
    query = select(Policy).where(Policy.deleted_at.is_(None))
    count_query = count_of(Policy).where(Policy.deleted_at.is_(None))

    if status_filter:
        query, count_query = apply_filter(query, count_query, Policy.status == status_filter)
    if owner_id is not None:
        query, count_query = apply_filter(query, count_query, Policy.owner_id == owner_id)
    if standard_id is not None:
        mapped = Policy.id.in_(
            select(policy_standard_mappings.c.policy_id)
            .where(policy_standard_mappings.c.standard_id == standard_id)
        )
        query, count_query = apply_filter(query, count_query, mapped)
    if review_due:
        horizon = utcnow() + timedelta(days=REVIEW_DUE_SOON_DAYS)
        query, count_query = apply_filter(
            query, count_query,
            Policy.review_date.is_not(None) & (Policy.review_date <= horizon),
        )
    query, count_query = apply_search_filter(query, count_query, q, Policy.title)

    policies, total = await paginate(db, query, count_query, page, per_page, order_by)

    return PaginatedResponse.create(
        items=[policy_to_response(p) for p in policies],
        total=total,
        page=page,
        per_page=per_page,
    )


@router.post("", response_model=PolicyResponse, status_code=status.HTTP_201_CREATED)
async def create_policy(
    request: Request,
    policy_data: PolicyCreate,
    current_user: User = Depends(require_permission("policies.create")),
    db: AsyncSession = Depends(get_db),
):
    """
    Create a policy in Draft status, owned by the caller.

    A supplied version and content are stored as an unpublished first version.
    """
    policy = Policy(
        title=policy_data.title,
        review_date=policy_data.review_date,
        file_url=policy_data.file_url,
        status=PolicyStatus.DRAFT,
        owner=current_user,
        versions=[],
        standards=[],
    )
    if policy_data.version or policy_data.content:
        policy.versions.append(PolicyVersion(
            version=policy_data.version or "1.0",
            content=policy_data.content,
            file_url=policy_data.file_url,
            is_current=False,
            created_by_id=current_user.id,
        ))
    db.add(policy)
    await db.flush()

    await log_action(
        db, request, current_user, AuditAction.CREATE, "policy",
        resource_id=policy.id, resource_name=policy.title,
    )
    await db.commit()

    return policy_to_response(policy)


@router.get("/{policy_id}", response_model=PolicyResponse)
async def get_policy(
    policy_id: int,
    current_user: User = Depends(require_permission("policies.read")),
    db: AsyncSession = Depends(get_db),
):
    """Policy with its current version, mapped standards and review status."""
    return policy_to_response(await _get_policy(db, policy_id))


@router.patch("/{policy_id}", response_model=PolicyResponse)
async def update_policy(
    request: Request,
    policy_id: int,
    policy_data: PolicyUpdate,
    current_user: User = Depends(require_permission("policies.update")),
    db: AsyncSession = Depends(get_db),
):
    policy = await _get_policy(db, policy_id)
    changes = policy_data.model_dump(exclude_unset=True)

    if changes.get("owner_id") is not None:
        policy.owner = await get_or_404(db, User, changes.pop("owner_id"), "Owner not found")

    for field, value in changes.items():
        setattr(policy, field, value)

    await log_action(
        db, request, current_user, AuditAction.UPDATE, "policy",
        resource_id=policy.id,
        resource_name=policy.title,
        details={"changes": policy_data.model_dump(exclude_unset=True, mode="json")},
    )
    await db.commit()

    return policy_to_response(policy)


@router.delete("/{policy_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_policy(
    request: Request,
    policy_id: int,
    current_user: User = Depends(require_permission("policies.delete")),
    db: AsyncSession = Depends(get_db),
):
    policy = await _get_policy(db, policy_id)
    policy.deleted_at = utcnow()

    await log_action(
        db, request, current_user, AuditAction.DELETE, "policy",
        resource_id=policy.id, resource_name=policy.title,
    )
    await db.commit()


@router.post(
    "/{policy_id}/publish",
    response_model=PolicyResponse,
    status_code=status.HTTP_201_CREATED,
)
async def publish_policy(
    request: Request,
    policy_id: int,
    publish_data: PolicyPublishRequest,
    current_user: User = Depends(require_permission("policies.update")),
    db: AsyncSession = Depends(get_db),
):
    """
    Publish a new version.

    Every existing version stops being current, the new version becomes
    current and the policy is Published, all in one commit.
    """
    policy = await _get_policy(db, policy_id)
    now = utcnow()

    await db.execute(
        update(PolicyVersion)
        .where(PolicyVersion.policy_id == policy.id)
        .values(is_current=False)
    )
    for version in policy.versions:
        version.is_current = False

    new_version = PolicyVersion(
        version=publish_data.version,
        content=publish_data.content,
        file_url=publish_data.file_url or policy.file_url,
        is_current=True,
        published_at=now,
        created_by_id=current_user.id,
    )
    policy.versions.insert(0, new_version)
    policy.status = PolicyStatus.PUBLISHED
    if publish_data.file_url:
        policy.file_url = publish_data.file_url

    await db.flush()
    await log_action(
        db, request, current_user, AuditAction.PUBLISH, "policy",
        resource_id=policy.id,
        resource_name=policy.title,
        details={"version": publish_data.version},
    )
    await db.commit()

    return policy_to_response(policy)


@router.post("/{policy_id}/map", response_model=PolicyResponse)
async def map_policy_standards(
    request: Request,
    policy_id: int,
    map_data: PolicyMapRequest,
    current_user: User = Depends(require_permission("policies.update")),
    db: AsyncSession = Depends(get_db),
):
    """Replace the standards this policy is mapped to."""
    policy = await _get_policy(db, policy_id)
    standards = await load_standards(db, map_data.standard_ids)

    policy.standards = sorted(standards, key=lambda s: s.code)

    await log_action(
        db, request, current_user, AuditAction.MAP, "policy",
        resource_id=policy.id,
        resource_name=policy.title,
        details={"standard_ids": sorted(s.id for s in standards)},
    )
    await db.commit()

    return policy_to_response(policy)


@router.get("/{policy_id}/versions", response_model=List[PolicyVersionResponse])
async def list_policy_versions(
    policy_id: int,
    current_user: User = Depends(require_permission("policies.read")),
    db: AsyncSession = Depends(get_db),
):
    """All versions, newest first."""
    await _get_policy(db, policy_id)
    result = await db.execute(
        select(PolicyVersion)
        .where(PolicyVersion.policy_id == policy_id)
        .order_by(PolicyVersion.id.desc())
    )
    return [version_to_response(v) for v in result.scalars().all()]
