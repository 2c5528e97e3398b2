"""
User management endpoints.

Requires `users.*` permissions. Creating a user triggers onboarding
auto-assignment for every matching active workflow.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

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
from app.models.user import User, Role, Department, UserStatus, user_roles
from app.models.staff import Credential, PDItem
from app.models.audit import AuditAction
from app.auth.audit import log_action
from app.auth.dependencies import require_permission
from app.auth.password import generate_temp_password
from app.schemas.common import PaginatedResponse, DEFAULT_PER_PAGE, MAX_PER_PAGE
from app.schemas.staff import (
    CredentialResponse,
    PDItemResponse,
    UserCredentialCreate,
    credential_to_response,
    pd_item_to_response,
)
from app.schemas.user import (
    UserCreate,
    UserUpdate,
    UserResponse,
    user_to_response,
)
from app.services.lifecycle import credential_status
from app.services.onboarding import trigger_onboarding_for_new_user

router = APIRouter()

SORTABLE = {
    "full_name": User.full_name,
    "email": User.email,
    "department": User.department,
    "created_at": User.created_at,
    "last_login": User.last_login,
}


async def _resolve_roles(db: AsyncSession, names: list[str]) -> list[Role]:
    """Look up roles by name; any unknown name is a 400."""
    if not names:
        return []
    result = await db.execute(select(Role).where(Role.name.in_(names)))
    roles = list(result.scalars().all())
    unknown = sorted(set(names) - {r.name for r in roles})
    if unknown:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown roles: {', '.join(unknown)}",
        )
    return roles


async def _email_taken(db: AsyncSession, email: str, exclude_id: Optional[int] = None) -> bool:
    query = select(User.id).where(User.email == email)
    if exclude_id is not None:
        query = query.where(User.id != exclude_id)
    return (await db.execute(query)).first() is not None


# =============================================================================
# User CRUD
# =============================================================================

@router.get("", response_model=PaginatedResponse[UserResponse])
async def list_users(
    page: int = Query(1, ge=1),
    per_page: int = Query(DEFAULT_PER_PAGE, ge=1, le=MAX_PER_PAGE),
    department: Optional[Department] = None,
    role: Optional[str] = None,
    status_filter: Optional[UserStatus] = Query(None, alias="status"),
    q: Optional[str] = Query(None, max_length=200),
    sort: Optional[str] = None,
    current_user: User = Depends(require_permission("users.read")),
    db: AsyncSession = Depends(get_db),
):
    """
    List users with pagination and filtering.

    Requires: users.read permission
    """
    order_by = parse_sort(sort, SORTABLE, [User.created_at.desc()])
    query = select(User).where(User.deleted_at.is_(None))
    count_query = count_of(User).where(User.deleted_at.is_(None))

    if department:
        query, count_query = apply_filter(query, count_query, User.department == department)
    if status_filter:
        query, count_query = apply_filter(query, count_query, User.status == status_filter)
    if role:
        in_role = User.id.in_(
            select(user_roles.c.user_id)
            .join(Role, Role.id == user_roles.c.role_id)
            .where(Role.name == role)
        )
        query, count_query = apply_filter(query, count_query, in_role)
    query, count_query = apply_search_filter(query, count_query, q, User.email, User.full_name)

    users, total = await paginate(db, query, count_query, page, per_page, order_by)

    return PaginatedResponse.create(
        items=[user_to_response(u) for u in users],
        total=total,
        page=page,
        per_page=per_page,
    )


@router.post("", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def create_user(
    request: Request,
    user_data: UserCreate,
    current_user: User = Depends(require_permission("users.create")),
    db: AsyncSession = Depends(get_db),
):
    """
    Create a new user.

    Requires: users.create permission

    If no password is provided, a temporary password is generated.
    """
    if await _email_taken(db, user_data.email):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Email already registered",
        )

    roles = await _resolve_roles(db, user_data.roles)

    user = User(
        email=user_data.email,
        full_name=user_data.full_name,
        department=user_data.department,
        status=UserStatus.ACTIVE,
        roles=roles,
    )
    user.set_password(user_data.password or generate_temp_password())
    db.add(user)

    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Email already registered",
        )

    await log_action(
        db, request, current_user, AuditAction.CREATE, "user",
        resource_id=user.id,
        resource_name=user.email,
        details={"roles": user_data.roles, "department": user_data.department.value},
    )
    await db.commit()

    await trigger_onboarding_for_new_user(db, user)

    return user_to_response(user)


@router.get("/{user_id}", response_model=UserResponse)
async def get_user(
    user_id: int,
    current_user: User = Depends(require_permission("users.read")),
    db: AsyncSession = Depends(get_db),
):
    """Get a specific user by ID."""
    user = await get_or_404(db, User, user_id, "User not found")
    return user_to_response(user)


@router.patch("/{user_id}", response_model=UserResponse)
async def update_user(
    request: Request,
    user_id: int,
    user_data: UserUpdate,
    current_user: User = Depends(require_permission("users.update")),
    db: AsyncSession = Depends(get_db),
):
    """
    Update a user.

    Requires: users.update permission
    """
    user = await get_or_404(db, User, user_id, "User not found")
    changes = user_data.model_dump(exclude_unset=True)

    if "email" in changes and changes["email"] != user.email:
        if await _email_taken(db, changes["email"], exclude_id=user.id):
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Email already in use",
            )

    if "roles" in changes:
        user.roles = await _resolve_roles(db, changes.pop("roles") or [])

    for field, value in changes.items():
        setattr(user, field, value)

    await log_action(
        db, request, current_user, AuditAction.UPDATE, "user",
        resource_id=user.id,
        resource_name=user.email,
        details={"changes": user_data.model_dump(exclude_unset=True, mode="json")},
    )
    await db.commit()

    return user_to_response(user)


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_user(
    request: Request,
    user_id: int,
    current_user: User = Depends(require_permission("users.delete")),
    db: AsyncSession = Depends(get_db),
):
    """
    Soft-delete a user.

    Requires: users.delete permission
    """
    if user_id == current_user.id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot delete yourself",
        )

    user = await get_or_404(db, User, user_id, "User not found")
    user.deleted_at = utcnow()
    user.status = UserStatus.INACTIVE

    await log_action(
        db, request, current_user, AuditAction.DELETE, "user",
        resource_id=user.id, resource_name=user.email,
    )
    await db.commit()


# =============================================================================
# Per-user credentials and PD
# =============================================================================

@router.post(
    "/{user_id}/credentials",
    response_model=CredentialResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_user_credential(
    request: Request,
    user_id: int,
    data: UserCredentialCreate,
    current_user: User = Depends(require_permission("credentials.create")),
    db: AsyncSession = Depends(get_db),
):
    user = await get_or_404(db, User, user_id, "User not found")

    credential = Credential(user_id=user.id, **data.model_dump())
    credential.status = credential_status(credential.expires_at)
    db.add(credential)
    await db.flush()

    await log_action(
        db, request, current_user, AuditAction.CREATE, "credential",
        resource_id=credential.id,
        resource_name=credential.name,
        details={"user_id": user.id, "type": credential.type.value},
    )
    await db.commit()

    return credential_to_response(credential)


@router.get("/{user_id}/pd", response_model=list[PDItemResponse])
async def list_user_pd(
    user_id: int,
    current_user: User = Depends(require_permission("pd.read")),
    db: AsyncSession = Depends(get_db),
):
    """A user's PD items, soonest due first."""
    await get_or_404(db, User, user_id, "User not found")
    result = await db.execute(
        select(PDItem)
        .where(PDItem.user_id == user_id)
        .order_by(PDItem.due_at.is_(None), PDItem.due_at, PDItem.id)
    )
    return [pd_item_to_response(item) for item in result.scalars().all()]
