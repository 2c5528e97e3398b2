"""
FastAPI dependencies for authentication and authorization.

Provides:
- get_current_user: Extract and validate user from JWT
- require_permission: Require a `resource.action` permission
- PermissionChecker: Require any/all of several permissions
"""

from typing import Optional
from fastapi import Depends, HTTPException, status, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from jose import JWTError

from app.core.database import get_db
from app.auth.jwt import verify_token
from app.models.user import User

# HTTP Bearer token extractor
security = HTTPBearer(auto_error=False)


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> User:
    """
    Extract and validate the current user from JWT token.

    Looks for token in:
    1. Authorization: Bearer <token> header
    2. Cookie: access_token

    Raises:
        HTTPException 401: If token is missing or invalid
        HTTPException 401: If user not found, inactive or locked
    """
    if credentials:
        token = credentials.credentials
    else:
        token = request.cookies.get("access_token")

    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        payload = verify_token(token, expected_type="access")
    except JWTError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"},
        )

    # Roles and permissions are eager-loaded by the relationship config
    result = await db.execute(
        select(User).where(User.id == int(payload.sub), User.deleted_at.is_(None))
    )
    user = result.scalar_one_or_none()

    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User account is disabled",
        )

    if user.is_locked():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User account is locked",
        )

    request.state.user_id = user.id
    request.state.user_email = user.email
    return user


def require_permission(permission: str):
    """
    Dependency to require specific permission.

    Usage:
        @router.post("")
        async def create_policy(
            user: User = Depends(require_permission("policies.create"))
        ):
            ...
    """
    async def permission_checker(
        current_user: User = Depends(get_current_user),
    ) -> User:
        if not current_user.has_permission(permission):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Permission '{permission}' required",
            )
        return current_user

    return permission_checker


class PermissionChecker:
    """
    Class-based dependency for permission checking.
    Supports multiple permissions (any or all).

    Usage:
        can_export = PermissionChecker(["audit_logs.read", "audit_logs.export"], require_all=True)
    """

    def __init__(self, permissions: list[str], require_all: bool = False):
        self.permissions = permissions
        self.require_all = require_all

    async def __call__(
        self,
        current_user: User = Depends(get_current_user),
    ) -> User:
        granted = current_user.permissions

        if self.require_all:
            if not all(p in granted for p in self.permissions):
                raise HTTPException(
                    status_code=status.HTTP_403_FORBIDDEN,
                    detail=f"Requires all permissions: {self.permissions}",
                )
        elif not any(p in granted for p in self.permissions):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Requires at least one permission from: {self.permissions}",
            )

        return current_user


def get_client_ip(request: Request) -> str:
    """
    Extract client IP address from request.
    Handles X-Forwarded-For header for proxied requests.
    """
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()

    if request.client:
        return request.client.host

    return "unknown"


def get_user_agent(request: Request) -> str:
    """Extract user agent from request headers."""
    return request.headers.get("User-Agent", "unknown")[:500]
