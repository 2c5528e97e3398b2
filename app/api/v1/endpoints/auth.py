"""
Authentication endpoints.

Provides:
- Login (email/password → JWT tokens)
- Token refresh
- Logout
- Password change and reset
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, status, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from jose import JWTError

from app.core import config
from app.core.database import get_db
from app.core.rate_limiter import limiter
from app.models.user import User
from app.models.audit import AuditAction
from app.auth.jwt import (
    create_access_token,
    create_refresh_token,
    create_password_reset_token,
    password_fingerprint,
    verify_token,
    ACCESS_TOKEN_EXPIRE_MINUTES,
    REFRESH_TOKEN_EXPIRE_DAYS,
    RESET_TOKEN_EXPIRE_MINUTES,
)
from app.auth.audit import log_action
from app.auth.dependencies import get_current_user
from app.schemas.auth import (
    LoginRequest,
    LoginResponse,
    UserSummary,
    TokenRefreshRequest,
    TokenRefreshResponse,
    PasswordChangeRequest,
    PasswordResetRequest,
)
from app.schemas.user import UserProfileResponse, user_to_profile
from app.services.email_service import email_service

logger = logging.getLogger(__name__)

router = APIRouter()

RESET_REQUESTED_MESSAGE = "If the account exists, a password reset email has been sent"


def _set_auth_cookies(response: Response, refresh_token: str) -> None:
    response.set_cookie(
        key="refresh_token",
        value=refresh_token,
        httponly=True,
        secure=not config.DEBUG,
        samesite="lax",
        max_age=REFRESH_TOKEN_EXPIRE_DAYS * 24 * 60 * 60,
    )


@router.post("/login", response_model=LoginResponse)
@limiter.limit(config.LOGIN_RATE_LIMIT)
async def login(
    request: Request,
    login_data: LoginRequest,
    response: Response,
    db: AsyncSession = Depends(get_db),
):
    """
    Authenticate user and return JWT tokens.

    Sets HttpOnly cookie for refresh token. Returns both tokens in the
    body. Five failed attempts lock the account for 15 minutes.
    """
    result = await db.execute(
        select(User).where(User.email == login_data.email, User.deleted_at.is_(None))
    )
    user = result.scalar_one_or_none()

    if user and user.is_locked():
        await log_action(
            db, request, user, AuditAction.LOGIN_FAILURE, "auth",
            details={"reason": "account_locked"}, success=False,
        )
        await db.commit()
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Account is locked. Try again later.",
        )

    if not user or not user.verify_password(login_data.password):
        if user:
            user.record_failed_login()
        await log_action(
            db, request, user, AuditAction.LOGIN_FAILURE, "auth",
            details={"reason": "invalid_credentials"},
            success=False,
            user_email=login_data.email,
        )
        await db.commit()
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Account is disabled",
        )

    user.record_successful_login()

    roles = user.role_names
    access_token = create_access_token(user_id=user.id, email=user.email, roles=roles)
    refresh_token = create_refresh_token(user_id=user.id, email=user.email, roles=roles)

    await log_action(db, request, user, AuditAction.LOGIN_SUCCESS, "auth")
    await db.commit()

    _set_auth_cookies(response, refresh_token)

    return LoginResponse(
        access_token=access_token,
        refresh_token=refresh_token,
        expires_in=ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        user=UserSummary(
            id=user.id,
            email=user.email,
            full_name=user.full_name,
            department=user.department.value,
            roles=roles,
            permissions=sorted(user.permissions),
        ),
    )


@router.post("/refresh", response_model=TokenRefreshResponse)
async def refresh_token(
    request: Request,
    token_data: TokenRefreshRequest | None = None,
    db: AsyncSession = Depends(get_db),
):
    """
    Refresh access token using refresh token.

    Accepts refresh token from:
    1. Request body (preferred for SPAs)
    2. HttpOnly cookie (for web apps)
    """
    refresh_token = None
    if token_data and token_data.refresh_token:
        refresh_token = token_data.refresh_token
    else:
        refresh_token = request.cookies.get("refresh_token")

    if not refresh_token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Refresh token required",
        )

    try:
        payload = verify_token(refresh_token, expected_type="refresh")
    except JWTError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid refresh token: {e}",
        )

    result = await db.execute(
        select(User).where(User.id == int(payload.sub), User.deleted_at.is_(None))
    )
    user = result.scalar_one_or_none()

    if not user or not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found or inactive",
        )

    access_token = create_access_token(user_id=user.id, email=user.email, roles=user.role_names)

    return TokenRefreshResponse(
        access_token=access_token,
        expires_in=ACCESS_TOKEN_EXPIRE_MINUTES * 60,
    )


@router.post("/logout")
async def logout(
    request: Request,
    response: Response,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Logout user by clearing cookies.

    JWTs stay valid until they expire; the client discards them.
    """
    response.delete_cookie("refresh_token")
    response.delete_cookie("access_token")

    await log_action(db, request, current_user, AuditAction.LOGOUT, "auth")
    await db.commit()

    return {"message": "Successfully logged out"}


@router.post("/change-password")
async def change_password(
    request: Request,
    password_data: PasswordChangeRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Change the current user's password."""
    if not current_user.verify_password(password_data.current_password):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Current password is incorrect",
        )

    current_user.set_password(password_data.new_password)

    await log_action(
        db, request, current_user, AuditAction.PASSWORD_CHANGE, "user",
        resource_id=current_user.id, resource_name=current_user.email,
    )
    await db.commit()

    return {"message": "Password changed successfully"}


@router.post("/reset-password")
@limiter.limit(config.PASSWORD_RESET_RATE_LIMIT)
async def reset_password(
    request: Request,
    reset_data: PasswordResetRequest,
    db: AsyncSession = Depends(get_db),
):
    """
    Request or complete a password reset.

    A request always answers 200 so account existence is not revealed.
    """
    result = await db.execute(
        select(User).where(User.email == reset_data.email, User.deleted_at.is_(None))
    )
    user = result.scalar_one_or_none()

    if not reset_data.is_confirmation:
        if user is None or not user.is_active:
            logger.info("Password reset requested for unknown or inactive account")
            return {"message": RESET_REQUESTED_MESSAGE}

        token = create_password_reset_token(user.id, user.email, user.password_hash)
        await log_action(
            db, request, user, AuditAction.PASSWORD_RESET_REQUESTED, "user",
            resource_id=user.id, resource_name=user.email,
        )
        await db.commit()
        await email_service.send_email(db, user.email, "password-reset", {
            "user_name": user.full_name,
            "reset_url": f"{config.FRONTEND_URL}/reset-password?token={token}",
            "expires_minutes": RESET_TOKEN_EXPIRE_MINUTES,
        })
        return {"message": RESET_REQUESTED_MESSAGE}

    invalid = HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail="Invalid or expired reset token",
    )
    try:
        payload = verify_token(reset_data.token, expected_type="reset")
    except JWTError:
        raise invalid

    if (
        user is None
        or str(user.id) != payload.sub
        or payload.pwd != password_fingerprint(user.password_hash)
    ):
        raise invalid

    user.set_password(reset_data.new_password)
    user.failed_login_attempts = 0
    user.locked_until = None
    await log_action(
        db, request, user, AuditAction.PASSWORD_RESET, "user",
        resource_id=user.id, resource_name=user.email,
    )
    await db.commit()

    return {"message": "Password has been reset"}


@router.get("/me", response_model=UserProfileResponse)
async def get_current_user_info(
    current_user: User = Depends(get_current_user),
):
    """Get current user's profile with roles and permissions."""
    return user_to_profile(current_user)
