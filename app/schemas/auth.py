"""
Authentication-related schemas.
"""

from typing import List, Optional
from pydantic import BaseModel, Field, EmailStr, field_validator, model_validator

from app.auth.password import check_password_strength


class LoginRequest(BaseModel):
    """Login request with email and password."""

    email: EmailStr = Field(description="User email address")
    password: str = Field(min_length=1, max_length=128, description="User password")

    @field_validator("email")
    @classmethod
    def lowercase_email(cls, v: str) -> str:
        return v.lower().strip()


class UserSummary(BaseModel):
    id: int
    email: str
    full_name: str
    department: str
    roles: List[str]
    permissions: List[str]


class LoginResponse(BaseModel):
    """Login response with tokens."""

    access_token: str = Field(description="JWT access token")
    refresh_token: str = Field(description="JWT refresh token for token renewal")
    token_type: str = Field(default="bearer", description="Token type")
    expires_in: int = Field(description="Access token expiration in seconds")
    user: UserSummary


class TokenRefreshRequest(BaseModel):
    """Request to refresh access token. Falls back to the refresh_token cookie."""

    refresh_token: Optional[str] = Field(default=None, description="Current refresh token")


class TokenRefreshResponse(BaseModel):
    """Response with new access token."""

    access_token: str = Field(description="New JWT access token")
    token_type: str = Field(default="bearer")
    expires_in: int = Field(description="Access token expiration in seconds")


class PasswordChangeRequest(BaseModel):
    """Request to change password."""

    current_password: str = Field(min_length=1, max_length=128)
    new_password: str = Field(min_length=12, max_length=128)

    @field_validator("new_password")
    @classmethod
    def validate_password_strength(cls, v: str) -> str:
        return check_password_strength(v)


class PasswordResetRequest(BaseModel):
    """
    Two-step password reset.

    With only `email` a reset link is emailed. With `token` and
    `new_password` as well, the password is replaced.
    """

    email: EmailStr
    token: Optional[str] = Field(default=None, max_length=2048)
    new_password: Optional[str] = Field(default=None, max_length=128)

    @field_validator("email")
    @classmethod
    def lowercase_email(cls, v: str) -> str:
        return v.lower().strip()

    @field_validator("new_password")
    @classmethod
    def validate_password_strength(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return check_password_strength(v)

    @model_validator(mode="after")
    def token_and_password_together(self):
        if (self.token is None) != (self.new_password is None):
            raise ValueError("token and new_password must be provided together")
        return self

    @property
    def is_confirmation(self) -> bool:
        return self.token is not None
