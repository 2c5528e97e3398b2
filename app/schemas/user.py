"""
User-related schemas.
"""

from typing import Optional, List
from datetime import datetime
from pydantic import BaseModel, Field, EmailStr, field_validator
import re

from app.auth.password import check_password_strength
from app.models.user import Department, UserStatus, User
from app.schemas.common import reject_null


def _clean_name(v: str) -> str:
    return re.sub(r'[<>"\';\\]', '', v).strip()


class UserBase(BaseModel):
    """Base user fields."""

    email: EmailStr = Field(description="User email address")
    full_name: str = Field(min_length=2, max_length=255, description="User's full name")
    department: Department = Department.SUPPORT

    @field_validator("email")
    @classmethod
    def lowercase_email(cls, v: str) -> str:
        return v.lower().strip()

    @field_validator("full_name")
    @classmethod
    def sanitize_name(cls, v: str) -> str:
        return _clean_name(v)


class UserCreate(UserBase):
    """Schema for creating a new user."""

    password: Optional[str] = Field(
        default=None,
        max_length=128,
        description="Initial password. If not provided, a temporary password will be generated."
    )
    roles: List[str] = Field(default_factory=list, description="Role names to assign")

    @field_validator("password")
    @classmethod
    def validate_password_strength(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return check_password_strength(v)


class UserUpdate(BaseModel):
    """Schema for updating a user."""

    email: Optional[EmailStr] = None
    full_name: Optional[str] = Field(default=None, min_length=2, max_length=255)
    department: Optional[Department] = None
    status: Optional[UserStatus] = None
    roles: Optional[List[str]] = None
    email_opt_out: Optional[bool] = None

    @field_validator("email")
    @classmethod
    def lowercase_email(cls, v: Optional[str]) -> str:
        return reject_null(v).lower().strip()

    @field_validator("full_name")
    @classmethod
    def sanitize_name(cls, v: Optional[str]) -> str:
        return _clean_name(reject_null(v))

    @field_validator("department", "status", "roles", "email_opt_out")
    @classmethod
    def not_null(cls, v):
        return reject_null(v)


class UserResponse(BaseModel):
    """Schema for user response (no sensitive data)."""

    id: int
    email: str
    full_name: str
    department: Department
    status: UserStatus
    roles: List[str] = Field(default_factory=list, description="Role names")
    email_opt_out: bool = False
    xero_employee_id: Optional[str] = None
    accelerate_id: Optional[str] = None
    created_at: datetime
    last_login: Optional[datetime] = None

    class Config:
        from_attributes = True


class UserProfileResponse(UserResponse):
    """Extended user profile for self-view."""

    permissions: List[str] = Field(default_factory=list)


class RoleResponse(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    permissions: List[str] = Field(default_factory=list)


def user_to_response(user: User) -> UserResponse:
    return UserResponse(
        id=user.id,
        email=user.email,
        full_name=user.full_name,
        department=user.department,
        status=user.status,
        roles=user.role_names,
        email_opt_out=bool(user.email_opt_out),
        xero_employee_id=user.xero_employee_id,
        accelerate_id=user.accelerate_id,
        created_at=user.created_at,
        last_login=user.last_login,
    )


def user_to_profile(user: User) -> UserProfileResponse:
    return UserProfileResponse(
        **user_to_response(user).model_dump(),
        permissions=sorted(user.permissions),
    )
