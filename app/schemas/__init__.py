"""
Pydantic schemas for API request/response validation.

These schemas provide:
- Input validation with security constraints
- Output serialization
- OpenAPI documentation generation
"""

from app.schemas.auth import (
    LoginRequest,
    LoginResponse,
    TokenRefreshRequest,
    TokenRefreshResponse,
    PasswordChangeRequest,
    PasswordResetRequest,
)
from app.schemas.user import (
    UserCreate,
    UserUpdate,
    UserResponse,
)
from app.schemas.common import (
    PaginatedResponse,
    SuccessResponse,
    HealthResponse,
)

__all__ = [
    # Auth
    "LoginRequest",
    "LoginResponse",
    "TokenRefreshRequest",
    "TokenRefreshResponse",
    "PasswordChangeRequest",
    "PasswordResetRequest",
    # User
    "UserCreate",
    "UserUpdate",
    "UserResponse",
    # Common
    "PaginatedResponse",
    "SuccessResponse",
    "HealthResponse",
]
