"""
Authentication and Authorization module.

Provides:
- JWT token generation and validation
- Password hashing (Argon2id)
- Permission-based access control (app.auth.dependencies)
- Audit logging helpers with sensitive-field redaction (app.auth.audit)
"""

from app.auth.jwt import (
    create_access_token,
    create_refresh_token,
    create_password_reset_token,
    verify_token,
    TokenPayload,
)
from app.auth.password import (
    hash_password,
    verify_password,
)

__all__ = [
    # JWT
    "create_access_token",
    "create_refresh_token",
    "create_password_reset_token",
    "verify_token",
    "TokenPayload",
    # Password
    "hash_password",
    "verify_password",
]
