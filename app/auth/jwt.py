"""
JWT Token handling.

- Short-lived access tokens (15 min default)
- Longer-lived refresh tokens (7 days)
- One-hour password reset tokens bound to the current password hash
- Token type, issuer and audience validation
"""

import hashlib
import logging
import os
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional, Any
from pydantic import BaseModel, Field
from jose import jwt, JWTError, ExpiredSignatureError

logger = logging.getLogger(__name__)

# Configuration
JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY")
if not JWT_SECRET_KEY:
    # Generate a random key for development (NOT for production!)
    JWT_SECRET_KEY = secrets.token_urlsafe(32)
    logger.warning("Using auto-generated JWT_SECRET_KEY. Set JWT_SECRET_KEY env var in production!")

JWT_ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "15"))
REFRESH_TOKEN_EXPIRE_DAYS = int(os.getenv("REFRESH_TOKEN_EXPIRE_DAYS", "7"))
RESET_TOKEN_EXPIRE_MINUTES = int(os.getenv("RESET_TOKEN_EXPIRE_MINUTES", "60"))
TOKEN_ISSUER = os.getenv("TOKEN_ISSUER", "rto-compliance-hub")
TOKEN_AUDIENCE = os.getenv("TOKEN_AUDIENCE", "rto-compliance-client")


class TokenPayload(BaseModel):
    """JWT token payload structure."""
    sub: str                                      # User ID (subject)
    email: str                                    # User email
    roles: list[str] = Field(default_factory=list)
    type: str                                     # "access", "refresh" or "reset"
    iat: datetime                                 # Issued at
    exp: datetime                                 # Expiration
    iss: str = TOKEN_ISSUER                       # Issuer
    aud: str = TOKEN_AUDIENCE                     # Audience
    jti: Optional[str] = None                     # JWT ID
    pwd: Optional[str] = None                     # Password fingerprint (reset tokens)


def password_fingerprint(password_hash: Optional[str]) -> str:
    """Short digest of the stored hash so a reset token dies once the password changes."""
    return hashlib.sha256((password_hash or "").encode()).hexdigest()[:16]


def _encode(
    user_id: int,
    email: str,
    roles: list[str],
    token_type: str,
    lifetime: timedelta,
    additional_claims: Optional[dict[str, Any]] = None,
) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "email": email,
        "roles": roles,
        "type": token_type,
        "iat": now,
        "exp": now + lifetime,
        "iss": TOKEN_ISSUER,
        "aud": TOKEN_AUDIENCE,
        "jti": secrets.token_urlsafe(16),
    }
    if additional_claims:
        payload.update(additional_claims)
    return jwt.encode(payload, JWT_SECRET_KEY, algorithm=JWT_ALGORITHM)


def create_access_token(
    user_id: int,
    email: str,
    roles: list[str],
    additional_claims: Optional[dict[str, Any]] = None
) -> str:
    """
    Create a short-lived access token.

    Args:
        user_id: The user's database ID
        email: User's email address
        roles: Role names held by the user
        additional_claims: Optional extra claims to include

    Returns:
        Encoded JWT string
    """
    return _encode(
        user_id, email, roles, "access",
        timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES),
        additional_claims,
    )


def create_refresh_token(user_id: int, email: str, roles: list[str]) -> str:
    """
    Create a longer-lived refresh token.

    Refresh tokens are returned in the body and as an HttpOnly cookie.
    """
    return _encode(user_id, email, roles, "refresh", timedelta(days=REFRESH_TOKEN_EXPIRE_DAYS))


def create_password_reset_token(user_id: int, email: str, password_hash: Optional[str]) -> str:
    """Create a one-hour token that only verifies while the password is unchanged."""
    return _encode(
        user_id, email, [], "reset",
        timedelta(minutes=RESET_TOKEN_EXPIRE_MINUTES),
        {"pwd": password_fingerprint(password_hash)},
    )


def verify_token(token: str, expected_type: str = "access") -> TokenPayload:
    """
    Verify and decode a JWT token.

    Raises:
        JWTError: If token is invalid, expired, or wrong type
    """
    try:
        payload = jwt.decode(
            token,
            JWT_SECRET_KEY,
            algorithms=[JWT_ALGORITHM],
            audience=TOKEN_AUDIENCE,
            issuer=TOKEN_ISSUER,
        )
    except ExpiredSignatureError:
        raise JWTError("Token has expired")

    # Validate token type
    if payload.get("type") != expected_type:
        raise JWTError(f"Invalid token type. Expected {expected_type}, got {payload.get('type')}")

    return TokenPayload(
        sub=payload["sub"],
        email=payload["email"],
        roles=payload.get("roles", []),
        type=payload["type"],
        iat=datetime.fromtimestamp(payload["iat"], tz=timezone.utc),
        exp=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
        iss=payload.get("iss", TOKEN_ISSUER),
        aud=payload.get("aud", TOKEN_AUDIENCE),
        jti=payload.get("jti"),
        pwd=payload.get("pwd"),
    )
