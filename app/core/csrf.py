"""
CSRF tokens kept in an in-memory map keyed by client IP.

Tokens are issued by GET /api/v1/csrf-token. When CSRF_PROTECTION is
enabled, state-changing requests must echo the token in X-CSRF-Token.
"""

import secrets
import time
from typing import Dict, Optional, Tuple

from fastapi import HTTPException, Request, status

from app.core.config import CSRF_PROTECTION, CSRF_TOKEN_EXPIRE_SECONDS

CSRF_COOKIE_NAME = "csrf-token"
CSRF_HEADER_NAME = "X-CSRF-Token"
SAFE_METHODS = {"GET", "HEAD", "OPTIONS"}


class CSRFTokenStore:
    """Session key -> (token, expires_at) with lazy expiry."""

    def __init__(self, ttl_seconds: int = CSRF_TOKEN_EXPIRE_SECONDS):
        self.ttl_seconds = ttl_seconds
        self._tokens: Dict[str, Tuple[str, float]] = {}

    def issue(self, session_key: str) -> str:
        token = secrets.token_hex(32)
        self._tokens[session_key] = (token, time.monotonic() + self.ttl_seconds)
        self._purge()
        return token

    def validate(self, session_key: str, provided: Optional[str]) -> Optional[str]:
        """Return an error message, or None when the token is valid."""
        if not provided:
            return f"CSRF token missing. Include the token in the {CSRF_HEADER_NAME} header."

        stored = self._tokens.get(session_key)
        if stored is None:
            return "CSRF token not found or expired"

        token, expires_at = stored
        if time.monotonic() > expires_at:
            del self._tokens[session_key]
            return "CSRF token expired"

        if not secrets.compare_digest(token, provided):
            return "Invalid CSRF token"
        return None

    def _purge(self) -> None:
        now = time.monotonic()
        for key in [k for k, (_, exp) in self._tokens.items() if exp < now]:
            del self._tokens[key]


csrf_store = CSRFTokenStore()


def get_session_key(request: Request) -> str:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "anonymous"


async def verify_csrf(request: Request) -> None:
    """Router dependency enforcing CSRF tokens on unsafe methods when enabled."""
    if not CSRF_PROTECTION or request.method in SAFE_METHODS:
        return

    error = csrf_store.validate(get_session_key(request), request.headers.get(CSRF_HEADER_NAME))
    if error:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=error)
