"""
API rate limiting with slowapi.

- Default: RATE_LIMIT_DEFAULT per client (100/minute)
- /auth/login: LOGIN_RATE_LIMIT (5 per 15 minutes, brute force protection)
- /auth/reset-password: PASSWORD_RESET_RATE_LIMIT (3/hour)
"""

import logging

from fastapi import Request
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from app.core.config import RATE_LIMIT_DEFAULT, RATE_LIMIT_ENABLED
from app.core.errors import problem_response

logger = logging.getLogger(__name__)


def get_client_key(request: Request) -> str:
    """Rate limit key: forwarded client IP when behind a proxy, else the peer address."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return get_remote_address(request)


limiter = Limiter(
    key_func=get_client_key,
    default_limits=[RATE_LIMIT_DEFAULT],
    enabled=RATE_LIMIT_ENABLED,
)


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded):
    logger.warning("Rate limit exceeded for %s on %s", get_client_key(request), request.url.path)
    return problem_response(
        request,
        429,
        f"Too many requests. Limit: {exc.detail}",
        headers={"Retry-After": "60"},
    )
