"""
Shared pieces of the third-party integrations.
"""

import secrets
import time
from datetime import datetime, timedelta
from typing import Dict, Optional, Tuple

import httpx

from app.core.utils import as_utc, utcnow

OAUTH_STATE_TTL_SECONDS = 600
TOKEN_REFRESH_MARGIN = timedelta(seconds=60)


class IntegrationError(Exception):
    """A third-party API call failed or the integration is not set up."""

    def __init__(self, message: str, status_code: int = 502):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class NotConnectedError(IntegrationError):
    def __init__(self, service: str):
        super().__init__(f"{service} is not connected", status_code=400)


class OAuthStateStore:
    """One-time OAuth `state` values mapped to the user who started the flow."""

    def __init__(self, ttl_seconds: int = OAUTH_STATE_TTL_SECONDS):
        self.ttl_seconds = ttl_seconds
        self._states: Dict[str, Tuple[Optional[int], float]] = {}

    def issue(self, user_id: Optional[int]) -> str:
        self._purge()
        state = secrets.token_urlsafe(24)
        self._states[state] = (user_id, time.monotonic() + self.ttl_seconds)
        return state

    def consume(self, state: Optional[str]) -> Tuple[bool, Optional[int]]:
        """Return (valid, user_id); a state can be used once."""
        self._purge()
        if not state or state not in self._states:
            return False, None
        user_id, _ = self._states.pop(state)
        return True, user_id

    def _purge(self) -> None:
        now = time.monotonic()
        for key in [k for k, (_, expires) in self._states.items() if expires < now]:
            del self._states[key]


oauth_states = OAuthStateStore()


def token_needs_refresh(expires_at: Optional[datetime]) -> bool:
    if expires_at is None:
        return False
    return utcnow() + TOKEN_REFRESH_MARGIN >= as_utc(expires_at)


def expiry_from(expires_in: Optional[int]) -> Optional[datetime]:
    if not expires_in:
        return None
    return utcnow() + timedelta(seconds=int(expires_in))


def raise_for_api_error(response: httpx.Response, service: str) -> None:
    """Translate an error response into IntegrationError with a readable message."""
    if response.is_success:
        return
    status = response.status_code
    if status == 401:
        message = f"{service} authentication failed. Reconnect the integration."
    elif status == 403:
        message = f"{service} access forbidden. Check the granted permissions."
    elif status == 429:
        message = f"{service} rate limit exceeded. Please try again later."
    elif status >= 500:
        message = f"{service} server error ({status})"
    else:
        message = f"{service} API error ({status}): {response.text[:200]}"
    raise IntegrationError(message)
