"""Unit tests for the date-driven status rules and other pure helpers."""

from datetime import datetime, timedelta, timezone

import httpx
import pytest
from pydantic import ValidationError

from app.auth.password import check_password_strength, generate_temp_password, password_policy_violations
from app.core.encryption import DecryptionError, decrypt, encrypt
from app.core.utils import as_utc, days_until
from app.models.audit import REDACTED, redact_sensitive
from app.models.complaint import ComplaintStatus
from app.models.staff import CredentialStatus, PDStatus
from app.schemas.policy import PolicyUpdate
from app.services import lifecycle
from app.services.email_service import EmailRateLimiter
from app.services.export import to_csv
from app.services.feedback_analytics import recommendations, trend_direction
from app.services.integrations import IntegrationError, OAuthStateStore, raise_for_api_error

NOW = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


def test_as_utc_attaches_timezone_to_naive_values():
    naive = datetime(2026, 3, 1, 9, 0)
    assert as_utc(naive) == NOW
    assert as_utc(None) is None


def test_days_until_rounds_up():
    assert days_until(NOW + timedelta(hours=1), NOW) == 1
    assert days_until(NOW - timedelta(days=2), NOW) == -2


class TestCredentialStatus:
    def test_without_expiry(self):
        assert lifecycle.credential_status(None, now=NOW) == CredentialStatus.ACTIVE

    def test_past_expiry(self):
        assert lifecycle.credential_status(NOW - timedelta(seconds=1), now=NOW) == CredentialStatus.EXPIRED

    def test_revoked_is_sticky(self):
        status = lifecycle.credential_status(NOW + timedelta(days=90), CredentialStatus.REVOKED, now=NOW)
        assert status == CredentialStatus.REVOKED

    def test_expiring_soon_window(self):
        assert lifecycle.credential_is_expiring_soon(NOW + timedelta(days=30), NOW)
        assert not lifecycle.credential_is_expiring_soon(NOW + timedelta(days=31), NOW)
        assert not lifecycle.credential_is_expiring_soon(NOW - timedelta(days=1), NOW)
        assert not lifecycle.credential_is_expiring_soon(None, NOW)


class TestPDStatus:
    @pytest.mark.parametrize("due_in, expected", [
        (None, PDStatus.PLANNED),
        (60, PDStatus.PLANNED),
        (30, PDStatus.DUE),
        (0, PDStatus.DUE),
        (-1, PDStatus.OVERDUE),
    ])
    def test_follows_due_date(self, due_in, expected):
        due = NOW + timedelta(days=due_in) if due_in is not None else None
        assert lifecycle.pd_status(due, None, now=NOW) == expected

    def test_completion_wins_over_due_date(self):
        assert lifecycle.pd_status(NOW - timedelta(days=5), NOW, now=NOW) == PDStatus.COMPLETED

    def test_verified_is_kept(self):
        assert lifecycle.pd_status(None, NOW, PDStatus.VERIFIED, now=NOW) == PDStatus.VERIFIED


def test_policy_review_status():
    assert lifecycle.policy_review_status(None, NOW) == "NotScheduled"
    assert lifecycle.policy_review_status(NOW - timedelta(days=1), NOW) == "Overdue"
    assert lifecycle.policy_review_status(NOW + timedelta(days=10), NOW) == "DueSoon"
    assert lifecycle.policy_review_status(NOW + timedelta(days=120), NOW) == "Current"


def test_complaint_sla():
    three_days_ago = NOW - timedelta(days=3)
    assert lifecycle.complaint_sla_breached(ComplaintStatus.NEW, three_days_ago, NOW)
    assert not lifecycle.complaint_sla_breached(ComplaintStatus.NEW, NOW - timedelta(days=1), NOW)
    assert not lifecycle.complaint_sla_breached(ComplaintStatus.CLOSED, three_days_ago, NOW)
    assert lifecycle.sla_cutoff(NOW) < NOW - timedelta(days=2)


def test_redact_sensitive_recurses():
    details = {
        "email": "a@example.com",
        "new_password": "hunter2",
        "nested": {"access_token": "abc", "roles": ["Staff"]},
        "items": [{"api_key": "k"}],
    }
    assert redact_sensitive(details) == {
        "email": "a@example.com",
        "new_password": REDACTED,
        "nested": {"access_token": REDACTED, "roles": ["Staff"]},
        "items": [{"api_key": REDACTED}],
    }


class TestPasswordPolicy:
    def test_reports_every_missing_requirement(self):
        assert password_policy_violations("short") == [
            "at least 12 characters",
            "one uppercase letter",
            "one digit",
            "one special character",
        ]

    def test_common_passwords_are_rejected(self):
        with pytest.raises(ValueError, match="too common"):
            check_password_strength("Password123!")

    def test_generated_passwords_satisfy_the_policy(self):
        for _ in range(20):
            assert password_policy_violations(generate_temp_password()) == []


def test_trend_direction():
    assert trend_direction(4.5, 4.0) == ("improving", 12.5)
    assert trend_direction(3.0, 4.0) == ("declining", -25.0)
    assert trend_direction(4.1, 4.0)[0] == "stable"
    assert trend_direction(None, 4.0) == (None, None)


def test_recommendations_cover_low_ratings_and_themes():
    advice = recommendations(2.5, -0.5, "declining", [{"theme": "timetabling", "count": 4}])
    assert len(advice) == 4
    assert advice[-1] == 'Most mentioned topic: "timetabling". Focus improvement efforts here.'
    assert recommendations(None, None, None, []) == [
        "Continue monitoring feedback and maintain quality standards."
    ]


def test_csv_neutralises_formulas():
    text = to_csv(["a", "b", "c"], [["=SUM(A1)", "-5", None]])
    assert text.splitlines()[1] == "'=SUM(A1),-5,"


def test_email_rate_limiter_counts_per_recipient():
    limiter = EmailRateLimiter(window_seconds=3600, max_per_window=3, max_per_recipient=2)
    for _ in range(2):
        assert limiter.check("A@example.com") is None
        limiter.record("a@example.com")
    assert "a@example.com" in limiter.check("a@example.com").lower()
    limiter.record("b@example.com")
    assert limiter.check("c@example.com") == "Global email rate limit exceeded"


def test_oauth_state_is_single_use():
    store = OAuthStateStore()
    state = store.issue(7)
    assert store.consume(state) == (True, 7)
    assert store.consume(state) == (False, None)
    assert store.consume(None) == (False, None)


def test_api_errors_are_translated():
    raise_for_api_error(httpx.Response(200), "Xero")
    with pytest.raises(IntegrationError, match="rate limit"):
        raise_for_api_error(httpx.Response(429), "Xero")


def test_encrypted_value_rejects_tampering():
    token = encrypt("refresh-token")
    assert token != "refresh-token"
    assert decrypt(token) == "refresh-token"
    with pytest.raises(DecryptionError):
        decrypt(token[:-4] + "AAAA")


def test_update_schema_null_handling():
    assert PolicyUpdate().model_dump(exclude_unset=True) == {}
    assert PolicyUpdate(file_url=None).model_dump(exclude_unset=True) == {"file_url": None}
    with pytest.raises(ValidationError):
        PolicyUpdate(title=None)
