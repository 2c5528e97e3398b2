from datetime import datetime, timedelta, timezone

from app.core import config
from app.services.email_service import EmailDeliveryError, rate_limiter
from conftest import API


def _in_days(days):
    return (datetime.now(timezone.utc) + timedelta(days=days)).isoformat()


def _recipients(sent_emails):
    return [c.args[0] for c in sent_emails.await_args_list]


def test_send_test_email(client, admin_headers, sent_emails):
    response = client.post(f"{API}/email/test", headers=admin_headers, json={"to": "someone@example.com"})
    assert response.status_code == 200
    log = response.json()
    assert log["status"] == "sent"
    assert log["message_id"] == "test-message-id"
    assert log["subject"] == "Your Daily Compliance Digest"

    to, subject, html, text = sent_emails.await_args.args
    assert to == "someone@example.com"
    assert "unsubscribe" in html.lower()


def test_unknown_template(client, admin_headers):
    response = client.post(f"{API}/email/test", headers=admin_headers, json={
        "to": "someone@example.com", "template_name": "no-such-template",
    })
    assert response.status_code == 400


def test_logs_and_stats(client, admin_headers, sent_emails):
    client.post(f"{API}/email/test", headers=admin_headers, json={"to": "a@example.com"})
    sent_emails.side_effect = EmailDeliveryError("SMTP connection failed")
    client.post(f"{API}/email/test", headers=admin_headers, json={"to": "b@example.com"})

    failed = client.get(f"{API}/email/logs", headers=admin_headers, params={"status": "failed"}).json()
    assert [log["to_address"] for log in failed["items"]] == ["b@example.com"]
    assert failed["items"][0]["failure_reason"] == "SMTP connection failed"

    stats = client.get(f"{API}/email/stats", headers=admin_headers).json()
    assert stats["total"] == 2
    assert stats["by_status"] == {"sent": 1, "failed": 1}
    assert stats["by_template"] == {"digest-summary": 2}


def test_retry_failed_emails(client, admin_headers, sent_emails):
    sent_emails.side_effect = EmailDeliveryError("Temporary failure")
    client.post(f"{API}/email/test", headers=admin_headers, json={"to": "retry@example.com"})

    sent_emails.side_effect = None
    result = client.post(f"{API}/email/retry-failed", headers=admin_headers).json()
    assert result == {"retried": 1, "sent": 1, "failed": 0, "skipped": 0}

    logs = client.get(f"{API}/email/logs", headers=admin_headers).json()["items"]
    assert logs[0]["status"] == "sent"
    assert logs[0]["retry_count"] == 1


def test_unsubscribe_skips_later_sends(client, admin_headers, staff, sent_emails):
    response = client.get(f"{API}/email/unsubscribe", params={"email": "staff@example.com"})
    assert response.status_code == 200
    assert response.json()["success"] is True

    unknown = client.get(f"{API}/email/unsubscribe", params={"email": "nobody@example.com"})
    assert unknown.json()["success"] is True

    sent_emails.reset_mock()
    log = client.post(f"{API}/email/test", headers=admin_headers, json={"to": "staff@example.com"}).json()
    assert log["status"] == "skipped"
    assert log["unsubscribed"] is True
    sent_emails.assert_not_awaited()


def test_credential_expiry_job(client, admin_headers, staff, sent_emails):
    user, _ = staff
    client.post(f"{API}/credentials", headers=admin_headers, json={
        "user_id": user["id"], "name": "First Aid", "type": "Certificate", "expires_at": _in_days(10),
    })
    client.post(f"{API}/credentials", headers=admin_headers, json={
        "user_id": user["id"], "name": "Licence", "type": "License", "expires_at": _in_days(90),
    })
    sent_emails.reset_mock()

    result = client.post(f"{API}/email/trigger/credential-expiry", headers=admin_headers).json()
    assert result == {"sent": 1, "failed": 0}
    assert _recipients(sent_emails) == ["staff@example.com"]
    assert "First Aid" in sent_emails.await_args.args[2]


def test_pd_reminders_and_digest(client, admin_headers, staff, sent_emails):
    _, headers = staff
    client.post(f"{API}/pd", headers=headers, json={"title": "Moderation workshop", "due_at": _in_days(7)})
    sent_emails.reset_mock()

    reminders = client.post(f"{API}/email/trigger/pd-reminders", headers=admin_headers).json()
    assert reminders["sent"] == 1

    sent_emails.reset_mock()
    digests = client.post(f"{API}/email/trigger/daily-digests", headers=admin_headers).json()
    assert digests["sent"] == 1
    assert _recipients(sent_emails) == ["staff@example.com"]


def test_policy_review_job_without_due_policies(client, admin_headers, sent_emails):
    sent_emails.reset_mock()
    result = client.post(f"{API}/email/trigger/policy-reviews", headers=admin_headers).json()
    assert result == {"sent": 0, "failed": 0}
    sent_emails.assert_not_awaited()


def test_staff_cannot_trigger_jobs(client, staff):
    _, headers = staff
    assert client.post(f"{API}/email/trigger/daily-digests", headers=headers).status_code == 403


def _send(client, headers, to):
    response = client.post(f"{API}/email/test", headers=headers, json={"to": to})
    assert response.status_code == 200, response.text
    return response.json()


def test_retry_waits_for_linear_backoff(client, admin_headers, sent_emails, monkeypatch):
    sent_emails.side_effect = EmailDeliveryError("Temporary failure")
    _send(client, admin_headers, "backoff@example.com")

    monkeypatch.setattr(config, "EMAIL_RETRY_DELAY_SECONDS", 60)
    early = client.post(f"{API}/email/retry-failed", headers=admin_headers).json()
    assert early["retried"] == 0

    # First retry is due once delay * 1 has passed; it fails again
    monkeypatch.setattr(config, "EMAIL_RETRY_DELAY_SECONDS", 0)
    first = client.post(f"{API}/email/retry-failed", headers=admin_headers).json()
    assert first == {"retried": 1, "sent": 0, "failed": 1, "skipped": 0}

    # The second retry waits delay * 2 from the last attempt
    monkeypatch.setattr(config, "EMAIL_RETRY_DELAY_SECONDS", 30)
    second = client.post(f"{API}/email/retry-failed", headers=admin_headers).json()
    assert second["retried"] == 0

    log = client.get(f"{API}/email/logs", headers=admin_headers).json()["items"][0]
    assert log["status"] == "failed"
    assert log["retry_count"] == 1


def test_retry_skips_recipients_who_opted_out(client, admin_headers, staff, sent_emails):
    sent_emails.side_effect = EmailDeliveryError("Temporary failure")
    _send(client, admin_headers, "staff@example.com")

    client.get(f"{API}/email/unsubscribe", params={"email": "STAFF@example.com"})
    sent_emails.side_effect = None
    sent_emails.reset_mock()

    result = client.post(f"{API}/email/retry-failed", headers=admin_headers).json()
    assert result == {"retried": 1, "sent": 0, "failed": 0, "skipped": 1}
    sent_emails.assert_not_awaited()

    log = client.get(f"{API}/email/logs", headers=admin_headers).json()["items"][0]
    assert log["status"] == "skipped"
    assert log["unsubscribed"] is True


def test_opt_out_ignores_address_case(client, admin_headers, staff, sent_emails):
    client.get(f"{API}/email/unsubscribe", params={"email": "staff@example.com"})
    sent_emails.reset_mock()

    log = _send(client, admin_headers, "Staff@example.com")
    assert log["status"] == "skipped"
    sent_emails.assert_not_awaited()


def test_per_recipient_rate_limit(client, admin_headers, sent_emails, monkeypatch):
    monkeypatch.setattr(rate_limiter, "max_per_recipient", 2)
    assert _send(client, admin_headers, "busy@example.com")["status"] == "sent"
    assert _send(client, admin_headers, "busy@example.com")["status"] == "sent"

    limited = _send(client, admin_headers, "busy@example.com")
    assert limited["status"] == "failed"
    assert limited["failure_reason"] == "Rate limit exceeded for recipient busy@example.com"
    assert sent_emails.await_count == 2

    assert _send(client, admin_headers, "other@example.com")["status"] == "sent"


def test_global_rate_limit(client, admin_headers, sent_emails, monkeypatch):
    monkeypatch.setattr(rate_limiter, "max_per_window", 1)
    assert _send(client, admin_headers, "first@example.com")["status"] == "sent"

    limited = _send(client, admin_headers, "second@example.com")
    assert limited["status"] == "failed"
    assert limited["failure_reason"] == "Global email rate limit exceeded"
