import hashlib
import hmac
import json
from unittest.mock import AsyncMock, patch

from sqlalchemy.exc import OperationalError

from app.core import config
from app.services import jotform
from conftest import API, create_user

WEBHOOK = f"{API}/webhooks/jotform"


def _submission(submission_id="5801", form_type="Learner feedback", **answers):
    fields = {"1": {"name": "form_type", "answer": form_type}}
    for number, (name, answer) in enumerate(answers.items(), start=2):
        fields[str(number)] = {"name": name, "answer": answer}
    return {"formID": "240001", "submissionID": submission_id, "answers": fields}


def _post(client, payload, headers=None):
    return client.post(WEBHOOK, content=json.dumps(payload), headers={
        "Content-Type": "application/json", **(headers or {}),
    })


def test_learner_submission_becomes_feedback(client, admin_headers):
    trainer = create_user(client, admin_headers, "trainer@example.com", roles=["Trainer"])
    client.post(f"{API}/training-products", headers=admin_headers, json={"code": "BSB50420", "name": "Diploma"})

    response = _post(client, _submission(
        rating="4", comments="Great trainer", trainer_name="trainer@example.com", course_code="bsb50420",
    ))
    assert response.status_code == 202
    assert response.json()["submission_id"] == "5801"

    record = client.get(f"{WEBHOOK}/status/{response.json()['id']}").json()
    assert record["status"] == "Completed"
    assert record["form_type"] == "learner"
    assert record["processed_at"] is not None

    feedback = client.get(f"{API}/feedback", headers=admin_headers).json()["items"]
    assert len(feedback) == 1
    assert feedback[0]["id"] == record["feedback_id"]
    assert feedback[0]["type"] == "learner"
    assert feedback[0]["rating"] == 4
    assert feedback[0]["comments"] == "Great trainer"
    assert feedback[0]["trainer_id"] == trainer["id"]
    assert feedback[0]["training_product_id"] is not None


def test_anonymous_submission_drops_trainer(client, admin_headers):
    create_user(client, admin_headers, "trainer@example.com", roles=["Trainer"])
    _post(client, _submission(instructor="trainer@example.com", stay_anonymous="Yes", rating="9"))

    feedback = client.get(f"{API}/feedback", headers=admin_headers).json()["items"]
    assert feedback[0]["anonymous"] is True
    assert feedback[0]["trainer_id"] is None
    assert feedback[0]["rating"] is None


def test_redelivered_submission_is_not_duplicated(client, admin_headers):
    first = _post(client, _submission())
    second = _post(client, _submission())
    assert first.status_code == 202
    assert second.status_code == 200
    assert second.json()["message"] == "Submission already processed"
    assert second.json()["id"] == first.json()["id"]
    assert client.get(f"{API}/feedback", headers=admin_headers).json()["total"] == 1


def test_submission_without_id(client):
    payload = _submission()
    del payload["submissionID"]
    assert _post(client, payload).status_code == 400
    assert _post(client, ["not", "an", "object"]).status_code == 400


def test_signature_checked_when_secret_set(client, monkeypatch):
    monkeypatch.setattr(config, "JOTFORM_WEBHOOK_SECRET", "shared-secret")
    payload = _submission()

    assert _post(client, payload).status_code == 401
    assert _post(client, payload, {"X-JotForm-Signature": "0" * 64}).status_code == 401

    body = json.dumps(payload).encode()
    signature = hmac.new(b"shared-secret", body, hashlib.sha256).hexdigest()
    response = _post(client, payload, {"X-JotForm-Signature": signature})
    assert response.status_code == 202


def test_sop_form_fails_without_retry(client):
    response = _post(client, _submission(form_type="SOP training completion"))
    record = client.get(f"{WEBHOOK}/status/{response.json()['id']}").json()
    assert record["form_type"] == "sop"
    assert record["status"] == "Failed"
    assert record["retry_count"] == 0
    assert "does not map to feedback" in record["processing_error"]


def test_database_errors_are_retried(client, monkeypatch):
    monkeypatch.setattr(jotform, "RETRY_BASE_SECONDS", 0)
    error = OperationalError("INSERT INTO feedback", {}, Exception("database is locked"))
    with patch.object(jotform, "create_feedback", AsyncMock(side_effect=error)) as create:
        response = _post(client, _submission())

    assert create.await_count == jotform.MAX_RETRIES + 1
    record = client.get(f"{WEBHOOK}/status/{response.json()['id']}").json()
    assert record["status"] == "Failed"
    assert record["retry_count"] == jotform.MAX_RETRIES
    assert record["processing_error"] == "Database error: OperationalError"


def test_retry_delay_doubles():
    assert [jotform.retry_delay(attempt) for attempt in range(3)] == [1, 2, 4]


def test_unknown_status_id(client):
    assert client.get(f"{WEBHOOK}/status/999").status_code == 404


def test_form_type_detection():
    assert jotform.detect_form_type({"form_title": "Employer Satisfaction Survey"}) == "employer"
    assert jotform.detect_form_type({"form_title": "Student survey"}) == "learner"
    assert jotform.detect_form_type({"form_title": "Industry engagement"}) == "industry"
    assert jotform.detect_form_type({"form_title": "Contact us"}) == "unknown"
    # An explicit answer wins over the title
    assert jotform.detect_form_type(_submission(form_type="Employer") | {"form_title": "Learner"}) == "employer"
