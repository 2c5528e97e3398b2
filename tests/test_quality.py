import csv
import io
from datetime import datetime, timedelta, timezone

from conftest import API, STAFF_PASSWORD, create_user, login


def _days_ago(days):
    return (datetime.now(timezone.utc) - timedelta(days=days)).isoformat()


# =============================================================================
# Feedback
# =============================================================================

def _feedback(client, headers, **extra):
    body = {"type": "learner", "rating": 4, **extra}
    response = client.post(f"{API}/feedback", headers=headers, json=body)
    assert response.status_code == 201, response.text
    return response.json()


def test_staff_can_submit_but_not_read_feedback(client, staff):
    _, headers = staff
    created = _feedback(client, headers, comments="Great trainer", themes=["Delivery", " delivery "])
    assert created["themes"] == ["delivery"]
    assert client.get(f"{API}/feedback", headers=headers).status_code == 403


def test_feedback_filters(client, admin_headers):
    _feedback(client, admin_headers, rating=2, course_id="BSB40120")
    _feedback(client, admin_headers, type="employer", rating=5)

    low = client.get(f"{API}/feedback", headers=admin_headers, params={"min_rating": 3}).json()
    assert [f["rating"] for f in low["items"]] == [5]

    employer = client.get(f"{API}/feedback", headers=admin_headers, params={"type": "employer"}).json()
    assert employer["total"] == 1


def test_rating_out_of_range(client, admin_headers):
    response = client.post(f"{API}/feedback", headers=admin_headers, json={"type": "learner", "rating": 6})
    assert response.status_code == 400


def test_feedback_insights(client, admin_headers):
    for rating in (5, 5, 4):
        _feedback(client, admin_headers, rating=rating, themes=["assessment"], sentiment=0.8)
    _feedback(client, admin_headers, rating=3, submitted_at=_days_ago(45))

    insights = client.get(f"{API}/feedback/insights", headers=admin_headers).json()
    assert insights["summary"]["total_count"] == 4
    assert insights["summary"]["average_rating"] == 4.2
    assert insights["trend"]["direction"] == "improving"
    assert insights["top_themes"][0] == {"theme": "assessment", "count": 3}
    assert insights["by_type"]["learner"]["count"] == 4
    assert insights["recommendations"]


def test_feedback_trends_include_empty_months(client, admin_headers):
    _feedback(client, admin_headers)
    trends = client.get(f"{API}/feedback/trends", headers=admin_headers, params={"months": 3}).json()
    assert len(trends) == 3
    assert trends[-1]["count"] == 1
    assert trends[0]["count"] == 0


def test_feedback_export_and_delete(client, admin_headers):
    created = _feedback(client, admin_headers, comments="=HYPERLINK(\"x\")")
    response = client.get(f"{API}/feedback/export", headers=admin_headers)
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    rows = list(csv.reader(io.StringIO(response.text)))
    assert rows[0][0] == "id"
    assert rows[1][-2].startswith("'=")

    assert client.delete(f"{API}/feedback/{created['id']}", headers=admin_headers).status_code == 204
    assert client.get(f"{API}/feedback/{created['id']}", headers=admin_headers).status_code == 404


# =============================================================================
# Assets
# =============================================================================

def _asset(client, headers, **extra):
    body = {"type": "Laptop", "name": "Dell Latitude", **extra}
    response = client.post(f"{API}/assets", headers=headers, json=body)
    assert response.status_code == 201, response.text
    return response.json()


def test_serial_numbers_are_unique(client, admin_headers):
    _asset(client, admin_headers, serial_number="SN-001")
    response = client.post(f"{API}/assets", headers=admin_headers, json={
        "type": "Laptop", "name": "Another", "serial_number": "SN-001",
    })
    assert response.status_code == 409


def test_state_transitions_and_history(client, admin_headers):
    asset = _asset(client, admin_headers)
    assert asset["status"] == "Available"

    assigned = client.post(f"{API}/assets/{asset['id']}/state", headers=admin_headers, json={"state": "Assigned"})
    assert assigned.json()["status"] == "Assigned"

    same = client.post(f"{API}/assets/{asset['id']}/state", headers=admin_headers, json={"state": "Assigned"})
    assert same.status_code == 400

    client.post(f"{API}/assets/{asset['id']}/state", headers=admin_headers, json={"state": "Retired"})
    terminal = client.post(f"{API}/assets/{asset['id']}/state", headers=admin_headers, json={"state": "Available"})
    assert terminal.status_code == 400

    history = client.get(f"{API}/assets/{asset['id']}/history", headers=admin_headers).json()
    assert [(c["from_state"], c["to_state"]) for c in history["state_changes"]] == [
        ("Assigned", "Retired"),
        ("Available", "Assigned"),
    ]


def test_service_records_track_latest_date(client, admin_headers):
    asset = _asset(client, admin_headers)
    url = f"{API}/assets/{asset['id']}/service"

    assert client.post(url, headers=admin_headers, json={"service_date": _days_ago(10)}).status_code == 201
    client.post(url, headers=admin_headers, json={
        "service_date": _days_ago(40),
        "next_service_at": (datetime.now(timezone.utc) + timedelta(days=5)).isoformat(),
    })

    detail = client.get(f"{API}/assets/{asset['id']}", headers=admin_headers).json()
    assert len(detail["recent_services"]) == 2
    last = datetime.fromisoformat(detail["last_service_at"].replace("Z", "+00:00"))
    if last.tzinfo is None:
        last = last.replace(tzinfo=timezone.utc)
    assert datetime.now(timezone.utc) - last < timedelta(days=11)

    due = client.get(f"{API}/assets", headers=admin_headers, params={"service_due": "true"}).json()
    assert [a["id"] for a in due["items"]] == [asset["id"]]


def test_deleted_assets_are_hidden(client, admin_headers):
    asset = _asset(client, admin_headers)
    assert client.delete(f"{API}/assets/{asset['id']}", headers=admin_headers).status_code == 204
    assert client.get(f"{API}/assets", headers=admin_headers).json()["total"] == 0


# =============================================================================
# Complaints
# =============================================================================

def _complaint(client, headers, **extra):
    body = {"source": "Student", "description": "Assessment feedback was late", **extra}
    response = client.post(f"{API}/complaints", headers=headers, json=body)
    assert response.status_code == 201, response.text
    return response.json()


def test_new_complaint_notifies_compliance_admins(client, admin_headers, sent_emails):
    create_user(client, admin_headers, "compliance@example.com", roles=["ComplianceAdmin"], department="Admin")
    sent_emails.reset_mock()

    complaint = _complaint(client, admin_headers)
    assert complaint["status"] == "New"
    assert complaint["sla_breach"] is False
    assert [n["notes"] for n in complaint["timeline"]] == ["Complaint submitted"]

    assert sent_emails.await_count == 1
    assert sent_emails.await_args.args[0] == "compliance@example.com"


def test_close_requires_root_cause_and_action(client, admin_headers):
    complaint = _complaint(client, admin_headers)
    url = f"{API}/complaints/{complaint['id']}"

    assert client.patch(url, headers=admin_headers, json={"status": "Closed"}).status_code == 400
    assert client.post(f"{url}/close", headers=admin_headers, json={"root_cause": "Staffing"}).status_code == 400

    closed = client.post(f"{url}/close", headers=admin_headers, json={
        "root_cause": "Staffing", "corrective_action": "Extra assessor rostered",
    })
    assert closed.status_code == 200
    assert closed.json()["status"] == "Closed"
    assert closed.json()["closed_at"] is not None

    assert client.post(f"{url}/close", headers=admin_headers, json={
        "root_cause": "x", "corrective_action": "y",
    }).status_code == 400
    assert client.patch(url, headers=admin_headers, json={"status": "InReview"}).status_code == 400


def test_status_changes_build_the_timeline(client, admin_headers):
    complaint = _complaint(client, admin_headers)
    url = f"{API}/complaints/{complaint['id']}"

    client.patch(url, headers=admin_headers, json={"status": "InReview"})
    escalated = client.post(f"{url}/escalate", headers=admin_headers, json={"notes": "Referred to CEO"})
    assert escalated.json()["status"] == "Escalated"
    assert client.post(f"{url}/escalate", headers=admin_headers, json={}).status_code == 400

    note = client.post(f"{url}/notes", headers=admin_headers, json={"notes": "Called the student"})
    assert note.status_code == 201

    timeline = client.get(f"{url}/timeline", headers=admin_headers).json()
    assert [n["status"] for n in timeline] == ["New", "InReview", "Escalated", "Escalated"]
    assert timeline[-1]["notes"] == "Called the student"


def test_complaint_filters(client, admin_headers):
    _complaint(client, admin_headers, source="Employer")
    _complaint(client, admin_headers, description="Room too cold")

    employer = client.get(f"{API}/complaints", headers=admin_headers, params={"source": "Employer"}).json()
    assert employer["total"] == 1
    found = client.get(f"{API}/complaints", headers=admin_headers, params={"q": "cold"}).json()
    assert found["total"] == 1
    breached = client.get(f"{API}/complaints", headers=admin_headers, params={"sla_breach": "true"}).json()
    assert breached["total"] == 0


def test_managers_read_complaints_but_cannot_change_them(client, admin_headers):
    complaint = _complaint(client, admin_headers)
    create_user(client, admin_headers, "manager@example.com", roles=["Manager"], department="Management")
    manager = login(client, "manager@example.com", STAFF_PASSWORD)

    assert client.get(f"{API}/complaints/{complaint['id']}", headers=manager).status_code == 200
    response = client.post(f"{API}/complaints/{complaint['id']}/notes", headers=manager, json={"notes": "x"})
    assert response.status_code == 403
