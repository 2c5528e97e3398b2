from datetime import datetime, timedelta, timezone
from unittest.mock import patch

from conftest import API, STAFF_PASSWORD, create_user, login


def _in_days(days):
    return (datetime.now(timezone.utc) + timedelta(days=days)).isoformat()


def _credential(client, headers, user_id, name, expires_in_days):
    response = client.post(f"{API}/credentials", headers=headers, json={
        "user_id": user_id,
        "name": name,
        "type": "Certificate",
        "expires_at": _in_days(expires_in_days),
    })
    assert response.status_code == 201, response.text
    return response.json()


def test_credential_status_derived_from_expiry(client, admin_headers, staff):
    user, _ = staff
    expired = _credential(client, admin_headers, user["id"], "First Aid", -1)
    expiring = _credential(client, admin_headers, user["id"], "TAE40122", 10)
    current = _credential(client, admin_headers, user["id"], "Working With Children", 200)

    assert expired["status"] == "Expired"
    assert expiring["status"] == "Active" and expiring["is_expiring_soon"] is True
    assert current["is_expiring_soon"] is False

    listed = client.get(f"{API}/credentials", headers=admin_headers, params={"status": "Expired"}).json()
    assert [c["id"] for c in listed["items"]] == [expired["id"]]

    soon = client.get(f"{API}/credentials", headers=admin_headers, params={"expiring_soon": "true"}).json()
    assert [c["id"] for c in soon["items"]] == [expiring["id"]]


def test_revoked_credential_stays_revoked(client, admin_headers, staff):
    user, _ = staff
    credential = _credential(client, admin_headers, user["id"], "Licence", 100)
    response = client.patch(
        f"{API}/credentials/{credential['id']}", headers=admin_headers, json={"status": "Revoked"}
    )
    assert response.json()["status"] == "Revoked"

    extended = client.patch(
        f"{API}/credentials/{credential['id']}", headers=admin_headers, json={"expires_at": _in_days(400)}
    )
    assert extended.json()["status"] == "Revoked"


def test_credential_patch_rejects_null_name(client, admin_headers, staff):
    user, _ = staff
    credential = _credential(client, admin_headers, user["id"], "Licence", 100)
    for body in ({"name": None}, {"type": None}, {"status": None}):
        response = client.patch(f"{API}/credentials/{credential['id']}", headers=admin_headers, json=body)
        assert response.status_code == 400, body

    fetched = client.get(f"{API}/credentials/{credential['id']}", headers=admin_headers).json()
    assert fetched["name"] == "Licence"


def test_credential_for_unknown_user(client, admin_headers):
    response = client.post(f"{API}/credentials", headers=admin_headers, json={
        "user_id": 9999, "name": "Ghost", "type": "License",
    })
    assert response.status_code == 400


def test_credential_via_user_route(client, admin_headers, staff):
    user, _ = staff
    response = client.post(f"{API}/users/{user['id']}/credentials", headers=admin_headers, json={
        "name": "Cert IV", "type": "Qualification",
    })
    assert response.status_code == 201
    assert response.json()["user_id"] == user["id"]


def test_pd_item_defaults_to_caller(client, staff):
    user, headers = staff
    response = client.post(f"{API}/pd", headers=headers, json={"title": "Industry placement", "due_at": _in_days(5)})
    assert response.status_code == 201
    item = response.json()
    assert item["user_id"] == user["id"]
    assert item["status"] == "Due"


def test_pd_status_filter_uses_due_date(client, staff):
    _, headers = staff
    # Stored while the item was still three days away
    last_week = datetime.now(timezone.utc) - timedelta(days=5)
    with patch("app.core.utils.utcnow", return_value=last_week):
        stale = client.post(f"{API}/pd", headers=headers, json={"title": "Stale", "due_at": _in_days(-2)}).json()
    assert stale["status"] == "Due"
    client.post(f"{API}/pd", headers=headers, json={"title": "Later", "due_at": _in_days(60)})
    client.post(f"{API}/pd", headers=headers, json={"title": "Soon", "due_at": _in_days(10)})

    assert client.get(f"{API}/pd/{stale['id']}", headers=headers).json()["status"] == "Overdue"

    def titles(status):
        listed = client.get(f"{API}/pd", headers=headers, params={"status": status}).json()
        return [item["title"] for item in listed["items"]]

    assert titles("Overdue") == ["Stale"]
    assert titles("Due") == ["Soon"]
    assert titles("Planned") == ["Later"]


def test_pd_overdue_and_planned(client, staff):
    _, headers = staff
    overdue = client.post(f"{API}/pd", headers=headers, json={"title": "Late", "due_at": _in_days(-3)}).json()
    planned = client.post(f"{API}/pd", headers=headers, json={"title": "Later", "due_at": _in_days(90)}).json()
    assert overdue["status"] == "Overdue"
    assert planned["status"] == "Planned"


def test_staff_only_see_their_own_pd(client, admin_headers, staff):
    _, headers = staff
    other = create_user(client, admin_headers, "other@example.com")
    other_item = client.post(
        f"{API}/pd", headers=admin_headers, json={"title": "Other's PD", "user_id": other["id"]}
    ).json()
    client.post(f"{API}/pd", headers=headers, json={"title": "Mine"})

    mine = client.get(f"{API}/pd", headers=headers).json()
    assert [i["title"] for i in mine["items"]] == ["Mine"]
    assert client.get(f"{API}/pd/{other_item['id']}", headers=headers).status_code == 404
    assert client.get(f"{API}/pd", headers=admin_headers).json()["total"] == 2


def test_complete_then_verify(client, admin_headers, staff):
    _, headers = staff
    create_user(client, admin_headers, "manager@example.com", roles=["Manager"], department="Management")
    manager = login(client, "manager@example.com", STAFF_PASSWORD)

    item = client.post(f"{API}/pd", headers=headers, json={"title": "Assessment validation"}).json()

    premature = client.post(f"{API}/pd/{item['id']}/verify", headers=manager, json={})
    assert premature.status_code == 400

    missing_evidence = client.post(f"{API}/pd/{item['id']}/complete", headers=headers, json={})
    assert missing_evidence.status_code == 400

    completed = client.post(
        f"{API}/pd/{item['id']}/complete", headers=headers, json={"evidence_url": "https://evidence.example/cert.pdf"}
    )
    assert completed.status_code == 200
    assert completed.json()["status"] == "Completed"

    assert client.post(f"{API}/pd/{item['id']}/verify", headers=headers, json={}).status_code == 403

    verified = client.post(f"{API}/pd/{item['id']}/verify", headers=manager, json={"notes": "Checked"})
    assert verified.status_code == 200
    assert verified.json()["status"] == "Verified"
    assert verified.json()["verified_by_id"] is not None

    again = client.post(
        f"{API}/pd/{item['id']}/complete", headers=headers, json={"evidence_url": "https://evidence.example/x.pdf"}
    )
    assert again.status_code == 400
