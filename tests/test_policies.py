from datetime import datetime, timedelta, timezone

from conftest import API


def _standards(client, headers):
    response = client.get(f"{API}/standards", headers=headers)
    assert response.status_code == 200
    return response.json()["items"]


def _policy(client, headers, **extra):
    body = {"title": "Assessment Policy", **extra}
    response = client.post(f"{API}/policies", headers=headers, json=body)
    assert response.status_code == 201, response.text
    return response.json()


def test_standards_are_seeded(client, admin_headers):
    standards = _standards(client, admin_headers)
    assert len(standards) > 0
    assert all(s["code"] for s in standards)


def test_create_policy_is_draft_and_owned(client, admin_headers):
    policy = _policy(client, admin_headers)
    me = client.get(f"{API}/auth/me", headers=admin_headers).json()
    assert policy["status"] == "Draft"
    assert policy["owner_id"] == me["id"]
    assert policy["current_version"] is None
    assert policy["review_status"] == "NotScheduled"


def test_publish_keeps_one_current_version(client, admin_headers):
    policy = _policy(client, admin_headers)
    first = client.post(f"{API}/policies/{policy['id']}/publish", headers=admin_headers, json={"version": "1.0"})
    assert first.status_code == 201
    second = client.post(f"{API}/policies/{policy['id']}/publish", headers=admin_headers, json={"version": "2.0"})
    assert second.status_code == 201
    assert second.json()["status"] == "Published"
    assert second.json()["current_version"]["version"] == "2.0"

    versions = client.get(f"{API}/policies/{policy['id']}/versions", headers=admin_headers).json()
    assert [v["version"] for v in versions] == ["2.0", "1.0"]
    assert [v["is_current"] for v in versions] == [True, False]


def test_map_standards_and_reverse_lookup(client, admin_headers):
    standards = _standards(client, admin_headers)[:2]
    policy = _policy(client, admin_headers)

    response = client.post(
        f"{API}/policies/{policy['id']}/map", headers=admin_headers,
        json={"standard_ids": [s["id"] for s in standards]},
    )
    assert response.status_code == 200
    assert {s["id"] for s in response.json()["standards"]} == {s["id"] for s in standards}

    mappings = client.get(f"{API}/standards/{standards[0]['id']}/mappings", headers=admin_headers).json()
    assert [p["id"] for p in mappings["policies"]] == [policy["id"]]

    filtered = client.get(f"{API}/policies", headers=admin_headers, params={"standard_id": standards[0]["id"]}).json()
    assert filtered["total"] == 1


def test_map_unknown_standard_changes_nothing(client, admin_headers):
    standard = _standards(client, admin_headers)[0]
    policy = _policy(client, admin_headers)
    client.post(f"{API}/policies/{policy['id']}/map", headers=admin_headers, json={"standard_ids": [standard["id"]]})

    response = client.post(
        f"{API}/policies/{policy['id']}/map", headers=admin_headers, json={"standard_ids": [standard["id"], 99999]}
    )
    assert response.status_code == 400
    current = client.get(f"{API}/policies/{policy['id']}", headers=admin_headers).json()
    assert [s["id"] for s in current["standards"]] == [standard["id"]]


def test_review_due_filter(client, admin_headers):
    soon = (datetime.now(timezone.utc) + timedelta(days=10)).isoformat()
    later = (datetime.now(timezone.utc) + timedelta(days=200)).isoformat()
    due = _policy(client, admin_headers, title="Due soon", review_date=soon)
    _policy(client, admin_headers, title="Later", review_date=later)

    assert due["review_status"] == "DueSoon"
    listed = client.get(f"{API}/policies", headers=admin_headers, params={"review_due": "true"}).json()
    assert [p["id"] for p in listed["items"]] == [due["id"]]


def test_deleted_policy_is_hidden(client, admin_headers):
    policy = _policy(client, admin_headers)
    assert client.delete(f"{API}/policies/{policy['id']}", headers=admin_headers).status_code == 204
    assert client.get(f"{API}/policies/{policy['id']}", headers=admin_headers).status_code == 404
    assert client.get(f"{API}/policies", headers=admin_headers).json()["total"] == 0


def test_staff_can_read_but_not_write_policies(client, staff, admin_headers):
    _, headers = staff
    _policy(client, admin_headers)
    assert client.get(f"{API}/policies", headers=headers).status_code == 200
    assert client.post(f"{API}/policies", headers=headers, json={"title": "Nope"}).status_code == 403


def test_training_product_codes_are_unique(client, admin_headers):
    body = {"code": "bsb50420", "name": "Diploma of Leadership and Management"}
    first = client.post(f"{API}/training-products", headers=admin_headers, json=body)
    assert first.status_code == 201
    assert first.json()["code"] == "BSB50420"
    assert client.post(f"{API}/training-products", headers=admin_headers, json=body).status_code == 409


def test_link_sops_to_training_product(client, admin_headers):
    product = client.post(
        f"{API}/training-products", headers=admin_headers, json={"code": "TAE40122", "name": "Cert IV TAE"}
    ).json()
    sop = client.post(f"{API}/sops", headers=admin_headers, json={"title": "Enrolment SOP"}).json()

    response = client.post(
        f"{API}/training-products/{product['id']}/sops", headers=admin_headers, json={"sop_ids": [sop["id"]]}
    )
    assert response.status_code == 200
    assert [s["id"] for s in response.json()["sops"]] == [sop["id"]]

    bad = client.post(
        f"{API}/training-products/{product['id']}/sops", headers=admin_headers, json={"sop_ids": [4242]}
    )
    assert bad.status_code == 400


def test_sop_standard_mapping(client, admin_headers):
    standard = _standards(client, admin_headers)[0]
    sop = client.post(f"{API}/sops", headers=admin_headers, json={"title": "Complaints SOP"}).json()
    response = client.post(
        f"{API}/sops/{sop['id']}/standards", headers=admin_headers, json={"standard_ids": [standard["id"]]}
    )
    assert response.status_code == 200
    assert [s["id"] for s in response.json()["standards"]] == [standard["id"]]


def test_patch_cannot_clear_required_fields(client, admin_headers):
    policy = _policy(client, admin_headers)
    response = client.patch(f"{API}/policies/{policy['id']}", headers=admin_headers, json={"title": None})
    assert response.status_code == 400
    assert [e["field"] for e in response.json()["errors"]] == ["title"]

    # Nullable columns can still be cleared
    cleared = client.patch(f"{API}/policies/{policy['id']}", headers=admin_headers, json={"file_url": None})
    assert cleared.status_code == 200
    assert cleared.json()["title"] == "Assessment Policy"
