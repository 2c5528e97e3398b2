from conftest import API, STAFF_PASSWORD, create_user, login


def test_compliance_gaps_json(client, admin_headers):
    listing = client.get(f"{API}/standards", headers=admin_headers).json()
    standards = listing["items"]
    policy = client.post(f"{API}/policies", headers=admin_headers, json={"title": "Assessment"}).json()
    client.post(
        f"{API}/policies/{policy['id']}/map",
        headers=admin_headers,
        json={"standard_ids": [standards[0]["id"]]},
    )

    report = client.get(f"{API}/reports/compliance-gaps", headers=admin_headers, params={"format": "json"}).json()
    summary = report["summary"]
    assert summary["total_standards"] == listing["total"]
    assert summary["partially_mapped"] == 1
    assert summary["gaps"] == listing["total"] - 1
    mapped = next(r for r in report["standards"] if r["standard_id"] == standards[0]["id"])
    assert mapped["coverage"] == "partial"


def test_pd_completion_csv(client, admin_headers, staff):
    _, headers = staff
    item = client.post(f"{API}/pd", headers=headers, json={"title": "Webinar", "hours": 2}).json()
    client.post(f"{API}/pd/{item['id']}/complete", headers=headers, json={"evidence_url": "https://e.example/1"})
    client.post(f"{API}/pd", headers=headers, json={"title": "Conference"})

    response = client.get(f"{API}/reports/pd-completion", headers=admin_headers, params={"format": "csv"})
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    assert "attachment" in response.headers["content-disposition"]
    lines = response.text.splitlines()
    assert lines[0] == "full_name,total,completed,overdue,upcoming,completion_rate"
    assert lines[1] == "Staff,2,1,0,0,50"


def test_audit_readiness_pdf(client, admin_headers):
    response = client.get(f"{API}/reports/audit-readiness", headers=admin_headers)
    assert response.status_code == 200
    assert response.headers["content-type"] == "application/pdf"
    assert response.content.startswith(b"%PDF")


def test_feedback_summary_json(client, admin_headers):
    client.post(f"{API}/feedback", headers=admin_headers, json={"type": "industry", "rating": 5})
    report = client.get(f"{API}/reports/feedback-summary", headers=admin_headers, params={"format": "json"}).json()
    assert report["summary"]["total_count"] == 1
    assert report["by_type"]["industry"]["average_rating"] == 5


def test_unknown_format(client, admin_headers):
    response = client.get(f"{API}/reports/compliance-gaps", headers=admin_headers, params={"format": "xlsx"})
    assert response.status_code == 400


def test_reports_need_report_access(client, admin_headers, staff):
    _, headers = staff
    assert client.get(f"{API}/reports/pd-completion", headers=headers).status_code == 403

    create_user(client, admin_headers, "manager@example.com", roles=["Manager"], department="Management")
    manager = login(client, "manager@example.com", STAFF_PASSWORD)
    assert client.get(f"{API}/reports/pd-completion", headers=manager, params={"format": "json"}).status_code == 200


def test_report_generation_is_audited(client, admin_headers):
    client.get(f"{API}/reports/compliance-gaps", headers=admin_headers, params={"format": "json"})
    logs = client.get(f"{API}/audit-logs", headers=admin_headers, params={"action": "report_generated"}).json()
    assert logs["total"] == 1
    assert logs["items"][0]["resource_name"] == "compliance-gaps"
