from conftest import API, create_user

TEMPLATES = [
    {"title": "Read the code of conduct", "task_type": "document", "order_index": 0},
    {"title": "Set up payroll", "task_type": "form", "order_index": 1, "department": "Admin"},
    {"title": "Observe a training session", "task_type": "training", "order_index": 2, "role": "Trainer"},
    {
        "title": "Complete vocational currency plan",
        "task_type": "pd",
        "order_index": 3,
        "pd_category": "Vocational",
        "days_to_complete": 30,
    },
]


def _workflow(client, headers, **extra):
    body = {"name": "Training team induction", "department": "Training", "templates": TEMPLATES, **extra}
    response = client.post(f"{API}/onboarding/workflows", headers=headers, json=body)
    assert response.status_code == 201, response.text
    return response.json()


def _assign(client, headers, user_id, workflow_id):
    return client.post(f"{API}/onboarding/assignments", headers=headers, json={
        "user_id": user_id, "workflow_id": workflow_id,
    })


def test_assignment_filters_templates_by_department_and_role(client, admin_headers, staff):
    user, _ = staff
    workflow = _workflow(client, admin_headers)
    assert len(workflow["templates"]) == 4

    response = _assign(client, admin_headers, user["id"], workflow["id"])
    assert response.status_code == 201
    assignment = response.json()
    assert [t["title"] for t in assignment["tasks"]] == [
        "Read the code of conduct",
        "Complete vocational currency plan",
    ]
    assert assignment["status"] == "InProgress"
    assert assignment["progress"] == 0

    pd = client.get(f"{API}/pd", headers=admin_headers, params={"user_id": user["id"]}).json()
    assert [(i["title"], i["category"]) for i in pd["items"]] == [
        ("Complete vocational currency plan", "Vocational"),
    ]


def test_duplicate_assignment_conflicts(client, admin_headers, staff):
    user, _ = staff
    workflow = _workflow(client, admin_headers)
    assert _assign(client, admin_headers, user["id"], workflow["id"]).status_code == 201
    assert _assign(client, admin_headers, user["id"], workflow["id"]).status_code == 409
    assert _assign(client, admin_headers, 9999, workflow["id"]).status_code == 404


def test_completing_every_task_completes_the_assignment(client, admin_headers, staff):
    user, _ = staff
    workflow = _workflow(client, admin_headers)
    assignment = _assign(client, admin_headers, user["id"], workflow["id"]).json()
    first, second = assignment["tasks"]

    halfway = client.post(f"{API}/onboarding/tasks/{first['id']}/complete", headers=admin_headers, json={})
    assert halfway.json()["progress"] == 50
    assert halfway.json()["status"] == "InProgress"

    skipped = client.patch(
        f"{API}/onboarding/tasks/{second['id']}", headers=admin_headers, json={"status": "Skipped"}
    )
    assert skipped.status_code == 200

    done = client.get(f"{API}/onboarding/assignments/{assignment['id']}", headers=admin_headers).json()
    assert done["status"] == "Completed"
    assert done["completed_at"] is not None

    client.patch(f"{API}/onboarding/tasks/{first['id']}", headers=admin_headers, json={"status": "Pending"})
    reopened = client.get(f"{API}/onboarding/assignments/{assignment['id']}", headers=admin_headers).json()
    assert reopened["status"] == "InProgress"
    assert reopened["completed_at"] is None


def test_progress_summary(client, admin_headers, staff):
    user, _ = staff
    workflow = _workflow(client, admin_headers)
    assignment = _assign(client, admin_headers, user["id"], workflow["id"]).json()
    client.post(f"{API}/onboarding/tasks/{assignment['tasks'][0]['id']}/complete", headers=admin_headers)

    progress = client.get(f"{API}/onboarding/progress/{user['id']}", headers=admin_headers).json()
    assert progress["overall_progress"] == 50
    assert progress["assignments"][0]["completed_tasks"] == 1
    assert progress["assignments"][0]["workflow_name"] == "Training team induction"


def test_new_users_are_assigned_matching_workflows(client, admin_headers):
    _workflow(client, admin_headers)
    _workflow(client, admin_headers, name="Admin induction", department="Admin", templates=TEMPLATES[:1])
    _workflow(client, admin_headers, name="Paused", department=None, is_active=False, templates=TEMPLATES[:1])

    user = create_user(client, admin_headers, "newhire@example.com", roles=["Trainer"])
    assignments = client.get(f"{API}/onboarding/assignments/user/{user['id']}", headers=admin_headers).json()
    assert [a["workflow_name"] for a in assignments] == ["Training team induction"]
    assert [t["title"] for t in assignments[0]["tasks"]] == [
        "Read the code of conduct",
        "Observe a training session",
        "Complete vocational currency plan",
    ]


def test_deleted_workflow_is_deactivated(client, admin_headers):
    workflow = _workflow(client, admin_headers)
    url = f"{API}/onboarding/workflows/{workflow['id']}"
    assert client.delete(url, headers=admin_headers).status_code == 204
    assert client.get(url, headers=admin_headers).status_code == 404


def test_add_template_to_workflow(client, admin_headers):
    workflow = _workflow(client, admin_headers, templates=[])
    response = client.post(
        f"{API}/onboarding/workflows/{workflow['id']}/templates",
        headers=admin_headers,
        json={"title": "Meet your mentor", "task_type": "meeting"},
    )
    assert response.status_code == 201
    assert response.json()["workflow_id"] == workflow["id"]


def test_staff_cannot_manage_onboarding(client, staff):
    _, headers = staff
    response = client.post(f"{API}/onboarding/workflows", headers=headers, json={"name": "x"})
    assert response.status_code == 403
