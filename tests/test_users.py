from conftest import ADMIN_EMAIL, API, create_user


def test_create_user_assigns_roles(client, admin_headers):
    user = create_user(client, admin_headers, "trainer@example.com", roles=["Trainer"])
    assert user["roles"] == ["Trainer"]
    assert user["status"] == "Active"
    assert "password" not in user and "password_hash" not in user


def test_duplicate_email_conflicts(client, admin_headers):
    create_user(client, admin_headers, "dup@example.com")
    response = client.post(f"{API}/users", headers=admin_headers, json={
        "email": "DUP@example.com",
        "full_name": "Duplicate",
    })
    assert response.status_code == 409


def test_unknown_role_rejected(client, admin_headers):
    response = client.post(f"{API}/users", headers=admin_headers, json={
        "email": "x@example.com",
        "full_name": "Someone",
        "roles": ["Wizard"],
    })
    assert response.status_code == 400
    assert "Wizard" in response.json()["detail"]


def test_invalid_body_is_bad_request(client, admin_headers):
    response = client.post(f"{API}/users", headers=admin_headers, json={"email": "not-an-email"})
    assert response.status_code == 400
    assert response.json()["errors"]


def test_list_filters_and_pagination(client, admin_headers):
    create_user(client, admin_headers, "alice@example.com", department="Admin")
    create_user(client, admin_headers, "bruno@example.com", roles=["Trainer"])
    create_user(client, admin_headers, "chloe@example.com", roles=["Trainer"])

    trainers = client.get(f"{API}/users", headers=admin_headers, params={"role": "Trainer"}).json()
    assert trainers["total"] == 2

    admins = client.get(f"{API}/users", headers=admin_headers, params={"department": "Admin"}).json()
    assert {u["email"] for u in admins["items"]} == {"alice@example.com", ADMIN_EMAIL}

    page = client.get(
        f"{API}/users", headers=admin_headers, params={"per_page": 2, "sort": "email:asc"}
    ).json()
    assert page["per_page"] == 2
    assert page["has_next_page"] is True
    assert page["has_prev_page"] is False
    assert len(page["items"]) == 2


def test_per_page_upper_bound(client, admin_headers):
    response = client.get(f"{API}/users", headers=admin_headers, params={"per_page": 101})
    assert response.status_code == 400


def test_update_and_soft_delete(client, admin_headers):
    user = create_user(client, admin_headers, "gone@example.com")

    response = client.patch(
        f"{API}/users/{user['id']}", headers=admin_headers, json={"department": "Support", "roles": ["Manager"]}
    )
    assert response.status_code == 200
    assert response.json()["department"] == "Support"
    assert response.json()["roles"] == ["Manager"]

    assert client.delete(f"{API}/users/{user['id']}", headers=admin_headers).status_code == 204
    assert client.get(f"{API}/users/{user['id']}", headers=admin_headers).status_code == 404


def test_cannot_delete_self(client, admin_headers):
    me = client.get(f"{API}/auth/me", headers=admin_headers).json()
    response = client.delete(f"{API}/users/{me['id']}", headers=admin_headers)
    assert response.status_code == 400


def test_staff_cannot_manage_users(client, staff):
    _, headers = staff
    response = client.post(f"{API}/users", headers=headers, json={"email": "z@example.com", "full_name": "Zed"})
    assert response.status_code == 403


def test_user_mutations_are_audited(client, admin_headers):
    user = create_user(client, admin_headers, "audited@example.com")
    history = client.get(
        f"{API}/audit-logs/entity/user/{user['id']}", headers=admin_headers
    ).json()
    assert [entry["action"] for entry in history] == ["create"]
    assert history[0]["details"]["roles"] == ["Staff"]
