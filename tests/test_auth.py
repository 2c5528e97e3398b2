import re

from conftest import API, ADMIN_EMAIL, ADMIN_PASSWORD, STAFF_PASSWORD, create_user, login


def test_root_and_health(client):
    assert client.get("/").json()["api"] == "/api/v1"

    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.headers["X-Frame-Options"] == "DENY"
    assert "X-Request-ID" in response.headers


def test_login_returns_tokens_and_permissions(client):
    response = client.post(f"{API}/auth/login", json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD})
    assert response.status_code == 200
    body = response.json()
    assert body["token_type"] == "bearer"
    assert body["refresh_token"]
    assert "SystemAdmin" in body["user"]["roles"]
    assert "users.create" in body["user"]["permissions"]


def test_login_wrong_password(client):
    response = client.post(f"{API}/auth/login", json={"email": ADMIN_EMAIL, "password": "Wrong!Passw0rd1"})
    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid email or password"
    assert response.headers["content-type"].startswith("application/problem+json")


def test_account_locks_after_five_failures(client, admin_headers):
    create_user(client, admin_headers, "locked@example.com")
    for _ in range(5):
        client.post(f"{API}/auth/login", json={"email": "locked@example.com", "password": "Wrong!Passw0rd1"})

    response = client.post(f"{API}/auth/login", json={"email": "locked@example.com", "password": STAFF_PASSWORD})
    assert response.status_code == 401
    assert "locked" in response.json()["detail"]


def test_me_requires_token(client):
    assert client.get(f"{API}/auth/me").status_code == 401


def test_me_profile(client, admin_headers):
    response = client.get(f"{API}/auth/me", headers=admin_headers)
    assert response.status_code == 200
    assert response.json()["email"] == ADMIN_EMAIL


def test_refresh_with_body_token(client):
    tokens = client.post(
        f"{API}/auth/login", json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD}
    ).json()
    response = client.post(f"{API}/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert response.status_code == 200
    assert response.json()["access_token"]


def test_refresh_rejects_access_token(client):
    tokens = client.post(
        f"{API}/auth/login", json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD}
    ).json()
    response = client.post(f"{API}/auth/refresh", json={"refresh_token": tokens["access_token"]})
    assert response.status_code == 401


def test_change_password(client, staff):
    _, headers = staff
    new_password = "N3w!Passw0rd#Strong"
    response = client.post(f"{API}/auth/change-password", headers=headers, json={
        "current_password": STAFF_PASSWORD,
        "new_password": new_password,
    })
    assert response.status_code == 200
    login(client, "staff@example.com", new_password)


def test_weak_password_rejected(client, staff):
    _, headers = staff
    response = client.post(f"{API}/auth/change-password", headers=headers, json={
        "current_password": STAFF_PASSWORD,
        "new_password": "short",
    })
    assert response.status_code == 400


def test_reset_request_does_not_reveal_accounts(client, sent_emails):
    known = client.post(f"{API}/auth/reset-password", json={"email": ADMIN_EMAIL})
    unknown = client.post(f"{API}/auth/reset-password", json={"email": "nobody@example.com"})
    assert known.status_code == unknown.status_code == 200
    assert known.json() == unknown.json()
    assert sent_emails.await_count == 1


def test_reset_confirmation(client, staff, sent_emails):
    user, _ = staff
    client.post(f"{API}/auth/reset-password", json={"email": user["email"]})
    to_email, _, _, text = sent_emails.await_args.args
    assert to_email == user["email"]
    token = re.search(r"token=([\w\-.]+)", text).group(1)

    new_password = "R3set!Passw0rd#Now"
    response = client.post(f"{API}/auth/reset-password", json={
        "email": user["email"],
        "token": token,
        "new_password": new_password,
    })
    assert response.status_code == 200
    login(client, user["email"], new_password)

    # Used tokens stop working once the password changes
    again = client.post(f"{API}/auth/reset-password", json={
        "email": user["email"],
        "token": token,
        "new_password": "An0ther!Passw0rd#X",
    })
    assert again.status_code == 400


def test_forbidden_is_audited(client, staff, admin_headers):
    _, headers = staff
    assert client.get(f"{API}/audit-logs", headers=headers).status_code == 403

    logs = client.get(f"{API}/audit-logs", headers=admin_headers, params={"action": "access_denied"}).json()
    assert logs["total"] == 1
    assert logs["items"][0]["success"] is False
