import os
import tempfile
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

# Environment must be in place before the app modules are imported
TEST_DB = Path(tempfile.gettempdir()) / "rto_hub_test.db"
ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "Adm1n!Passw0rd#Secure"

os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{TEST_DB}"
os.environ["ADMIN_EMAIL"] = ADMIN_EMAIL
os.environ["ADMIN_PASSWORD"] = ADMIN_PASSWORD
os.environ["TRUSTED_HOSTS"] = "*"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["EMAIL_RETRY_DELAY_SECONDS"] = "0"
os.environ["JWT_SECRET_KEY"] = "test-secret-key-for-the-test-suite-only-0123456789"
os.environ["ENCRYPTION_KEY"] = "test-encryption-key"

from fastapi.testclient import TestClient  # noqa: E402

from app.main import app  # noqa: E402
from app.services.email_service import EmailService, rate_limiter  # noqa: E402

API = "/api/v1"
STAFF_PASSWORD = "Staff!Passw0rd#2024"


@pytest.fixture
def client():
    if TEST_DB.exists():
        TEST_DB.unlink()
    rate_limiter.reset()
    with TestClient(app) as test_client:
        yield test_client
    if TEST_DB.exists():
        TEST_DB.unlink()


@pytest.fixture(autouse=True)
def sent_emails():
    """Capture outgoing email instead of talking to a provider."""
    with patch.object(EmailService, "_deliver", new_callable=AsyncMock) as deliver:
        deliver.return_value = "test-message-id"
        yield deliver


def login(client, email, password):
    response = client.post(f"{API}/auth/login", json={"email": email, "password": password})
    assert response.status_code == 200, response.text
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


@pytest.fixture
def admin_headers(client):
    return login(client, ADMIN_EMAIL, ADMIN_PASSWORD)


def create_user(client, headers, email, roles=("Staff",), department="Training", full_name=None):
    response = client.post(f"{API}/users", headers=headers, json={
        "email": email,
        "full_name": full_name or email.split("@")[0].title(),
        "department": department,
        "password": STAFF_PASSWORD,
        "roles": list(roles),
    })
    assert response.status_code == 201, response.text
    return response.json()


@pytest.fixture
def staff(client, admin_headers):
    user = create_user(client, admin_headers, "staff@example.com")
    return user, login(client, "staff@example.com", STAFF_PASSWORD)
