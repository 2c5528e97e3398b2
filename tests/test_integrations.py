import sqlite3
from unittest.mock import AsyncMock, PropertyMock, patch

import pytest

from app.core.encryption import decrypt
from app.services.accelerate import AccelerateClient, accelerate_client
from app.services.google_drive import GoogleDriveClient, drive_client
from conftest import API, TEST_DB

DRIVE = f"{API}/files/google-drive"
ACCELERATE = f"{API}/sync/accelerate"


@pytest.fixture
def drive():
    """A configured Drive client whose HTTP calls are replaced by mocks."""
    with patch.object(GoogleDriveClient, "is_configured", new_callable=PropertyMock, return_value=True), \
            patch.multiple(
                drive_client,
                exchange_code=AsyncMock(return_value={
                    "access_token": "access", "refresh_token": "refresh", "expires_in": 3600,
                }),
                get_user_email=AsyncMock(return_value="drive@example.com"),
                create_folder=AsyncMock(return_value="folder-1"),
                upload=AsyncMock(side_effect=[
                    {"id": "file-1", "mimeType": "application/pdf", "size": "4"},
                    {"id": "file-2", "mimeType": "application/pdf", "size": "4"},
                ]),
                trash=AsyncMock(return_value=None),
            ):
        yield drive_client


def _connect_drive(client, headers):
    initiated = client.get(f"{DRIVE}/auth/initiate", headers=headers)
    assert initiated.status_code == 200
    state = initiated.json()["state"]
    assert f"state={state}" in initiated.json()["authorization_url"]

    callback = client.get(f"{DRIVE}/auth/callback", params={"code": "abc", "state": state})
    assert callback.status_code == 200
    return state


def _upload(client, headers, name="evidence.pdf"):
    return client.post(
        f"{DRIVE}/upload",
        headers=headers,
        files={"file": (name, b"%PDF", "application/pdf")},
        data={"entity_type": "policy", "entity_id": "12"},
    )


def test_drive_status_when_not_connected(client, admin_headers):
    status = client.get(f"{DRIVE}/status", headers=admin_headers).json()
    assert status["connected"] is False
    assert status["file_count"] == 0

    assert client.get(f"{DRIVE}/auth/initiate", headers=admin_headers).status_code == 400
    assert _upload(client, admin_headers).status_code == 400


def test_upload_rejects_disallowed_types(client, admin_headers):
    response = _upload(client, admin_headers, name="payload.exe")
    assert response.status_code == 400
    assert "not allowed" in response.json()["detail"]


def test_callback_state_is_single_use(client, admin_headers, drive):
    state = _connect_drive(client, admin_headers)
    replay = client.get(f"{DRIVE}/auth/callback", params={"code": "abc", "state": state})
    assert replay.status_code == 400


def test_uploads_are_versioned(client, admin_headers, drive):
    _connect_drive(client, admin_headers)

    first = _upload(client, admin_headers)
    assert first.status_code == 201
    second = _upload(client, admin_headers).json()
    assert second["version"] == 2
    drive.create_folder.assert_awaited_once()

    latest = client.get(f"{DRIVE}/files", headers=admin_headers, params={"entity_id": "12"}).json()
    assert [f["drive_file_id"] for f in latest["items"]] == ["file-2"]
    every = client.get(f"{DRIVE}/files", headers=admin_headers, params={"latest_only": "false"}).json()
    assert every["total"] == 2

    assert client.delete(f"{DRIVE}/files/{second['id']}", headers=admin_headers).status_code == 204
    drive.trash.assert_awaited_once()
    status = client.get(f"{DRIVE}/status", headers=admin_headers).json()
    assert status["connected"] is True
    assert status["account_email"] == "drive@example.com"
    assert status["file_count"] == 1


def test_drive_disconnect(client, admin_headers, drive):
    assert client.post(f"{DRIVE}/auth/disconnect", headers=admin_headers).status_code == 400
    _connect_drive(client, admin_headers)
    assert client.post(f"{DRIVE}/auth/disconnect", headers=admin_headers).status_code == 200
    assert client.get(f"{DRIVE}/status", headers=admin_headers).json()["connected"] is False


def test_drive_tokens_encrypted_at_rest(client, admin_headers, drive):
    _connect_drive(client, admin_headers)

    with sqlite3.connect(TEST_DB) as conn:
        access, refresh = conn.execute(
            "SELECT access_token, refresh_token FROM google_drive_connections"
        ).fetchone()
    assert access != "access" and refresh != "refresh"
    assert decrypt(access) == "access"
    assert decrypt(refresh) == "refresh"

    assert _upload(client, admin_headers).status_code == 201
    assert drive.upload.await_args.args[0] == "access"


def test_xero_not_connected(client, admin_headers):
    status = client.get(f"{API}/sync/xero/status", headers=admin_headers).json()
    assert status == {
        "connected": False,
        "tenant_id": None,
        "tenant_name": None,
        "last_sync_at": None,
        "last_sync": None,
    }
    assert client.get(f"{API}/sync/xero/authorize", headers=admin_headers).status_code == 400
    assert client.post(f"{API}/sync/xero/disconnect", headers=admin_headers).status_code == 400

    bad_state = client.get(f"{API}/sync/xero/callback", params={"code": "x", "state": "forged"})
    assert bad_state.status_code == 400


def test_accelerate_requires_configuration(client, admin_headers):
    assert client.post(f"{ACCELERATE}/sync", headers=admin_headers).status_code == 400
    status = client.get(f"{ACCELERATE}/status", headers=admin_headers).json()
    assert status == {"configured": False, "last_sync": None}


ACCELERATE_DATA = {
    "trainers": [
        {"id": 101, "email": "New.Trainer@example.com", "firstName": "New", "lastName": "Trainer"},
        {"id": 102, "email": "staff@example.com", "firstName": "Existing", "lastName": "Staff"},
        {"id": 103, "email": ""},
    ],
    "students": [{"id": "s-1", "name": "Student One"}],
    "enrollments": [{"id": "e-1"}, {"id": None}],
}


def test_accelerate_sync(client, admin_headers, staff):
    fetch_all = AsyncMock(side_effect=lambda resource: ACCELERATE_DATA[resource])
    with patch.object(AccelerateClient, "is_configured", new_callable=PropertyMock, return_value=True), \
            patch.object(accelerate_client, "fetch_all", fetch_all):
        response = client.post(f"{ACCELERATE}/sync", headers=admin_headers)

    assert response.status_code == 200
    log = response.json()
    assert log["sync_type"] == "all"
    assert log["status"] == "partial"
    assert (log["records_processed"], log["records_created"], log["records_updated"], log["records_failed"]) == (
        6, 3, 1, 2,
    )

    trainers = client.get(f"{API}/users", headers=admin_headers, params={"role": "Trainer"}).json()
    assert sorted(u["email"] for u in trainers["items"]) == ["new.trainer@example.com", "staff@example.com"]

    stats = client.get(f"{ACCELERATE}/stats", headers=admin_headers).json()
    assert (stats["trainers"], stats["students"], stats["enrollments"]) == (2, 1, 1)
    students = client.get(f"{ACCELERATE}/students", headers=admin_headers).json()
    assert students["items"][0]["accelerate_id"] == "s-1"
