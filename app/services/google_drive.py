"""
Google Drive document storage.

Files are uploaded into one Drive folder per entity type and recorded
locally with a version number per (entity, file name).
"""

import json
import logging
import secrets
from pathlib import Path
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import httpx
from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.core.utils import utcnow
from app.models.integration import (
    GoogleDriveConnection,
    GoogleDriveFolder,
    GoogleDriveFile,
    GoogleDriveSyncLog,
    SyncStatus,
)
from app.models.user import User
from app.services.integrations import (
    IntegrationError,
    NotConnectedError,
    expiry_from,
    raise_for_api_error,
    token_needs_refresh,
)

logger = logging.getLogger(__name__)

SERVICE_NAME = "Google Drive"
MAX_UPLOAD_BYTES = 25 * 1024 * 1024
ALLOWED_EXTENSIONS = {
    ".pdf", ".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx",
    ".txt", ".csv", ".png", ".jpg", ".jpeg", ".gif",
}
FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"
SCOPES = (
    "https://www.googleapis.com/auth/drive.file "
    "https://www.googleapis.com/auth/userinfo.email"
)


def validate_upload(filename: Optional[str], size: int) -> None:
    """Raise IntegrationError(400/413) for disallowed or oversized files."""
    if not filename:
        raise IntegrationError("File name is required", status_code=400)
    extension = Path(filename).suffix.lower()
    if extension not in ALLOWED_EXTENSIONS:
        raise IntegrationError(
            f"File type '{extension or 'unknown'}' is not allowed", status_code=400
        )
    if size > MAX_UPLOAD_BYTES:
        raise IntegrationError("File exceeds the 25 MB limit", status_code=413)


class GoogleDriveClient:
    """Handle Google OAuth and Drive v3 calls."""

    AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
    TOKEN_URL = "https://oauth2.googleapis.com/token"
    USERINFO_URL = "https://www.googleapis.com/oauth2/v3/userinfo"
    FILES_URL = "https://www.googleapis.com/drive/v3/files"
    UPLOAD_URL = "https://www.googleapis.com/upload/drive/v3/files"

    def __init__(self):
        self.client_id = config.GOOGLE_CLIENT_ID
        self.client_secret = config.GOOGLE_CLIENT_SECRET
        self.redirect_uri = config.GOOGLE_REDIRECT_URI

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def authorization_url(self, state: str) -> str:
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": SCOPES,
            "access_type": "offline",
            "prompt": "consent",
            "state": state,
        }
        return f"{self.AUTH_URL}?{urlencode(params)}"

    async def _request(self, method: str, url: str, access_token: Optional[str] = None, **kwargs) -> httpx.Response:
        headers = kwargs.pop("headers", {})
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"
        try:
            async with httpx.AsyncClient(timeout=60) as client:
                response = await client.request(method, url, headers=headers, **kwargs)
        except httpx.RequestError as e:
            raise IntegrationError(f"No response from Google Drive: {e}") from e
        raise_for_api_error(response, SERVICE_NAME)
        return response

    async def exchange_code(self, code: str) -> Dict[str, Any]:
        response = await self._request("POST", self.TOKEN_URL, data={
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "code": code,
            "grant_type": "authorization_code",
            "redirect_uri": self.redirect_uri,
        })
        return response.json()

    async def refresh(self, refresh_token: str) -> Dict[str, Any]:
        response = await self._request("POST", self.TOKEN_URL, data={
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
        })
        return response.json()

    async def get_user_email(self, access_token: str) -> Optional[str]:
        response = await self._request("GET", self.USERINFO_URL, access_token)
        return response.json().get("email")

    async def about(self, access_token: str) -> Dict[str, Any]:
        response = await self._request(
            "GET", "https://www.googleapis.com/drive/v3/about", access_token,
            params={"fields": "user,storageQuota"},
        )
        return response.json()

    async def create_folder(self, access_token: str, name: str, parent_id: Optional[str] = None) -> str:
        metadata: Dict[str, Any] = {"name": name, "mimeType": FOLDER_MIME_TYPE}
        if parent_id:
            metadata["parents"] = [parent_id]
        response = await self._request("POST", self.FILES_URL, access_token, json=metadata)
        return response.json()["id"]

    async def upload(
        self,
        access_token: str,
        name: str,
        mime_type: str,
        content: bytes,
        parent_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Multipart upload: JSON metadata part followed by the file bytes."""
        metadata: Dict[str, Any] = {"name": name}
        if parent_id:
            metadata["parents"] = [parent_id]

        boundary = f"rto-hub-{secrets.token_hex(12)}"
        body = b"".join([
            f"--{boundary}\r\nContent-Type: application/json; charset=UTF-8\r\n\r\n".encode(),
            json.dumps(metadata).encode(),
            f"\r\n--{boundary}\r\nContent-Type: {mime_type}\r\n\r\n".encode(),
            content,
            f"\r\n--{boundary}--".encode(),
        ])
        response = await self._request(
            "POST", self.UPLOAD_URL, access_token,
            params={"uploadType": "multipart", "fields": "id,name,mimeType,size,webViewLink"},
            headers={"Content-Type": f"multipart/related; boundary={boundary}"},
            content=body,
        )
        return response.json()

    async def get_file(self, access_token: str, file_id: str) -> Dict[str, Any]:
        response = await self._request(
            "GET", f"{self.FILES_URL}/{file_id}", access_token,
            params={"fields": "id,name,mimeType,webViewLink,thumbnailLink,iconLink"},
        )
        return response.json()

    async def trash(self, access_token: str, file_id: str) -> None:
        await self._request("PATCH", f"{self.FILES_URL}/{file_id}", access_token, json={"trashed": True})


drive_client = GoogleDriveClient()


async def get_active_connection(db: AsyncSession) -> Optional[GoogleDriveConnection]:
    result = await db.execute(
        select(GoogleDriveConnection)
        .where(GoogleDriveConnection.is_active.is_(True))
        .order_by(GoogleDriveConnection.id.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def require_connection(db: AsyncSession) -> GoogleDriveConnection:
    connection = await get_active_connection(db)
    if connection is None:
        raise NotConnectedError(SERVICE_NAME)
    return connection


async def connect(db: AsyncSession, code: str, user_id: Optional[int]) -> GoogleDriveConnection:
    tokens = await drive_client.exchange_code(code)
    email = await drive_client.get_user_email(tokens["access_token"])

    await db.execute(update(GoogleDriveConnection).values(is_active=False))
    connection = GoogleDriveConnection(
        user_id=user_id,
        account_email=email,
        access_token=tokens["access_token"],
        refresh_token=tokens.get("refresh_token"),
        token_expires_at=expiry_from(tokens.get("expires_in")),
        root_folder_id=config.GOOGLE_DRIVE_ROOT_FOLDER_ID,
        is_active=True,
    )
    db.add(connection)
    await db.commit()
    logger.info("Connected Google Drive account %s", email)
    return connection


async def ensure_access_token(db: AsyncSession, connection: GoogleDriveConnection) -> str:
    """Return a usable access token, refreshing it when close to expiry."""
    if token_needs_refresh(connection.token_expires_at):
        if not connection.refresh_token:
            raise IntegrationError("Google Drive token expired. Reconnect the integration.", status_code=400)
        tokens = await drive_client.refresh(connection.refresh_token)
        connection.access_token = tokens["access_token"]
        connection.token_expires_at = expiry_from(tokens.get("expires_in"))
        await db.commit()
        logger.info("Refreshed Google Drive access token")
    return connection.access_token


async def disconnect(db: AsyncSession) -> bool:
    connection = await get_active_connection(db)
    if connection is None:
        return False
    connection.is_active = False
    await db.commit()
    return True


async def test_connection(db: AsyncSession) -> Dict[str, Any]:
    connection = await get_active_connection(db)
    if connection is None:
        return {"success": False, "message": "Google Drive is not connected"}
    try:
        token = await ensure_access_token(db, connection)
        about = await drive_client.about(token)
    except IntegrationError as e:
        return {"success": False, "message": e.message}
    return {
        "success": True,
        "message": "Successfully connected to Google Drive",
        "account": about.get("user", {}).get("emailAddress"),
    }


async def _entity_folder(db: AsyncSession, connection: GoogleDriveConnection, token: str, entity_type: str) -> str:
    folder = await db.scalar(
        select(GoogleDriveFolder).where(
            GoogleDriveFolder.connection_id == connection.id,
            GoogleDriveFolder.entity_type == entity_type,
        )
    )
    if folder:
        return folder.drive_folder_id

    name = entity_type.replace("_", " ").title()
    drive_folder_id = await drive_client.create_folder(token, name, connection.root_folder_id)
    db.add(GoogleDriveFolder(
        connection_id=connection.id,
        entity_type=entity_type,
        drive_folder_id=drive_folder_id,
        name=name,
    ))
    return drive_folder_id


async def upload_file(
    db: AsyncSession,
    user: User,
    filename: str,
    content_type: Optional[str],
    content: bytes,
    entity_type: str,
    entity_id: str,
) -> GoogleDriveFile:
    validate_upload(filename, len(content))
    connection = await require_connection(db)
    token = await ensure_access_token(db, connection)

    try:
        folder_id = await _entity_folder(db, connection, token, entity_type)
        uploaded = await drive_client.upload(
            token, filename, content_type or "application/octet-stream", content, folder_id
        )
    except IntegrationError as e:
        db.add(GoogleDriveSyncLog(
            connection_id=connection.id, operation="upload",
            status=SyncStatus.FAILED, error_message=e.message,
        ))
        await db.commit()
        raise

    previous = await db.scalar(
        select(func.max(GoogleDriveFile.version)).where(
            GoogleDriveFile.entity_type == entity_type,
            GoogleDriveFile.entity_id == entity_id,
            GoogleDriveFile.file_name == filename,
            GoogleDriveFile.deleted_at.is_(None),
        )
    )
    await db.execute(
        update(GoogleDriveFile)
        .where(
            GoogleDriveFile.entity_type == entity_type,
            GoogleDriveFile.entity_id == entity_id,
            GoogleDriveFile.file_name == filename,
        )
        .values(is_latest=False)
    )

    record = GoogleDriveFile(
        connection_id=connection.id,
        drive_file_id=uploaded["id"],
        file_name=filename,
        mime_type=uploaded.get("mimeType", content_type),
        size=int(uploaded.get("size") or len(content)),
        web_view_link=uploaded.get("webViewLink"),
        entity_type=entity_type,
        entity_id=entity_id,
        version=(previous or 0) + 1,
        is_latest=True,
        uploaded_by_id=user.id,
    )
    db.add(record)
    await db.flush()
    db.add(GoogleDriveSyncLog(
        connection_id=connection.id, operation="upload",
        file_id=record.id, status=SyncStatus.SUCCESS,
    ))
    await db.commit()
    logger.info("Uploaded %s (v%d) for %s/%s", filename, record.version, entity_type, entity_id)
    return record


async def delete_file(db: AsyncSession, record: GoogleDriveFile) -> None:
    """Soft delete locally and move the Drive copy to the trash."""
    connection = await require_connection(db)
    token = await ensure_access_token(db, connection)
    await drive_client.trash(token, record.drive_file_id)

    record.deleted_at = utcnow()
    record.is_latest = False
    db.add(GoogleDriveSyncLog(
        connection_id=connection.id, operation="delete",
        file_id=record.id, status=SyncStatus.SUCCESS,
    ))
    await db.commit()


async def preview(db: AsyncSession, record: GoogleDriveFile) -> Dict[str, Any]:
    connection = await require_connection(db)
    token = await ensure_access_token(db, connection)
    info = await drive_client.get_file(token, record.drive_file_id)
    return {
        "id": record.id,
        "file_name": record.file_name,
        "mime_type": info.get("mimeType", record.mime_type),
        "web_view_link": info.get("webViewLink", record.web_view_link),
        "thumbnail_link": info.get("thumbnailLink"),
        "embed_link": f"https://drive.google.com/file/d/{record.drive_file_id}/preview",
    }
