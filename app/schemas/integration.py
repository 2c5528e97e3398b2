"""
Integration schemas. Tokens are never part of a response.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from app.models.integration import SyncStatus


class AuthorizationURLResponse(BaseModel):
    authorization_url: str
    state: str


class ConnectionTestResponse(BaseModel):
    success: bool
    message: str
    account: Optional[str] = None


class DriveStatusResponse(BaseModel):
    connected: bool
    account_email: Optional[str] = None
    root_folder_id: Optional[str] = None
    connected_at: Optional[datetime] = None
    file_count: int = 0


class DriveFileResponse(BaseModel):
    id: int
    drive_file_id: str
    file_name: str
    mime_type: Optional[str] = None
    size: Optional[int] = None
    web_view_link: Optional[str] = None
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    version: int
    is_latest: bool
    uploaded_by_id: Optional[int] = None
    created_at: datetime

    class Config:
        from_attributes = True


class SyncLogResponse(BaseModel):
    id: int
    status: SyncStatus
    triggered_by_id: Optional[int] = None
    records_processed: int = 0
    records_created: int = 0
    records_updated: int = 0
    records_failed: int = 0
    errors: Optional[List[Any]] = None
    started_at: datetime
    completed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class AccelerateSyncLogResponse(SyncLogResponse):
    sync_type: str


class XeroStatusResponse(BaseModel):
    connected: bool
    tenant_id: Optional[str] = None
    tenant_name: Optional[str] = None
    last_sync_at: Optional[datetime] = None
    last_sync: Optional[SyncLogResponse] = None


class AccelerateSyncRequest(BaseModel):
    sync_type: str = Field("all", pattern="^(trainers|students|enrollments|all)$")


class AccelerateStatusResponse(BaseModel):
    configured: bool
    last_sync: Optional[AccelerateSyncLogResponse] = None


class AccelerateMappingResponse(BaseModel):
    id: int
    entity_type: str
    accelerate_id: str
    local_id: Optional[int] = None
    data: Optional[Dict[str, Any]] = None
    last_synced_at: datetime

    class Config:
        from_attributes = True
