"""
Credential and professional development schemas.

Statuses in responses are derived from dates at serialisation time, so a
credential past its expiry reads as Expired before the nightly refresh.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from app.core.utils import as_utc
from app.models.staff import (
    Credential,
    CredentialStatus,
    CredentialType,
    PDCategory,
    PDItem,
    PDStatus,
)
from app.schemas.common import UTCDateTime, reject_null
from app.services.lifecycle import credential_is_expiring_soon, credential_status, pd_status


class CredentialCreate(BaseModel):
    user_id: int
    name: str = Field(..., min_length=1, max_length=255)
    type: CredentialType
    issued_at: Optional[UTCDateTime] = None
    expires_at: Optional[UTCDateTime] = None
    evidence_url: Optional[str] = Field(None, max_length=1000)


class UserCredentialCreate(BaseModel):
    """Credential body for POST /users/{id}/credentials."""
    name: str = Field(..., min_length=1, max_length=255)
    type: CredentialType
    issued_at: Optional[UTCDateTime] = None
    expires_at: Optional[UTCDateTime] = None
    evidence_url: Optional[str] = Field(None, max_length=1000)


class CredentialUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    type: Optional[CredentialType] = None
    issued_at: Optional[UTCDateTime] = None
    expires_at: Optional[UTCDateTime] = None
    evidence_url: Optional[str] = Field(None, max_length=1000)
    status: Optional[CredentialStatus] = None

    @field_validator("name", "type", "status")
    @classmethod
    def not_null(cls, v):
        return reject_null(v)


class CredentialResponse(BaseModel):
    id: int
    user_id: int
    name: str
    type: CredentialType
    issued_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    evidence_url: Optional[str] = None
    status: CredentialStatus
    is_expiring_soon: bool
    created_at: datetime
    updated_at: datetime


def credential_to_response(credential: Credential) -> CredentialResponse:
    return CredentialResponse(
        id=credential.id,
        user_id=credential.user_id,
        name=credential.name,
        type=credential.type,
        issued_at=as_utc(credential.issued_at),
        expires_at=as_utc(credential.expires_at),
        evidence_url=credential.evidence_url,
        status=credential_status(credential.expires_at, credential.status),
        is_expiring_soon=credential_is_expiring_soon(credential.expires_at),
        created_at=credential.created_at,
        updated_at=credential.updated_at,
    )


class PDItemCreate(BaseModel):
    user_id: Optional[int] = Field(None, description="Defaults to the caller")
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    category: Optional[PDCategory] = None
    hours: Optional[float] = Field(None, ge=0)
    due_at: Optional[UTCDateTime] = None
    evidence_url: Optional[str] = Field(None, max_length=1000)


class PDItemUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    category: Optional[PDCategory] = None
    hours: Optional[float] = Field(None, ge=0)
    due_at: Optional[UTCDateTime] = None
    evidence_url: Optional[str] = Field(None, max_length=1000)
    notes: Optional[str] = None

    @field_validator("title")
    @classmethod
    def not_null(cls, v):
        return reject_null(v)


class PDCompleteRequest(BaseModel):
    evidence_url: str = Field(..., min_length=1, max_length=1000)
    completed_at: Optional[UTCDateTime] = None
    hours: Optional[float] = Field(None, ge=0)
    notes: Optional[str] = None


class PDVerifyRequest(BaseModel):
    notes: Optional[str] = None


class PDItemResponse(BaseModel):
    id: int
    user_id: int
    title: str
    description: Optional[str] = None
    category: Optional[PDCategory] = None
    hours: Optional[float] = None
    due_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    evidence_url: Optional[str] = None
    status: PDStatus
    verified_by_id: Optional[int] = None
    verified_at: Optional[datetime] = None
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime


def pd_item_to_response(item: PDItem) -> PDItemResponse:
    return PDItemResponse(
        id=item.id,
        user_id=item.user_id,
        title=item.title,
        description=item.description,
        category=item.category,
        hours=item.hours,
        due_at=as_utc(item.due_at),
        completed_at=as_utc(item.completed_at),
        evidence_url=item.evidence_url,
        status=pd_status(item.due_at, item.completed_at, item.status),
        verified_by_id=item.verified_by_id,
        verified_at=as_utc(item.verified_at),
        notes=item.notes,
        created_at=item.created_at,
        updated_at=item.updated_at,
    )
