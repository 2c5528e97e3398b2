"""
Policy and standard schemas.
"""

from datetime import datetime
from typing import Optional, List

from pydantic import BaseModel, Field, field_validator

from app.models.policy import Policy, PolicyStatus, PolicyVersion, Standard
from app.schemas.common import UTCDateTime, reject_null
from app.services.lifecycle import policy_review_status


class StandardResponse(BaseModel):
    id: int
    code: str
    title: str
    clause: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None

    class Config:
        from_attributes = True


class PolicyCreate(BaseModel):
    """Create a new policy. `version` and `content` seed an unpublished first version."""
    title: str = Field(..., min_length=1, max_length=255)
    review_date: Optional[UTCDateTime] = None
    file_url: Optional[str] = Field(None, max_length=1000)
    version: Optional[str] = Field(None, max_length=50)
    content: Optional[str] = None


class PolicyUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    status: Optional[PolicyStatus] = None
    review_date: Optional[UTCDateTime] = None
    file_url: Optional[str] = Field(None, max_length=1000)
    owner_id: Optional[int] = None

    @field_validator("title", "status")
    @classmethod
    def not_null(cls, v):
        return reject_null(v)


class PolicyPublishRequest(BaseModel):
    version: str = Field(..., min_length=1, max_length=50)
    content: Optional[str] = None
    file_url: Optional[str] = Field(None, max_length=1000)


class PolicyMapRequest(BaseModel):
    standard_ids: List[int] = Field(..., min_length=1)


class PolicyVersionResponse(BaseModel):
    id: int
    policy_id: int
    version: str
    content: Optional[str] = None
    file_url: Optional[str] = None
    is_current: bool
    published_at: Optional[datetime] = None
    created_by_id: Optional[int] = None
    created_at: datetime

    class Config:
        from_attributes = True


class PolicyResponse(BaseModel):
    """Policy response model."""
    id: int
    title: str
    status: PolicyStatus
    owner_id: Optional[int] = None
    owner_name: Optional[str] = None
    review_date: Optional[datetime] = None
    review_status: str
    file_url: Optional[str] = None
    current_version: Optional[PolicyVersionResponse] = None
    standards: List[StandardResponse] = []
    created_at: datetime
    updated_at: datetime


def policy_to_response(policy: Policy) -> PolicyResponse:
    """Convert a Policy model (versions, standards and owner loaded) to a response."""
    current = policy.current_version
    return PolicyResponse(
        id=policy.id,
        title=policy.title,
        status=policy.status,
        owner_id=policy.owner_id,
        owner_name=policy.owner.full_name if policy.owner else None,
        review_date=policy.review_date,
        review_status=policy_review_status(policy.review_date),
        file_url=policy.file_url,
        current_version=PolicyVersionResponse.model_validate(current) if current else None,
        standards=[StandardResponse.model_validate(s) for s in policy.standards],
        created_at=policy.created_at,
        updated_at=policy.updated_at,
    )


def version_to_response(version: PolicyVersion) -> PolicyVersionResponse:
    return PolicyVersionResponse.model_validate(version)


class MappedItem(BaseModel):
    id: int
    title: str
    status: Optional[str] = None


class StandardMappingsResponse(BaseModel):
    standard: StandardResponse
    policies: List[MappedItem]
    sops: List[MappedItem]


def standard_to_response(standard: Standard) -> StandardResponse:
    return StandardResponse.model_validate(standard)
