"""
Asset register schemas.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from app.models.asset import Asset, AssetService, AssetStateChange, AssetStatus
from app.schemas.common import UTCDateTime, reject_null


class AssetCreate(BaseModel):
    type: str = Field(..., min_length=1, max_length=100)
    name: str = Field(..., min_length=1, max_length=255)
    serial_number: Optional[str] = Field(None, max_length=100)
    location: Optional[str] = Field(None, max_length=255)
    status: AssetStatus = AssetStatus.AVAILABLE
    purchase_date: Optional[UTCDateTime] = None
    purchase_cost: Optional[float] = Field(None, ge=0)
    next_service_at: Optional[UTCDateTime] = None
    notes: Optional[str] = None


class AssetUpdate(BaseModel):
    """Status is changed through POST /assets/{id}/state."""
    type: Optional[str] = Field(None, min_length=1, max_length=100)
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    serial_number: Optional[str] = Field(None, max_length=100)
    location: Optional[str] = Field(None, max_length=255)
    purchase_date: Optional[UTCDateTime] = None
    purchase_cost: Optional[float] = Field(None, ge=0)
    next_service_at: Optional[UTCDateTime] = None
    notes: Optional[str] = None

    @field_validator("type", "name")
    @classmethod
    def not_null(cls, v):
        return reject_null(v)


class AssetServiceCreate(BaseModel):
    service_date: UTCDateTime
    serviced_by: Optional[str] = Field(None, max_length=255)
    notes: Optional[str] = None
    cost: Optional[float] = Field(None, ge=0)
    documents: List[str] = Field(default_factory=list)
    next_service_at: Optional[UTCDateTime] = None


class AssetStateRequest(BaseModel):
    state: AssetStatus
    notes: Optional[str] = None


class AssetServiceResponse(BaseModel):
    id: int
    asset_id: int
    service_date: datetime
    serviced_by: Optional[str] = None
    notes: Optional[str] = None
    cost: Optional[float] = None
    documents: List[str] = []
    created_by_id: Optional[int] = None
    created_at: datetime

    class Config:
        from_attributes = True


class AssetStateChangeResponse(BaseModel):
    id: int
    asset_id: int
    from_state: AssetStatus
    to_state: AssetStatus
    notes: Optional[str] = None
    changed_by_id: Optional[int] = None
    created_at: datetime

    class Config:
        from_attributes = True


class AssetResponse(BaseModel):
    id: int
    type: str
    name: str
    serial_number: Optional[str] = None
    location: Optional[str] = None
    status: AssetStatus
    purchase_date: Optional[datetime] = None
    purchase_cost: Optional[float] = None
    last_service_at: Optional[datetime] = None
    next_service_at: Optional[datetime] = None
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class AssetDetailResponse(AssetResponse):
    recent_services: List[AssetServiceResponse] = []


class AssetHistoryResponse(BaseModel):
    asset_id: int
    services: List[AssetServiceResponse]
    state_changes: List[AssetStateChangeResponse]


RECENT_SERVICE_COUNT = 5


def asset_to_detail(asset: Asset, services: List[AssetService]) -> AssetDetailResponse:
    return AssetDetailResponse(
        **AssetResponse.model_validate(asset).model_dump(),
        recent_services=[AssetServiceResponse.model_validate(s) for s in services[:RECENT_SERVICE_COUNT]],
    )


def asset_history(asset_id: int, services: List[AssetService], changes: List[AssetStateChange]) -> AssetHistoryResponse:
    return AssetHistoryResponse(
        asset_id=asset_id,
        services=[AssetServiceResponse.model_validate(s) for s in services],
        state_changes=[AssetStateChangeResponse.model_validate(c) for c in changes],
    )
