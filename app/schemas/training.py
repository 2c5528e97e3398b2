"""
Training product and SOP schemas.
"""

from datetime import datetime
from typing import Optional, List

from pydantic import BaseModel, Field, field_validator

from app.models.training import SOP, TrainingProduct, TrainingProductStatus
from app.schemas.common import reject_null
from app.schemas.policy import StandardResponse


class SOPCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    version: str = Field("1.0", max_length=50)
    file_url: Optional[str] = Field(None, max_length=1000)
    description: Optional[str] = None
    policy_id: Optional[int] = None


class SOPUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    version: Optional[str] = Field(None, max_length=50)
    file_url: Optional[str] = Field(None, max_length=1000)
    description: Optional[str] = None
    policy_id: Optional[int] = None

    @field_validator("title", "version")
    @classmethod
    def not_null(cls, v):
        return reject_null(v)


class SOPStandardsRequest(BaseModel):
    standard_ids: List[int] = Field(..., min_length=1)


class SOPResponse(BaseModel):
    id: int
    title: str
    version: str
    file_url: Optional[str] = None
    description: Optional[str] = None
    policy_id: Optional[int] = None
    standards: List[StandardResponse] = []
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class TrainingProductCreate(BaseModel):
    code: str = Field(..., min_length=1, max_length=50)
    name: str = Field(..., min_length=1, max_length=255)
    status: TrainingProductStatus = TrainingProductStatus.ACTIVE
    assessment_strategy_url: Optional[str] = Field(None, max_length=1000)
    validation_report_url: Optional[str] = Field(None, max_length=1000)
    is_accredited: bool = False
    owner_id: Optional[int] = None

    @field_validator("code")
    @classmethod
    def normalise_code(cls, v: str) -> str:
        return v.strip().upper()


class TrainingProductUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    status: Optional[TrainingProductStatus] = None
    assessment_strategy_url: Optional[str] = Field(None, max_length=1000)
    validation_report_url: Optional[str] = Field(None, max_length=1000)
    is_accredited: Optional[bool] = None
    owner_id: Optional[int] = None

    @field_validator("name", "status", "is_accredited")
    @classmethod
    def not_null(cls, v):
        return reject_null(v)


class TrainingProductSOPsRequest(BaseModel):
    sop_ids: List[int] = Field(..., min_length=1)


class SOPSummary(BaseModel):
    id: int
    title: str
    version: str


class TrainingProductResponse(BaseModel):
    id: int
    code: str
    name: str
    status: TrainingProductStatus
    assessment_strategy_url: Optional[str] = None
    validation_report_url: Optional[str] = None
    is_accredited: bool
    owner_id: Optional[int] = None
    sops: List[SOPSummary] = []
    created_at: datetime
    updated_at: datetime


def sop_to_response(sop: SOP) -> SOPResponse:
    return SOPResponse.model_validate(sop)


def training_product_to_response(product: TrainingProduct) -> TrainingProductResponse:
    return TrainingProductResponse(
        id=product.id,
        code=product.code,
        name=product.name,
        status=product.status,
        assessment_strategy_url=product.assessment_strategy_url,
        validation_report_url=product.validation_report_url,
        is_accredited=product.is_accredited,
        owner_id=product.owner_id,
        sops=[
            SOPSummary(id=s.id, title=s.title, version=s.version)
            for s in product.sops if s.deleted_at is None
        ],
        created_at=product.created_at,
        updated_at=product.updated_at,
    )
