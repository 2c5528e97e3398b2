"""
Feedback schemas.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from app.models.feedback import FeedbackType
from app.schemas.common import UTCDateTime, reject_null

MAX_THEMES = 20


def _clean_themes(themes: Optional[List[str]]) -> Optional[List[str]]:
    if themes is None:
        return None
    seen = []
    for theme in themes:
        theme = theme.strip().lower()
        if theme and theme not in seen:
            seen.append(theme)
    return seen[:MAX_THEMES]


class FeedbackCreate(BaseModel):
    type: FeedbackType
    training_product_id: Optional[int] = None
    trainer_id: Optional[int] = None
    course_id: Optional[str] = Field(None, max_length=100)
    rating: Optional[float] = Field(None, ge=0, le=5)
    comments: Optional[str] = Field(None, max_length=5000)
    anonymous: bool = False
    sentiment: Optional[float] = Field(None, ge=-1, le=1)
    themes: List[str] = Field(default_factory=list)
    submitted_at: Optional[UTCDateTime] = None

    @field_validator("themes")
    @classmethod
    def clean_themes(cls, v):
        return _clean_themes(v)


class FeedbackUpdate(BaseModel):
    training_product_id: Optional[int] = None
    trainer_id: Optional[int] = None
    course_id: Optional[str] = Field(None, max_length=100)
    rating: Optional[float] = Field(None, ge=0, le=5)
    comments: Optional[str] = Field(None, max_length=5000)
    sentiment: Optional[float] = Field(None, ge=-1, le=1)
    themes: Optional[List[str]] = None

    @field_validator("themes")
    @classmethod
    def clean_themes(cls, v):
        return _clean_themes(reject_null(v))


class FeedbackResponse(BaseModel):
    id: int
    type: FeedbackType
    training_product_id: Optional[int] = None
    trainer_id: Optional[int] = None
    course_id: Optional[str] = None
    rating: Optional[float] = None
    comments: Optional[str] = None
    anonymous: bool
    sentiment: Optional[float] = None
    themes: List[str] = []
    submitted_at: datetime
    created_at: datetime

    class Config:
        from_attributes = True

