"""
Common schemas used across the API.
"""

from datetime import datetime
from typing import Annotated, Any, Generic, List, Optional, TypeVar

from pydantic import AfterValidator, BaseModel, Field

from app.core.utils import as_utc

T = TypeVar("T")

DEFAULT_PER_PAGE = 30
MAX_PER_PAGE = 100

# Incoming timestamps are stored as UTC; naive values are taken to be UTC
UTCDateTime = Annotated[datetime, AfterValidator(as_utc)]


def reject_null(value: Any) -> Any:
    """PATCH fields backed by NOT NULL columns may be omitted but not cleared."""
    if value is None:
        raise ValueError("may not be null")
    return value


class PaginatedResponse(BaseModel, Generic[T]):
    """Generic paginated response wrapper."""

    items: List[T]
    total: int = Field(description="Total number of items matching filters")
    page: int = Field(description="Current page number")
    per_page: int = Field(description="Items per page")
    pages: int = Field(description="Total number of pages")
    has_next_page: bool = False
    has_prev_page: bool = False

    @classmethod
    def create(
        cls,
        items: List[T],
        total: int,
        page: int,
        per_page: int,
    ) -> "PaginatedResponse[T]":
        """Factory method to create paginated response."""
        pages = (total + per_page - 1) // per_page if per_page > 0 else 0
        return cls(
            items=items,
            total=total,
            page=page,
            per_page=per_page,
            pages=pages,
            has_next_page=page < pages,
            has_prev_page=page > 1,
        )


class SuccessResponse(BaseModel):
    """Generic success response."""

    success: bool = True
    message: str = "Operation completed successfully"
    data: Optional[Any] = None


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "healthy"
    version: str
    database: str = "connected"
    timestamp: datetime
