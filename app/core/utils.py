"""
Shared utility functions for the API.
"""

import math
import re
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Sequence, Tuple, Type, TypeVar

from fastapi import HTTPException, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import Select

T = TypeVar("T")

SECONDS_PER_DAY = 24 * 60 * 60


# =============================================================================
# Time helpers
# =============================================================================

def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Attach UTC to naive datetimes.

    SQLite drops tzinfo on the way back out, so every comparison against
    a stored timestamp goes through here.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def days_until(value: datetime, now: Optional[datetime] = None) -> int:
    """Whole days until `value`, rounded up (negative when in the past)."""
    now = as_utc(now) or utcnow()
    delta = (as_utc(value) - now).total_seconds()
    return math.ceil(delta / SECONDS_PER_DAY)


# =============================================================================
# Query helpers
# =============================================================================

def sanitize_search(search: Optional[str]) -> Optional[str]:
    """Strip characters that have no business in a search term."""
    if search is None:
        return None
    cleaned = re.sub(r'[<>"\';\\]', '', search).strip()
    return cleaned or None


def apply_filter(query, count_query, condition):
    """Apply the same WHERE clause to a list query and its count query."""
    return query.where(condition), count_query.where(condition)


def apply_search_filter(query, count_query, search: Optional[str], *fields):
    """
    Apply ilike search filter to multiple fields.

    Example:
        query, count_query = apply_search_filter(
            query, count_query, q,
            User.email, User.full_name
        )
    """
    search = sanitize_search(search)
    if not search or not fields:
        return query, count_query

    search_filter = f"%{search.lower()}%"

    # Build OR condition for all fields
    conditions = [field.ilike(search_filter) for field in fields]
    combined = conditions[0]
    for condition in conditions[1:]:
        combined = combined | condition

    return query.where(combined), count_query.where(combined)


def parse_sort(sort: Optional[str], allowed: Dict[str, Any], default: Sequence[Any]) -> list:
    """
    Parse `field:asc,other:desc` into ORDER BY clauses.

    Only keys of `allowed` may be sorted on; anything else is a 400.
    """
    if not sort:
        return list(default)

    clauses = []
    for part in sort.split(","):
        part = part.strip()
        if not part:
            continue
        field, _, direction = part.partition(":")
        direction = (direction or "asc").lower()
        if field not in allowed or direction not in ("asc", "desc"):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Invalid sort parameter '{part}'. Sortable fields: {', '.join(sorted(allowed))}",
            )
        column = allowed[field]
        clauses.append(column.desc() if direction == "desc" else column.asc())
    return clauses or list(default)


async def paginate(
    db: AsyncSession,
    query: Select,
    count_query: Select,
    page: int,
    per_page: int,
    order_by: Sequence[Any],
) -> Tuple[list, int]:
    """Run a count query and a page of the list query."""
    result = await db.execute(count_query)
    total = result.scalar() or 0

    offset = (page - 1) * per_page
    result = await db.execute(
        query.order_by(*order_by).offset(offset).limit(per_page)
    )
    return list(result.scalars().unique().all()), total


def count_of(model: Type[T]) -> Select:
    """Start a count query for `model`."""
    return select(func.count(model.id))


async def get_or_404(
    db: AsyncSession,
    model: Type[T],
    object_id: int,
    detail: str,
    options: Sequence[Any] = (),
    include_deleted: bool = False,
) -> T:
    """Fetch a row by primary key or raise 404."""
    query = select(model).where(model.id == object_id)
    if not include_deleted and hasattr(model, "deleted_at"):
        query = query.where(model.deleted_at.is_(None))
    if options:
        query = query.options(*options)

    result = await db.execute(query)
    instance = result.scalar_one_or_none()
    if instance is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=detail)
    return instance
