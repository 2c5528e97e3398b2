"""
Learner, employer and industry feedback endpoints.

Sentiment and themes are supplied with the feedback; the analytics
endpoints aggregate them.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, status, Query, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.utils import apply_filter, count_of, get_or_404, paginate, parse_sort, utcnow
from app.models.audit import AuditAction
from app.models.feedback import Feedback, FeedbackType
from app.models.user import User
from app.auth.audit import log_action
from app.auth.dependencies import require_permission
from app.schemas.common import PaginatedResponse, UTCDateTime, DEFAULT_PER_PAGE, MAX_PER_PAGE
from app.schemas.feedback import FeedbackCreate, FeedbackUpdate, FeedbackResponse
from app.services import feedback_analytics
from app.services.export import csv_response

router = APIRouter()

SORTABLE = {
    "submitted_at": Feedback.submitted_at,
    "rating": Feedback.rating,
    "sentiment": Feedback.sentiment,
    "type": Feedback.type,
}

EXPORT_HEADERS = [
    "id", "type", "training_product_id", "trainer_id", "course_id",
    "rating", "sentiment", "themes", "anonymous", "comments", "submitted_at",
]


def _filtered(
    query,
    count_query,
    feedback_type: Optional[FeedbackType],
    training_product_id: Optional[int],
    trainer_id: Optional[int],
    course_id: Optional[str],
    min_rating: Optional[float],
    date_from,
    date_to,
):
    conditions = [Feedback.deleted_at.is_(None)]
    if feedback_type:
        conditions.append(Feedback.type == feedback_type)
    if training_product_id is not None:
        conditions.append(Feedback.training_product_id == training_product_id)
    if trainer_id is not None:
        conditions.append(Feedback.trainer_id == trainer_id)
    if course_id:
        conditions.append(Feedback.course_id == course_id)
    if min_rating is not None:
        conditions.append(Feedback.rating >= min_rating)
    if date_from:
        conditions.append(Feedback.submitted_at >= date_from)
    if date_to:
        conditions.append(Feedback.submitted_at <= date_to)
    for condition in conditions:
        query, count_query = apply_filter(query, count_query, condition)
    return query, count_query


@router.get("", response_model=PaginatedResponse[FeedbackResponse])
async def list_feedback(
    page: int = Query(1, ge=1),
    per_page: int = Query(DEFAULT_PER_PAGE, ge=1, le=MAX_PER_PAGE),
    type_filter: Optional[FeedbackType] = Query(None, alias="type"),
    training_product_id: Optional[int] = None,
    trainer_id: Optional[int] = None,
    course_id: Optional[str] = None,
    min_rating: Optional[float] = Query(None, ge=0, le=5),
    date_from: Optional[UTCDateTime] = None,
    date_to: Optional[UTCDateTime] = None,
    sort: Optional[str] = None,
    current_user: User = Depends(require_permission("feedback.read")),
    db: AsyncSession = Depends(get_db),
):
    order_by = parse_sort(sort, SORTABLE, [Feedback.submitted_at.desc()])
    query, count_query = _filtered(
        select(Feedback), count_of(Feedback),
        type_filter, training_product_id, trainer_id, course_id, min_rating, date_from, date_to,
    )
    items, total = await paginate(db, query, count_query, page, per_page, order_by)
    return PaginatedResponse.create(
        items=[FeedbackResponse.model_validate(f) for f in items],
        total=total,
        page=page,
        per_page=per_page,
    )


@router.post("", response_model=FeedbackResponse, status_code=status.HTTP_201_CREATED)
async def create_feedback(
    request: Request,
    data: FeedbackCreate,
    current_user: User = Depends(require_permission("feedback.create")),
    db: AsyncSession = Depends(get_db),
):
    feedback = Feedback(**data.model_dump(exclude={"submitted_at"}), submitted_at=data.submitted_at or utcnow())
    db.add(feedback)
    await db.flush()

    await log_action(
        db, request, current_user, AuditAction.CREATE, "feedback",
        resource_id=feedback.id,
        details={"type": feedback.type.value, "rating": feedback.rating},
    )
    await db.commit()
    return FeedbackResponse.model_validate(feedback)


@router.get("/insights")
async def get_feedback_insights(
    date_from: Optional[UTCDateTime] = None,
    date_to: Optional[UTCDateTime] = None,
    type_filter: Optional[FeedbackType] = Query(None, alias="type"),
    training_product_id: Optional[int] = None,
    trainer_id: Optional[int] = None,
    current_user: User = Depends(require_permission("feedback.read")),
    db: AsyncSession = Depends(get_db),
):
    """Summary, 30-day trend, top themes and recommendations (default window: 90 days)."""
    return await feedback_analytics.feedback_insights(
        db,
        date_from=date_from,
        date_to=date_to,
        feedback_type=type_filter,
        training_product_id=training_product_id,
        trainer_id=trainer_id,
    )


@router.get("/trends")
async def get_feedback_trends(
    months: int = Query(6, ge=1, le=24),
    current_user: User = Depends(require_permission("feedback.read")),
    db: AsyncSession = Depends(get_db),
) -> List[dict]:
    return await feedback_analytics.feedback_trends(db, months)


@router.get("/emerging-themes")
async def get_emerging_themes(
    current_user: User = Depends(require_permission("feedback.read")),
    db: AsyncSession = Depends(get_db),
) -> List[dict]:
    return await feedback_analytics.emerging_themes(db)


@router.get("/export")
async def export_feedback(
    request: Request,
    type_filter: Optional[FeedbackType] = Query(None, alias="type"),
    training_product_id: Optional[int] = None,
    trainer_id: Optional[int] = None,
    course_id: Optional[str] = None,
    min_rating: Optional[float] = Query(None, ge=0, le=5),
    date_from: Optional[UTCDateTime] = None,
    date_to: Optional[UTCDateTime] = None,
    current_user: User = Depends(require_permission("feedback.read")),
    db: AsyncSession = Depends(get_db),
):
    """CSV download of the filtered feedback."""
    query, _ = _filtered(
        select(Feedback), count_of(Feedback),
        type_filter, training_product_id, trainer_id, course_id, min_rating, date_from, date_to,
    )
    result = await db.execute(query.order_by(Feedback.submitted_at.desc()))
    rows = [
        [
            f.id, f.type.value, f.training_product_id, f.trainer_id, f.course_id,
            f.rating, f.sentiment, "; ".join(f.themes or []), f.anonymous, f.comments,
            f.submitted_at.isoformat(),
        ]
        for f in result.scalars().all()
    ]

    await log_action(
        db, request, current_user, AuditAction.EXPORT, "feedback",
        details={"rows": len(rows)},
    )
    await db.commit()
    return csv_response(EXPORT_HEADERS, rows, "feedback")


@router.get("/{feedback_id}", response_model=FeedbackResponse)
async def get_feedback(
    feedback_id: int,
    current_user: User = Depends(require_permission("feedback.read")),
    db: AsyncSession = Depends(get_db),
):
    return FeedbackResponse.model_validate(await get_or_404(db, Feedback, feedback_id, "Feedback not found"))


@router.patch("/{feedback_id}", response_model=FeedbackResponse)
async def update_feedback(
    request: Request,
    feedback_id: int,
    data: FeedbackUpdate,
    current_user: User = Depends(require_permission("feedback.update")),
    db: AsyncSession = Depends(get_db),
):
    feedback = await get_or_404(db, Feedback, feedback_id, "Feedback not found")
    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(feedback, field, value)

    await log_action(
        db, request, current_user, AuditAction.UPDATE, "feedback",
        resource_id=feedback.id,
        details={"changes": data.model_dump(exclude_unset=True, mode="json")},
    )
    await db.commit()
    return FeedbackResponse.model_validate(feedback)


@router.delete("/{feedback_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_feedback(
    request: Request,
    feedback_id: int,
    current_user: User = Depends(require_permission("feedback.delete")),
    db: AsyncSession = Depends(get_db),
):
    feedback = await get_or_404(db, Feedback, feedback_id, "Feedback not found")
    feedback.deleted_at = utcnow()

    await log_action(
        db, request, current_user, AuditAction.DELETE, "feedback", resource_id=feedback.id,
    )
    await db.commit()
