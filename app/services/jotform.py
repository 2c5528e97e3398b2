"""
JotForm webhook intake.

Submissions are stored first, then mapped to a Feedback row in the
background. Field roles are recognised by keywords in the question name,
so forms can be built without a fixed schema:

- form_type / feedback_type: learner, employer or industry
- rating / score: a 0-5 number
- comment / feedback / suggestion / review: free text
- trainer / instructor: a user ID or email (dropped when anonymous)
- course / training / product: course ID, matched to a training product code
- anonymous: yes / true / 1
"""

import asyncio
import hashlib
import hmac
import logging
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.core.database import async_session_maker
from app.core.utils import utcnow
from app.models.feedback import Feedback, FeedbackType
from app.models.training import TrainingProduct
from app.models.user import User
from app.models.webhook import WebhookStatus, WebhookSubmission

logger = logging.getLogger(__name__)

SOURCE = "jotform"
MAX_RETRIES = 3
RETRY_BASE_SECONDS = 1
TYPE_FIELDS = ("form_type", "feedback_type")
TRUTHY = {"yes", "true", "1"}


class SubmissionRejected(ValueError):
    """The submission can never become feedback; it is not retried."""


def signature_is_valid(body: bytes, signature: Optional[str], secret: str) -> bool:
    if not signature or not secret:
        return False
    expected = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature)


def _answers(payload: Dict[str, Any]):
    answers = payload.get("answers")
    if not isinstance(answers, dict):
        return
    for field in answers.values():
        if not isinstance(field, dict):
            continue
        name = str(field.get("name") or "").lower()
        answer = field.get("answer")
        yield name, "" if answer is None else str(answer).strip()


def detect_form_type(payload: Dict[str, Any]) -> str:
    """learner, employer, industry, sop or unknown."""
    for name, answer in _answers(payload):
        if any(key in name for key in TYPE_FIELDS):
            answer = answer.lower()
            if "learner" in answer or "student" in answer:
                return "learner"
            if "employer" in answer:
                return "employer"
            if "industry" in answer:
                return "industry"
            if "sop" in answer or "training" in answer:
                return "sop"

    title = str(payload.get("form_title") or "").lower()
    if "learner" in title or "student" in title:
        return "learner"
    if "employer" in title:
        return "employer"
    if "industry" in title:
        return "industry"
    if "sop" in title or "training completion" in title:
        return "sop"
    return "unknown"


def is_anonymous(payload: Dict[str, Any]) -> bool:
    return any("anonymous" in name and answer.lower() in TRUTHY for name, answer in _answers(payload))


def map_answers(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Pull rating, comments, trainer and course out of the answers."""
    anonymous = is_anonymous(payload)
    mapped: Dict[str, Any] = {"anonymous": anonymous}

    for name, answer in _answers(payload):
        if not answer or any(key in name for key in TYPE_FIELDS):
            continue
        if "rating" in name or "score" in name:
            try:
                rating = float(answer)
            except ValueError:
                rating = None
            if rating is not None and 0 <= rating <= 5:
                mapped["rating"] = rating
        elif any(key in name for key in ("comment", "feedback", "suggestion", "review")):
            mapped["comments"] = answer[:5000]
        elif "trainer" in name or "instructor" in name:
            if not anonymous:
                mapped["trainer"] = answer
        elif any(key in name for key in ("course", "training", "product")):
            mapped["course_id"] = answer[:100]
    return mapped


async def _resolve_trainer(db: AsyncSession, value: Optional[str]) -> Optional[int]:
    if not value:
        return None
    if value.isdigit():
        condition = User.id == int(value)
    else:
        condition = User.email == value.lower()
    result = await db.execute(select(User.id).where(condition, User.deleted_at.is_(None)))
    return result.scalar_one_or_none()


async def _resolve_product(db: AsyncSession, course_id: Optional[str]) -> Optional[int]:
    if not course_id:
        return None
    result = await db.execute(
        select(TrainingProduct.id).where(
            TrainingProduct.code == course_id.upper(), TrainingProduct.deleted_at.is_(None)
        )
    )
    return result.scalar_one_or_none()


async def create_feedback(db: AsyncSession, submission: WebhookSubmission) -> Feedback:
    try:
        feedback_type = FeedbackType(submission.form_type)
    except ValueError:
        raise SubmissionRejected(f"Form type '{submission.form_type}' does not map to feedback") from None

    mapped = map_answers(submission.payload)
    feedback = Feedback(
        type=feedback_type,
        anonymous=mapped["anonymous"],
        rating=mapped.get("rating"),
        comments=mapped.get("comments"),
        course_id=mapped.get("course_id"),
        trainer_id=await _resolve_trainer(db, mapped.get("trainer")),
        training_product_id=await _resolve_product(db, mapped.get("course_id")),
        themes=[],
        submitted_at=utcnow(),
    )
    db.add(feedback)
    await db.flush()
    return feedback


def retry_delay(attempt: int) -> float:
    return RETRY_BASE_SECONDS * 2 ** attempt


async def process_submission(submission_id: int) -> None:
    """
    Turn a stored submission into feedback.

    Database errors are retried up to MAX_RETRIES times with exponential
    backoff; rejected submissions fail at once.
    """
    for attempt in range(MAX_RETRIES + 1):
        async with async_session_maker() as db:
            submission = await db.get(WebhookSubmission, submission_id)
            if submission is None:
                logger.error("Webhook submission %s not found", submission_id)
                return
            submission.status = WebhookStatus.PROCESSING
            await db.commit()

            try:
                feedback = await create_feedback(db, submission)
                submission.feedback_id = feedback.id
                submission.status = WebhookStatus.COMPLETED
                submission.processed_at = utcnow()
                submission.processing_error = None
                await db.commit()
                logger.info("Webhook submission %s created feedback %s", submission_id, feedback.id)
                return
            except SubmissionRejected as e:
                error, retry = str(e), False
            except SQLAlchemyError as e:
                error, retry = f"Database error: {e.__class__.__name__}", attempt < MAX_RETRIES
                logger.exception("Webhook submission %s failed (attempt %d)", submission_id, attempt + 1)

            await db.rollback()
            submission = await db.get(WebhookSubmission, submission_id)
            submission.processing_error = error
            if retry:
                submission.retry_count = attempt + 1
                submission.status = WebhookStatus.PENDING
            else:
                submission.status = WebhookStatus.FAILED
            await db.commit()

        if not retry:
            logger.warning("Webhook submission %s failed: %s", submission_id, error)
            return
        await asyncio.sleep(retry_delay(attempt))


async def receive_submission(db: AsyncSession, payload: Dict[str, Any]) -> tuple[WebhookSubmission, bool]:
    """
    Store a submission. Returns (submission, created); a redelivered
    submission returns the existing row with created False.

    Raises SubmissionRejected when the payload has no submission ID.
    """
    submission_id = payload.get("submissionID") or payload.get("submission_id") or payload.get("id")
    if not submission_id:
        raise SubmissionRejected("Missing submission ID in webhook payload")
    form_id = payload.get("formID") or payload.get("form_id") or "unknown"

    result = await db.execute(
        select(WebhookSubmission).where(
            WebhookSubmission.source == SOURCE,
            WebhookSubmission.submission_id == str(submission_id),
        )
    )
    existing = result.scalar_one_or_none()
    if existing is not None:
        return existing, False

    submission = WebhookSubmission(
        source=SOURCE,
        form_id=str(form_id)[:100],
        submission_id=str(submission_id)[:100],
        form_type=detect_form_type(payload),
        payload=payload,
        status=WebhookStatus.PENDING,
    )
    db.add(submission)
    await db.flush()
    return submission, True


def signature_required() -> bool:
    return bool(config.JOTFORM_WEBHOOK_SECRET)
