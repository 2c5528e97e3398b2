"""
Inbound webhooks from form providers.

These routes are called by third parties, so they sit outside the CSRF
and JWT checks. JotForm requests are authenticated by an HMAC-SHA256
signature of the raw body when JOTFORM_WEBHOOK_SECRET is set.
"""

import json
import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Header, HTTPException, Request, Response, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.core.database import get_db
from app.core.utils import get_or_404
from app.models.audit import AuditAction
from app.models.webhook import WebhookSubmission
from app.auth.audit import log_action
from app.schemas.webhook import WebhookAcceptedResponse, WebhookSubmissionResponse
from app.services import jotform

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "/jotform",
    response_model=WebhookAcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def receive_jotform(
    request: Request,
    response: Response,
    background_tasks: BackgroundTasks,
    signature: Optional[str] = Header(None, alias="X-JotForm-Signature"),
    db: AsyncSession = Depends(get_db),
):
    """Store a JotForm submission and queue it for conversion to feedback."""
    body = await request.body()

    if jotform.signature_required():
        if not jotform.signature_is_valid(body, signature, config.JOTFORM_WEBHOOK_SECRET):
            logger.warning("Rejected JotForm webhook with invalid signature")
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook signature")
    else:
        logger.warning("JOTFORM_WEBHOOK_SECRET not set; accepting unsigned webhook")

    try:
        payload = json.loads(body)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Webhook body must be JSON")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Webhook body must be a JSON object")

    try:
        submission, created = await jotform.receive_submission(db, payload)
    except jotform.SubmissionRejected as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    if not created:
        response.status_code = status.HTTP_200_OK
        return WebhookAcceptedResponse(
            message="Submission already processed", id=submission.id, submission_id=submission.submission_id
        )

    await log_action(
        db, request, None, AuditAction.WEBHOOK_RECEIVED, "webhook_submission",
        resource_id=submission.id,
        resource_name=submission.submission_id,
        details={"source": submission.source, "form_id": submission.form_id, "form_type": submission.form_type},
    )
    try:
        await db.commit()
    except IntegrityError:
        # Concurrent redelivery of the same submission
        await db.rollback()
        response.status_code = status.HTTP_200_OK
        existing, _ = await jotform.receive_submission(db, payload)
        return WebhookAcceptedResponse(
            message="Submission already processed", id=existing.id, submission_id=existing.submission_id
        )

    background_tasks.add_task(jotform.process_submission, submission.id)
    logger.info("Queued JotForm submission %s (%s)", submission.submission_id, submission.form_type)
    return WebhookAcceptedResponse(
        message="Submission received and queued for processing",
        id=submission.id,
        submission_id=submission.submission_id,
    )


@router.get("/jotform/status/{submission_id}", response_model=WebhookSubmissionResponse)
async def jotform_status(
    submission_id: int,
    db: AsyncSession = Depends(get_db),
):
    """Processing state of a stored submission."""
    submission = await get_or_404(db, WebhookSubmission, submission_id, "Webhook submission not found")
    return WebhookSubmissionResponse.model_validate(submission)
