"""
Complaints register.

Every status change appends a note to the complaint's timeline. A
complaint breaches SLA when it sits open for more than two business
days without a status change.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status, Query, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.utils import apply_filter, apply_search_filter, count_of, get_or_404, paginate, parse_sort, utcnow
from app.models.audit import AuditAction
from app.models.complaint import Complaint, ComplaintNote, ComplaintSource, ComplaintStatus
from app.models.user import User
from app.auth.audit import log_action
from app.auth.dependencies import require_permission
from app.schemas.common import PaginatedResponse, UTCDateTime, DEFAULT_PER_PAGE, MAX_PER_PAGE
from app.schemas.complaint import (
    ComplaintCreate, ComplaintUpdate, ComplaintCloseRequest, ComplaintEscalateRequest,
    ComplaintNoteCreate, ComplaintNoteResponse, ComplaintResponse, ComplaintDetailResponse,
    complaint_to_response, complaint_to_detail,
)
from app.services.lifecycle import sla_cutoff
from app.services.notifications import send_complaint_notification

router = APIRouter()

SORTABLE = {
    "submitted_at": Complaint.submitted_at,
    "updated_at": Complaint.updated_at,
    "status": Complaint.status,
    "source": Complaint.source,
}


def _ensure_open(complaint: Complaint) -> None:
    if complaint.status == ComplaintStatus.CLOSED:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Complaint is already closed")


def _add_note(complaint: Complaint, user: User, notes: Optional[str]) -> ComplaintNote:
    note = ComplaintNote(status=complaint.status, notes=notes, created_by_id=user.id)
    complaint.notes.append(note)
    return note


@router.get("", response_model=PaginatedResponse[ComplaintResponse])
async def list_complaints(
    page: int = Query(1, ge=1),
    per_page: int = Query(DEFAULT_PER_PAGE, ge=1, le=MAX_PER_PAGE),
    status_filter: Optional[ComplaintStatus] = Query(None, alias="status"),
    source: Optional[ComplaintSource] = None,
    trainer_id: Optional[int] = None,
    training_product_id: Optional[int] = None,
    submitted_from: Optional[UTCDateTime] = None,
    submitted_to: Optional[UTCDateTime] = None,
    sla_breach: Optional[bool] = None,
    q: Optional[str] = Query(None, max_length=100),
    sort: Optional[str] = None,
    current_user: User = Depends(require_permission("complaints.read")),
    db: AsyncSession = Depends(get_db),
):
    order_by = parse_sort(sort, SORTABLE, [Complaint.submitted_at.desc()])
    query, count_query = select(Complaint), count_of(Complaint)

    conditions = []
    if status_filter:
        conditions.append(Complaint.status == status_filter)
    if source:
        conditions.append(Complaint.source == source)
    if trainer_id is not None:
        conditions.append(Complaint.trainer_id == trainer_id)
    if training_product_id is not None:
        conditions.append(Complaint.training_product_id == training_product_id)
    if submitted_from:
        conditions.append(Complaint.submitted_at >= submitted_from)
    if submitted_to:
        conditions.append(Complaint.submitted_at <= submitted_to)
    if sla_breach is not None:
        breached = (Complaint.status != ComplaintStatus.CLOSED) & (Complaint.updated_at < sla_cutoff())
        conditions.append(breached if sla_breach else ~breached)
    for condition in conditions:
        query, count_query = apply_filter(query, count_query, condition)
    query, count_query = apply_search_filter(
        query, count_query, q, Complaint.description, Complaint.student_id, Complaint.course_id,
    )

    items, total = await paginate(db, query, count_query, page, per_page, order_by)
    return PaginatedResponse.create(
        items=[complaint_to_response(c) for c in items],
        total=total,
        page=page,
        per_page=per_page,
    )


@router.post("", response_model=ComplaintDetailResponse, status_code=status.HTTP_201_CREATED)
async def create_complaint(
    request: Request,
    data: ComplaintCreate,
    current_user: User = Depends(require_permission("complaints.create")),
    db: AsyncSession = Depends(get_db),
):
    """Register a complaint and alert the compliance admins."""
    complaint = Complaint(
        **data.model_dump(exclude={"submitted_at"}),
        submitted_at=data.submitted_at or utcnow(),
        status=ComplaintStatus.NEW,
        notes=[],
    )
    db.add(complaint)
    _add_note(complaint, current_user, "Complaint submitted")
    await db.flush()

    await log_action(
        db, request, current_user, AuditAction.CREATE, "complaint",
        resource_id=complaint.id,
        details={"source": complaint.source.value},
    )
    await db.commit()

    await send_complaint_notification(db, complaint)
    return complaint_to_detail(complaint)


@router.get("/{complaint_id}", response_model=ComplaintDetailResponse)
async def get_complaint(
    complaint_id: int,
    current_user: User = Depends(require_permission("complaints.read")),
    db: AsyncSession = Depends(get_db),
):
    return complaint_to_detail(await get_or_404(db, Complaint, complaint_id, "Complaint not found"))


@router.patch("/{complaint_id}", response_model=ComplaintDetailResponse)
async def update_complaint(
    request: Request,
    complaint_id: int,
    data: ComplaintUpdate,
    current_user: User = Depends(require_permission("complaints.update")),
    db: AsyncSession = Depends(get_db),
):
    complaint = await get_or_404(db, Complaint, complaint_id, "Complaint not found")
    changes = data.model_dump(exclude_unset=True, exclude={"notes"})

    new_status = changes.pop("status", None)
    if new_status == ComplaintStatus.CLOSED:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Use POST /complaints/{id}/close to close a complaint",
        )
    if new_status is not None and new_status != complaint.status:
        _ensure_open(complaint)

    for field, value in changes.items():
        setattr(complaint, field, value)

    if new_status is not None and new_status != complaint.status:
        previous = complaint.status
        complaint.status = new_status
        complaint.updated_at = utcnow()
        _add_note(complaint, current_user, data.notes or f"Status changed from {previous.value} to {new_status.value}")

    await log_action(
        db, request, current_user, AuditAction.UPDATE, "complaint",
        resource_id=complaint.id,
        details={"changes": data.model_dump(exclude_unset=True, mode="json")},
    )
    await db.commit()
    return complaint_to_detail(complaint)


@router.post("/{complaint_id}/close", response_model=ComplaintDetailResponse)
async def close_complaint(
    request: Request,
    complaint_id: int,
    data: ComplaintCloseRequest,
    current_user: User = Depends(require_permission("complaints.update")),
    db: AsyncSession = Depends(get_db),
):
    """Close with a root cause and corrective action, both required."""
    complaint = await get_or_404(db, Complaint, complaint_id, "Complaint not found")
    _ensure_open(complaint)

    complaint.root_cause = data.root_cause
    complaint.corrective_action = data.corrective_action
    complaint.status = ComplaintStatus.CLOSED
    complaint.closed_at = utcnow()
    _add_note(complaint, current_user, data.notes or "Complaint closed")

    await log_action(
        db, request, current_user, AuditAction.CLOSE, "complaint",
        resource_id=complaint.id,
        details={"status": ComplaintStatus.CLOSED.value},
    )
    await db.commit()
    return complaint_to_detail(complaint)


@router.post("/{complaint_id}/escalate", response_model=ComplaintDetailResponse)
async def escalate_complaint(
    request: Request,
    complaint_id: int,
    data: ComplaintEscalateRequest,
    current_user: User = Depends(require_permission("complaints.update")),
    db: AsyncSession = Depends(get_db),
):
    complaint = await get_or_404(db, Complaint, complaint_id, "Complaint not found")
    _ensure_open(complaint)
    if complaint.status == ComplaintStatus.ESCALATED:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Complaint is already escalated")

    complaint.status = ComplaintStatus.ESCALATED
    complaint.updated_at = utcnow()
    _add_note(complaint, current_user, data.notes or "Complaint escalated")

    await log_action(
        db, request, current_user, AuditAction.ESCALATE, "complaint",
        resource_id=complaint.id,
        details={"status": ComplaintStatus.ESCALATED.value},
    )
    await db.commit()
    return complaint_to_detail(complaint)


@router.get("/{complaint_id}/timeline", response_model=List[ComplaintNoteResponse])
async def get_timeline(
    complaint_id: int,
    current_user: User = Depends(require_permission("complaints.read")),
    db: AsyncSession = Depends(get_db),
):
    complaint = await get_or_404(db, Complaint, complaint_id, "Complaint not found")
    return [ComplaintNoteResponse.model_validate(n) for n in complaint.notes]


@router.post("/{complaint_id}/notes", response_model=ComplaintNoteResponse, status_code=status.HTTP_201_CREATED)
async def add_note(
    request: Request,
    complaint_id: int,
    data: ComplaintNoteCreate,
    current_user: User = Depends(require_permission("complaints.update")),
    db: AsyncSession = Depends(get_db),
):
    """Add a note without changing status."""
    complaint = await get_or_404(db, Complaint, complaint_id, "Complaint not found")
    note = _add_note(complaint, current_user, data.notes)
    await db.flush()

    await log_action(
        db, request, current_user, AuditAction.UPDATE, "complaint",
        resource_id=complaint.id,
        details={"note_id": note.id},
    )
    await db.commit()
    return ComplaintNoteResponse.model_validate(note)
