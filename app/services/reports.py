"""
Compliance report builders.

Each builder returns a JSON-serialisable dict; `render_report` turns it
into JSON, CSV or PDF.
"""

from datetime import timedelta
from typing import Any, Dict, List

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.utils import as_utc, utcnow
from app.models.complaint import Complaint, ComplaintStatus
from app.models.policy import Policy, PolicyStatus, Standard, policy_standard_mappings, sop_standard_mappings
from app.models.staff import Credential, CredentialStatus, PDItem, PDStatus
from app.models.user import User
from app.services import lifecycle
from app.services.export import build_pdf, csv_response, pdf_response
from app.services.feedback_analytics import feedback_insights

UPCOMING_WINDOW = timedelta(days=30)


def _percent(part: int, whole: int) -> int:
    return round(part / whole * 100) if whole else 0


async def compliance_gaps(db: AsyncSession) -> Dict[str, Any]:
    """Classify standards by whether a policy and an SOP map to them."""
    standards = (await db.execute(select(Standard).order_by(Standard.code))).scalars().all()

    policy_counts = dict((await db.execute(
        select(policy_standard_mappings.c.standard_id, func.count())
        .join(Policy, Policy.id == policy_standard_mappings.c.policy_id)
        .where(Policy.deleted_at.is_(None))
        .group_by(policy_standard_mappings.c.standard_id)
    )).all())
    sop_counts = dict((await db.execute(
        select(sop_standard_mappings.c.standard_id, func.count())
        .group_by(sop_standard_mappings.c.standard_id)
    )).all())

    rows = []
    for standard in standards:
        policies = policy_counts.get(standard.id, 0)
        sops = sop_counts.get(standard.id, 0)
        if policies and sops:
            coverage = "full"
        elif policies or sops:
            coverage = "partial"
        else:
            coverage = "gap"
        rows.append({
            "standard_id": standard.id,
            "code": standard.code,
            "title": standard.title,
            "category": standard.category,
            "policy_count": policies,
            "sop_count": sops,
            "coverage": coverage,
        })

    full = sum(1 for r in rows if r["coverage"] == "full")
    partial = sum(1 for r in rows if r["coverage"] == "partial")
    return {
        "summary": {
            "total_standards": len(rows),
            "fully_mapped": full,
            "partially_mapped": partial,
            "gaps": len(rows) - full - partial,
            "coverage_rate": _percent(full, len(rows)),
        },
        "standards": rows,
    }


async def audit_readiness(db: AsyncSession) -> Dict[str, Any]:
    """Snapshot of the figures an auditor asks for first."""
    now = utcnow()

    policies = (await db.execute(select(Policy).where(Policy.deleted_at.is_(None)))).scalars().all()
    by_status = {s.value: 0 for s in PolicyStatus}
    review_status = {"Overdue": 0, "DueSoon": 0, "Current": 0, "NotScheduled": 0}
    for policy in policies:
        by_status[policy.status.value] += 1
        if policy.status == PolicyStatus.PUBLISHED:
            review_status[lifecycle.policy_review_status(policy.review_date, now)] += 1
    published = by_status[PolicyStatus.PUBLISHED.value]

    credentials = (await db.execute(
        select(Credential).where(Credential.status != CredentialStatus.REVOKED)
    )).scalars().all()
    expired = sum(
        1 for c in credentials
        if lifecycle.credential_status(c.expires_at, c.status, now) == CredentialStatus.EXPIRED
    )
    expiring = sum(
        1 for c in credentials
        if lifecycle.credential_status(c.expires_at, c.status, now) == CredentialStatus.ACTIVE
        and lifecycle.credential_is_expiring_soon(c.expires_at, now)
    )

    pd_items = (await db.execute(select(PDItem))).scalars().all()
    pd_done = sum(1 for i in pd_items if i.status in (PDStatus.COMPLETED, PDStatus.VERIFIED))

    complaints = (await db.execute(
        select(Complaint).where(Complaint.status != ComplaintStatus.CLOSED)
    )).scalars().all()
    breaches = sum(
        1 for c in complaints
        if lifecycle.complaint_sla_breached(c.status, c.updated_at or c.submitted_at, now)
    )

    scores = {
        "policy_review_score": _percent(published - review_status["Overdue"], published),
        "credential_score": _percent(len(credentials) - expired, len(credentials)),
        "pd_score": _percent(pd_done, len(pd_items)),
        "complaint_sla_score": _percent(len(complaints) - breaches, len(complaints)) if complaints else 100,
    }
    overall = round(sum(scores.values()) / len(scores))

    return {
        "summary": {
            "readiness_score": overall,
            **scores,
        },
        "policies": {
            "by_status": by_status,
            "reviews_overdue": review_status["Overdue"],
            "reviews_due_soon": review_status["DueSoon"],
        },
        "credentials": {
            "total": len(credentials),
            "expired": expired,
            "expiring_soon": expiring,
        },
        "pd": {"total": len(pd_items), "completed": pd_done},
        "complaints": {"open": len(complaints), "sla_breaches": breaches},
    }


async def pd_completion(db: AsyncSession) -> Dict[str, Any]:
    now = utcnow()
    items = (await db.execute(select(PDItem))).scalars().all()
    users = {
        u.id: u for u in (await db.execute(
            select(User).where(User.deleted_at.is_(None))
        )).scalars().all()
    }

    per_user: Dict[int, Dict[str, Any]] = {}
    totals = {"completed": 0, "overdue": 0, "upcoming": 0}
    for item in items:
        status = lifecycle.pd_status(item.due_at, item.completed_at, item.status, now)
        done = status in (PDStatus.COMPLETED, PDStatus.VERIFIED)
        overdue = status == PDStatus.OVERDUE
        upcoming = (
            not done and item.due_at is not None
            and now <= as_utc(item.due_at) <= now + UPCOMING_WINDOW
        )

        user = users.get(item.user_id)
        row = per_user.setdefault(item.user_id, {
            "user_id": item.user_id,
            "full_name": user.full_name if user else None,
            "total": 0, "completed": 0, "overdue": 0, "upcoming": 0, "hours_completed": 0.0,
        })
        row["total"] += 1
        if done:
            row["completed"] += 1
            row["hours_completed"] += item.hours or 0
            totals["completed"] += 1
        if overdue:
            row["overdue"] += 1
            totals["overdue"] += 1
        if upcoming:
            row["upcoming"] += 1
            totals["upcoming"] += 1

    rows = sorted(per_user.values(), key=lambda r: (r["full_name"] or "", r["user_id"]))
    for row in rows:
        row["completion_rate"] = _percent(row["completed"], row["total"])

    return {
        "summary": {
            "total": len(items),
            **totals,
            "completion_rate": _percent(totals["completed"], len(items)),
        },
        "users": rows,
    }


async def feedback_summary(db: AsyncSession) -> Dict[str, Any]:
    return await feedback_insights(db)


# =============================================================================
# Rendering
# =============================================================================

def _table(rows: List[Dict[str, Any]], columns: List[str]) -> tuple[List[str], List[List[Any]]]:
    return columns, [[row.get(c) for c in columns] for row in rows]


REPORT_LAYOUTS = {
    "compliance-gaps": (
        "Compliance Gap Analysis",
        lambda d: [("Standards", *_table(
            d["standards"], ["code", "title", "category", "policy_count", "sop_count", "coverage"]
        ))],
    ),
    "audit-readiness": (
        "Audit Readiness Report",
        lambda d: [
            ("Policies by status", ["status", "count"], list(d["policies"]["by_status"].items())),
            ("Credentials", ["measure", "value"], list(d["credentials"].items())),
            ("Complaints", ["measure", "value"], list(d["complaints"].items())),
        ],
    ),
    "pd-completion": (
        "Professional Development Completion",
        lambda d: [("Staff", *_table(
            d["users"], ["full_name", "total", "completed", "overdue", "upcoming", "completion_rate"]
        ))],
    ),
    "feedback-summary": (
        "Feedback Summary",
        lambda d: [
            ("Top themes", *_table(d["top_themes"], ["theme", "count"])),
            ("By type", ["type", "count", "average_rating", "average_sentiment"], [
                [t, v["count"], v["average_rating"], v["average_sentiment"]]
                for t, v in d["by_type"].items()
            ]),
            ("Recommendations", ["recommendation"], [[r] for r in d["recommendations"]]),
        ],
    ),
}


def render_report(name: str, data: Dict[str, Any], fmt: str):
    """Return the report as a dict (json) or a download Response (csv, pdf)."""
    if fmt == "json":
        return data

    title, sections_for = REPORT_LAYOUTS[name]
    sections = sections_for(data)

    if fmt == "csv":
        # First section is the report's main table
        _, headers, rows = sections[0]
        return csv_response(headers, rows, name)

    summary = {k: v for k, v in data.get("summary", {}).items() if not isinstance(v, dict)}
    return pdf_response(build_pdf(title, summary, sections), name)
