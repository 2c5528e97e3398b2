"""
Rule-based feedback analytics: insights, monthly trends and emerging themes.
"""

from collections import Counter
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.utils import as_utc, utcnow
from app.models.feedback import Feedback, FeedbackType

DEFAULT_WINDOW_DAYS = 90
TREND_PERIOD = timedelta(days=30)
TREND_THRESHOLD_PERCENT = 5
TOP_THEME_COUNT = 5


def _mean(values: Iterable[Optional[float]]) -> Optional[float]:
    present = [v for v in values if v is not None]
    if not present:
        return None
    return sum(present) / len(present)


def _round(value: Optional[float], digits: int = 1) -> Optional[float]:
    return round(value, digits) if value is not None else None


def top_themes(feedback: List[Feedback], limit: int = TOP_THEME_COUNT) -> List[Dict[str, Any]]:
    counts = Counter(theme for f in feedback for theme in (f.themes or []))
    return [{"theme": theme, "count": count} for theme, count in counts.most_common(limit)]


def trend_direction(recent: Optional[float], previous: Optional[float]) -> tuple[Optional[str], Optional[float]]:
    """Compare average ratings of two periods; None when either is missing."""
    if recent is None or previous is None or previous <= 0:
        return None, None
    change = (recent - previous) / previous * 100
    if change > TREND_THRESHOLD_PERCENT:
        direction = "improving"
    elif change < -TREND_THRESHOLD_PERCENT:
        direction = "declining"
    else:
        direction = "stable"
    return direction, round(change, 1)


def recommendations(
    average_rating: Optional[float],
    average_sentiment: Optional[float],
    trend: Optional[str],
    themes: List[Dict[str, Any]],
) -> List[str]:
    result = []
    if average_rating is not None:
        if average_rating < 3:
            result.append("Average rating is low. Consider immediate intervention and review of training delivery.")
        elif average_rating < 4:
            result.append("Average rating indicates room for improvement. Review feedback comments for specific issues.")
        elif average_rating >= 4.5:
            result.append("Excellent feedback! Document and share successful practices with the team.")

    if trend == "declining":
        result.append("Feedback trend is declining. Urgent review needed to identify and address issues.")
    elif trend == "improving":
        result.append("Positive trend detected. Continue current improvement initiatives.")

    if average_sentiment is not None:
        if average_sentiment < -0.3:
            result.append("Negative sentiment detected. Review comments for recurring concerns.")
        elif average_sentiment > 0.5:
            result.append("Positive sentiment indicates strong learner/stakeholder satisfaction.")

    if themes:
        result.append(f'Most mentioned topic: "{themes[0]["theme"]}". Focus improvement efforts here.')

    if not result:
        result.append("Continue monitoring feedback and maintain quality standards.")
    return result


async def load_feedback(
    db: AsyncSession,
    date_from: datetime,
    date_to: datetime,
    feedback_type: Optional[FeedbackType] = None,
    training_product_id: Optional[int] = None,
    trainer_id: Optional[int] = None,
) -> List[Feedback]:
    query = select(Feedback).where(
        Feedback.deleted_at.is_(None),
        Feedback.submitted_at >= date_from,
        Feedback.submitted_at <= date_to,
    )
    if feedback_type:
        query = query.where(Feedback.type == feedback_type)
    if training_product_id:
        query = query.where(Feedback.training_product_id == training_product_id)
    if trainer_id:
        query = query.where(Feedback.trainer_id == trainer_id)
    result = await db.execute(query.order_by(Feedback.submitted_at.desc()))
    return list(result.scalars().all())


async def feedback_insights(
    db: AsyncSession,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    **filters,
) -> Dict[str, Any]:
    """Aggregate insights over a window (default: the last 90 days)."""
    date_to = as_utc(date_to) or utcnow()
    date_from = as_utc(date_from) or date_to - timedelta(days=DEFAULT_WINDOW_DAYS)
    feedback = await load_feedback(db, date_from, date_to, **filters)

    average_rating = _mean(f.rating for f in feedback)
    average_sentiment = _mean(f.sentiment for f in feedback)
    themes = top_themes(feedback)

    recent_start = date_to - TREND_PERIOD
    previous_start = recent_start - TREND_PERIOD
    recent = [f for f in feedback if as_utc(f.submitted_at) >= recent_start]
    previous = [f for f in feedback if previous_start <= as_utc(f.submitted_at) < recent_start]
    recent_avg = _mean(f.rating for f in recent)
    previous_avg = _mean(f.rating for f in previous)
    direction, percentage = trend_direction(recent_avg, previous_avg)

    by_type = {}
    for feedback_type in FeedbackType:
        of_type = [f for f in feedback if f.type == feedback_type]
        by_type[feedback_type.value] = {
            "count": len(of_type),
            "average_rating": _round(_mean(f.rating for f in of_type)),
            "average_sentiment": _round(_mean(f.sentiment for f in of_type)),
        }

    return {
        "summary": {
            "total_count": len(feedback),
            "average_rating": _round(average_rating),
            "average_sentiment": _round(average_sentiment),
            "date_from": date_from.isoformat(),
            "date_to": date_to.isoformat(),
        },
        "trend": {
            "direction": direction,
            "percentage": percentage,
            "recent": {"count": len(recent), "average_rating": _round(recent_avg)},
            "previous": {"count": len(previous), "average_rating": _round(previous_avg)},
        },
        "top_themes": themes,
        "by_type": by_type,
        "recommendations": recommendations(average_rating, average_sentiment, direction, themes),
    }


def _month_start(value: datetime) -> datetime:
    return value.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def _shift_months(value: datetime, months: int) -> datetime:
    month_index = value.year * 12 + (value.month - 1) + months
    return value.replace(year=month_index // 12, month=month_index % 12 + 1)


async def feedback_trends(db: AsyncSession, months: int = 6) -> List[Dict[str, Any]]:
    """Monthly buckets, oldest first, including empty months."""
    now = utcnow()
    first = _shift_months(_month_start(now), -(months - 1))
    feedback = await load_feedback(db, first, now)

    buckets = []
    for offset in range(months):
        start = _shift_months(first, offset)
        end = _shift_months(start, 1)
        in_month = [f for f in feedback if start <= as_utc(f.submitted_at) < end]
        buckets.append({
            "month": start.strftime("%Y-%m"),
            "count": len(in_month),
            "average_rating": _round(_mean(f.rating for f in in_month)),
            "average_sentiment": _round(_mean(f.sentiment for f in in_month)),
        })
    return buckets


async def emerging_themes(db: AsyncSession) -> List[Dict[str, Any]]:
    """Themes mentioned more in the last 30 days than in the 30 before."""
    now = utcnow()
    recent_start = now - TREND_PERIOD
    previous_start = recent_start - TREND_PERIOD
    feedback = await load_feedback(db, previous_start, now)

    recent = Counter(
        theme for f in feedback if as_utc(f.submitted_at) >= recent_start for theme in (f.themes or [])
    )
    previous = Counter(
        theme for f in feedback if as_utc(f.submitted_at) < recent_start for theme in (f.themes or [])
    )

    emerging = []
    for theme, count in recent.items():
        before = previous.get(theme, 0)
        if count > before:
            emerging.append({
                "theme": theme,
                "recent_count": count,
                "previous_count": before,
                "change": count - before,
                "is_new": before == 0,
            })
    emerging.sort(key=lambda item: (-item["change"], item["theme"]))
    return emerging
