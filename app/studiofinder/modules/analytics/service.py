from __future__ import annotations

from datetime import date, datetime, time, timedelta
from typing import TYPE_CHECKING, Any

from sqlalchemy import func

from app.studiofinder.models import USER_STATUS_ACTIVE, USER_STATUS_EXPIRED, USER_STATUS_PENDING, User
from app.studiofinder.modules.error_log.models import ERROR_UNRESOLVED, ErrorLogGroup
from app.studiofinder.modules.memberships.models import Payment, Refund, PAYMENT_PARTIALLY_REFUNDED, PAYMENT_REFUNDED, PAYMENT_SUCCEEDED
from app.studiofinder.modules.reviews.models import REVIEW_PENDING, Review
from app.studiofinder.modules.studios.models import STUDIO_STATUSES, StudioProfile
from app.studiofinder.modules.support.models import TICKET_IN_PROGRESS, TICKET_OPEN, SupportTicket

if TYPE_CHECKING:
    from sqlalchemy.orm import Session


REVENUE_DAYS = 30
SIGNUP_DAYS = 14


def _counts_by(s: "Session", column, keys) -> dict[str, int]:
    rows = s.query(column, func.count()).group_by(column).all()
    counts = {k: 0 for k in keys}
    for key, n in rows:
        counts[key] = int(n)
    return counts


def revenue_since(s: "Session", since: datetime) -> dict[str, int]:
    """Pence. Gross counts every captured payment; refunds are netted off by refund date."""
    gross = (
        s.query(func.coalesce(func.sum(Payment.amount), 0))
        .filter(
            Payment.status.in_([PAYMENT_SUCCEEDED, PAYMENT_REFUNDED, PAYMENT_PARTIALLY_REFUNDED]),
            Payment.created_at >= since,
        )
        .scalar()
    )
    refunded = s.query(func.coalesce(func.sum(Refund.amount), 0)).filter(Refund.created_at >= since).scalar()
    gross = int(gross or 0)
    refunded = int(refunded or 0)
    return {"gross": gross, "refunded": refunded, "net": gross - refunded}


def signups_per_day(s: "Session", *, days: int = SIGNUP_DAYS, today: date | None = None) -> list[dict[str, Any]]:
    """Oldest first; days without signups are zero."""
    today = today or datetime.utcnow().date()
    start = today - timedelta(days=days - 1)
    created = (
        s.query(User.created_at)
        .filter(User.created_at >= datetime.combine(start, time.min))
        .all()
    )
    buckets = {start + timedelta(days=i): 0 for i in range(days)}
    for (ts,) in created:
        d = ts.date()
        if d in buckets:
            buckets[d] += 1
    return [{"date": d.isoformat(), "count": n} for d, n in sorted(buckets.items())]


def dashboard_stats(s: "Session", *, now: datetime | None = None) -> dict[str, Any]:
    now = now or datetime.utcnow()
    users = _counts_by(s, User.status, (USER_STATUS_PENDING, USER_STATUS_ACTIVE, USER_STATUS_EXPIRED))
    studios = _counts_by(s, StudioProfile.status, STUDIO_STATUSES)
    featured = (
        s.query(func.count(StudioProfile.id))
        .filter(StudioProfile.is_featured.is_(True))
        .filter((StudioProfile.featured_until.is_(None)) | (StudioProfile.featured_until > now))
        .scalar()
    )
    verified = s.query(func.count(StudioProfile.id)).filter(StudioProfile.is_verified.is_(True)).scalar()
    return {
        "users": {**users, "total": sum(users.values())},
        "studios": {**studios, "total": sum(studios.values()), "featured": int(featured or 0), "verified": int(verified or 0)},
        "revenue_30d": revenue_since(s, now - timedelta(days=REVENUE_DAYS)),
        "signups": signups_per_day(s, today=now.date()),
        "pending_reviews": s.query(func.count(Review.id)).filter(Review.status == REVIEW_PENDING).scalar() or 0,
        "open_tickets": (
            s.query(func.count(SupportTicket.id))
            .filter(SupportTicket.status.in_([TICKET_OPEN, TICKET_IN_PROGRESS]))
            .scalar()
            or 0
        ),
        "unresolved_errors": (
            s.query(func.count(ErrorLogGroup.id)).filter(ErrorLogGroup.status == ERROR_UNRESOLVED).scalar() or 0
        ),
    }
