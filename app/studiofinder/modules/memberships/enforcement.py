"""
Studio status enforcement: keeps studio_profiles.status and is_featured in line
with each owner's latest subscription. Run lazily before public search and
from the enforce-subscriptions cron.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Iterable

from sqlalchemy import func

from app.studiofinder.modules.studios.models import STUDIO_STATUS_ACTIVE, STUDIO_STATUS_INACTIVE, StudioProfile

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StudioSnapshot:
    studio_id: int
    status: str
    is_featured: bool
    featured_until: datetime | None
    owner_email: str
    latest_period_end: datetime | None


@dataclass(frozen=True)
class StatusDecision:
    studio_id: int
    current_status: str
    desired_status: str
    reason: str  # admin_override | legacy | expired | active


@dataclass(frozen=True)
class EnforcementDecision:
    studio_id: int
    status_update: str | None = None
    unfeature: bool = False


def compute_studio_status(snap: StudioSnapshot, now: datetime, admin_emails: Iterable[str]) -> StatusDecision:
    if snap.owner_email.strip().lower() in {e.lower() for e in admin_emails}:
        return StatusDecision(snap.studio_id, snap.status, STUDIO_STATUS_ACTIVE, "admin_override")
    if snap.latest_period_end is None:
        return StatusDecision(snap.studio_id, snap.status, STUDIO_STATUS_ACTIVE, "legacy")
    if snap.latest_period_end < now:
        return StatusDecision(snap.studio_id, snap.status, STUDIO_STATUS_INACTIVE, "expired")
    return StatusDecision(snap.studio_id, snap.status, STUDIO_STATUS_ACTIVE, "active")


def should_unfeature(snap: StudioSnapshot, now: datetime) -> bool:
    return bool(snap.is_featured and snap.featured_until and snap.featured_until < now)


def compute_enforcement_decisions(
    snapshots: Iterable[StudioSnapshot],
    *,
    now: datetime | None = None,
    admin_emails: Iterable[str] = (),
) -> list[EnforcementDecision]:
    """Only studios that need a change come back."""
    now = now or datetime.utcnow()
    admin_emails = list(admin_emails)
    out: list[EnforcementDecision] = []
    for snap in snapshots:
        status = compute_studio_status(snap, now, admin_emails)
        status_update = status.desired_status if status.desired_status != status.current_status else None
        unfeature = should_unfeature(snap, now)
        if status_update or unfeature:
            out.append(EnforcementDecision(studio_id=snap.studio_id, status_update=status_update, unfeature=unfeature))
    return out


def apply_enforcement_decisions(s: "Session", decisions: list[EnforcementDecision], *, now: datetime | None = None) -> dict[str, int]:
    now = now or datetime.utcnow()
    status_updates = 0
    unfeatured = 0
    for d in decisions:
        studio = s.get(StudioProfile, d.studio_id)
        if studio is None:
            continue
        if d.status_update:
            studio.status = d.status_update
            status_updates += 1
        if d.unfeature:
            studio.is_featured = False
            unfeatured += 1
        studio.updated_at = now
    return {"status_updates": status_updates, "unfeatured_updates": unfeatured}


def load_snapshots(s: "Session", *, studio_ids: list[int] | None = None) -> list[StudioSnapshot]:
    from app.studiofinder.models import USER_STATUS_ACTIVE, User
    from app.studiofinder.modules.memberships.models import Subscription

    # Latest subscription per user = highest id.
    latest = (
        s.query(Subscription.user_id.label("user_id"), func.max(Subscription.id).label("sub_id"))
        .group_by(Subscription.user_id)
        .subquery()
    )
    q = (
        s.query(StudioProfile, User.email, Subscription.current_period_end)
        .join(User, User.id == StudioProfile.user_id)
        .outerjoin(latest, latest.c.user_id == StudioProfile.user_id)
        .outerjoin(Subscription, Subscription.id == latest.c.sub_id)
        .filter(User.status == USER_STATUS_ACTIVE)
    )
    if studio_ids is not None:
        q = q.filter(StudioProfile.id.in_(studio_ids))
    return [
        StudioSnapshot(
            studio_id=studio.id,
            status=studio.status,
            is_featured=studio.is_featured,
            featured_until=studio.featured_until,
            owner_email=email,
            latest_period_end=period_end,
        )
        for studio, email, period_end in q.all()
    ]


def enforce_studio_statuses(s: "Session", admin_emails: Iterable[str], *, now: datetime | None = None) -> dict[str, int]:
    now = now or datetime.utcnow()
    decisions = compute_enforcement_decisions(load_snapshots(s), now=now, admin_emails=admin_emails)
    result = apply_enforcement_decisions(s, decisions, now=now)
    if decisions:
        logger.info("Enforcement applied: %s", result)
    return result
