from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import func

from app.studiofinder.audit import record_event
from app.studiofinder.modules.reviews.models import (
    REVIEW_APPROVED,
    REVIEW_HIDDEN,
    REVIEW_PENDING,
    REVIEW_REJECTED,
    Review,
)
from app.studiofinder.modules.studios.models import STUDIO_STATUS_ACTIVE
from app.studiofinder.security import strip_html

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.studiofinder.models import User
    from app.studiofinder.modules.studios.models import StudioProfile


CONTENT_MIN = 10
CONTENT_MAX = 2000

# admin action -> resulting status
MODERATION_ACTIONS = {
    "approve": REVIEW_APPROVED,
    "reject": REVIEW_REJECTED,
    "hide": REVIEW_HIDDEN,
}


class ReviewError(Exception):
    def __init__(self, message: str, status: int = 400):
        super().__init__(message)
        self.message = message
        self.status = status


def validate_review_payload(payload: dict) -> list[str]:
    errors: list[str] = []
    rating = payload.get("rating")
    if isinstance(rating, bool) or not isinstance(rating, (int, str)) or not str(rating).strip().isdigit():
        errors.append("Rating must be a whole number from 1 to 5")
    elif not 1 <= int(rating) <= 5:
        errors.append("Rating must be a whole number from 1 to 5")

    content = strip_html(payload.get("content"))
    if len(content) < CONTENT_MIN:
        errors.append(f"Review must be at least {CONTENT_MIN} characters")
    elif len(content) > CONTENT_MAX:
        errors.append(f"Review must be less than {CONTENT_MAX} characters")
    return errors


def create_review(s: "Session", studio: "StudioProfile", reviewer: "User", payload: dict) -> Review:
    """Payload must already be validated. New reviews wait for moderation."""
    if studio.status != STUDIO_STATUS_ACTIVE:
        raise ReviewError("This studio is not accepting reviews", 400)
    if studio.user_id == reviewer.id:
        raise ReviewError("You cannot review your own studio", 400)
    existing = (
        s.query(Review)
        .filter(Review.studio_id == studio.id, Review.reviewer_id == reviewer.id)
        .one_or_none()
    )
    if existing is not None:
        raise ReviewError("You have already reviewed this studio", 409)

    review = Review(
        studio_id=studio.id,
        reviewer_id=reviewer.id,
        owner_id=studio.user_id,
        rating=int(payload["rating"]),
        content=strip_html(payload.get("content")),
        status=REVIEW_PENDING,
    )
    s.add(review)
    s.flush()
    record_event(
        s,
        actor=reviewer,
        action="review.create",
        entity_type="Review",
        entity_id=str(review.id),
        metadata={"studio_id": studio.id, "rating": review.rating},
    )
    return review


def list_approved_reviews(s: "Session", studio_id: int, *, offset: int = 0, limit: int = 10) -> tuple[list[Review], int]:
    q = s.query(Review).filter(Review.studio_id == studio_id, Review.status == REVIEW_APPROVED)
    total = q.count()
    rows = q.order_by(Review.created_at.desc(), Review.id.desc()).offset(offset).limit(limit).all()
    return rows, total


def rating_summary(s: "Session", studio_id: int) -> dict[str, Any]:
    avg, count = (
        s.query(func.avg(Review.rating), func.count(Review.id))
        .filter(Review.studio_id == studio_id, Review.status == REVIEW_APPROVED)
        .one()
    )
    return {"average": round(float(avg), 1) if avg is not None else None, "count": int(count or 0)}


def serialize_review(review: Review) -> dict[str, Any]:
    reviewer = review.reviewer
    return {
        "id": review.id,
        "rating": review.rating,
        "content": review.content,
        "created_at": review.created_at.isoformat(),
        "reviewer": {
            "display_name": reviewer.display_name if reviewer else "Former member",
            "avatar_url": reviewer.avatar_url if reviewer else None,
        },
    }


def moderate_review(s: "Session", review: Review, action: str, admin: "User", reason: str | None = None) -> Review:
    if action not in MODERATION_ACTIONS:
        raise ReviewError(f"Unknown moderation action: {action}", 400)
    old = review.status
    review.status = MODERATION_ACTIONS[action]
    review.moderated_by_user_id = admin.id
    review.moderated_at = datetime.utcnow()
    review.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=admin,
        action=f"review.{action}",
        entity_type="Review",
        entity_id=str(review.id),
        reason=reason,
        metadata={"old_status": old, "new_status": review.status, "studio_id": review.studio_id},
    )
    return review
