from __future__ import annotations

from flask import Blueprint, abort, flash, g, redirect, render_template, request, url_for

from app.studiofinder.db import db_session
from app.studiofinder.models import User
from app.studiofinder.modules.reviews.models import REVIEW_PENDING, REVIEW_STATUSES, Review
from app.studiofinder.modules.reviews.service import ReviewError, moderate_review
from app.studiofinder.modules.studios.models import StudioProfile
from app.studiofinder.rbac import require_permission

bp = Blueprint("reviews_admin", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


@bp.get("/reviews")
@require_permission("reviews.moderate")
def reviews_list():
    s = db_session()
    status_filter = (request.args.get("status") or REVIEW_PENDING).strip().upper()
    search = (request.args.get("q") or "").strip()

    q = s.query(Review).join(StudioProfile, StudioProfile.id == Review.studio_id)
    if status_filter in REVIEW_STATUSES:
        q = q.filter(Review.status == status_filter)
    if search:
        like = f"%{search}%"
        q = q.filter((Review.content.ilike(like)) | (StudioProfile.name.ilike(like)))

    reviews = q.order_by(Review.created_at.desc()).limit(200).all()
    return render_template(
        "admin/reviews/list.html",
        reviews=reviews,
        statuses=REVIEW_STATUSES,
        status_filter=status_filter,
        search=search,
    )


@bp.post("/reviews/<int:review_id>/moderate")
@require_permission("reviews.moderate")
def reviews_moderate(review_id: int):
    s = db_session()
    u = _current_user()
    review = s.get(Review, review_id)
    if not review:
        abort(404)
    action = (request.form.get("action") or "").strip().lower()
    reason = (request.form.get("reason") or "").strip() or None
    try:
        moderate_review(s, review, action, u, reason)
    except ReviewError as e:
        flash(e.message, "danger")
        return redirect(url_for("reviews_admin.reviews_list"))
    s.commit()
    flash(f"Review #{review.id} is now {review.status.lower()}.", "success")
    return redirect(url_for("reviews_admin.reviews_list", status=request.form.get("return_status") or REVIEW_PENDING))
