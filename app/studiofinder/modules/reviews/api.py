from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from app.studiofinder.db import db_session
from app.studiofinder.modules.reviews.service import (
    ReviewError,
    create_review,
    list_approved_reviews,
    rating_summary,
    serialize_review,
    validate_review_payload,
)
from app.studiofinder.modules.studios.models import StudioProfile
from app.studiofinder.rbac import require_api_login
from app.studiofinder.utils import json_error, json_payload, parse_int

bp = Blueprint("reviews_api", __name__)

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 50


@bp.get("/api/studios/<int:studio_id>/reviews")
def studio_reviews(studio_id: int):
    s = db_session()
    if s.get(StudioProfile, studio_id) is None:
        return json_error("Studio not found", 404)
    offset = max(parse_int(request.args.get("offset"), 0), 0)
    limit = min(max(parse_int(request.args.get("limit"), DEFAULT_PAGE_SIZE), 1), MAX_PAGE_SIZE)
    rows, total = list_approved_reviews(s, studio_id, offset=offset, limit=limit)
    return jsonify(
        {
            "reviews": [serialize_review(r) for r in rows],
            "summary": rating_summary(s, studio_id),
            "pagination": {"offset": offset, "limit": limit, "total": total, "has_more": total > offset + limit},
        }
    )


@bp.post("/api/studios/<int:studio_id>/reviews")
@require_api_login
def submit_review(studio_id: int):
    s = db_session()
    studio = s.get(StudioProfile, studio_id)
    if studio is None:
        return json_error("Studio not found", 404)
    payload = json_payload()
    errors = validate_review_payload(payload)
    if errors:
        return json_error("Validation failed", 400, details=errors)
    try:
        review = create_review(s, studio, g.current_user, payload)
    except ReviewError as e:
        s.rollback()
        return json_error(e.message, e.status)
    s.commit()
    return jsonify({"success": True, "review": {"id": review.id, "status": review.status}}), 201
