from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify, request
from sqlalchemy import func

from app.studiofinder.db import db_session
from app.studiofinder.models import User
from app.studiofinder.modules.memberships.enforcement import enforce_studio_statuses
from app.studiofinder.modules.rate_limiting.service import CONTACT_STUDIO, rate_limited_response
from app.studiofinder.modules.reviews.service import list_approved_reviews, rating_summary, serialize_review
from app.studiofinder.modules.studios.completion import completion_for, get_completion_color
from app.studiofinder.modules.studios.contact import send_studio_enquiry, serialize_enquiry_target, validate_enquiry_payload
from app.studiofinder.modules.studios.models import STUDIO_STATUS_ACTIVE, StudioImage, StudioProfile
from app.studiofinder.modules.studios.search import parse_search_params, search_studios, serialize_search_card
from app.studiofinder.modules.studios.seo import build_profile_meta_title
from app.studiofinder.modules.studios.service import (
    add_studio_image,
    delete_studio_image,
    serialize_public_studio,
    update_owner_profile,
    validate_image_upload,
    validate_profile_payload,
)
from app.studiofinder.rbac import require_api_login
from app.studiofinder.storage import StorageError
from app.studiofinder.utils import json_error, json_payload

bp = Blueprint("studios_api", __name__)

PROFILE_REVIEW_LIMIT = 10


def find_public_studio(s, username: str) -> StudioProfile | None:
    """ACTIVE, visible studio by case-insensitive owner username."""
    return (
        s.query(StudioProfile)
        .join(User, User.id == StudioProfile.user_id)
        .filter(func.lower(User.username) == username.strip().lower())
        .filter(StudioProfile.status == STUDIO_STATUS_ACTIVE, StudioProfile.is_profile_visible.is_(True))
        .one_or_none()
    )


@bp.get("/api/studios/search")
def studios_search():
    s = db_session()
    # Lazy enforcement keeps lapsed memberships out of results between cron runs.
    try:
        enforce_studio_statuses(s, current_app.config.get("ADMIN_EMAILS") or [])
        s.commit()
    except Exception:
        s.rollback()
        current_app.logger.exception("Lazy studio enforcement failed; searching with current statuses")

    params = parse_search_params(request.args)
    result = search_studios(s, params, config=current_app.config)
    body = {
        "studios": [serialize_search_card(st) for st in result.studios],
        "pagination": {
            "offset": result.offset,
            "limit": result.limit,
            "total": result.total,
            "has_more": result.has_more,
        },
    }
    if result.search_coordinates:
        body["search_location"] = {
            "latitude": result.search_coordinates[0],
            "longitude": result.search_coordinates[1],
            "radius": result.search_radius,
        }
    return jsonify(body)


@bp.get("/api/studios/<username>")
def studio_profile(username: str):
    s = db_session()
    studio = find_public_studio(s, username)
    if studio is None:
        return json_error("Studio not found", 404)
    reviews, _total = list_approved_reviews(s, studio.id, limit=PROFILE_REVIEW_LIMIT)
    data = serialize_public_studio(studio, reviews=[serialize_review(r) for r in reviews])
    data["rating"] = rating_summary(s, studio.id)
    primary_type = studio.type_keys[0] if studio.type_keys else None
    data["meta_title"] = build_profile_meta_title(studio.name, primary_type, studio.city)
    return jsonify({"studio": data})


@bp.post("/api/contact/studio")
def contact_studio():
    payload = json_payload()
    studio_id = payload.get("studio_id")
    if not str(studio_id or "").isdigit():
        return json_error("Studio is required", 400)
    s = db_session()
    studio = (
        s.query(StudioProfile)
        .filter(StudioProfile.id == int(studio_id))
        .filter(StudioProfile.status == STUDIO_STATUS_ACTIVE, StudioProfile.is_profile_visible.is_(True))
        .one_or_none()
    )
    if studio is None:
        return json_error("Studio not found", 404)

    limited = rate_limited_response(s, CONTACT_STUDIO, payload.get("sender_email"))
    if limited is not None:
        return limited
    errors = validate_enquiry_payload(payload)
    if errors:
        return json_error(errors[0], 400, details=errors)

    message_id = send_studio_enquiry(s, studio, payload)
    s.commit()
    if message_id is None:
        return json_error("Failed to send message. Please try again later.", 500)
    return jsonify({"success": True, "message": "Message sent successfully", "studio": serialize_enquiry_target(studio)})


# ---------- Owner ----------
def _owner_studio(user: User) -> StudioProfile | None:
    return user.studio


@bp.get("/api/user/profile")
@require_api_login
def own_profile():
    user: User = g.current_user
    studio = _owner_studio(user)
    if studio is None:
        return json_error("No studio profile found", 404)
    data = serialize_public_studio(studio)
    # The owner sees their own contact details regardless of privacy flags.
    data.update(
        {
            "email": user.email,
            "phone": studio.phone,
            "full_address": studio.full_address,
            "latitude": studio.latitude,
            "longitude": studio.longitude,
            "status": studio.status,
            "show_email": studio.show_email,
            "show_phone": studio.show_phone,
            "show_address": studio.show_address,
            "show_directions": studio.show_directions,
            "show_exact_location": studio.show_exact_location,
            "show_rates": studio.show_rates,
            "rates": [studio.rate_tier_1, studio.rate_tier_2, studio.rate_tier_3],
        }
    )
    return jsonify({"studio": data})


@bp.put("/api/user/profile")
@require_api_login
def update_profile():
    s = db_session()
    user: User = g.current_user
    studio = _owner_studio(user)
    if studio is None:
        return json_error("No studio profile found", 404)
    payload = json_payload()
    errors = validate_profile_payload(payload, user.membership_tier)
    if errors:
        return json_error("Validation failed", 400, details=errors)
    changes = update_owner_profile(s, studio, payload, user)
    s.commit()
    return jsonify({"success": True, "updated_fields": sorted(changes), "completion": completion_for(user, studio).percentage})


@bp.post("/api/user/images")
@require_api_login
def upload_image():
    s = db_session()
    user: User = g.current_user
    studio = _owner_studio(user)
    if studio is None:
        return json_error("No studio profile found", 404)
    f = request.files.get("file")
    if not f or not f.filename:
        return json_error("No file uploaded", 400)
    data = f.read()
    content_type = (f.mimetype or "").lower()
    errors = validate_image_upload(studio, user.membership_tier, data, content_type)
    if errors:
        return json_error("Invalid image", 400, details=errors)
    try:
        image = add_studio_image(s, studio, data, f.filename, content_type, user, request.form.get("alt_text"))
    except StorageError as e:
        s.rollback()
        current_app.logger.error("Image upload failed for studio %s: %s", studio.id, e)
        return json_error("Image upload failed", 500)
    s.commit()
    return jsonify({"success": True, "image": {"id": image.id, "url": image.image_url, "sort_order": image.sort_order}}), 201


@bp.delete("/api/user/images/<int:image_id>")
@require_api_login
def delete_image(image_id: int):
    s = db_session()
    user: User = g.current_user
    image = s.get(StudioImage, image_id)
    if image is None or image.studio.user_id != user.id:
        return json_error("Image not found", 404)
    try:
        delete_studio_image(s, image, user)
    except StorageError as e:
        s.rollback()
        current_app.logger.error("Image delete failed (image_id=%s): %s", image_id, e)
        return json_error("Image delete failed", 500)
    s.commit()
    return jsonify({"success": True})


@bp.get("/api/user/completion")
@require_api_login
def profile_completion():
    user: User = g.current_user
    stats = completion_for(user, _owner_studio(user))
    return jsonify({**stats.to_dict(), "color": get_completion_color(stats.percentage)})
