from __future__ import annotations

import hashlib
import re
import uuid
from datetime import date, datetime
from typing import TYPE_CHECKING, Any

from werkzeug.utils import secure_filename

from app.studiofinder.audit import record_event
from app.studiofinder.constants import CONNECTION_LABELS, SERVICES, SOCIAL_FIELDS, STUDIO_TYPES
from app.studiofinder.modules.memberships.tiers import enforce_studio_type_rules, get_tier_limits
from app.studiofinder.security import strip_html

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.studiofinder.models import User
    from app.studiofinder.modules.studios.models import StudioImage, StudioProfile


ALLOWED_IMAGE_TYPES = ("image/jpeg", "image/png", "image/webp")
MAX_IMAGE_BYTES = 5 * 1024 * 1024
SHORT_ABOUT_MAX = 140
STUDIO_NAME_MAX = 35
PHONE_RE = re.compile(r"^[0-9+()\-\s]{10,20}$")

_TEXT_FIELDS = ("short_about", "about", "equipment_list", "services_offered")
_PLAIN_FIELDS = (
    "location",
    "city",
    "full_address",
    "phone",
    "website_url",
    "rate_tier_1",
    "rate_tier_2",
    "rate_tier_3",
    *SOCIAL_FIELDS,
)
_FLAG_FIELDS = ("show_email", "show_phone", "show_address", "show_directions", "show_exact_location", "show_rates")


def _is_url(value: str) -> bool:
    return bool(re.match(r"^https?://[^\s/$.?#].[^\s]*$", value, re.IGNORECASE))


def validate_profile_payload(payload: dict, tier: str | None) -> list[str]:
    """Validate an owner profile update. Returns list of errors."""
    errors: list[str] = []
    limits = get_tier_limits(tier)

    if "name" in payload:
        name = strip_html(payload.get("name"))
        if len(name) < 2:
            errors.append("Studio name must be at least 2 characters")
        elif len(name) > STUDIO_NAME_MAX:
            errors.append(f"Studio name must be less than {STUDIO_NAME_MAX} characters")

    about = payload.get("about")
    if about is not None and len(strip_html(about)) > limits.about_max_chars:
        errors.append(f"About section must be less than {limits.about_max_chars} characters")

    short_about = payload.get("short_about")
    if short_about is not None and len(strip_html(short_about)) > SHORT_ABOUT_MAX:
        errors.append(f"Short about must be less than {SHORT_ABOUT_MAX} characters")

    phone = (payload.get("phone") or "").strip()
    if phone and not PHONE_RE.match(phone):
        errors.append("Phone number must be 10-20 digits")

    for f in ("website_url", *SOCIAL_FIELDS):
        v = (payload.get(f) or "").strip()
        if v and not _is_url(v):
            errors.append(f"{f} must be a valid URL")

    socials = [f for f in SOCIAL_FIELDS if (payload.get(f) or "").strip()]
    if limits.social_links_max is not None and len(socials) > limits.social_links_max:
        errors.append(f"Your membership allows up to {limits.social_links_max} social links")

    connections = [i for i in range(1, 13) if payload.get(f"connection{i}") == "1"]
    if len(connections) > limits.connections_max:
        errors.append(f"Your membership allows up to {limits.connections_max} connection methods")

    types = payload.get("studio_types")
    if types is not None:
        if not isinstance(types, list):
            errors.append("studio_types must be a list")
        else:
            unknown = [t for t in types if t not in STUDIO_TYPES]
            if unknown:
                errors.append(f"Unknown studio types: {', '.join(map(str, unknown))}")

    services = payload.get("services")
    if services is not None:
        if not isinstance(services, list):
            errors.append("services must be a list")
        elif any(sv not in SERVICES for sv in services):
            errors.append("Unknown service in services")
    return errors


def set_studio_types(s: "Session", studio: "StudioProfile", types: list[str]) -> None:
    from app.studiofinder.modules.studios.models import StudioType

    wanted = list(dict.fromkeys(types))
    for existing in list(studio.studio_types):
        if existing.studio_type not in wanted:
            studio.studio_types.remove(existing)
    have = {t.studio_type for t in studio.studio_types}
    for t in wanted:
        if t not in have:
            studio.studio_types.append(StudioType(studio_type=t))


def set_services(s: "Session", studio: "StudioProfile", services: list[str]) -> None:
    from app.studiofinder.modules.studios.models import StudioService

    wanted = list(dict.fromkeys(services))
    for existing in list(studio.services):
        if existing.service not in wanted:
            studio.services.remove(existing)
    have = {sv.service for sv in studio.services}
    for sv in wanted:
        if sv not in have:
            studio.services.append(StudioService(service=sv))


def create_studio_for_user(s: "Session", user: "User", *, status: str = "ACTIVE", name: str | None = None) -> "StudioProfile":
    """Idempotent: returns the user's existing studio when there is one."""
    from app.studiofinder.modules.studios.models import StudioProfile

    if user.studio is not None:
        return user.studio
    now = datetime.utcnow()
    studio = StudioProfile(
        user_id=user.id,
        name=(name or user.display_name or user.username)[:STUDIO_NAME_MAX],
        status=status,
        is_profile_visible=True,
        created_at=now,
        updated_at=now,
    )
    s.add(studio)
    user.studio = studio
    s.flush()
    return studio


def update_owner_profile(s: "Session", studio: "StudioProfile", payload: dict, user: "User") -> dict[str, Any]:
    """Apply an already-validated owner update, trimming to what the tier allows."""
    limits = get_tier_limits(user.membership_tier)
    changes: dict[str, Any] = {}

    def _set(field: str, value: Any) -> None:
        old = getattr(studio, field)
        if old != value:
            changes[field] = {"old": old, "new": value}
            setattr(studio, field, value)

    if "name" in payload:
        _set("name", strip_html(payload.get("name")))
    for f in _TEXT_FIELDS:
        if f in payload:
            _set(f, strip_html(payload.get(f)) or None)
    for f in _PLAIN_FIELDS:
        if f in payload:
            _set(f, (payload.get(f) or "").strip() or None)
    if "x_url" in payload:
        _set("twitter_url", (payload.get("x_url") or "").strip() or None)
    for f in _FLAG_FIELDS:
        if f in payload:
            _set(f, bool(payload.get(f)))
    if not limits.phone_visibility and studio.show_phone:
        _set("show_phone", False)
    if not limits.directions_visibility and studio.show_directions:
        _set("show_directions", False)
    for i in range(1, 13):
        key = f"connection{i}"
        if key in payload:
            _set(key, "1" if payload.get(key) == "1" else "0")
    if "custom_connection_methods" in payload:
        methods = payload.get("custom_connection_methods") or []
        cleaned = [strip_html(m) for m in methods if isinstance(m, str) and m.strip()]
        _set("custom_connection_methods", cleaned[: limits.custom_connections_max])

    if "studio_types" in payload:
        allowed = enforce_studio_type_rules(list(payload.get("studio_types") or []), user.membership_tier)
        before = studio.type_keys
        set_studio_types(s, studio, allowed)
        if sorted(before) != sorted(allowed):
            changes["studio_types"] = {"old": before, "new": allowed}
    if "services" in payload:
        before = studio.service_keys
        set_services(s, studio, list(payload.get("services") or []))
        if sorted(before) != sorted(studio.service_keys):
            changes["services"] = {"old": before, "new": studio.service_keys}

    if changes:
        studio.updated_at = datetime.utcnow()
        record_event(
            s,
            actor=user,
            action="studio.profile_update",
            entity_type="StudioProfile",
            entity_id=str(studio.id),
            metadata={"fields": sorted(changes)},
        )
    return changes


def _approximate(value: float | None) -> float | None:
    return round(value, 2) if value is not None else None


def serialize_public_studio(studio: "StudioProfile", *, reviews: list | None = None) -> dict[str, Any]:
    """Public JSON shape. Privacy flags decide which contact/location fields are exposed."""
    owner = studio.owner
    limits = get_tier_limits(owner.membership_tier)
    exact = bool(studio.show_exact_location)
    data: dict[str, Any] = {
        "id": studio.id,
        "username": owner.username,
        "display_name": owner.display_name,
        "avatar_url": owner.avatar_url,
        "name": studio.name,
        "short_about": studio.short_about,
        "about": studio.about,
        "city": studio.city,
        "location": studio.location,
        "website_url": studio.website_url,
        "studio_types": studio.type_keys,
        "services": studio.service_keys,
        "images": [{"id": i.id, "url": i.image_url, "alt_text": i.alt_text} for i in studio.images],
        "is_verified": studio.is_verified,
        "is_featured": studio.is_featured,
        "membership_tier": owner.membership_tier,
        "connections": [CONNECTION_LABELS[i] for i in range(1, 13) if getattr(studio, f"connection{i}") == "1"],
        "custom_connection_methods": studio.custom_connection_methods or [],
        "equipment_list": studio.equipment_list,
        "services_offered": studio.services_offered,
        "socials": {f: getattr(studio, f) for f in SOCIAL_FIELDS if getattr(studio, f)},
        "email": owner.email if studio.show_email else None,
        "phone": studio.phone if (studio.show_phone and limits.phone_visibility) else None,
        "full_address": studio.full_address if studio.show_address else None,
        "show_directions": bool(studio.show_directions and limits.directions_visibility),
        "latitude": studio.latitude if exact else _approximate(studio.latitude),
        "longitude": studio.longitude if exact else _approximate(studio.longitude),
        "location_is_approximate": not exact,
    }
    if studio.show_rates:
        data["rates"] = [r for r in (studio.rate_tier_1, studio.rate_tier_2, studio.rate_tier_3) if r]
    if reviews is not None:
        data["reviews"] = reviews
    return data


def build_image_storage_key(studio_id: int, filename: str, upload_date: date | None = None) -> str:
    if upload_date is None:
        upload_date = date.today()
    safe = secure_filename(filename) or "image.bin"
    return f"studios/{studio_id}/{upload_date.isoformat()}/{uuid.uuid4().hex[:8]}-{safe}"


def validate_image_upload(studio: "StudioProfile", tier: str | None, file_bytes: bytes, content_type: str) -> list[str]:
    errors: list[str] = []
    limits = get_tier_limits(tier)
    if content_type not in ALLOWED_IMAGE_TYPES:
        errors.append("Images must be JPEG, PNG or WebP")
    if not file_bytes:
        errors.append("Empty file")
    elif len(file_bytes) > MAX_IMAGE_BYTES:
        errors.append("Image too large (max 5MB)")
    if len(studio.images) >= limits.images_max:
        errors.append(f"Your membership allows up to {limits.images_max} images")
    return errors


def add_studio_image(
    s: "Session",
    studio: "StudioProfile",
    file_bytes: bytes,
    filename: str,
    content_type: str,
    user: "User",
    alt_text: str | None = None,
) -> "StudioImage":
    from flask import current_app
    from app.studiofinder.modules.studios.models import StudioImage
    from app.studiofinder.storage import storage_from_config

    storage = storage_from_config(current_app.config)
    key = build_image_storage_key(studio.id, filename)
    storage.put_bytes(key, file_bytes, content_type=content_type)

    image = StudioImage(
        studio_id=studio.id,
        storage_key=key,
        image_url=storage.public_url(key),
        alt_text=strip_html(alt_text) or None,
        sort_order=len(studio.images),
        content_type=content_type,
        sha256=hashlib.sha256(file_bytes).hexdigest(),
        size_bytes=len(file_bytes),
    )
    studio.images.append(image)
    s.flush()

    record_event(
        s,
        actor=user,
        action="studio.image_upload",
        entity_type="StudioImage",
        entity_id=str(image.id),
        metadata={"studio_id": studio.id, "size_bytes": image.size_bytes},
    )
    return image


def delete_studio_image(s: "Session", image: "StudioImage", user: "User") -> None:
    from flask import current_app
    from app.studiofinder.storage import storage_from_config

    studio = image.studio
    storage_from_config(current_app.config).delete(image.storage_key)
    studio.images.remove(image)
    for idx, img in enumerate(studio.images):
        img.sort_order = idx

    record_event(
        s,
        actor=user,
        action="studio.image_delete",
        entity_type="StudioImage",
        entity_id=str(image.id),
        metadata={"studio_id": studio.id},
    )


class StudioUpdateError(Exception):
    def __init__(self, message: str, status: int = 400):
        super().__init__(message)
        self.message = message
        self.status = status


def admin_update_studio(s: "Session", studio: "StudioProfile", body: dict, admin: "User", config: dict) -> dict[str, Any]:
    """
    Admin editor save. Maps the legacy editor body onto the owner and the
    studio, geocodes a changed address, and records one audit event.
    Raises StudioUpdateError for an unknown status or a taken username.
    """
    from sqlalchemy import func

    from app.studiofinder.models import User
    from app.studiofinder.modules.studios.field_mapping import (
        apply_updates,
        build_profile_update,
        build_studio_update,
        build_user_update,
    )
    from app.studiofinder.modules.studios.geocoding import maybe_geocode_studio_address
    from app.studiofinder.modules.studios.models import STUDIO_STATUSES

    owner = studio.owner
    user_updates = build_user_update(body)
    studio_updates = {**build_studio_update(body), **build_profile_update(body)}

    if "status" in studio_updates and studio_updates["status"] not in STUDIO_STATUSES:
        raise StudioUpdateError(f"Invalid status: {studio_updates['status']}", 400)

    new_username = user_updates.get("username")
    if new_username is not None:
        new_username = str(new_username).strip()
        if not new_username:
            raise StudioUpdateError("Username cannot be empty", 400)
        taken = (
            s.query(User.id)
            .filter(func.lower(User.username) == new_username.lower(), User.id != owner.id)
            .first()
        )
        if taken:
            raise StudioUpdateError("Username is already taken", 409)
        user_updates["username"] = new_username

    # Geocoder output wins over the raw coordinates in the body.
    studio_updates.update(maybe_geocode_studio_address(config, studio, body))

    now = datetime.utcnow()
    changes: dict[str, Any] = {}
    for field, change in apply_updates(owner, user_updates, now=now).items():
        changes[f"user.{field}"] = change
    changes.update(apply_updates(studio, studio_updates, now=now))

    if isinstance(body.get("studio_types"), list):
        wanted = [t for t in body["studio_types"] if t in STUDIO_TYPES]
        before = studio.type_keys
        set_studio_types(s, studio, wanted)
        if sorted(before) != sorted(wanted):
            changes["studio_types"] = {"old": before, "new": wanted}
    if isinstance(body.get("services"), list):
        before = studio.service_keys
        set_services(s, studio, [sv for sv in body["services"] if sv in SERVICES])
        if sorted(before) != sorted(studio.service_keys):
            changes["services"] = {"old": before, "new": studio.service_keys}

    if changes:
        record_event(
            s,
            actor=admin,
            action="studio.admin_update",
            entity_type="StudioProfile",
            entity_id=str(studio.id),
            metadata={"changes": changes},
        )
    return changes


def serialize_admin_studio(studio: "StudioProfile") -> dict[str, Any]:
    """Everything, privacy flags ignored. Admin editor only."""
    owner = studio.owner
    data: dict[str, Any] = {
        "id": studio.id,
        "status": studio.status,
        "user": {
            "id": owner.id,
            "email": owner.email,
            "username": owner.username,
            "display_name": owner.display_name,
            "status": owner.status,
            "membership_tier": owner.membership_tier,
            "email_verified": owner.email_verified,
        },
        "studio_types": studio.type_keys,
        "services": studio.service_keys,
        "images": [{"id": i.id, "url": i.image_url, "sort_order": i.sort_order} for i in studio.images],
        "created_at": studio.created_at.isoformat(),
        "updated_at": studio.updated_at.isoformat(),
        "featured_until": studio.featured_until.isoformat() if studio.featured_until else None,
    }
    for column in studio.__table__.columns.keys():
        if column not in data and column not in ("user_id", "created_at", "updated_at", "featured_until"):
            data[column] = getattr(studio, column)
    return data
