"""
Admin studio editor payload -> column updates.

The editor posts a flat body plus a `_meta` dict using the legacy field names
(`url`, `rates1`, `showemail`, `youtubepage`, ...). Absent keys mean "leave
unchanged"; present keys are written, even when empty.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any

from app.studiofinder.utils import parse_float, parse_iso_datetime

_MISSING = object()


def normalize_boolean(value: Any) -> bool | None:
    """'1' / True / 1 -> True; other values -> False; None (absent) -> None."""
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    return value == "1" or (isinstance(value, int) and value == 1)


def _meta(body: dict) -> dict:
    meta = body.get("_meta")
    return meta if isinstance(meta, dict) else {}


def build_user_update(body: dict) -> dict[str, Any]:
    out: dict[str, Any] = {}
    meta = _meta(body)
    if "display_name" in body:
        out["display_name"] = body["display_name"]
    if "username" in body:
        out["username"] = body["username"]
    if "avatar_image" in body:
        out["avatar_url"] = body["avatar_image"]
    if "membership_tier" in meta:
        out["membership_tier"] = meta["membership_tier"]
    return out


def build_studio_update(body: dict) -> dict[str, Any]:
    out: dict[str, Any] = {}
    meta = _meta(body)
    simple = {
        "studio_name": "name",
        "address": "address",
        "full_address": "full_address",
        "city": "city",
        "phone": "phone",
        "url": "website_url",
    }
    for src, dest in simple.items():
        if src in meta:
            out[dest] = meta[src]
    # parseFloat(x) || null: junk and 0 both clear the coordinate
    if "latitude" in meta:
        out["latitude"] = parse_float(meta["latitude"]) or None
    if "longitude" in meta:
        out["longitude"] = parse_float(meta["longitude"]) or None
    flags = {
        "show_exact_location": "show_exact_location",
        "verified": "is_verified",
        "is_profile_visible": "is_profile_visible",
    }
    for src, dest in flags.items():
        if src in meta:
            out[dest] = normalize_boolean(meta[src])
    if body.get("status") is not None:
        out["status"] = str(body["status"]).upper()
    return out


def build_profile_update(body: dict) -> dict[str, Any]:
    out: dict[str, Any] = {}
    meta = _meta(body)
    profile = body.get("profile") if isinstance(body.get("profile"), dict) else {}

    simple = {
        "last_name": "last_name",
        "location": "location",
        "about": "about",
        "short_about": "short_about",
        "shortabout": "short_about",  # legacy name wins when both are sent
        "facebook": "facebook_url",
        "linkedin": "linkedin_url",
        "instagram": "instagram_url",
        "youtubepage": "youtube_url",
        "tiktok": "tiktok_url",
        "threads": "threads_url",
        "soundcloud": "soundcloud_url",
        "vimeo": "vimeo_url",
        "bluesky": "bluesky_url",
        "rates1": "rate_tier_1",
        "rates2": "rate_tier_2",
        "rates3": "rate_tier_3",
        "equipment_list": "equipment_list",
        "services_offered": "services_offered",
    }
    for src, dest in simple.items():
        if src in meta:
            out[dest] = meta[src]

    if "x" in meta:
        out["x_url"] = meta["x"]
        out["twitter_url"] = meta["x"]

    if "featured" in meta:
        is_featured = normalize_boolean(meta["featured"]) or False
        out["is_featured"] = is_featured
        if not is_featured:
            out["featured_until"] = None
    if "featured_expires_at" in meta:
        raw = meta["featured_expires_at"]
        out["featured_until"] = parse_iso_datetime(raw) if raw else None

    flags = {
        "showrates": "show_rates",
        "showemail": "show_email",
        "showphone": "show_phone",
        "showaddress": "show_address",
        "showdirections": "show_directions",
        "use_coordinates_for_map": "use_coordinates_for_map",
    }
    for src, dest in flags.items():
        if src in meta:
            out[dest] = normalize_boolean(meta[src])

    for i in range(1, 13):
        key = f"connection{i}"
        if key in meta:
            out[key] = meta[key]

    if "custom_connection_methods" in meta:
        methods = meta["custom_connection_methods"]
        if isinstance(methods, list):
            out["custom_connection_methods"] = [m for m in methods if isinstance(m, str) and m.strip()][:2]
        else:
            out["custom_connection_methods"] = []

    if "equipment_list" in profile:
        out["equipment_list"] = profile["equipment_list"]
    if "services_offered" in profile:
        out["services_offered"] = profile["services_offered"]
    if "x_url" in profile:
        out["x_url"] = profile["x_url"]
        out["twitter_url"] = profile["x_url"]
    return out


def detect_manual_coordinate_override(
    existing_lat: float | None,
    existing_lng: float | None,
    request_lat: float | None,
    request_lng: float | None,
) -> bool:
    if (request_lat is not None or request_lng is not None) and existing_lat is None and existing_lng is None:
        return True
    epsilon = 0.000001
    lat_changed = request_lat is not None and existing_lat is not None and abs(request_lat - existing_lat) > epsilon
    lng_changed = request_lng is not None and existing_lng is not None and abs(request_lng - existing_lng) > epsilon
    return lat_changed or lng_changed


def parse_request_coordinates(latitude: Any, longitude: Any) -> tuple[float | None, float | None]:
    return parse_float(latitude), parse_float(longitude)


def apply_updates(obj: Any, updates: dict[str, Any], *, now: datetime | None = None) -> dict[str, dict[str, Any]]:
    """setattr each update; returns {field: {old, new}} for the ones that changed."""
    changes: dict[str, dict[str, Any]] = {}
    for field, new in updates.items():
        old = getattr(obj, field, _MISSING)
        if old is _MISSING:
            continue
        if old != new:
            changes[field] = {"old": old, "new": new}
            setattr(obj, field, new)
    if changes and hasattr(obj, "updated_at"):
        obj.updated_at = now or datetime.utcnow()
    return changes
