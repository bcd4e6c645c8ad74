"""
Public directory search.

Filtering happens in SQL; radius filtering and ordering happen in Python over
the filtered rows (the directory is a few thousand studios at most).
"""
from __future__ import annotations

import logging
import math
import random
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from sqlalchemy import or_, select

from app.studiofinder.constants import SERVICE_SEARCH_TERMS, SERVICES, STUDIO_TYPE_SEARCH_TERMS, STUDIO_TYPES
from app.studiofinder.models import User
from app.studiofinder.modules.studios.geocoding import geocode_address
from app.studiofinder.modules.studios.models import (
    STUDIO_STATUS_ACTIVE,
    StudioProfile,
    StudioService,
    StudioType,
)
from app.studiofinder.utils import parse_float, parse_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

EARTH_RADIUS_MILES = 3959.0
DEFAULT_LIMIT = 30
MAX_LIMIT = 100


@dataclass
class SearchParams:
    q: str = ""
    location: str = ""
    radius: float | None = None
    studio_types: list[str] = field(default_factory=list)
    services: list[str] = field(default_factory=list)
    offset: int = 0
    limit: int = DEFAULT_LIMIT


@dataclass
class SearchResult:
    studios: list[StudioProfile]
    total: int
    offset: int
    limit: int
    search_coordinates: tuple[float, float] | None = None
    search_radius: float | None = None

    @property
    def has_more(self) -> bool:
        return self.total > self.offset + self.limit


def _csv(value: str | None, allowed: frozenset[str]) -> list[str]:
    out: list[str] = []
    for part in (value or "").split(","):
        key = part.strip().upper()
        if key and key in allowed and key not in out:
            out.append(key)
    return out


def parse_search_params(args: Any) -> SearchParams:
    radius = parse_float(args.get("radius"))
    limit = parse_int(args.get("limit"), DEFAULT_LIMIT)
    return SearchParams(
        q=(args.get("q") or args.get("query") or "").strip(),
        location=(args.get("location") or "").strip(),
        radius=radius if radius and radius > 0 else None,
        studio_types=_csv(args.get("studio_types") or args.get("studioTypes"), STUDIO_TYPES),
        services=_csv(args.get("services"), SERVICES),
        offset=max(parse_int(args.get("offset"), 0), 0),
        limit=min(max(limit, 1), MAX_LIMIT),
    )


def haversine_miles(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = math.sin(d_lat / 2) ** 2 + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2
    return EARTH_RADIUS_MILES * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def prioritize_studios(
    studios: list[StudioProfile],
    *,
    pinned_username: str | None = None,
    rng: random.Random | None = None,
) -> list[StudioProfile]:
    """
    Pinned owner first, then verified-with-images, with-images, without-images.
    Each tier is shuffled so page one differs between loads.
    """
    rng = rng or random.Random()
    pinned = [st for st in studios if pinned_username and st.owner.username == pinned_username]
    rest = [st for st in studios if st not in pinned]

    verified_with_images = [st for st in rest if st.is_verified and st.images]
    with_images = [st for st in rest if not st.is_verified and st.images]
    without_images = [st for st in rest if not st.images]
    for tier in (verified_with_images, with_images, without_images):
        rng.shuffle(tier)
    return pinned + verified_with_images + with_images + without_images


def _text_clause(term: str):
    like = f"%{term}%"
    return or_(
        StudioProfile.name.ilike(like),
        StudioProfile.short_about.ilike(like),
        StudioProfile.about.ilike(like),
        StudioProfile.city.ilike(like),
    )


def _location_clause(term: str):
    like = f"%{term}%"
    return or_(
        StudioProfile.city.ilike(like),
        StudioProfile.location.ilike(like),
        StudioProfile.full_address.ilike(like),
        StudioProfile.address.ilike(like),
    )


def search_studios(
    s: "Session",
    params: SearchParams,
    *,
    config: dict,
    rng: random.Random | None = None,
) -> SearchResult:
    stmt = (
        select(StudioProfile)
        .join(User, User.id == StudioProfile.user_id)
        .where(StudioProfile.status == STUDIO_STATUS_ACTIVE)
        .where(StudioProfile.is_profile_visible.is_(True))
    )

    types = list(params.studio_types)
    services = list(params.services)
    q = params.q.lower()
    if q in STUDIO_TYPE_SEARCH_TERMS:
        types.append(STUDIO_TYPE_SEARCH_TERMS[q])
    elif q in SERVICE_SEARCH_TERMS:
        services.append(SERVICE_SEARCH_TERMS[q])
    elif q:
        stmt = stmt.where(_text_clause(params.q))

    if types:
        stmt = stmt.where(StudioProfile.studio_types.any(StudioType.studio_type.in_(types)))
    if services:
        stmt = stmt.where(StudioProfile.services.any(StudioService.service.in_(services)))

    coords: tuple[float, float] | None = None
    if params.location:
        if params.radius:
            geo = geocode_address(config, params.location)
            if geo is not None:
                coords = (geo.lat, geo.lng)
            else:
                logger.info("Radius search fell back to text match for %r", params.location)
        if coords is None:
            stmt = stmt.where(_location_clause(params.location))

    rows = list(s.execute(stmt).scalars().unique())

    if coords is not None:
        lat, lng = coords
        rows = [
            st
            for st in rows
            if st.latitude is not None
            and st.longitude is not None
            and haversine_miles(lat, lng, st.latitude, st.longitude) <= (params.radius or 0)
        ]

    ordered = prioritize_studios(rows, pinned_username=config.get("PINNED_STUDIO_USERNAME"), rng=rng)
    page = ordered[params.offset : params.offset + params.limit]
    return SearchResult(
        studios=page,
        total=len(ordered),
        offset=params.offset,
        limit=params.limit,
        search_coordinates=coords,
        search_radius=params.radius if coords else None,
    )


def serialize_search_card(studio: StudioProfile) -> dict[str, Any]:
    exact = bool(studio.show_exact_location)
    lat, lng = studio.latitude, studio.longitude
    if not exact:
        lat = round(lat, 2) if lat is not None else None
        lng = round(lng, 2) if lng is not None else None
    first_image = studio.images[0].image_url if studio.images else None
    return {
        "id": studio.id,
        "username": studio.owner.username,
        "name": studio.name,
        "short_about": studio.short_about,
        "city": studio.city,
        "location": studio.location,
        "studio_types": studio.type_keys,
        "services": studio.service_keys,
        "is_verified": studio.is_verified,
        "is_featured": studio.is_featured,
        "image_url": first_image,
        "image_count": len(studio.images),
        "latitude": lat,
        "longitude": lng,
        "location_is_approximate": not exact,
    }
