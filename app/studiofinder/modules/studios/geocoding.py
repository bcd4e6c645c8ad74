from __future__ import annotations

import json
import logging
import time
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from typing import Any

from app.studiofinder.modules.studios.field_mapping import detect_manual_coordinate_override, parse_request_coordinates

logger = logging.getLogger(__name__)


class GeocodingError(RuntimeError):
    pass


@dataclass(frozen=True)
class GeocodeResult:
    lat: float
    lng: float
    formatted_address: str
    city: str | None
    country: str | None


def _component(components: list[dict[str, Any]], kind: str) -> str | None:
    for c in components:
        if kind in (c.get("types") or []):
            return c.get("long_name")
    return None


def parse_geocode_response(payload: dict[str, Any]) -> GeocodeResult | None:
    if payload.get("status") != "OK":
        return None
    results = payload.get("results") or []
    if not results:
        return None
    first = results[0]
    loc = (first.get("geometry") or {}).get("location") or {}
    if "lat" not in loc or "lng" not in loc:
        return None
    comps = first.get("address_components") or []
    city = (
        _component(comps, "locality")
        or _component(comps, "postal_town")
        or _component(comps, "administrative_area_level_2")
        or _component(comps, "administrative_area_level_1")
    )
    return GeocodeResult(
        lat=float(loc["lat"]),
        lng=float(loc["lng"]),
        formatted_address=first.get("formatted_address") or "",
        city=city,
        country=_component(comps, "country"),
    )


@dataclass(frozen=True)
class GoogleGeocodingClient:
    api_key: str
    base_url: str = "https://maps.googleapis.com/maps/api/geocode/json"
    timeout_seconds: int = 10

    def request_json(self, params: dict[str, Any], *, retries: int = 2) -> dict[str, Any]:
        url = self.base_url + "?" + urllib.parse.urlencode({**params, "key": self.api_key})
        last_err: Exception | None = None
        for attempt in range(retries + 1):
            try:
                req = urllib.request.Request(url, method="GET")
                req.add_header("Accept", "application/json")
                with urllib.request.urlopen(req, timeout=self.timeout_seconds) as resp:
                    return json.loads(resp.read().decode("utf-8"))
            except urllib.error.HTTPError as e:
                if e.code == 429:
                    time.sleep(min(2 * (attempt + 1), 6))
                    last_err = e
                    continue
                raise GeocodingError(f"HTTP {e.code} from Google geocoding") from e
            except (urllib.error.URLError, TimeoutError, json.JSONDecodeError) as e:
                last_err = e
                time.sleep(min(attempt + 1, 3))
        raise GeocodingError(f"Geocoding request failed after retries: {last_err}")

    def geocode(self, address: str) -> GeocodeResult | None:
        address = (address or "").strip()
        if not address:
            return None
        return parse_geocode_response(self.request_json({"address": address}))


def geocoder_from_config(config: dict) -> GoogleGeocodingClient | None:
    key = (config.get("GOOGLE_MAPS_API_KEY") or "").strip()
    if not key:
        return None
    return GoogleGeocodingClient(api_key=key)


def geocode_address(config: dict, address: str) -> GeocodeResult | None:
    """Best effort: missing key or provider failure -> None (logged)."""
    client = geocoder_from_config(config)
    if client is None:
        logger.warning("GOOGLE_MAPS_API_KEY not set; skipping geocode for %r", address)
        return None
    try:
        return client.geocode(address)
    except GeocodingError as e:
        logger.error("Geocoding failed for %r: %s", address, e)
        return None


def _geocode_updates(config: dict, address: str, meta: dict) -> dict[str, Any]:
    result = geocode_address(config, address)
    if result is None:
        logger.info("Failed to geocode %r; clearing coordinates", address)
        return {"latitude": None, "longitude": None}
    updates: dict[str, Any] = {"latitude": result.lat, "longitude": result.lng}
    if "city" not in meta and result.city:
        updates["city"] = result.city
    if "location" not in meta and result.country:
        updates["location"] = result.country
    return updates


def maybe_geocode_studio_address(config: dict, existing: Any, body: dict) -> dict[str, Any]:
    """
    Coordinate updates for an admin edit.
    - address changed and coordinates not hand-edited: geocode
    - address unchanged but coordinates missing and none supplied: geocode
    - otherwise: nothing
    """
    meta = body.get("_meta") if isinstance(body.get("_meta"), dict) else {}
    new_address = meta.get("full_address")
    if not new_address:
        return {}

    req_lat, req_lng = parse_request_coordinates(meta.get("latitude"), meta.get("longitude"))

    if new_address != existing.full_address:
        if detect_manual_coordinate_override(existing.latitude, existing.longitude, req_lat, req_lng):
            logger.info("Geocoding skipped for studio %s: coordinates manually changed", existing.id)
            return {}
        return _geocode_updates(config, new_address, meta)

    if existing.latitude is None or existing.longitude is None:
        if req_lat is not None and req_lng is not None:
            return {}
        return _geocode_updates(config, new_address, meta)
    return {}
