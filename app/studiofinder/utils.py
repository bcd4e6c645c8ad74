from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from flask import jsonify


def json_error(message: str, status: int = 400, *, details: list[str] | None = None, **extra: Any):
    """Uniform JSON error body for /api routes."""
    body: dict[str, Any] = {"error": message}
    if details:
        body["details"] = details
    body.update(extra)
    return jsonify(body), status


def json_payload() -> dict:
    from flask import request

    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def parse_float(value: Any) -> float | None:
    """parseFloat-ish: '' / None / junk -> None."""
    if value is None or value == "":
        return None
    try:
        f = float(value)
    except (TypeError, ValueError):
        return None
    if f != f:  # NaN
        return None
    return f


def parse_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def parse_iso_datetime(value: str | None) -> datetime | None:
    if not value:
        return None
    value = value.strip()
    if not value:
        return None
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(value)
    except ValueError:
        return None
    # Stored naive UTC throughout.
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def format_date_en_gb(value: datetime | None) -> str:
    """'5 March 2026' style used in emails."""
    if value is None:
        return ""
    return f"{value.day} {value.strftime('%B %Y')}"


def pounds(pence: int | None) -> str:
    if pence is None:
        return "£0.00"
    return f"£{pence / 100:.2f}"
