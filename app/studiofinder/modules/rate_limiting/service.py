from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from app.studiofinder.modules.rate_limiting.models import RateLimitEvent

if TYPE_CHECKING:
    from flask import Request
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitConfig:
    endpoint: str
    window_seconds: int
    max_requests: int


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_at: datetime

    def minutes_until_reset(self, now: datetime | None = None) -> int:
        now = now or datetime.utcnow()
        seconds = max(0.0, (self.reset_at - now).total_seconds())
        return max(1, -(-int(seconds) // 60))


SIGNUP = RateLimitConfig(endpoint="signup", window_seconds=60 * 60, max_requests=3)
CHECK_USERNAME = RateLimitConfig(endpoint="check-username", window_seconds=60, max_requests=20)
RESERVE_USERNAME = RateLimitConfig(endpoint="reserve-username", window_seconds=60 * 60, max_requests=5)
LOGIN = RateLimitConfig(endpoint="login", window_seconds=5 * 60, max_requests=5)
RESEND_VERIFICATION = RateLimitConfig(endpoint="resend-verification", window_seconds=60 * 60, max_requests=3)
CONTACT_STUDIO = RateLimitConfig(endpoint="contact-studio", window_seconds=60 * 60, max_requests=5)


def extract_ip_address(req: "Request") -> str:
    """Client IP behind Cloudflare / the load balancer, or 'unknown'."""
    cf = (req.headers.get("cf-connecting-ip") or "").strip()
    if cf:
        return cf
    xff = req.headers.get("x-forwarded-for") or ""
    if xff:
        return xff.split(",")[0].strip() or "unknown"
    real = (req.headers.get("x-real-ip") or "").strip()
    if real:
        return real
    return "unknown"


def generate_fingerprint(req: "Request", email: str | None = None) -> str:
    ip = extract_ip_address(req)
    if ip != "unknown":
        return f"ip:{ip}"
    ua = req.headers.get("user-agent") or "unknown"
    digest = hashlib.sha256(f"{email or 'anonymous'}:{ua}".encode("utf-8")).hexdigest()[:16]
    return f"hash:{digest}"


def check_rate_limit(s: "Session", fingerprint: str, config: RateLimitConfig, *, now: datetime | None = None) -> RateLimitResult:
    """
    Fixed-window counter. Flushes but does not commit; the caller's request commit persists it.
    """
    now = now or datetime.utcnow()
    window = timedelta(seconds=config.window_seconds)

    existing = (
        s.query(RateLimitEvent)
        .filter(RateLimitEvent.fingerprint == fingerprint, RateLimitEvent.endpoint == config.endpoint)
        .one_or_none()
    )

    if existing is None:
        s.add(
            RateLimitEvent(
                fingerprint=fingerprint,
                endpoint=config.endpoint,
                event_count=1,
                window_start=now,
                last_event_at=now,
            )
        )
        s.flush()
        return RateLimitResult(allowed=True, remaining=config.max_requests - 1, reset_at=now + window)

    if existing.window_start < now - window:
        existing.event_count = 1
        existing.window_start = now
        existing.last_event_at = now
        s.flush()
        return RateLimitResult(allowed=True, remaining=config.max_requests - 1, reset_at=now + window)

    if existing.event_count >= config.max_requests:
        logger.info("Rate limit hit endpoint=%s fingerprint=%s", config.endpoint, fingerprint)
        return RateLimitResult(allowed=False, remaining=0, reset_at=existing.window_start + window)

    existing.event_count += 1
    existing.last_event_at = now
    s.flush()
    return RateLimitResult(
        allowed=True,
        remaining=config.max_requests - existing.event_count,
        reset_at=existing.window_start + window,
    )


def cleanup_old_rate_limits(s: "Session", *, now: datetime | None = None) -> int:
    cutoff = (now or datetime.utcnow()) - timedelta(hours=24)
    deleted = s.query(RateLimitEvent).filter(RateLimitEvent.last_event_at < cutoff).delete(synchronize_session=False)
    return int(deleted or 0)


def rate_limited_response(s: "Session", config: RateLimitConfig, email: str | None = None):
    """Count this request; a 429 JSON response when over the limit, else None. Commits the counter."""
    from flask import current_app, request

    from app.studiofinder.utils import json_error

    fingerprint = generate_fingerprint(request, email)
    result = check_rate_limit(s, fingerprint, config)
    s.commit()
    if result.allowed:
        return None
    minutes = result.minutes_until_reset()
    current_app.logger.warning("Rate limit hit for %s on %s (resets in %sm)", fingerprint, config.endpoint, minutes)
    plural = "" if minutes == 1 else "s"
    return json_error(f"Too many requests. Please try again in {minutes} minute{plural}.", 429, retry_after_minutes=minutes)
