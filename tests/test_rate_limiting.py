"""
Tests for the fixed-window rate limiter.

Tests cover:
- Counting within a window and blocking at the limit
- Window reset after expiry
- Fingerprints from proxy headers or a hashed fallback
- Cleanup of stale counters
- Login throttling end to end
"""

from datetime import datetime, timedelta

from app.studiofinder.db import session_scope
from app.studiofinder.modules.rate_limiting.models import RateLimitEvent
from app.studiofinder.modules.rate_limiting.service import (
    RateLimitConfig,
    RateLimitResult,
    check_rate_limit,
    cleanup_old_rate_limits,
    extract_ip_address,
    generate_fingerprint,
)

NOW = datetime(2026, 3, 1, 12, 0, 0)
THREE_PER_MINUTE = RateLimitConfig(endpoint="test", window_seconds=60, max_requests=3)


class TestCheckRateLimit:
    def test_counts_down_then_blocks(self, app):
        with session_scope(app) as s:
            results = [check_rate_limit(s, "ip:1.2.3.4", THREE_PER_MINUTE, now=NOW) for _ in range(4)]
        assert [r.allowed for r in results] == [True, True, True, False]
        assert [r.remaining for r in results] == [2, 1, 0, 0]
        assert results[-1].reset_at == NOW + timedelta(seconds=60)

    def test_window_resets(self, app):
        with session_scope(app) as s:
            for _ in range(3):
                check_rate_limit(s, "ip:1.2.3.4", THREE_PER_MINUTE, now=NOW)
            later = NOW + timedelta(seconds=61)
            r = check_rate_limit(s, "ip:1.2.3.4", THREE_PER_MINUTE, now=later)
        assert r.allowed is True
        assert r.remaining == 2
        assert r.reset_at == later + timedelta(seconds=60)

    def test_fingerprints_and_endpoints_are_independent(self, app):
        other_endpoint = RateLimitConfig(endpoint="other", window_seconds=60, max_requests=3)
        with session_scope(app) as s:
            for _ in range(3):
                check_rate_limit(s, "ip:1.2.3.4", THREE_PER_MINUTE, now=NOW)
            assert check_rate_limit(s, "ip:5.6.7.8", THREE_PER_MINUTE, now=NOW).allowed is True
            assert check_rate_limit(s, "ip:1.2.3.4", other_endpoint, now=NOW).allowed is True

    def test_minutes_until_reset_rounds_up(self):
        r = RateLimitResult(allowed=False, remaining=0, reset_at=NOW + timedelta(seconds=61))
        assert r.minutes_until_reset(NOW) == 2
        r = RateLimitResult(allowed=False, remaining=0, reset_at=NOW - timedelta(seconds=5))
        assert r.minutes_until_reset(NOW) == 1


class TestFingerprint:
    def test_cloudflare_header_wins(self, app):
        headers = {"cf-connecting-ip": "9.9.9.9", "x-forwarded-for": "1.1.1.1, 10.0.0.1"}
        with app.test_request_context("/", headers=headers):
            from flask import request

            assert extract_ip_address(request) == "9.9.9.9"
            assert generate_fingerprint(request) == "ip:9.9.9.9"

    def test_first_forwarded_address(self, app):
        with app.test_request_context("/", headers={"x-forwarded-for": "1.1.1.1, 10.0.0.1"}):
            from flask import request

            assert extract_ip_address(request) == "1.1.1.1"

    def test_hash_fallback_depends_on_email(self, app):
        with app.test_request_context("/", headers={"user-agent": "pytest"}):
            from flask import request

            a = generate_fingerprint(request, "a@example.com")
            b = generate_fingerprint(request, "b@example.com")
            assert a.startswith("hash:")
            assert len(a) == len("hash:") + 16
            assert a != b
            assert a == generate_fingerprint(request, "a@example.com")


class TestCleanup:
    def test_removes_counters_older_than_a_day(self, app):
        with session_scope(app) as s:
            s.add_all(
                [
                    RateLimitEvent(fingerprint="old", endpoint="x", window_start=NOW - timedelta(days=2), last_event_at=NOW - timedelta(hours=25)),
                    RateLimitEvent(fingerprint="new", endpoint="x", window_start=NOW, last_event_at=NOW - timedelta(hours=1)),
                ]
            )
        with session_scope(app) as s:
            assert cleanup_old_rate_limits(s, now=NOW) == 1
        with session_scope(app) as s:
            assert [e.fingerprint for e in s.query(RateLimitEvent).all()] == ["new"]


def test_login_is_throttled(client, login):
    for _ in range(5):
        login(client, password="wrong")
    # Correct password, but the window is used up
    r = login(client)
    assert r.status_code == 302
    assert "/auth/login" in r.headers["Location"]
    assert client.get("/admin/").status_code == 302
