"""
Tests for the cron endpoints: bearer auth and the shape of each job's result.
"""

from datetime import datetime, timedelta

import pytest

from app.studiofinder.db import session_scope
from app.studiofinder.modules.memberships.models import Subscription
from app.studiofinder.modules.rate_limiting.models import RateLimitEvent
from app.studiofinder.modules.studios.models import StudioProfile

AUTH = {"Authorization": "Bearer cron-secret"}

JOBS = [
    "expire-reservations",
    "engagement-emails",
    "renewal-reminders",
    "enforce-subscriptions",
    "process-email-campaigns",
    "cleanup-rate-limits",
]


@pytest.mark.parametrize("job", JOBS)
def test_requires_bearer_secret(client, job):
    assert client.post(f"/api/cron/{job}").status_code == 401
    assert client.post(f"/api/cron/{job}", headers={"Authorization": "Bearer nope"}).status_code == 401
    assert client.post(f"/api/cron/{job}", headers={"Authorization": "cron-secret"}).status_code == 401


def test_missing_secret_is_server_error(app, client):
    app.config["CRON_SECRET"] = ""
    r = client.post("/api/cron/cleanup-rate-limits", headers=AUTH)
    assert r.status_code == 500
    assert r.json["error"] == "Server misconfigured"


@pytest.mark.parametrize("method", ["get", "post"])
def test_get_and_post_both_run(client, method):
    r = getattr(client, method)("/api/cron/expire-reservations", headers=AUTH)
    assert r.status_code == 200
    assert r.json == {"success": True, "job": "expire-reservations", "processed": 0, "expired": 0, "deleted": 0}


def test_engagement_result_shape(client):
    r = client.post("/api/cron/engagement-emails", headers=AUTH)
    assert r.json == {"success": True, "job": "engagement-emails", "day2": 0, "day5": 0, "payment_failed": 0, "sent": 0}


def test_cleanup_rate_limits(app, client):
    now = datetime.utcnow()
    with session_scope(app) as s:
        s.add(RateLimitEvent(fingerprint="old", endpoint="login", window_start=now - timedelta(days=2), last_event_at=now - timedelta(days=2)))
        s.add(RateLimitEvent(fingerprint="new", endpoint="login", window_start=now, last_event_at=now))

    r = client.post("/api/cron/cleanup-rate-limits", headers=AUTH)
    assert r.json == {"success": True, "job": "cleanup-rate-limits", "deleted": 1}
    with session_scope(app) as s:
        assert [e.fingerprint for e in s.query(RateLimitEvent).all()] == ["new"]


def test_enforce_subscriptions(app, client, make_member):
    user_id, studio_id = make_member("lapsed_vo")
    with session_scope(app) as s:
        s.add(Subscription(user_id=user_id, status="ACTIVE", current_period_end=datetime.utcnow() - timedelta(days=3)))

    r = client.post("/api/cron/enforce-subscriptions", headers=AUTH)
    assert r.status_code == 200
    assert r.json["status_updates"] == 1
    assert r.json["unfeatured_updates"] == 0
    with session_scope(app) as s:
        assert s.get(StudioProfile, studio_id).status == "INACTIVE"


def test_renewal_reminders_sent_once_per_window(app, client, make_member):
    user_id, _ = make_member("expiring_vo")
    with session_scope(app) as s:
        s.add(Subscription(user_id=user_id, status="ACTIVE", current_period_end=datetime.utcnow() + timedelta(days=6, hours=12)))

    r = client.post("/api/cron/renewal-reminders", headers=AUTH)
    assert r.json == {"success": True, "job": "renewal-reminders", "sent": 1, "skipped": 0}
    with session_scope(app) as s:
        assert s.query(Subscription).filter_by(user_id=user_id).one().last_reminder_window == 7

    r = client.post("/api/cron/renewal-reminders", headers=AUTH)
    assert r.json["sent"] == 0
    assert r.json["skipped"] == 1


def test_process_campaigns_when_idle(client):
    r = client.post("/api/cron/process-email-campaigns", headers=AUTH)
    assert r.json == {"success": True, "job": "process-email-campaigns", "sent": 0, "failed": 0, "campaigns_completed": 0}
