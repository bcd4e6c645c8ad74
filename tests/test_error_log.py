"""
Tests for the Sentry issue mirror.

Tests cover:
- Secret redaction in keys, tag pairs and free text
- Webhook authentication
- Upserting issue groups and sanitized sample events
- Admin status changes
- The scheduled issue sync from the Sentry API
"""

import pytest

from app.studiofinder import cron
from app.studiofinder.db import session_scope
from app.studiofinder.modules.error_log.models import ErrorLogGroup
from app.studiofinder.modules.error_log.sentry_client import SentryApiError, sentry_from_config
from app.studiofinder.modules.error_log.service import REDACTED, redact, sanitize_event

SENTRY_SECRET = "sentry-secret"


def _issue_payload(issue_id="123", **issue):
    return {
        "action": "created",
        "data": {
            "issue": {
                "id": issue_id,
                "title": "TypeError: cannot read property",
                "culprit": "app/studios.py in update",
                "level": "error",
                "count": "3",
                "permalink": "https://sentry.example.com/issues/123/",
                "firstSeen": "2026-02-01T10:00:00Z",
                "lastSeen": "2026-02-02T11:00:00Z",
                "metadata": {"environment": "production"},
                **issue,
            },
            "event": {
                "event_id": "evt1",
                "message": "failed for jane@example.com",
                "request": {"url": "https://site.example.com/api/x?token=abc", "method": "POST", "headers": {"Cookie": "a=b"}},
                "user": {"id": "7", "username": "jane", "email": "jane@example.com", "ip_address": "1.2.3.4"},
                "tags": [["environment", "production"], ["session_id", "abc123"]],
            },
        },
    }


def _post(client, payload, secret=SENTRY_SECRET):
    return client.post("/api/webhooks/sentry", json=payload, headers={"Authorization": f"Bearer {secret}"})


class TestRedact:
    def test_sensitive_keys(self):
        out = redact({"password": "x", "api_key": "y", "Authorization": "z", "userEmail": "a@b.co", "city": "Leeds"})
        assert out == {"password": REDACTED, "api_key": REDACTED, "Authorization": REDACTED, "userEmail": REDACTED, "city": "Leeds"}

    def test_secrets_in_strings(self):
        text = "key sk_live_abc123 hook whsec_zzz auth Bearer abc.def mail jane@example.com"
        assert redact(text) == f"key {REDACTED} hook {REDACTED} auth {REDACTED} mail {REDACTED}"

    def test_tag_pairs(self):
        assert redact([["cookie", "abc"], ["browser", "Firefox"]]) == [["cookie", REDACTED], ["browser", "Firefox"]]

    def test_nested(self):
        assert redact({"outer": [{"token": "t"}, "plain"]}) == {"outer": [{"token": REDACTED}, "plain"]}

    def test_sanitize_event_drops_request_details(self):
        sample = sanitize_event(_issue_payload()["data"]["event"])
        assert sample["request"] == {"url": "https://site.example.com/api/x", "method": "POST"}
        assert sample["user"] == {"id": "7", "username": "jane"}
        assert sample["message"] == f"failed for {REDACTED}"
        assert sample["tags"] == [["environment", "production"], ["session_id", REDACTED]]

    def test_sanitize_non_dict(self):
        assert sanitize_event(None) is None


class TestSentryWebhook:
    def test_requires_secret(self, client):
        assert _post(client, _issue_payload(), secret="wrong").status_code == 401
        assert client.post("/api/webhooks/sentry", json=_issue_payload()).status_code == 401

    def test_no_issue(self, client):
        r = _post(client, {"action": "created", "data": {}})
        assert r.status_code == 200
        assert r.json == {"success": True, "message": "No issue data"}

    def test_creates_then_updates_group(self, app, client):
        r = _post(client, _issue_payload())
        assert r.status_code == 200
        group_id = r.json["error_log_group_id"]

        with session_scope(app) as s:
            group = s.get(ErrorLogGroup, group_id)
            assert group.status == "UNRESOLVED"
            assert group.event_count == 3
            assert group.environment == "production"
            assert group.sample_event["user"] == {"id": "7", "username": "jane"}

        r = _post(client, _issue_payload(count=10, title="TypeError again"))
        assert r.json["error_log_group_id"] == group_id
        with session_scope(app) as s:
            group = s.get(ErrorLogGroup, group_id)
            assert group.event_count == 10
            assert group.title == "TypeError again"
            assert s.query(ErrorLogGroup).count() == 1

    def test_count_never_goes_down(self, app, client):
        _post(client, _issue_payload(count=10))
        r = _post(client, _issue_payload(count=2))
        with session_scope(app) as s:
            assert s.get(ErrorLogGroup, r.json["error_log_group_id"]).event_count == 10


class TestAdminStatus:
    def test_resolve(self, app, client, login, csrf):
        group_id = _post(client, _issue_payload()).json["error_log_group_id"]
        login(client)
        token = csrf(client)
        r = client.post(f"/admin/errors/{group_id}/status", data={"status": "resolved", "notes": "Fixed", "csrf_token": token})
        assert r.status_code == 302
        with session_scope(app) as s:
            group = s.get(ErrorLogGroup, group_id)
            assert group.status == "RESOLVED"
            assert group.notes == "Fixed"
        assert client.get(f"/admin/errors/{group_id}").status_code == 200


CRON_AUTH = {"Authorization": "Bearer cron-secret"}


class FakeSentry:
    def __init__(self, issues):
        self.issues = issues

    def list_issues(self):
        return self.issues


class BrokenSentry:
    def list_issues(self):
        raise SentryApiError("HTTP 403 from Sentry: forbidden")


@pytest.fixture()
def sentry_api(monkeypatch):
    def _install(client):
        monkeypatch.setattr(cron, "sentry_from_config", lambda _config: client)

    return _install


class TestSentrySync:
    def test_not_configured(self, client):
        r = client.post("/api/cron/sentry-sync", headers=CRON_AUTH)
        assert r.status_code == 200
        assert r.json == {"success": True, "job": "sentry-sync", "configured": False, "synced": 0}

    def test_requires_cron_secret(self, client, sentry_api):
        sentry_api(FakeSentry([]))
        assert client.post("/api/cron/sentry-sync").status_code == 401

    def test_client_needs_all_settings(self):
        assert sentry_from_config({"SENTRY_AUTH_TOKEN": "t", "SENTRY_ORG_SLUG": "org"}) is None
        client = sentry_from_config({"SENTRY_AUTH_TOKEN": "t", "SENTRY_ORG_SLUG": "org", "SENTRY_PROJECT_SLUG": "web"})
        assert client.project_slug == "web"

    def test_sync_maps_status_and_keeps_samples(self, app, client, sentry_api):
        group_id = _post(client, _issue_payload(count=10)).json["error_log_group_id"]
        sentry_api(
            FakeSentry(
                [
                    {"id": "123", "title": "TypeError: cannot read property", "status": "resolved", "count": "4"},
                    {"id": "456", "title": "KeyError: 'slug'", "status": "ignored", "count": "2", "lastSeen": "2026-03-01T09:00:00Z"},
                    {"id": "789", "title": "Timeout", "status": "unresolved"},
                    {"title": "no id"},
                ]
            )
        )
        r = client.get("/api/cron/sentry-sync", headers=CRON_AUTH)
        assert r.status_code == 200
        assert r.json["synced"] == 3
        assert r.json["skipped"] == 1

        with session_scope(app) as s:
            existing = s.get(ErrorLogGroup, group_id)
            assert existing.status == "RESOLVED"
            assert existing.event_count == 10
            assert existing.sample_event["event_id"] == "evt1"
            by_issue = {g.sentry_issue_id: g for g in s.query(ErrorLogGroup)}
            assert by_issue["456"].status == "IGNORED"
            assert by_issue["456"].event_count == 2
            assert by_issue["456"].sample_event is None
            assert by_issue["789"].status == "UNRESOLVED"
            assert by_issue["789"].event_count == 1

    def test_api_failure_is_reported(self, app, client, sentry_api):
        sentry_api(BrokenSentry())
        r = client.post("/api/cron/sentry-sync", headers=CRON_AUTH)
        assert r.status_code == 500
        assert r.json["error"] == "sentry-sync failed"
        with session_scope(app) as s:
            assert s.query(ErrorLogGroup).count() == 0
