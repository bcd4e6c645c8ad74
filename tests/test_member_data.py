"""
Tests for the member-facing data endpoints.

Tests cover:
- The studio contact form (validation, delivery to the owner, rate limit)
- Billing history built from payments and refunds
- Personal data export as JSON and as a zip archive
"""

import io
import json
import zipfile
from datetime import datetime, timedelta

import pytest

from app.studiofinder.db import session_scope
from app.studiofinder.models import AuditEvent
from app.studiofinder.modules.memberships.models import Payment, Refund

MEMBER_PASSWORD = "Passw0rd!"
ENQUIRY = {
    "sender_name": "Casting Team",
    "sender_email": "Casting@Agency.example",
    "message": "Hello, we would like to book two hours next Tuesday for an audiobook session.",
}


def _login_member(client, login, username):
    r = login(client, email=f"{username}@example.com", password=MEMBER_PASSWORD)
    assert r.status_code == 302


class TestContactStudio:
    def test_sends_to_owner_with_reply_to(self, app, client, email_client, make_member):
        _, studio_id = make_member("booth_vo")
        r = client.post("/api/contact/studio", json={"studio_id": studio_id, **ENQUIRY})
        assert r.status_code == 200
        assert r.json["success"] is True
        assert r.json["studio"] == {"id": studio_id, "name": "Booth Vo Studio", "username": "booth_vo"}

        sent = email_client.sent[0]
        assert sent["to"] == "booth_vo@example.com"
        assert sent["reply_to"] == "casting@agency.example"
        assert sent["subject"] == "New enquiry via Voiceover Studio Finder"
        assert "audiobook session" in sent["text"]
        with session_scope(app) as s:
            event = s.query(AuditEvent).filter_by(action="studio.enquiry").one()
            assert event.entity_id == str(studio_id)

    @pytest.mark.parametrize(
        "body, error",
        [
            ({"sender_name": ""}, "Name is required"),
            ({"sender_name": "x" * 101}, "Name must be less than 100 characters"),
            ({"sender_email": "not-an-email"}, "Valid email is required"),
            ({"message": "   "}, "Message is required"),
            ({"message": "Too short"}, "Message must be at least 40 characters"),
            ({"message": "x" * 5001}, "Message must be less than 5000 characters"),
        ],
    )
    def test_validation(self, client, email_client, make_member, body, error):
        _, studio_id = make_member("booth_vo")
        r = client.post("/api/contact/studio", json={"studio_id": studio_id, **ENQUIRY, **body})
        assert r.status_code == 400
        assert r.json["error"] == error
        assert email_client.sent == []

    def test_unknown_or_hidden_studio(self, client, email_client, make_member):
        _, hidden_id = make_member("hidden_vo", is_profile_visible=False)
        _, pending_id = make_member("pending_vo", studio_status="PENDING")
        assert client.post("/api/contact/studio", json={**ENQUIRY}).status_code == 400
        for studio_id in (hidden_id, pending_id, 99999):
            r = client.post("/api/contact/studio", json={"studio_id": studio_id, **ENQUIRY})
            assert r.status_code == 404
        assert email_client.sent == []

    def test_send_failure(self, app, client, make_member):
        _, studio_id = make_member("booth_vo")
        r = client.post("/api/contact/studio", json={"studio_id": studio_id, **ENQUIRY})
        assert r.status_code == 500
        assert r.json["error"] == "Failed to send message. Please try again later."
        with session_scope(app) as s:
            event = s.query(AuditEvent).filter_by(action="studio.enquiry").one()
            assert json.loads(event.metadata_json) == {"sent": False}

    def test_rate_limited(self, client, email_client, make_member):
        _, studio_id = make_member("booth_vo")
        for _ in range(5):
            assert client.post("/api/contact/studio", json={"studio_id": studio_id, **ENQUIRY}).status_code == 200
        r = client.post("/api/contact/studio", json={"studio_id": studio_id, **ENQUIRY})
        assert r.status_code == 429
        assert r.json["retry_after_minutes"] >= 1
        assert len(email_client.sent) == 5


@pytest.fixture()
def billed_member(app, make_member):
    user_id, _ = make_member("paying_vo")
    start = datetime(2026, 1, 10, 12, 0)
    with session_scope(app) as s:
        first = Payment(user_id=user_id, amount=2500, status="PARTIALLY_REFUNDED", refunded_amount=1000, created_at=start)
        renewal = Payment(
            user_id=user_id, amount=2500, status="SUCCEEDED", purpose="renewal", created_at=start + timedelta(days=30)
        )
        pending = Payment(user_id=user_id, amount=2500, status="PENDING", created_at=start + timedelta(days=31))
        s.add_all([first, renewal, pending])
        s.flush()
        s.add(
            Refund(
                payment_id=first.id,
                user_id=user_id,
                amount=1000,
                reason="Goodwill",
                created_at=start + timedelta(days=5),
            )
        )
        return user_id, first.id, renewal.id


class TestBillingHistory:
    def test_requires_login(self, client):
        assert client.get("/api/user/billing-history").status_code == 401

    def test_payments_and_refunds_newest_first(self, client, login, billed_member):
        _, first_id, renewal_id = billed_member
        _login_member(client, login, "paying_vo")
        r = client.get("/api/user/billing-history")
        assert r.status_code == 200
        items = r.json["items"]
        assert [(i["type"], i["status"]) for i in items] == [
            ("payment", "paid"),
            ("refund", "refunded"),
            ("payment", "partially_refunded"),
        ]

        renewal, refund, first = items
        assert renewal["id"] == renewal_id
        assert renewal["description"] == "Premium Membership Renewal"
        assert renewal["amount_display"] == "£25.00"
        assert first["number"] == f"VOSF-{first_id:06d}"
        assert first["refunded_amount"] == 1000
        assert refund["number"].startswith(f"VOSF-{first_id:06d}-R")
        assert refund["amount"] == -1000
        assert refund["amount_display"] == "-£10.00"
        assert refund["description"] == "Refund: Premium Membership"
        assert refund["reason"] == "Goodwill"

    def test_other_members_see_nothing(self, client, login, make_member, billed_member):
        make_member("other_vo")
        _login_member(client, login, "other_vo")
        assert client.get("/api/user/billing-history").json == {"items": []}


class TestDataExport:
    def test_requires_login(self, client):
        assert client.get("/api/user/data-export").status_code == 401
        assert client.get("/api/user/download-data").status_code == 401

    def test_json_export(self, app, client, login, billed_member):
        user_id, _, _ = billed_member
        _login_member(client, login, "paying_vo")
        r = client.get("/api/user/data-export")
        assert r.status_code == 200
        assert r.mimetype == "application/json"
        disposition = r.headers["Content-Disposition"]
        assert "attachment" in disposition
        assert "voiceoverstudiofinder-data-export-" in disposition

        data = json.loads(r.data)
        assert data["format_version"] == "1.0"
        assert data["user"]["username"] == "paying_vo"
        for secret in ("password_hash", "verification_token", "verification_token_expiry"):
            assert secret not in data["user"]
        assert data["studio"]["name"] == "Paying Vo Studio"
        assert len(data["payments"]) == 3
        assert data["refunds"][0]["reason"] == "Goodwill"
        assert data["messages_sent"] == []

        with session_scope(app) as s:
            event = s.query(AuditEvent).filter_by(action="user.data_export").one()
            assert event.entity_id == str(user_id)
            assert json.loads(event.metadata_json) == {"format": "json"}

    def test_zip_archive(self, client, login, billed_member):
        _login_member(client, login, "paying_vo")
        r = client.get("/api/user/download-data")
        assert r.status_code == 200
        assert r.mimetype == "application/zip"
        assert "voiceoverstudiofinder-paying_vo-data-" in r.headers["Content-Disposition"]

        with zipfile.ZipFile(io.BytesIO(r.data)) as zf:
            assert sorted(zf.namelist()) == [
                "README.txt",
                "billing.json",
                "messages.json",
                "preferences.json",
                "reviews.json",
                "studio.json",
                "support_tickets.json",
                "user.json",
            ]
            user = json.loads(zf.read("user.json"))["user"]
            billing = json.loads(zf.read("billing.json"))
        assert "password_hash" not in user
        assert len(billing["payments"]) == 3
        assert len(billing["refunds"]) == 1
