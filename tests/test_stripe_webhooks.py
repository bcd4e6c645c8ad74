"""
Tests for Stripe webhook verification and event handling.

Tests cover:
- Signature header parsing, HMAC check and timestamp tolerance
- checkout.session.completed for memberships, renewals and featured listings
- Verification bypass when the email is unverified
- Idempotent replays and dashboard refunds
"""

import json
import time
from datetime import datetime, timedelta

import pytest

from app.studiofinder.db import session_scope
from app.studiofinder.models import User
from app.studiofinder.modules.memberships.models import Payment, Subscription
from app.studiofinder.modules.memberships.service import VERIFICATION_BYPASS_KEY
from app.studiofinder.modules.memberships.stripe_client import (
    StripeSignatureError,
    compute_signature,
    encode_form,
    parse_signature_header,
    verify_webhook_signature,
)
from app.studiofinder.modules.studios.models import StudioProfile

SECRET = "whsec_testsecret"


def _signed_post(client, event, secret=SECRET, timestamp=None):
    payload = json.dumps(event).encode("utf-8")
    ts = timestamp or int(time.time())
    header = f"t={ts},v1={compute_signature(payload, ts, secret)}"
    return client.post(
        "/api/stripe/webhook",
        data=payload,
        headers={"Stripe-Signature": header},
        content_type="application/json",
    )


def _checkout_event(user_id, *, session_id="cs_test_1", purpose=None, amount=2500, payment_status="paid", **meta):
    metadata = {"user_id": str(user_id), **meta}
    if purpose:
        metadata["purpose"] = purpose
    return {
        "id": f"evt_{session_id}",
        "type": "checkout.session.completed",
        "data": {
            "object": {
                "id": session_id,
                "mode": "payment",
                "payment_status": payment_status,
                "amount_total": amount,
                "currency": "gbp",
                "payment_intent": f"pi_{session_id}",
                "customer": "cus_1",
                "metadata": metadata,
            }
        },
    }


class TestSignature:
    def test_parse_header(self):
        assert parse_signature_header("t=123,v1=abc,v0=old,v1=def") == (123, ["abc", "def"])
        assert parse_signature_header("garbage") == (None, [])

    def test_valid(self):
        payload = b'{"id": "evt_1", "type": "ping"}'
        ts = 1_700_000_000
        header = f"t={ts},v1={compute_signature(payload, ts, SECRET)}"
        event = verify_webhook_signature(payload, header, SECRET, now=ts + 10)
        assert event["id"] == "evt_1"

    def test_any_listed_signature_may_match(self):
        payload = b"{}"
        ts = 1_700_000_000
        header = f"t={ts},v1=deadbeef,v1={compute_signature(payload, ts, SECRET)}"
        assert verify_webhook_signature(payload, header, SECRET, now=ts) == {}

    @pytest.mark.parametrize(
        "header",
        [None, "", "v1=abc", "t=1700000000"],
    )
    def test_missing_or_malformed(self, header):
        with pytest.raises(StripeSignatureError):
            verify_webhook_signature(b"{}", header, SECRET, now=1_700_000_000)

    def test_wrong_secret(self):
        ts = 1_700_000_000
        header = f"t={ts},v1={compute_signature(b'{}', ts, 'whsec_other')}"
        with pytest.raises(StripeSignatureError):
            verify_webhook_signature(b"{}", header, SECRET, now=ts)

    def test_stale_timestamp(self):
        ts = 1_700_000_000
        header = f"t={ts},v1={compute_signature(b'{}', ts, SECRET)}"
        with pytest.raises(StripeSignatureError):
            verify_webhook_signature(b"{}", header, SECRET, now=ts + 301)

    def test_form_encoding(self):
        body = encode_form({"mode": "payment", "metadata": {"user_id": "7"}, "line_items": [{"quantity": 1}], "x": None, "flag": True})
        assert body == b"mode=payment&metadata%5Buser_id%5D=7&line_items%5B0%5D%5Bquantity%5D=1&flag=true"


class TestWebhookEndpoint:
    def test_bad_signature(self, client):
        r = _signed_post(client, {"type": "checkout.session.completed"}, secret="whsec_wrong")
        assert r.status_code == 400

    def test_unhandled_event(self, client):
        r = _signed_post(client, {"id": "evt_x", "type": "customer.created", "data": {"object": {}}})
        assert r.status_code == 200
        assert r.json == {"received": True, "handled": False}

    def test_membership_activation(self, app, client, make_member):
        user_id, _ = make_member("new_member", status="PENDING", tier="BASIC", studio=False)

        r = _signed_post(client, _checkout_event(user_id))
        assert r.status_code == 200
        assert r.json["result"] == "activated"

        with session_scope(app) as s:
            user = s.get(User, user_id)
            assert user.status == "ACTIVE"
            assert user.membership_tier == "PREMIUM"
            assert user.reservation_expires_at is None
            assert user.studio.status == "ACTIVE"
            payment = s.query(Payment).filter_by(user_id=user_id).one()
            assert payment.status == "SUCCEEDED"
            assert payment.amount == 2500
            assert payment.stripe_payment_intent_id == "pi_cs_test_1"
            sub = s.query(Subscription).filter_by(user_id=user_id).one()
            assert sub.status == "ACTIVE"
            assert sub.current_period_end - sub.current_period_start == timedelta(days=365)

        # Replays do nothing
        r = _signed_post(client, _checkout_event(user_id))
        assert r.json["result"] == "already_processed"
        with session_scope(app) as s:
            assert s.query(Subscription).filter_by(user_id=user_id).count() == 1

    def test_subscription_created_before_checkout(self, app, client, make_member):
        user_id, _ = make_member("auto_vo", status="PENDING", tier="BASIC", studio=False)
        period_end = int(time.time()) + 365 * 86400
        created = {
            "id": "evt_sub_created",
            "type": "customer.subscription.created",
            "data": {
                "object": {
                    "id": "sub_auto_1",
                    "status": "active",
                    "customer": "cus_1",
                    "current_period_start": int(time.time()),
                    "current_period_end": period_end,
                    "metadata": {"user_id": str(user_id)},
                }
            },
        }
        assert _signed_post(client, created).json["result"] == "ACTIVE"

        checkout = _checkout_event(user_id, auto_renew="true")
        checkout["data"]["object"].update({"mode": "subscription", "subscription": "sub_auto_1"})
        assert _signed_post(client, checkout).json["result"] == "activated"

        with session_scope(app) as s:
            sub = s.query(Subscription).filter_by(user_id=user_id).one()
            assert sub.status == "ACTIVE"
            assert sub.stripe_subscription_id == "sub_auto_1"
            assert sub.stripe_customer_id == "cus_1"
            assert sub.auto_renew is True
            assert s.get(User, user_id).status == "ACTIVE"

        updated = {**created, "id": "evt_sub_updated", "type": "customer.subscription.updated"}
        assert _signed_post(client, updated).json["result"] == "ACTIVE"
        with session_scope(app) as s:
            assert s.query(Subscription).filter_by(user_id=user_id).count() == 1

    def test_temp_username_keeps_listing_pending(self, app, client, make_member):
        user_id, _ = make_member("temp_12ab34cd", status="PENDING", studio=False)
        _signed_post(client, _checkout_event(user_id))
        with session_scope(app) as s:
            assert s.get(User, user_id).studio.status == "PENDING"

    def test_unverified_email_holds_activation(self, app, client, make_member):
        user_id, _ = make_member("sneaky_vo", status="PENDING", studio=False)
        with session_scope(app) as s:
            s.get(User, user_id).email_verified = False

        r = _signed_post(client, _checkout_event(user_id))
        assert r.json["result"] == "verification_required"
        with session_scope(app) as s:
            user = s.get(User, user_id)
            assert user.status == "PENDING"
            assert user.get_metadata(VERIFICATION_BYPASS_KEY) is not None
            assert s.query(Payment).filter_by(user_id=user_id).one().status == "SUCCEEDED"

    def test_unpaid_and_unknown_user(self, client, make_member):
        user_id, _ = make_member("waiting_vo", status="PENDING", studio=False)
        assert _signed_post(client, _checkout_event(user_id, payment_status="unpaid")).json["result"] == "unpaid"
        assert _signed_post(client, _checkout_event(99999, session_id="cs_2")).json["result"] == "unknown_user"

    def test_renewal(self, app, client, make_member):
        user_id, _ = make_member("renewing_vo")
        end = datetime.utcnow() + timedelta(days=30)
        with session_scope(app) as s:
            s.add(Subscription(user_id=user_id, status="ACTIVE", current_period_end=end))

        r = _signed_post(client, _checkout_event(user_id, purpose="membership_renewal", renewal_type="standard"))
        assert r.json["result"] == "renewed"
        with session_scope(app) as s:
            sub = s.query(Subscription).filter_by(user_id=user_id).one()
            assert sub.current_period_end == end + timedelta(days=365)

    def test_featured(self, app, client, make_member):
        user_id, studio_id = make_member("shiny_vo")
        r = _signed_post(client, _checkout_event(user_id, purpose="featured", amount=5000))
        assert r.json["result"] == "featured"
        with session_scope(app) as s:
            studio = s.get(StudioProfile, studio_id)
            assert studio.is_featured is True
            assert studio.featured_until > datetime.utcnow() + timedelta(days=180)

    def test_dashboard_refund_ends_membership(self, app, client, make_member):
        user_id, _ = make_member("refunded_vo", status="PENDING", studio=False)
        _signed_post(client, _checkout_event(user_id))

        r = _signed_post(
            client,
            {
                "id": "evt_refund",
                "type": "charge.refunded",
                "data": {"object": {"payment_intent": "pi_cs_test_1", "amount_refunded": 2500}},
            },
        )
        assert r.json["result"] == "REFUNDED"
        with session_scope(app) as s:
            assert s.query(Payment).filter_by(user_id=user_id).one().refunded_amount == 2500
            assert s.query(Subscription).filter_by(user_id=user_id).one().status == "CANCELLED"
            assert s.get(User, user_id).studio.status == "INACTIVE"

        r = _signed_post(
            client,
            {"id": "evt_refund2", "type": "charge.refunded", "data": {"object": {"payment_intent": "pi_cs_test_1", "amount_refunded": 2500}}},
        )
        assert r.json["result"] == "already_recorded"
