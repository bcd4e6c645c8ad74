"""
Tests for admin refunds.

Stripe is replaced with a fake client; the rest of the flow (payment totals,
refund rows, membership ending, audit) runs against the test database.
"""

from datetime import datetime, timedelta

import pytest

from app.studiofinder.db import session_scope
from app.studiofinder.models import AuditEvent
from app.studiofinder.modules.memberships import service as membership_service
from app.studiofinder.modules.memberships.models import Payment, Refund, Subscription
from app.studiofinder.modules.memberships.stripe_client import StripeError
from app.studiofinder.modules.studios.models import StudioProfile


class FakeStripe:
    def __init__(self):
        self.calls = []

    def create_refund(self, *, payment_intent, amount, reason=None):
        self.calls.append({"payment_intent": payment_intent, "amount": amount, "reason": reason})
        return {"id": f"re_{len(self.calls)}", "status": "succeeded"}


class FailingStripe:
    def create_refund(self, **_kwargs):
        raise StripeError("card_declined")


@pytest.fixture()
def fake_stripe(monkeypatch):
    fake = FakeStripe()
    monkeypatch.setattr(membership_service, "stripe_from_config", lambda _config: fake)
    return fake


@pytest.fixture()
def paid_member(app, make_member):
    user_id, studio_id = make_member("paying_vo")
    with session_scope(app) as s:
        s.add(
            Subscription(
                user_id=user_id,
                status="ACTIVE",
                current_period_start=datetime.utcnow(),
                current_period_end=datetime.utcnow() + timedelta(days=365),
            )
        )
        payment = Payment(user_id=user_id, amount=2500, status="SUCCEEDED", stripe_payment_intent_id="pi_123")
        s.add(payment)
        s.flush()
        payment_id = payment.id
    return user_id, studio_id, payment_id


def _refund(client, csrf, payment_id, **body):
    token = csrf(client)
    return client.post(f"/admin/api/payments/{payment_id}/refund", json=body, headers={"X-CSRF-Token": token})


def test_requires_csrf_header(client, login, fake_stripe, paid_member):
    _, _, payment_id = paid_member
    login(client)
    r = client.post(f"/admin/api/payments/{payment_id}/refund", json={"amount": 100})
    assert r.status_code == 400
    assert fake_stripe.calls == []


def test_partial_then_full_refund(app, client, login, csrf, fake_stripe, paid_member):
    user_id, studio_id, payment_id = paid_member
    login(client)

    r = _refund(client, csrf, payment_id, amount=1000, reason="Goodwill")
    assert r.status_code == 200
    assert r.json["refund"]["amount"] == 1000
    assert r.json["refund"]["is_full_refund"] is False
    assert r.json["payment"] == {"id": payment_id, "status": "PARTIALLY_REFUNDED", "refunded_amount": 1000}
    assert fake_stripe.calls == [{"payment_intent": "pi_123", "amount": 1000, "reason": "Goodwill"}]

    with session_scope(app) as s:
        assert s.query(Subscription).filter_by(user_id=user_id).one().status == "ACTIVE"

    r = _refund(client, csrf, payment_id, amount=1500)
    assert r.status_code == 200
    assert r.json["refund"]["is_full_refund"] is True

    with session_scope(app) as s:
        assert s.get(Payment, payment_id).status == "REFUNDED"
        assert s.query(Refund).filter_by(payment_id=payment_id).count() == 2
        assert s.query(Subscription).filter_by(user_id=user_id).one().status == "CANCELLED"
        assert s.get(StudioProfile, studio_id).status == "INACTIVE"
        assert s.query(AuditEvent).filter_by(action="payment.refund").count() == 2


def test_amount_over_balance(client, login, csrf, fake_stripe, paid_member):
    _, _, payment_id = paid_member
    login(client)
    r = _refund(client, csrf, payment_id, amount=2501)
    assert r.status_code == 400
    assert "exceeds available balance" in r.json["error"]
    assert fake_stripe.calls == []


@pytest.mark.parametrize("amount", [0, -5, "abc", None])
def test_invalid_amount(client, login, csrf, fake_stripe, paid_member, amount):
    _, _, payment_id = paid_member
    login(client)
    r = _refund(client, csrf, payment_id, amount=amount)
    assert r.status_code == 400
    assert r.json["error"] == "Valid refund amount is required"


def test_payment_without_intent(app, client, login, csrf, fake_stripe, make_member):
    user_id, _ = make_member("promo_vo")
    with session_scope(app) as s:
        payment = Payment(user_id=user_id, amount=2500, status="SUCCEEDED")
        s.add(payment)
        s.flush()
        payment_id = payment.id
    login(client)
    r = _refund(client, csrf, payment_id, amount=100)
    assert r.status_code == 400
    assert r.json["error"] == "Cannot refund: No payment intent ID"


def test_stripe_failure(app, client, login, csrf, monkeypatch, paid_member):
    monkeypatch.setattr(membership_service, "stripe_from_config", lambda _config: FailingStripe())
    _, _, payment_id = paid_member
    login(client)
    r = _refund(client, csrf, payment_id, amount=100)
    assert r.status_code == 502
    with session_scope(app) as s:
        assert s.get(Payment, payment_id).refunded_amount == 0


def test_unknown_payment(client, login, csrf, fake_stripe):
    login(client)
    assert _refund(client, csrf, 4242, amount=100).status_code == 404


def test_admin_form_takes_pounds(app, client, login, csrf, fake_stripe, paid_member):
    _, _, payment_id = paid_member
    login(client)
    token = csrf(client)
    r = client.post(f"/admin/payments/{payment_id}/refund", data={"amount": "5.00", "reason": "", "csrf_token": token})
    assert r.status_code == 302
    assert fake_stripe.calls[0]["amount"] == 500
    assert client.get(f"/admin/payments/{payment_id}").status_code == 200
