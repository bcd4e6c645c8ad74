"""
Tests for the free-signup promotion switch.

Tests cover:
- Env flag and end date
- Admin site setting overriding the env flag
- Price and call-to-action text
- /api/promo and the promo activation endpoint
"""

from datetime import datetime

from app.studiofinder.db import session_scope
from app.studiofinder.models import SiteSetting, User
from app.studiofinder.modules.memberships.models import Payment, Subscription
from app.studiofinder.modules.memberships.promo import (
    PROMO_SETTING_KEY,
    get_price_display,
    get_promo_config,
    get_promo_config_from_db,
    get_signup_cta_text,
)

NOW = datetime(2026, 6, 1, 12, 0, 0)


def _set_promo(app, value):
    with session_scope(app) as s:
        s.add(SiteSetting(key=PROMO_SETTING_KEY, content=value))


class TestPromoConfig:
    def test_off_by_default(self):
        assert get_promo_config({}, now=NOW).is_active is False

    def test_env_flag_without_end_date(self):
        promo = get_promo_config({"PROMO_FREE_SIGNUP": True}, now=NOW)
        assert promo.is_active is True
        assert promo.end_date is None

    def test_end_date(self):
        config = {"PROMO_FREE_SIGNUP": True, "PROMO_END_DATE": "2026-06-30T23:59:59Z"}
        assert get_promo_config(config, now=NOW).is_active is True
        assert get_promo_config(config, now=datetime(2026, 7, 1)).is_active is False
        assert get_promo_config(config, now=NOW).end_date_display == "30 June 2026"

    def test_invalid_end_date_is_ignored(self):
        promo = get_promo_config({"PROMO_FREE_SIGNUP": True, "PROMO_END_DATE": "soon"}, now=NOW)
        assert promo.is_active is True
        assert promo.end_date is None

    def test_db_setting_overrides_env(self, app):
        _set_promo(app, "true")
        with session_scope(app) as s:
            assert get_promo_config_from_db(s, {"PROMO_FREE_SIGNUP": False}, now=NOW).is_active is True
            config = {"PROMO_FREE_SIGNUP": False, "PROMO_END_DATE": "2026-01-01T00:00:00Z"}
            assert get_promo_config_from_db(s, config, now=NOW).is_active is False

    def test_db_setting_can_switch_off(self, app):
        _set_promo(app, "false")
        with session_scope(app) as s:
            assert get_promo_config_from_db(s, {"PROMO_FREE_SIGNUP": True}, now=NOW).is_active is False

    def test_no_setting_uses_env(self, app):
        with session_scope(app) as s:
            assert get_promo_config_from_db(s, {"PROMO_FREE_SIGNUP": True}, now=NOW).is_active is True


class TestDisplay:
    def test_active(self):
        promo = get_promo_config({"PROMO_FREE_SIGNUP": True}, now=NOW)
        assert get_price_display(promo) == {"price": "FREE", "was_price": "£25/year", "is_free": True}
        assert get_signup_cta_text(promo) == "Join free today"

    def test_inactive(self):
        promo = get_promo_config({}, now=NOW)
        assert get_price_display(promo) == {"price": "£25/year", "was_price": None, "is_free": False}
        assert get_signup_cta_text(promo) == "List Your Studio - £25/year"


class TestPromoApi:
    def test_status_endpoint(self, app, client):
        r = client.get("/api/promo")
        assert r.status_code == 200
        assert r.json["is_active"] is False
        assert r.json["price"]["is_free"] is False

        _set_promo(app, "true")
        r = client.get("/api/promo")
        assert r.json["is_active"] is True
        assert r.json["cta_text"] == "Join free today"

    def test_activation_refused_when_promo_off(self, client, make_member):
        user_id, _ = make_member("hopeful", status="PENDING", studio=False)
        r = client.post("/api/stripe/activate-promo-membership", json={"user_id": user_id, "email": "hopeful@example.com"})
        assert r.status_code == 403

    def test_activation(self, app, client, make_member):
        _set_promo(app, "true")
        user_id, _ = make_member("lucky_one", status="PENDING", tier="BASIC", studio=False)

        r = client.post("/api/stripe/activate-promo-membership", json={"user_id": user_id, "email": "wrong@example.com"})
        assert r.status_code == 404

        r = client.post("/api/stripe/activate-promo-membership", json={"user_id": user_id, "email": "lucky_one@example.com"})
        assert r.status_code == 200
        assert r.json["success"] is True

        with session_scope(app) as s:
            user = s.get(User, user_id)
            assert user.status == "ACTIVE"
            assert user.membership_tier == "PREMIUM"
            assert user.studio is not None
            assert user.studio.status == "ACTIVE"
            sub = s.query(Subscription).filter_by(user_id=user_id).one()
            assert sub.payment_method == "promo"
            assert (sub.current_period_end - sub.current_period_start).days == 365
            payment = s.query(Payment).filter_by(user_id=user_id).one()
            assert payment.amount == 0

        r = client.post("/api/stripe/activate-promo-membership", json={"user_id": user_id, "email": "lucky_one@example.com"})
        assert r.json["alreadyActive"] is True
