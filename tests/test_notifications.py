"""
Tests for email templates, campaigns and unsubscribe handling.

Tests cover:
- Placeholder substitution and required-variable checks
- Built-in copy declares every placeholder it uses
- DB overrides of template copy
- Campaign validation, queueing by segment and batch processing
- Unsubscribe links
"""

import pytest

from app.studiofinder.db import session_scope
from app.studiofinder.models import User
from app.studiofinder.modules.notifications import service as notification_service
from app.studiofinder.modules.notifications.models import EmailCampaign, EmailDelivery, EmailPreference
from app.studiofinder.modules.notifications.render import (
    MissingVariablesError,
    render_email,
    substitute_variables,
    undeclared_placeholders,
)
from app.studiofinder.modules.notifications.service import (
    create_campaign,
    get_or_create_preference,
    is_marketing_allowed,
    process_campaign_batch,
    queue_campaign,
    save_template_override,
    send_templated_email,
    unsubscribe,
    validate_campaign_payload,
)
from app.studiofinder.modules.notifications.templates import EMAIL_TEMPLATES

NEWSLETTER = {"name": "Spring news", "template_key": "member-newsletter", "segment": "premium_members", "variables": {"message": "New search filters are live."}}


def _admin(s):
    return s.query(User).filter_by(username="siteadmin").one()


class TestRender:
    def test_substitute_variables(self):
        assert substitute_variables("Hi {{ name }}, {{missing}}", {"name": "Jo"}) == "Hi Jo, {{missing}}"
        assert substitute_variables("{{n}} days", {"n": 0}) == "0 days"

    @pytest.mark.parametrize("definition", EMAIL_TEMPLATES, ids=lambda d: d.key)
    def test_builtin_copy_declares_its_placeholders(self, definition):
        assert undeclared_placeholders(definition) == []

    def test_missing_variables(self):
        with pytest.raises(MissingVariablesError) as exc:
            render_email(None, "password-reset", {"user_email": "a@b.co"})
        assert exc.value.missing == ["reset_url"]

    def test_blank_url_counts_as_missing(self):
        with pytest.raises(MissingVariablesError):
            render_email(None, "password-reset", {"user_email": "a@b.co", "reset_url": "  "})

    def test_render(self):
        out = render_email(
            None,
            "password-reset",
            {"user_email": "jo@example.com", "reset_url": "https://site/reset?t=1"},
            base_url="https://site",
        )
        assert out.subject == "Reset your password"
        assert "jo@example.com" in out.text
        assert "https://site/reset?t=1" in out.html

    def test_html_is_escaped(self):
        out = render_email(None, "member-newsletter", {"display_name": "<script>", "message": "Hello"})
        assert "<script>" not in out.html
        assert "&lt;script&gt;" in out.html


class TestTemplateOverrides:
    def test_override_replaces_copy(self, app):
        with app.app_context(), session_scope(app) as s:
            save_template_override(
                s,
                "member-newsletter",
                {"subject": "Big news, {{display_name}}", "body": "First line.\r\n\r\n{{message}}\n\n"},
                _admin(s),
            )
            out = render_email(s, "member-newsletter", {"display_name": "Jo", "message": "Hello there"})
            assert out.subject == "Big news, Jo"
            assert "First line." in out.text
            assert "Hello there" in out.text

    def test_admin_rejects_unknown_placeholder(self, app, client, login, csrf):
        login(client)
        token = csrf(client)
        r = client.post(
            "/admin/emails/templates/member-newsletter",
            data={"subject": "Hi {{nickname}}", "body": "", "csrf_token": token},
        )
        assert r.status_code == 302
        with session_scope(app) as s:
            assert s.query(notification_service.EmailTemplate).count() == 0

    def test_admin_pages(self, client, login):
        login(client)
        assert client.get("/admin/emails").status_code == 200
        assert client.get("/admin/emails/templates/renewal-reminder").status_code == 200
        assert client.get("/admin/emails/templates/nope").status_code == 404
        assert client.get("/admin/emails/campaigns").status_code == 200


class TestSending:
    def test_no_api_key_sends_nothing(self, app):
        with app.app_context(), session_scope(app) as s:
            assert send_templated_email(s, "password-reset", "a@b.co", {"user_email": "a@b.co", "reset_url": "https://x"}) is None

    def test_marketing_needs_recipient_user(self, app, email_client):
        with app.app_context(), session_scope(app) as s:
            with pytest.raises(ValueError):
                send_templated_email(s, "member-newsletter", "a@b.co", {"display_name": "A", "message": "m"})

    def test_marketing_includes_unsubscribe_link(self, app, email_client, make_member):
        user_id, _ = make_member("reader_vo")
        with app.app_context(), session_scope(app) as s:
            user = s.get(User, user_id)
            assert send_templated_email(s, "member-newsletter", user.email, {"display_name": "R", "message": "m"}, user=user) == "msg_1"
            token = get_or_create_preference(s, user).unsubscribe_token
        assert f"/unsubscribe/{token}" in email_client.sent[0]["html"]


class TestUnsubscribe:
    def test_page_opts_out(self, app, client, make_member):
        user_id, _ = make_member("reader_vo")
        with session_scope(app) as s:
            token = get_or_create_preference(s, s.get(User, user_id)).unsubscribe_token

        assert client.get(f"/unsubscribe/{token}").status_code == 200
        assert client.get("/unsubscribe/not-a-token").status_code == 404
        with session_scope(app) as s:
            assert is_marketing_allowed(s, s.get(User, user_id)) is False
            assert s.query(EmailPreference).filter_by(user_id=user_id).one().unsubscribed_at is not None

    def test_unknown_token(self, app):
        with app.app_context(), session_scope(app) as s:
            assert unsubscribe(s, "nope") is None


class TestCampaigns:
    def test_validation(self):
        assert validate_campaign_payload(NEWSLETTER) == []
        errors = validate_campaign_payload({"name": "", "template_key": "nope", "segment": "everyone"})
        assert errors == ["Name is required.", "Unknown template.", "Unknown segment."]
        errors = validate_campaign_payload({**NEWSLETTER, "variables": {}})
        assert errors == ["Missing template variables: message"]

    def test_queue_and_process(self, app, email_client, make_member):
        make_member("premium_a")
        opted_out, _ = make_member("premium_b")
        make_member("basic_c", tier="BASIC")
        with app.app_context(), session_scope(app) as s:
            notification_service.set_marketing_opt_in(s, s.get(User, opted_out), False)
            campaign = create_campaign(s, NEWSLETTER, _admin(s))
            assert campaign.status == "DRAFT"
            assert queue_campaign(s, campaign, _admin(s)) == 1
            assert campaign.status == "SENDING"
            statuses = sorted(d.status for d in s.query(EmailDelivery).filter_by(campaign_id=campaign.id))
            assert statuses == ["PENDING", "SKIPPED"]
            with pytest.raises(ValueError):
                queue_campaign(s, campaign, _admin(s))
            campaign_id = campaign.id

        with app.app_context(), session_scope(app) as s:
            assert process_campaign_batch(s) == {"sent": 1, "failed": 0, "campaigns_completed": 1}
            campaign = s.get(EmailCampaign, campaign_id)
            assert campaign.status == "SENT"
            assert campaign.sent_count == 1
        assert email_client.sent[0]["to"] == "premium_a@example.com"
        assert "New search filters are live." in email_client.sent[0]["text"]

    def test_failures_without_api_key(self, app, make_member):
        make_member("premium_a")
        with app.app_context(), session_scope(app) as s:
            campaign = create_campaign(s, NEWSLETTER, _admin(s))
            queue_campaign(s, campaign, _admin(s))
            assert process_campaign_batch(s) == {"sent": 0, "failed": 1, "campaigns_completed": 1}
            delivery = s.query(EmailDelivery).one()
            assert delivery.status == "FAILED"
            assert delivery.error == "Send failed"

    def test_batches(self, app, email_client, make_member):
        for i in range(3):
            make_member(f"premium_{i}")
        with app.app_context(), session_scope(app) as s:
            campaign = create_campaign(s, NEWSLETTER, _admin(s))
            queue_campaign(s, campaign, _admin(s))
            assert process_campaign_batch(s, batch_size=2)["campaigns_completed"] == 0
            assert process_campaign_batch(s, batch_size=2) == {"sent": 1, "failed": 0, "campaigns_completed": 1}

    def test_admin_create_and_start(self, app, client, login, csrf, make_member):
        make_member("premium_a")
        login(client)
        token = csrf(client)
        r = client.post(
            "/admin/emails/campaigns/new",
            data={
                "name": "Spring news",
                "template_key": "member-newsletter",
                "segment": "premium_members",
                "var_message": "Hello",
                "csrf_token": token,
            },
        )
        assert r.status_code == 302
        with session_scope(app) as s:
            campaign_id = s.query(EmailCampaign).one().id
        assert client.get(f"/admin/emails/campaigns/{campaign_id}").status_code == 200
        r = client.post(f"/admin/emails/campaigns/{campaign_id}/start", data={"csrf_token": token})
        assert r.status_code == 302
        with session_scope(app) as s:
            assert s.get(EmailCampaign, campaign_id).recipient_count == 1
