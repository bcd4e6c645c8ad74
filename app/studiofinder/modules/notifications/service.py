from __future__ import annotations

import logging
import secrets
from datetime import datetime
from typing import TYPE_CHECKING, Any

from flask import current_app
from sqlalchemy import select

from app.studiofinder.audit import record_event
from app.studiofinder.models import TIER_BASIC, TIER_PREMIUM, USER_STATUS_ACTIVE, USER_STATUS_PENDING, User
from app.studiofinder.modules.notifications.models import (
    CAMPAIGN_DRAFT,
    CAMPAIGN_SENDING,
    CAMPAIGN_SENT,
    DELIVERY_FAILED,
    DELIVERY_PENDING,
    DELIVERY_SENT,
    DELIVERY_SKIPPED,
    EmailCampaign,
    EmailDelivery,
    EmailPreference,
    EmailTemplate,
)
from app.studiofinder.modules.notifications.render import (
    MissingVariablesError,
    TemplateNotFoundError,
    render_email,
)
from app.studiofinder.modules.notifications.resend_client import EmailSendError, ResendClient
from app.studiofinder.modules.notifications.templates import get_template_definition

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

CAMPAIGN_BATCH_SIZE = 50

SEGMENTS = {
    "active_members": "All active members",
    "premium_members": "Premium members",
    "basic_members": "Basic members",
    "pending_signups": "Unfinished signups",
}


def email_client_from_config(config: dict) -> ResendClient | None:
    key = (config.get("RESEND_API_KEY") or "").strip()
    if not key:
        return None
    return ResendClient(api_key=key)


def get_or_create_preference(s: "Session", user: User) -> EmailPreference:
    pref = s.query(EmailPreference).filter(EmailPreference.user_id == user.id).one_or_none()
    if pref is None:
        pref = EmailPreference(user_id=user.id, marketing_opt_in=True, unsubscribe_token=secrets.token_urlsafe(24))
        s.add(pref)
        s.flush()
    return pref


def unsubscribe_url_for(s: "Session", user: User, base_url: str) -> str:
    pref = get_or_create_preference(s, user)
    return f"{base_url}/unsubscribe/{pref.unsubscribe_token}"


def unsubscribe(s: "Session", token: str) -> EmailPreference | None:
    pref = s.query(EmailPreference).filter(EmailPreference.unsubscribe_token == token).one_or_none()
    if pref is None:
        return None
    if pref.marketing_opt_in:
        pref.marketing_opt_in = False
        pref.unsubscribed_at = datetime.utcnow()
        pref.updated_at = datetime.utcnow()
        record_event(s, actor=None, action="email.unsubscribe", entity_type="User", entity_id=str(pref.user_id))
    return pref


def set_marketing_opt_in(s: "Session", user: User, opt_in: bool) -> EmailPreference:
    pref = get_or_create_preference(s, user)
    pref.marketing_opt_in = opt_in
    pref.unsubscribed_at = None if opt_in else datetime.utcnow()
    pref.updated_at = datetime.utcnow()
    return pref


def is_marketing_allowed(s: "Session", user: User) -> bool:
    pref = s.query(EmailPreference).filter(EmailPreference.user_id == user.id).one_or_none()
    return pref is None or pref.marketing_opt_in


def send_templated_email(
    s: "Session",
    template_key: str,
    to: str,
    variables: dict[str, Any],
    *,
    user: User | None = None,
    reply_to: str | None = None,
) -> str | None:
    """
    Render and send one email. Returns the provider message id, or None when
    nothing was sent (no API key, marketing opt-out, provider failure).
    Template and variable errors propagate; they are programming errors.
    """
    config = current_app.config
    definition = get_template_definition(template_key)
    if definition is None:
        raise TemplateNotFoundError(f"Template not found: {template_key}")

    base_url = config.get("BASE_URL") or ""
    unsubscribe = None
    if definition.is_marketing:
        if user is None:
            raise ValueError(f"Marketing template '{template_key}' needs a recipient user")
        if not is_marketing_allowed(s, user):
            logger.info("Skipping marketing email %s to user %s (opted out)", template_key, user.id)
            return None
        unsubscribe = unsubscribe_url_for(s, user, base_url)

    rendered = render_email(s, template_key, variables, base_url=base_url, unsubscribe_url=unsubscribe)

    client = email_client_from_config(config)
    if client is None:
        logger.warning("RESEND_API_KEY not set; email %s to %s not sent", template_key, to)
        return None
    try:
        message_id = client.send_email(
            from_email=config.get("EMAIL_FROM") or "",
            to=to,
            subject=rendered.subject,
            html=rendered.html,
            text=rendered.text,
            reply_to=reply_to,
        )
    except EmailSendError as e:
        logger.error("Email %s to %s failed: %s", template_key, to, e)
        return None
    logger.info("Sent email %s to %s (id=%s)", template_key, to, message_id)
    return message_id


# --- Campaigns ---------------------------------------------------------------


def validate_campaign_payload(payload: dict) -> list[str]:
    errors: list[str] = []
    if not (payload.get("name") or "").strip():
        errors.append("Name is required.")
    key = (payload.get("template_key") or "").strip()
    definition = get_template_definition(key)
    if definition is None:
        errors.append("Unknown template.")
    if (payload.get("segment") or "") not in SEGMENTS:
        errors.append("Unknown segment.")
    if definition is not None:
        # Recipient fields are filled per user at send time.
        provided = {**(payload.get("variables") or {}), "display_name": "x", "user_email": "x@example.com"}
        missing = [v for v in definition.variables if provided.get(v) in (None, "")]
        if missing:
            errors.append(f"Missing template variables: {', '.join(missing)}")
    return errors


def create_campaign(s: "Session", payload: dict, user: User) -> EmailCampaign:
    campaign = EmailCampaign(
        name=payload["name"].strip(),
        template_key=payload["template_key"].strip(),
        segment=payload["segment"],
        variables=dict(payload.get("variables") or {}),
        status=CAMPAIGN_DRAFT,
        created_by_user_id=user.id,
    )
    s.add(campaign)
    s.flush()
    record_event(
        s,
        actor=user,
        action="email.campaign_create",
        entity_type="EmailCampaign",
        entity_id=str(campaign.id),
        metadata={"template_key": campaign.template_key, "segment": campaign.segment},
    )
    return campaign


def segment_users(s: "Session", segment: str) -> list[User]:
    stmt = select(User).where(User.is_active.is_(True))
    if segment == "active_members":
        stmt = stmt.where(User.status == USER_STATUS_ACTIVE)
    elif segment == "premium_members":
        stmt = stmt.where(User.status == USER_STATUS_ACTIVE, User.membership_tier == TIER_PREMIUM)
    elif segment == "basic_members":
        stmt = stmt.where(User.status == USER_STATUS_ACTIVE, User.membership_tier == TIER_BASIC)
    elif segment == "pending_signups":
        stmt = stmt.where(User.status == USER_STATUS_PENDING)
    else:
        raise ValueError(f"Unknown segment: {segment}")
    return list(s.execute(stmt.order_by(User.id.asc())).scalars())


def queue_campaign(s: "Session", campaign: EmailCampaign, user: User) -> int:
    """Create one PENDING delivery per recipient. Opted-out users are SKIPPED for marketing templates."""
    if campaign.status != CAMPAIGN_DRAFT:
        raise ValueError("Only draft campaigns can be started.")
    definition = get_template_definition(campaign.template_key)
    if definition is None:
        raise TemplateNotFoundError(f"Template not found: {campaign.template_key}")

    count = 0
    for recipient in segment_users(s, campaign.segment):
        status = DELIVERY_PENDING
        if definition.is_marketing and not is_marketing_allowed(s, recipient):
            status = DELIVERY_SKIPPED
        s.add(EmailDelivery(campaign_id=campaign.id, user_id=recipient.id, to_email=recipient.email, status=status))
        if status == DELIVERY_PENDING:
            count += 1
    campaign.recipient_count = count
    campaign.status = CAMPAIGN_SENDING
    campaign.queued_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="email.campaign_start",
        entity_type="EmailCampaign",
        entity_id=str(campaign.id),
        metadata={"recipients": count},
    )
    s.flush()
    return count


def process_campaign_batch(s: "Session", *, batch_size: int = CAMPAIGN_BATCH_SIZE) -> dict[str, int]:
    """Send up to `batch_size` pending deliveries across SENDING campaigns."""
    sent = failed = 0
    pending = (
        s.query(EmailDelivery)
        .join(EmailCampaign, EmailCampaign.id == EmailDelivery.campaign_id)
        .filter(EmailCampaign.status == CAMPAIGN_SENDING, EmailDelivery.status == DELIVERY_PENDING)
        .order_by(EmailDelivery.id.asc())
        .limit(batch_size)
        .all()
    )
    for delivery in pending:
        campaign = delivery.campaign
        recipient = s.get(User, delivery.user_id)
        if recipient is None:
            delivery.status = DELIVERY_SKIPPED
            continue
        variables = {
            **(campaign.variables or {}),
            "display_name": recipient.display_name,
            "user_email": recipient.email,
            "username": recipient.username,
        }
        try:
            message_id = send_templated_email(s, campaign.template_key, delivery.to_email, variables, user=recipient)
        except (MissingVariablesError, TemplateNotFoundError) as e:
            message_id = None
            delivery.error = str(e)
        if message_id:
            delivery.status = DELIVERY_SENT
            delivery.provider_message_id = message_id
            delivery.sent_at = datetime.utcnow()
            campaign.sent_count += 1
            sent += 1
        else:
            delivery.status = DELIVERY_FAILED
            delivery.error = delivery.error or "Send failed"
            campaign.failed_count += 1
            failed += 1

    s.flush()
    completed = 0
    sending = s.query(EmailCampaign).filter(EmailCampaign.status == CAMPAIGN_SENDING).all()
    for campaign in sending:
        remaining = (
            s.query(EmailDelivery)
            .filter(EmailDelivery.campaign_id == campaign.id, EmailDelivery.status == DELIVERY_PENDING)
            .count()
        )
        if remaining == 0:
            campaign.status = CAMPAIGN_SENT
            campaign.sent_at = datetime.utcnow()
            completed += 1
    return {"sent": sent, "failed": failed, "campaigns_completed": completed}


# --- Template overrides ------------------------------------------------------

_SAMPLE_VALUES = {
    "string": "Sample text",
    "url": "https://example.com",
    "email": "member@example.com",
    "number": "3",
    "date": "1 January 2026",
}


def sample_variables(definition) -> dict[str, str]:
    """Placeholder values for admin previews."""
    return {name: _SAMPLE_VALUES.get(kind, "Sample") for name, kind in definition.variables.items()}


def save_template_override(s: "Session", key: str, form: dict, user: User) -> EmailTemplate:
    """Blank fields fall back to the built-in copy; body is one paragraph per blank-line block."""
    if get_template_definition(key) is None:
        raise TemplateNotFoundError(f"Template not found: {key}")
    row = s.query(EmailTemplate).filter(EmailTemplate.key == key).one_or_none()
    if row is None:
        row = EmailTemplate(key=key)
        s.add(row)
    for attr in ("subject", "heading", "cta_label", "cta_url", "footer_text"):
        setattr(row, attr, (form.get(attr) or "").strip() or None)
    body = (form.get("body") or "").replace("\r\n", "\n").strip()
    row.body_paragraphs = [p.strip() for p in body.split("\n\n") if p.strip()] or None
    row.updated_at = datetime.utcnow()
    row.updated_by_user_id = user.id
    s.flush()
    record_event(s, actor=user, action="email.template_update", entity_type="EmailTemplate", entity_id=key)
    return row


def reset_template_override(s: "Session", key: str, user: User) -> bool:
    row = s.query(EmailTemplate).filter(EmailTemplate.key == key).one_or_none()
    if row is None:
        return False
    s.delete(row)
    record_event(s, actor=user, action="email.template_reset", entity_type="EmailTemplate", entity_id=key)
    return True
