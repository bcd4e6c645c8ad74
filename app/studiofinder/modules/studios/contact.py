"""
Booking enquiries from the public profile page.

The enquiry is emailed to the studio owner with Reply-To set to the sender;
nothing is stored apart from an audit event.
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from app.studiofinder.audit import record_event
from app.studiofinder.modules.accounts.service import EMAIL_RE, normalize_email
from app.studiofinder.modules.notifications.service import send_templated_email
from app.studiofinder.security import strip_html

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.studiofinder.modules.studios.models import StudioProfile

logger = logging.getLogger(__name__)

SENDER_NAME_MAX = 100
MESSAGE_MIN = 40
MESSAGE_MAX = 5000


def validate_enquiry_payload(payload: dict) -> list[str]:
    errors: list[str] = []
    name = strip_html(payload.get("sender_name"))
    if not name:
        errors.append("Name is required")
    elif len(name) > SENDER_NAME_MAX:
        errors.append(f"Name must be less than {SENDER_NAME_MAX} characters")
    if not EMAIL_RE.match(normalize_email(payload.get("sender_email"))):
        errors.append("Valid email is required")
    message = (payload.get("message") or "").strip()
    if not message:
        errors.append("Message is required")
    elif len(message) < MESSAGE_MIN:
        errors.append(f"Message must be at least {MESSAGE_MIN} characters")
    elif len(message) > MESSAGE_MAX:
        errors.append(f"Message must be less than {MESSAGE_MAX} characters")
    return errors


def send_studio_enquiry(s: "Session", studio: "StudioProfile", payload: dict) -> str | None:
    """Payload must already be validated. Returns the provider message id, None when nothing was sent."""
    owner = studio.owner
    sender_name = strip_html(payload.get("sender_name"))
    sender_email = normalize_email(payload.get("sender_email"))
    message_id = send_templated_email(
        s,
        "studio-enquiry",
        owner.email,
        {
            "studio_name": studio.name,
            "sender_name": sender_name,
            "sender_email": sender_email,
            "message": (payload.get("message") or "").strip(),
        },
        user=owner,
        reply_to=sender_email,
    )
    record_event(
        s,
        actor=None,
        action="studio.enquiry",
        entity_type="StudioProfile",
        entity_id=str(studio.id),
        metadata={"sent": message_id is not None},
    )
    if message_id is None:
        logger.error("Enquiry for studio %s was not delivered", studio.id)
    return message_id


def serialize_enquiry_target(studio: "StudioProfile") -> dict[str, Any]:
    return {"id": studio.id, "name": studio.name, "username": studio.owner.username}
