from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any

from flask import current_app

from app.studiofinder.audit import record_event
from app.studiofinder.modules.notifications.service import send_templated_email
from app.studiofinder.modules.support.models import (
    TICKET_CATEGORIES,
    TICKET_CLOSED,
    TICKET_RESOLVED,
    TICKET_STATUSES,
    SupportTicket,
)
from app.studiofinder.security import strip_html
from app.studiofinder.utils import format_date_en_gb

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.studiofinder.models import User

logger = logging.getLogger(__name__)

SUBJECT_MIN = 5
SUBJECT_MAX = 200
MESSAGE_MIN = 10
MESSAGE_MAX = 5000


class SupportError(Exception):
    def __init__(self, message: str, status: int = 400):
        super().__init__(message)
        self.message = message
        self.status = status


def validate_ticket_payload(payload: dict) -> list[str]:
    errors: list[str] = []
    category = (payload.get("category") or "").strip().upper()
    if category not in TICKET_CATEGORIES:
        errors.append(f"Category must be one of: {', '.join(TICKET_CATEGORIES)}")
    subject = strip_html(payload.get("subject"))
    if not SUBJECT_MIN <= len(subject) <= SUBJECT_MAX:
        errors.append(f"Subject must be {SUBJECT_MIN}-{SUBJECT_MAX} characters")
    message = strip_html(payload.get("message"))
    if not MESSAGE_MIN <= len(message) <= MESSAGE_MAX:
        errors.append(f"Message must be {MESSAGE_MIN}-{MESSAGE_MAX} characters")
    return errors


def create_ticket(s: "Session", user: "User", payload: dict) -> SupportTicket:
    """Payload must already be validated. Notifies the support inbox; send failures do not fail the ticket."""
    ticket = SupportTicket(
        user_id=user.id,
        category=payload["category"].strip().upper(),
        subject=strip_html(payload.get("subject")),
        message=strip_html(payload.get("message")),
    )
    s.add(ticket)
    s.flush()
    record_event(
        s,
        actor=user,
        action="support.ticket_create",
        entity_type="SupportTicket",
        entity_id=str(ticket.id),
        metadata={"category": ticket.category},
    )

    support_email = current_app.config.get("SUPPORT_EMAIL")
    if not support_email:
        logger.warning("SUPPORT_EMAIL not set; ticket %s not forwarded", ticket.id)
        return ticket
    send_templated_email(
        s,
        "support-request",
        support_email,
        {
            "display_name": user.display_name,
            "username": user.username,
            "user_email": user.email,
            "category": ticket.category,
            "submitted_at": format_date_en_gb(ticket.created_at or datetime.utcnow()),
            "message": f"{ticket.subject}\n\n{ticket.message}",
        },
        reply_to=user.email,
    )
    return ticket


def update_ticket(s: "Session", ticket: SupportTicket, admin: "User", *, status: str | None, notes: str | None) -> dict[str, Any]:
    changes: dict[str, Any] = {}
    if status is not None:
        status = status.strip().upper()
        if status not in TICKET_STATUSES:
            raise SupportError(f"Unknown status: {status}", 400)
        if status != ticket.status:
            changes["status"] = {"old": ticket.status, "new": status}
            ticket.status = status
            ticket.resolved_at = datetime.utcnow() if status in (TICKET_RESOLVED, TICKET_CLOSED) else None
    if notes is not None:
        notes = notes.strip() or None
        if notes != ticket.admin_notes:
            changes["admin_notes"] = True
            ticket.admin_notes = notes
    if changes:
        ticket.updated_at = datetime.utcnow()
        record_event(
            s,
            actor=admin,
            action="support.ticket_update",
            entity_type="SupportTicket",
            entity_id=str(ticket.id),
            metadata=changes,
        )
    return changes


def serialize_ticket(ticket: SupportTicket) -> dict[str, Any]:
    return {
        "id": ticket.id,
        "category": ticket.category,
        "subject": ticket.subject,
        "message": ticket.message,
        "status": ticket.status,
        "created_at": ticket.created_at.isoformat(),
        "updated_at": ticket.updated_at.isoformat(),
        "resolved_at": ticket.resolved_at.isoformat() if ticket.resolved_at else None,
    }
