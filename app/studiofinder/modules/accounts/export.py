"""
Personal data export: every row the site holds about one member.

Credentials and one-time tokens never leave the database.
"""
from __future__ import annotations

import io
import json
import zipfile
from datetime import date, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import inspect, or_

from app.studiofinder.audit import record_event
from app.studiofinder.models import UserMetadata
from app.studiofinder.modules.memberships.models import Payment, Refund, Subscription
from app.studiofinder.modules.messages.models import Message
from app.studiofinder.modules.notifications.models import EmailPreference
from app.studiofinder.modules.reviews.models import Review
from app.studiofinder.modules.support.models import SupportTicket

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.studiofinder.models import User

EXPORT_FORMAT_VERSION = "1.0"
USER_SECRET_FIELDS = ("password_hash", "verification_token", "verification_token_expiry")
PREFERENCE_SECRET_FIELDS = ("unsubscribe_token",)

README = """Voiceover Studio Finder data export

user.json              your account
studio.json            your studio listing, types, services and images
reviews.json           reviews you wrote and reviews of your studio
messages.json          messages you sent and received
billing.json           subscriptions, payments and refunds
support_tickets.json   support requests
preferences.json       email preferences and account settings
"""


def _value(v: Any) -> Any:
    if isinstance(v, (datetime, date)):
        return v.isoformat()
    return v


def row_to_dict(obj: Any, exclude: tuple[str, ...] = ()) -> dict[str, Any]:
    """Mapped column attributes of one ORM row."""
    return {
        attr.key: _value(getattr(obj, attr.key))
        for attr in inspect(obj).mapper.column_attrs
        if attr.key not in exclude
    }


def build_user_export(s: "Session", user: "User", *, now: datetime | None = None) -> dict[str, Any]:
    now = now or datetime.utcnow()
    studio = user.studio
    studio_data = None
    if studio is not None:
        studio_data = {
            **row_to_dict(studio),
            "studio_types": studio.type_keys,
            "services": studio.service_keys,
            "images": [row_to_dict(img) for img in studio.images],
        }

    reviews_written = s.query(Review).filter(Review.reviewer_id == user.id).order_by(Review.id).all()
    reviews_received = s.query(Review).filter(Review.owner_id == user.id).order_by(Review.id).all()
    messages = (
        s.query(Message)
        .filter(or_(Message.sender_id == user.id, Message.recipient_id == user.id))
        .order_by(Message.id)
        .all()
    )
    subscriptions = s.query(Subscription).filter(Subscription.user_id == user.id).order_by(Subscription.id).all()
    payments = s.query(Payment).filter(Payment.user_id == user.id).order_by(Payment.id).all()
    refunds = s.query(Refund).filter(Refund.user_id == user.id).order_by(Refund.id).all()
    tickets = s.query(SupportTicket).filter(SupportTicket.user_id == user.id).order_by(SupportTicket.id).all()
    preference = s.query(EmailPreference).filter(EmailPreference.user_id == user.id).one_or_none()
    metadata = s.query(UserMetadata).filter(UserMetadata.user_id == user.id).order_by(UserMetadata.key).all()

    return {
        "export_date": now.isoformat(),
        "format_version": EXPORT_FORMAT_VERSION,
        "user": row_to_dict(user, USER_SECRET_FIELDS),
        "studio": studio_data,
        "reviews_written": [row_to_dict(r) for r in reviews_written],
        "reviews_received": [row_to_dict(r) for r in reviews_received],
        "messages_sent": [row_to_dict(m) for m in messages if m.sender_id == user.id],
        "messages_received": [row_to_dict(m) for m in messages if m.recipient_id == user.id],
        "subscriptions": [row_to_dict(sub) for sub in subscriptions],
        "payments": [row_to_dict(p) for p in payments],
        "refunds": [row_to_dict(r) for r in refunds],
        "support_tickets": [row_to_dict(t) for t in tickets],
        "email_preferences": row_to_dict(preference, PREFERENCE_SECRET_FIELDS) if preference else None,
        "metadata": {m.key: m.value for m in metadata},
    }


def _dump(data: Any) -> str:
    return json.dumps(data, indent=2, default=str)


def build_export_archive(export: dict[str, Any]) -> bytes:
    """The same export split into one JSON file per area, zipped."""
    files = {
        "user.json": {"user": export["user"], "export_date": export["export_date"], "format_version": export["format_version"]},
        "studio.json": export["studio"],
        "reviews.json": {"written": export["reviews_written"], "received": export["reviews_received"]},
        "messages.json": {"sent": export["messages_sent"], "received": export["messages_received"]},
        "billing.json": {
            "subscriptions": export["subscriptions"],
            "payments": export["payments"],
            "refunds": export["refunds"],
        },
        "support_tickets.json": export["support_tickets"],
        "preferences.json": {"email_preferences": export["email_preferences"], "metadata": export["metadata"]},
    }
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        zf.writestr("README.txt", README)
        for name, content in files.items():
            zf.writestr(name, _dump(content))
    return buf.getvalue()


def export_json(export: dict[str, Any]) -> str:
    return _dump(export)


def record_export(s: "Session", user: "User", fmt: str) -> None:
    record_event(s, actor=user, action="user.data_export", entity_type="User", entity_id=str(user.id), metadata={"format": fmt})
