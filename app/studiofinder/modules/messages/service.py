from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from app.studiofinder.audit import record_event
from app.studiofinder.models import USER_STATUS_ACTIVE, User
from app.studiofinder.modules.messages.models import Message
from app.studiofinder.security import strip_html

if TYPE_CHECKING:
    from sqlalchemy.orm import Session


SUBJECT_MIN = 5
SUBJECT_MAX = 200
BODY_MIN = 10
BODY_MAX = 2000

BOX_RECEIVED = "received"
BOX_SENT = "sent"


class MessageError(Exception):
    def __init__(self, message: str, status: int = 400):
        super().__init__(message)
        self.message = message
        self.status = status


def validate_message_payload(payload: dict) -> list[str]:
    errors: list[str] = []
    if not payload.get("recipient_id") and not (payload.get("recipient_username") or "").strip():
        errors.append("Recipient is required")
    subject = strip_html(payload.get("subject"))
    if len(subject) < SUBJECT_MIN:
        errors.append(f"Subject must be at least {SUBJECT_MIN} characters")
    elif len(subject) > SUBJECT_MAX:
        errors.append(f"Subject must be less than {SUBJECT_MAX} characters")
    body = strip_html(payload.get("body") or payload.get("message"))
    if len(body) < BODY_MIN:
        errors.append(f"Message must be at least {BODY_MIN} characters")
    elif len(body) > BODY_MAX:
        errors.append(f"Message must be less than {BODY_MAX} characters")
    return errors


def _find_recipient(s: "Session", payload: dict) -> User | None:
    from sqlalchemy import func

    recipient_id = payload.get("recipient_id")
    if recipient_id:
        try:
            return s.get(User, int(recipient_id))
        except (TypeError, ValueError):
            return None
    username = (payload.get("recipient_username") or "").strip().lower()
    return s.query(User).filter(func.lower(User.username) == username).one_or_none()


def send_message(s: "Session", sender: User, payload: dict) -> Message:
    """Payload must already be validated."""
    recipient = _find_recipient(s, payload)
    if recipient is None or recipient.status != USER_STATUS_ACTIVE or not recipient.is_active:
        raise MessageError("Recipient not found", 404)
    if recipient.id == sender.id:
        raise MessageError("You cannot send a message to yourself", 400)

    msg = Message(
        sender_id=sender.id,
        recipient_id=recipient.id,
        subject=strip_html(payload.get("subject")),
        body=strip_html(payload.get("body") or payload.get("message")),
    )
    s.add(msg)
    s.flush()
    record_event(
        s,
        actor=sender,
        action="message.send",
        entity_type="Message",
        entity_id=str(msg.id),
        metadata={"recipient_id": recipient.id},
    )
    return msg


def list_messages(s: "Session", user: User, box: str, *, offset: int = 0, limit: int = 20) -> tuple[list[Message], int]:
    q = s.query(Message)
    if box == BOX_SENT:
        q = q.filter(Message.sender_id == user.id)
    else:
        q = q.filter(Message.recipient_id == user.id)
    total = q.count()
    rows = q.order_by(Message.created_at.desc(), Message.id.desc()).offset(offset).limit(limit).all()
    return rows, total


def unread_count(s: "Session", user: User) -> int:
    return s.query(Message).filter(Message.recipient_id == user.id, Message.is_read.is_(False)).count()


def mark_read(s: "Session", msg: Message, user: User) -> Message:
    """Recipient only; a second call is a no-op."""
    if msg.recipient_id != user.id:
        raise MessageError("Message not found", 404)
    if not msg.is_read:
        msg.is_read = True
        msg.read_at = datetime.utcnow()
    return msg


def _party(user: User | None) -> dict[str, Any] | None:
    if user is None:
        return None
    return {"id": user.id, "username": user.username, "display_name": user.display_name}


def serialize_message(msg: Message) -> dict[str, Any]:
    return {
        "id": msg.id,
        "subject": msg.subject,
        "body": msg.body,
        "is_read": msg.is_read,
        "read_at": msg.read_at.isoformat() if msg.read_at else None,
        "created_at": msg.created_at.isoformat(),
        "sender": _party(msg.sender),
        "recipient": _party(msg.recipient),
    }
