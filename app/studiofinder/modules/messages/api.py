from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from app.studiofinder.db import db_session
from app.studiofinder.modules.messages.models import Message
from app.studiofinder.modules.messages.service import (
    BOX_RECEIVED,
    BOX_SENT,
    MessageError,
    list_messages,
    mark_read,
    send_message,
    serialize_message,
    unread_count,
    validate_message_payload,
)
from app.studiofinder.rbac import require_api_login
from app.studiofinder.utils import json_error, json_payload, parse_int

bp = Blueprint("messages_api", __name__)

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


@bp.get("/api/messages")
@require_api_login
def messages_list():
    s = db_session()
    box = (request.args.get("box") or BOX_RECEIVED).strip().lower()
    if box not in (BOX_RECEIVED, BOX_SENT):
        return json_error("box must be 'received' or 'sent'", 400)
    offset = max(parse_int(request.args.get("offset"), 0), 0)
    limit = min(max(parse_int(request.args.get("limit"), DEFAULT_PAGE_SIZE), 1), MAX_PAGE_SIZE)
    rows, total = list_messages(s, g.current_user, box, offset=offset, limit=limit)
    return jsonify(
        {
            "messages": [serialize_message(m) for m in rows],
            "unread": unread_count(s, g.current_user),
            "pagination": {"offset": offset, "limit": limit, "total": total, "has_more": total > offset + limit},
        }
    )


@bp.post("/api/messages")
@require_api_login
def messages_send():
    s = db_session()
    payload = json_payload()
    errors = validate_message_payload(payload)
    if errors:
        return json_error("Validation failed", 400, details=errors)
    try:
        msg = send_message(s, g.current_user, payload)
    except MessageError as e:
        s.rollback()
        return json_error(e.message, e.status)
    s.commit()
    return jsonify({"success": True, "message": serialize_message(msg)}), 201


@bp.post("/api/messages/<int:message_id>/read")
@require_api_login
def messages_mark_read(message_id: int):
    s = db_session()
    msg = s.get(Message, message_id)
    if msg is None:
        return json_error("Message not found", 404)
    try:
        mark_read(s, msg, g.current_user)
    except MessageError as e:
        return json_error(e.message, e.status)
    s.commit()
    return jsonify({"success": True, "message": serialize_message(msg)})
