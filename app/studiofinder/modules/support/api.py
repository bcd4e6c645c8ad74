from __future__ import annotations

from flask import Blueprint, g, jsonify

from app.studiofinder.db import db_session
from app.studiofinder.modules.support.models import SupportTicket
from app.studiofinder.modules.support.service import create_ticket, serialize_ticket, validate_ticket_payload
from app.studiofinder.rbac import require_api_login
from app.studiofinder.utils import json_error, json_payload

bp = Blueprint("support_api", __name__)


@bp.get("/api/support/tickets")
@require_api_login
def tickets_list():
    s = db_session()
    tickets = (
        s.query(SupportTicket)
        .filter(SupportTicket.user_id == g.current_user.id)
        .order_by(SupportTicket.created_at.desc())
        .limit(50)
        .all()
    )
    return jsonify({"tickets": [serialize_ticket(t) for t in tickets]})


@bp.post("/api/support/tickets")
@require_api_login
def tickets_create():
    s = db_session()
    payload = json_payload()
    errors = validate_ticket_payload(payload)
    if errors:
        return json_error("Validation failed", 400, details=errors)
    ticket = create_ticket(s, g.current_user, payload)
    s.commit()
    return jsonify({"success": True, "ticket": serialize_ticket(ticket)}), 201
