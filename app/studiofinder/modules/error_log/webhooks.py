from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from app.studiofinder.db import db_session
from app.studiofinder.modules.error_log.service import upsert_from_webhook
from app.studiofinder.security import bearer_token, secret_matches
from app.studiofinder.utils import json_error, json_payload

bp = Blueprint("error_log_webhooks", __name__)


@bp.post("/api/webhooks/sentry")
def sentry_webhook():
    secret = current_app.config.get("SENTRY_WEBHOOK_SECRET")
    if not secret:
        current_app.logger.error("SENTRY_WEBHOOK_SECRET not configured")
        return json_error("Server misconfigured", 500)
    if not secret_matches(bearer_token(request), secret):
        current_app.logger.warning("Unauthorized Sentry webhook attempt from %s", request.remote_addr)
        return json_error("Unauthorized", 401)

    payload = json_payload()
    s = db_session()
    try:
        group = upsert_from_webhook(s, payload)
    except Exception:
        s.rollback()
        current_app.logger.exception("Sentry webhook processing failed")
        return json_error("Webhook processing failed", 500)
    if group is None:
        return jsonify({"success": True, "message": "No issue data"})
    s.commit()
    return jsonify({"success": True, "error_log_group_id": group.id})
