from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from app.studiofinder.audit import record_event
from app.studiofinder.db import db_session
from app.studiofinder.modules.memberships.service import (
    handle_charge_refunded,
    handle_checkout_completed,
    handle_invoice_paid,
    handle_invoice_payment_failed,
    handle_subscription_event,
)
from app.studiofinder.modules.memberships.stripe_client import StripeSignatureError, verify_webhook_signature

bp = Blueprint("stripe_webhooks", __name__)


@bp.post("/api/stripe/webhook")
def stripe_webhook():
    secret = current_app.config.get("STRIPE_WEBHOOK_SECRET") or ""
    if not secret:
        current_app.logger.error("STRIPE_WEBHOOK_SECRET not configured; rejecting webhook")
        return jsonify({"error": "Webhook not configured"}), 500

    payload = request.get_data(cache=False)
    try:
        event = verify_webhook_signature(payload, request.headers.get("Stripe-Signature"), secret)
    except StripeSignatureError as e:
        current_app.logger.warning("Stripe webhook rejected: %s", e)
        return jsonify({"error": "Invalid signature"}), 400

    event_type = event.get("type") or ""
    obj = ((event.get("data") or {}).get("object")) or {}
    s = db_session()
    try:
        if event_type == "checkout.session.completed":
            result = handle_checkout_completed(s, obj)
        elif event_type in ("customer.subscription.created", "customer.subscription.updated", "customer.subscription.deleted"):
            result = handle_subscription_event(s, obj, event_type)
        elif event_type in ("invoice.paid", "invoice.payment_succeeded"):
            result = handle_invoice_paid(s, obj)
        elif event_type == "invoice.payment_failed":
            result = handle_invoice_payment_failed(s, obj)
        elif event_type == "charge.refunded":
            result = handle_charge_refunded(s, obj)
        else:
            current_app.logger.info("Unhandled Stripe event type: %s", event_type)
            return jsonify({"received": True, "handled": False})

        record_event(
            s,
            actor=None,
            action="stripe.webhook",
            entity_type="StripeEvent",
            entity_id=str(event.get("id") or ""),
            metadata={"type": event_type, "result": result},
        )
        s.commit()
    except Exception:
        s.rollback()
        current_app.logger.exception("Stripe webhook %s (%s) failed", event.get("id"), event_type)
        return jsonify({"error": "Webhook handler failed"}), 500

    return jsonify({"received": True, "handled": True, "result": result})
