from __future__ import annotations

from flask import Blueprint, abort, flash, g, jsonify, redirect, render_template, request, url_for

from app.studiofinder.db import db_session
from app.studiofinder.models import User
from app.studiofinder.modules.memberships.models import PAYMENT_REFUNDED, Payment, Refund, Subscription
from app.studiofinder.modules.memberships.service import RefundError, issue_refund
from app.studiofinder.rbac import require_api_permission, require_permission
from app.studiofinder.utils import json_error, json_payload

bp = Blueprint("payments_admin", __name__)

PAGE_SIZE = 50


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


# ---------- List ----------
@bp.get("/payments")
@require_permission("payments.view")
def payments_list():
    s = db_session()
    search = (request.args.get("q") or "").strip()
    status_filter = (request.args.get("status") or "").strip()
    purpose_filter = (request.args.get("purpose") or "").strip()
    page = max(request.args.get("page", 1, type=int) or 1, 1)

    q = s.query(Payment).join(User, User.id == Payment.user_id)
    if search:
        like = f"%{search}%"
        q = q.filter(
            (User.email.ilike(like))
            | (User.username.ilike(like))
            | (Payment.stripe_checkout_session_id.ilike(like))
            | (Payment.stripe_payment_intent_id.ilike(like))
        )
    if status_filter:
        q = q.filter(Payment.status == status_filter)
    if purpose_filter:
        q = q.filter(Payment.purpose == purpose_filter)

    total = q.count()
    payments = q.order_by(Payment.created_at.desc(), Payment.id.desc()).offset((page - 1) * PAGE_SIZE).limit(PAGE_SIZE).all()
    return render_template(
        "admin/payments/list.html",
        payments=payments,
        search=search,
        status_filter=status_filter,
        purpose_filter=purpose_filter,
        page=page,
        has_more=total > page * PAGE_SIZE,
        total=total,
    )


# ---------- Detail ----------
@bp.get("/payments/<int:payment_id>")
@require_permission("payments.view")
def payment_detail(payment_id: int):
    s = db_session()
    payment = s.get(Payment, payment_id)
    if not payment:
        abort(404)
    refunds = s.query(Refund).filter(Refund.payment_id == payment.id).order_by(Refund.created_at.desc()).all()
    subscriptions = (
        s.query(Subscription).filter(Subscription.user_id == payment.user_id).order_by(Subscription.id.desc()).all()
    )
    return render_template(
        "admin/payments/detail.html",
        payment=payment,
        refunds=refunds,
        subscriptions=subscriptions,
    )


# ---------- Refund ----------
@bp.post("/payments/<int:payment_id>/refund")
@require_permission("payments.refund")
def payment_refund(payment_id: int):
    s = db_session()
    u = _current_user()
    payment = s.get(Payment, payment_id)
    if not payment:
        abort(404)

    raw_amount = (request.form.get("amount") or "").strip()
    try:
        # Admin enters pounds; stored in pence.
        amount = int(round(float(raw_amount) * 100))
    except ValueError:
        amount = 0
    reason = (request.form.get("reason") or "").strip() or None

    try:
        refund = issue_refund(s, payment, amount, reason, u)
    except RefundError as e:
        s.rollback()
        flash(e.message, "danger")
        return redirect(url_for("payments_admin.payment_detail", payment_id=payment_id))
    s.commit()

    flash(f"Refund of £{refund.amount / 100:.2f} issued.", "success")
    return redirect(url_for("payments_admin.payment_detail", payment_id=payment_id))


@bp.post("/api/payments/<int:payment_id>/refund")
@require_api_permission("payments.refund")
def payment_refund_api(payment_id: int):
    s = db_session()
    u = _current_user()
    payment = s.get(Payment, payment_id)
    if not payment:
        return json_error("Payment not found", 404)
    payload = json_payload()
    try:
        refund = issue_refund(s, payment, payload.get("amount"), payload.get("reason"), u)
    except RefundError as e:
        s.rollback()
        return json_error(e.message, e.status)
    s.commit()
    return jsonify(
        {
            "success": True,
            "refund": {
                "id": refund.id,
                "stripe_refund_id": refund.stripe_refund_id,
                "amount": refund.amount,
                "currency": refund.currency,
                "status": refund.status,
                "is_full_refund": payment.status == PAYMENT_REFUNDED,
            },
            "payment": {"id": payment.id, "status": payment.status, "refunded_amount": payment.refunded_amount},
        }
    )
