from __future__ import annotations

from dataclasses import asdict

from flask import Blueprint, current_app, g, jsonify

from app.studiofinder.db import db_session
from app.studiofinder.models import USER_STATUS_ACTIVE, User
from app.studiofinder.modules.memberships.promo import (
    get_membership_button_text,
    get_price_display,
    get_promo_config_from_db,
    get_signup_cta_text,
)
from app.studiofinder.modules.memberships.renewal import (
    RENEWAL_TYPES,
    format_renewal_breakdown,
    get_renewal_price,
)
from app.studiofinder.modules.memberships.service import (
    CheckoutError,
    activate_free_membership,
    billing_history,
    create_featured_checkout,
    create_membership_checkout,
    create_renewal_checkout,
    membership_summary,
    verify_membership_payment,
)
from app.studiofinder.modules.memberships.tiers import get_tier_limits, is_premium_tier
from app.studiofinder.modules.notifications.service import send_templated_email
from app.studiofinder.modules.studios.completion import completion_for
from app.studiofinder.rbac import require_api_login
from app.studiofinder.utils import json_error, json_payload

bp = Blueprint("memberships_api", __name__)

VERIFICATION_MIN_COMPLETION = 85


def _checkout_error(e: CheckoutError):
    return json_error(e.message, e.status, **e.extra)


def _signup_user(s, payload: dict) -> User | None:
    """Signup-flow endpoints identify the user by id + email (no session yet)."""
    user_id = payload.get("user_id") or payload.get("userId")
    email = (payload.get("email") or "").strip().lower()
    if not user_id or not str(user_id).isdigit():
        return None
    user = s.get(User, int(user_id))
    if user is None or user.email != email:
        return None
    return user


@bp.get("/api/promo")
def promo_status():
    s = db_session()
    promo = get_promo_config_from_db(s, current_app.config)
    return jsonify(
        {
            "is_active": promo.is_active,
            "end_date": promo.end_date.isoformat() if promo.end_date else None,
            "end_date_display": promo.end_date_display,
            "price": get_price_display(promo),
            "cta_text": get_signup_cta_text(promo),
            "button_text": get_membership_button_text(promo),
        }
    )


@bp.post("/api/stripe/create-membership-checkout")
def create_checkout():
    payload = json_payload()
    if not (payload.get("email") or "").strip():
        return json_error("Email and name are required", 400)
    s = db_session()
    user = _signup_user(s, payload)
    if user is None:
        return json_error("User not found", 404)
    try:
        result = create_membership_checkout(s, user, auto_renew=bool(payload.get("auto_renew") or payload.get("autoRenew")))
    except CheckoutError as e:
        s.rollback()
        return _checkout_error(e)
    s.commit()
    return jsonify({"sessionId": result["session_id"], "url": result["url"], "clientSecret": result.get("client_secret")})


@bp.post("/api/stripe/activate-promo-membership")
def activate_promo():
    s = db_session()
    promo = get_promo_config_from_db(s, current_app.config)
    if not promo.is_active:
        return json_error("This promotion is no longer available", 403)
    payload = json_payload()
    user = _signup_user(s, payload)
    if user is None:
        return json_error("User not found", 404)
    if user.status == USER_STATUS_ACTIVE:
        return jsonify({"success": True, "message": "Membership already active", "alreadyActive": True})
    try:
        sub = activate_free_membership(s, user)
    except CheckoutError as e:
        s.rollback()
        return _checkout_error(e)
    s.commit()
    return jsonify({"success": True, "expires_at": sub.current_period_end.isoformat()})


@bp.post("/api/stripe/verify-membership-payment")
def verify_payment():
    payload = json_payload()
    session_id = (payload.get("session_id") or payload.get("sessionId") or "").strip()
    s = db_session()
    try:
        result = verify_membership_payment(s, session_id)
    except CheckoutError as e:
        s.rollback()
        return _checkout_error(e)
    s.commit()
    return jsonify(result)


@bp.get("/api/membership")
@require_api_login
def membership_status():
    s = db_session()
    user: User = g.current_user
    summary = membership_summary(s, user)
    days = summary["days_remaining"]
    options = []
    if days is not None:
        for rt in RENEWAL_TYPES:
            options.append({"type": rt, "price": get_renewal_price(rt), "breakdown": format_renewal_breakdown(days, rt)})
    limits = get_tier_limits(user.membership_tier)
    return jsonify({"membership": summary, "renewal_options": options, "limits": asdict(limits)})


@bp.post("/api/membership/renew")
@require_api_login
def renew():
    payload = json_payload()
    renewal_type = (payload.get("renewal_type") or payload.get("renewalType") or "").strip()
    s = db_session()
    try:
        result = create_renewal_checkout(s, g.current_user, renewal_type)
    except CheckoutError as e:
        s.rollback()
        return _checkout_error(e)
    s.commit()
    return jsonify({"sessionId": result["session_id"], "url": result["url"]})


@bp.post("/api/featured/create-checkout")
@require_api_login
def featured_checkout():
    s = db_session()
    try:
        result = create_featured_checkout(s, g.current_user)
    except CheckoutError as e:
        s.rollback()
        return _checkout_error(e)
    s.commit()
    return jsonify({"sessionId": result["session_id"], "url": result["url"]})


@bp.post("/api/membership/request-verification")
@require_api_login
def request_verification():
    s = db_session()
    user: User = g.current_user
    studio = user.studio
    if studio is None:
        return json_error("No studio profile found", 400)
    if not is_premium_tier(user.membership_tier):
        return json_error("Verification is a Premium feature.", 403)
    if studio.is_verified:
        return json_error("Your studio is already verified.", 400)
    completion = completion_for(user, studio).percentage
    if completion < VERIFICATION_MIN_COMPLETION:
        return json_error(f"Profile must be at least {VERIFICATION_MIN_COMPLETION}% complete to request verification.", 400)

    base_url = current_app.config.get("BASE_URL") or ""
    send_templated_email(
        s,
        "verification-request",
        current_app.config.get("SUPPORT_EMAIL") or "",
        {
            "studio_owner_name": user.display_name,
            "studio_name": studio.name,
            "username": user.username,
            "email": user.email,
            "profile_completion": completion,
            "studio_url": f"{base_url}/{user.username}",
        },
        reply_to=user.email,
    )
    s.commit()
    return jsonify({"success": True})


@bp.get("/api/user/billing-history")
@require_api_login
def user_billing_history():
    s = db_session()
    return jsonify({"items": billing_history(s, g.current_user)})
