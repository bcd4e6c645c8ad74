from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from flask import current_app

from app.studiofinder.audit import record_event
from app.studiofinder.constants import FEATURED_DAYS, MAX_FEATURED_STUDIOS, RENEWAL_REMINDER_WINDOWS, TEMP_USERNAME_PREFIX
from app.studiofinder.models import TIER_PREMIUM, USER_STATUS_ACTIVE, USER_STATUS_PENDING, User
from app.studiofinder.modules.memberships.models import (
    PAYMENT_PARTIALLY_REFUNDED,
    PAYMENT_PENDING,
    PAYMENT_REFUNDED,
    PAYMENT_SUCCEEDED,
    PURPOSE_FEATURED,
    PURPOSE_MEMBERSHIP,
    PURPOSE_RENEWAL,
    SUBSCRIPTION_ACTIVE,
    SUBSCRIPTION_CANCELLED,
    SUBSCRIPTION_PAST_DUE,
    Payment,
    Refund,
    Subscription,
)
from app.studiofinder.modules.memberships.renewal import (
    RENEWAL_PRICES,
    calculate_days_until_expiry,
    calculate_final_expiry,
    validate_renewal_request,
)
from app.studiofinder.modules.memberships.stripe_client import StripeError, stripe_from_config
from app.studiofinder.modules.memberships.tiers import PREMIUM_PRICE_PENCE, is_premium_tier
from app.studiofinder.modules.notifications.service import send_templated_email
from app.studiofinder.modules.studios.completion import completion_for
from app.studiofinder.modules.studios.models import (
    STUDIO_STATUS_ACTIVE,
    STUDIO_STATUS_INACTIVE,
    STUDIO_STATUS_PENDING,
    StudioProfile,
)
from app.studiofinder.modules.studios.service import create_studio_for_user
from app.studiofinder.utils import format_date_en_gb, pounds

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

MEMBERSHIP_DAYS = 365
VERIFICATION_BYPASS_KEY = "verification_bypass_detected"


class CheckoutError(RuntimeError):
    def __init__(self, message: str, status: int = 400, **extra: Any):
        super().__init__(message)
        self.message = message
        self.status = status
        self.extra = extra


class RefundError(RuntimeError):
    def __init__(self, message: str, status: int = 400):
        super().__init__(message)
        self.message = message
        self.status = status


def _ts(value: Any) -> datetime | None:
    if value in (None, ""):
        return None
    return datetime.utcfromtimestamp(int(value))


def latest_subscription(s: "Session", user_id: int) -> Subscription | None:
    return s.query(Subscription).filter(Subscription.user_id == user_id).order_by(Subscription.id.desc()).first()


def membership_summary(s: "Session", user: User, *, now: datetime | None = None) -> dict[str, Any]:
    now = now or datetime.utcnow()
    sub = latest_subscription(s, user.id)
    expiry = sub.current_period_end if sub else None
    return {
        "tier": user.membership_tier,
        "status": sub.status if sub else None,
        "expires_at": expiry.isoformat() if expiry else None,
        "days_remaining": calculate_days_until_expiry(expiry, now=now) if expiry else None,
        "auto_renew": bool(sub and sub.auto_renew),
    }


def _checkout_metadata(user: User, purpose: str, **extra: str) -> dict[str, str]:
    meta = {
        "user_id": str(user.id),
        "user_email": user.email,
        "user_name": user.display_name,
        "user_username": user.username,
        "purpose": purpose,
    }
    meta.update(extra)
    return meta


def _line_item(price_id: str | None, amount: int, product_name: str) -> dict[str, Any]:
    if price_id:
        return {"price": price_id, "quantity": 1}
    return {
        "price_data": {"currency": "gbp", "unit_amount": amount, "product_data": {"name": product_name}},
        "quantity": 1,
    }


def _record_pending_payment(s: "Session", user: User, session_obj: dict, *, amount: int, purpose: str, metadata: dict) -> Payment:
    payment = Payment(
        user_id=user.id,
        stripe_checkout_session_id=session_obj.get("id"),
        amount=amount,
        currency="gbp",
        status=PAYMENT_PENDING,
        purpose=purpose,
        metadata_json=metadata,
    )
    s.add(payment)
    s.flush()
    return payment


def create_membership_checkout(s: "Session", user: User, *, auto_renew: bool = False) -> dict[str, Any]:
    config = current_app.config
    if not user.email_verified:
        raise CheckoutError("Please verify your email before making a payment.", 403, requiresVerification=True)

    price_id = config.get("STRIPE_PREMIUM_SUBSCRIPTION_PRICE_ID") if auto_renew else config.get("STRIPE_MEMBERSHIP_PRICE_ID")
    if not price_id:
        logger.error("Stripe price id not configured (auto_renew=%s)", auto_renew)
        raise CheckoutError("Payment system not configured. Please contact support.", 500)

    base_url = config.get("BASE_URL") or ""
    metadata = _checkout_metadata(user, PURPOSE_MEMBERSHIP, auto_renew="true" if auto_renew else "false")
    params: dict[str, Any] = {
        "customer_email": user.email,
        "line_items": [_line_item(price_id, PREMIUM_PRICE_PENCE, "Premium membership")],
        "mode": "subscription" if auto_renew else "payment",
        "success_url": f"{base_url}/auth/membership/success?session_id={{CHECKOUT_SESSION_ID}}",
        "cancel_url": f"{base_url}/auth/membership?cancelled=1",
        "metadata": metadata,
    }
    if auto_renew:
        params["subscription_data"] = {"metadata": metadata}
    else:
        params["payment_intent_data"] = {"metadata": metadata}

    try:
        session_obj = stripe_from_config(config).create_checkout_session(params)
    except StripeError as e:
        logger.error("Checkout creation failed for user %s: %s", user.id, e)
        raise CheckoutError("Failed to create checkout session", 500) from e

    _record_pending_payment(s, user, session_obj, amount=PREMIUM_PRICE_PENCE, purpose=PURPOSE_MEMBERSHIP, metadata=metadata)
    user.payment_attempted_at = datetime.utcnow()
    return {"session_id": session_obj.get("id"), "url": session_obj.get("url"), "client_secret": session_obj.get("client_secret")}


def create_renewal_checkout(s: "Session", user: User, renewal_type: str, *, now: datetime | None = None) -> dict[str, Any]:
    config = current_app.config
    now = now or datetime.utcnow()
    sub = latest_subscription(s, user.id)
    expiry = sub.current_period_end if sub else None
    if expiry is None and renewal_type != "5year":
        raise CheckoutError("No membership expiry on record. Please contact support.", 400)
    days_remaining = calculate_days_until_expiry(expiry, now=now) if expiry else 0
    err = validate_renewal_request(renewal_type, days_remaining)
    if err:
        raise CheckoutError(err, 400)

    amount = RENEWAL_PRICES[renewal_type]
    base_url = config.get("BASE_URL") or ""
    metadata = _checkout_metadata(user, PURPOSE_RENEWAL, renewal_type=renewal_type)
    params = {
        "customer_email": user.email,
        "line_items": [_line_item(None, amount, f"Membership renewal ({renewal_type})")],
        "mode": "payment",
        "success_url": f"{base_url}/dashboard?renewed=1&session_id={{CHECKOUT_SESSION_ID}}",
        "cancel_url": f"{base_url}/dashboard?renewal_cancelled=1",
        "metadata": metadata,
        "payment_intent_data": {"metadata": metadata},
    }
    try:
        session_obj = stripe_from_config(config).create_checkout_session(params)
    except StripeError as e:
        logger.error("Renewal checkout failed for user %s: %s", user.id, e)
        raise CheckoutError("Failed to create checkout session", 500) from e

    _record_pending_payment(s, user, session_obj, amount=amount, purpose=PURPOSE_RENEWAL, metadata=metadata)
    return {"session_id": session_obj.get("id"), "url": session_obj.get("url")}


def count_featured_studios(s: "Session", *, now: datetime | None = None) -> int:
    now = now or datetime.utcnow()
    return (
        s.query(StudioProfile)
        .filter(StudioProfile.is_featured.is_(True))
        .filter((StudioProfile.featured_until.is_(None)) | (StudioProfile.featured_until > now))
        .count()
    )


def create_featured_checkout(s: "Session", user: User, *, now: datetime | None = None) -> dict[str, Any]:
    config = current_app.config
    now = now or datetime.utcnow()
    studio = user.studio
    if studio is None:
        raise CheckoutError("No studio profile found", 400)
    if not is_premium_tier(user.membership_tier):
        raise CheckoutError("Featured listings are a Premium feature.", 403)
    if completion_for(user, studio).percentage < 100:
        raise CheckoutError("Profile must be 100% complete to become a featured studio.", 400)
    if studio.is_featured and (studio.featured_until is None or studio.featured_until > now):
        until = format_date_en_gb(studio.featured_until) if studio.featured_until else "further notice"
        raise CheckoutError(f"Your studio is already featured until {until}.", 400)
    if count_featured_studios(s, now=now) >= MAX_FEATURED_STUDIOS:
        raise CheckoutError(
            "All featured studio slots are currently taken. Please try again later.", 400, maxFeatured=MAX_FEATURED_STUDIOS
        )
    price_id = config.get("STRIPE_FEATURED_PRICE_ID")
    if not price_id:
        logger.error("STRIPE_FEATURED_PRICE_ID not configured")
        raise CheckoutError("Payment system not configured. Please contact support.", 500)

    base_url = config.get("BASE_URL") or ""
    metadata = _checkout_metadata(user, PURPOSE_FEATURED, studio_id=str(studio.id))
    params = {
        "customer_email": user.email,
        "line_items": [{"price": price_id, "quantity": 1}],
        "mode": "payment",
        "success_url": f"{base_url}/dashboard?featured=1&session_id={{CHECKOUT_SESSION_ID}}",
        "cancel_url": f"{base_url}/dashboard?featured_cancelled=1",
        "metadata": metadata,
        "payment_intent_data": {"metadata": metadata},
    }
    try:
        session_obj = stripe_from_config(config).create_checkout_session(params)
    except StripeError as e:
        logger.error("Featured checkout failed for user %s: %s", user.id, e)
        raise CheckoutError("Failed to create checkout session", 500) from e
    _record_pending_payment(s, user, session_obj, amount=int(session_obj.get("amount_total") or 0), purpose=PURPOSE_FEATURED, metadata=metadata)
    return {"session_id": session_obj.get("id"), "url": session_obj.get("url")}


# --- Activation ----------------------------------------------------------------


def activate_membership(
    s: "Session",
    user: User,
    *,
    period_end: datetime,
    payment_method: str = "stripe",
    stripe_subscription_id: str | None = None,
    stripe_customer_id: str | None = None,
    auto_renew: bool = False,
    now: datetime | None = None,
) -> Subscription:
    """Promote a (pending) user to an active Premium member with a live studio listing."""
    now = now or datetime.utcnow()
    user.status = USER_STATUS_ACTIVE
    user.membership_tier = TIER_PREMIUM
    user.reservation_expires_at = None
    user.updated_at = now

    sub = None
    if stripe_subscription_id:
        sub = s.query(Subscription).filter(Subscription.stripe_subscription_id == stripe_subscription_id).one_or_none()
    if sub is None:
        sub = Subscription(user_id=user.id, stripe_subscription_id=stripe_subscription_id)
        s.add(sub)
    sub.status = SUBSCRIPTION_ACTIVE
    sub.payment_method = payment_method
    sub.stripe_customer_id = stripe_customer_id or sub.stripe_customer_id
    sub.auto_renew = auto_renew
    sub.current_period_start = now
    sub.current_period_end = period_end
    sub.last_reminder_window = None
    sub.updated_at = now

    # Listing goes live once a real username is chosen.
    listing_status = STUDIO_STATUS_PENDING if user.username.startswith(TEMP_USERNAME_PREFIX) else STUDIO_STATUS_ACTIVE
    studio = create_studio_for_user(s, user, status=listing_status)
    if studio.status != STUDIO_STATUS_ACTIVE and listing_status == STUDIO_STATUS_ACTIVE:
        studio.status = STUDIO_STATUS_ACTIVE
    s.flush()
    record_event(
        s,
        actor=user,
        action="membership.activate",
        entity_type="User",
        entity_id=str(user.id),
        metadata={"payment_method": payment_method, "period_end": period_end.isoformat()},
    )
    return sub


def activate_free_membership(s: "Session", user: User, *, now: datetime | None = None) -> Subscription:
    """Free-signup promo: same activation as a paid membership, with a £0 payment for the record."""
    now = now or datetime.utcnow()
    if not user.email_verified:
        raise CheckoutError("Email must be verified before activation", 403, verified=False)
    user.payment_attempted_at = now
    user.payment_retry_count = 0
    user.day2_reminder_sent_at = None
    user.day5_reminder_sent_at = None
    user.payment_failed_email_sent_at = None
    s.add(
        Payment(
            user_id=user.id,
            amount=0,
            currency="gbp",
            status=PAYMENT_SUCCEEDED,
            purpose=PURPOSE_MEMBERSHIP,
            metadata_json={
                "promo_type": "free_signup",
                "activated_at": now.isoformat(),
                "user_email": user.email,
                "user_name": user.display_name,
                "user_username": user.username,
            },
        )
    )
    return activate_membership(s, user, period_end=now + timedelta(days=MEMBERSHIP_DAYS), payment_method="promo", now=now)


def _upsert_checkout_payment(s: "Session", user: User, session_obj: dict, purpose: str) -> tuple[Payment, bool]:
    """Returns (payment, already_processed)."""
    session_id = session_obj.get("id")
    payment = s.query(Payment).filter(Payment.stripe_checkout_session_id == session_id).one_or_none()
    if payment is not None and payment.status == PAYMENT_SUCCEEDED:
        return payment, True
    if payment is None:
        payment = Payment(user_id=user.id, stripe_checkout_session_id=session_id, purpose=purpose, amount=0)
        s.add(payment)
    payment.amount = int(session_obj.get("amount_total") or payment.amount or 0)
    payment.currency = (session_obj.get("currency") or payment.currency or "gbp").lower()
    payment.stripe_payment_intent_id = session_obj.get("payment_intent") or payment.stripe_payment_intent_id
    payment.status = PAYMENT_SUCCEEDED
    payment.metadata_json = dict(session_obj.get("metadata") or {})
    payment.updated_at = datetime.utcnow()
    s.flush()
    return payment, False


def _send_payment_success(s: "Session", user: User, payment: Payment, period_end: datetime | None) -> None:
    send_templated_email(
        s,
        "payment-success",
        user.email,
        {
            "customer_name": user.display_name,
            "amount": pounds(payment.amount),
            "currency": payment.currency.upper(),
            "payment_id": str(payment.id),
            "plan_name": "Premium membership",
            "next_billing_date": format_date_en_gb(period_end) if period_end else "n/a",
        },
        user=user,
    )


def handle_membership_checkout(s: "Session", user: User, session_obj: dict, *, now: datetime | None = None) -> str:
    now = now or datetime.utcnow()
    payment, already = _upsert_checkout_payment(s, user, session_obj, PURPOSE_MEMBERSHIP)
    if already:
        return "already_processed"
    if not user.email_verified:
        # Paid without a verified email: keep the payment, hold activation for review.
        user.set_metadata(VERIFICATION_BYPASS_KEY, now.isoformat())
        logger.warning("Verification bypass detected for user %s (session %s)", user.id, session_obj.get("id"))
        record_event(
            s,
            actor=user,
            action="membership.verification_bypass",
            entity_type="Payment",
            entity_id=str(payment.id),
        )
        return "verification_required"

    meta = session_obj.get("metadata") or {}
    auto_renew = meta.get("auto_renew") == "true"
    period_end = now + timedelta(days=MEMBERSHIP_DAYS)
    activate_membership(
        s,
        user,
        period_end=period_end,
        stripe_subscription_id=session_obj.get("subscription") or None,
        stripe_customer_id=session_obj.get("customer") or None,
        auto_renew=auto_renew,
        now=now,
    )
    _send_payment_success(s, user, payment, period_end)
    return "activated"


def apply_renewal(s: "Session", user: User, renewal_type: str, *, now: datetime | None = None) -> Subscription:
    now = now or datetime.utcnow()
    sub = latest_subscription(s, user.id)
    if sub is None:
        sub = Subscription(user_id=user.id, payment_method="stripe", status=SUBSCRIPTION_ACTIVE)
        s.add(sub)
    old_end = sub.current_period_end
    sub.current_period_end = calculate_final_expiry(old_end, renewal_type, now=now)
    sub.status = SUBSCRIPTION_ACTIVE
    sub.last_reminder_window = None
    sub.updated_at = now
    user.membership_tier = TIER_PREMIUM
    if user.studio is not None and user.studio.status == STUDIO_STATUS_INACTIVE:
        user.studio.status = STUDIO_STATUS_ACTIVE
    record_event(
        s,
        actor=user,
        action="membership.renew",
        entity_type="Subscription",
        entity_id=str(sub.id) if sub.id else None,
        metadata={"renewal_type": renewal_type, "old_end": old_end, "new_end": sub.current_period_end},
    )
    return sub


def handle_renewal_checkout(s: "Session", user: User, session_obj: dict, *, now: datetime | None = None) -> str:
    payment, already = _upsert_checkout_payment(s, user, session_obj, PURPOSE_RENEWAL)
    if already:
        return "already_processed"
    renewal_type = (session_obj.get("metadata") or {}).get("renewal_type") or "standard"
    try:
        sub = apply_renewal(s, user, renewal_type, now=now)
    except ValueError as e:
        logger.error("Renewal for user %s could not be applied: %s", user.id, e)
        return "renewal_failed"
    _send_payment_success(s, user, payment, sub.current_period_end)
    return "renewed"


def handle_featured_checkout(s: "Session", user: User, session_obj: dict, *, now: datetime | None = None) -> str:
    now = now or datetime.utcnow()
    _payment, already = _upsert_checkout_payment(s, user, session_obj, PURPOSE_FEATURED)
    if already:
        return "already_processed"
    studio = user.studio
    if studio is None:
        logger.error("Featured payment for user %s without a studio", user.id)
        return "no_studio"
    studio.is_featured = True
    studio.featured_until = now + timedelta(days=FEATURED_DAYS)
    studio.updated_at = now
    record_event(
        s,
        actor=user,
        action="studio.featured",
        entity_type="StudioProfile",
        entity_id=str(studio.id),
        metadata={"featured_until": studio.featured_until},
    )
    return "featured"


def handle_checkout_completed(s: "Session", session_obj: dict, *, now: datetime | None = None) -> str:
    meta = session_obj.get("metadata") or {}
    user_id = meta.get("user_id")
    user = s.get(User, int(user_id)) if user_id and str(user_id).isdigit() else None
    if user is None:
        logger.warning("checkout.session.completed without a known user (session %s)", session_obj.get("id"))
        return "unknown_user"
    if session_obj.get("payment_status") not in ("paid", "no_payment_required"):
        return "unpaid"
    purpose = meta.get("purpose") or PURPOSE_MEMBERSHIP
    if purpose == PURPOSE_RENEWAL:
        return handle_renewal_checkout(s, user, session_obj, now=now)
    if purpose == PURPOSE_FEATURED:
        return handle_featured_checkout(s, user, session_obj, now=now)
    return handle_membership_checkout(s, user, session_obj, now=now)


_STRIPE_SUB_STATUS = {
    "active": SUBSCRIPTION_ACTIVE,
    "trialing": SUBSCRIPTION_ACTIVE,
    "past_due": SUBSCRIPTION_PAST_DUE,
    "unpaid": SUBSCRIPTION_PAST_DUE,
    "canceled": SUBSCRIPTION_CANCELLED,
    "incomplete_expired": SUBSCRIPTION_CANCELLED,
}


def handle_subscription_event(s: "Session", sub_obj: dict, event_type: str) -> str:
    stripe_id = sub_obj.get("id")
    sub = s.query(Subscription).filter(Subscription.stripe_subscription_id == stripe_id).one_or_none()
    if sub is None:
        user_id = (sub_obj.get("metadata") or {}).get("user_id")
        user = s.get(User, int(user_id)) if user_id and str(user_id).isdigit() else None
        if user is None:
            logger.warning("%s for unknown subscription %s", event_type, stripe_id)
            return "unknown_subscription"
        sub = Subscription(user_id=user.id, stripe_subscription_id=stripe_id, payment_method="stripe", auto_renew=True)
        s.add(sub)

    now = datetime.utcnow()
    if event_type == "customer.subscription.deleted":
        sub.status = SUBSCRIPTION_CANCELLED
        sub.cancelled_at = now
        sub.auto_renew = False
    else:
        raw_status = (sub_obj.get("status") or "").lower()
        sub.status = _STRIPE_SUB_STATUS.get(raw_status, raw_status.upper() or sub.status)
        sub.stripe_customer_id = sub_obj.get("customer") or sub.stripe_customer_id
        sub.current_period_start = _ts(sub_obj.get("current_period_start")) or sub.current_period_start
        sub.current_period_end = _ts(sub_obj.get("current_period_end")) or sub.current_period_end
        sub.cancel_at_period_end = bool(sub_obj.get("cancel_at_period_end"))
    sub.updated_at = now
    s.flush()
    return sub.status


def _subscription_for_invoice(s: "Session", invoice: dict) -> Subscription | None:
    stripe_id = invoice.get("subscription")
    if not stripe_id:
        return None
    return s.query(Subscription).filter(Subscription.stripe_subscription_id == stripe_id).one_or_none()


def handle_invoice_paid(s: "Session", invoice: dict) -> str:
    sub = _subscription_for_invoice(s, invoice)
    if sub is None:
        return "ignored"
    lines = ((invoice.get("lines") or {}).get("data")) or []
    ends = [_ts((ln.get("period") or {}).get("end")) for ln in lines]
    period_end = max((e for e in ends if e is not None), default=None)
    if period_end:
        sub.current_period_end = period_end
        sub.last_reminder_window = None
    sub.status = SUBSCRIPTION_ACTIVE
    sub.updated_at = datetime.utcnow()
    return "extended" if period_end else "active"


def handle_invoice_payment_failed(s: "Session", invoice: dict) -> str:
    sub = _subscription_for_invoice(s, invoice)
    user = sub.user if sub else None
    if sub is not None:
        sub.status = SUBSCRIPTION_PAST_DUE
        sub.updated_at = datetime.utcnow()
    if user is not None and user.status == USER_STATUS_PENDING and user.payment_failed_email_sent_at is None:
        send_payment_failed_email(s, user, error_message="Your card was declined.")
    return "past_due" if sub else "ignored"


def send_payment_failed_email(s: "Session", user: User, *, error_message: str) -> None:
    base_url = current_app.config.get("BASE_URL") or ""
    send_templated_email(
        s,
        "payment-failed-reservation",
        user.email,
        {
            "display_name": user.display_name,
            "username": user.username,
            "amount": pounds(PREMIUM_PRICE_PENCE),
            "currency": "GBP",
            "error_message": error_message,
            "reservation_expires_at": format_date_en_gb(user.reservation_expires_at),
            "retry_url": f"{base_url}/auth/membership?retry=1",
        },
        user=user,
    )
    user.payment_failed_email_sent_at = datetime.utcnow()


def end_membership(s: "Session", user_id: int, *, now: datetime | None = None) -> bool:
    now = now or datetime.utcnow()
    sub = (
        s.query(Subscription)
        .filter(Subscription.user_id == user_id, Subscription.status == SUBSCRIPTION_ACTIVE)
        .order_by(Subscription.id.desc())
        .first()
    )
    if sub is None:
        return False
    sub.status = SUBSCRIPTION_CANCELLED
    sub.cancelled_at = now
    sub.current_period_end = now
    sub.updated_at = now
    for studio in s.query(StudioProfile).filter(StudioProfile.user_id == user_id).all():
        studio.status = STUDIO_STATUS_INACTIVE
        studio.updated_at = now
    return True


def handle_charge_refunded(s: "Session", charge: dict) -> str:
    """Refunds issued from the Stripe dashboard; admin refunds are already recorded."""
    intent = charge.get("payment_intent")
    payment = s.query(Payment).filter(Payment.stripe_payment_intent_id == intent).one_or_none() if intent else None
    if payment is None:
        return "ignored"
    refunded = int(charge.get("amount_refunded") or 0)
    if refunded <= payment.refunded_amount:
        return "already_recorded"
    payment.refunded_amount = refunded
    payment.status = PAYMENT_REFUNDED if refunded >= payment.amount else PAYMENT_PARTIALLY_REFUNDED
    payment.updated_at = datetime.utcnow()
    if payment.status == PAYMENT_REFUNDED:
        end_membership(s, payment.user_id)
    return payment.status


def verify_membership_payment(s: "Session", session_id: str) -> dict[str, Any]:
    """Post-checkout confirmation. Idempotent on the checkout session id."""
    if not session_id:
        raise CheckoutError("Session ID is required", 400)
    existing = s.query(Payment).filter(Payment.stripe_checkout_session_id == session_id).one_or_none()
    if existing is not None and existing.status == PAYMENT_SUCCEEDED:
        meta = existing.metadata_json or {}
        return {
            "verified": True,
            "already_processed": True,
            "paymentId": existing.id,
            "customerData": {
                "email": meta.get("user_email", ""),
                "name": meta.get("user_name", ""),
                "username": meta.get("user_username", ""),
            },
        }

    try:
        session_obj = stripe_from_config(current_app.config).retrieve_checkout_session(session_id)
    except StripeError as e:
        logger.error("Could not retrieve checkout session %s: %s", session_id, e)
        raise CheckoutError("Failed to verify payment", 500) from e

    if session_obj.get("payment_status") != "paid":
        raise CheckoutError("Payment not completed", 400, payment_status=session_obj.get("payment_status"))
    if session_obj.get("mode") != "payment":
        raise CheckoutError("Invalid session mode", 400, mode=session_obj.get("mode"))

    result = handle_checkout_completed(s, session_obj)
    meta = session_obj.get("metadata") or {}
    payment = s.query(Payment).filter(Payment.stripe_checkout_session_id == session_id).one_or_none()
    return {
        "verified": True,
        "result": result,
        "paymentId": payment.id if payment else None,
        "sessionId": session_obj.get("id"),
        "customerData": {
            "email": meta.get("user_email") or session_obj.get("customer_email") or "",
            "name": meta.get("user_name", ""),
            "username": meta.get("user_username", ""),
        },
    }


# --- Billing history ------------------------------------------------------------

_BILLING_STATUS = {
    PAYMENT_SUCCEEDED: "paid",
    PAYMENT_PARTIALLY_REFUNDED: "partially_refunded",
    PAYMENT_REFUNDED: "refunded",
}
_PURPOSE_DESCRIPTIONS = {
    PURPOSE_MEMBERSHIP: "Premium Membership",
    PURPOSE_RENEWAL: "Premium Membership Renewal",
    PURPOSE_FEATURED: "Featured Studio Upgrade",
}


def billing_history(s: "Session", user: User) -> list[dict[str, Any]]:
    """Captured payments and their refunds, newest first. Pending and failed checkouts are left out."""
    payments = (
        s.query(Payment)
        .filter(Payment.user_id == user.id, Payment.status.in_(tuple(_BILLING_STATUS)))
        .order_by(Payment.created_at.desc(), Payment.id.desc())
        .all()
    )
    entries: list[tuple[datetime, dict[str, Any]]] = []
    for p in payments:
        description = _PURPOSE_DESCRIPTIONS.get(p.purpose, "Premium Membership")
        number = f"VOSF-{p.id:06d}"
        entries.append(
            (
                p.created_at,
                {
                    "id": p.id,
                    "type": "payment",
                    "number": number,
                    "amount": p.amount,
                    "amount_display": pounds(p.amount),
                    "refunded_amount": p.refunded_amount or 0,
                    "currency": p.currency,
                    "status": _BILLING_STATUS[p.status],
                    "date": p.created_at.isoformat(),
                    "description": description,
                },
            )
        )
        for r in p.refunds:
            entries.append(
                (
                    r.created_at,
                    {
                        "id": r.id,
                        "type": "refund",
                        "number": f"{number}-R{r.id}",
                        "amount": -r.amount,
                        "amount_display": f"-{pounds(r.amount)}",
                        "currency": r.currency,
                        "status": "refunded",
                        "date": r.created_at.isoformat(),
                        "description": f"Refund: {description}",
                        "reason": r.reason,
                    },
                )
            )
    entries.sort(key=lambda e: e[0], reverse=True)
    return [item for _when, item in entries]


# --- Refunds ---------------------------------------------------------------------


def issue_refund(s: "Session", payment: Payment, amount: Any, reason: str | None, admin: User) -> Refund:
    try:
        amount = int(amount)
    except (TypeError, ValueError):
        amount = 0
    if amount <= 0:
        raise RefundError("Valid refund amount is required")
    if not payment.stripe_payment_intent_id:
        raise RefundError("Cannot refund: No payment intent ID")
    max_refundable = payment.amount - payment.refunded_amount
    if amount > max_refundable:
        raise RefundError(
            f"Refund amount exceeds available balance ({max_refundable / 100:.2f} {payment.currency.upper()})"
        )

    try:
        stripe_refund = stripe_from_config(current_app.config).create_refund(
            payment_intent=payment.stripe_payment_intent_id,
            amount=amount,
            reason=reason,
        )
    except StripeError as e:
        logger.error("Stripe refund failed for payment %s: %s", payment.id, e)
        raise RefundError(str(e), 502) from e

    now = datetime.utcnow()
    payment.refunded_amount += amount
    is_full = payment.refunded_amount >= payment.amount
    payment.status = PAYMENT_REFUNDED if is_full else PAYMENT_PARTIALLY_REFUNDED
    payment.updated_at = now

    refund = Refund(
        payment_id=payment.id,
        user_id=payment.user_id,
        stripe_refund_id=stripe_refund.get("id"),
        amount=amount,
        currency=payment.currency,
        reason=(reason or "").strip() or None,
        status="SUCCEEDED" if stripe_refund.get("status") == "succeeded" else "PENDING",
        processed_by_user_id=admin.id,
    )
    s.add(refund)
    s.flush()

    membership_ended = end_membership(s, payment.user_id, now=now) if is_full else False
    record_event(
        s,
        actor=admin,
        action="payment.refund",
        entity_type="Payment",
        entity_id=str(payment.id),
        reason=reason,
        metadata={"amount": amount, "full": is_full, "membership_ended": membership_ended},
    )

    user = s.get(User, payment.user_id)
    if user is not None:
        send_templated_email(
            s,
            "refund-processed",
            user.email,
            {
                "display_name": user.display_name,
                "refund_amount": pounds(amount),
                "currency": payment.currency.upper(),
                "payment_amount": pounds(payment.amount),
                "refund_type": "full" if is_full else "partial",
                "comment": (reason or "").strip(),
                "refund_date": format_date_en_gb(now),
            },
            user=user,
        )
    return refund


# --- Renewal reminders ------------------------------------------------------------


def reminder_window_for(days_remaining: int) -> int | None:
    """Smallest reminder window that still covers `days_remaining`."""
    if days_remaining < 0:
        return None
    fitting = [w for w in RENEWAL_REMINDER_WINDOWS if days_remaining <= w]
    return min(fitting) if fitting else None


def send_renewal_reminders(s: "Session", *, now: datetime | None = None) -> dict[str, int]:
    now = now or datetime.utcnow()
    base_url = current_app.config.get("BASE_URL") or ""
    sent = skipped = 0
    subs = (
        s.query(Subscription)
        .join(User, User.id == Subscription.user_id)
        .filter(Subscription.status == SUBSCRIPTION_ACTIVE)
        .filter(Subscription.current_period_end.isnot(None))
        .filter(Subscription.auto_renew.is_(False))
        .filter(User.status == USER_STATUS_ACTIVE)
        .all()
    )
    for sub in subs:
        days = calculate_days_until_expiry(sub.current_period_end, now=now)
        window = reminder_window_for(days)
        if window is None:
            continue
        if sub.last_reminder_window is not None and sub.last_reminder_window <= window:
            skipped += 1
            continue
        user = sub.user
        send_templated_email(
            s,
            "renewal-reminder",
            user.email,
            {
                "display_name": user.display_name,
                "username": user.username,
                "days_remaining": max(days, 0),
                "expiry_date": format_date_en_gb(sub.current_period_end),
                "renew_url": f"{base_url}/dashboard?renew=1",
            },
            user=user,
        )
        sub.last_reminder_window = window
        sent += 1
    return {"sent": sent, "skipped": skipped}
