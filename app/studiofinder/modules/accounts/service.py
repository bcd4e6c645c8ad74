"""
Signup lifecycle: PENDING user with a temporary username and a 7-day
reservation -> username chosen -> membership paid -> ACTIVE.

Reservations that lapse become EXPIRED (username renamed so it can be reused)
and are deleted after EXPIRED_USER_RETENTION_DAYS.
"""
from __future__ import annotations

import logging
import re
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

from flask import current_app
from sqlalchemy import func
from werkzeug.security import generate_password_hash

from app.studiofinder.audit import record_event
from app.studiofinder.constants import (
    EXPIRED_USER_RETENTION_DAYS,
    EXPIRED_USERNAME_PREFIX,
    RESERVATION_DAYS,
    RESERVED_USERNAMES,
    TEMP_USERNAME_PREFIX,
    VERIFICATION_TOKEN_HOURS,
)
from app.studiofinder.models import (
    USER_STATUS_ACTIVE,
    USER_STATUS_EXPIRED,
    USER_STATUS_PENDING,
    User,
    UserMetadata,
    UserRole,
)
from app.studiofinder.modules.memberships.models import PAYMENT_FAILED, PAYMENT_SUCCEEDED, Payment, Refund, Subscription
from app.studiofinder.modules.messages.models import Message
from app.studiofinder.modules.notifications.models import EmailDelivery, EmailPreference
from app.studiofinder.modules.notifications.service import send_templated_email
from app.studiofinder.modules.reviews.models import Review
from app.studiofinder.modules.studios.models import StudioImage, StudioProfile, StudioService, StudioType
from app.studiofinder.modules.support.models import SupportTicket
from app.studiofinder.security import strip_html
from app.studiofinder.utils import format_date_en_gb, pounds

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

EMAIL_MAX = 254
EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PASSWORD_MIN = 8
DISPLAY_NAME_MIN = 2
DISPLAY_NAME_MAX = 50
USERNAME_RE = re.compile(r"^[A-Za-z0-9_]{3,20}$")
USERNAME_FORMAT_MESSAGE = "Username must be 3-20 characters and contain only letters, numbers, and underscores"

RETRY_EXTENSION_DAYS = 2
MAX_RESERVATION_DAYS = 14
SUGGESTION_COUNT = 5


class SignupError(Exception):
    def __init__(self, message: str, status: int = 400, **extra: Any):
        super().__init__(message)
        self.message = message
        self.status = status
        self.extra = extra


@dataclass
class RegistrationOutcome:
    user: User
    created: bool
    resume: dict[str, Any] | None = None


def normalize_email(email: Any) -> str:
    return str(email or "").strip().lower()


def validate_password(password: str) -> list[str]:
    errors: list[str] = []
    if len(password) < PASSWORD_MIN:
        errors.append(f"Password must be at least {PASSWORD_MIN} characters")
    if not re.search(r"[a-z]", password):
        errors.append("Password must contain a lowercase letter")
    if not re.search(r"[A-Z]", password):
        errors.append("Password must contain an uppercase letter")
    if not re.search(r"[0-9]", password):
        errors.append("Password must contain a number")
    if not re.search(r"[^A-Za-z0-9]", password):
        errors.append("Password must contain a special character")
    return errors


def validate_registration_payload(payload: dict) -> list[str]:
    errors: list[str] = []
    email = normalize_email(payload.get("email"))
    if not email:
        errors.append("Email is required")
    elif len(email) > EMAIL_MAX:
        errors.append("Email address is too long")
    elif not EMAIL_RE.match(email):
        errors.append("Please enter a valid email address")

    password = payload.get("password")
    if not isinstance(password, str) or not password:
        errors.append("Password is required")
    else:
        errors.extend(validate_password(password))

    display_name = strip_html(payload.get("display_name"))
    if len(display_name) < DISPLAY_NAME_MIN:
        errors.append(f"Display name must be at least {DISPLAY_NAME_MIN} characters")
    elif len(display_name) > DISPLAY_NAME_MAX:
        errors.append(f"Display name must be less than {DISPLAY_NAME_MAX} characters")
    return errors


def generate_temp_username() -> str:
    return f"{TEMP_USERNAME_PREFIX}{secrets.token_hex(4)}"


def has_real_username(user: User) -> bool:
    return bool(user.username) and not user.username.startswith(TEMP_USERNAME_PREFIX)


def reservation_expired(user: User, now: datetime) -> bool:
    return user.reservation_expires_at is not None and user.reservation_expires_at < now


def expired_username(username: str, user_id: int, now: datetime) -> str:
    """`expired_<name>_<epoch ms>_<id4>`; `now` is naive UTC."""
    millis = int(now.replace(tzinfo=timezone.utc).timestamp() * 1000)
    return f"{EXPIRED_USERNAME_PREFIX}{username}_{millis}_{str(user_id)[:4]}"


def expire_user(s: "Session", user: User, *, now: datetime) -> str:
    """Mark EXPIRED and rename the username so it can be claimed again. Returns the old username."""
    old = user.username
    user.status = USER_STATUS_EXPIRED
    user.username = expired_username(old, user.id, now)
    user.updated_at = now
    s.flush()
    return old


def latest_payment(s: "Session", user_id: int) -> Payment | None:
    return (
        s.query(Payment)
        .filter(Payment.user_id == user_id)
        .order_by(Payment.created_at.desc(), Payment.id.desc())
        .first()
    )


def time_remaining(user: User, now: datetime) -> dict[str, int]:
    if user.reservation_expires_at is None:
        return {"days": 0, "hours": 0, "total_ms": 0}
    remaining_ms = max(0, int((user.reservation_expires_at - now).total_seconds() * 1000))
    total_hours = remaining_ms // (1000 * 60 * 60)
    return {"days": total_hours // 24, "hours": total_hours % 24, "total_ms": remaining_ms}


def signup_progress(s: "Session", user: User, *, now: datetime) -> dict[str, Any]:
    """Where a PENDING user left off: username -> payment -> profile."""
    payment = latest_payment(s, user.id)
    has_payment = payment is not None and payment.status == PAYMENT_SUCCEEDED
    real_username = has_real_username(user)
    if has_payment:
        step = "profile"
    elif real_username:
        step = "payment"
    else:
        step = "username"
    return {
        "canResume": True,
        "resumeStep": step,
        "hasUsername": real_username,
        "hasPayment": has_payment,
        "sessionId": payment.stripe_checkout_session_id if payment else None,
        "user": {
            "id": user.id,
            "email": user.email,
            "username": user.username if real_username else None,
            "display_name": user.display_name,
            "status": user.status,
            "reservation_expires_at": user.reservation_expires_at.isoformat() if user.reservation_expires_at else None,
        },
        "timeRemaining": time_remaining(user, now),
    }


def _send_verification_email(s: "Session", user: User) -> None:
    base_url = current_app.config.get("BASE_URL") or ""
    send_templated_email(
        s,
        "email-verification",
        user.email,
        {
            "display_name": user.display_name,
            "user_email": user.email,
            "verification_url": f"{base_url}/api/auth/verify-email?token={user.verification_token}",
        },
        user=user,
    )


def register_user(s: "Session", payload: dict, *, now: datetime | None = None) -> RegistrationOutcome:
    """Payload must already be validated."""
    now = now or datetime.utcnow()
    email = normalize_email(payload.get("email"))
    display_name = strip_html(payload.get("display_name"))

    existing = s.query(User).filter(func.lower(User.email) == email).one_or_none()
    if existing is not None:
        if existing.status == USER_STATUS_EXPIRED:
            delete_user_data(s, existing, actor=None, reason="Re-registration after expiry")
        elif existing.status == USER_STATUS_PENDING:
            if reservation_expired(existing, now):
                expire_user(s, existing, now=now)
                delete_user_data(s, existing, actor=None, reason="Re-registration after expiry")
            else:
                return RegistrationOutcome(user=existing, created=False, resume=signup_progress(s, existing, now=now))
        else:
            raise SignupError("An account with this email already exists", 400)

    user = User(
        email=email,
        username=generate_temp_username(),
        display_name=display_name,
        password_hash=generate_password_hash(payload["password"]),
        status=USER_STATUS_PENDING,
        is_active=True,
        email_verified=False,
        verification_token=secrets.token_hex(32),
        verification_token_expiry=now + timedelta(hours=VERIFICATION_TOKEN_HOURS),
        reservation_expires_at=now + timedelta(days=RESERVATION_DAYS),
        created_at=now,
        updated_at=now,
    )
    s.add(user)
    s.flush()
    record_event(s, actor=None, action="user.register", entity_type="User", entity_id=str(user.id), metadata={"email": email})
    _send_verification_email(s, user)
    return RegistrationOutcome(user=user, created=True)


def check_signup_status(s: "Session", email: str, *, now: datetime | None = None) -> dict[str, Any]:
    now = now or datetime.utcnow()
    user = s.query(User).filter(func.lower(User.email) == normalize_email(email)).one_or_none()
    if user is None:
        return {"canResume": False, "reason": "not_found", "message": "No account found with this email"}
    if user.status == USER_STATUS_ACTIVE:
        raise SignupError("Account already exists. Please sign in instead.", 400, canResume=False, reason="active", isActive=True)
    if user.status == USER_STATUS_EXPIRED:
        return {"canResume": False, "reason": "expired", "message": "Previous signup expired. You can create a new account."}
    if reservation_expired(user, now):
        expire_user(s, user, now=now)
        return {"canResume": False, "reason": "expired", "message": "Your reservation has expired. You can start a new signup."}
    return signup_progress(s, user, now=now)


def verify_email(s: "Session", token: str, *, now: datetime | None = None) -> User:
    now = now or datetime.utcnow()
    token = (token or "").strip()
    if not token:
        raise SignupError("Verification token is missing", 400)
    user = s.query(User).filter(User.verification_token == token).one_or_none()
    if user is None:
        raise SignupError("This verification link is invalid or has already been used", 400)
    if user.verification_token_expiry is not None and user.verification_token_expiry < now:
        raise SignupError("This verification link has expired. Please request a new one.", 400)
    user.email_verified = True
    user.verification_token = None
    user.verification_token_expiry = None
    user.updated_at = now
    record_event(s, actor=user, action="user.verify_email", entity_type="User", entity_id=str(user.id))
    return user


def resend_verification(s: "Session", email: str, *, now: datetime | None = None) -> User:
    """Issue a fresh token (the old link stops working) and email it."""
    now = now or datetime.utcnow()
    user = s.query(User).filter(func.lower(User.email) == normalize_email(email)).one_or_none()
    if user is None or user.status == USER_STATUS_EXPIRED:
        raise SignupError("No account found with this email", 404)
    if user.email_verified:
        raise SignupError("Email is already verified", 400)
    user.verification_token = secrets.token_hex(32)
    user.verification_token_expiry = now + timedelta(hours=VERIFICATION_TOKEN_HOURS)
    user.updated_at = now
    record_event(s, actor=None, action="user.resend_verification", entity_type="User", entity_id=str(user.id))
    _send_verification_email(s, user)
    return user


# --- Usernames ---------------------------------------------------------------


def is_reserved_username(username: str) -> bool:
    return username.strip().lower() in RESERVED_USERNAMES


def validate_username(username: str) -> None:
    if not USERNAME_RE.match(username or ""):
        raise SignupError(USERNAME_FORMAT_MESSAGE, 400, available=False)
    if is_reserved_username(username):
        raise SignupError("This username is reserved", 400, available=False)


def _username_holder(s: "Session", username: str) -> User | None:
    return s.query(User).filter(func.lower(User.username) == username.lower()).one_or_none()


def username_available(s: "Session", username: str, *, now: datetime, exclude_user_id: int | None = None) -> bool:
    """Case-insensitive. EXPIRED and lapsed PENDING holders do not block a name."""
    holder = _username_holder(s, username)
    if holder is None or holder.id == exclude_user_id:
        return True
    if holder.status == USER_STATUS_EXPIRED:
        return True
    if holder.status == USER_STATUS_PENDING and reservation_expired(holder, now):
        return True
    return False


def _release_stale_holder(s: "Session", username: str, *, now: datetime, claimant_id: int) -> None:
    holder = _username_holder(s, username)
    if holder is None or holder.id == claimant_id:
        return
    if holder.status == USER_STATUS_EXPIRED:
        holder.username = expired_username(holder.username, holder.id, now)
        s.flush()
    elif holder.status == USER_STATUS_PENDING and reservation_expired(holder, now):
        expire_user(s, holder, now=now)


def _suggestion_base(display_name: str) -> str:
    base = re.sub(r"[^A-Za-z0-9_]", "", display_name.replace(" ", "_"))[:16]
    base = base.strip("_")
    return base if len(base) >= 3 else "studio"


def username_suggestions(s: "Session", display_name: str, *, now: datetime, count: int = SUGGESTION_COUNT) -> list[dict[str, Any]]:
    base = _suggestion_base(strip_html(display_name))
    first = base.split("_")[0]
    candidates = [base, base.replace("_", ""), f"{base}_VO", f"{first}Studio", f"{base}{now.year % 100}"]
    out: list[dict[str, Any]] = []
    seen: set[str] = set()
    for cand in candidates:
        cand = cand[:20]
        key = cand.lower()
        if key in seen or not USERNAME_RE.match(cand) or is_reserved_username(cand):
            continue
        seen.add(key)
        out.append({"username": cand, "available": username_available(s, cand, now=now)})
        if len(out) >= count:
            break
    return out


def reserve_username(s: "Session", user_id: Any, username: str, *, now: datetime | None = None) -> User:
    now = now or datetime.utcnow()
    if not user_id or not str(user_id).isdigit():
        raise SignupError("User ID is required", 400)
    if not username:
        raise SignupError("Username is required", 400)
    validate_username(username)

    user = s.get(User, int(user_id))
    if user is None:
        raise SignupError("User not found", 404)
    if user.status != USER_STATUS_PENDING:
        raise SignupError("Username can only be reserved during signup", 400)
    if reservation_expired(user, now):
        expire_user(s, user, now=now)
        raise SignupError("Your reservation has expired. Please sign up again.", 410, expired=True)
    if not username_available(s, username, now=now, exclude_user_id=user.id):
        raise SignupError("Username is already taken", 409)

    _release_stale_holder(s, username, now=now, claimant_id=user.id)
    old = user.username
    user.username = username
    user.updated_at = now
    s.flush()
    record_event(
        s,
        actor=user,
        action="user.reserve_username",
        entity_type="User",
        entity_id=str(user.id),
        metadata={"old": old, "new": username},
    )
    return user


def retry_payment(s: "Session", user_id: Any, *, now: datetime | None = None) -> dict[str, Any]:
    """Extend the reservation by RETRY_EXTENSION_DAYS (capped at MAX_RESERVATION_DAYS from signup)."""
    now = now or datetime.utcnow()
    if not user_id or not str(user_id).isdigit():
        raise SignupError("User ID is required", 400)
    user = s.get(User, int(user_id))
    if user is None:
        raise SignupError("User not found", 404)
    if user.status == USER_STATUS_ACTIVE:
        raise SignupError("User already has an active membership", 400)
    if user.status == USER_STATUS_EXPIRED or reservation_expired(user, now):
        if user.status != USER_STATUS_EXPIRED:
            expire_user(s, user, now=now)
        raise SignupError("Username reservation has expired", 410, expired=True)
    if (now - user.created_at).days >= MAX_RESERVATION_DAYS:
        expire_user(s, user, now=now)
        raise SignupError("Your username reservation has expired. Please sign up again.", 410, expired=True)

    max_expiry = user.created_at + timedelta(days=MAX_RESERVATION_DAYS)
    new_expiry = (user.reservation_expires_at or now) + timedelta(days=RETRY_EXTENSION_DAYS)
    user.reservation_expires_at = min(new_expiry, max_expiry)
    user.payment_retry_count = (user.payment_retry_count or 0) + 1
    user.payment_attempted_at = now
    user.updated_at = now
    record_event(
        s,
        actor=user,
        action="user.retry_payment",
        entity_type="User",
        entity_id=str(user.id),
        metadata={"retry_count": user.payment_retry_count},
    )
    return {
        "id": user.id,
        "email": user.email,
        "username": user.username,
        "display_name": user.display_name,
        "reservation_expires_at": user.reservation_expires_at.isoformat(),
        "payment_retry_count": user.payment_retry_count,
    }


# --- Cron jobs ---------------------------------------------------------------


def expire_reservations(s: "Session", *, now: datetime | None = None) -> dict[str, Any]:
    now = now or datetime.utcnow()
    base_url = current_app.config.get("BASE_URL") or ""
    pending = (
        s.query(User)
        .filter(User.status == USER_STATUS_PENDING, User.reservation_expires_at.isnot(None))
        .filter(User.reservation_expires_at < now)
        .all()
    )
    expired = 0
    for user in pending:
        old_username = expire_user(s, user, now=now)
        expired += 1
        logger.info("Expired reservation for user %s (@%s)", user.id, old_username)
        send_templated_email(
            s,
            "reservation-expired",
            user.email,
            {"display_name": user.display_name, "username": old_username, "signup_url": f"{base_url}/auth/signup"},
            user=user,
        )

    cutoff = now - timedelta(days=EXPIRED_USER_RETENTION_DAYS)
    stale = s.query(User).filter(User.status == USER_STATUS_EXPIRED, User.updated_at < cutoff).all()
    deleted = 0
    for user in stale:
        delete_user_data(s, user, actor=None, reason="Expired reservation retention")
        deleted += 1
    return {"processed": len(pending), "expired": expired, "deleted": deleted}


def _days_remaining(user: User, now: datetime) -> int:
    seconds = (user.reservation_expires_at - now).total_seconds()
    return max(0, -int(-seconds // 86400))


def send_engagement_emails(s: "Session", *, now: datetime | None = None) -> dict[str, Any]:
    """Day-2 and day-5 reservation reminders plus the failed-payment follow-up; each at most once per user."""
    now = now or datetime.utcnow()
    base_url = current_app.config.get("BASE_URL") or ""
    counts = {"day2": 0, "day5": 0, "payment_failed": 0}

    active_pending = (
        s.query(User)
        .filter(User.status == USER_STATUS_PENDING, User.reservation_expires_at.isnot(None))
        .filter(User.reservation_expires_at >= now)
    )

    day2 = active_pending.filter(
        User.created_at <= now - timedelta(days=2),
        User.created_at > now - timedelta(days=5),
        User.payment_attempted_at.is_(None),
        User.day2_reminder_sent_at.is_(None),
    ).all()
    for user in day2:
        send_templated_email(
            s,
            "reservation-reminder-day2",
            user.email,
            {
                "display_name": user.display_name,
                "username": user.username,
                "reservation_expires_at": format_date_en_gb(user.reservation_expires_at),
                "days_remaining": _days_remaining(user, now),
                "signup_url": f"{base_url}/api/auth/retry-payment?userId={user.id}",
            },
            user=user,
        )
        user.day2_reminder_sent_at = now
        counts["day2"] += 1

    day5 = active_pending.filter(
        User.created_at <= now - timedelta(days=5),
        User.day5_reminder_sent_at.is_(None),
    ).all()
    for user in day5:
        send_templated_email(
            s,
            "reservation-urgency-day5",
            user.email,
            {
                "display_name": user.display_name,
                "username": user.username,
                "reservation_expires_at": format_date_en_gb(user.reservation_expires_at),
                "days_remaining": _days_remaining(user, now),
                "signup_url": f"{base_url}/api/auth/retry-payment?userId={user.id}",
            },
            user=user,
        )
        user.day5_reminder_sent_at = now
        counts["day5"] += 1

    failed_candidates = active_pending.filter(
        User.payment_retry_count >= 1,
        User.payment_failed_email_sent_at.is_(None),
    ).all()
    for user in failed_candidates:
        failed = (
            s.query(Payment)
            .filter(
                Payment.user_id == user.id,
                Payment.status == PAYMENT_FAILED,
                Payment.created_at >= now - timedelta(days=1),
            )
            .order_by(Payment.created_at.desc())
            .first()
        )
        if failed is None:
            continue
        send_templated_email(
            s,
            "payment-failed-reservation",
            user.email,
            {
                "display_name": user.display_name,
                "username": user.username,
                "amount": pounds(failed.amount),
                "currency": (failed.currency or "gbp").upper(),
                "error_message": (failed.metadata_json or {}).get("error") or "Payment was declined",
                "reservation_expires_at": format_date_en_gb(user.reservation_expires_at),
                "retry_url": f"{base_url}/api/auth/retry-payment?userId={user.id}",
            },
            user=user,
        )
        user.payment_failed_email_sent_at = now
        counts["payment_failed"] += 1

    return {**counts, "sent": sum(counts.values())}


# --- Deletion ----------------------------------------------------------------


def delete_user_data(s: "Session", user: User, *, actor: User | None, reason: str | None = None) -> dict[str, int]:
    """
    Delete a user and every dependent row inside the caller's transaction.
    Children go first so the result does not depend on ON DELETE CASCADE.
    Stored image files are left in storage.
    """
    uid = user.id
    counts: dict[str, int] = {}
    studio_ids = [sid for (sid,) in s.query(StudioProfile.id).filter(StudioProfile.user_id == uid).all()]
    payment_ids = [pid for (pid,) in s.query(Payment.id).filter(Payment.user_id == uid).all()]

    if studio_ids:
        counts["studio_images"] = s.query(StudioImage).filter(StudioImage.studio_id.in_(studio_ids)).delete(synchronize_session=False)
        s.query(StudioType).filter(StudioType.studio_id.in_(studio_ids)).delete(synchronize_session=False)
        s.query(StudioService).filter(StudioService.studio_id.in_(studio_ids)).delete(synchronize_session=False)
        counts["studio_reviews"] = s.query(Review).filter(Review.studio_id.in_(studio_ids)).delete(synchronize_session=False)
    counts["reviews"] = s.query(Review).filter((Review.reviewer_id == uid) | (Review.owner_id == uid)).delete(synchronize_session=False)
    counts["messages"] = s.query(Message).filter((Message.sender_id == uid) | (Message.recipient_id == uid)).delete(synchronize_session=False)
    counts["support_tickets"] = s.query(SupportTicket).filter(SupportTicket.user_id == uid).delete(synchronize_session=False)
    s.query(EmailDelivery).filter(EmailDelivery.user_id == uid).delete(synchronize_session=False)
    s.query(EmailPreference).filter(EmailPreference.user_id == uid).delete(synchronize_session=False)
    if payment_ids:
        s.query(Refund).filter(Refund.payment_id.in_(payment_ids)).delete(synchronize_session=False)
    counts["payments"] = s.query(Payment).filter(Payment.user_id == uid).delete(synchronize_session=False)
    counts["subscriptions"] = s.query(Subscription).filter(Subscription.user_id == uid).delete(synchronize_session=False)
    s.query(UserMetadata).filter(UserMetadata.user_id == uid).delete(synchronize_session=False)
    s.query(UserRole).filter(UserRole.user_id == uid).delete(synchronize_session=False)
    counts["studios"] = s.query(StudioProfile).filter(StudioProfile.user_id == uid).delete(synchronize_session=False)

    record_event(
        s,
        actor=actor,
        action="user.delete",
        entity_type="User",
        entity_id=str(uid),
        reason=reason,
        metadata={"email": user.email, "username": user.username, **counts},
    )
    s.query(User).filter(User.id == uid).delete(synchronize_session=False)
    s.expunge(user)
    s.flush()
    return counts
