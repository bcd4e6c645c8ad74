from __future__ import annotations

import uuid
from datetime import datetime

from flask import Blueprint, current_app, flash, g, redirect, render_template, request, session, url_for
from sqlalchemy import func
from werkzeug.security import check_password_hash

from app.studiofinder.audit import record_event
from app.studiofinder.db import db_session
from app.studiofinder.models import USER_STATUS_ACTIVE, User
from app.studiofinder.modules.rate_limiting.service import LOGIN, check_rate_limit, generate_fingerprint
from app.studiofinder.rbac import is_admin

bp = Blueprint("auth", __name__)


def load_current_user() -> None:
    """
    Loads g.current_user from the signed session cookie.
    Also assigns a simple per-request request_id (for audit/log correlation).
    """
    if not getattr(g, "request_id", None):
        g.request_id = uuid.uuid4().hex
    if request.path.startswith(("/static/", "/health", "/healthz")):
        g.current_user = None
        return

    user_id = session.get("user_id")
    if not user_id:
        g.current_user = None
        return

    s = db_session()
    user = s.get(User, int(user_id))
    if not user or not user.is_active:
        session.pop("user_id", None)
        g.current_user = None
        return
    g.current_user = user


def find_login_user(s, identifier: str) -> User | None:
    """Email or username, case-insensitive."""
    identifier = identifier.strip().lower()
    if not identifier:
        return None
    if "@" in identifier:
        return s.query(User).filter(func.lower(User.email) == identifier).one_or_none()
    return s.query(User).filter(func.lower(User.username) == identifier).one_or_none()


def can_sign_in(user: User) -> bool:
    return user.is_active and (user.status == USER_STATUS_ACTIVE or is_admin(user))


@bp.get("/login")
def login_get():
    nxt = (request.args.get("next") or "").strip()
    return render_template("auth/login.html", next=nxt)


@bp.post("/login")
def login_post():
    identifier = (request.form.get("email") or request.form.get("identifier") or "").strip().lower()
    password = request.form.get("password") or ""
    nxt = (request.form.get("next") or "").strip()

    s = db_session()
    limit = check_rate_limit(s, generate_fingerprint(request, identifier), LOGIN)
    s.commit()
    if not limit.allowed:
        flash(f"Too many login attempts. Please wait {limit.minutes_until_reset()} minutes.", "danger")
        return redirect(url_for("auth.login_get"))

    user = find_login_user(s, identifier)
    if not user or not check_password_hash(user.password_hash, password):
        record_event(
            s,
            actor=None,
            action="auth.login_failed",
            entity_type="User",
            entity_id=identifier,
            reason="Invalid credentials",
        )
        s.commit()
        flash("Invalid credentials.", "danger")
        return redirect(url_for("auth.login_get"))

    if not can_sign_in(user):
        record_event(s, actor=user, action="auth.login_failed", entity_type="User", entity_id=str(user.id), reason=f"status={user.status}")
        s.commit()
        current_app.logger.info("Login refused for user %s with status %s", user.id, user.status)
        flash("Please complete your membership signup before signing in.", "warning")
        return redirect(url_for("auth.login_get"))

    session["user_id"] = user.id
    user.last_login_at = datetime.utcnow()
    record_event(s, actor=user, action="auth.login", entity_type="User", entity_id=str(user.id))
    s.commit()
    # Only local paths, no open redirects.
    if nxt.startswith("/") and not nxt.startswith("//"):
        return redirect(nxt)
    if is_admin(user):
        return redirect(url_for("admin.index"))
    return redirect(url_for("routes.studio_page", username=user.username))


@bp.get("/logout")
def logout():
    s = db_session()
    user = getattr(g, "current_user", None)
    if user:
        record_event(s, actor=user, action="auth.logout", entity_type="User", entity_id=str(user.id))
        s.commit()
    session.pop("user_id", None)
    return redirect(url_for("routes.index"))
