from datetime import date, datetime, time, timedelta

from flask import Blueprint, abort, current_app, flash, g, jsonify, redirect, render_template, request, url_for
from sqlalchemy import text

from app.studiofinder.audit import record_event
from app.studiofinder.db import db_session
from app.studiofinder.models import USER_STATUS_ACTIVE, USER_STATUS_EXPIRED, USER_STATUS_PENDING, AuditEvent, SiteSetting, User
from app.studiofinder.modules.accounts.service import delete_user_data
from app.studiofinder.modules.analytics.service import dashboard_stats
from app.studiofinder.modules.memberships.promo import PROMO_SETTING_KEY, get_promo_config, get_promo_config_from_db
from app.studiofinder.modules.memberships.service import membership_summary
from app.studiofinder.rbac import require_api_permission, require_permission

bp = Blueprint("admin", __name__)

USER_STATUSES = (USER_STATUS_PENDING, USER_STATUS_ACTIVE, USER_STATUS_EXPIRED)
PAGE_SIZE = 50


def _parse_date(s: str) -> date | None:
    s = (s or "").strip()
    if not s:
        return None
    try:
        return date.fromisoformat(s)
    except ValueError:
        return None


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _system_status(s) -> dict:
    cfg = current_app.config
    status = {
        "env": cfg.get("ENV") or "development",
        "db_connected": False,
        "db_error": None,
        "storage_backend": cfg.get("STORAGE_BACKEND") or "local",
        "stripe_ready": bool(cfg.get("STRIPE_SECRET_KEY") and cfg.get("STRIPE_WEBHOOK_SECRET")),
        "email_ready": bool(cfg.get("RESEND_API_KEY")),
        "geocoding_ready": bool(cfg.get("GOOGLE_MAPS_API_KEY")),
        "cron_ready": bool(cfg.get("CRON_SECRET")),
    }
    # DB connectivity (lightweight)
    try:
        s.execute(text("SELECT 1"))
        status["db_connected"] = True
    except Exception as e:
        s.rollback()
        status["db_error"] = str(e)
    return status


@bp.get("/")
@require_permission("admin.view")
def index():
    s = db_session()
    return render_template(
        "admin/index.html",
        stats=dashboard_stats(s),
        system_status=_system_status(s),
        promo=get_promo_config_from_db(s, current_app.config),
    )


@bp.get("/api/analytics")
@require_api_permission("admin.view")
def analytics_api():
    return jsonify(dashboard_stats(db_session()))


# ---------- Site settings ----------
@bp.get("/settings")
@require_permission("settings.edit")
def settings_get():
    s = db_session()
    setting = s.query(SiteSetting).filter(SiteSetting.key == PROMO_SETTING_KEY).one_or_none()
    return render_template(
        "admin/settings.html",
        promo=get_promo_config_from_db(s, current_app.config),
        env_promo=get_promo_config(current_app.config),
        promo_setting=setting,
    )


@bp.post("/settings/promo")
@require_permission("settings.edit")
def settings_promo():
    s = db_session()
    u = _current_user()
    mode = (request.form.get("promo") or "").strip().lower()
    setting = s.query(SiteSetting).filter(SiteSetting.key == PROMO_SETTING_KEY).one_or_none()
    before = setting.content if setting else None

    if mode == "env":
        # Drop the override so PROMO_FREE_SIGNUP applies again.
        if setting is not None:
            s.delete(setting)
    elif mode in ("true", "false"):
        if setting is None:
            setting = SiteSetting(key=PROMO_SETTING_KEY)
            s.add(setting)
        setting.content = mode
        setting.updated_at = datetime.utcnow()
        setting.updated_by_user_id = u.id
    else:
        flash("Choose on, off or follow environment.", "danger")
        return redirect(url_for("admin.settings_get"))

    record_event(
        s,
        actor=u,
        action="settings.promo_update",
        entity_type="SiteSetting",
        entity_id=PROMO_SETTING_KEY,
        metadata={"before": before, "after": None if mode == "env" else mode},
    )
    s.commit()
    flash("Promo setting saved.", "success")
    return redirect(url_for("admin.settings_get"))


# ---------- Users ----------
@bp.get("/users")
@require_permission("users.view")
def users_list():
    s = db_session()
    search = (request.args.get("q") or "").strip()
    status_filter = (request.args.get("status") or "").strip().upper()
    page = max(request.args.get("page", 1, type=int) or 1, 1)

    q = s.query(User)
    if search:
        like = f"%{search}%"
        q = q.filter((User.email.ilike(like)) | (User.username.ilike(like)) | (User.display_name.ilike(like)))
    if status_filter in USER_STATUSES:
        q = q.filter(User.status == status_filter)
    total = q.count()
    users = q.order_by(User.created_at.desc(), User.id.desc()).offset((page - 1) * PAGE_SIZE).limit(PAGE_SIZE).all()
    return render_template(
        "admin/users/list.html",
        users=users,
        search=search,
        status_filter=status_filter,
        statuses=USER_STATUSES,
        page=page,
        has_more=total > page * PAGE_SIZE,
        total=total,
    )


@bp.get("/users/<int:user_id>")
@require_permission("users.view")
def users_detail(user_id: int):
    s = db_session()
    user = s.get(User, user_id)
    if not user:
        abort(404)
    return render_template("admin/users/detail.html", account=user, membership=membership_summary(s, user))


@bp.post("/users/<int:user_id>/update")
@require_permission("users.edit")
def users_update(user_id: int):
    s = db_session()
    u = _current_user()
    user = s.get(User, user_id)
    if not user:
        abort(404)
    if user.id == u.id:
        flash("You cannot modify your own account from this page.", "danger")
        return redirect(url_for("admin.users_detail", user_id=user_id))

    before = {"is_active": user.is_active, "status": user.status, "email_verified": user.email_verified}
    user.is_active = request.form.get("is_active") == "1"
    new_status = (request.form.get("status") or user.status).strip().upper()
    if new_status not in USER_STATUSES:
        flash(f"Unknown status: {new_status}", "danger")
        return redirect(url_for("admin.users_detail", user_id=user_id))
    user.status = new_status
    if request.form.get("email_verified") == "1" and not user.email_verified:
        user.email_verified = True
        user.verification_token = None
        user.verification_token_expiry = None
    user.updated_at = datetime.utcnow()
    after = {"is_active": user.is_active, "status": user.status, "email_verified": user.email_verified}

    record_event(
        s,
        actor=u,
        action="user.update",
        entity_type="User",
        entity_id=str(user.id),
        metadata={"before": before, "after": after},
    )
    s.commit()
    flash(f"Account updated for {user.email}.", "success")
    return redirect(url_for("admin.users_detail", user_id=user_id))


@bp.post("/users/<int:user_id>/delete")
@require_permission("users.delete")
def users_delete(user_id: int):
    s = db_session()
    u = _current_user()
    user = s.get(User, user_id)
    if not user:
        abort(404)
    if user.id == u.id:
        flash("You cannot delete your own account.", "danger")
        return redirect(url_for("admin.users_detail", user_id=user_id))
    email = user.email
    reason = (request.form.get("reason") or "").strip() or None
    delete_user_data(s, user, actor=u, reason=reason)
    s.commit()
    flash(f"Deleted {email} and all related data.", "success")
    return redirect(url_for("admin.users_list"))


# ---------- Audit ----------
@bp.get("/audit")
@require_permission("audit.view")
def audit_list():
    """
    Audit trail UI (last 200 events) with simple filters:
    - action (contains)
    - actor_email (contains)
    - date range (YYYY-MM-DD)
    """
    s = db_session()
    action = (request.args.get("action") or "").strip()
    actor_email = (request.args.get("actor_email") or "").strip()
    date_from = _parse_date(request.args.get("date_from") or "")
    date_to = _parse_date(request.args.get("date_to") or "")

    if (request.args.get("date_from") or "").strip() and not date_from:
        flash("date_from must be YYYY-MM-DD", "danger")
    if (request.args.get("date_to") or "").strip() and not date_to:
        flash("date_to must be YYYY-MM-DD", "danger")

    q = s.query(AuditEvent)
    if action:
        q = q.filter(AuditEvent.action.like(f"%{action}%"))
    if actor_email:
        q = q.filter(AuditEvent.actor_user_email.like(f"%{actor_email.lower()}%"))
    if date_from:
        q = q.filter(AuditEvent.created_at >= datetime.combine(date_from, time.min))
    if date_to:
        # inclusive end-date
        q = q.filter(AuditEvent.created_at < datetime.combine(date_to + timedelta(days=1), time.min))

    events = q.order_by(AuditEvent.created_at.desc(), AuditEvent.id.desc()).limit(200).all()
    return render_template(
        "admin/audit/list.html",
        events=events,
        action=action,
        actor_email=actor_email,
        date_from=(request.args.get("date_from") or "").strip(),
        date_to=(request.args.get("date_to") or "").strip(),
    )
