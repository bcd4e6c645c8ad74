from __future__ import annotations

from flask import Blueprint, abort, current_app, flash, g, jsonify, redirect, render_template, request, url_for

from app.studiofinder.db import db_session
from app.studiofinder.models import User
from app.studiofinder.modules.accounts.service import delete_user_data
from app.studiofinder.modules.studios.completion import completion_for
from app.studiofinder.modules.studios.models import STUDIO_STATUSES, StudioProfile
from app.studiofinder.modules.studios.service import StudioUpdateError, admin_update_studio, serialize_admin_studio
from app.studiofinder.rbac import require_api_permission, require_permission
from app.studiofinder.utils import json_error, json_payload

bp = Blueprint("studios_admin", __name__)

PAGE_SIZE = 50


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


# ---------- List ----------
@bp.get("/studios")
@require_permission("studios.view")
def studios_list():
    s = db_session()
    search = (request.args.get("q") or "").strip()
    status_filter = (request.args.get("status") or "").strip().upper()
    featured_only = request.args.get("featured") == "1"
    verified_only = request.args.get("verified") == "1"
    page = max(request.args.get("page", 1, type=int) or 1, 1)

    q = s.query(StudioProfile).join(User, User.id == StudioProfile.user_id)
    if search:
        like = f"%{search}%"
        q = q.filter(
            (StudioProfile.name.ilike(like))
            | (StudioProfile.city.ilike(like))
            | (User.username.ilike(like))
            | (User.email.ilike(like))
        )
    if status_filter in STUDIO_STATUSES:
        q = q.filter(StudioProfile.status == status_filter)
    if featured_only:
        q = q.filter(StudioProfile.is_featured.is_(True))
    if verified_only:
        q = q.filter(StudioProfile.is_verified.is_(True))

    total = q.count()
    studios = (
        q.order_by(StudioProfile.created_at.desc(), StudioProfile.id.desc())
        .offset((page - 1) * PAGE_SIZE)
        .limit(PAGE_SIZE)
        .all()
    )
    return render_template(
        "admin/studios/list.html",
        studios=studios,
        search=search,
        status_filter=status_filter,
        statuses=STUDIO_STATUSES,
        featured_only=featured_only,
        verified_only=verified_only,
        page=page,
        has_more=total > page * PAGE_SIZE,
        total=total,
    )


# ---------- Detail ----------
@bp.get("/studios/<int:studio_id>")
@require_permission("studios.view")
def studio_detail(studio_id: int):
    s = db_session()
    studio = s.get(StudioProfile, studio_id)
    if not studio:
        abort(404)
    return render_template(
        "admin/studios/detail.html",
        studio=studio,
        completion=completion_for(studio.owner, studio),
        statuses=STUDIO_STATUSES,
    )


@bp.post("/studios/<int:studio_id>/status")
@require_permission("studios.edit")
def studio_set_status(studio_id: int):
    s = db_session()
    u = _current_user()
    studio = s.get(StudioProfile, studio_id)
    if not studio:
        abort(404)
    body = {"status": (request.form.get("status") or "").strip()}
    try:
        admin_update_studio(s, studio, body, u, current_app.config)
    except StudioUpdateError as e:
        s.rollback()
        flash(e.message, "danger")
        return redirect(url_for("studios_admin.studio_detail", studio_id=studio_id))
    s.commit()
    flash(f"Studio is now {studio.status.lower()}.", "success")
    return redirect(url_for("studios_admin.studio_detail", studio_id=studio_id))


@bp.post("/studios/<int:studio_id>/delete")
@require_permission("studios.delete")
def studio_delete(studio_id: int):
    s = db_session()
    u = _current_user()
    studio = s.get(StudioProfile, studio_id)
    if not studio:
        abort(404)
    owner = studio.owner
    name = studio.name
    delete_user_data(s, owner, actor=u, reason=(request.form.get("reason") or "").strip() or "Studio deleted by admin")
    s.commit()
    flash(f"Deleted studio {name} and its owner's data.", "success")
    return redirect(url_for("studios_admin.studios_list"))


# ---------- JSON editor ----------
@bp.get("/api/studios/<int:studio_id>")
@require_api_permission("studios.view")
def studio_get_api(studio_id: int):
    s = db_session()
    studio = s.get(StudioProfile, studio_id)
    if not studio:
        return json_error("Studio not found", 404)
    return jsonify({"studio": serialize_admin_studio(studio)})


@bp.put("/api/studios/<int:studio_id>")
@require_api_permission("studios.edit")
def studio_update_api(studio_id: int):
    s = db_session()
    u = _current_user()
    studio = s.get(StudioProfile, studio_id)
    if not studio:
        return json_error("Studio not found", 404)
    try:
        changes = admin_update_studio(s, studio, json_payload(), u, current_app.config)
    except StudioUpdateError as e:
        s.rollback()
        return json_error(e.message, e.status)
    s.commit()
    current_app.logger.info("Admin %s updated studio %s (%d fields)", u.email, studio.id, len(changes))
    return jsonify({"success": True, "updated_fields": sorted(changes), "studio": serialize_admin_studio(studio)})


@bp.delete("/api/studios/<int:studio_id>")
@require_api_permission("studios.delete")
def studio_delete_api(studio_id: int):
    s = db_session()
    u = _current_user()
    studio = s.get(StudioProfile, studio_id)
    if not studio:
        return json_error("Studio not found", 404)
    try:
        counts = delete_user_data(s, studio.owner, actor=u, reason="Studio deleted by admin")
    except Exception:
        s.rollback()
        current_app.logger.exception("Failed to delete studio %s", studio_id)
        return json_error("Failed to delete studio", 500)
    s.commit()
    return jsonify({"success": True, "deleted": counts})
