from __future__ import annotations

import json

from flask import Blueprint, abort, flash, g, redirect, render_template, request, url_for

from app.studiofinder.db import db_session
from app.studiofinder.models import User
from app.studiofinder.modules.error_log.models import ERROR_STATUSES, ERROR_UNRESOLVED, ErrorLogGroup
from app.studiofinder.modules.error_log.service import set_error_status
from app.studiofinder.rbac import require_permission

bp = Blueprint("errors_admin", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


@bp.get("/errors")
@require_permission("errors.view")
def errors_list():
    s = db_session()
    status_filter = (request.args.get("status") or ERROR_UNRESOLVED).strip().upper()
    level_filter = (request.args.get("level") or "").strip().lower()
    search = (request.args.get("q") or "").strip()

    q = s.query(ErrorLogGroup)
    if status_filter in ERROR_STATUSES:
        q = q.filter(ErrorLogGroup.status == status_filter)
    if level_filter:
        q = q.filter(ErrorLogGroup.level == level_filter)
    if search:
        like = f"%{search}%"
        q = q.filter((ErrorLogGroup.title.ilike(like)) | (ErrorLogGroup.culprit.ilike(like)))
    groups = q.order_by(ErrorLogGroup.last_seen_at.desc()).limit(200).all()
    return render_template(
        "admin/errors/list.html",
        groups=groups,
        statuses=ERROR_STATUSES,
        status_filter=status_filter,
        level_filter=level_filter,
        search=search,
    )


@bp.get("/errors/<int:group_id>")
@require_permission("errors.view")
def error_detail(group_id: int):
    s = db_session()
    group = s.get(ErrorLogGroup, group_id)
    if not group:
        abort(404)
    sample = json.dumps(group.sample_event, indent=2, sort_keys=True, default=str) if group.sample_event else None
    return render_template("admin/errors/detail.html", group=group, sample=sample, statuses=ERROR_STATUSES)


@bp.post("/errors/<int:group_id>/status")
@require_permission("errors.edit")
def error_set_status(group_id: int):
    s = db_session()
    u = _current_user()
    group = s.get(ErrorLogGroup, group_id)
    if not group:
        abort(404)
    try:
        set_error_status(s, group, request.form.get("status") or "", u, request.form.get("notes"))
    except ValueError as e:
        flash(str(e), "danger")
        return redirect(url_for("errors_admin.error_detail", group_id=group_id))
    s.commit()
    flash(f"Error group marked {group.status.lower()}.", "success")
    return redirect(url_for("errors_admin.error_detail", group_id=group_id))
