from __future__ import annotations

from flask import Blueprint, abort, flash, g, redirect, render_template, request, url_for

from app.studiofinder.db import db_session
from app.studiofinder.models import User
from app.studiofinder.modules.support.models import TICKET_CATEGORIES, TICKET_OPEN, TICKET_STATUSES, SupportTicket
from app.studiofinder.modules.support.service import SupportError, update_ticket
from app.studiofinder.rbac import require_permission

bp = Blueprint("support_admin", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


@bp.get("/support")
@require_permission("support.view")
def tickets_list():
    s = db_session()
    status_filter = (request.args.get("status") or TICKET_OPEN).strip().upper()
    category_filter = (request.args.get("category") or "").strip().upper()
    search = (request.args.get("q") or "").strip()

    q = s.query(SupportTicket).join(User, User.id == SupportTicket.user_id)
    if status_filter in TICKET_STATUSES:
        q = q.filter(SupportTicket.status == status_filter)
    if category_filter in TICKET_CATEGORIES:
        q = q.filter(SupportTicket.category == category_filter)
    if search:
        like = f"%{search}%"
        q = q.filter((SupportTicket.subject.ilike(like)) | (User.email.ilike(like)) | (User.username.ilike(like)))

    tickets = q.order_by(SupportTicket.created_at.desc()).limit(200).all()
    return render_template(
        "admin/support/list.html",
        tickets=tickets,
        statuses=TICKET_STATUSES,
        categories=TICKET_CATEGORIES,
        status_filter=status_filter,
        category_filter=category_filter,
        search=search,
    )


@bp.get("/support/<int:ticket_id>")
@require_permission("support.view")
def ticket_detail(ticket_id: int):
    s = db_session()
    ticket = s.get(SupportTicket, ticket_id)
    if not ticket:
        abort(404)
    return render_template("admin/support/detail.html", ticket=ticket, statuses=TICKET_STATUSES)


@bp.post("/support/<int:ticket_id>/update")
@require_permission("support.edit")
def ticket_update(ticket_id: int):
    s = db_session()
    u = _current_user()
    ticket = s.get(SupportTicket, ticket_id)
    if not ticket:
        abort(404)
    try:
        changes = update_ticket(
            s,
            ticket,
            u,
            status=request.form.get("status"),
            notes=request.form.get("admin_notes"),
        )
    except SupportError as e:
        flash(e.message, "danger")
        return redirect(url_for("support_admin.ticket_detail", ticket_id=ticket_id))
    s.commit()
    flash("Ticket updated." if changes else "No changes.", "success" if changes else "info")
    return redirect(url_for("support_admin.ticket_detail", ticket_id=ticket_id))
