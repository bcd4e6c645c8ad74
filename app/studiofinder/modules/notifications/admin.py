from __future__ import annotations

from flask import Blueprint, abort, current_app, flash, g, redirect, render_template, request, url_for

from app.studiofinder.db import db_session
from app.studiofinder.models import User
from app.studiofinder.modules.notifications.models import EmailCampaign, EmailDelivery, EmailTemplate
from app.studiofinder.modules.notifications.render import load_template, render_definition, undeclared_placeholders
from app.studiofinder.modules.notifications.service import (
    SEGMENTS,
    create_campaign,
    queue_campaign,
    reset_template_override,
    sample_variables,
    save_template_override,
    validate_campaign_payload,
)
from app.studiofinder.modules.notifications.templates import EMAIL_TEMPLATES, get_template_definition
from app.studiofinder.rbac import require_permission

bp = Blueprint("emails_admin", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


# ---------- Templates ----------
@bp.get("/emails")
@require_permission("emails.manage")
def templates_list():
    s = db_session()
    overridden = {row.key for row in s.query(EmailTemplate).all()}
    return render_template("admin/emails/templates.html", templates=EMAIL_TEMPLATES, overridden=overridden)


@bp.get("/emails/templates/<key>")
@require_permission("emails.manage")
def template_edit(key: str):
    s = db_session()
    if get_template_definition(key) is None:
        abort(404)
    definition = load_template(s, key)
    preview = render_definition(
        definition,
        sample_variables(definition),
        base_url=current_app.config.get("BASE_URL") or "",
        unsubscribe_url="#unsubscribe",
    )
    override = s.query(EmailTemplate).filter(EmailTemplate.key == key).one_or_none()
    return render_template("admin/emails/edit.html", definition=definition, override=override, preview=preview)


@bp.post("/emails/templates/<key>")
@require_permission("emails.manage")
def template_save(key: str):
    s = db_session()
    u = _current_user()
    if get_template_definition(key) is None:
        abort(404)
    if request.form.get("reset") == "1":
        reset_template_override(s, key, u)
        s.commit()
        flash("Template reset to default copy.", "success")
        return redirect(url_for("emails_admin.template_edit", key=key))

    row = save_template_override(s, key, request.form, u)
    unknown = undeclared_placeholders(load_template(s, key))
    if unknown:
        s.rollback()
        flash(f"Unknown placeholders: {', '.join(unknown)}", "danger")
        return redirect(url_for("emails_admin.template_edit", key=key))
    s.commit()
    flash(f"Template {row.key} saved.", "success")
    return redirect(url_for("emails_admin.template_edit", key=key))


# ---------- Campaigns ----------
@bp.get("/emails/campaigns")
@require_permission("emails.manage")
def campaigns_list():
    s = db_session()
    campaigns = s.query(EmailCampaign).order_by(EmailCampaign.created_at.desc()).limit(200).all()
    return render_template(
        "admin/emails/campaigns.html",
        campaigns=campaigns,
        templates=EMAIL_TEMPLATES,
        segments=SEGMENTS,
    )


@bp.post("/emails/campaigns/new")
@require_permission("emails.manage")
def campaigns_new():
    s = db_session()
    u = _current_user()
    payload = {
        "name": request.form.get("name") or "",
        "template_key": request.form.get("template_key") or "",
        "segment": request.form.get("segment") or "",
        "variables": {
            k[len("var_"):]: v.strip() for k, v in request.form.items() if k.startswith("var_") and v.strip()
        },
    }
    errors = validate_campaign_payload(payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("emails_admin.campaigns_list"))
    campaign = create_campaign(s, payload, u)
    s.commit()
    flash(f"Campaign '{campaign.name}' created as draft.", "success")
    return redirect(url_for("emails_admin.campaign_detail", campaign_id=campaign.id))


@bp.get("/emails/campaigns/<int:campaign_id>")
@require_permission("emails.manage")
def campaign_detail(campaign_id: int):
    s = db_session()
    campaign = s.get(EmailCampaign, campaign_id)
    if not campaign:
        abort(404)
    deliveries = (
        s.query(EmailDelivery)
        .filter(EmailDelivery.campaign_id == campaign.id)
        .order_by(EmailDelivery.id.asc())
        .limit(500)
        .all()
    )
    return render_template("admin/emails/campaign_detail.html", campaign=campaign, deliveries=deliveries, segments=SEGMENTS)


@bp.post("/emails/campaigns/<int:campaign_id>/start")
@require_permission("emails.manage")
def campaign_start(campaign_id: int):
    s = db_session()
    u = _current_user()
    campaign = s.get(EmailCampaign, campaign_id)
    if not campaign:
        abort(404)
    try:
        count = queue_campaign(s, campaign, u)
    except ValueError as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("emails_admin.campaign_detail", campaign_id=campaign_id))
    s.commit()
    flash(f"Queued {count} emails. They go out in batches on the next cron runs.", "success")
    return redirect(url_for("emails_admin.campaign_detail", campaign_id=campaign_id))
