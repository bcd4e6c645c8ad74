"""
Externally triggered maintenance jobs.

Every route requires `Authorization: Bearer <CRON_SECRET>`. Jobs commit once
at the end; a failure rolls back and returns 500 so the scheduler retries.
"""
from __future__ import annotations

from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import Blueprint, current_app, jsonify, request

from app.studiofinder.db import db_session
from app.studiofinder.modules.accounts.service import expire_reservations, send_engagement_emails
from app.studiofinder.modules.error_log.sentry_client import sentry_from_config
from app.studiofinder.modules.error_log.service import sync_sentry_issues
from app.studiofinder.modules.memberships.enforcement import enforce_studio_statuses
from app.studiofinder.modules.memberships.service import send_renewal_reminders
from app.studiofinder.modules.notifications.service import process_campaign_batch
from app.studiofinder.modules.rate_limiting.service import cleanup_old_rate_limits
from app.studiofinder.security import bearer_token, secret_matches
from app.studiofinder.utils import json_error

bp = Blueprint("cron", __name__)


def require_cron_secret(fn: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        secret = current_app.config.get("CRON_SECRET")
        if not secret:
            current_app.logger.error("CRON_SECRET not configured; refusing %s", request.path)
            return json_error("Server misconfigured", 500)
        if not secret_matches(bearer_token(request), secret):
            current_app.logger.warning("Unauthorized cron call to %s from %s", request.path, request.remote_addr)
            return json_error("Unauthorized", 401)
        return fn(*args, **kwargs)

    return wrapped


def _run(job_name: str, job: Callable[[Any], dict]):
    s = db_session()
    try:
        result = job(s)
        s.commit()
    except Exception as e:
        s.rollback()
        current_app.logger.exception("Cron job %s failed", job_name)
        return json_error(f"{job_name} failed", 500, details=[str(e)])
    current_app.logger.info("Cron job %s finished: %s", job_name, result)
    return jsonify({"success": True, "job": job_name, **result})


@bp.route("/api/cron/expire-reservations", methods=["GET", "POST"])
@require_cron_secret
def cron_expire_reservations():
    return _run("expire-reservations", lambda s: expire_reservations(s))


@bp.route("/api/cron/engagement-emails", methods=["GET", "POST"])
@require_cron_secret
def cron_engagement_emails():
    return _run("engagement-emails", lambda s: send_engagement_emails(s))


@bp.route("/api/cron/renewal-reminders", methods=["GET", "POST"])
@require_cron_secret
def cron_renewal_reminders():
    return _run("renewal-reminders", lambda s: send_renewal_reminders(s))


@bp.route("/api/cron/enforce-subscriptions", methods=["GET", "POST"])
@require_cron_secret
def cron_enforce_subscriptions():
    admin_emails = current_app.config.get("ADMIN_EMAILS") or []
    return _run("enforce-subscriptions", lambda s: enforce_studio_statuses(s, admin_emails))


@bp.route("/api/cron/process-email-campaigns", methods=["GET", "POST"])
@require_cron_secret
def cron_process_email_campaigns():
    return _run("process-email-campaigns", lambda s: process_campaign_batch(s))


@bp.route("/api/cron/cleanup-rate-limits", methods=["GET", "POST"])
@require_cron_secret
def cron_cleanup_rate_limits():
    return _run("cleanup-rate-limits", lambda s: {"deleted": cleanup_old_rate_limits(s)})


@bp.route("/api/cron/sentry-sync", methods=["GET", "POST"])
@require_cron_secret
def cron_sentry_sync():
    client = sentry_from_config(current_app.config)
    if client is None:
        current_app.logger.warning("Sentry API not configured; skipping sync")
        return jsonify({"success": True, "job": "sentry-sync", "configured": False, "synced": 0})
    return _run("sentry-sync", lambda s: sync_sentry_issues(s, client))
