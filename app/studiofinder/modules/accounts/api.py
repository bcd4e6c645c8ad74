from __future__ import annotations

import io
from datetime import datetime
from urllib.parse import quote

from flask import Blueprint, current_app, g, jsonify, render_template, request, send_file

from app.studiofinder.db import db_session
from app.studiofinder.modules.accounts.export import build_export_archive, build_user_export, export_json, record_export
from app.studiofinder.modules.accounts.service import (
    SignupError,
    check_signup_status,
    normalize_email,
    register_user,
    resend_verification,
    reserve_username,
    retry_payment,
    username_available,
    username_suggestions,
    validate_registration_payload,
    validate_username,
    verify_email,
)
from app.studiofinder.modules.rate_limiting.service import (
    CHECK_USERNAME,
    RESEND_VERIFICATION,
    RESERVE_USERNAME,
    SIGNUP,
    rate_limited_response,
)
from app.studiofinder.rbac import require_api_login
from app.studiofinder.utils import json_error, json_payload

bp = Blueprint("accounts_api", __name__)


def _signup_error(e: SignupError):
    return json_error(e.message, e.status, **e.extra)


@bp.post("/api/auth/register")
def register():
    payload = json_payload()
    if payload.get("website"):
        current_app.logger.warning("Signup honeypot filled; rejecting")
        return json_error("Invalid submission", 400)

    s = db_session()
    limited = rate_limited_response(s, SIGNUP, normalize_email(payload.get("email")) or None)
    if limited is not None:
        return limited

    errors = validate_registration_payload(payload)
    if errors:
        return json_error("Invalid input data", 400, details=errors)
    try:
        outcome = register_user(s, payload)
    except SignupError as e:
        s.rollback()
        return _signup_error(e)
    s.commit()

    if not outcome.created:
        return jsonify({**(outcome.resume or {}), "message": "You have an incomplete signup. Would you like to continue?"})
    user = outcome.user
    return (
        jsonify(
            {
                "message": "Account created. Please verify your email to continue.",
                "user": {
                    "id": user.id,
                    "email": user.email,
                    "username": user.username,
                    "display_name": user.display_name,
                    "status": user.status,
                    "reservation_expires_at": user.reservation_expires_at.isoformat(),
                    "email_verified": False,
                },
            }
        ),
        201,
    )


@bp.post("/api/auth/check-signup-status")
def signup_status():
    payload = json_payload()
    email = normalize_email(payload.get("email"))
    if not email:
        return json_error("Email is required", 400)
    s = db_session()
    try:
        body = check_signup_status(s, email)
    except SignupError as e:
        s.rollback()
        return _signup_error(e)
    s.commit()
    return jsonify(body)


@bp.get("/api/auth/verify-email")
def verify_email_link():
    s = db_session()
    try:
        user = verify_email(s, request.args.get("token") or "")
    except SignupError as e:
        s.rollback()
        return render_template("accounts/verify_result.html", ok=False, message=e.message), e.status
    s.commit()
    return render_template("accounts/verify_result.html", ok=True, user=user, message="Your email address is verified.")


@bp.post("/api/auth/resend-verification")
def resend_verification_email():
    payload = json_payload()
    email = normalize_email(payload.get("email"))
    if not email:
        return json_error("Email is required", 400)
    s = db_session()
    limited = rate_limited_response(s, RESEND_VERIFICATION, email)
    if limited is not None:
        return limited
    try:
        resend_verification(s, email)
    except SignupError as e:
        s.rollback()
        return _signup_error(e)
    s.commit()
    return jsonify({"message": "Verification email sent. Please check your inbox."})


@bp.post("/api/auth/check-username")
def check_username():
    payload = json_payload()
    s = db_session()
    limited = rate_limited_response(s, CHECK_USERNAME)
    if limited is not None:
        return limited

    now = datetime.utcnow()
    username = (payload.get("username") or "").strip()
    if not username:
        display_name = (payload.get("display_name") or "").strip()
        if not display_name:
            return json_error("Username or display name is required", 400)
        return jsonify({"suggestions": username_suggestions(s, display_name, now=now)})

    try:
        validate_username(username)
    except SignupError as e:
        return jsonify({"available": False, "username": username, "error": e.message, "message": e.message}), e.status
    if not username_available(s, username, now=now):
        return jsonify({"available": False, "username": username, "message": "Username is already taken"})
    return jsonify({"available": True, "username": username, "message": "Username is available"})


@bp.post("/api/auth/reserve-username")
def reserve():
    payload = json_payload()
    s = db_session()
    limited = rate_limited_response(s, RESERVE_USERNAME)
    if limited is not None:
        return limited
    try:
        user = reserve_username(
            s,
            payload.get("user_id") or payload.get("userId"),
            (payload.get("username") or "").strip(),
        )
    except SignupError as e:
        s.commit()
        return _signup_error(e)
    s.commit()
    return jsonify(
        {
            "message": "Username reserved successfully",
            "user": {
                "id": user.id,
                "email": user.email,
                "username": user.username,
                "display_name": user.display_name,
                "reservation_expires_at": user.reservation_expires_at.isoformat() if user.reservation_expires_at else None,
            },
        }
    )


@bp.post("/api/auth/retry-payment")
def retry():
    payload = json_payload()
    s = db_session()
    try:
        user = retry_payment(s, payload.get("user_id") or payload.get("userId"))
    except SignupError as e:
        # Expiry marks are kept even when the retry is refused.
        s.commit()
        return _signup_error(e)
    s.commit()
    checkout_url = (
        f"/auth/membership?userId={user['id']}&email={quote(user['email'])}"
        f"&name={quote(user['display_name'])}&username={quote(user['username'])}"
    )
    return jsonify({"message": "Ready to retry payment", "user": user, "checkoutUrl": checkout_url})


@bp.get("/api/user/data-export")
@require_api_login
def data_export():
    s = db_session()
    user = g.current_user
    export = build_user_export(s, user)
    record_export(s, user, "json")
    s.commit()
    filename = f"voiceoverstudiofinder-data-export-{datetime.utcnow().date().isoformat()}.json"
    fobj = io.BytesIO(export_json(export).encode("utf-8"))
    return send_file(fobj, mimetype="application/json", as_attachment=True, download_name=filename, max_age=0)


@bp.get("/api/user/download-data")
@require_api_login
def download_data():
    s = db_session()
    user = g.current_user
    archive = build_export_archive(build_user_export(s, user))
    record_export(s, user, "zip")
    s.commit()
    filename = f"voiceoverstudiofinder-{user.username}-data-{datetime.utcnow().date().isoformat()}.zip"
    return send_file(io.BytesIO(archive), mimetype="application/zip", as_attachment=True, download_name=filename, max_age=0)
