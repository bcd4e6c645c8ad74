import logging
import os
from datetime import timedelta

from flask import Flask, g, jsonify, render_template, request, session
from dotenv import load_dotenv
from sqlalchemy import inspect as sa_inspect

from app.studiofinder.config import load_config
from app.studiofinder.db import init_db, teardown_db_session
from app.studiofinder.routes import bp as routes_bp
from app.studiofinder.auth import bp as auth_bp, load_current_user
from app.studiofinder.admin import bp as admin_bp
from app.studiofinder.cron import bp as cron_bp
from app.studiofinder.modules.accounts.api import bp as accounts_api_bp
from app.studiofinder.modules.studios.api import bp as studios_api_bp
from app.studiofinder.modules.studios.admin import bp as studios_admin_bp
from app.studiofinder.modules.memberships.api import bp as memberships_api_bp
from app.studiofinder.modules.memberships.webhooks import bp as stripe_webhooks_bp
from app.studiofinder.modules.memberships.admin import bp as payments_admin_bp
from app.studiofinder.modules.reviews.api import bp as reviews_api_bp
from app.studiofinder.modules.reviews.admin import bp as reviews_admin_bp
from app.studiofinder.modules.messages.api import bp as messages_api_bp
from app.studiofinder.modules.support.api import bp as support_api_bp
from app.studiofinder.modules.support.admin import bp as support_admin_bp
from app.studiofinder.modules.notifications.admin import bp as emails_admin_bp
from app.studiofinder.modules.error_log.webhooks import bp as error_log_webhooks_bp
from app.studiofinder.modules.error_log.admin import bp as errors_admin_bp

# Tables and columns the running code cannot work without.
REQUIRED_SCHEMA = {
    "users": ("status", "reservation_expires_at", "verification_token", "day2_reminder_sent_at"),
    "studio_profiles": ("featured_until", "show_exact_location", "custom_connection_methods"),
    "subscriptions": ("current_period_end",),
    "payments": ("refunded_amount",),
    "refunds": (),
    "rate_limit_events": ("window_start",),
    "email_campaigns": (),
    "error_log_groups": ("sentry_issue_id",),
}


def _is_api_request() -> bool:
    return request.path.startswith(("/api/", "/admin/api/"))


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__, template_folder="templates", static_folder="static")
    app.config.from_mapping(load_config())
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(days=7)
    app.config["SESSION_REFRESH_EACH_REQUEST"] = True

    # CSRF protection (minimal)
    from app.studiofinder.security import ensure_csrf_token, validate_csrf

    @app.context_processor
    def _inject_csrf() -> dict:
        return {"csrf_token": ensure_csrf_token()}

    @app.context_processor
    def _inject_permissions() -> dict:
        from app.studiofinder.rbac import user_has_permission

        def has_perm(key: str) -> bool:
            return user_has_permission(getattr(g, "current_user", None), key)

        return {"has_perm": has_perm}

    @app.template_filter("dateformat")
    def _dateformat_filter(value, format: str = "%Y-%m-%d") -> str:
        if value is None:
            return "-"
        if hasattr(value, "strftime"):
            return value.strftime(format)
        return str(value)

    @app.template_filter("pounds")
    def _pounds_filter(pence) -> str:
        from app.studiofinder.utils import pounds

        return pounds(pence)

    @app.before_request
    def _csrf_guard():
        if request.path.startswith(("/static/", "/health", "/healthz", "/media/")):
            return None
        ensure_csrf_token()
        session.permanent = True
        if request.method in ("POST", "PUT", "PATCH", "DELETE"):
            # Login/logout forms
            if (request.endpoint or "").startswith("auth."):
                return None
            # Public JSON API: session + JSON body, Stripe/Sentry signatures, cron bearer secret.
            if request.path.startswith("/api/"):
                return None
            if not validate_csrf(request):
                if _is_api_request():
                    return jsonify({"error": "CSRF token missing or invalid."}), 400
                return render_template("errors/400.html", message="CSRF token missing or invalid."), 400

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).strip() == "":
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")
        for key in ("STRIPE_SECRET_KEY", "STRIPE_WEBHOOK_SECRET", "RESEND_API_KEY", "CRON_SECRET"):
            if not app.config.get(key):
                app.logger.error("CONFIG WARNING: %s is not set; related features are disabled.", key)

    init_db(app)

    def _dispose_engine_on_fork() -> None:
        if hasattr(os, "register_at_fork"):
            def _after_fork_child():
                engine = app.extensions.get("sqlalchemy_engine")
                if engine:
                    engine.dispose()
                    app.logger.info("Disposed DB engine after fork (pid=%s)", os.getpid())

            os.register_at_fork(after_in_child=_after_fork_child)

    _dispose_engine_on_fork()

    # Storage health check (fail loudly on misconfiguration)
    if app.config.get("STORAGE_BACKEND") == "s3":
        missing_s3 = [
            key
            for key in ("S3_ENDPOINT", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY")
            if not app.config.get(key)
        ]
        if missing_s3:
            app.logger.error("STORAGE CONFIG ERROR: Missing required S3 env vars: %s", ", ".join(missing_s3))

    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(admin_bp, url_prefix="/admin")
    app.register_blueprint(studios_admin_bp, url_prefix="/admin")
    app.register_blueprint(payments_admin_bp, url_prefix="/admin")
    app.register_blueprint(reviews_admin_bp, url_prefix="/admin")
    app.register_blueprint(support_admin_bp, url_prefix="/admin")
    app.register_blueprint(emails_admin_bp, url_prefix="/admin")
    app.register_blueprint(errors_admin_bp, url_prefix="/admin")
    app.register_blueprint(accounts_api_bp)
    app.register_blueprint(studios_api_bp)
    app.register_blueprint(memberships_api_bp)
    app.register_blueprint(stripe_webhooks_bp)
    app.register_blueprint(reviews_api_bp)
    app.register_blueprint(messages_api_bp)
    app.register_blueprint(support_api_bp)
    app.register_blueprint(error_log_webhooks_bp)
    app.register_blueprint(cron_bp)
    # Last: owns the catch-all /<username> page.
    app.register_blueprint(routes_bp)

    def _load_user_wrapper():
        if request.path.startswith(("/static/", "/health", "/healthz", "/media/")):
            g.current_user = None
            return None
        return load_current_user()

    app.before_request(_load_user_wrapper)
    app.teardown_appcontext(teardown_db_session)

    # Migration health (lean): detect drift between code expectations and DB schema.
    app.config.setdefault("_schema_health_ok", True)
    app.config.setdefault("_schema_health_missing", [])
    app.config.setdefault("_schema_health_logged", False)

    def _run_schema_health_check() -> None:
        missing: list[str] = []
        try:
            engine = app.extensions.get("sqlalchemy_engine")
            if engine is None:
                raise RuntimeError("sqlalchemy_engine not initialized")
            insp = sa_inspect(engine)
            for table, columns in REQUIRED_SCHEMA.items():
                if not insp.has_table(table):
                    missing.append(f"{table} (table)")
                    continue
                have = {c["name"] for c in insp.get_columns(table)}
                missing.extend(f"{table}.{col}" for col in columns if col not in have)
        except Exception as e:
            app.logger.exception("Schema health check failed: %s", e)

        if missing:
            app.config["_schema_health_missing"] = missing
            if not app.config.get("_schema_health_logged"):
                app.config["_schema_health_logged"] = True
                app.logger.error("DB schema out of date; run `alembic upgrade head`. Missing: %s", ", ".join(missing))
        app.config["_schema_health_ok"] = not missing

    _run_schema_health_check()

    @app.before_request
    def _schema_health_guardrail():  # type: ignore[no-redef]
        if app.config.get("_schema_health_ok"):
            return None
        if request.path.startswith("/admin") and getattr(g, "current_user", None):
            # Migrations may have run since boot.
            _run_schema_health_check()
            if app.config.get("_schema_health_ok"):
                return None
            return render_template("errors/schema_out_of_date.html", missing=app.config.get("_schema_health_missing") or []), 500
        return None

    @app.errorhandler(500)
    def _err_500(e):  # type: ignore[no-redef]
        app.logger.exception("Unhandled 500 (request_id=%s)", getattr(g, "request_id", None))
        if _is_api_request():
            return jsonify({"error": "Internal server error"}), 500
        return render_template("errors/500.html"), 500

    @app.errorhandler(404)
    def _err_404(e):  # type: ignore[no-redef]
        if _is_api_request():
            return jsonify({"error": "Not found"}), 404
        return render_template("errors/404.html"), 404

    @app.errorhandler(405)
    def _err_405(e):  # type: ignore[no-redef]
        if _is_api_request():
            return jsonify({"error": "Method not allowed"}), 405
        return render_template("errors/404.html"), 405

    @app.errorhandler(403)
    def _err_403(e):  # type: ignore[no-redef]
        missing = getattr(g, "missing_permission", None)
        if missing:
            app.logger.warning("Forbidden: missing_permission=%s request_id=%s", missing, getattr(g, "request_id", None))
        if _is_api_request():
            return jsonify({"error": "Forbidden", "missing_permission": missing}), 403
        return render_template("errors/403.html", missing_permission=missing), 403

    @app.errorhandler(413)
    def _err_413(e):  # type: ignore[no-redef]
        return jsonify({"error": "File too large. Maximum size is 10MB."}), 413

    logging.getLogger(__name__).info("create_app() complete; app ready to serve")

    return app
