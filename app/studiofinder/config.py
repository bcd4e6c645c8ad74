import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str
    base_url: str

    storage_backend: str
    s3_endpoint: str
    s3_region: str
    s3_bucket: str
    s3_access_key_id: str
    s3_secret_access_key: str
    s3_cdn_base_url: str

    stripe_secret_key: str
    stripe_webhook_secret: str
    stripe_membership_price_id: str
    stripe_premium_subscription_price_id: str
    stripe_featured_price_id: str

    resend_api_key: str
    email_from: str
    support_email: str

    google_maps_api_key: str
    cron_secret: str
    sentry_webhook_secret: str
    sentry_auth_token: str
    sentry_org_slug: str
    sentry_project_slug: str

    promo_free_signup: str
    promo_end_date: str
    admin_emails: str
    pinned_studio_username: str


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def load_settings() -> Settings:
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development"),
        database_url=_getenv("DATABASE_URL", "sqlite:///studiofinder.db"),
        base_url=_getenv("BASE_URL", "http://localhost:8080"),
        storage_backend=_getenv("STORAGE_BACKEND", "local"),
        s3_endpoint=_getenv("S3_ENDPOINT", ""),
        s3_region=_getenv("S3_REGION", "lon1"),
        s3_bucket=_getenv("S3_BUCKET", ""),
        s3_access_key_id=_getenv("S3_ACCESS_KEY_ID", ""),
        s3_secret_access_key=_getenv("S3_SECRET_ACCESS_KEY", ""),
        s3_cdn_base_url=_getenv("S3_CDN_BASE_URL", ""),
        stripe_secret_key=_getenv("STRIPE_SECRET_KEY", ""),
        stripe_webhook_secret=_getenv("STRIPE_WEBHOOK_SECRET", ""),
        stripe_membership_price_id=_getenv("STRIPE_MEMBERSHIP_PRICE_ID", ""),
        stripe_premium_subscription_price_id=_getenv("STRIPE_PREMIUM_SUBSCRIPTION_PRICE_ID", ""),
        stripe_featured_price_id=_getenv("STRIPE_FEATURED_PRICE_ID", ""),
        resend_api_key=_getenv("RESEND_API_KEY", ""),
        email_from=_getenv("EMAIL_FROM", "Voiceover Studio Finder <noreply@voiceoverstudiofinder.com>"),
        support_email=_getenv("SUPPORT_EMAIL", "support@voiceoverstudiofinder.com"),
        google_maps_api_key=_getenv("GOOGLE_MAPS_API_KEY", ""),
        cron_secret=_getenv("CRON_SECRET", ""),
        sentry_webhook_secret=_getenv("SENTRY_WEBHOOK_SECRET", ""),
        sentry_auth_token=_getenv("SENTRY_AUTH_TOKEN", ""),
        sentry_org_slug=_getenv("SENTRY_ORG_SLUG", ""),
        sentry_project_slug=_getenv("SENTRY_PROJECT_SLUG", ""),
        promo_free_signup=_getenv("PROMO_FREE_SIGNUP", ""),
        promo_end_date=_getenv("PROMO_END_DATE", ""),
        admin_emails=_getenv("ADMIN_EMAILS", ""),
        pinned_studio_username=_getenv("PINNED_STUDIO_USERNAME", "VoiceoverGuy"),
    )


def load_config() -> dict:
    s = load_settings()
    is_production = s.env in ("prod", "production")
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "BASE_URL": s.base_url.rstrip("/"),
        "STORAGE_BACKEND": s.storage_backend,
        "LOCAL_STORAGE_ROOT": _getenv("LOCAL_STORAGE_ROOT", ""),
        "S3_ENDPOINT": s.s3_endpoint,
        "S3_REGION": s.s3_region,
        "S3_BUCKET": s.s3_bucket,
        "S3_ACCESS_KEY_ID": s.s3_access_key_id,
        "S3_SECRET_ACCESS_KEY": s.s3_secret_access_key,
        "S3_CDN_BASE_URL": s.s3_cdn_base_url,
        "STRIPE_SECRET_KEY": s.stripe_secret_key,
        "STRIPE_WEBHOOK_SECRET": s.stripe_webhook_secret,
        "STRIPE_MEMBERSHIP_PRICE_ID": s.stripe_membership_price_id,
        "STRIPE_PREMIUM_SUBSCRIPTION_PRICE_ID": s.stripe_premium_subscription_price_id,
        "STRIPE_FEATURED_PRICE_ID": s.stripe_featured_price_id,
        "RESEND_API_KEY": s.resend_api_key,
        "EMAIL_FROM": s.email_from,
        "SUPPORT_EMAIL": s.support_email,
        "GOOGLE_MAPS_API_KEY": s.google_maps_api_key,
        "CRON_SECRET": s.cron_secret,
        "SENTRY_WEBHOOK_SECRET": s.sentry_webhook_secret,
        "SENTRY_AUTH_TOKEN": s.sentry_auth_token,
        "SENTRY_ORG_SLUG": s.sentry_org_slug,
        "SENTRY_PROJECT_SLUG": s.sentry_project_slug,
        "PROMO_FREE_SIGNUP": s.promo_free_signup.lower() in ("1", "true", "yes"),
        "PROMO_END_DATE": s.promo_end_date,
        "ADMIN_EMAILS": [e.strip().lower() for e in s.admin_emails.split(",") if e.strip()],
        "PINNED_STUDIO_USERNAME": s.pinned_studio_username,
        # security defaults
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Lax",
        "SESSION_COOKIE_SECURE": is_production,  # Require HTTPS in production
        # image uploads (10MB)
        "MAX_CONTENT_LENGTH": 10 * 1024 * 1024,
    }
