import pytest
from werkzeug.security import generate_password_hash

from app.studiofinder import create_app
from app.studiofinder.db import session_scope
from app.studiofinder.models import TIER_PREMIUM, USER_STATUS_ACTIVE, Base, Permission, Role, User
from app.studiofinder.modules.studios.models import STUDIO_STATUS_ACTIVE, StudioProfile
from scripts.init_db import PERMISSIONS

ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "pw"
MEMBER_PASSWORD = "Passw0rd!"

CRON_SECRET = "cron-secret"
SENTRY_SECRET = "sentry-secret"
STRIPE_WEBHOOK_SECRET = "whsec_testsecret"


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("BASE_URL", "http://localhost:8080")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("LOCAL_STORAGE_ROOT", str(tmp_path / "uploads"))
    monkeypatch.setenv("CRON_SECRET", CRON_SECRET)
    monkeypatch.setenv("SENTRY_WEBHOOK_SECRET", SENTRY_SECRET)
    monkeypatch.setenv("STRIPE_WEBHOOK_SECRET", STRIPE_WEBHOOK_SECRET)
    for k in (
        "S3_ENDPOINT",
        "S3_REGION",
        "S3_BUCKET",
        "S3_ACCESS_KEY_ID",
        "S3_SECRET_ACCESS_KEY",
        "STRIPE_SECRET_KEY",
        "RESEND_API_KEY",
        "GOOGLE_MAPS_API_KEY",
        "ADMIN_EMAILS",
        "PROMO_FREE_SIGNUP",
        "PROMO_END_DATE",
        "SENTRY_AUTH_TOKEN",
        "SENTRY_ORG_SLUG",
        "SENTRY_PROJECT_SLUG",
    ):
        monkeypatch.delenv(k, raising=False)

    app = create_app()

    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    with session_scope(app) as s:
        perms = [Permission(key=key, name=name) for key, name in PERMISSIONS]
        r = Role(key="admin", name="Administrator")
        r.permissions.extend(perms)
        u = User(
            email=ADMIN_EMAIL,
            username="siteadmin",
            display_name="Site Admin",
            password_hash=generate_password_hash(ADMIN_PASSWORD),
            status=USER_STATUS_ACTIVE,
            is_active=True,
            email_verified=True,
        )
        u.roles.append(r)
        s.add_all([*perms, r, u])

    return app


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def login():
    def _login(client, email=ADMIN_EMAIL, password=ADMIN_PASSWORD):
        return client.post("/auth/login", data={"email": email, "password": password}, follow_redirects=False)

    return _login


@pytest.fixture()
def make_member(app):
    """Creates an ACTIVE member with a live studio; returns (user_id, studio_id).

    `status` is the member's account status, `studio_status` the listing's.
    """

    def _make(
        username,
        *,
        email=None,
        tier=TIER_PREMIUM,
        status=USER_STATUS_ACTIVE,
        studio=True,
        studio_status=STUDIO_STATUS_ACTIVE,
        **studio_fields,
    ):
        with session_scope(app) as s:
            u = User(
                email=email or f"{username.lower()}@example.com",
                username=username,
                display_name=username.replace("_", " ").title(),
                password_hash=generate_password_hash(MEMBER_PASSWORD),
                status=status,
                is_active=True,
                membership_tier=tier,
                email_verified=True,
            )
            s.add(u)
            s.flush()
            studio_id = None
            if studio:
                fields = {"name": f"{u.display_name} Studio", "status": studio_status, **studio_fields}
                st = StudioProfile(user_id=u.id, **fields)
                s.add(st)
                s.flush()
                studio_id = st.id
            return u.id, studio_id

    return _make


def csrf_token(client) -> str:
    client.get("/auth/login")
    with client.session_transaction() as sess:
        return sess["csrf_token"]


@pytest.fixture()
def csrf():
    return csrf_token


class FakeEmailClient:
    def __init__(self):
        self.sent = []

    def send_email(self, **kwargs):
        self.sent.append(kwargs)
        return f"msg_{len(self.sent)}"


@pytest.fixture()
def email_client(monkeypatch):
    """Captures outgoing email instead of calling Resend."""
    from app.studiofinder.modules.notifications import service as notification_service

    fake = FakeEmailClient()
    monkeypatch.setattr(notification_service, "email_client_from_config", lambda _config: fake)
    return fake
