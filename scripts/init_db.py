import os
import sys
from pathlib import Path

from werkzeug.security import generate_password_hash

# Ensure repo root is on sys.path when running as a script (Windows-friendly).
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from scripts._db_utils import script_session

PERMISSIONS: tuple[tuple[str, str], ...] = (
    ("admin.view", "Admin: view dashboard"),
    ("audit.view", "Audit log: view"),
    ("settings.edit", "Site settings: edit"),
    # Accounts
    ("users.view", "Users: view"),
    ("users.edit", "Users: edit"),
    ("users.delete", "Users: delete"),
    # Studios
    ("studios.view", "Studios: view"),
    ("studios.edit", "Studios: edit"),
    ("studios.delete", "Studios: delete"),
    # Payments
    ("payments.view", "Payments: view"),
    ("payments.refund", "Payments: refund"),
    # Community
    ("reviews.moderate", "Reviews: moderate"),
    ("support.view", "Support tickets: view"),
    ("support.edit", "Support tickets: update"),
    # Email
    ("emails.manage", "Emails: templates and campaigns"),
    # Error log
    ("errors.view", "Error log: view"),
    ("errors.edit", "Error log: change status"),
)


def seed_only(*, database_url: str | None = None) -> None:
    """
    Seed permissions/roles/admin user in an idempotent way.
    Does NOT overwrite an existing admin user's password.
    """
    from app.studiofinder.models import USER_STATUS_ACTIVE, Permission, Role, User

    admin_email = (os.environ.get("ADMIN_EMAIL") or "admin@voiceoverstudiofinder.com").strip().lower()
    admin_password = os.environ.get("ADMIN_PASSWORD") or "change-me"
    admin_username = (os.environ.get("ADMIN_USERNAME") or "admin").strip()

    db_url = (database_url or os.environ.get("DATABASE_URL") or "sqlite:///studiofinder.db").strip()

    # Direct engine/session so release can seed without importing app.wsgi.
    with script_session(db_url) as s:
        perms: list[Permission] = []
        for key, name in PERMISSIONS:
            p = s.query(Permission).filter(Permission.key == key).one_or_none()
            if not p:
                p = Permission(key=key, name=name)
                s.add(p)
            perms.append(p)

        role_admin = s.query(Role).filter(Role.key == "admin").one_or_none()
        if not role_admin:
            role_admin = Role(key="admin", name="Administrator")
            s.add(role_admin)
        for p in perms:
            if p not in role_admin.permissions:
                role_admin.permissions.append(p)

        user = s.query(User).filter(User.email == admin_email).one_or_none()
        if not user:
            user = User(
                email=admin_email,
                username=admin_username,
                display_name="Administrator",
                password_hash=generate_password_hash(admin_password),
                status=USER_STATUS_ACTIVE,
                email_verified=True,
                is_active=True,
            )
            s.add(user)
        if role_admin not in user.roles:
            user.roles.append(role_admin)

    print("Initialized database (seed_only).")
    print(f"Admin email: {admin_email}")
    print("Admin password: (from ADMIN_PASSWORD)")


def main() -> None:
    seed_only(database_url=None)


if __name__ == "__main__":
    main()
