"""
Release-phase helper.

- Fail fast if DATABASE_URL is missing (avoid silently using SQLite in prod).
- Run alembic migrations.
- Seed permissions/roles/admin user (idempotent; does NOT overwrite existing passwords).

Usage:
  python scripts/release.py
"""

from __future__ import annotations

import os
import sys
from pathlib import Path


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def _require_env(name: str) -> str:
    v = (os.environ.get(name) or "").strip()
    if not v:
        raise RuntimeError(f"Missing required environment variable {name}.")
    return v


# Missing in production means payments, emails or cron silently stop working.
PRODUCTION_SETTINGS = (
    "STRIPE_SECRET_KEY",
    "STRIPE_WEBHOOK_SECRET",
    "STRIPE_MEMBERSHIP_PRICE_ID",
    "RESEND_API_KEY",
    "CRON_SECRET",
)


def check_production_settings(env: str, environ=os.environ) -> list[str]:
    """Names of unset production settings. SECRET_KEY left at its default is fatal."""
    if env not in ("prod", "production"):
        return []
    secret = (environ.get("SECRET_KEY") or "").strip()
    if not secret or secret == "change-me":
        raise RuntimeError("SECRET_KEY must be set to a random value in production.")
    return [name for name in PRODUCTION_SETTINGS if not (environ.get(name) or "").strip()]


def run_release() -> None:
    db_url = _require_env("DATABASE_URL")
    env = (os.environ.get("ENV") or "").strip().lower()
    if env in ("prod", "production") and db_url.startswith("sqlite"):
        raise RuntimeError("Refusing to run release on sqlite DATABASE_URL in production. Set DATABASE_URL to Postgres.")

    print("=== Studio Finder release start ===", flush=True)
    print(f"ENV={env or '(unset)'}", flush=True)
    for name in check_production_settings(env):
        print(f"WARNING: {name} is not set", flush=True)
    print("Running Alembic migrations...", flush=True)

    from alembic import command
    from alembic.config import Config

    cfg = Config(str(ROOT / "alembic.ini"))
    cfg.set_main_option("sqlalchemy.url", db_url)
    command.upgrade(cfg, "head")
    print("Migrations complete.", flush=True)

    print("Seeding permissions/admin (idempotent)...", flush=True)
    from scripts import init_db

    init_db.seed_only(database_url=db_url)
    print("Seed complete.", flush=True)
    print("=== Studio Finder release done ===", flush=True)


def main() -> None:
    run_release()


if __name__ == "__main__":
    main()
