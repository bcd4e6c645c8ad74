"""
Lowercase every stored email address.

users.email is unique: a row whose lowercased email already belongs to another
user is reported and left alone for manual merge.

Usage:
    python scripts/lowercase_stored_emails.py             # Report only
    python scripts/lowercase_stored_emails.py --confirm   # Apply
"""
from __future__ import annotations

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from sqlalchemy import func

from app.studiofinder import create_app
from app.studiofinder.db import db_session
from app.studiofinder.models import User
from app.studiofinder.modules.notifications.models import EmailDelivery

PREVIEW_ROWS = 20


def _has_upper(value: str | None) -> bool:
    return bool(value) and value != value.lower()


def _report(label: str, rows: list[tuple[int, str]]) -> None:
    print(f"\n{label}: {len(rows)} row(s)")
    for row_id, value in rows[:PREVIEW_ROWS]:
        print(f"  [{row_id}] {value!r} -> {value.lower()!r}")
    if len(rows) > PREVIEW_ROWS:
        print(f"  ... and {len(rows) - PREVIEW_ROWS} more")


def lowercase_emails(*, confirm: bool) -> dict[str, int]:
    app = create_app()
    counts = {"users": 0, "email_deliveries": 0, "collisions": 0}
    with app.app_context():
        s = db_session()

        users = [u for u in s.query(User).order_by(User.id.asc()).all() if _has_upper(u.email)]
        _report("users.email", [(u.id, u.email) for u in users])
        for user in users:
            target = user.email.lower()
            clash = (
                s.query(User.id)
                .filter(func.lower(User.email) == target, User.id != user.id)
                .first()
            )
            if clash:
                counts["collisions"] += 1
                print(f"  Collision: user {user.id} {user.email!r} conflicts with user {clash[0]}; skipped")
                continue
            if confirm:
                user.email = target
            counts["users"] += 1

        deliveries = [d for d in s.query(EmailDelivery).order_by(EmailDelivery.id.asc()).all() if _has_upper(d.to_email)]
        _report("email_deliveries.to_email", [(d.id, d.to_email) for d in deliveries])
        for delivery in deliveries:
            if confirm:
                delivery.to_email = delivery.to_email.lower()
            counts["email_deliveries"] += 1

        if confirm:
            s.commit()
        else:
            s.rollback()
    return counts


def main() -> None:
    parser = argparse.ArgumentParser(description="Normalise stored email addresses to lowercase")
    parser.add_argument("--confirm", action="store_true", help="Apply changes (default is report only)")
    args = parser.parse_args()

    counts = lowercase_emails(confirm=args.confirm)
    mode = "APPLIED" if args.confirm else "REPORT"
    print(f"\n[{mode}] {counts}")


if __name__ == "__main__":
    main()
