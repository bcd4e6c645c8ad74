"""
Delete a user and all of their data (studio, images, reviews, messages,
tickets, payments, subscriptions) in one transaction.

Usage:
    python scripts/delete_user_data.py --email someone@example.com             # Preview
    python scripts/delete_user_data.py --email someone@example.com --confirm   # Delete
    python scripts/delete_user_data.py --username somestudio --confirm
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
from app.studiofinder.modules.accounts.service import delete_user_data
from app.studiofinder.modules.memberships.models import Payment, Subscription
from app.studiofinder.modules.messages.models import Message
from app.studiofinder.modules.reviews.models import Review


def _find_user(s, *, email: str | None, username: str | None) -> User | None:
    if email:
        return s.query(User).filter(User.email == email.strip().lower()).one_or_none()
    return s.query(User).filter(func.lower(User.username) == (username or "").strip().lower()).one_or_none()


def main() -> None:
    parser = argparse.ArgumentParser(description="Delete a user and all related data")
    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument("--email", help="User email")
    group.add_argument("--username", help="Username")
    parser.add_argument("--reason", default="Deleted via delete_user_data script")
    parser.add_argument("--confirm", action="store_true", help="Delete (default is a preview)")
    args = parser.parse_args()

    app = create_app()
    with app.app_context():
        s = db_session()
        user = _find_user(s, email=args.email, username=args.username)
        if user is None:
            print("ERROR: user not found")
            sys.exit(1)

        print(f"User {user.id}: {user.email} (@{user.username}, {user.status})")
        print(f"  Studio: {user.studio.name if user.studio else '-'}")
        print(f"  Payments: {s.query(Payment).filter(Payment.user_id == user.id).count()}")
        print(f"  Subscriptions: {s.query(Subscription).filter(Subscription.user_id == user.id).count()}")
        print(f"  Reviews: {s.query(Review).filter((Review.reviewer_id == user.id) | (Review.owner_id == user.id)).count()}")
        print(f"  Messages: {s.query(Message).filter((Message.sender_id == user.id) | (Message.recipient_id == user.id)).count()}")

        if not args.confirm:
            print("\nDry run; re-run with --confirm to delete")
            return

        try:
            counts = delete_user_data(s, user, actor=None, reason=args.reason)
            s.commit()
        except Exception as e:
            s.rollback()
            print(f"ERROR: deletion rolled back: {e}")
            sys.exit(1)
        print(f"\nDeleted. {counts}")


if __name__ == "__main__":
    main()
