"""
Deactivate ACTIVE studios that have no address fields and no coordinates.

Usage:
    python scripts/deactivate_studios_without_location.py             # Preview only
    python scripts/deactivate_studios_without_location.py --confirm   # Apply
"""
from __future__ import annotations

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.studiofinder import create_app
from app.studiofinder.audit import record_event
from app.studiofinder.db import db_session
from app.studiofinder.modules.studios.models import STUDIO_STATUS_ACTIVE, STUDIO_STATUS_INACTIVE, StudioProfile


def has_location(studio: StudioProfile) -> bool:
    if any((v or "").strip() for v in (studio.full_address, studio.address, studio.city, studio.location)):
        return True
    return studio.latitude is not None and studio.longitude is not None


def deactivate(*, confirm: bool) -> int:
    app = create_app()
    with app.app_context():
        s = db_session()
        active = s.query(StudioProfile).filter(StudioProfile.status == STUDIO_STATUS_ACTIVE).order_by(StudioProfile.id.asc()).all()
        targets = [st for st in active if not has_location(st)]
        print(f"Checked {len(active)} active studios; {len(targets)} have no location data")

        changed = 0
        for studio in targets:
            owner = studio.owner
            print(f"  {studio.id} {studio.name} (@{owner.username if owner else '?'}, created {studio.created_at:%Y-%m-%d})")
            if not confirm:
                continue
            try:
                studio.status = STUDIO_STATUS_INACTIVE
                record_event(
                    s,
                    actor=None,
                    action="studio.deactivate_no_location",
                    entity_type="StudioProfile",
                    entity_id=str(studio.id),
                    reason="No address or coordinates",
                )
                s.flush()
                changed += 1
            except Exception as e:
                print(f"  Error deactivating studio {studio.id}: {e}")
                continue

        if confirm:
            s.commit()
        else:
            s.rollback()
        return changed


def main() -> None:
    parser = argparse.ArgumentParser(description="Deactivate studios missing address and coordinates")
    parser.add_argument("--confirm", action="store_true", help="Apply changes (default is a dry run)")
    args = parser.parse_args()

    changed = deactivate(confirm=args.confirm)
    if args.confirm:
        print(f"\nDeactivated {changed} studios")
    else:
        print("\nDry run; re-run with --confirm to apply")


if __name__ == "__main__":
    main()
