"""
Geocode studios that have an address but no coordinates.

Usage:
    python scripts/geocode_missing_studios.py             # Preview only
    python scripts/geocode_missing_studios.py --confirm   # Write coordinates

Environment:
    DATABASE_URL, GOOGLE_MAPS_API_KEY
"""
from __future__ import annotations

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.studiofinder import create_app
from app.studiofinder.db import db_session
from app.studiofinder.modules.studios.geocoding import geocode_address
from app.studiofinder.modules.studios.models import StudioProfile


def geocode_missing(*, confirm: bool, limit: int | None) -> dict[str, int]:
    app = create_app()
    counts = {"candidates": 0, "updated": 0, "not_found": 0, "errors": 0}
    with app.app_context():
        if not app.config.get("GOOGLE_MAPS_API_KEY"):
            print("ERROR: GOOGLE_MAPS_API_KEY is not set")
            sys.exit(1)
        s = db_session()
        q = (
            s.query(StudioProfile)
            .filter((StudioProfile.latitude.is_(None)) | (StudioProfile.longitude.is_(None)))
            .order_by(StudioProfile.id.asc())
        )
        if limit:
            q = q.limit(limit)
        studios = [st for st in q.all() if (st.full_address or st.address or "").strip()]
        counts["candidates"] = len(studios)
        print(f"Found {len(studios)} studios with an address but no coordinates")

        for studio in studios:
            address = (studio.full_address or studio.address or "").strip()
            try:
                result = geocode_address(app.config, address)
            except Exception as e:
                counts["errors"] += 1
                print(f"  Error: studio {studio.id} ({studio.name}): {e}")
                continue
            if result is None:
                counts["not_found"] += 1
                print(f"  Skip: studio {studio.id} ({studio.name}) - no result for {address!r}")
                continue
            print(f"  {studio.id} {studio.name}: {address!r} -> ({result.lat}, {result.lng})")
            if confirm:
                studio.latitude = result.lat
                studio.longitude = result.lng
                if not studio.city and result.city:
                    studio.city = result.city
                if not studio.location and result.country:
                    studio.location = result.country
            counts["updated"] += 1

        if confirm:
            s.commit()
        else:
            s.rollback()
    return counts


def main() -> None:
    parser = argparse.ArgumentParser(description="Geocode studios missing coordinates")
    parser.add_argument("--confirm", action="store_true", help="Write coordinates (default is a dry run)")
    parser.add_argument("--limit", type=int, default=None, help="Process at most N studios")
    args = parser.parse_args()

    counts = geocode_missing(confirm=args.confirm, limit=args.limit)
    mode = "APPLIED" if args.confirm else "DRY RUN"
    print(f"\n[{mode}] {counts}")


if __name__ == "__main__":
    main()
