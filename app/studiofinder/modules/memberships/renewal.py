"""
Membership renewal date arithmetic.

- early:    +365 days plus a 30-day bonus, only with 180+ days left
- standard: +365 days, with 0-179 days left
- 5year:    +1825 days from the later of the current expiry and now
"""
from __future__ import annotations

import math
from datetime import datetime, timedelta

RENEWAL_EARLY = "early"
RENEWAL_STANDARD = "standard"
RENEWAL_5YEAR = "5year"
RENEWAL_TYPES = (RENEWAL_EARLY, RENEWAL_STANDARD, RENEWAL_5YEAR)

EARLY_RENEWAL_MIN_DAYS = 180
YEAR_DAYS = 365
EARLY_BONUS_DAYS = 30
FIVE_YEAR_DAYS = 1825

# pence
RENEWAL_PRICES = {
    RENEWAL_EARLY: 2500,
    RENEWAL_STANDARD: 2500,
    RENEWAL_5YEAR: 8000,
}


def calculate_early_renewal_expiry(current_expiry: datetime) -> datetime:
    return current_expiry + timedelta(days=YEAR_DAYS + EARLY_BONUS_DAYS)


def calculate_standard_renewal_expiry(current_expiry: datetime) -> datetime:
    return current_expiry + timedelta(days=YEAR_DAYS)


def calculate_5year_renewal_expiry(current_expiry: datetime | None, *, now: datetime | None = None) -> datetime:
    now = now or datetime.utcnow()
    base = current_expiry if current_expiry and current_expiry > now else now
    return base + timedelta(days=FIVE_YEAR_DAYS)


def is_eligible_for_early_renewal(days_remaining: int) -> bool:
    return days_remaining >= EARLY_RENEWAL_MIN_DAYS


def is_eligible_for_standard_renewal(days_remaining: int) -> bool:
    return 0 <= days_remaining < EARLY_RENEWAL_MIN_DAYS


def calculate_days_until_expiry(expiry: datetime, *, now: datetime | None = None) -> int:
    """Whole days left, floored (so an expiry 1 hour ago is -1)."""
    now = now or datetime.utcnow()
    return math.floor((expiry - now).total_seconds() / 86400)


def format_renewal_breakdown(days_remaining: int, renewal_type: str) -> dict[str, int]:
    if renewal_type == RENEWAL_EARLY:
        return {"current": days_remaining, "added": YEAR_DAYS, "bonus": EARLY_BONUS_DAYS, "total": YEAR_DAYS + EARLY_BONUS_DAYS}
    if renewal_type == RENEWAL_STANDARD:
        return {"current": days_remaining, "added": YEAR_DAYS, "bonus": 0, "total": YEAR_DAYS}
    return {"current": days_remaining, "added": FIVE_YEAR_DAYS, "bonus": 0, "total": FIVE_YEAR_DAYS}


def calculate_final_expiry(current_expiry: datetime | None, renewal_type: str, *, now: datetime | None = None) -> datetime:
    if renewal_type == RENEWAL_EARLY:
        if not current_expiry:
            raise ValueError("Early renewal requires existing expiry date")
        return calculate_early_renewal_expiry(current_expiry)
    if renewal_type == RENEWAL_STANDARD:
        if not current_expiry:
            raise ValueError("Standard renewal requires existing expiry date")
        return calculate_standard_renewal_expiry(current_expiry)
    return calculate_5year_renewal_expiry(current_expiry, now=now)


def get_renewal_price(renewal_type: str) -> dict[str, object]:
    if renewal_type in (RENEWAL_EARLY, RENEWAL_STANDARD):
        return {"amount": 25, "currency": "GBP", "formatted": "£25"}
    return {"amount": 80, "currency": "GBP", "formatted": "£80", "savings": "£45"}


def validate_renewal_request(renewal_type: str, days_remaining: int) -> str | None:
    """Returns an error message, or None when the renewal is allowed."""
    if renewal_type not in RENEWAL_TYPES:
        return "Invalid renewal type"
    if renewal_type == RENEWAL_EARLY and days_remaining < EARLY_RENEWAL_MIN_DAYS:
        return "Early renewal bonus not available - less than 6 months remaining. Please use standard renewal."
    if renewal_type == RENEWAL_STANDARD and not is_eligible_for_standard_renewal(days_remaining):
        return "Standard renewal not available. Use early renewal (6+ months remaining) or 5-year option."
    return None
