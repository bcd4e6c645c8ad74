"""
Unit tests for membership renewal date arithmetic.

Tests cover:
- Expiry calculation for early, standard and 5-year renewals
- Eligibility windows and request validation
- Day counting (floored) and price display
"""

from datetime import datetime, timedelta

import pytest

from app.studiofinder.modules.memberships.renewal import (
    calculate_5year_renewal_expiry,
    calculate_days_until_expiry,
    calculate_final_expiry,
    format_renewal_breakdown,
    get_renewal_price,
    is_eligible_for_early_renewal,
    is_eligible_for_standard_renewal,
    validate_renewal_request,
)

NOW = datetime(2025, 6, 1, 12, 0, 0)


class TestFinalExpiry:
    """Tests for calculate_final_expiry()"""

    def test_early_adds_year_plus_bonus(self):
        assert calculate_final_expiry(datetime(2026, 1, 1), "early", now=NOW) == datetime(2027, 1, 31)

    def test_standard_adds_one_year(self):
        assert calculate_final_expiry(datetime(2026, 1, 1), "standard", now=NOW) == datetime(2027, 1, 1)

    def test_five_year_extends_from_future_expiry(self):
        # 2028 is a leap year, so 1825 days lands a day short of the anniversary
        assert calculate_final_expiry(datetime(2026, 1, 1), "5year", now=NOW) == datetime(2030, 12, 31)

    def test_five_year_extends_from_now_when_lapsed(self):
        lapsed = NOW - timedelta(days=40)
        assert calculate_5year_renewal_expiry(lapsed, now=NOW) == NOW + timedelta(days=1825)

    def test_five_year_without_expiry_starts_now(self):
        assert calculate_final_expiry(None, "5year", now=NOW) == NOW + timedelta(days=1825)

    @pytest.mark.parametrize("renewal_type", ["early", "standard"])
    def test_requires_existing_expiry(self, renewal_type):
        with pytest.raises(ValueError):
            calculate_final_expiry(None, renewal_type, now=NOW)


class TestEligibility:
    """Early needs 180+ days left; standard covers 0-179"""

    def test_early_boundary(self):
        assert is_eligible_for_early_renewal(180) is True
        assert is_eligible_for_early_renewal(179) is False

    def test_standard_boundary(self):
        assert is_eligible_for_standard_renewal(0) is True
        assert is_eligible_for_standard_renewal(179) is True
        assert is_eligible_for_standard_renewal(180) is False
        assert is_eligible_for_standard_renewal(-1) is False

    def test_validate_request(self):
        assert validate_renewal_request("early", 200) is None
        assert "less than 6 months" in validate_renewal_request("early", 179)
        assert validate_renewal_request("standard", 30) is None
        assert validate_renewal_request("standard", 200) is not None
        assert validate_renewal_request("standard", -3) is not None
        assert validate_renewal_request("5year", -50) is None
        assert validate_renewal_request("monthly", 10) == "Invalid renewal type"


class TestDaysAndPrices:
    def test_days_until_expiry_floors(self):
        assert calculate_days_until_expiry(NOW - timedelta(hours=1), now=NOW) == -1
        assert calculate_days_until_expiry(NOW + timedelta(days=10, hours=1), now=NOW) == 10
        assert calculate_days_until_expiry(NOW + timedelta(hours=23), now=NOW) == 0

    def test_breakdown(self):
        assert format_renewal_breakdown(200, "early") == {"current": 200, "added": 365, "bonus": 30, "total": 395}
        assert format_renewal_breakdown(20, "standard")["total"] == 365
        assert format_renewal_breakdown(20, "5year")["added"] == 1825

    def test_prices(self):
        assert get_renewal_price("early")["formatted"] == "£25"
        assert get_renewal_price("standard")["amount"] == 25
        five = get_renewal_price("5year")
        assert five["amount"] == 80
        assert five["savings"] == "£45"
