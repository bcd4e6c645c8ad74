"""
Unit tests for membership tier limits and studio type rules.
"""

from app.studiofinder.modules.memberships.tiers import (
    enforce_studio_type_rules,
    get_tier_limits,
    is_premium_tier,
    is_tier_feature_allowed,
)


class TestTierLimits:
    """Tests for get_tier_limits()"""

    def test_basic_limits(self):
        limits = get_tier_limits("BASIC")
        assert limits.images_max == 2
        assert limits.studio_types_max == 1
        assert "VOICEOVER" in limits.studio_types_excluded
        assert limits.phone_visibility is False

    def test_premium_limits(self):
        limits = get_tier_limits("PREMIUM")
        assert limits.images_max == 5
        assert limits.studio_types_max is None
        assert limits.featured_eligible is True

    def test_unknown_tier_falls_back_to_basic(self):
        assert get_tier_limits("GOLD") == get_tier_limits("BASIC")
        assert get_tier_limits(None) == get_tier_limits("BASIC")

    def test_feature_flags(self):
        assert is_premium_tier("PREMIUM") is True
        assert is_premium_tier("BASIC") is False
        assert is_tier_feature_allowed("PREMIUM", "verification_eligible") is True
        assert is_tier_feature_allowed("BASIC", "verification_eligible") is False
        assert is_tier_feature_allowed("PREMIUM", "no_such_feature") is False


class TestStudioTypeRules:
    """Tests for enforce_studio_type_rules()"""

    def test_premium_keeps_all_types(self):
        assert enforce_studio_type_rules(["HOME", "PODCAST", "RECORDING"], "PREMIUM") == ["HOME", "PODCAST", "RECORDING"]

    def test_duplicates_removed(self):
        assert enforce_studio_type_rules(["HOME", "HOME", "PODCAST"], "PREMIUM") == ["HOME", "PODCAST"]

    def test_voiceover_is_exclusive(self):
        assert enforce_studio_type_rules(["VOICEOVER", "HOME"], "PREMIUM") == ["VOICEOVER"]
        assert enforce_studio_type_rules(["HOME", "VOICEOVER"], "PREMIUM") == ["VOICEOVER"]

    def test_basic_truncates_to_one(self):
        assert enforce_studio_type_rules(["PODCAST", "HOME"], "BASIC") == ["PODCAST"]

    def test_basic_excludes_voiceover(self):
        assert enforce_studio_type_rules(["VOICEOVER"], "BASIC") == []
        assert enforce_studio_type_rules(["VOICEOVER", "HOME"], "BASIC") == ["HOME"]

    def test_block_voiceover_flag(self):
        assert enforce_studio_type_rules(["VOICEOVER", "HOME"], "PREMIUM", block_voiceover=True) == ["HOME"]
