"""
Unit tests for profile completion scoring and page titles.

Tests cover:
- Required / optional item weighting and rounding
- Temporary usernames not counting as chosen
- Completion colour bands
- <title> shortening rules
"""

import pytest

from app.studiofinder.modules.studios.completion import calculate_completion_stats, get_completion_color
from app.studiofinder.modules.studios.seo import MAX_TITLE_LENGTH, build_profile_meta_title

FULL_USER = {
    "username": "soundbox",
    "display_name": "Sound Box",
    "email": "owner@example.com",
    "avatar_url": None,
}

FULL_STUDIO = {
    "name": "Sound Box",
    "short_about": "Quiet booth in Leeds",
    "about": "A treated vocal booth with ISDN and Source Connect.",
    "studio_types": ["HOME"],
    "location": "United Kingdom",
    "connection1": "1",
    "website_url": "https://soundbox.example.com",
    "images": ["one.jpg"],
}


class TestCompletionStats:
    """Tests for calculate_completion_stats()"""

    def test_all_required_items(self):
        stats = calculate_completion_stats(FULL_USER, FULL_STUDIO)
        assert stats.required_completed == 11
        assert stats.required_total == 11
        assert stats.percentage == 65  # 11 * 5.92 = 65.12

    def test_all_items_caps_at_100(self):
        user = {**FULL_USER, "avatar_url": "https://cdn.example.com/a.png"}
        studio = {
            **FULL_STUDIO,
            "phone": "01234 567890",
            "facebook_url": "https://facebook.com/soundbox",
            "instagram_url": "https://instagram.com/soundbox",
            "rate_tier_1": "£50",
            "equipment_list": "Neumann U87",
            "services_offered": "Editing",
        }
        assert calculate_completion_stats(user, studio).percentage == 100

    def test_temp_username_does_not_count(self):
        user = {**FULL_USER, "username": "temp_1a2b3c4d"}
        stats = calculate_completion_stats(user, FULL_STUDIO)
        assert stats.required_completed == 10
        assert stats.percentage == 59  # 10 * 5.92 = 59.2

    def test_no_studio(self):
        user = {"username": "temp_abc", "display_name": "New", "email": "new@example.com"}
        stats = calculate_completion_stats(user, None)
        assert stats.required_completed == 2
        assert stats.percentage == 12  # 11.84 rounds up

    def test_single_social_link_is_not_enough(self):
        studio = {**FULL_STUDIO, "facebook_url": "https://facebook.com/soundbox"}
        assert calculate_completion_stats(FULL_USER, studio).percentage == 65

    def test_zero_rate_is_not_a_rate(self):
        studio = {**FULL_STUDIO, "rate_tier_1": "0"}
        assert calculate_completion_stats(FULL_USER, studio).percentage == 65
        studio = {**FULL_STUDIO, "rate_tier_1": "£1,200"}
        assert calculate_completion_stats(FULL_USER, studio).percentage == 71  # 65.12 + 5.88

    @pytest.mark.parametrize(
        "percentage,colour",
        [(0, "red"), (49, "red"), (50, "yellow"), (79, "yellow"), (80, "green"), (100, "green")],
    )
    def test_colour_bands(self, percentage, colour):
        assert get_completion_color(percentage) == colour


class TestMetaTitle:
    """Tests for build_profile_meta_title()"""

    def test_basic_title(self):
        assert build_profile_meta_title("Soundbox", "HOME", "Leeds") == "Soundbox – Home Studio in Leeds"

    def test_default_type_label(self):
        assert build_profile_meta_title("Booth", None, None) == "Booth – Recording Studio"

    def test_company_suffix_removed(self):
        assert build_profile_meta_title("Acme Audio Ltd", "RECORDING", "London") == "Acme Audio – Recording Studio in London"

    def test_city_dropped_when_in_name(self):
        assert build_profile_meta_title("London Voice Studio", "PODCAST", "London") == "London Voice Studio – Podcast Studio"

    def test_long_name_is_shortened(self):
        title = build_profile_meta_title(
            "The Extremely Long Named Professional Voiceover Recording Company (Est. 1999)",
            "VOICEOVER",
            "Manchester",
        )
        assert title == "The Extremely Long Named – VO Artist in Manchester"
        assert len(title) <= MAX_TITLE_LENGTH

    def test_never_exceeds_limit(self):
        title = build_profile_meta_title("X" * 200, "RECORDING", "Birmingham")
        assert len(title) <= MAX_TITLE_LENGTH
