"""
Unit tests for the admin studio editor field mapping.

Tests cover:
- Legacy editor names -> column names
- Boolean normalization ("1" / True / 1)
- Coordinate parsing and manual override detection
- Change tracking in apply_updates()
"""

from datetime import datetime
from types import SimpleNamespace

from app.studiofinder.modules.studios.field_mapping import (
    apply_updates,
    build_profile_update,
    build_studio_update,
    build_user_update,
    detect_manual_coordinate_override,
    normalize_boolean,
)


class TestNormalizeBoolean:
    def test_truthy_values(self):
        assert normalize_boolean("1") is True
        assert normalize_boolean(True) is True
        assert normalize_boolean(1) is True

    def test_falsy_values(self):
        assert normalize_boolean("0") is False
        assert normalize_boolean("true") is False
        assert normalize_boolean(False) is False
        assert normalize_boolean(0) is False

    def test_absent_is_none(self):
        assert normalize_boolean(None) is None


class TestBuildUpdates:
    """Tests for build_user_update / build_studio_update / build_profile_update"""

    def test_user_fields(self):
        body = {"display_name": "New Name", "avatar_image": "https://cdn/x.png", "_meta": {"membership_tier": "BASIC"}}
        assert build_user_update(body) == {
            "display_name": "New Name",
            "avatar_url": "https://cdn/x.png",
            "membership_tier": "BASIC",
        }

    def test_absent_keys_are_left_alone(self):
        assert build_user_update({}) == {}
        assert build_studio_update({"_meta": {}}) == {}
        assert build_profile_update({"_meta": {}}) == {}

    def test_studio_fields(self):
        body = {
            "status": "inactive",
            "_meta": {"studio_name": "Booth One", "url": "https://booth.example.com", "verified": "1"},
        }
        assert build_studio_update(body) == {
            "name": "Booth One",
            "website_url": "https://booth.example.com",
            "is_verified": True,
            "status": "INACTIVE",
        }

    def test_junk_and_zero_coordinates_clear(self):
        out = build_studio_update({"_meta": {"latitude": "0", "longitude": "not-a-number"}})
        assert out == {"latitude": None, "longitude": None}
        out = build_studio_update({"_meta": {"latitude": "51.5", "longitude": "-0.12"}})
        assert out == {"latitude": 51.5, "longitude": -0.12}

    def test_empty_values_are_written(self):
        assert build_studio_update({"_meta": {"city": ""}}) == {"city": ""}

    def test_legacy_short_about_wins(self):
        out = build_profile_update({"_meta": {"short_about": "new", "shortabout": "legacy"}})
        assert out["short_about"] == "legacy"

    def test_x_keeps_twitter_in_sync(self):
        out = build_profile_update({"_meta": {"x": "https://x.com/booth"}})
        assert out["x_url"] == out["twitter_url"] == "https://x.com/booth"

    def test_unfeaturing_clears_expiry(self):
        out = build_profile_update({"_meta": {"featured": "0"}})
        assert out == {"is_featured": False, "featured_until": None}

    def test_featured_expiry_parsed(self):
        out = build_profile_update({"_meta": {"featured": "1", "featured_expires_at": "2026-03-01T00:00:00Z"}})
        assert out["is_featured"] is True
        assert out["featured_until"] == datetime(2026, 3, 1)

    def test_custom_connections_capped(self):
        out = build_profile_update({"_meta": {"custom_connection_methods": ["A", " ", "B", "C"]}})
        assert out["custom_connection_methods"] == ["A", "B"]
        out = build_profile_update({"_meta": {"custom_connection_methods": "A"}})
        assert out["custom_connection_methods"] == []

    def test_privacy_flags(self):
        out = build_profile_update({"_meta": {"showemail": "1", "showphone": "0", "rates1": "£40"}})
        assert out == {"show_email": True, "show_phone": False, "rate_tier_1": "£40"}


class TestCoordinateOverride:
    def test_new_coordinates_on_empty_studio(self):
        assert detect_manual_coordinate_override(None, None, 51.5, None) is True

    def test_unchanged_coordinates(self):
        assert detect_manual_coordinate_override(51.5, -0.1, 51.5, -0.1) is False
        assert detect_manual_coordinate_override(51.5, -0.1, None, None) is False

    def test_changed_coordinates(self):
        assert detect_manual_coordinate_override(51.5, -0.1, 51.6, -0.1) is True


class TestApplyUpdates:
    def test_tracks_only_real_changes(self):
        obj = SimpleNamespace(name="Old", city="Leeds", updated_at=None)
        now = datetime(2026, 1, 1)
        changes = apply_updates(obj, {"name": "New", "city": "Leeds", "not_a_column": 1}, now=now)
        assert changes == {"name": {"old": "Old", "new": "New"}}
        assert obj.name == "New"
        assert obj.updated_at == now
        assert not hasattr(obj, "not_a_column")

    def test_no_changes_keeps_timestamp(self):
        obj = SimpleNamespace(name="Same", updated_at=None)
        assert apply_updates(obj, {"name": "Same"}) == {}
        assert obj.updated_at is None
