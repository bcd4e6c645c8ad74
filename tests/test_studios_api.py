"""
Tests for studio profiles: the public view, owner edits and the admin editor.

Tests cover:
- Privacy flags and tier rules on the public profile
- Owner updates trimmed to the membership tier
- Profile completion endpoint
- Admin JSON editor validation and username clashes
"""

import pytest

from app.studiofinder.db import session_scope
from app.studiofinder.models import AuditEvent, User
from app.studiofinder.modules.studios.models import StudioProfile
from app.studiofinder.modules.studios.service import validate_profile_payload

MEMBER_PASSWORD = "Passw0rd!"

PRIVATE_FIELDS = dict(
    phone="+44 1234 567890",
    show_phone=True,
    full_address="1 High Street, London",
    show_address=False,
    latitude=51.501234,
    longitude=-0.141234,
    city="London",
)


def _login_member(client, login, username):
    r = login(client, email=f"{username.lower()}@example.com", password=MEMBER_PASSWORD)
    assert r.status_code == 302


class TestPublicProfile:
    def test_privacy_flags(self, client, make_member):
        make_member("public_vo", **PRIVATE_FIELDS)
        r = client.get("/api/studios/PUBLIC_VO")
        assert r.status_code == 200
        studio = r.json["studio"]
        assert studio["username"] == "public_vo"
        assert studio["phone"] == "+44 1234 567890"
        assert studio["email"] is None
        assert studio["full_address"] is None
        assert studio["latitude"] == 51.5
        assert studio["longitude"] == -0.14
        assert studio["location_is_approximate"] is True
        assert studio["rating"] == {"average": None, "count": 0}
        assert "rates" not in studio

    def test_exact_location_and_rates(self, client, make_member):
        make_member("exact_vo", show_exact_location=True, show_rates=True, rate_tier_1="£50", rate_tier_3="£200", **PRIVATE_FIELDS)
        studio = client.get("/api/studios/exact_vo").json["studio"]
        assert studio["latitude"] == 51.501234
        assert studio["rates"] == ["£50", "£200"]

    def test_basic_tier_hides_phone_and_directions(self, client, make_member):
        make_member("basic_vo", tier="BASIC", show_directions=True, **PRIVATE_FIELDS)
        studio = client.get("/api/studios/basic_vo").json["studio"]
        assert studio["phone"] is None
        assert studio["show_directions"] is False

    @pytest.mark.parametrize(
        "fields", [{"studio_status": "INACTIVE"}, {"studio_status": "PENDING"}, {"is_profile_visible": False}]
    )
    def test_not_listed(self, client, make_member, fields):
        make_member("hidden_vo", **fields)
        assert client.get("/api/studios/hidden_vo").status_code == 404

    def test_unknown(self, client):
        assert client.get("/api/studios/nobody").status_code == 404


class TestProfileValidation:
    def test_valid(self):
        assert validate_profile_payload({"name": "Booth One", "phone": "+44 1234 567890", "website_url": "https://a.co"}, "PREMIUM") == []

    def test_errors(self):
        errors = validate_profile_payload(
            {"name": "A", "phone": "123", "website_url": "not a url", "studio_types": ["SPACESHIP"], "services": "ISDN"},
            "PREMIUM",
        )
        assert len(errors) == 5

    def test_tier_limits(self):
        about = "x" * 1500
        assert validate_profile_payload({"about": about}, "PREMIUM") == []
        assert validate_profile_payload({"about": about}, "BASIC") == ["About section must be less than 1000 characters"]
        socials = {"facebook_url": "https://f.co/a", "linkedin_url": "https://l.co/a", "x_url": "https://x.co/a"}
        assert validate_profile_payload(socials, "BASIC") == ["Your membership allows up to 2 social links"]
        connections = {f"connection{i}": "1" for i in range(1, 5)}
        assert validate_profile_payload(connections, "BASIC") == ["Your membership allows up to 3 connection methods"]
        assert validate_profile_payload(connections, "PREMIUM") == []


class TestOwnerProfile:
    def test_requires_login(self, client):
        assert client.get("/api/user/profile").status_code == 401
        assert client.put("/api/user/profile", json={"name": "x"}).status_code == 401

    def test_no_studio(self, client, login, make_member):
        make_member("nostudio_vo", studio=False)
        _login_member(client, login, "nostudio_vo")
        assert client.get("/api/user/profile").status_code == 404

    def test_owner_sees_private_fields(self, client, login, make_member):
        make_member("owner_vo", **PRIVATE_FIELDS)
        _login_member(client, login, "owner_vo")
        studio = client.get("/api/user/profile").json["studio"]
        assert studio["email"] == "owner_vo@example.com"
        assert studio["full_address"] == "1 High Street, London"
        assert studio["latitude"] == 51.501234

    def test_update(self, app, client, login, make_member):
        _, studio_id = make_member("owner_vo")
        _login_member(client, login, "owner_vo")
        r = client.put(
            "/api/user/profile",
            json={
                "name": "<b>Quiet</b> Booth",
                "short_about": "Treated booth in Leeds",
                "studio_types": ["VOICEOVER", "HOME"],
                "services": ["ISDN", "ZOOM"],
                "custom_connection_methods": ["Discord", "Riverside", "Tape"],
                "x_url": "https://x.com/owner",
            },
        )
        assert r.status_code == 200
        assert "name" in r.json["updated_fields"]
        assert isinstance(r.json["completion"], int)

        with session_scope(app) as s:
            studio = s.get(StudioProfile, studio_id)
            assert studio.name == "Quiet Booth"
            assert studio.type_keys == ["VOICEOVER"]
            assert sorted(studio.service_keys) == ["ISDN", "ZOOM"]
            assert studio.custom_connection_methods == ["Discord", "Riverside"]
            assert studio.twitter_url == "https://x.com/owner"
            assert s.query(AuditEvent).filter_by(action="studio.profile_update").count() == 1

    def test_basic_tier_is_trimmed(self, app, client, login, make_member):
        _, studio_id = make_member("basic_vo", tier="BASIC")
        _login_member(client, login, "basic_vo")
        r = client.put(
            "/api/user/profile",
            json={"studio_types": ["RECORDING", "HOME"], "show_phone": True, "custom_connection_methods": ["Discord"]},
        )
        assert r.status_code == 200
        with session_scope(app) as s:
            studio = s.get(StudioProfile, studio_id)
            assert studio.type_keys == ["RECORDING"]
            assert studio.show_phone is False
            assert studio.custom_connection_methods == []

    def test_validation_error(self, client, login, make_member):
        make_member("owner_vo")
        _login_member(client, login, "owner_vo")
        r = client.put("/api/user/profile", json={"name": "A"})
        assert r.status_code == 400
        assert r.json["details"] == ["Studio name must be at least 2 characters"]

    def test_completion(self, client, login, make_member):
        make_member("owner_vo")
        _login_member(client, login, "owner_vo")
        r = client.get("/api/user/completion")
        assert r.status_code == 200
        assert set(r.json) == {"required", "overall", "color"}
        assert r.json["color"] in ("red", "yellow", "green")


class TestAdminEditor:
    def _put(self, client, csrf, studio_id, body):
        token = csrf(client)
        return client.put(f"/admin/api/studios/{studio_id}", json=body, headers={"X-CSRF-Token": token})

    def test_update(self, app, client, login, csrf, make_member):
        user_id, studio_id = make_member("edited_vo")
        login(client)
        assert client.get(f"/admin/api/studios/{studio_id}").json["studio"]["user"]["username"] == "edited_vo"

        r = self._put(
            client,
            csrf,
            studio_id,
            {"display_name": "Edited", "status": "inactive", "_meta": {"studio_name": "Renamed", "city": "Leeds", "verified": "1"}},
        )
        assert r.status_code == 200
        assert {"user.display_name", "name", "city", "status", "is_verified"} <= set(r.json["updated_fields"])
        assert r.json["studio"]["status"] == "INACTIVE"

        with session_scope(app) as s:
            studio = s.get(StudioProfile, studio_id)
            assert studio.name == "Renamed"
            assert studio.is_verified is True
            assert s.get(User, user_id).display_name == "Edited"
            assert s.query(AuditEvent).filter_by(action="studio.admin_update").count() == 1

    def test_invalid_status(self, client, login, csrf, make_member):
        _, studio_id = make_member("edited_vo")
        login(client)
        r = self._put(client, csrf, studio_id, {"status": "archived"})
        assert r.status_code == 400
        assert r.json["error"] == "Invalid status: ARCHIVED"

    def test_username_taken(self, client, login, csrf, make_member):
        make_member("Taken_Name", studio=False)
        _, studio_id = make_member("edited_vo")
        login(client)
        r = self._put(client, csrf, studio_id, {"username": "taken_name"})
        assert r.status_code == 409

    def test_unknown_studio(self, client, login, csrf):
        login(client)
        assert self._put(client, csrf, 999, {"status": "ACTIVE"}).status_code == 404

    def test_admin_pages(self, client, login, make_member):
        _, studio_id = make_member("edited_vo")
        login(client)
        assert client.get("/admin/studios").status_code == 200
        assert client.get("/admin/studios?q=edited&status=ACTIVE").status_code == 200
        assert client.get(f"/admin/studios/{studio_id}").status_code == 200
