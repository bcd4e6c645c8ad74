"""
Tests for the public studio directory search.

Tests cover:
- Distance maths and query-string parsing
- Result ordering tiers (pinned, verified with images, images, none)
- /api/studios/search filtering, pagination and location privacy
"""

import random
from types import SimpleNamespace

from app.studiofinder.modules.studios.models import StudioService, StudioType
from app.studiofinder.modules.studios.search import (
    DEFAULT_LIMIT,
    MAX_LIMIT,
    haversine_miles,
    parse_search_params,
    prioritize_studios,
)

LONDON = (51.5074, -0.1278)
MANCHESTER = (53.4808, -2.2426)


class TestHaversine:
    def test_same_point_is_zero(self):
        assert haversine_miles(*LONDON, *LONDON) == 0

    def test_london_to_manchester(self):
        assert 155 < haversine_miles(*LONDON, *MANCHESTER) < 170

    def test_symmetric(self):
        assert abs(haversine_miles(*LONDON, *MANCHESTER) - haversine_miles(*MANCHESTER, *LONDON)) < 1e-9


class TestParseSearchParams:
    def test_defaults(self):
        params = parse_search_params({})
        assert params.q == ""
        assert params.radius is None
        assert params.studio_types == []
        assert params.offset == 0
        assert params.limit == DEFAULT_LIMIT

    def test_cleans_values(self):
        params = parse_search_params(
            {
                "q": "  podcast ",
                "radius": "-5",
                "studio_types": "home,bogus,HOME,podcast",
                "services": "isdn, zoom",
                "limit": "500",
                "offset": "-3",
            }
        )
        assert params.q == "podcast"
        assert params.radius is None
        assert params.studio_types == ["HOME", "PODCAST"]
        assert params.services == ["ISDN", "ZOOM"]
        assert params.limit == MAX_LIMIT
        assert params.offset == 0

    def test_legacy_names(self):
        params = parse_search_params({"query": "booth", "studioTypes": "RECORDING", "radius": "25"})
        assert params.q == "booth"
        assert params.studio_types == ["RECORDING"]
        assert params.radius == 25.0


def _card(username, *, verified=False, images=0):
    return SimpleNamespace(
        owner=SimpleNamespace(username=username),
        is_verified=verified,
        images=[object()] * images,
    )


class TestPrioritize:
    def test_tiers(self):
        plain = _card("plain")
        pictured = _card("pictured", images=2)
        verified = _card("verified", verified=True, images=1)
        verified_bare = _card("verified_bare", verified=True)
        pinned = _card("VoiceoverGuy")

        ordered = prioritize_studios(
            [plain, verified_bare, pictured, pinned, verified],
            pinned_username="VoiceoverGuy",
            rng=random.Random(7),
        )
        assert ordered[0] is pinned
        assert ordered[1] is verified
        assert ordered[2] is pictured
        assert {c.owner.username for c in ordered[3:]} == {"plain", "verified_bare"}

    def test_no_pinned_user(self):
        a = _card("a", images=1)
        b = _card("b")
        assert prioritize_studios([b, a], pinned_username=None) == [a, b]


class TestSearchApi:
    def test_filters_by_type_keyword(self, client, make_member):
        make_member("pod_place", city="Leeds", studio_types=[StudioType(studio_type="PODCAST")])
        make_member("home_booth", city="York", studio_types=[StudioType(studio_type="HOME")])

        r = client.get("/api/studios/search?q=podcast")
        assert r.status_code == 200
        assert [st["username"] for st in r.json["studios"]] == ["pod_place"]
        assert r.json["studios"][0]["studio_types"] == ["PODCAST"]

    def test_filters_by_service_keyword(self, client, make_member):
        make_member("isdn_room", services=[StudioService(service="ISDN")])
        make_member("quiet_room")

        r = client.get("/api/studios/search?q=isdn")
        assert [st["username"] for st in r.json["studios"]] == ["isdn_room"]

    def test_free_text_and_location(self, client, make_member):
        make_member("leeds_vo", city="Leeds", short_about="Treated booth near the station")
        make_member("york_vo", city="York")

        r = client.get("/api/studios/search?q=station")
        assert [st["username"] for st in r.json["studios"]] == ["leeds_vo"]

        r = client.get("/api/studios/search?location=york")
        assert [st["username"] for st in r.json["studios"]] == ["york_vo"]

    def test_radius_without_geocoder_falls_back_to_text(self, client, make_member):
        make_member("leeds_vo", city="Leeds", latitude=53.8, longitude=-1.55)
        r = client.get("/api/studios/search?location=Leeds&radius=10")
        assert [st["username"] for st in r.json["studios"]] == ["leeds_vo"]
        assert "search_location" not in r.json

    def test_hidden_and_inactive_are_excluded(self, client, make_member):
        make_member("visible_vo")
        make_member("hidden_vo", is_profile_visible=False)
        make_member("paused_vo", studio_status="INACTIVE")

        r = client.get("/api/studios/search")
        assert [st["username"] for st in r.json["studios"]] == ["visible_vo"]
        assert r.json["pagination"]["total"] == 1

    def test_pagination(self, client, make_member):
        for name in ("one_vo", "two_vo", "three_vo"):
            make_member(name)
        r = client.get("/api/studios/search?limit=2")
        assert len(r.json["studios"]) == 2
        assert r.json["pagination"] == {"offset": 0, "limit": 2, "total": 3, "has_more": True}

        r = client.get("/api/studios/search?limit=2&offset=2")
        assert len(r.json["studios"]) == 1
        assert r.json["pagination"]["has_more"] is False

    def test_coordinates_rounded_unless_exact(self, client, make_member):
        make_member("rough_vo", latitude=53.801234, longitude=-1.549077)
        make_member("exact_vo", latitude=53.801234, longitude=-1.549077, show_exact_location=True)

        cards = {st["username"]: st for st in client.get("/api/studios/search").json["studios"]}
        assert cards["rough_vo"]["latitude"] == 53.8
        assert cards["rough_vo"]["longitude"] == -1.55
        assert cards["rough_vo"]["location_is_approximate"] is True
        assert cards["exact_vo"]["latitude"] == 53.801234
        assert cards["exact_vo"]["location_is_approximate"] is False
