from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from app.studiofinder.constants import SOCIAL_FIELDS, TEMP_USERNAME_PREFIX

if TYPE_CHECKING:
    from app.studiofinder.models import User
    from app.studiofinder.modules.studios.models import StudioProfile

REQUIRED_WEIGHT = 5.92
OPTIONAL_WEIGHT = 5.88
REQUIRED_TOTAL = 11


@dataclass(frozen=True)
class CompletionStats:
    required_completed: int
    required_total: int
    percentage: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "required": {"completed": self.required_completed, "total": self.required_total},
            "overall": {"percentage": self.percentage},
        }


def _filled(value: Any) -> bool:
    return bool(value and str(value).strip())


def _positive_rate(value: Any) -> bool:
    if value is None or value == "":
        return False
    try:
        return float(str(value).replace("£", "").replace(",", "").strip()) > 0
    except ValueError:
        return False


def calculate_completion_stats(user: dict[str, Any], studio: dict[str, Any] | None) -> CompletionStats:
    """
    `user` needs username, display_name, email, avatar_url.
    `studio` carries the profile columns plus studio_types (list) and images (list).
    """
    st = studio or {}
    socials = sum(1 for f in SOCIAL_FIELDS if _filled(st.get(f)))
    has_connection = any(st.get(f"connection{i}") == "1" for i in range(1, 13))
    username = user.get("username") or ""

    required = [
        bool(username) and not username.startswith(TEMP_USERNAME_PREFIX),
        _filled(user.get("display_name")),
        _filled(user.get("email")),
        _filled(st.get("name")),
        _filled(st.get("short_about")),
        _filled(st.get("about")),
        len(st.get("studio_types") or []) >= 1,
        _filled(st.get("location")),
        has_connection,
        _filled(st.get("website_url")),
        len(st.get("images") or []) >= 1,
    ]
    optional = [
        _filled(user.get("avatar_url")),
        _filled(st.get("phone")),
        socials >= 2,
        _positive_rate(st.get("rate_tier_1")),
        _filled(st.get("equipment_list")),
        _filled(st.get("services_offered")),
    ]

    total = sum(REQUIRED_WEIGHT for ok in required if ok) + sum(OPTIONAL_WEIGHT for ok in optional if ok)
    # JS Math.round semantics: halves round up
    percentage = int(total + 0.5)
    return CompletionStats(
        required_completed=sum(1 for ok in required if ok),
        required_total=REQUIRED_TOTAL,
        percentage=min(percentage, 100),
    )


def completion_for(user: "User", studio: "StudioProfile | None") -> CompletionStats:
    user_data = {
        "username": user.username,
        "display_name": user.display_name,
        "email": user.email,
        "avatar_url": user.avatar_url,
    }
    studio_data = None
    if studio is not None:
        studio_data = {c: getattr(studio, c) for c in (
            "name", "short_about", "about", "location", "website_url", "phone",
            "rate_tier_1", "equipment_list", "services_offered", *SOCIAL_FIELDS,
        )}
        for i in range(1, 13):
            studio_data[f"connection{i}"] = getattr(studio, f"connection{i}")
        studio_data["studio_types"] = studio.type_keys
        studio_data["images"] = list(studio.images)
    return calculate_completion_stats(user_data, studio_data)


def get_completion_color(percentage: int) -> str:
    if percentage < 50:
        return "red"
    if percentage < 80:
        return "yellow"
    return "green"
