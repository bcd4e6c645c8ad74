from __future__ import annotations

from dataclasses import dataclass

from app.studiofinder.models import TIER_BASIC, TIER_PREMIUM

PREMIUM_PRICE_PENCE = 2500


@dataclass(frozen=True)
class TierLimits:
    about_max_chars: int
    images_max: int
    studio_types_max: int | None  # None = unlimited
    studio_types_excluded: tuple[str, ...]
    connections_max: int
    custom_connections_max: int
    social_links_max: int | None
    phone_visibility: bool
    directions_visibility: bool
    advanced_settings: bool
    verification_eligible: bool
    featured_eligible: bool
    avatar_allowed: bool


TIER_LIMITS: dict[str, TierLimits] = {
    TIER_BASIC: TierLimits(
        about_max_chars=1000,
        images_max=2,
        studio_types_max=1,
        studio_types_excluded=("VOICEOVER",),
        connections_max=3,
        custom_connections_max=0,
        social_links_max=2,
        phone_visibility=False,
        directions_visibility=False,
        advanced_settings=False,
        verification_eligible=False,
        featured_eligible=False,
        avatar_allowed=True,
    ),
    TIER_PREMIUM: TierLimits(
        about_max_chars=2000,
        images_max=5,
        studio_types_max=None,
        studio_types_excluded=(),
        connections_max=12,
        custom_connections_max=2,
        social_links_max=None,
        phone_visibility=True,
        directions_visibility=True,
        advanced_settings=True,
        verification_eligible=True,
        featured_eligible=True,
        avatar_allowed=True,
    ),
}


def get_tier_limits(tier: str | None) -> TierLimits:
    """Unknown / missing tiers fall back to BASIC."""
    return TIER_LIMITS.get(tier or "", TIER_LIMITS[TIER_BASIC])


def is_premium_tier(tier: str | None) -> bool:
    return tier == TIER_PREMIUM


def is_tier_feature_allowed(tier: str | None, feature: str) -> bool:
    return bool(getattr(get_tier_limits(tier), feature, False))


def enforce_studio_type_rules(submitted: list[str], tier: str | None, *, block_voiceover: bool = False) -> list[str]:
    """
    Trim a submitted studio-type list to what the tier allows.
    VOICEOVER is exclusive: it cannot be combined with other types.
    """
    limits = get_tier_limits(tier)
    allowed = [t for t in dict.fromkeys(submitted) if t not in limits.studio_types_excluded]
    if block_voiceover:
        allowed = [t for t in allowed if t != "VOICEOVER"]
    if "VOICEOVER" in allowed and len(allowed) > 1:
        allowed = ["VOICEOVER"]
    if limits.studio_types_max is not None:
        allowed = allowed[: limits.studio_types_max]
    return allowed
