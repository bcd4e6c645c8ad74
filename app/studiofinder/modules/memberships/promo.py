from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from app.studiofinder.utils import format_date_en_gb, parse_iso_datetime

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

PROMO_SETTING_KEY = "promo_free_signup_active"
PROMO_MESSAGE = "FREE membership for a limited time"
NORMAL_PRICE = "£25/year"
PROMO_PRICE = "FREE"
CTA_TEXT = "Join free today"
BADGE_TEXT = "Limited time"


@dataclass(frozen=True)
class PromoConfig:
    is_active: bool
    end_date: datetime | None
    message: str = PROMO_MESSAGE
    normal_price: str = NORMAL_PRICE
    promo_price: str = PROMO_PRICE
    cta_text: str = CTA_TEXT
    badge_text: str = BADGE_TEXT

    @property
    def end_date_display(self) -> str | None:
        return format_date_en_gb(self.end_date) if self.end_date else None


def _end_date(config: dict) -> datetime | None:
    raw = config.get("PROMO_END_DATE") or ""
    end = parse_iso_datetime(raw)
    if raw and end is None:
        logger.warning("Invalid PROMO_END_DATE format: %r", raw)
    return end


def get_promo_config(config: dict, *, now: datetime | None = None) -> PromoConfig:
    """Env-only view: PROMO_FREE_SIGNUP and, when set, before PROMO_END_DATE."""
    now = now or datetime.utcnow()
    end = _end_date(config)
    within = end is None or now < end
    return PromoConfig(is_active=bool(config.get("PROMO_FREE_SIGNUP")) and within, end_date=end)


def get_promo_config_from_db(s: "Session", config: dict, *, now: datetime | None = None) -> PromoConfig:
    """The admin site setting, when present, overrides the env flag. The end date still applies."""
    from app.studiofinder.models import SiteSetting

    now = now or datetime.utcnow()
    end = _end_date(config)
    setting = s.query(SiteSetting).filter(SiteSetting.key == PROMO_SETTING_KEY).one_or_none()
    if setting is None:
        return get_promo_config(config, now=now)
    active = (setting.content or "").strip().lower() == "true"
    if active and end is not None and now >= end:
        active = False
    return PromoConfig(is_active=active, end_date=end)


def get_price_display(promo: PromoConfig) -> dict[str, object]:
    if promo.is_active:
        return {"price": promo.promo_price, "was_price": promo.normal_price, "is_free": True}
    return {"price": promo.normal_price, "was_price": None, "is_free": False}


def get_signup_cta_text(promo: PromoConfig) -> str:
    return promo.cta_text if promo.is_active else f"List Your Studio - {promo.normal_price}"


def get_membership_button_text(promo: PromoConfig) -> str:
    return "Create free account" if promo.is_active else "Continue to payment"
