from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import JSON, Boolean, DateTime, Float, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.studiofinder.models import Base

if TYPE_CHECKING:
    from app.studiofinder.models import User
    from app.studiofinder.modules.reviews.models import Review


STUDIO_STATUS_ACTIVE = "ACTIVE"
STUDIO_STATUS_INACTIVE = "INACTIVE"
STUDIO_STATUS_PENDING = "PENDING"
STUDIO_STATUSES = (STUDIO_STATUS_ACTIVE, STUDIO_STATUS_INACTIVE, STUDIO_STATUS_PENDING)


class StudioProfile(Base):
    """A studio listing plus its public profile content. One per user."""

    __tablename__ = "studio_profiles"
    __table_args__ = (
        Index("idx_studio_profiles_status", "status"),
        Index("idx_studio_profiles_city", "city"),
        Index("idx_studio_profiles_featured", "is_featured"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    short_about: Mapped[str | None] = mapped_column(Text, nullable=True)
    about: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(128), nullable=True)

    # Location
    address: Mapped[str | None] = mapped_column(Text, nullable=True)  # legacy free text
    full_address: Mapped[str | None] = mapped_column(Text, nullable=True)
    city: Mapped[str | None] = mapped_column(String(128), nullable=True)
    location: Mapped[str | None] = mapped_column(String(128), nullable=True)  # country
    latitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    longitude: Mapped[float | None] = mapped_column(Float, nullable=True)

    # Contact
    phone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    website_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)

    # Socials (twitter_url kept in sync with x_url)
    facebook_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    x_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    twitter_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    linkedin_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    instagram_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    youtube_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    tiktok_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    threads_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    soundcloud_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    vimeo_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    bluesky_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)

    # Rates
    rate_tier_1: Mapped[str | None] = mapped_column(String(64), nullable=True)
    rate_tier_2: Mapped[str | None] = mapped_column(String(64), nullable=True)
    rate_tier_3: Mapped[str | None] = mapped_column(String(64), nullable=True)
    show_rates: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Privacy
    show_email: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    show_phone: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    show_address: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    show_directions: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    show_exact_location: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    use_coordinates_for_map: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Remote-session methods, stored "1"/"0"
    connection1: Mapped[str | None] = mapped_column(String(1), nullable=True)
    connection2: Mapped[str | None] = mapped_column(String(1), nullable=True)
    connection3: Mapped[str | None] = mapped_column(String(1), nullable=True)
    connection4: Mapped[str | None] = mapped_column(String(1), nullable=True)
    connection5: Mapped[str | None] = mapped_column(String(1), nullable=True)
    connection6: Mapped[str | None] = mapped_column(String(1), nullable=True)
    connection7: Mapped[str | None] = mapped_column(String(1), nullable=True)
    connection8: Mapped[str | None] = mapped_column(String(1), nullable=True)
    connection9: Mapped[str | None] = mapped_column(String(1), nullable=True)
    connection10: Mapped[str | None] = mapped_column(String(1), nullable=True)
    connection11: Mapped[str | None] = mapped_column(String(1), nullable=True)
    connection12: Mapped[str | None] = mapped_column(String(1), nullable=True)
    custom_connection_methods: Mapped[list | None] = mapped_column(JSON, nullable=True, default=list)

    equipment_list: Mapped[str | None] = mapped_column(Text, nullable=True)
    services_offered: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Listing state
    status: Mapped[str] = mapped_column(String(32), nullable=False, default=STUDIO_STATUS_PENDING)
    is_profile_visible: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_featured: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    featured_until: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    owner: Mapped["User"] = relationship("User", back_populates="studio", lazy="selectin")
    studio_types: Mapped[list["StudioType"]] = relationship(
        back_populates="studio",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
    )
    services: Mapped[list["StudioService"]] = relationship(
        back_populates="studio",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
    )
    images: Mapped[list["StudioImage"]] = relationship(
        back_populates="studio",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
        order_by="StudioImage.sort_order",
    )
    reviews: Mapped[list["Review"]] = relationship(
        "Review",
        back_populates="studio",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="select",
    )

    @property
    def type_keys(self) -> list[str]:
        return [t.studio_type for t in self.studio_types]

    @property
    def service_keys(self) -> list[str]:
        return [sv.service for sv in self.services]


class StudioType(Base):
    __tablename__ = "studio_studio_types"
    __table_args__ = (UniqueConstraint("studio_id", "studio_type", name="uq_studio_type"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    studio_id: Mapped[int] = mapped_column(ForeignKey("studio_profiles.id", ondelete="CASCADE"), nullable=False)
    studio_type: Mapped[str] = mapped_column(String(32), nullable=False)

    studio: Mapped[StudioProfile] = relationship(back_populates="studio_types")


class StudioService(Base):
    __tablename__ = "studio_services"
    __table_args__ = (UniqueConstraint("studio_id", "service", name="uq_studio_service"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    studio_id: Mapped[int] = mapped_column(ForeignKey("studio_profiles.id", ondelete="CASCADE"), nullable=False)
    service: Mapped[str] = mapped_column(String(32), nullable=False)

    studio: Mapped[StudioProfile] = relationship(back_populates="services")


class StudioImage(Base):
    __tablename__ = "studio_images"
    __table_args__ = (Index("idx_studio_images_studio_id", "studio_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    studio_id: Mapped[int] = mapped_column(ForeignKey("studio_profiles.id", ondelete="CASCADE"), nullable=False)
    storage_key: Mapped[str] = mapped_column(String(512), nullable=False)
    image_url: Mapped[str] = mapped_column(String(1024), nullable=False)
    alt_text: Mapped[str | None] = mapped_column(String(255), nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    content_type: Mapped[str | None] = mapped_column(String(128), nullable=True)
    sha256: Mapped[str | None] = mapped_column(String(64), nullable=True)
    size_bytes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    studio: Mapped[StudioProfile] = relationship(back_populates="images")
