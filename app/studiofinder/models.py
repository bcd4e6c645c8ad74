from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

if TYPE_CHECKING:
    from app.studiofinder.modules.studios.models import StudioProfile


class Base(DeclarativeBase):
    pass


class UserRole(Base):
    __tablename__ = "user_roles"
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    role_id: Mapped[int] = mapped_column(ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True)


class RolePermission(Base):
    __tablename__ = "role_permissions"
    role_id: Mapped[int] = mapped_column(ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True)
    permission_id: Mapped[int] = mapped_column(ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True)


# Signup lifecycle
USER_STATUS_PENDING = "PENDING"
USER_STATUS_ACTIVE = "ACTIVE"
USER_STATUS_EXPIRED = "EXPIRED"

TIER_BASIC = "BASIC"
TIER_PREMIUM = "PREMIUM"


class User(Base):
    __tablename__ = "users"
    __table_args__ = (
        Index("idx_users_status", "status"),
        Index("idx_users_reservation_expires_at", "reservation_expires_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    username: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    display_name: Mapped[str] = mapped_column(String(128), nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    avatar_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)

    status: Mapped[str] = mapped_column(String(32), nullable=False, default=USER_STATUS_PENDING)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    membership_tier: Mapped[str] = mapped_column(String(32), nullable=False, default=TIER_BASIC)

    email_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    verification_token: Mapped[str | None] = mapped_column(String(128), nullable=True, unique=True)
    verification_token_expiry: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    # Username reservation during signup
    reservation_expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    payment_attempted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    payment_retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    day2_reminder_sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    day5_reminder_sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    payment_failed_email_sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    last_login_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    roles: Mapped[list["Role"]] = relationship(
        secondary="user_roles",
        back_populates="users",
        lazy="selectin",
    )
    studio: Mapped["StudioProfile | None"] = relationship(
        "StudioProfile",
        back_populates="owner",
        uselist=False,
        lazy="selectin",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    metadata_entries: Mapped[list["UserMetadata"]] = relationship(
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
    )

    def get_metadata(self, key: str) -> str | None:
        for m in self.metadata_entries:
            if m.key == key:
                return m.value
        return None

    def set_metadata(self, key: str, value: str | None) -> None:
        for m in self.metadata_entries:
            if m.key == key:
                m.value = value
                m.updated_at = datetime.utcnow()
                return
        self.metadata_entries.append(UserMetadata(key=key, value=value))


class UserMetadata(Base):
    """Free-form per-user flags (verification bypass markers, legacy unlocks, ...)."""

    __tablename__ = "user_metadata"
    __table_args__ = (UniqueConstraint("user_id", "key", name="uq_user_metadata_user_key"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    key: Mapped[str] = mapped_column(String(128), nullable=False)
    value: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    user: Mapped[User] = relationship(back_populates="metadata_entries")


class Role(Base):
    __tablename__ = "roles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    key: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)  # e.g. "admin"
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    users: Mapped[list[User]] = relationship(secondary="user_roles", back_populates="roles", lazy="selectin")
    permissions: Mapped[list["Permission"]] = relationship(
        secondary="role_permissions",
        back_populates="roles",
        lazy="selectin",
    )


class Permission(Base):
    __tablename__ = "permissions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    key: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)  # e.g. "studios.edit"
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    roles: Mapped[list[Role]] = relationship(secondary="role_permissions", back_populates="permissions", lazy="selectin")


class SiteSetting(Base):
    """Admin-editable key/value switches (e.g. the free-signup promo)."""

    __tablename__ = "site_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    key: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    content: Mapped[str | None] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)


class AuditEvent(Base):
    """
    Append-only audit trail event.
    Generic on purpose; entity_type/entity_id point at whatever was touched.
    """

    __tablename__ = "audit_events"
    __table_args__ = (
        Index("idx_audit_events_created_at", "created_at"),
        Index("idx_audit_events_action", "action"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    request_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    client_ip: Mapped[str | None] = mapped_column(String(64), nullable=True)

    actor_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    actor_user_email: Mapped[str | None] = mapped_column(String(320), nullable=True)

    action: Mapped[str] = mapped_column(String(128), nullable=False)  # e.g. "payment.refund"
    entity_type: Mapped[str | None] = mapped_column(String(128), nullable=True)  # e.g. "StudioProfile"
    entity_id: Mapped[str | None] = mapped_column(String(128), nullable=True)

    reason: Mapped[str | None] = mapped_column(String(512), nullable=True)
    metadata_json: Mapped[str | None] = mapped_column(Text, nullable=True)  # small JSON string


# Ensure module models are imported so Base.metadata includes their tables.
# (Kept at bottom to avoid circular imports.)
from app.studiofinder.modules.studios.models import StudioImage, StudioProfile, StudioService, StudioType  # noqa: E402,F401
from app.studiofinder.modules.memberships.models import Payment, Refund, Subscription  # noqa: E402,F401
from app.studiofinder.modules.reviews.models import Review  # noqa: E402,F401
from app.studiofinder.modules.messages.models import Message  # noqa: E402,F401
from app.studiofinder.modules.notifications.models import (  # noqa: E402,F401
    EmailCampaign,
    EmailDelivery,
    EmailPreference,
    EmailTemplate,
)
from app.studiofinder.modules.support.models import SupportTicket  # noqa: E402,F401
from app.studiofinder.modules.error_log.models import ErrorLogGroup  # noqa: E402,F401
from app.studiofinder.modules.rate_limiting.models import RateLimitEvent  # noqa: E402,F401
