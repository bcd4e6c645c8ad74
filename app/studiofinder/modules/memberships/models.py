from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.studiofinder.models import Base

if TYPE_CHECKING:
    from app.studiofinder.models import User


SUBSCRIPTION_ACTIVE = "ACTIVE"
SUBSCRIPTION_CANCELLED = "CANCELLED"
SUBSCRIPTION_PAST_DUE = "PAST_DUE"
SUBSCRIPTION_EXPIRED = "EXPIRED"

PAYMENT_PENDING = "PENDING"
PAYMENT_SUCCEEDED = "SUCCEEDED"
PAYMENT_FAILED = "FAILED"
PAYMENT_REFUNDED = "REFUNDED"
PAYMENT_PARTIALLY_REFUNDED = "PARTIALLY_REFUNDED"

PURPOSE_MEMBERSHIP = "membership"
PURPOSE_RENEWAL = "membership_renewal"
PURPOSE_FEATURED = "featured"


class Subscription(Base):
    __tablename__ = "subscriptions"
    __table_args__ = (
        Index("idx_subscriptions_user_id", "user_id"),
        Index("idx_subscriptions_period_end", "current_period_end"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    status: Mapped[str] = mapped_column(String(32), nullable=False, default=SUBSCRIPTION_ACTIVE)
    payment_method: Mapped[str] = mapped_column(String(32), nullable=False, default="stripe")  # stripe, promo, admin
    stripe_subscription_id: Mapped[str | None] = mapped_column(String(255), nullable=True, unique=True)
    stripe_customer_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    auto_renew: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    current_period_start: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    # NULL period end = legacy member, never expires
    current_period_end: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    cancel_at_period_end: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    # Smallest renewal-reminder window (days) already emailed for this period.
    last_reminder_window: Mapped[int | None] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    user: Mapped["User"] = relationship("User", lazy="selectin")


class Payment(Base):
    __tablename__ = "payments"
    __table_args__ = (
        Index("idx_payments_user_id", "user_id"),
        Index("idx_payments_status", "status"),
        Index("idx_payments_created_at", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    stripe_checkout_session_id: Mapped[str | None] = mapped_column(String(255), nullable=True, unique=True)
    stripe_payment_intent_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    stripe_charge_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    amount: Mapped[int] = mapped_column(Integer, nullable=False)  # pence
    currency: Mapped[str] = mapped_column(String(8), nullable=False, default="gbp")
    status: Mapped[str] = mapped_column(String(32), nullable=False, default=PAYMENT_PENDING)
    refunded_amount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    purpose: Mapped[str] = mapped_column(String(32), nullable=False, default=PURPOSE_MEMBERSHIP)
    metadata_json: Mapped[dict | None] = mapped_column(JSON, nullable=True, default=dict)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    user: Mapped["User"] = relationship("User", lazy="selectin")
    refunds: Mapped[list["Refund"]] = relationship(
        back_populates="payment",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
        order_by="Refund.created_at",
    )

    @property
    def refundable_amount(self) -> int:
        return max(0, self.amount - (self.refunded_amount or 0))


class Refund(Base):
    __tablename__ = "refunds"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    payment_id: Mapped[int] = mapped_column(ForeignKey("payments.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    stripe_refund_id: Mapped[str | None] = mapped_column(String(255), nullable=True, unique=True)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(8), nullable=False, default="gbp")
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="SUCCEEDED")
    processed_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    payment: Mapped[Payment] = relationship(back_populates="refunds")
