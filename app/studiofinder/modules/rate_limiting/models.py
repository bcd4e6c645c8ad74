from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.studiofinder.models import Base


class RateLimitEvent(Base):
    """One row per (fingerprint, endpoint); the counter for its current window."""

    __tablename__ = "rate_limit_events"
    __table_args__ = (
        UniqueConstraint("fingerprint", "endpoint", name="uq_rate_limit_fingerprint_endpoint"),
        Index("idx_rate_limit_events_last_event_at", "last_event_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    fingerprint: Mapped[str] = mapped_column(String(255), nullable=False)
    endpoint: Mapped[str] = mapped_column(String(64), nullable=False)
    event_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    window_start: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    last_event_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
