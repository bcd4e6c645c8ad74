from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.studiofinder.models import Base


ERROR_UNRESOLVED = "UNRESOLVED"
ERROR_RESOLVED = "RESOLVED"
ERROR_IGNORED = "IGNORED"
ERROR_STATUSES = (ERROR_UNRESOLVED, ERROR_RESOLVED, ERROR_IGNORED)


class ErrorLogGroup(Base):
    """One row per Sentry issue, refreshed on every webhook delivery."""

    __tablename__ = "error_log_groups"
    __table_args__ = (Index("idx_error_log_groups_status", "status", "last_seen_at"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    sentry_issue_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    title: Mapped[str] = mapped_column(String(512), nullable=False)
    level: Mapped[str] = mapped_column(String(32), nullable=False, default="error")
    culprit: Mapped[str | None] = mapped_column(String(512), nullable=True)
    permalink: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    environment: Mapped[str | None] = mapped_column(String(64), nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default=ERROR_UNRESOLVED)
    event_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    first_seen_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    last_seen_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    sample_event: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
