from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.studiofinder.models import Base

if TYPE_CHECKING:
    from app.studiofinder.models import User


TICKET_OPEN = "OPEN"
TICKET_IN_PROGRESS = "IN_PROGRESS"
TICKET_RESOLVED = "RESOLVED"
TICKET_CLOSED = "CLOSED"
TICKET_STATUSES = (TICKET_OPEN, TICKET_IN_PROGRESS, TICKET_RESOLVED, TICKET_CLOSED)

TICKET_CATEGORIES = ("ACCOUNT", "BILLING", "PROFILE", "BUG", "FEATURE_REQUEST", "OTHER")


class SupportTicket(Base):
    __tablename__ = "support_tickets"
    __table_args__ = (Index("idx_support_tickets_status", "status", "created_at"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    category: Mapped[str] = mapped_column(String(32), nullable=False, default="OTHER")
    subject: Mapped[str] = mapped_column(String(200), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default=TICKET_OPEN)
    admin_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    user: Mapped["User"] = relationship("User", lazy="selectin")
