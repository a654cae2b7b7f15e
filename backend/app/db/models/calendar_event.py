"""Calendar event ORM model backing the local calendar provider."""
from __future__ import annotations

from uuid import uuid4

from sqlalchemy import Column, Date, DateTime, ForeignKey, Index, String, Text, func
from sqlalchemy.dialects.postgresql import UUID

from app.db.base import Base
from app.db.types import UTCDateTime


class CalendarEvent(Base):
    __tablename__ = "calendar_events"
    __table_args__ = (
        Index("ix_calendar_events_user_date", "user_id", "calendar_date"),
        Index("ix_calendar_events_dedup_key", "dedup_key", unique=True),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    calendar_date = Column(Date, nullable=False)
    # "commitment" for fixed entries, "activity" for generated ones.
    kind = Column(String(length=20), nullable=False)
    category = Column(String(length=50), nullable=True)
    title = Column(Text, nullable=False)
    description = Column(Text, nullable=True)
    start_at = Column(UTCDateTime, nullable=False)
    end_at = Column(UTCDateTime, nullable=False)
    dedup_key = Column(String(length=64), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
