"""Per-day generation markers and in-flight leases."""
from __future__ import annotations

from uuid import uuid4

from sqlalchemy import Column, Date, DateTime, ForeignKey, String, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import UUID

from app.db.base import Base
from app.db.types import UTCDateTime


MARKER_COMPLETE = "complete"
MARKER_INCOMPLETE = "incomplete"


class DailyGenerationMarker(Base):
    """
    Generation state for (user, date).

    ``complete`` once activities were generated and externalized in full;
    ``incomplete`` after a calendar write failed part way.
    """

    __tablename__ = "daily_generation_markers"
    __table_args__ = (UniqueConstraint("user_id", "calendar_date", name="uq_daily_generation_markers_user_date"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    calendar_date = Column(Date, nullable=False)
    status = Column(String(length=20), nullable=False, default=MARKER_COMPLETE, server_default=MARKER_COMPLETE)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class DailyGenerationLease(Base):
    """Claim held while one run for (user, date) is executing."""

    __tablename__ = "daily_generation_leases"
    __table_args__ = (UniqueConstraint("user_id", "calendar_date", name="uq_daily_generation_leases_user_date"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    calendar_date = Column(Date, nullable=False)
    claimed_at = Column(UTCDateTime, nullable=False)
