"""User ORM model; also the profile store for active hours."""
from __future__ import annotations

from uuid import uuid4

from sqlalchemy import Column, DateTime, String, Text, func
from sqlalchemy.dialects.postgresql import UUID

from app.db.base import Base


class User(Base):
    __tablename__ = "users"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    # Wall-clock "HH:MM"; sleep earlier than wake means the next day.
    wake_time = Column(String(length=5), nullable=True)
    sleep_time = Column(String(length=5), nullable=True)
    timezone = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
