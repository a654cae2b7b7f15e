"""Calendar provider factory."""
from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from app.core.config import settings
from app.services.calendar.base import CalendarService
from app.services.calendar.local import LocalCalendarService

logger = logging.getLogger(__name__)


def get_calendar_service(db: Session) -> CalendarService:
    provider = settings.calendar_provider.lower()
    if provider != "local":
        logger.warning("Unknown calendar provider %r; using local calendar", provider)
    return LocalCalendarService(db)
