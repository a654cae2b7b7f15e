"""Calendar provider backed by the application's own database."""
from __future__ import annotations

import hashlib
import logging
from datetime import date, datetime
from typing import List, Sequence
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.db.models.calendar_event import CalendarEvent
from app.services.calendar.base import CalendarService, CalendarWriteError, WriteResult
from app.services.scheduling.intervals import Commitment, TimeInterval
from app.services.scheduling.placement import PlacedActivity

logger = logging.getLogger(__name__)

KIND_COMMITMENT = "commitment"
KIND_ACTIVITY = "activity"


def activity_dedup_key(user_id: UUID, calendar_date: date, activity: PlacedActivity) -> str:
    """Stable key so pushing the same activity twice never creates a second event."""
    raw = f"{user_id}:{calendar_date.isoformat()}:{activity.category.value}:{activity.interval.start.isoformat()}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


class LocalCalendarService(CalendarService):
    name = "local"

    def __init__(self, db: Session) -> None:
        self.db = db

    def list_existing(self, user_id: UUID, calendar_date: date) -> List[Commitment]:
        return [
            Commitment(interval=TimeInterval(event.start_at, event.end_at), label=event.title)
            for event in self._events(user_id, calendar_date)
        ]

    def has_generated_activities(self, user_id: UUID, calendar_date: date) -> bool:
        return (
            self.db.query(CalendarEvent.id)
            .filter(
                CalendarEvent.user_id == user_id,
                CalendarEvent.calendar_date == calendar_date,
                CalendarEvent.kind == KIND_ACTIVITY,
            )
            .first()
            is not None
        )

    def write_activities(
        self,
        user_id: UUID,
        calendar_date: date,
        activities: Sequence[PlacedActivity],
    ) -> WriteResult:
        written: List[str] = []
        for activity in activities:
            try:
                event = self._upsert_activity(user_id, calendar_date, activity)
                self.db.commit()
            except SQLAlchemyError as exc:
                self.db.rollback()
                raise CalendarWriteError(
                    f"Failed to write '{activity.title}' ({len(written)}/{len(activities)} written)",
                    written_ids=written,
                ) from exc
            written.append(str(event.id))
        logger.info("Wrote %s activities for %s", len(written), calendar_date.isoformat())
        return WriteResult(written_ids=written)

    def clear_generated(self, user_id: UUID, calendar_date: date) -> int:
        removed = (
            self.db.query(CalendarEvent)
            .filter(
                CalendarEvent.user_id == user_id,
                CalendarEvent.calendar_date == calendar_date,
                CalendarEvent.kind == KIND_ACTIVITY,
            )
            .delete(synchronize_session=False)
        )
        self.db.commit()
        return removed

    def add_commitment(
        self,
        user_id: UUID,
        calendar_date: date,
        start_at: datetime,
        end_at: datetime,
        title: str,
    ) -> CalendarEvent:
        interval = TimeInterval(start_at, end_at)
        event = CalendarEvent(
            user_id=user_id,
            calendar_date=calendar_date,
            kind=KIND_COMMITMENT,
            title=title or "Busy",
            start_at=interval.start,
            end_at=interval.end,
        )
        self.db.add(event)
        self.db.commit()
        self.db.refresh(event)
        return event

    def list_events(self, user_id: UUID, calendar_date: date) -> List[CalendarEvent]:
        return self._events(user_id, calendar_date)

    def _events(self, user_id: UUID, calendar_date: date) -> List[CalendarEvent]:
        return (
            self.db.query(CalendarEvent)
            .filter(CalendarEvent.user_id == user_id, CalendarEvent.calendar_date == calendar_date)
            .order_by(CalendarEvent.start_at.asc())
            .all()
        )

    def _upsert_activity(self, user_id: UUID, calendar_date: date, activity: PlacedActivity) -> CalendarEvent:
        key = activity_dedup_key(user_id, calendar_date, activity)
        existing = self.db.query(CalendarEvent).filter(CalendarEvent.dedup_key == key).first()
        if existing:
            return existing
        event = CalendarEvent(
            user_id=user_id,
            calendar_date=calendar_date,
            kind=KIND_ACTIVITY,
            category=activity.category.value,
            title=activity.title,
            description=activity.description,
            start_at=activity.interval.start,
            end_at=activity.interval.end,
            dedup_key=key,
        )
        self.db.add(event)
        self.db.flush()
        return event
