"""Calendar collaborator interface."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import List, Sequence
from uuid import UUID

from app.services.scheduling.intervals import Commitment
from app.services.scheduling.placement import PlacedActivity


class CalendarWriteError(RuntimeError):
    """Raised when not every activity could be written; carries what was written."""

    def __init__(self, message: str, *, written_ids: Sequence[str] = ()) -> None:
        super().__init__(message)
        self.written_ids = list(written_ids)


@dataclass
class WriteResult:
    written_ids: List[str] = field(default_factory=list)


class CalendarService:
    """Base interface for calendar providers."""

    name = "base"

    def list_existing(self, user_id: UUID, calendar_date: date) -> List[Commitment]:
        raise NotImplementedError

    def has_generated_activities(self, user_id: UUID, calendar_date: date) -> bool:
        raise NotImplementedError

    def write_activities(
        self,
        user_id: UUID,
        calendar_date: date,
        activities: Sequence[PlacedActivity],
    ) -> WriteResult:
        raise NotImplementedError

    def clear_generated(self, user_id: UUID, calendar_date: date) -> int:
        raise NotImplementedError
