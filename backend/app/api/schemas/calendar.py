"""Schemas for the local calendar endpoints."""
from __future__ import annotations

from datetime import date, datetime
from typing import List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field, model_validator


class CommitmentCreateRequest(BaseModel):
    user_id: UUID
    calendar_date: date
    start: datetime
    end: datetime
    title: str = Field("Busy", min_length=1, max_length=200)

    @model_validator(mode="after")
    def _check_order(self) -> "CommitmentCreateRequest":
        if self.start.tzinfo is None or self.end.tzinfo is None:
            raise ValueError("start and end must include a UTC offset")
        if self.end <= self.start:
            raise ValueError("end must be after start")
        return self


class CalendarEventResponse(BaseModel):
    id: UUID
    user_id: UUID
    calendar_date: date
    kind: Literal["commitment", "activity"]
    category: Optional[str] = None
    title: str
    description: Optional[str] = None
    start: datetime
    end: datetime


class CalendarEventsResponse(BaseModel):
    user_id: UUID
    calendar_date: date
    events: List[CalendarEventResponse]
    request_id: str
