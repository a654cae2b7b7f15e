"""Schemas for job operations endpoints."""
from __future__ import annotations

from datetime import date
from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel


class JobRunRequest(BaseModel):
    job: Literal["daily_activities"] = "daily_activities"
    user_id: Optional[UUID] = None
    calendar_date: Optional[date] = None


class JobRunResponse(BaseModel):
    job: str
    users_processed: int
    days_generated: int
    skipped: int
    request_id: str
