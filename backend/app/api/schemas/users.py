"""Schemas for user profile endpoints."""
from __future__ import annotations

from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field


class ActiveHoursUpdateRequest(BaseModel):
    wake: str = Field(..., examples=["07:00"])
    sleep: str = Field(..., examples=["22:00"])
    timezone: Optional[str] = Field(default=None, examples=["Europe/Berlin"])


class ActiveHoursResponse(BaseModel):
    user_id: UUID
    wake: str
    sleep: str
    total_minutes: int
    is_default: bool
    timezone: str
    request_id: str
