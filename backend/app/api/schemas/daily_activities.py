"""Schemas for daily activity generation."""
from __future__ import annotations

from datetime import date, datetime
from typing import List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from app.services.scheduling.strategy import ActivityCategory, SignalLevel


class CommitmentPayload(BaseModel):
    start: datetime
    end: datetime
    label: str = ""

    @model_validator(mode="after")
    def _check_order(self) -> "CommitmentPayload":
        same_kind = (self.start.tzinfo is None) == (self.end.tzinfo is None)
        if same_kind and self.end <= self.start:
            raise ValueError("commitment end must be after start")
        return self


class ActiveHoursPayload(BaseModel):
    wake: str = Field(..., examples=["07:00"])
    sleep: str = Field(..., examples=["22:00"])


class StateSignalsPayload(BaseModel):
    mood_score: float = Field(5.0, ge=0, le=10)
    energy_level: SignalLevel = SignalLevel.MEDIUM
    stress_level: SignalLevel = SignalLevel.MEDIUM


class DailyActivitiesRequest(BaseModel):
    user_id: UUID
    calendar_date: date
    commitments: Optional[List[CommitmentPayload]] = None
    active_hours: Optional[ActiveHoursPayload] = None
    timezone: Optional[str] = None
    state_signals: StateSignalsPayload = Field(default_factory=StateSignalsPayload)


class IntensityPayload(BaseModel):
    level: Literal["low", "medium", "high"]
    ratio: float


class ActivityPayload(BaseModel):
    category: ActivityCategory
    title: str
    start: datetime
    end: datetime
    description: str = ""


class FreeWindowPayload(BaseModel):
    start: datetime
    end: datetime
    minutes: int
    size: Literal["micro", "small", "medium", "large"]


class PolicyPayload(BaseModel):
    target_count: int
    allowed_categories: List[ActivityCategory]
    min_spacing_minutes: int
    rule: str
    priority: str


class DailyActivitiesResponse(BaseModel):
    user_id: UUID
    calendar_date: date
    status: Literal["generated", "already_generated", "schedule_full", "in_progress"]
    already_generated: bool
    activities: List[ActivityPayload]
    intensity: IntensityPayload
    reasoning: str = ""
    fallback_used: bool = False
    rejected_candidates: int = 0
    written_ids: List[str] = Field(default_factory=list)
    request_id: str


class DailyPlanPreviewResponse(BaseModel):
    user_id: UUID
    calendar_date: date
    active_hours: ActiveHoursPayload
    intensity: IntensityPayload
    windows: List[FreeWindowPayload]
    policy: PolicyPayload
    already_generated: bool
    request_id: str


class DailyResetRequest(BaseModel):
    user_id: UUID
    calendar_date: date


class DailyResetResponse(BaseModel):
    user_id: UUID
    calendar_date: date
    marker_cleared: bool
    activities_removed: int
    request_id: str


class DailyRunHistoryItem(BaseModel):
    id: UUID
    calendar_date: Optional[date]
    created_at: str
    status: str
    activity_count: int
    intensity_level: Optional[str] = None
    fallback_used: bool = False


class DailyRunHistoryResponse(BaseModel):
    user_id: UUID
    items: List[DailyRunHistoryItem]
    request_id: str
