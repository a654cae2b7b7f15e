"""Daily activity generation endpoints."""
from __future__ import annotations

from datetime import date
from time import perf_counter
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session

from app.api.schemas.daily_activities import (
    ActiveHoursPayload,
    ActivityPayload,
    DailyActivitiesRequest,
    DailyActivitiesResponse,
    DailyPlanPreviewResponse,
    DailyResetRequest,
    DailyResetResponse,
    DailyRunHistoryItem,
    DailyRunHistoryResponse,
    FreeWindowPayload,
    IntensityPayload,
    PolicyPayload,
)
from app.db.deps import get_db
from app.observability.metrics import log_metric
from app.observability.tracing import trace
from app.services.calendar.base import CalendarWriteError
from app.services.daily_activities import (
    GENERATED_ACTION,
    generate_daily_activities,
    load_history,
    preview_day,
    reset_day,
)
from app.services.scheduling.intervals import ScheduleInputError
from app.services.scheduling.strategy import SignalLevel, StateSignals

router = APIRouter()


@router.post("/daily-activities/generate", response_model=DailyActivitiesResponse, tags=["daily-activities"])
def generate_activities(
    request: Request,
    payload: DailyActivitiesRequest,
    db: Session = Depends(get_db),
) -> DailyActivitiesResponse:
    request_id = getattr(request.state, "request_id", None)
    try:
        result = generate_daily_activities(db, payload, request_id=request_id)
    except ScheduleInputError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    except CalendarWriteError as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"message": str(exc), "written_ids": exc.written_ids},
        ) from exc

    return DailyActivitiesResponse(
        user_id=result.user_id,
        calendar_date=result.calendar_date,
        status=result.status,
        already_generated=result.already_generated,
        activities=[_activity_payload(activity) for activity in result.activities],
        intensity=IntensityPayload(**result.plan.intensity.to_dict()),
        reasoning=result.reasoning,
        fallback_used=result.fallback_used,
        rejected_candidates=result.rejected_candidates,
        written_ids=result.written_ids,
        request_id=request_id or "",
    )


@router.get("/daily-activities/preview", response_model=DailyPlanPreviewResponse, tags=["daily-activities"])
def preview_activities(
    request: Request,
    user_id: UUID = Query(..., description="User ID"),
    calendar_date: date = Query(..., description="Calendar date (YYYY-MM-DD)"),
    mood_score: float = Query(5.0, ge=0, le=10),
    energy_level: SignalLevel = Query(SignalLevel.MEDIUM),
    stress_level: SignalLevel = Query(SignalLevel.MEDIUM),
    timezone: Optional[str] = Query(None, description="IANA timezone name"),
    db: Session = Depends(get_db),
) -> DailyPlanPreviewResponse:
    request_id = getattr(request.state, "request_id", None)
    metadata = {"user_id": str(user_id), "calendar_date": calendar_date.isoformat()}
    start = perf_counter()
    state = StateSignals(mood_score=mood_score, energy_level=energy_level, stress_level=stress_level)
    with trace("daily_activities.preview", metadata=metadata, user_id=str(user_id), request_id=request_id):
        try:
            plan, already_generated = preview_day(db, user_id, calendar_date, timezone_name=timezone, state=state)
        except ScheduleInputError as exc:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc

    latency_ms = (perf_counter() - start) * 1000
    log_metric("daily_activities.preview.latency_ms", latency_ms, metadata={"user_id": str(user_id)})

    hours = plan.active_hours.to_dict()
    return DailyPlanPreviewResponse(
        user_id=user_id,
        calendar_date=calendar_date,
        active_hours=ActiveHoursPayload(wake=hours["wake"], sleep=hours["sleep"]),
        intensity=IntensityPayload(**plan.intensity.to_dict()),
        windows=[
            FreeWindowPayload(
                start=window.start,
                end=window.end,
                minutes=int(window.minutes),
                size=window.size.value,
            )
            for window in plan.windows
        ],
        policy=PolicyPayload(**plan.policy.to_dict()),
        already_generated=already_generated,
        request_id=request_id or "",
    )


@router.post("/daily-activities/reset", response_model=DailyResetResponse, tags=["daily-activities"])
def reset_activities(
    request: Request,
    payload: DailyResetRequest,
    db: Session = Depends(get_db),
) -> DailyResetResponse:
    request_id = getattr(request.state, "request_id", None)
    try:
        result = reset_day(db, payload.user_id, payload.calendar_date, request_id=request_id)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found") from exc

    return DailyResetResponse(
        user_id=payload.user_id,
        calendar_date=payload.calendar_date,
        marker_cleared=result.marker_cleared,
        activities_removed=result.activities_removed,
        request_id=request_id or "",
    )


@router.get("/daily-activities/history", response_model=DailyRunHistoryResponse, tags=["daily-activities"])
def activities_history(
    request: Request,
    user_id: UUID = Query(..., description="User ID"),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
) -> DailyRunHistoryResponse:
    request_id = getattr(request.state, "request_id", None)
    try:
        logs = load_history(db, user_id, limit=limit)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found") from exc

    items = []
    for log in logs:
        data = log.action_payload or {}
        if log.action_type == GENERATED_ACTION:
            run_status = data.get("status", "generated")
        else:
            run_status = "reset"
        intensity = data.get("intensity") or {}
        items.append(
            DailyRunHistoryItem(
                id=log.id,
                calendar_date=log.calendar_date,
                created_at=log.created_at.isoformat() if log.created_at else "",
                status=run_status,
                activity_count=int(data.get("activity_count") or data.get("activities_removed") or 0),
                intensity_level=intensity.get("level"),
                fallback_used=bool(data.get("fallback_used", False)),
            )
        )
    return DailyRunHistoryResponse(user_id=user_id, items=items, request_id=request_id or "")


def _activity_payload(activity) -> ActivityPayload:
    return ActivityPayload(
        category=activity.category,
        title=activity.title,
        start=activity.interval.start,
        end=activity.interval.end,
        description=activity.description,
    )
