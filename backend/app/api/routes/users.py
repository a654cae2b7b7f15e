"""User profile endpoints (active hours)."""
from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from app.api.schemas.users import ActiveHoursResponse, ActiveHoursUpdateRequest
from app.core.config import settings
from app.db.deps import get_db
from app.db.models.user import User
from app.services.profile_store import get_active_hours, resolve_user_active_hours, update_active_hours
from app.services.scheduling.intervals import ScheduleInputError

router = APIRouter()


@router.get("/users/{user_id}/active-hours", response_model=ActiveHoursResponse, tags=["users"])
def read_active_hours(user_id: UUID, request: Request, db: Session = Depends(get_db)) -> ActiveHoursResponse:
    user = db.get(User, user_id)
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return _serialize(user, request)


@router.put("/users/{user_id}/active-hours", response_model=ActiveHoursResponse, tags=["users"])
def write_active_hours(
    user_id: UUID,
    payload: ActiveHoursUpdateRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> ActiveHoursResponse:
    try:
        user = update_active_hours(db, user_id, wake=payload.wake, sleep=payload.sleep, timezone=payload.timezone)
    except ScheduleInputError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    return _serialize(user, request)


def _serialize(user: User, request: Request) -> ActiveHoursResponse:
    profile = resolve_user_active_hours(user)
    hours = profile.to_dict()
    return ActiveHoursResponse(
        user_id=user.id,
        wake=hours["wake"],
        sleep=hours["sleep"],
        total_minutes=hours["total_minutes"],
        is_default=get_active_hours(user) is None,
        timezone=user.timezone or settings.default_timezone,
        request_id=getattr(request.state, "request_id", None) or "",
    )
