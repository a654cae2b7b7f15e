"""Local calendar endpoints: fixed commitments in, events out."""
from __future__ import annotations

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session

from app.api.schemas.calendar import CalendarEventResponse, CalendarEventsResponse, CommitmentCreateRequest
from app.db.deps import get_db
from app.db.models.calendar_event import CalendarEvent
from app.services.calendar.local import LocalCalendarService
from app.services.profile_store import get_or_create_user, require_user

router = APIRouter()


@router.post(
    "/calendar/commitments",
    response_model=CalendarEventResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["calendar"],
)
def create_commitment(payload: CommitmentCreateRequest, db: Session = Depends(get_db)) -> CalendarEventResponse:
    get_or_create_user(db, payload.user_id)
    event = LocalCalendarService(db).add_commitment(
        payload.user_id,
        payload.calendar_date,
        payload.start,
        payload.end,
        payload.title,
    )
    return _serialize_event(event)


@router.get("/calendar/events", response_model=CalendarEventsResponse, tags=["calendar"])
def list_events(
    request: Request,
    user_id: UUID = Query(..., description="User ID"),
    calendar_date: date = Query(..., description="Calendar date (YYYY-MM-DD)"),
    db: Session = Depends(get_db),
) -> CalendarEventsResponse:
    try:
        require_user(db, user_id)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found") from exc

    events = LocalCalendarService(db).list_events(user_id, calendar_date)
    return CalendarEventsResponse(
        user_id=user_id,
        calendar_date=calendar_date,
        events=[_serialize_event(event) for event in events],
        request_id=getattr(request.state, "request_id", None) or "",
    )


def _serialize_event(event: CalendarEvent) -> CalendarEventResponse:
    return CalendarEventResponse(
        id=event.id,
        user_id=event.user_id,
        calendar_date=event.calendar_date,
        kind=event.kind,
        category=event.category,
        title=event.title,
        description=event.description,
        start=event.start_at,
        end=event.end_at,
    )
