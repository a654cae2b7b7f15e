"""Profile store: users, their active hours and timezone."""
from __future__ import annotations

import logging
from datetime import tzinfo
from typing import Optional
from uuid import UUID
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.db.models.user import User
from app.services.scheduling.intervals import ScheduleInputError
from app.services.scheduling.windows import ActiveHoursProfile, parse_clock_time, resolve_active_hours

logger = logging.getLogger(__name__)


def get_or_create_user(db: Session, user_id: UUID) -> User:
    """Fetch an existing user or create a new row safely."""
    user = db.get(User, user_id)
    if user:
        return user

    user = User(id=user_id)
    db.add(user)
    try:
        db.flush()
        return user
    except IntegrityError:
        db.rollback()
        existing = db.get(User, user_id)
        if existing:
            return existing
        raise


def require_user(db: Session, user_id: UUID) -> User:
    user = db.get(User, user_id)
    if not user:
        raise ValueError("User not found")
    return user


def get_active_hours(user: Optional[User]) -> Optional[ActiveHoursProfile]:
    """Stored active hours, or None when the profile has none (or only half of them)."""
    if user is None or not user.wake_time or not user.sleep_time:
        return None
    return ActiveHoursProfile(parse_clock_time(user.wake_time), parse_clock_time(user.sleep_time))


def resolve_user_active_hours(user: Optional[User]) -> ActiveHoursProfile:
    """Stored active hours, falling back to the configured default day."""
    profile = None
    if user is not None:
        profile = {"wake": user.wake_time, "sleep": user.sleep_time}
    return resolve_active_hours(
        profile,
        default_wake=parse_clock_time(settings.default_wake_time),
        default_sleep=parse_clock_time(settings.default_sleep_time),
    )


def resolve_timezone(name: Optional[str]) -> tzinfo:
    tz_name = name or settings.default_timezone
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ScheduleInputError(f"Unknown timezone: {tz_name!r}") from exc


def update_active_hours(
    db: Session,
    user_id: UUID,
    *,
    wake: str,
    sleep: str,
    timezone: Optional[str] = None,
) -> User:
    """Validate and store a person's active hours (and optionally their timezone)."""
    profile = ActiveHoursProfile(parse_clock_time(wake), parse_clock_time(sleep))
    if timezone is not None:
        resolve_timezone(timezone)

    user = get_or_create_user(db, user_id)
    user.wake_time = profile.wake.strftime("%H:%M")
    user.sleep_time = profile.sleep.strftime("%H:%M")
    if timezone is not None:
        user.timezone = timezone
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info("Updated active hours for %s to %s-%s", user_id, user.wake_time, user.sleep_time)
    return user
