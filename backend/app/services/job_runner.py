"""Batch job runner for the daily activity generation."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterable, List, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from app.api.schemas.daily_activities import DailyActivitiesRequest
from app.db.models.user import User
from app.services.daily_activities import STATUS_GENERATED, generate_daily_activities
from app.services.profile_store import require_user, resolve_timezone


logger = logging.getLogger(__name__)


@dataclass
class JobRunResult:
    users_processed: int
    days_generated: int
    skipped: int = 0
    failed: int = 0


def _profiled_user_ids(db: Session) -> List[UUID]:
    rows = (
        db.query(User.id)
        .filter(User.wake_time.isnot(None), User.sleep_time.isnot(None))
        .order_by(User.created_at.asc())
        .all()
    )
    return [row[0] for row in rows]


def run_daily_activities_for_user(db: Session, user_id: UUID, *, calendar_date: Optional[date] = None) -> bool:
    """Generate today's activities for one user from their stored calendar; True when new ones were written."""
    user = require_user(db, user_id)
    target_date = calendar_date or datetime.now(resolve_timezone(user.timezone)).date()
    # No commitments given: the calendar provides them. State signals stay neutral.
    payload = DailyActivitiesRequest(user_id=user_id, calendar_date=target_date)
    result = generate_daily_activities(db, payload, request_id=None)
    return result.status == STATUS_GENERATED


def run_daily_activities_for_all_users(
    db: Session,
    *,
    user_ids: Optional[Iterable[UUID]] = None,
    calendar_date: Optional[date] = None,
) -> JobRunResult:
    ids = _profiled_user_ids(db) if user_ids is None else list(dict.fromkeys(user_ids))
    users_processed = 0
    generated = 0
    skipped = 0
    failed = 0
    for uid in ids:
        try:
            created = run_daily_activities_for_user(db, uid, calendar_date=calendar_date)
        except Exception:  # pragma: no cover - defensive guard
            db.rollback()
            logger.exception("Daily activities job failed for user %s", uid)
            failed += 1
            continue
        users_processed += 1
        if created:
            generated += 1
        else:
            skipped += 1
    return JobRunResult(users_processed=users_processed, days_generated=generated, skipped=skipped, failed=failed)
