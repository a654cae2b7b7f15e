"""Marker store: the persisted "already generated" flag and in-flight leases."""
from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.db.models.daily_generation import (
    MARKER_COMPLETE,
    MARKER_INCOMPLETE,
    DailyGenerationLease,
    DailyGenerationMarker,
)

logger = logging.getLogger(__name__)


class MarkerStore:
    """
    Atomic per-(person, date) flags.

    ``set_if_absent`` and ``acquire_lease`` are compare-and-set operations: of
    any number of concurrent callers exactly one sees ``True``. A day can also
    be flagged incomplete after a partial calendar write; ``get`` stays False
    for it until a later run completes the day.
    """

    def get(self, user_id: UUID, calendar_date: date) -> bool:
        raise NotImplementedError

    def set_if_absent(self, user_id: UUID, calendar_date: date) -> bool:
        raise NotImplementedError

    def mark_incomplete(self, user_id: UUID, calendar_date: date) -> None:
        raise NotImplementedError

    def is_incomplete(self, user_id: UUID, calendar_date: date) -> bool:
        raise NotImplementedError

    def clear(self, user_id: UUID, calendar_date: date) -> bool:
        raise NotImplementedError

    def acquire_lease(self, user_id: UUID, calendar_date: date, now: datetime) -> bool:
        raise NotImplementedError

    def release_lease(self, user_id: UUID, calendar_date: date) -> None:
        raise NotImplementedError


class SqlMarkerStore(MarkerStore):
    """Marker store relying on unique constraints for atomicity."""

    def __init__(self, db: Session, *, lease_ttl_seconds: int = 120) -> None:
        self.db = db
        self.lease_ttl = timedelta(seconds=lease_ttl_seconds)

    def get(self, user_id: UUID, calendar_date: date) -> bool:
        return self._status(user_id, calendar_date) == MARKER_COMPLETE

    def is_incomplete(self, user_id: UUID, calendar_date: date) -> bool:
        return self._status(user_id, calendar_date) == MARKER_INCOMPLETE

    def set_if_absent(self, user_id: UUID, calendar_date: date) -> bool:
        if self._insert_marker(user_id, calendar_date, MARKER_COMPLETE):
            return True
        # An incomplete day is promoted by exactly one caller.
        promoted = (
            self.db.query(DailyGenerationMarker)
            .filter(
                DailyGenerationMarker.user_id == user_id,
                DailyGenerationMarker.calendar_date == calendar_date,
                DailyGenerationMarker.status == MARKER_INCOMPLETE,
            )
            .update({DailyGenerationMarker.status: MARKER_COMPLETE}, synchronize_session=False)
        )
        self.db.commit()
        return bool(promoted)

    def mark_incomplete(self, user_id: UUID, calendar_date: date) -> None:
        if not self._insert_marker(user_id, calendar_date, MARKER_INCOMPLETE):
            logger.info("Marker for %s already present; not flagging incomplete", calendar_date.isoformat())

    def clear(self, user_id: UUID, calendar_date: date) -> bool:
        removed = (
            self.db.query(DailyGenerationMarker)
            .filter(
                DailyGenerationMarker.user_id == user_id,
                DailyGenerationMarker.calendar_date == calendar_date,
            )
            .delete(synchronize_session=False)
        )
        self.db.commit()
        return bool(removed)

    def acquire_lease(self, user_id: UUID, calendar_date: date, now: datetime) -> bool:
        if self._insert_lease(user_id, calendar_date, now):
            return True
        lease = self._lease(user_id, calendar_date)
        if lease is None:
            # Released between our insert and the lookup.
            return self._insert_lease(user_id, calendar_date, now)
        if now - lease.claimed_at < self.lease_ttl:
            return False

        # Stale claim: only remove it if nobody refreshed it meanwhile.
        logger.warning("Taking over stale generation lease for %s", calendar_date.isoformat())
        removed = (
            self.db.query(DailyGenerationLease)
            .filter(
                DailyGenerationLease.id == lease.id,
                DailyGenerationLease.claimed_at == lease.claimed_at,
            )
            .delete(synchronize_session=False)
        )
        self.db.commit()
        if not removed:
            return False
        return self._insert_lease(user_id, calendar_date, now)

    def release_lease(self, user_id: UUID, calendar_date: date) -> None:
        self.db.query(DailyGenerationLease).filter(
            DailyGenerationLease.user_id == user_id,
            DailyGenerationLease.calendar_date == calendar_date,
        ).delete(synchronize_session=False)
        self.db.commit()

    def _lease(self, user_id: UUID, calendar_date: date) -> DailyGenerationLease | None:
        return (
            self.db.query(DailyGenerationLease)
            .filter(
                DailyGenerationLease.user_id == user_id,
                DailyGenerationLease.calendar_date == calendar_date,
            )
            .populate_existing()
            .first()
        )

    def _insert_lease(self, user_id: UUID, calendar_date: date, now: datetime) -> bool:
        self.db.add(DailyGenerationLease(user_id=user_id, calendar_date=calendar_date, claimed_at=now))
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            return False
        return True

    def _status(self, user_id: UUID, calendar_date: date) -> str | None:
        row = (
            self.db.query(DailyGenerationMarker.status)
            .filter(
                DailyGenerationMarker.user_id == user_id,
                DailyGenerationMarker.calendar_date == calendar_date,
            )
            .first()
        )
        return row[0] if row else None

    def _insert_marker(self, user_id: UUID, calendar_date: date, status: str) -> bool:
        self.db.add(DailyGenerationMarker(user_id=user_id, calendar_date=calendar_date, status=status))
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            return False
        return True
