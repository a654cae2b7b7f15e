"""Daily activity generation: plan the day, generate once, push to the calendar."""
from __future__ import annotations

import logging
import time as time_module
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime, timezone, tzinfo
from time import perf_counter
from typing import Callable, Dict, List, Optional, Sequence
from uuid import UUID

from sqlalchemy.orm import Session

from app.api.schemas.daily_activities import CommitmentPayload, DailyActivitiesRequest
from app.core.config import settings
from app.core.context import bind_person
from app.db.models.agent_action_log import AgentActionLog
from app.db.models.user import User
from app.observability.metrics import log_metric
from app.observability.tracing import trace
from app.services.calendar.base import CalendarService, CalendarWriteError, WriteResult
from app.services.calendar.factory import get_calendar_service
from app.services.generative.factory import get_activity_proposer
from app.services.markers import MarkerStore, SqlMarkerStore
from app.services.profile_store import (
    get_or_create_user,
    require_user,
    resolve_timezone,
    resolve_user_active_hours,
)
from app.services.scheduling.candidates import CandidateBatch, fallback_candidates, generate_candidates
from app.services.scheduling.intervals import (
    BusyBlock,
    Commitment,
    TimeInterval,
    merge_commitments,
)
from app.services.scheduling.placement import PlacedActivity, validate_placements
from app.services.scheduling.strategy import GenerationPolicy, SignalLevel, StateSignals, select_policy
from app.services.scheduling.windows import (
    ActiveHoursProfile,
    FreeWindow,
    IntensityLevel,
    IntensityScore,
    WindowSize,
    find_windows,
    parse_clock_time,
    score_intensity,
)

logger = logging.getLogger(__name__)

GENERATED_ACTION = "daily_activities_generated"
RESET_ACTION = "daily_activities_reset"

STATUS_GENERATED = "generated"
STATUS_ALREADY_GENERATED = "already_generated"
STATUS_SCHEDULE_FULL = "schedule_full"
STATUS_IN_PROGRESS = "in_progress"


@dataclass
class DayPlan:
    calendar_date: date
    active_hours: ActiveHoursProfile
    active_span: TimeInterval
    busy_blocks: List[BusyBlock]
    windows: List[FreeWindow]
    intensity: IntensityScore
    policy: GenerationPolicy


@dataclass
class GateOutcome:
    activities: List[PlacedActivity]
    already_generated: bool
    written_ids: List[str] = field(default_factory=list)
    in_progress: bool = False


@dataclass
class DailyRunResult:
    user_id: UUID
    calendar_date: date
    status: str
    plan: DayPlan
    activities: List[PlacedActivity]
    already_generated: bool
    reasoning: str = ""
    fallback_used: bool = False
    rejected_candidates: int = 0
    written_ids: List[str] = field(default_factory=list)


@dataclass
class ResetResult:
    marker_cleared: bool
    activities_removed: int


# ---------------------------------------------------------------------------
# Planning (pure)
# ---------------------------------------------------------------------------

def plan_day(
    calendar_date: date,
    commitments: Sequence[Commitment],
    active_hours: ActiveHoursProfile,
    tz: tzinfo,
    state: StateSignals,
    *,
    buffer_minutes: int = 5,
    min_window_minutes: int = 5,
    low_mood_threshold: float = 4.0,
) -> DayPlan:
    """Busy blocks, free windows, intensity and policy for one person-day."""
    active_span = active_hours.span_for(calendar_date, tz)
    busy_blocks = merge_commitments(commitments, buffer_minutes)
    windows = find_windows(busy_blocks, active_span, min_window_minutes)
    # Busyness counts committed time only; the transition buffer is not busy time.
    intensity = score_intensity(merge_commitments(commitments, 0), active_hours)
    policy = select_policy(intensity, state, windows, low_mood_threshold=low_mood_threshold)

    sizes = Counter(window.size.value for window in windows)
    logger.info(
        "Planned %s: %s commitments -> %s busy blocks; windows %s; intensity %s (%.3f); policy %s",
        calendar_date.isoformat(),
        len(commitments),
        len(busy_blocks),
        {size.value: sizes.get(size.value, 0) for size in WindowSize},
        intensity.level.value,
        intensity.ratio,
        policy.rule,
    )
    return DayPlan(
        calendar_date=calendar_date,
        active_hours=active_hours,
        active_span=active_span,
        busy_blocks=busy_blocks,
        windows=windows,
        intensity=intensity,
        policy=policy,
    )


def build_reasoning(
    state: StateSignals,
    intensity: IntensityScore,
    activities: Sequence[PlacedActivity],
    *,
    has_free_time: bool = False,
    low_mood_threshold: float = 4.0,
) -> str:
    notes: List[str] = []
    if state.stress_level == SignalLevel.HIGH:
        notes.append("High stress detected - prioritized breathing and calm activities")
    if intensity.level == IntensityLevel.HIGH:
        notes.append("Busy schedule - focused on short, stress-relieving breaks")
    if state.energy_level == SignalLevel.LOW:
        notes.append("Low energy - selected gentle, restorative activities")
    if state.mood_score < low_mood_threshold:
        notes.append("Lower mood - included supportive wellness activities")
    if activities:
        counts = Counter(activity.category.value for activity in activities)
        summary = ", ".join(f"{count} {category}" for category, count in sorted(counts.items()))
        notes.append(f"Generated {len(activities)} activities: {summary}")
    elif has_free_time:
        notes.append("No activity fit around today's schedule - nothing was added")
    else:
        notes.append("No free time left today - nothing was added")
    return ". ".join(notes) + "."


# ---------------------------------------------------------------------------
# Once-per-day gate
# ---------------------------------------------------------------------------

def externalize(
    calendar: CalendarService,
    user_id: UUID,
    calendar_date: date,
    activities: Sequence[PlacedActivity],
    *,
    request_id: Optional[str] = None,
) -> WriteResult:
    metadata = {"activity_count": len(activities), "calendar": calendar.name}
    with trace("daily_activities.externalize", metadata=metadata, user_id=str(user_id), request_id=request_id):
        return calendar.write_activities(user_id, calendar_date, activities)


class DailyGenerationGate:
    """
    Runs the generation pipeline at most once per person per calendar date.

    The marker is only set after a non-empty result was written to the calendar
    in full; a partial write flags the day incomplete so the next run retries
    instead of trusting the calendar. Concurrent runs for the same person-day
    are serialized through a lease. The loser waits for the marker or the
    lease and, when neither arrives in time, reports the day as in progress.
    """

    def __init__(
        self,
        markers: MarkerStore,
        calendar: CalendarService,
        *,
        lease_wait_seconds: float = 30.0,
        poll_interval_seconds: float = 0.25,
        request_id: Optional[str] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        sleep: Callable[[float], None] = time_module.sleep,
        monotonic: Callable[[], float] = time_module.monotonic,
    ) -> None:
        self.markers = markers
        self.calendar = calendar
        self.lease_wait_seconds = lease_wait_seconds
        self.poll_interval_seconds = poll_interval_seconds
        self.request_id = request_id
        self._clock = clock
        self._sleep = sleep
        self._monotonic = monotonic

    def run_once(
        self,
        user_id: UUID,
        calendar_date: date,
        pipeline: Callable[[], List[PlacedActivity]],
    ) -> GateOutcome:
        if self._already_done(user_id, calendar_date):
            return GateOutcome(activities=[], already_generated=True)

        if not self._claim(user_id, calendar_date):
            if self.markers.get(user_id, calendar_date):
                logger.info("Lost generation race for %s", calendar_date.isoformat())
                return GateOutcome(activities=[], already_generated=True)
            logger.info("Generation for %s still in progress elsewhere", calendar_date.isoformat())
            return GateOutcome(activities=[], already_generated=False, in_progress=True)

        try:
            if self.markers.get(user_id, calendar_date):
                return GateOutcome(activities=[], already_generated=True)

            activities = pipeline()
            if not activities:
                return GateOutcome(activities=[], already_generated=False)

            try:
                result = externalize(
                    self.calendar,
                    user_id,
                    calendar_date,
                    activities,
                    request_id=self.request_id,
                )
            except CalendarWriteError:
                self.markers.mark_incomplete(user_id, calendar_date)
                raise
            if not self.markers.set_if_absent(user_id, calendar_date):
                logger.warning("Marker for %s appeared while we held the lease", calendar_date.isoformat())
                return GateOutcome(activities=[], already_generated=True, written_ids=result.written_ids)
            return GateOutcome(activities=activities, already_generated=False, written_ids=result.written_ids)
        finally:
            self.markers.release_lease(user_id, calendar_date)

    def _already_done(self, user_id: UUID, calendar_date: date) -> bool:
        if self.markers.get(user_id, calendar_date):
            return True
        if self.markers.is_incomplete(user_id, calendar_date):
            return False
        if self.calendar.has_generated_activities(user_id, calendar_date):
            # The calendar is authoritative; backfill the marker we are missing.
            self.markers.set_if_absent(user_id, calendar_date)
            return True
        return False

    def _claim(self, user_id: UUID, calendar_date: date) -> bool:
        deadline = self._monotonic() + self.lease_wait_seconds
        while True:
            if self.markers.acquire_lease(user_id, calendar_date, self._clock()):
                return True
            if self.markers.get(user_id, calendar_date):
                return False
            if self._monotonic() >= deadline:
                return False
            self._sleep(self.poll_interval_seconds)


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------

def generate_daily_activities(
    db: Session,
    payload: DailyActivitiesRequest,
    *,
    request_id: Optional[str] = None,
) -> DailyRunResult:
    """Generate, validate and externalize a person's activities for one day."""
    user_id = payload.user_id
    with bind_person(user_id):
        start = perf_counter()
        # Nothing is persisted until every input has been validated.
        existing_user = db.get(User, user_id)
        tz = resolve_timezone(payload.timezone or (existing_user.timezone if existing_user else None))
        active_hours = _request_active_hours(payload, existing_user)
        state = StateSignals(
            mood_score=payload.state_signals.mood_score,
            energy_level=payload.state_signals.energy_level,
            stress_level=payload.state_signals.stress_level,
        )
        calendar = get_calendar_service(db)
        if payload.commitments is None:
            commitments = calendar.list_existing(user_id, payload.calendar_date)
        else:
            commitments = [_to_commitment(item, tz) for item in payload.commitments]

        plan = plan_day(
            payload.calendar_date,
            commitments,
            active_hours,
            tz,
            state,
            buffer_minutes=settings.buffer_minutes,
            min_window_minutes=settings.min_window_minutes,
            low_mood_threshold=settings.low_mood_threshold,
        )

        get_or_create_user(db, user_id)
        db.commit()

        batches: List[CandidateBatch] = []
        rejected: List[int] = []

        def pipeline() -> List[PlacedActivity]:
            batch = _candidates(plan, state, request_id=request_id, user_id=user_id)
            placed = _place(plan, batch)
            dropped = len(batch.candidates) - len(placed)
            if not placed and not batch.fallback_used and plan.windows:
                logger.info("No proposal survived placement; using rule-based activities")
                batch = CandidateBatch(
                    candidates=fallback_candidates(plan.windows, plan.policy),
                    source="fallback",
                    fallback_reason="no proposal survived placement",
                )
                placed = _place(plan, batch)
                dropped += len(batch.candidates) - len(placed)
            batches.append(batch)
            rejected.append(dropped)
            if dropped:
                logger.info("Rejected %s candidates", dropped)
            return placed

        gate = DailyGenerationGate(
            SqlMarkerStore(db, lease_ttl_seconds=settings.lease_ttl_seconds),
            calendar,
            lease_wait_seconds=settings.lease_wait_seconds,
            poll_interval_seconds=settings.lease_poll_interval_seconds,
            request_id=request_id,
        )
        metadata = {
            "calendar_date": payload.calendar_date.isoformat(),
            "intensity": plan.intensity.level.value,
            "rule": plan.policy.rule,
        }
        with trace("daily_activities.generate", metadata=metadata, user_id=str(user_id), request_id=request_id):
            try:
                outcome = gate.run_once(user_id, payload.calendar_date, pipeline)
            except CalendarWriteError as exc:
                logger.warning("Calendar write failed; marker withheld (%s written)", len(exc.written_ids))
                log_metric("daily_activities.externalize.failed", 1, {"written": len(exc.written_ids)})
                raise

        batch = batches[-1] if batches else None
        if outcome.already_generated:
            status = STATUS_ALREADY_GENERATED
        elif outcome.in_progress:
            status = STATUS_IN_PROGRESS
        elif outcome.activities:
            status = STATUS_GENERATED
        else:
            status = STATUS_SCHEDULE_FULL

        result = DailyRunResult(
            user_id=user_id,
            calendar_date=payload.calendar_date,
            status=status,
            plan=plan,
            activities=outcome.activities,
            already_generated=outcome.already_generated,
            reasoning="",
            fallback_used=bool(batch and batch.fallback_used),
            rejected_candidates=rejected[-1] if rejected else 0,
            written_ids=outcome.written_ids,
        )
        if status in (STATUS_GENERATED, STATUS_SCHEDULE_FULL):
            result.reasoning = build_reasoning(
                state,
                plan.intensity,
                outcome.activities,
                has_free_time=bool(plan.windows),
                low_mood_threshold=settings.low_mood_threshold,
            )
            _log_run(db, result, batch, request_id)

        latency_ms = (perf_counter() - start) * 1000
        log_metric("daily_activities.generate.latency_ms", latency_ms, {"status": status})
        log_metric("daily_activities.placed", len(outcome.activities), {"rule": plan.policy.rule})
        log_metric("daily_activities.rejected", result.rejected_candidates, {"rule": plan.policy.rule})
        if outcome.already_generated:
            log_metric("daily_activities.already_generated", 1)
        if result.fallback_used:
            log_metric("daily_activities.fallback.used", 1, {"reason": batch.fallback_reason if batch else None})
        logger.info(
            "Daily activities %s for %s: %s placed",
            status,
            payload.calendar_date.isoformat(),
            len(outcome.activities),
        )
        return result


def preview_day(
    db: Session,
    user_id: UUID,
    calendar_date: date,
    *,
    timezone_name: Optional[str] = None,
    state: Optional[StateSignals] = None,
) -> tuple[DayPlan, bool]:
    """Plan the day from stored commitments without generating or writing anything."""
    user = db.get(User, user_id)
    tz = resolve_timezone(timezone_name or (user.timezone if user else None))
    calendar = get_calendar_service(db)
    commitments = calendar.list_existing(user_id, calendar_date)
    plan = plan_day(
        calendar_date,
        commitments,
        resolve_user_active_hours(user),
        tz,
        state or StateSignals(),
        buffer_minutes=settings.buffer_minutes,
        min_window_minutes=settings.min_window_minutes,
        low_mood_threshold=settings.low_mood_threshold,
    )
    markers = SqlMarkerStore(db, lease_ttl_seconds=settings.lease_ttl_seconds)
    already = markers.get(user_id, calendar_date) or (
        not markers.is_incomplete(user_id, calendar_date)
        and calendar.has_generated_activities(user_id, calendar_date)
    )
    return plan, already


def reset_day(db: Session, user_id: UUID, calendar_date: date, *, request_id: Optional[str] = None) -> ResetResult:
    """Clear the marker and generated events so the day can be generated again."""
    require_user(db, user_id)
    with bind_person(user_id):
        markers = SqlMarkerStore(db, lease_ttl_seconds=settings.lease_ttl_seconds)
        calendar = get_calendar_service(db)
        removed = calendar.clear_generated(user_id, calendar_date)
        cleared = markers.clear(user_id, calendar_date)
        log = AgentActionLog(
            user_id=user_id,
            action_type=RESET_ACTION,
            calendar_date=calendar_date,
            action_payload={
                "marker_cleared": cleared,
                "activities_removed": removed,
                "request_id": request_id,
            },
            reason="Daily activities cleared",
            undo_available=False,
        )
        db.add(log)
        db.commit()
        logger.info("Reset %s: marker_cleared=%s, removed=%s", calendar_date.isoformat(), cleared, removed)
        return ResetResult(marker_cleared=cleared, activities_removed=removed)


def load_history(db: Session, user_id: UUID, *, limit: int = 20) -> List[AgentActionLog]:
    require_user(db, user_id)
    return (
        db.query(AgentActionLog)
        .filter(
            AgentActionLog.user_id == user_id,
            AgentActionLog.action_type.in_([GENERATED_ACTION, RESET_ACTION]),
        )
        .order_by(AgentActionLog.created_at.desc())
        .limit(limit)
        .all()
    )


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _candidates(plan: DayPlan, state: StateSignals, *, request_id: Optional[str], user_id: UUID) -> CandidateBatch:
    proposer = get_activity_proposer()
    metadata = {"target_count": plan.policy.target_count, "windows": len(plan.windows)}
    with trace("daily_activities.candidates", metadata=metadata, user_id=str(user_id), request_id=request_id):
        batch = generate_candidates(
            plan.windows,
            plan.policy,
            state,
            active_span=plan.active_span,
            proposer=proposer,
            timeout_seconds=settings.generation_timeout_seconds,
        )
    if batch.fallback_used and batch.fallback_reason:
        logger.info("Fallback generator used: %s", batch.fallback_reason)
    return batch


def _request_active_hours(payload: DailyActivitiesRequest, user: Optional[User]) -> ActiveHoursProfile:
    if payload.active_hours is not None:
        return ActiveHoursProfile(
            parse_clock_time(payload.active_hours.wake),
            parse_clock_time(payload.active_hours.sleep),
        )
    return resolve_user_active_hours(user)


def _place(plan: DayPlan, batch: CandidateBatch) -> List[PlacedActivity]:
    placed = validate_placements(
        batch.candidates,
        plan.windows,
        plan.busy_blocks,
        plan.policy.min_spacing_minutes,
    )
    return sorted(placed[: plan.policy.target_count], key=lambda item: item.interval.start)


def _to_commitment(item: CommitmentPayload, tz: tzinfo) -> Commitment:
    start = item.start if item.start.tzinfo else item.start.replace(tzinfo=tz)
    end = item.end if item.end.tzinfo else item.end.replace(tzinfo=tz)
    return Commitment(interval=TimeInterval(start, end), label=item.label)


def _log_run(db: Session, result: DailyRunResult, batch: Optional[CandidateBatch], request_id: Optional[str]) -> AgentActionLog:
    payload: Dict[str, object] = {
        "status": result.status,
        "intensity": result.plan.intensity.to_dict(),
        "policy": result.plan.policy.to_dict(),
        "activities": [activity.to_dict() for activity in result.activities],
        "activity_count": len(result.activities),
        "fallback_used": result.fallback_used,
        "fallback_reason": batch.fallback_reason if batch else None,
        "rejected_candidates": result.rejected_candidates,
        "written_ids": result.written_ids,
        "reasoning": result.reasoning,
        "request_id": request_id,
    }
    log = AgentActionLog(
        user_id=result.user_id,
        action_type=GENERATED_ACTION,
        calendar_date=result.calendar_date,
        action_payload=payload,
        reason=result.reasoning,
        undo_available=result.status == STATUS_GENERATED,
    )
    db.add(log)
    db.commit()
    db.refresh(log)
    return log
