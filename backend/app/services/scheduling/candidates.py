"""Candidate generation: generative proposals with a deterministic fallback."""
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta
from typing import Any, Dict, List, Mapping, Optional, Sequence

from pydantic import BaseModel, ValidationError, field_validator

from app.services.scheduling.intervals import ScheduleInputError, TimeInterval
from app.services.scheduling.placement import ActivityCandidate, is_spaced_from
from app.services.scheduling.strategy import ActivityCategory, GenerationPolicy, StateSignals
from app.services.scheduling.windows import FreeWindow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActivityTemplate:
    title: str
    description: str
    min_minutes: int
    default_minutes: int


C = ActivityCategory

ACTIVITY_TEMPLATES: Dict[ActivityCategory, ActivityTemplate] = {
    C.BREATHING: ActivityTemplate("{minutes}-min Calm Break", "Box breathing: inhale 4, hold 4, exhale 4, hold 4.", 5, 10),
    C.HYDRATION: ActivityTemplate("{minutes}-min Water Break", "Drink a full glass of water slowly.", 5, 5),
    C.LIGHT_WALK: ActivityTemplate("{minutes}-min Easy Walk", "A gentle walk to reset your energy.", 10, 15),
    C.STRETCH: ActivityTemplate("{minutes}-min Stretch", "Neck, shoulders, hips: slow full-body stretch.", 5, 10),
    C.SENSORY: ActivityTemplate("{minutes}-min Sensory Reset", "Quiet space, dim lights, headphones if available.", 5, 10),
    C.TRANSITION: ActivityTemplate("{minutes}-min Transition Buffer", "Step away, stretch, shift focus.", 5, 5),
    C.ENERGY_BOOST: ActivityTemplate("{minutes}-min Energy Boost", "Cold water splash, light stretches or ten jumping jacks.", 5, 5),
    C.MEAL: ActivityTemplate("Nourishing Meal", "Protein and complex carbs, eaten slowly without screens.", 25, 30),
    C.YOGA: ActivityTemplate("{minutes}-min Restorative Yoga", "Slow flow focused on breath and mobility.", 20, 30),
    C.SWIMMING: ActivityTemplate("{minutes}-min Easy Swim", "Relaxed laps, gentle on the joints.", 30, 45),
    C.NATURE: ActivityTemplate("{minutes}-min Nature Walk", "Walk outside and notice the trees, sky and birds.", 15, 20),
    C.CREATIVE: ActivityTemplate("{minutes}-min Creative Time", "Doodle, journal or play music.", 15, 20),
    C.SOCIAL: ActivityTemplate("{minutes}-min Friend Check-in", "Text or call someone you like talking to.", 15, 15),
    C.LEARNING: ActivityTemplate("{minutes}-min Learning", "Read an article, watch a tutorial or listen to a podcast.", 15, 20),
    C.ORGANIZATION: ActivityTemplate("{minutes}-min Tidy & Plan", "Clear the desk, review the calendar, plan tomorrow.", 15, 15),
    C.WORKOUT: ActivityTemplate("{minutes}-min Active Session", "Strength, cardio or a brisk walk: your choice.", 15, 30),
    C.GYM: ActivityTemplate("{minutes}-min Strength Training", "Structured gym session with a warm-up.", 45, 60),
    C.RUNNING: ActivityTemplate("{minutes}-min Run", "Steady run at a conversational pace.", 20, 30),
    C.CYCLING: ActivityTemplate("{minutes}-min Ride", "Road ride or spin class.", 30, 45),
    C.ROCK_CLIMBING: ActivityTemplate("{minutes}-min Bouldering", "Indoor climbing, focus on technique and fun.", 60, 75),
}


@dataclass(frozen=True)
class ProposalContext:
    windows: Sequence[FreeWindow]
    policy: GenerationPolicy
    state: StateSignals
    active_span: TimeInterval


@dataclass(frozen=True)
class ProposalResult:
    """Outcome of one generative call: either raw items or an error description."""

    items: List[Mapping[str, Any]] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, items: Sequence[Mapping[str, Any]]) -> "ProposalResult":
        return cls(items=list(items), error=None)

    @classmethod
    def failure(cls, reason: str) -> "ProposalResult":
        return cls(items=[], error=reason)


class ActivityProposer:
    """Generative backend interface."""

    name = "base"

    def propose(self, context: ProposalContext) -> ProposalResult:
        raise NotImplementedError


@dataclass
class CandidateBatch:
    candidates: List[ActivityCandidate]
    source: str
    fallback_reason: Optional[str] = None
    malformed: int = 0
    disallowed: int = 0

    @property
    def fallback_used(self) -> bool:
        return self.source == "fallback"


class ProposedActivity(BaseModel):
    category: ActivityCategory
    title: str
    start: str
    end: str
    description: str = ""

    @field_validator("category", mode="before")
    @classmethod
    def _normalize_category(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower().replace(" ", "_").replace("-", "_")
        return value

    @field_validator("title")
    @classmethod
    def _require_title(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("title must not be empty")
        return value


def generate_candidates(
    windows: Sequence[FreeWindow],
    policy: GenerationPolicy,
    state: StateSignals,
    *,
    active_span: TimeInterval,
    proposer: Optional[ActivityProposer] = None,
    timeout_seconds: float = 20.0,
) -> CandidateBatch:
    """
    Ask the generative backend for candidates, falling back to templates.

    Any failure, timeout or unusable payload routes to the rule-based path; this
    function does not raise for well-formed inputs. Returned candidates are not
    yet validated.
    """
    if not windows or policy.target_count <= 0:
        return CandidateBatch(candidates=[], source="fallback", fallback_reason="no free windows")
    if proposer is None:
        return _fallback_batch(windows, policy, "generative backend disabled")

    context = ProposalContext(windows=windows, policy=policy, state=state, active_span=active_span)
    result = _call_with_timeout(proposer, context, timeout_seconds)
    if not result.ok:
        return _fallback_batch(windows, policy, result.error or "generative backend failed")

    candidates: List[ActivityCandidate] = []
    malformed = 0
    disallowed = 0
    for item in result.items:
        candidate = parse_proposed_activity(item, active_span)
        if candidate is None:
            malformed += 1
            continue
        if not policy.allows(candidate.category):
            disallowed += 1
            continue
        candidates.append(candidate)

    if not candidates:
        batch = _fallback_batch(windows, policy, "no usable proposals")
        batch.malformed = malformed
        batch.disallowed = disallowed
        return batch
    if malformed or disallowed:
        logger.info("Dropped %s malformed and %s disallowed proposals", malformed, disallowed)
    return CandidateBatch(
        candidates=candidates,
        source="generative",
        malformed=malformed,
        disallowed=disallowed,
    )


def parse_proposed_activity(item: Any, active_span: TimeInterval) -> Optional[ActivityCandidate]:
    """Turn one raw proposal into a candidate, or None when it is malformed."""
    if not isinstance(item, Mapping):
        return None
    try:
        proposed = ProposedActivity.model_validate(item)
        start = _anchor(proposed.start, active_span)
        end = _anchor(proposed.end, active_span)
        interval = TimeInterval(start, end)
    except (ValidationError, ScheduleInputError, ValueError, TypeError):
        return None
    return ActivityCandidate(
        category=proposed.category,
        title=proposed.title,
        interval=interval,
        description=proposed.description,
    )


def fallback_candidates(windows: Sequence[FreeWindow], policy: GenerationPolicy) -> List[ActivityCandidate]:
    """
    Deterministically fill the largest windows first.

    One activity per window per pass, categories rotating in policy order, each
    placed at the earliest instant that keeps the policy spacing from every
    activity already placed.
    """
    categories = list(policy.allowed_categories)
    if policy.target_count <= 0 or not categories:
        return []

    ordered = sorted(windows, key=lambda window: (-window.minutes, window.start))
    cursors = [window.start for window in ordered]
    placed: List[ActivityCandidate] = []
    rotation = 0
    progress = True
    while progress and len(placed) < policy.target_count:
        progress = False
        for index, window in enumerate(ordered):
            if len(placed) >= policy.target_count:
                break
            candidate = _place_in_window(window, cursors[index], categories, rotation, placed, policy.min_spacing_minutes)
            if candidate is None:
                continue
            placed.append(candidate)
            cursors[index] = candidate.interval.end + timedelta(minutes=policy.min_spacing_minutes)
            rotation = (categories.index(candidate.category) + 1) % len(categories)
            progress = True
    return placed


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _call_with_timeout(proposer: ActivityProposer, context: ProposalContext, timeout_seconds: float) -> ProposalResult:
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="activity-proposer")
    future = executor.submit(proposer.propose, context)
    try:
        result = future.result(timeout=timeout_seconds)
    except FutureTimeoutError:
        return ProposalResult.failure(f"{proposer.name} timed out after {timeout_seconds:g}s")
    except Exception as exc:
        return ProposalResult.failure(f"{proposer.name} failed: {exc}")
    finally:
        executor.shutdown(wait=False, cancel_futures=True)
    if not isinstance(result, ProposalResult):
        return ProposalResult.failure(f"{proposer.name} returned {type(result).__name__}")
    return result


def _fallback_batch(windows: Sequence[FreeWindow], policy: GenerationPolicy, reason: str) -> CandidateBatch:
    logger.info("Using rule-based activities (%s)", reason)
    return CandidateBatch(candidates=fallback_candidates(windows, policy), source="fallback", fallback_reason=reason)


def _place_in_window(
    window: FreeWindow,
    cursor: datetime,
    categories: List[ActivityCategory],
    rotation: int,
    placed: List[ActivityCandidate],
    spacing: int,
) -> Optional[ActivityCandidate]:
    for offset in range(len(categories)):
        category = categories[(rotation + offset) % len(categories)]
        template = ACTIVITY_TEMPLATES[category]
        for minutes in dict.fromkeys((template.default_minutes, template.min_minutes)):
            interval = _earliest_slot(window, cursor, minutes, placed, spacing)
            if interval is None:
                continue
            return ActivityCandidate(
                category=category,
                title=template.title.format(minutes=minutes),
                interval=interval,
                description=template.description,
            )
    return None


def _earliest_slot(
    window: FreeWindow,
    cursor: datetime,
    minutes: int,
    placed: List[ActivityCandidate],
    spacing: int,
) -> Optional[TimeInterval]:
    start = max(cursor, window.start)
    duration = timedelta(minutes=minutes)
    while start + duration <= window.end:
        interval = TimeInterval(start, start + duration)
        blocking = [item.interval for item in placed if not is_spaced_from(interval, [item.interval], spacing)]
        if not blocking:
            return interval
        start = max(item.end for item in blocking) + timedelta(minutes=spacing)
    return None


def _is_clock_only(value: str) -> bool:
    return "T" not in value and len(value.strip()) <= 8


def _anchor(value: str, active_span: TimeInterval) -> datetime:
    """Resolve an ISO datetime or an ``HH:MM`` clock time against the active span."""
    raw = value.strip()
    tz = active_span.start.tzinfo
    if _is_clock_only(raw):
        clock = time.fromisoformat(raw)
        anchored = datetime.combine(active_span.start.date(), clock, tzinfo=tz)
        if anchored < active_span.start and anchored + timedelta(days=1) <= active_span.end:
            anchored += timedelta(days=1)
        return anchored
    parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=tz)
    return parsed
