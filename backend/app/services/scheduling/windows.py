"""Active hours, free-window discovery and schedule intensity."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, tzinfo
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence

from app.services.scheduling.intervals import BusyBlock, ScheduleInputError, TimeInterval, total_minutes

DEFAULT_WAKE = time(hour=7, minute=0)
DEFAULT_SLEEP = time(hour=22, minute=0)


class WindowSize(str, Enum):
    MICRO = "micro"
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"


class IntensityLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class ActiveHoursProfile:
    wake: time
    sleep: time

    def __post_init__(self) -> None:
        if self.wake.tzinfo is not None or self.sleep.tzinfo is not None:
            raise ScheduleInputError("Active hours are wall-clock times without tzinfo")
        if self.wake == self.sleep:
            raise ScheduleInputError("Active hours must span a positive duration")

    @property
    def wraps_midnight(self) -> bool:
        return self.sleep < self.wake

    @property
    def total_minutes(self) -> int:
        wake = self.wake.hour * 60 + self.wake.minute
        sleep = self.sleep.hour * 60 + self.sleep.minute
        span = sleep - wake
        if span <= 0:
            span += 24 * 60
        return span

    def span_for(self, calendar_date: date, tz: tzinfo) -> TimeInterval:
        """Anchor wake/sleep on a calendar date; sleep rolls to the next day when it wraps."""
        start = datetime.combine(calendar_date, self.wake, tzinfo=tz)
        end_date = calendar_date + timedelta(days=1) if self.wraps_midnight else calendar_date
        end = datetime.combine(end_date, self.sleep, tzinfo=tz)
        return TimeInterval(start, end)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "wake": self.wake.strftime("%H:%M"),
            "sleep": self.sleep.strftime("%H:%M"),
            "total_minutes": self.total_minutes,
        }


@dataclass(frozen=True)
class FreeWindow:
    interval: TimeInterval
    size: WindowSize

    @property
    def start(self) -> datetime:
        return self.interval.start

    @property
    def end(self) -> datetime:
        return self.interval.end

    @property
    def minutes(self) -> float:
        return self.interval.minutes


@dataclass(frozen=True)
class IntensityScore:
    ratio: float
    level: IntensityLevel
    busy_minutes: float
    active_minutes: float

    def to_dict(self) -> Dict[str, Any]:
        return {"level": self.level.value, "ratio": round(self.ratio, 4)}


def parse_clock_time(value: Any) -> time:
    """Accept ``time`` objects or ``HH:MM`` / ``HH:MM:SS`` strings."""
    if isinstance(value, time):
        return value.replace(tzinfo=None)
    if not isinstance(value, str):
        raise ScheduleInputError(f"Unsupported clock time: {value!r}")
    try:
        return time.fromisoformat(value.strip())
    except ValueError as exc:
        raise ScheduleInputError(f"Invalid clock time: {value!r}") from exc


def resolve_active_hours(
    profile: Optional[Mapping[str, Any]],
    *,
    default_wake: time = DEFAULT_WAKE,
    default_sleep: time = DEFAULT_SLEEP,
) -> ActiveHoursProfile:
    """
    Build the active window from stored profile data.

    Falls back to the documented default (07:00-22:00) when the profile is
    absent or only half-filled. A profile that is present but malformed is an
    input error, not a reason to silently default.
    """
    if not profile:
        return ActiveHoursProfile(default_wake, default_sleep)
    wake_raw = profile.get("wake")
    sleep_raw = profile.get("sleep")
    if wake_raw in (None, "") or sleep_raw in (None, ""):
        return ActiveHoursProfile(default_wake, default_sleep)
    return ActiveHoursProfile(parse_clock_time(wake_raw), parse_clock_time(sleep_raw))


def classify_window(minutes: float) -> WindowSize:
    if minutes < 10:
        return WindowSize.MICRO
    if minutes < 30:
        return WindowSize.SMALL
    if minutes < 60:
        return WindowSize.MEDIUM
    return WindowSize.LARGE


def find_windows(
    busy_blocks: Sequence[BusyBlock],
    active_span: TimeInterval,
    min_window_minutes: int,
) -> List[FreeWindow]:
    """
    Walk the active span between busy blocks and emit classified free windows.

    ``busy_blocks`` must already be merged and sorted. Windows shorter than
    ``min_window_minutes`` are dropped, never emitted as zero-length windows.
    """
    windows: List[FreeWindow] = []
    cursor = active_span.start

    def _emit(end: datetime) -> None:
        if end <= cursor:
            return
        minutes = (end - cursor).total_seconds() / 60
        if minutes >= min_window_minutes:
            windows.append(FreeWindow(TimeInterval(cursor, end), classify_window(minutes)))

    for block in busy_blocks:
        visible = block.clipped(active_span)
        if visible is None or visible.end <= cursor:
            continue
        _emit(visible.start)
        cursor = max(cursor, visible.end)

    _emit(active_span.end)
    return windows


def classify_intensity(ratio: float) -> IntensityLevel:
    if ratio <= 0.4:
        return IntensityLevel.LOW
    if ratio <= 0.7:
        return IntensityLevel.MEDIUM
    return IntensityLevel.HIGH


def score_intensity(busy_blocks: Sequence[BusyBlock], active_hours: ActiveHoursProfile) -> IntensityScore:
    """Committed minutes over active minutes; the ratio itself is never clamped."""
    active_minutes = float(active_hours.total_minutes)
    busy_minutes = total_minutes(busy_blocks)
    ratio = busy_minutes / active_minutes if active_minutes else 0.0
    return IntensityScore(
        ratio=ratio,
        level=classify_intensity(ratio),
        busy_minutes=busy_minutes,
        active_minutes=active_minutes,
    )
