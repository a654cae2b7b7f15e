"""Interval arithmetic and commitment merging for the daily planner."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, List


class ScheduleInputError(ValueError):
    """Raised when commitments or active hours cannot be scheduled around."""


@dataclass(frozen=True, order=True)
class TimeInterval:
    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        if self.start.tzinfo is None or self.end.tzinfo is None:
            raise ScheduleInputError("Interval bounds must be timezone-aware")
        if self.end <= self.start:
            raise ScheduleInputError(
                f"Interval end {self.end.isoformat()} must be after start {self.start.isoformat()}"
            )

    @property
    def minutes(self) -> float:
        return (self.end - self.start).total_seconds() / 60

    def overlaps(self, other: "TimeInterval") -> bool:
        return self.start < other.end and other.start < self.end

    def touches_or_overlaps(self, other: "TimeInterval") -> bool:
        return self.start <= other.end and other.start <= self.end

    def contains(self, other: "TimeInterval") -> bool:
        return self.start <= other.start and other.end <= self.end

    def gap_to(self, other: "TimeInterval") -> float:
        """Minutes between two disjoint intervals; negative when they overlap."""
        if other.start >= self.end:
            return (other.start - self.end).total_seconds() / 60
        if self.start >= other.end:
            return (self.start - other.end).total_seconds() / 60
        return -min(self.end - other.start, other.end - self.start).total_seconds() / 60

    def padded(self, minutes: int) -> "TimeInterval":
        delta = timedelta(minutes=minutes)
        return TimeInterval(self.start - delta, self.end + delta)

    def clipped(self, bounds: "TimeInterval") -> "TimeInterval | None":
        start = max(self.start, bounds.start)
        end = min(self.end, bounds.end)
        if end <= start:
            return None
        return TimeInterval(start, end)


@dataclass(frozen=True)
class Commitment:
    """A fixed calendar entry owned by the caller."""

    interval: TimeInterval
    label: str = ""


# Busy blocks are plain intervals; the alias documents where merging already happened.
BusyBlock = TimeInterval


def merge_intervals(intervals: Iterable[TimeInterval]) -> List[TimeInterval]:
    """Sort and coalesce intervals that overlap or touch."""
    merged: List[TimeInterval] = []
    for interval in sorted(intervals, key=lambda item: (item.start, item.end)):
        if merged and merged[-1].touches_or_overlaps(interval):
            last = merged[-1]
            merged[-1] = TimeInterval(last.start, max(last.end, interval.end))
        else:
            merged.append(interval)
    return merged


def merge_commitments(commitments: Iterable[Commitment], buffer_minutes: int) -> List[BusyBlock]:
    """
    Pad every commitment by the transition buffer and merge into busy blocks.

    Zero commitments yield an empty list (a fully free day). Padding that spills
    outside active hours is kept here; the gap finder clips it.
    """
    if buffer_minutes < 0:
        raise ScheduleInputError("buffer_minutes must be non-negative")
    return merge_intervals(commitment.interval.padded(buffer_minutes) for commitment in commitments)


def total_minutes(intervals: Iterable[TimeInterval]) -> float:
    return sum(interval.minutes for interval in intervals)
