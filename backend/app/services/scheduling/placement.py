"""Greedy placement validation for proposed activities."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Sequence

from app.services.scheduling.intervals import BusyBlock, TimeInterval
from app.services.scheduling.strategy import ActivityCategory
from app.services.scheduling.windows import FreeWindow


@dataclass(frozen=True)
class ActivityCandidate:
    category: ActivityCategory
    title: str
    interval: TimeInterval
    description: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category.value,
            "title": self.title,
            "start": self.interval.start.isoformat(),
            "end": self.interval.end.isoformat(),
            "description": self.description,
        }


@dataclass(frozen=True)
class PlacedActivity(ActivityCandidate):
    """A candidate that passed every placement check."""

    @classmethod
    def from_candidate(cls, candidate: ActivityCandidate) -> "PlacedActivity":
        return cls(
            category=candidate.category,
            title=candidate.title,
            interval=candidate.interval,
            description=candidate.description,
        )


def fits_in_some_window(interval: TimeInterval, windows: Iterable[FreeWindow]) -> bool:
    return any(window.interval.contains(interval) for window in windows)


def is_spaced_from(interval: TimeInterval, others: Iterable[TimeInterval], min_spacing_minutes: int) -> bool:
    """True when ``interval`` keeps ``min_spacing_minutes`` from every other interval."""
    return all(interval.gap_to(other) >= min_spacing_minutes for other in others)


def validate_placements(
    candidates: Sequence[ActivityCandidate],
    windows: Sequence[FreeWindow],
    busy_blocks: Sequence[BusyBlock],
    min_spacing_minutes: int,
) -> List[PlacedActivity]:
    """
    Accept candidates in order, dropping any that do not fit.

    A candidate must sit fully inside one free window, stay clear of every busy
    block, and keep ``min_spacing_minutes`` from every activity accepted before
    it (earlier and later starting alike). Candidates are never moved.
    """
    placed: List[PlacedActivity] = []
    for candidate in candidates:
        interval = candidate.interval
        if not fits_in_some_window(interval, windows):
            continue
        if any(interval.overlaps(block) for block in busy_blocks):
            continue
        if not is_spaced_from(interval, (item.interval for item in placed), min_spacing_minutes):
            continue
        placed.append(PlacedActivity.from_candidate(candidate))
    return placed
