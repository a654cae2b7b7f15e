"""Map schedule intensity and the person's state to a generation policy."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, Sequence, Tuple

from app.services.scheduling.windows import FreeWindow, IntensityLevel, IntensityScore, WindowSize


class ActivityCategory(str, Enum):
    """Closed set of activity kinds the planner may place."""

    BREATHING = "breathing"
    HYDRATION = "hydration"
    LIGHT_WALK = "light_walk"
    STRETCH = "stretch"
    SENSORY = "sensory"
    TRANSITION = "transition"
    ENERGY_BOOST = "energy_boost"
    MEAL = "meal"
    YOGA = "yoga"
    SWIMMING = "swimming"
    NATURE = "nature"
    CREATIVE = "creative"
    SOCIAL = "social"
    LEARNING = "learning"
    ORGANIZATION = "organization"
    WORKOUT = "workout"
    GYM = "gym"
    RUNNING = "running"
    CYCLING = "cycling"
    ROCK_CLIMBING = "rock_climbing"


class SignalLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class StateSignals:
    mood_score: float = 5.0
    energy_level: SignalLevel = SignalLevel.MEDIUM
    stress_level: SignalLevel = SignalLevel.MEDIUM

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mood_score": self.mood_score,
            "energy_level": self.energy_level.value,
            "stress_level": self.stress_level.value,
        }


@dataclass(frozen=True)
class GenerationPolicy:
    target_count: int
    allowed_categories: Tuple[ActivityCategory, ...]
    min_spacing_minutes: int
    rule: str
    priority: str

    def allows(self, category: ActivityCategory) -> bool:
        return category in self.allowed_categories

    def to_dict(self) -> Dict[str, Any]:
        return {
            "target_count": self.target_count,
            "allowed_categories": [category.value for category in self.allowed_categories],
            "min_spacing_minutes": self.min_spacing_minutes,
            "rule": self.rule,
            "priority": self.priority,
        }


C = ActivityCategory

CALMING_CATEGORIES = (C.BREATHING, C.HYDRATION, C.SENSORY, C.STRETCH, C.TRANSITION)
RESTORATIVE_CATEGORIES = (C.HYDRATION, C.MEAL, C.BREATHING, C.YOGA, C.STRETCH, C.ENERGY_BOOST)
MOOD_LIFT_CATEGORIES = (C.NATURE, C.SOCIAL, C.CREATIVE, C.WORKOUT, C.LIGHT_WALK, C.BREATHING)
BALANCED_CATEGORIES = (
    C.BREATHING,
    C.LIGHT_WALK,
    C.MEAL,
    C.STRETCH,
    C.ORGANIZATION,
    C.LEARNING,
    C.HYDRATION,
    C.TRANSITION,
)
BROAD_CATEGORIES = (
    C.WORKOUT,
    C.YOGA,
    C.SWIMMING,
    C.MEAL,
    C.CREATIVE,
    C.NATURE,
    C.SOCIAL,
    C.LEARNING,
    C.BREATHING,
    C.ORGANIZATION,
    C.STRETCH,
    C.HYDRATION,
)
INTENSE_FITNESS_CATEGORIES = (C.GYM, C.RUNNING, C.CYCLING, C.ROCK_CLIMBING)

DEFAULT_LOW_MOOD_THRESHOLD = 4.0
AMPLE_LARGE_WINDOWS = 2


def select_policy(
    intensity: IntensityScore,
    state: StateSignals,
    windows: Sequence[FreeWindow] = (),
    *,
    low_mood_threshold: float = DEFAULT_LOW_MOOD_THRESHOLD,
) -> GenerationPolicy:
    """
    Pick the generation policy; the first matching rule wins.

    Stress, energy and mood outrank free time: an empty calendar on a
    high-stress day still gets a short, calming schedule.
    """
    if state.stress_level == SignalLevel.HIGH or intensity.level == IntensityLevel.HIGH:
        return GenerationPolicy(
            target_count=3 if intensity.level == IntensityLevel.HIGH else 4,
            allowed_categories=CALMING_CATEGORIES,
            min_spacing_minutes=5,
            rule="calming",
            priority="stress-relief",
        )

    if state.energy_level == SignalLevel.LOW:
        return GenerationPolicy(
            target_count=4,
            allowed_categories=RESTORATIVE_CATEGORIES,
            min_spacing_minutes=10,
            rule="restorative",
            priority="energy-restoration",
        )

    if state.mood_score < low_mood_threshold:
        return GenerationPolicy(
            target_count=5,
            allowed_categories=MOOD_LIFT_CATEGORIES,
            min_spacing_minutes=10,
            rule="mood-lift",
            priority="mood-support",
        )

    large_windows = [window for window in windows if window.size == WindowSize.LARGE]
    if intensity.level == IntensityLevel.LOW and len(large_windows) >= AMPLE_LARGE_WINDOWS:
        free_minutes = int(sum(window.minutes for window in windows))
        categories: Iterable[ActivityCategory] = BROAD_CATEGORIES
        if state.energy_level == SignalLevel.HIGH:
            categories = INTENSE_FITNESS_CATEGORIES + BROAD_CATEGORIES
        return GenerationPolicy(
            target_count=min(15, max(8, free_minutes // 60)),
            allowed_categories=tuple(categories),
            min_spacing_minutes=20 if intensity.ratio <= 0.25 else 15,
            rule="expansive",
            priority="comprehensive",
        )

    return GenerationPolicy(
        target_count=5 if intensity.level == IntensityLevel.LOW else 4,
        allowed_categories=BALANCED_CATEGORIES,
        min_spacing_minutes=10,
        rule="balanced",
        priority="balanced",
    )
