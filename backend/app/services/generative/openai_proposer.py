"""OpenAI-backed activity proposer."""
from __future__ import annotations

import json
import logging
from typing import Any, Optional

import openai

from app.services.scheduling.candidates import ActivityProposer, ProposalContext, ProposalResult

logger = logging.getLogger(__name__)


SYSTEM_PROMPT = (
    "You plan short wellness activities for a neurodivergent person (ADHD/anxiety) "
    "around a fixed calendar. Keep suggestions gentle, concrete and doable. "
    "Only use the free windows you are given and never overlap existing commitments."
)


class OpenAIActivityProposer(ActivityProposer):
    name = "openai"

    def __init__(self, api_key: str, *, model: str = "gpt-4o", timeout_seconds: float = 20.0, client: Any = None) -> None:
        self.model = model
        self.client = client or openai.OpenAI(api_key=api_key, timeout=timeout_seconds, max_retries=0)

    def propose(self, context: ProposalContext) -> ProposalResult:
        completion = self.client.chat.completions.create(
            model=self.model,
            response_format={"type": "json_object"},
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": build_user_prompt(context)},
            ],
        )
        content = completion.choices[0].message.content or "{}"
        return parse_completion(content)


def build_user_prompt(context: ProposalContext) -> str:
    policy = context.policy
    state = context.state
    windows = [
        {
            "start": window.start.isoformat(),
            "end": window.end.isoformat(),
            "minutes": int(window.minutes),
            "size": window.size.value,
        }
        for window in context.windows
    ]
    categories = ", ".join(category.value for category in policy.allowed_categories)
    return (
        f"Mood: {state.mood_score:g}/10, Energy: {state.energy_level.value}, Stress: {state.stress_level.value}\n"
        f"Priority: {policy.priority}\n"
        f"Suggest up to {policy.target_count} activities.\n"
        f"Allowed categories: {categories}\n"
        f"Keep at least {policy.min_spacing_minutes} minutes between activities.\n"
        f"Free windows (JSON): {json.dumps(windows)}\n\n"
        "Each activity must sit fully inside one free window. Use ISO 8601 timestamps with offsets.\n"
        "Return ONLY a JSON object shaped like:\n"
        '{"activities": [{"category": "breathing", "title": "5-min Calm Break", '
        '"start": "2024-05-01T10:05:00+00:00", "end": "2024-05-01T10:10:00+00:00", '
        '"description": "Box breathing"}]}'
    )


def parse_completion(content: str) -> ProposalResult:
    """Pull the activity list out of a JSON completion; anything else is a failure."""
    try:
        payload = json.loads(content)
    except json.JSONDecodeError as exc:
        return ProposalResult.failure(f"invalid JSON from model: {exc.msg}")
    activities: Optional[Any] = payload.get("activities") if isinstance(payload, dict) else None
    if not isinstance(activities, list):
        return ProposalResult.failure("model response has no 'activities' list")
    logger.debug("Model proposed %s activities", len(activities))
    return ProposalResult.success(activities)
