"""Tests for the OpenAI activity proposer and backend factory."""
from __future__ import annotations

import json
from datetime import datetime, time, timedelta, timezone
from types import SimpleNamespace

from app.core.config import settings
from app.services.generative import factory
from app.services.generative.openai_proposer import OpenAIActivityProposer, build_user_prompt, parse_completion
from app.services.scheduling.candidates import ProposalContext, generate_candidates
from app.services.scheduling.intervals import TimeInterval
from app.services.scheduling.strategy import SignalLevel, StateSignals, select_policy
from app.services.scheduling.windows import ActiveHoursProfile, FreeWindow, WindowSize, score_intensity

DAY = datetime(2024, 5, 1, tzinfo=timezone.utc)
SPAN = ActiveHoursProfile(time(7), time(22)).span_for(DAY.date(), timezone.utc)
WINDOWS = [FreeWindow(TimeInterval(DAY + timedelta(hours=10), DAY + timedelta(hours=12)), WindowSize.LARGE)]


class _DummyCompletions:
    def __init__(self, content):
        self.content = content
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


class _DummyClient:
    def __init__(self, content):
        self.chat = SimpleNamespace(completions=_DummyCompletions(content))


def _context():
    state = StateSignals(stress_level=SignalLevel.HIGH)
    policy = select_policy(score_intensity([], ActiveHoursProfile(time(7), time(22))), state, WINDOWS)
    return ProposalContext(windows=WINDOWS, policy=policy, state=state, active_span=SPAN)


def test_prompt_describes_policy_and_windows() -> None:
    prompt = build_user_prompt(_context())

    assert "Suggest up to 4 activities" in prompt
    assert "breathing" in prompt
    assert "2024-05-01T10:00:00+00:00" in prompt
    assert "Stress: high" in prompt


def test_proposer_requests_json_and_parses_activities() -> None:
    content = json.dumps(
        {"activities": [{"category": "breathing", "title": "Box breathing", "start": "10:30", "end": "10:40"}]}
    )
    client = _DummyClient(content)
    proposer = OpenAIActivityProposer("test-key", model="gpt-4o-mini", client=client)

    result = proposer.propose(_context())

    call = client.chat.completions.calls[0]
    assert call["model"] == "gpt-4o-mini"
    assert call["response_format"] == {"type": "json_object"}
    assert result.ok
    assert result.items[0]["title"] == "Box breathing"


def test_parse_completion_rejects_bad_shapes() -> None:
    assert not parse_completion("not json").ok
    assert not parse_completion(json.dumps({"items": []})).ok
    assert not parse_completion(json.dumps([1, 2])).ok
    assert parse_completion(json.dumps({"activities": []})).ok


def test_garbage_completion_falls_back_to_rules() -> None:
    context = _context()
    proposer = OpenAIActivityProposer("test-key", client=_DummyClient("```json oops"))

    batch = generate_candidates(
        context.windows,
        context.policy,
        context.state,
        active_span=SPAN,
        proposer=proposer,
    )

    assert batch.fallback_used
    assert "invalid JSON" in batch.fallback_reason
    assert batch.candidates


def test_factory_requires_api_key(monkeypatch) -> None:
    monkeypatch.setattr(settings, "generation_provider", "openai")
    monkeypatch.setattr(settings, "openai_api_key", None)

    assert factory.get_activity_proposer() is None


def test_factory_builds_openai_proposer(monkeypatch) -> None:
    monkeypatch.setattr(settings, "generation_provider", "openai")
    monkeypatch.setattr(settings, "openai_api_key", "sk-test")
    monkeypatch.setattr(settings, "generation_timeout_seconds", 3.0)

    proposer = factory.get_activity_proposer()

    assert isinstance(proposer, OpenAIActivityProposer)
    assert proposer.model == settings.openai_model


def test_factory_can_be_disabled(monkeypatch) -> None:
    monkeypatch.setattr(settings, "generation_provider", "none")

    assert factory.get_activity_proposer() is None
