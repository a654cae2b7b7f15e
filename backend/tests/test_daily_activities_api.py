from __future__ import annotations

from datetime import datetime, timedelta
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.config import settings
from app.db.deps import get_db
from app.db.models.agent_action_log import AgentActionLog
from app.db.models.calendar_event import CalendarEvent
from app.db.models.daily_generation import DailyGenerationLease, DailyGenerationMarker
from app.db.models.user import User
from app.main import app
from app.services.calendar.base import CalendarWriteError
from app.services.calendar.local import LocalCalendarService

DAY = "2024-05-01"


@pytest.fixture()
def client(monkeypatch):
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )

    @event.listens_for(engine, "connect")
    def set_fk(conn, record):  # pragma: no cover
        cursor = conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    User.__table__.create(bind=engine)
    CalendarEvent.__table__.create(bind=engine)
    DailyGenerationMarker.__table__.create(bind=engine)
    DailyGenerationLease.__table__.create(bind=engine)
    AgentActionLog.__table__.create(bind=engine)

    def override_get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    monkeypatch.setattr(settings, "generation_provider", "none")
    monkeypatch.setattr(settings, "default_timezone", "UTC")
    with TestClient(app) as test_client:
        yield test_client, TestingSessionLocal
    app.dependency_overrides.clear()


def _request(user_id, **overrides):
    body = {
        "user_id": str(user_id),
        "calendar_date": DAY,
        "commitments": [
            {"start": f"{DAY}T09:00:00+00:00", "end": f"{DAY}T10:00:00+00:00", "label": "Standup"},
        ],
        "active_hours": {"wake": "07:00", "sleep": "22:00"},
        "timezone": "UTC",
        "state_signals": {"mood_score": 6, "energy_level": "medium", "stress_level": "low"},
    }
    body.update(overrides)
    return body


def _parse(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _activity_events(session_factory, user_id):
    session = session_factory()
    try:
        return session.query(CalendarEvent).filter(CalendarEvent.user_id == user_id, CalendarEvent.kind == "activity").count()
    finally:
        session.close()


def test_generate_then_already_generated(client) -> None:
    test_client, session_factory = client
    user_id = uuid4()

    first = test_client.post("/daily-activities/generate", json=_request(user_id))
    assert first.status_code == 200
    data = first.json()
    assert data["status"] == "generated"
    assert data["already_generated"] is False
    assert data["intensity"]["level"] == "low"
    assert data["intensity"]["ratio"] == pytest.approx(60 / 900, abs=1e-4)
    assert 0 < len(data["activities"]) <= 13
    assert len(data["written_ids"]) == len(data["activities"])
    assert data["fallback_used"] is True
    assert data["reasoning"].startswith("Generated")
    assert data["request_id"]

    starts = [_parse(item["start"]) for item in data["activities"]]
    assert starts == sorted(starts)
    for earlier, later in zip(data["activities"], data["activities"][1:]):
        gap = _parse(later["start"]) - _parse(earlier["end"])
        assert gap >= timedelta(minutes=20)
    for item in data["activities"]:
        assert not (_parse(item["start"]) < _parse(f"{DAY}T10:05:00+00:00") and _parse(item["end"]) > _parse(f"{DAY}T08:55:00+00:00"))

    written = _activity_events(session_factory, user_id)
    assert written == len(data["activities"])

    second = test_client.post("/daily-activities/generate", json=_request(user_id))
    assert second.status_code == 200
    again = second.json()
    assert again["status"] == "already_generated"
    assert again["already_generated"] is True
    assert again["activities"] == []
    assert again["intensity"]["level"] == "low"
    assert _activity_events(session_factory, user_id) == written


def test_full_day_reports_schedule_full_and_retries(client) -> None:
    test_client, session_factory = client
    user_id = uuid4()
    body = _request(
        user_id,
        commitments=[{"start": f"{DAY}T06:00:00+00:00", "end": f"{DAY}T23:00:00+00:00"}],
    )

    first = test_client.post("/daily-activities/generate", json=body)
    second = test_client.post("/daily-activities/generate", json=body)

    assert first.status_code == 200
    assert first.json()["status"] == "schedule_full"
    assert first.json()["activities"] == []
    assert first.json()["intensity"]["level"] == "high"
    assert second.json()["status"] == "schedule_full"
    assert second.json()["already_generated"] is False


def test_busy_day_is_short_and_calming(client) -> None:
    test_client, _ = client
    body = _request(
        uuid4(),
        commitments=[{"start": f"{DAY}T07:00:00+00:00", "end": f"{DAY}T19:00:00+00:00"}],
    )

    resp = test_client.post("/daily-activities/generate", json=body)

    data = resp.json()
    assert data["intensity"]["ratio"] == pytest.approx(0.8)
    assert 0 < len(data["activities"]) <= 4
    assert {item["category"] for item in data["activities"]} <= {"breathing", "hydration", "sensory", "stretch", "transition"}


def test_invalid_commitment_is_rejected(client) -> None:
    test_client, session_factory = client
    body = _request(
        uuid4(),
        commitments=[{"start": f"{DAY}T10:00:00+00:00", "end": f"{DAY}T09:00:00+00:00"}],
    )

    resp = test_client.post("/daily-activities/generate", json=body)

    assert resp.status_code == 422
    session = session_factory()
    try:
        assert session.query(DailyGenerationMarker).count() == 0
        assert session.query(User).count() == 0
    finally:
        session.close()


@pytest.mark.parametrize(
    "overrides",
    [
        {"active_hours": {"wake": "07:00", "sleep": "07:00"}},
        {"active_hours": {"wake": "seven", "sleep": "22:00"}},
        {"timezone": "Mars/Olympus_Mons"},
    ],
)
def test_invalid_configuration_is_422(client, overrides) -> None:
    test_client, session_factory = client

    resp = test_client.post("/daily-activities/generate", json=_request(uuid4(), **overrides))

    assert resp.status_code == 422
    session = session_factory()
    try:
        assert session.query(User).count() == 0
        assert session.query(AgentActionLog).count() == 0
    finally:
        session.close()


def test_commitments_default_to_calendar(client) -> None:
    test_client, _ = client
    user_id = uuid4()
    created = test_client.post(
        "/calendar/commitments",
        json={
            "user_id": str(user_id),
            "calendar_date": DAY,
            "start": f"{DAY}T09:00:00+00:00",
            "end": f"{DAY}T10:00:00+00:00",
            "title": "Standup",
        },
    )
    assert created.status_code == 201

    body = _request(user_id)
    body.pop("commitments")
    resp = test_client.post("/daily-activities/generate", json=body)

    assert resp.status_code == 200
    assert resp.json()["intensity"]["ratio"] == pytest.approx(60 / 900, abs=1e-4)

    events = test_client.get("/calendar/events", params={"user_id": str(user_id), "calendar_date": DAY}).json()["events"]
    assert {event["kind"] for event in events} == {"commitment", "activity"}


def test_preview_reports_windows_and_policy(client) -> None:
    test_client, _ = client
    user_id = uuid4()
    test_client.put(f"/users/{user_id}/active-hours", json={"wake": "07:00", "sleep": "22:00", "timezone": "UTC"})
    test_client.post(
        "/calendar/commitments",
        json={
            "user_id": str(user_id),
            "calendar_date": DAY,
            "start": f"{DAY}T09:00:00+00:00",
            "end": f"{DAY}T10:00:00+00:00",
        },
    )

    resp = test_client.get("/daily-activities/preview", params={"user_id": str(user_id), "calendar_date": DAY})

    assert resp.status_code == 200
    data = resp.json()
    assert [w["minutes"] for w in data["windows"]] == [115, 715]
    assert {w["size"] for w in data["windows"]} == {"large"}
    assert data["policy"]["rule"] == "expansive"
    assert data["policy"]["target_count"] == 13
    assert data["already_generated"] is False


def test_reset_allows_regeneration(client) -> None:
    test_client, session_factory = client
    user_id = uuid4()
    first = test_client.post("/daily-activities/generate", json=_request(user_id)).json()

    reset = test_client.post("/daily-activities/reset", json={"user_id": str(user_id), "calendar_date": DAY})
    assert reset.status_code == 200
    assert reset.json()["marker_cleared"] is True
    assert reset.json()["activities_removed"] == len(first["activities"])
    assert _activity_events(session_factory, user_id) == 0

    again = test_client.post("/daily-activities/generate", json=_request(user_id))
    assert again.json()["status"] == "generated"

    history = test_client.get("/daily-activities/history", params={"user_id": str(user_id)})
    assert history.status_code == 200
    statuses = sorted(item["status"] for item in history.json()["items"])
    assert statuses == ["generated", "generated", "reset"]


def test_reset_unknown_user_is_404(client) -> None:
    test_client, _ = client

    resp = test_client.post("/daily-activities/reset", json={"user_id": str(uuid4()), "calendar_date": DAY})

    assert resp.status_code == 404


def test_calendar_failure_is_502_and_keeps_day_open(client, monkeypatch) -> None:
    test_client, _ = client
    user_id = uuid4()

    def failing_write(self, user_id, calendar_date, activities):
        raise CalendarWriteError("calendar unavailable", written_ids=["evt-1"])

    with monkeypatch.context() as patch:
        patch.setattr(LocalCalendarService, "write_activities", failing_write)
        resp = test_client.post("/daily-activities/generate", json=_request(user_id))

    assert resp.status_code == 502
    assert resp.json()["detail"]["written_ids"] == ["evt-1"]

    retry = test_client.post("/daily-activities/generate", json=_request(user_id))
    assert retry.json()["status"] == "generated"



def test_retry_after_partial_calendar_write_fills_the_day(client, monkeypatch) -> None:
    test_client, session_factory = client
    user_id = uuid4()
    original = LocalCalendarService._upsert_activity
    calls = {"count": 0}

    def flaky_upsert(self, *args, **kwargs):
        calls["count"] += 1
        if calls["count"] == 2:
            raise OperationalError("INSERT INTO calendar_events", {}, Exception("database is locked"))
        return original(self, *args, **kwargs)

    with monkeypatch.context() as patch:
        patch.setattr(LocalCalendarService, "_upsert_activity", flaky_upsert)
        failed = test_client.post("/daily-activities/generate", json=_request(user_id))

    assert failed.status_code == 502
    assert len(failed.json()["detail"]["written_ids"]) == 1
    assert _activity_events(session_factory, user_id) == 1

    retry = test_client.post("/daily-activities/generate", json=_request(user_id))

    assert retry.status_code == 200
    data = retry.json()
    assert data["status"] == "generated"
    assert data["already_generated"] is False
    assert failed.json()["detail"]["written_ids"][0] in data["written_ids"]
    assert _activity_events(session_factory, user_id) == len(data["activities"])
    session = session_factory()
    try:
        marker = session.query(DailyGenerationMarker).one()
        assert marker.status == "complete"
    finally:
        session.close()

    again = test_client.post("/daily-activities/generate", json=_request(user_id))
    assert again.json()["status"] == "already_generated"


def test_generative_backend_output_is_used_when_valid(client, monkeypatch) -> None:
    from app.services import daily_activities as service
    from app.services.scheduling.candidates import ActivityProposer, ProposalResult

    class _Proposer(ActivityProposer):
        name = "stub"

        def propose(self, context):
            return ProposalResult.success(
                [
                    {"category": "yoga", "title": "Gentle Yoga", "start": "07:30", "end": "08:00"},
                    {"category": "yoga", "title": "Overlaps standup", "start": "09:00", "end": "09:30"},
                ]
            )

    monkeypatch.setattr(service, "get_activity_proposer", lambda: _Proposer())
    test_client, _ = client

    resp = test_client.post("/daily-activities/generate", json=_request(uuid4()))

    data = resp.json()
    assert data["fallback_used"] is False
    assert [item["title"] for item in data["activities"]] == ["Gentle Yoga"]
    assert data["rejected_candidates"] == 1


def test_unplaceable_proposals_fall_back_to_rule_based_activities(client, monkeypatch) -> None:
    from app.services import daily_activities as service
    from app.services.scheduling.candidates import ActivityProposer, ProposalResult

    class _Proposer(ActivityProposer):
        name = "stub"

        def propose(self, context):
            return ProposalResult.success(
                [{"category": "yoga", "title": "Overlaps standup", "start": "09:00", "end": "09:30"}]
            )

    monkeypatch.setattr(service, "get_activity_proposer", lambda: _Proposer())
    test_client, _ = client

    resp = test_client.post("/daily-activities/generate", json=_request(uuid4()))

    data = resp.json()
    assert data["status"] == "generated"
    assert data["fallback_used"] is True
    assert data["activities"]
    assert data["rejected_candidates"] >= 1
    assert "No free time" not in data["reasoning"]


def test_reasoning_separates_full_day_from_nothing_fitting() -> None:
    from app.services.daily_activities import build_reasoning
    from app.services.scheduling.strategy import StateSignals
    from app.services.scheduling.windows import IntensityLevel, IntensityScore

    intensity = IntensityScore(ratio=0.1, level=IntensityLevel.LOW, busy_minutes=90, active_minutes=900)

    assert "No free time left today" in build_reasoning(StateSignals(), intensity, [])
    nothing_fit = build_reasoning(StateSignals(), intensity, [], has_free_time=True)
    assert "No activity fit" in nothing_fit
    assert "No free time" not in nothing_fit
