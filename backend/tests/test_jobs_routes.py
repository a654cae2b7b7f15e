from __future__ import annotations

from datetime import datetime, timezone
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.config import settings
from app.db.deps import get_db
from app.db.models.agent_action_log import AgentActionLog
from app.db.models.calendar_event import CalendarEvent
from app.db.models.daily_generation import DailyGenerationLease, DailyGenerationMarker
from app.db.models.user import User
from app.main import app


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
    for model in (User, CalendarEvent, DailyGenerationMarker, DailyGenerationLease, AgentActionLog):
        model.__table__.create(bind=engine)

    def override_get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    monkeypatch.setattr(settings, "debug", True)
    monkeypatch.setattr(settings, "generation_provider", "none")
    with TestClient(app) as test_client:
        yield test_client, TestingSessionLocal
    app.dependency_overrides.clear()


def _seed_user(session_factory):
    session = session_factory()
    try:
        user_id = uuid4()
        session.add(User(id=user_id, wake_time="07:00", sleep_time="22:00", timezone="UTC"))
        session.add(
            CalendarEvent(
                user_id=user_id,
                calendar_date=datetime(2024, 5, 1).date(),
                kind="commitment",
                title="Standup",
                start_at=datetime(2024, 5, 1, 9, tzinfo=timezone.utc),
                end_at=datetime(2024, 5, 1, 10, tzinfo=timezone.utc),
            )
        )
        session.commit()
        return user_id
    finally:
        session.close()


def test_jobs_config_and_run_now(client):
    test_client, session_factory = client
    _seed_user(session_factory)

    resp = test_client.get("/jobs")
    assert resp.status_code == 200
    assert resp.json()["schedule"]["daily_time"] == "06:00"

    run_resp = test_client.post("/jobs/run-now", json={"job": "daily_activities", "calendar_date": "2024-05-01"})
    assert run_resp.status_code == 200
    data = run_resp.json()
    assert data["users_processed"] == 1
    assert data["days_generated"] == 1
    assert data["request_id"]

    rerun = test_client.post("/jobs/run-now", json={"calendar_date": "2024-05-01"})
    assert rerun.json()["days_generated"] == 0
    assert rerun.json()["skipped"] == 1


def test_run_now_for_single_user(client):
    test_client, session_factory = client
    user_id = _seed_user(session_factory)

    resp = test_client.post("/jobs/run-now", json={"user_id": str(user_id), "calendar_date": "2024-05-01"})

    assert resp.status_code == 200
    assert resp.json()["days_generated"] == 1


def test_run_now_unknown_user_is_404(client):
    test_client, _ = client

    resp = test_client.post("/jobs/run-now", json={"user_id": str(uuid4())})

    assert resp.status_code == 404


def test_jobs_run_now_forbidden_in_prod(client, monkeypatch):
    test_client, _ = client
    monkeypatch.setattr(settings, "debug", False)

    resp = test_client.post("/jobs/run-now", json={"job": "daily_activities"})

    assert resp.status_code == 403
