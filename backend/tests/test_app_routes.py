"""Regression tests for application route registration."""
from fastapi.routing import APIRoute

from app.main import app


def _routes(path: str, method: str) -> list[APIRoute]:
    return [
        route
        for route in app.routes
        if isinstance(route, APIRoute) and route.path == path and method in route.methods
    ]


def test_generate_route_registered_once() -> None:
    """Ensure the generation endpoint is not mounted multiple times."""
    assert len(_routes("/daily-activities/generate", "POST")) == 1


def test_operational_routes_registered() -> None:
    expected = [
        ("/daily-activities/preview", "GET"),
        ("/daily-activities/reset", "POST"),
        ("/daily-activities/history", "GET"),
        ("/calendar/commitments", "POST"),
        ("/calendar/events", "GET"),
        ("/users/{user_id}/active-hours", "PUT"),
        ("/users/{user_id}/active-hours", "GET"),
        ("/jobs/run-now", "POST"),
    ]
    for path, method in expected:
        assert _routes(path, method), f"{method} {path} missing"
