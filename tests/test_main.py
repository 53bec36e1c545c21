from __future__ import annotations

from fastapi.testclient import TestClient

from studyforge.main import app, create_app


def test_default_app_runs_jobs_in_process_without_redis() -> None:
    # No REDIS_URL in tests, so the API process is also the worker
    assert app.state.inline_worker is True
    assert "user.create" in app.state.pipeline.bus.events


def test_injected_pipeline_is_not_run_inline(pipeline) -> None:
    built = create_app(pipeline)
    assert built.state.pipeline is pipeline
    assert built.state.inline_worker is False


def test_routes_are_mounted(client: TestClient) -> None:
    paths = {route.path for route in client.app.routes}
    for expected in (
        "/health",
        "/metrics",
        "/v1/users",
        "/v1/credits",
        "/v1/courses",
        "/v1/study-content",
        "/v1/submissions",
        "/v1/leaderboard",
        "/v1/certificates",
    ):
        assert expected in paths
