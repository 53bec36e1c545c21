from __future__ import annotations

import asyncio
import sys
import time
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import jwt
import pytest
from fastapi.testclient import TestClient

from studyforge.core.config import SETTINGS, Settings
from studyforge.core.errors import DownstreamFailure
from studyforge.main import create_app
from studyforge.services.pipeline import Pipeline, build_pipeline
from studyforge.worker import register_handlers

# Ensure repo root is on sys.path so `import studyforge` works under pytest.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

TEST_SETTINGS = Settings(
    app_env="test",
    log_level="info",
    port=8000,
    database_url=None,
    redis_url=None,
    job_backoff_seconds=0,
    storage_retry_delay_seconds=0,
)

START = datetime(2026, 1, 1, 9, 0, tzinfo=UTC)


class FakeClock:
    """Wall clock that only moves when a test says so."""

    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class ScriptedModel:
    """ContentModel double: answers from a queue, then from `default`.

    An exception in the queue is raised instead of returned.
    """

    def __init__(self) -> None:
        self.prompts: list[str] = []
        self.responses: list[Any] = []
        self.default: Any = None

    def script(self, *responses: Any) -> None:
        self.responses.extend(responses)

    async def generate(self, prompt: str) -> Any:
        self.prompts.append(prompt)
        answer = self.responses.pop(0) if self.responses else self.default
        if isinstance(answer, BaseException):
            raise answer
        if answer is None:
            raise DownstreamFailure("no scripted answer")
        return answer


class RecordingNotifier:
    def __init__(self) -> None:
        self.sent: list[tuple[str, str, dict]] = []
        self.fail = False

    async def send(self, kind: str, recipient: str, data: dict[str, Any]) -> None:
        if self.fail:
            raise ConnectionError("relay down")
        self.sent.append((kind, recipient, data))

    def kinds(self) -> list[str]:
        return [kind for kind, _, _ in self.sent]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def model() -> ScriptedModel:
    return ScriptedModel()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def pipeline(
    clock: FakeClock, model: ScriptedModel, notifier: RecordingNotifier
) -> Pipeline:
    """Fresh in-memory pipeline per test; nothing leaks between tests."""
    p = build_pipeline(TEST_SETTINGS, model=model, notifier=notifier, clock=clock)
    register_handlers(p)
    return p


@pytest.fixture
def client(pipeline: Pipeline) -> TestClient:
    return TestClient(create_app(pipeline))


def mint_token(
    username: str = "student@example.com",
    roles: list[str] | None = None,
    name: str = "",
    expires_in: int = 3600,
) -> str:
    """Create a valid HS256 JWT for testing."""
    now = int(time.time())
    claims: dict[str, Any] = {
        "sub": username,
        "roles": roles or ["user"],
        "iat": now,
        "exp": now + expires_in,
    }
    if name:
        claims["name"] = name
    return jwt.encode(claims, SETTINGS.jwt_secret, algorithm="HS256")


def auth(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def token() -> str:
    """Token with default role (user)."""
    return mint_token()


@pytest.fixture
def admin_token() -> str:
    """Token with admin role."""
    return mint_token(username="admin@example.com", roles=["admin"])


# ---------------------------------------------------------------------------
# Seed helpers
# ---------------------------------------------------------------------------


def provision(pipeline: Pipeline, email: str = "student@example.com") -> None:
    asyncio.run(pipeline.ledger.provision_user(email, "Student"))


def ready_course(
    pipeline: Pipeline,
    model: ScriptedModel,
    owner: str = "owner@example.com",
    assignments: int = 1,
) -> tuple[str, list[str]]:
    """Create a course and run its generation job; returns (course_id, assignment_ids)."""
    model.script(
        [
            {
                "title": f"Assignment {i}",
                "description": "Explain the topic in your own words.",
                "totalPoints": 100,
                "rubric": {"accuracy": 60, "clarity": 40},
            }
            for i in range(1, assignments + 1)
        ]
    )

    async def _go() -> tuple[str, list[str]]:
        await pipeline.ledger.provision_user(owner, "Owner")
        course = await pipeline.courses.create_course(
            created_by=owner, topic="Linear Algebra", assignment_count=assignments
        )
        await pipeline.bus.drain()
        listed = await pipeline.courses.list_assignments(course.course_id)
        return course.course_id, [a.assignment_id for a in listed]

    return asyncio.run(_go())
