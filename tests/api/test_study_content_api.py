from __future__ import annotations

import asyncio

from fastapi.testclient import TestClient

from tests.conftest import auth, ready_course

CARDS = [{"front": f"Term {i}", "back": f"Definition {i}"} for i in range(4)]


def test_request_then_poll_until_ready(
    client: TestClient, pipeline, model, token: str
) -> None:
    course_id, _ = ready_course(pipeline, model)
    model.script(CARDS)

    resp = client.post(
        "/v1/study-content",
        json={"course_id": course_id, "type": "Flashcard", "chapters": "Chapter 1"},
        headers=auth(token),
    )
    assert resp.status_code == 202
    created = resp.json()
    assert created["status"] == "Generating"
    assert created["content"] is None

    asyncio.run(pipeline.bus.drain())

    resp = client.get(f"/v1/study-content/{created['id']}", headers=auth(token))
    assert resp.json()["status"] == "Ready"
    assert resp.json()["content"] == CARDS

    listed = client.get(f"/v1/courses/{course_id}/study-content", headers=auth(token))
    assert [r["id"] for r in listed.json()] == [created["id"]]


def test_unknown_type_is_422(client: TestClient, pipeline, model, token: str) -> None:
    course_id, _ = ready_course(pipeline, model)
    resp = client.post(
        "/v1/study-content",
        json={"course_id": course_id, "type": "Essay", "chapters": "Chapter 1"},
        headers=auth(token),
    )
    assert resp.status_code == 422


def test_unknown_course_is_404(client: TestClient, token: str) -> None:
    resp = client.post(
        "/v1/study-content",
        json={"course_id": "missing", "type": "qa", "chapters": "Chapter 1"},
        headers=auth(token),
    )
    assert resp.status_code == 404


def test_twenty_first_request_is_429_and_creates_nothing(
    client: TestClient, pipeline, model, token: str
) -> None:
    course_id, _ = ready_course(pipeline, model)
    body = {"course_id": course_id, "type": "MCQ", "chapters": "Chapter 2"}

    for _ in range(20):
        assert client.post("/v1/study-content", json=body, headers=auth(token)).status_code == 202

    resp = client.post("/v1/study-content", json=body, headers=auth(token))
    assert resp.status_code == 429
    assert "retry-after" in resp.headers
    listed = client.get(f"/v1/courses/{course_id}/study-content", headers=auth(token))
    assert len(listed.json()) == 20
