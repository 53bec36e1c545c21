from __future__ import annotations

import asyncio

import pytest
from fastapi.testclient import TestClient

from studyforge.core.errors import DownstreamFailure
from tests.conftest import auth, mint_token, ready_course

GRADE = {"score": 91, "feedback": "Correct.", "strengths": ["exact"], "improvements": []}


@pytest.fixture
def course(pipeline, model) -> dict[str, str]:
    course_id, assignment_ids = ready_course(pipeline, model)
    return {"course_id": course_id, "assignment_id": assignment_ids[0]}


def _submit(client: TestClient, token: str, course: dict, **extra):
    return client.post(
        "/v1/submissions",
        json={**course, "content": "x = 42", **extra},
        headers=auth(token),
    )


def test_submit_is_accepted_then_graded(
    client: TestClient, pipeline, model, course, token: str
) -> None:
    model.script(GRADE)
    resp = _submit(client, token, course, submission_type="code", language="python")
    assert resp.status_code == 202
    assert resp.json()["status"] == "Submitted"

    asyncio.run(pipeline.bus.drain())

    resp = client.get(f"/v1/submissions/{course['assignment_id']}", headers=auth(token))
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "Graded"
    assert data["score"] == 91
    assert data["graded_by"] == "AI"
    assert data["strengths"] == ["exact"]


def test_resubmit_after_grading_is_409_with_current_status(
    client: TestClient, pipeline, model, course, token: str
) -> None:
    model.script(GRADE)
    _submit(client, token, course)
    asyncio.run(pipeline.bus.drain())

    resp = _submit(client, token, course)
    assert resp.status_code == 409
    assert resp.json()["detail"]["current_status"] == "Graded"


def test_submit_to_unknown_assignment_is_404(client: TestClient, course, token: str) -> None:
    resp = _submit(client, token, {**course, "assignment_id": "missing"})
    assert resp.status_code == 404


def test_unsupported_submission_type_is_422(client: TestClient, course, token: str) -> None:
    assert _submit(client, token, course, submission_type="video").status_code == 422


def test_late_submission_needs_an_unlock(
    client: TestClient, course, clock, token: str, admin_token: str
) -> None:
    clock.advance(days=45)
    resp = _submit(client, token, course, unlock_reason="Hospital stay")
    assert resp.status_code == 202
    assert resp.json()["status"] == "UnlockRequested"

    pending = client.get(
        "/v1/admin/submissions?status=UnlockRequested", headers=auth(admin_token)
    ).json()
    assert [s["unlock_reason"] for s in pending] == ["Hospital stay"]

    decision = {**course, "student_email": "student@example.com", "approve": True}
    resp = client.post(
        "/v1/admin/submissions/unlock-decision", json=decision, headers=auth(admin_token)
    )
    assert resp.status_code == 200
    assert resp.json()["status"] == "Unlocked"
    assert resp.json()["decided_by"] == "admin@example.com"

    # repeating the same decision is harmless
    again = client.post(
        "/v1/admin/submissions/unlock-decision", json=decision, headers=auth(admin_token)
    )
    assert again.json()["decided_at"] == resp.json()["decided_at"]

    assert _submit(client, token, course).json()["status"] == "Submitted"


def test_bulk_unlock_decision(
    client: TestClient, course, clock, admin_token: str
) -> None:
    clock.advance(days=45)
    for student in ("a@example.com", "b@example.com"):
        _submit(client, mint_token(student), course)

    resp = client.post(
        "/v1/admin/submissions/bulk-unlock-decision",
        json={
            "approve": False,
            "requests": [
                {**course, "student_email": "a@example.com"},
                {**course, "student_email": "b@example.com"},
                {**course},
            ],
        },
        headers=auth(admin_token),
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["updated"] == 2
    assert {s["status"] for s in data["submissions"]} == {"UnlockDenied"}


def test_unlock_request_endpoint(
    client: TestClient, pipeline, model, course, token: str
) -> None:
    model.script(GRADE)
    _submit(client, token, course)
    asyncio.run(pipeline.bus.drain())

    resp = client.post(
        f"/v1/submissions/{course['assignment_id']}/unlock-request",
        json={"reason": "I want another attempt"},
        headers=auth(token),
    )
    assert resp.status_code == 200
    assert resp.json()["status"] == "UnlockRequested"


def test_failed_grading_lands_in_review_queue_and_can_be_retried(
    client: TestClient, pipeline, model, course, token: str, admin_token: str
) -> None:
    model.default = DownstreamFailure("model down")
    _submit(client, token, course)
    asyncio.run(pipeline.bus.drain())

    queue = client.get("/v1/admin/submissions", headers=auth(admin_token)).json()
    assert [s["status"] for s in queue] == ["PendingReview"]
    assert queue[0]["review_requested"] is True

    resp = client.post(
        f"/v1/submissions/{course['assignment_id']}/retry-grading", headers=auth(token)
    )
    assert resp.status_code == 202
    assert resp.json()["status"] == "Submitted"
    assert resp.json()["feedback"] == "Retrying AI grading..."


def test_manual_grade_by_admin(
    client: TestClient, pipeline, model, course, token: str, admin_token: str
) -> None:
    model.default = DownstreamFailure("model down")
    _submit(client, token, course)
    asyncio.run(pipeline.bus.drain())

    resp = client.post(
        "/v1/admin/submissions/grade",
        json={
            "assignment_id": course["assignment_id"],
            "student_email": "student@example.com",
            "score": 77,
            "feedback": "Reviewed by hand.",
        },
        headers=auth(admin_token),
    )
    assert resp.status_code == 200
    assert resp.json()["status"] == "Graded"
    assert resp.json()["graded_by"] == "admin@example.com"


def test_students_cannot_read_each_others_submissions(
    client: TestClient, course, token: str, admin_token: str
) -> None:
    _submit(client, token, course)
    path = f"/v1/submissions/{course['assignment_id']}?student_email=student@example.com"

    other = mint_token("other@example.com")
    assert client.get(path, headers=auth(other)).status_code == 403
    assert client.get(path, headers=auth(admin_token)).status_code == 200


def test_eleventh_submission_in_five_minutes_is_429(
    client: TestClient, course, token: str
) -> None:
    statuses = [_submit(client, token, course).status_code for _ in range(11)]
    assert statuses[:10] == [202] * 10
    assert statuses[10] == 429
