from __future__ import annotations

import asyncio

from fastapi.testclient import TestClient

from tests.conftest import auth, mint_token, ready_course

STUDENT = "student@example.com"


def _graded_with_quiz(pipeline, model) -> str:
    course_id, (assignment_id,) = ready_course(pipeline, model)
    model.script({"score": 70, "feedback": "ok"})

    async def _go():
        await pipeline.submissions.submit(
            assignment_id=assignment_id,
            course_id=course_id,
            student_email=STUDENT,
            content="answer",
        )
        await pipeline.bus.drain()
        await pipeline.mastery.record_assessment(course_id, STUDENT, "sets", "Sets", 90)

    asyncio.run(_go())
    return course_id


def test_certificate_is_queued_then_issued_and_verifiable(
    client: TestClient, pipeline, model
) -> None:
    course_id = _graded_with_quiz(pipeline, model)
    token = mint_token(username=STUDENT, name="Ada Student")

    resp = client.post(f"/v1/courses/{course_id}/certificate", headers=auth(token))
    assert resp.status_code == 202
    assert resp.json() == {"status": "queued", "certificate": None}

    asyncio.run(pipeline.bus.drain())

    resp = client.post(f"/v1/courses/{course_id}/certificate", headers=auth(token))
    body = resp.json()
    assert body["status"] == "issued"
    cert = body["certificate"]
    assert cert["student_name"] == "Ada Student"
    assert cert["final_score"] == 80

    # verification needs no token
    verified = client.get(f"/v1/certificates/{cert['certificate_id']}")
    assert verified.status_code == 200
    assert verified.json()["course_id"] == course_id

    mine = client.get(f"/v1/courses/{course_id}/certificate", headers=auth(token))
    assert mine.json()["certificate_id"] == cert["certificate_id"]
    listed = client.get("/v1/certificates", headers=auth(token)).json()
    assert [c["certificate_id"] for c in listed] == [cert["certificate_id"]]


def test_ineligible_request_is_422(client: TestClient, pipeline, model, token: str) -> None:
    course_id, _ = ready_course(pipeline, model)
    resp = client.post(f"/v1/courses/{course_id}/certificate", headers=auth(token))
    assert resp.status_code == 422
    assert "not graded" in resp.json()["detail"]


def test_unknown_certificate_is_404(client: TestClient) -> None:
    assert client.get("/v1/certificates/not-a-certificate").status_code == 404


def test_missing_own_certificate_is_404(client: TestClient, pipeline, model, token: str) -> None:
    course_id, _ = ready_course(pipeline, model)
    resp = client.get(f"/v1/courses/{course_id}/certificate", headers=auth(token))
    assert resp.status_code == 404


def test_due_reminders_route_is_admin_only(
    client: TestClient, token: str, admin_token: str
) -> None:
    assert client.post("/v1/admin/assignments/reminders", headers=auth(token)).status_code == 403
    resp = client.post("/v1/admin/assignments/reminders", headers=auth(admin_token))
    assert resp.status_code == 200
    assert resp.json() == {"sent": 0}
