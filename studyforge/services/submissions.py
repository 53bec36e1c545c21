"""Assignment submission state machine.

    (new) ──submit──▶ Submitted ──AI grade──▶ Graded
       │                 │  ▲
       │      grading    │  │ retry_grading / resubmit
       │      gave up    ▼  │
       │             PendingReview ──grade_manually──▶ Graded
       │
       └─submit after due date──▶ UnlockRequested ──decide──▶ Unlocked ──submit──▶ Submitted
                                          │
                                          └──────decide──────▶ UnlockDenied

request_unlock() moves any submission to UnlockRequested.

This service is the only writer of AssignmentSubmission.status.  Every
write is a compare-and-set on the row's version: when another writer got
there first the current row is re-read and the guard re-evaluated, so a
stale read can never overwrite a newer transition.  Grading deliveries are
at-least-once; the grading handler only acts on a Submitted row and treats
anything else as a stale duplicate.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, replace
from datetime import timedelta
from typing import Any

from studyforge.core.clock import Clock, utcnow
from studyforge.core.errors import (
    ConflictError,
    DownstreamFailure,
    FatalJobError,
    InvalidStateTransition,
    NotFoundError,
    ValidationError,
)
from studyforge.models.course import CourseAssignment
from studyforge.models.events import ASSIGNMENT_GRADE, AssignmentGradePayload
from studyforge.models.submission import AssignmentSubmission, SubmissionStatus
from studyforge.repos.course_repo import CourseRepo
from studyforge.repos.submission_repo import SubmissionRepo
from studyforge.services.ai_model import ContentModel
from studyforge.services.dispatcher import EventBus
from studyforge.services.notifier import Notifier, notify_quietly

logger = logging.getLogger(__name__)

S = SubmissionStatus

SUBMISSION_TYPES = frozenset({"text", "code", "document", "url"})

RESUBMITTABLE = frozenset({S.SUBMITTED, S.PENDING_REVIEW, S.UNLOCKED})
RETRYABLE = frozenset({S.PENDING_REVIEW, S.SUBMITTED})
MANUALLY_GRADABLE = frozenset({S.PENDING_REVIEW, S.SUBMITTED})

RETRY_FEEDBACK = "Retrying AI grading..."
FALLBACK_FEEDBACK = (
    "AI grading encountered an error. Your submission has been saved. "
    "Retry AI grading later or wait for an instructor to review it."
)
LATE_REASON = "Submitted after the due date"
REMINDER_WINDOW = timedelta(days=3)


@dataclass(frozen=True, slots=True)
class Grade:
    score: int
    feedback: str
    strengths: tuple[str, ...] = ()
    improvements: tuple[str, ...] = ()


def parse_grade(raw: Any) -> Grade:
    """Validate the model's grading answer; clamps score to 0..100."""
    if not isinstance(raw, dict) or "score" not in raw:
        raise DownstreamFailure("grading response has no score")
    try:
        score = round(float(raw["score"]))
    except (TypeError, ValueError):
        raise DownstreamFailure(f"grading score is not a number: {raw['score']!r}") from None

    def _strings(value: Any) -> tuple[str, ...]:
        if not isinstance(value, list):
            return ()
        return tuple(str(v) for v in value if v)

    return Grade(
        score=max(0, min(100, score)),
        feedback=str(raw.get("feedback") or ""),
        strengths=_strings(raw.get("strengths")),
        improvements=_strings(raw.get("improvements")),
    )


def build_grading_prompt(
    assignment: CourseAssignment, submission: AssignmentSubmission
) -> str:
    rubric = "\n".join(f"- {k}: {v}" for k, v in assignment.rubric.items())
    kind = "CODE" if submission.submission_type == "code" else "TEXT"
    return (
        "You are a strict assignment grader. Grade only on correctness, "
        "not on effort, length or formatting.\n\n"
        f"Title: {assignment.title}\n"
        f"Description: {assignment.description}\n"
        + (f"Rubric:\n{rubric}\n" if rubric else "")
        + f"Submission type: {kind}"
        + (f" ({submission.language})" if submission.language else "")
        + f"\n\nSTUDENT ANSWER:\n{submission.content}\n\n"
        "Scoring: 90-100 fully correct, 70-89 mostly correct, 40-69 partially "
        "correct, 1-39 very few correct elements, 0 wrong or irrelevant.\n"
        'Return ONLY JSON: {"score": <0-100>, "feedback": "...", '
        '"strengths": ["..."], "improvements": ["..."]}'
    )


class SubmissionService:
    def __init__(
        self,
        repo: SubmissionRepo,
        courses: CourseRepo,
        bus: EventBus,
        model: ContentModel,
        notifier: Notifier,
        *,
        clock: Clock = utcnow,
        max_cas_attempts: int = 5,
    ) -> None:
        self._repo = repo
        self._courses = courses
        self._bus = bus
        self._model = model
        self._notifier = notifier
        self._clock = clock
        self._max_cas_attempts = max_cas_attempts

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, assignment_id: str, student_email: str) -> AssignmentSubmission:
        sub = await self._repo.get(assignment_id, student_email)
        if sub is None:
            raise NotFoundError(
                f"no submission for assignment {assignment_id} by {student_email}"
            )
        return sub

    async def list_by_status(
        self, status: SubmissionStatus, limit: int = 100
    ) -> list[AssignmentSubmission]:
        return await self._repo.list_by_status(status, limit)

    # ------------------------------------------------------------------
    # Student actions
    # ------------------------------------------------------------------

    async def submit(
        self,
        *,
        assignment_id: str,
        course_id: str,
        student_email: str,
        content: str,
        submission_type: str = "text",
        language: str | None = None,
        unlock_reason: str | None = None,
    ) -> AssignmentSubmission:
        if submission_type not in SUBMISSION_TYPES:
            raise ValidationError(
                f"submission_type must be one of {sorted(SUBMISSION_TYPES)}"
            )
        if not content.strip():
            raise ValidationError("submission content is empty")

        assignment = await self._courses.get_assignment(assignment_id)
        if assignment is None or assignment.course_id != course_id:
            raise NotFoundError(f"assignment {assignment_id} not found in course {course_id}")

        now = self._clock()
        overdue = now > assignment.due_date
        late_reason = unlock_reason or LATE_REASON

        stored: AssignmentSubmission | None = None
        for _ in range(self._max_cas_attempts):
            current = await self._repo.get(assignment_id, student_email)
            if current is None:
                new = AssignmentSubmission.new(
                    assignment_id=assignment_id,
                    course_id=course_id,
                    student_email=student_email,
                    content=content,
                    submission_type=submission_type,
                    status=S.UNLOCK_REQUESTED if overdue else S.SUBMITTED,
                    now=now,
                    language=language,
                    unlock_reason=late_reason if overdue else None,
                )
                if await self._repo.add(new):
                    stored = new
                    break
                continue

            # Past the due date any status except Unlocked turns into an
            # unlock request; before it only the resubmittable ones pass.
            late = overdue and current.status != S.UNLOCKED
            if not late and current.status not in RESUBMITTABLE:
                logger.warning(
                    "Resubmission rejected assignment=%s student=%s status=%s",
                    assignment_id,
                    student_email,
                    current.status.value,
                )
                raise InvalidStateTransition(current.status.value, "resubmit")

            updated = replace(
                current,
                content=content,
                submission_type=submission_type,
                language=language,
                status=S.UNLOCK_REQUESTED if late else S.SUBMITTED,
                unlock_reason=late_reason if late else current.unlock_reason,
                submitted_at=now,
                score=None,
                feedback=None,
                strengths=(),
                improvements=(),
                graded_by=None,
                graded_at=None,
                review_requested=False,
            )
            stored = await self._repo.compare_and_set(updated, current.version)
            if stored is not None:
                break
        if stored is None:
            raise ConflictError("submission changed concurrently, try again")

        if stored.status == S.UNLOCK_REQUESTED:
            logger.info(
                "Late submission held for unlock assignment=%s student=%s",
                assignment_id,
                student_email,
            )
            return stored

        logger.info(
            "Submission received assignment=%s student=%s", assignment_id, student_email
        )
        try:
            await self._send_grade(stored)
        except Exception:
            # Work is saved and stays Submitted; retry_grading re-emits later.
            logger.exception(
                "Could not queue grading for assignment=%s student=%s",
                assignment_id,
                student_email,
            )
        return stored

    async def request_unlock(
        self, assignment_id: str, student_email: str, reason: str
    ) -> AssignmentSubmission:
        if not reason.strip():
            raise ValidationError("an unlock reason is required")

        def _mutate(cur: AssignmentSubmission) -> AssignmentSubmission:
            return replace(
                cur,
                status=S.UNLOCK_REQUESTED,
                unlock_reason=reason,
                decided_by=None,
                decided_at=None,
            )

        return await self._transition(assignment_id, student_email, _mutate)

    async def retry_grading(
        self, assignment_id: str, student_email: str
    ) -> AssignmentSubmission:
        def _mutate(cur: AssignmentSubmission) -> AssignmentSubmission:
            if cur.status not in RETRYABLE:
                raise InvalidStateTransition(cur.status.value, "retry grading")
            return replace(
                cur,
                status=S.SUBMITTED,
                feedback=RETRY_FEEDBACK,
                score=None,
                graded_by=None,
                graded_at=None,
                review_requested=False,
            )

        stored = await self._transition(assignment_id, student_email, _mutate)
        await self._send_grade(stored)
        logger.info(
            "Grading re-queued assignment=%s student=%s", assignment_id, student_email
        )
        return stored

    # ------------------------------------------------------------------
    # Admin actions
    # ------------------------------------------------------------------

    async def decide_unlock(
        self,
        assignment_id: str,
        student_email: str,
        approve: bool,
        decided_by: str,
        *,
        course_id: str | None = None,
    ) -> AssignmentSubmission:
        """UnlockRequested -> Unlocked | UnlockDenied.  Idempotent."""
        target = S.UNLOCKED if approve else S.UNLOCK_DENIED

        def _mutate(cur: AssignmentSubmission) -> AssignmentSubmission | None:
            if course_id is not None and cur.course_id != course_id:
                raise NotFoundError(f"submission not found in course {course_id}")
            if cur.status == target:
                return None
            if cur.status != S.UNLOCK_REQUESTED:
                raise InvalidStateTransition(cur.status.value, "decide unlock")
            return replace(
                cur, status=target, decided_by=decided_by, decided_at=self._clock()
            )

        return await self._transition(assignment_id, student_email, _mutate)

    async def bulk_decide(
        self,
        requests: Iterable[Mapping[str, Any]],
        approve: bool,
        decided_by: str,
    ) -> list[AssignmentSubmission]:
        """Apply one decision to many requests; returns the pairs that succeeded."""
        updated: list[AssignmentSubmission] = []
        for req in requests:
            assignment_id = req.get("assignment_id")
            course_id = req.get("course_id")
            student_email = req.get("student_email")
            if not (assignment_id and course_id and student_email):
                logger.warning("Bulk unlock entry skipped, missing ids: %s", dict(req))
                continue
            try:
                sub = await self.decide_unlock(
                    assignment_id,
                    student_email,
                    approve,
                    decided_by,
                    course_id=course_id,
                )
            except (NotFoundError, InvalidStateTransition) as e:
                logger.warning(
                    "Bulk unlock skipped assignment=%s student=%s: %s",
                    assignment_id,
                    student_email,
                    e,
                )
                continue
            updated.append(sub)
        logger.info(
            "Bulk unlock by %s approve=%s updated=%d", decided_by, approve, len(updated)
        )
        return updated

    async def grade_manually(
        self,
        assignment_id: str,
        student_email: str,
        *,
        score: int,
        feedback: str,
        grader: str,
    ) -> AssignmentSubmission:
        if not 0 <= score <= 100:
            raise ValidationError("score must be between 0 and 100")

        def _mutate(cur: AssignmentSubmission) -> AssignmentSubmission:
            if cur.status not in MANUALLY_GRADABLE:
                raise InvalidStateTransition(cur.status.value, "grade manually")
            return replace(
                cur,
                status=S.GRADED,
                score=score,
                feedback=feedback,
                graded_by=grader,
                graded_at=self._clock(),
                review_requested=False,
            )

        stored = await self._transition(assignment_id, student_email, _mutate)
        await self._notify_graded(stored)
        return stored

    # ------------------------------------------------------------------
    # Grading job (assignment.grade)
    # ------------------------------------------------------------------

    async def handle_grade(self, payload: AssignmentGradePayload) -> None:
        current = await self._repo.get(payload.assignment_id, payload.student_email)
        if current is None:
            raise FatalJobError(f"submission {payload.submission_id} does not exist")
        if current.status != S.SUBMITTED:
            logger.info(
                "Skipping grade for submission=%s, status is %s",
                current.id,
                current.status.value,
            )
            return
        if payload.version is not None and current.version != payload.version:
            logger.info(
                "Skipping stale grade event for submission=%s (v%d, now v%d)",
                current.id,
                payload.version,
                current.version,
            )
            return

        assignment = await self._courses.get_assignment(payload.assignment_id)
        if assignment is None:
            raise FatalJobError(f"assignment {payload.assignment_id} does not exist")

        grade = parse_grade(await self._model.generate(build_grading_prompt(assignment, current)))
        stored = await self.record_ai_grade(
            payload.assignment_id, payload.student_email, grade, graded_version=current.version
        )
        if stored.version == current.version + 1 and stored.status == S.GRADED:
            await self._notify_graded(stored)

    async def handle_grade_failed(
        self, payload: AssignmentGradePayload, exc: BaseException
    ) -> None:
        await self.mark_grading_failed(
            payload.assignment_id, payload.student_email, expected_version=payload.version
        )

    async def record_ai_grade(
        self,
        assignment_id: str,
        student_email: str,
        grade: Grade,
        *,
        graded_version: int | None = None,
    ) -> AssignmentSubmission:
        """Submitted -> Graded.

        `graded_version` is the version of the row the grade was computed
        from.  If the row has moved on since (a resubmission or a retry
        while the model was answering) the grade belongs to content that is
        gone and is dropped; the newer row has its own grading event.
        """

        def _mutate(cur: AssignmentSubmission) -> AssignmentSubmission | None:
            if cur.status != S.SUBMITTED:
                return None
            if graded_version is not None and cur.version != graded_version:
                logger.info(
                    "Dropping grade for submission=%s: graded v%d, now v%d",
                    cur.id,
                    graded_version,
                    cur.version,
                )
                return None
            return replace(
                cur,
                status=S.GRADED,
                score=grade.score,
                feedback=grade.feedback,
                strengths=grade.strengths,
                improvements=grade.improvements,
                graded_by="AI",
                graded_at=self._clock(),
                review_requested=False,
            )

        return await self._transition(assignment_id, student_email, _mutate)

    async def mark_grading_failed(
        self,
        assignment_id: str,
        student_email: str,
        *,
        expected_version: int | None = None,
    ) -> AssignmentSubmission:
        def _mutate(cur: AssignmentSubmission) -> AssignmentSubmission | None:
            if cur.status != S.SUBMITTED:
                return None
            # a newer submission is waiting on its own grading event
            if expected_version is not None and cur.version != expected_version:
                return None
            return replace(
                cur,
                status=S.PENDING_REVIEW,
                feedback=FALLBACK_FEEDBACK,
                graded_by="Fallback",
                graded_at=self._clock(),
                review_requested=True,
            )

        stored = await self._transition(assignment_id, student_email, _mutate)
        if stored.status == S.PENDING_REVIEW:
            logger.warning(
                "Grading gave up, queued for review assignment=%s student=%s",
                assignment_id,
                student_email,
            )
        return stored

    # ------------------------------------------------------------------
    # Due-date reminders
    # ------------------------------------------------------------------

    async def send_due_reminders(self) -> int:
        """Remind enrolled students of assignments due within REMINDER_WINDOW.

        Only students with no submission are reminded, once per assignment:
        the reminder is recorded before it is sent, so overlapping sweeps
        never send it twice.  Returns how many went out.
        """
        now = self._clock()
        due_soon = [
            a
            for a in await self._courses.list_assignments()
            if now < a.due_date <= now + REMINDER_WINDOW
        ]
        sent = 0
        for a in due_soon:
            for enrollment in await self._courses.list_enrollments(a.course_id):
                email = enrollment.student_email
                if await self._repo.get(a.assignment_id, email) is not None:
                    continue
                if not await self._courses.claim_reminder(a.assignment_id, email, now):
                    continue
                if await notify_quietly(
                    self._notifier,
                    "assignment_due",
                    email,
                    {
                        "assignment_id": a.assignment_id,
                        "course_id": a.course_id,
                        "title": a.title,
                        "due_date": a.due_date.isoformat(),
                    },
                ):
                    sent += 1
        if due_soon:
            logger.info("Due-date reminders sent=%d for %d assignments", sent, len(due_soon))
        return sent

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _transition(
        self,
        assignment_id: str,
        student_email: str,
        mutate: Callable[[AssignmentSubmission], AssignmentSubmission | None],
    ) -> AssignmentSubmission:
        """Read, apply `mutate`, compare-and-set; repeat when the write loses.

        `mutate` raises to reject the transition or returns None for a no-op.
        """
        for _ in range(self._max_cas_attempts):
            current = await self.get(assignment_id, student_email)
            updated = mutate(current)
            if updated is None:
                return current
            stored = await self._repo.compare_and_set(updated, current.version)
            if stored is not None:
                if stored.status != current.status:
                    logger.info(
                        "Submission %s %s -> %s",
                        stored.id,
                        current.status.value,
                        stored.status.value,
                    )
                return stored
        raise ConflictError("submission changed concurrently, try again")

    async def _send_grade(self, sub: AssignmentSubmission) -> None:
        await self._bus.send(
            ASSIGNMENT_GRADE,
            AssignmentGradePayload(
                submission_id=sub.id,
                assignment_id=sub.assignment_id,
                course_id=sub.course_id,
                student_email=sub.student_email,
                version=sub.version,
            ),
        )

    async def _notify_graded(self, sub: AssignmentSubmission) -> None:
        await notify_quietly(
            self._notifier,
            "grade_ready",
            sub.student_email,
            {
                "assignment_id": sub.assignment_id,
                "course_id": sub.course_id,
                "score": sub.score,
            },
        )
