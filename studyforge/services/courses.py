"""Courses: creation (paid in credits), enrollment and assignment due dates.

Creating a course debits one credit and leaves the course in Generating
until the assignments.generate job finishes.  Every way out of Generating
other than success (job exhausted, queue unavailable, stale sweep) goes
through _abandon(), whose status compare-and-set makes the refund happen
at most once no matter how many of those paths race.

Due dates are always derived, never stored by hand: 30 days after the
later of the course's creation and its most recent enrollment.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any

from studyforge.core.clock import Clock, utcnow
from studyforge.core.errors import FatalJobError, NotFoundError, ValidationError
from studyforge.models.course import (
    Course,
    CourseAssignment,
    CourseStatus,
    Enrollment,
)
from studyforge.models.events import ASSIGNMENTS_GENERATE, AssignmentsGeneratePayload
from studyforge.repos.course_repo import CourseRepo
from studyforge.services.ai_model import ContentModel
from studyforge.services.dispatcher import EventBus
from studyforge.services.ledger import CreditLedger, normalize_email
from studyforge.services.rate_limiter import RateLimiter, enforce

logger = logging.getLogger(__name__)

COURSE_COST = 1
DUE_AFTER = timedelta(days=30)
STALE_AFTER = timedelta(minutes=30)
DIFFICULTIES = ("Easy", "Medium", "Hard")


def due_date_for(course_created_at: datetime, latest_enrollment: datetime | None) -> datetime:
    anchor = course_created_at
    if latest_enrollment is not None and latest_enrollment > anchor:
        anchor = latest_enrollment
    return anchor + DUE_AFTER


def build_assignment_prompt(payload: AssignmentsGeneratePayload) -> str:
    return (
        f'Generate exactly {payload.count} assignment(s) for a course on "{payload.topic}" '
        f'with difficulty level "{payload.difficulty}".\n'
        "Each assignment should cover the main concepts of the course, have a clear "
        "title, a detailed description of what students should do, be worth 100 "
        "points and have a rubric of grading criteria with point values.\n"
        "Return a JSON array of objects with: title, description, totalPoints, rubric."
    )


def default_assignment(topic: str) -> dict[str, Any]:
    return {
        "title": "Chapter Review Assignment",
        "description": f"Review and summarize the key concepts from the {topic} course.",
        "totalPoints": 100,
        "rubric": {"completeness": 40, "accuracy": 40, "clarity": 20},
    }


def _assignment_specs(raw: Any, payload: AssignmentsGeneratePayload) -> list[dict[str, Any]]:
    items = raw if isinstance(raw, list) else [raw]
    specs = [
        i for i in items if isinstance(i, dict) and i.get("title") and i.get("description")
    ]
    if not specs:
        logger.warning(
            "Model returned no usable assignments for course=%s, using default",
            payload.course_id,
        )
        specs = [default_assignment(payload.topic)]
    return specs[: payload.count]


class CourseService:
    def __init__(
        self,
        repo: CourseRepo,
        ledger: CreditLedger,
        bus: EventBus,
        model: ContentModel,
        limiter: RateLimiter,
        *,
        clock: Clock = utcnow,
    ) -> None:
        self._repo = repo
        self._ledger = ledger
        self._bus = bus
        self._model = model
        self._limiter = limiter
        self._clock = clock

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create_course(
        self,
        *,
        created_by: str,
        topic: str,
        course_type: str = "General",
        difficulty: str = "Medium",
        assignment_count: int = 1,
    ) -> Course:
        created_by = normalize_email(created_by)
        topic = topic.strip()
        if not topic:
            raise ValidationError("topic is required")
        if difficulty not in DIFFICULTIES:
            raise ValidationError(f"difficulty must be one of {list(DIFFICULTIES)}")
        if not 1 <= assignment_count <= 10:
            raise ValidationError("assignment_count must be between 1 and 10")
        # Malformed requests are rejected before they count against the quota
        await enforce(self._limiter, created_by, "course-generation")

        course = Course.new(
            created_by=created_by,
            topic=topic,
            course_type=course_type,
            difficulty=difficulty,
            now=self._clock(),
        )
        # Raises InsufficientCreditsError before anything is stored
        await self._ledger.debit(
            created_by,
            COURSE_COST,
            f"Course creation: {topic}",
            course_id=course.course_id,
            created_by=created_by,
        )
        try:
            await self._repo.add_course(course)
        except Exception:
            logger.exception("Could not store course=%s, refunding", course.course_id)
            await self._refund_unstored(course)
            raise

        try:
            await self._bus.send(
                ASSIGNMENTS_GENERATE,
                AssignmentsGeneratePayload(
                    course_id=course.course_id,
                    created_by=created_by,
                    topic=topic,
                    difficulty=difficulty,
                    count=assignment_count,
                ),
            )
        except Exception:
            logger.exception("Could not queue generation for course=%s", course.course_id)
            await self._abandon(course, CourseStatus.ERROR, "generation could not be queued")
            raise

        logger.info("Course created id=%s by=%s topic=%r", course.course_id, created_by, topic)
        return course

    async def get_course(self, course_id: str) -> Course:
        course = await self._repo.get_course(course_id)
        if course is None:
            raise NotFoundError(f"course {course_id} not found")
        return course

    async def list_assignments(self, course_id: str) -> list[CourseAssignment]:
        await self.get_course(course_id)
        return await self._repo.list_assignments(course_id)

    # ------------------------------------------------------------------
    # Enrollment and due dates
    # ------------------------------------------------------------------

    async def enroll(self, course_id: str, student_email: str) -> Enrollment:
        await self.get_course(course_id)
        enrollment = Enrollment(
            course_id=course_id,
            student_email=normalize_email(student_email),
            enrolled_at=self._clock(),
        )
        stored = await self._repo.enroll(enrollment)
        if stored == enrollment:
            logger.info("Enrolled student=%s course=%s", stored.student_email, course_id)
            await self.recompute_due_dates(course_id)
        return stored

    async def recompute_due_dates(self, course_id: str | None = None) -> int:
        """Re-derive due dates for one course, or all of them.  Returns rows changed."""
        assignments = await self._repo.list_assignments(course_id)
        anchors: dict[str, datetime] = {}
        changed = 0
        for a in assignments:
            due = anchors.get(a.course_id)
            if due is None:
                course = await self._repo.get_course(a.course_id)
                if course is None:
                    logger.warning("Assignment %s has no course, skipping", a.assignment_id)
                    continue
                due = due_date_for(
                    course.created_at, await self._repo.latest_enrollment(a.course_id)
                )
                anchors[a.course_id] = due
            if a.due_date != due:
                await self._repo.set_due_date(a.assignment_id, due)
                changed += 1
        logger.info("Due dates recomputed course=%s changed=%d", course_id or "*", changed)
        return changed

    # ------------------------------------------------------------------
    # assignments.generate job
    # ------------------------------------------------------------------

    async def handle_generate_assignments(self, payload: AssignmentsGeneratePayload) -> None:
        course = await self._repo.get_course(payload.course_id)
        if course is None:
            raise FatalJobError(f"course {payload.course_id} does not exist")
        if course.status != CourseStatus.GENERATING:
            logger.info(
                "Course %s already %s, skipping generation",
                course.course_id,
                course.status.value,
            )
            return

        # A redelivery after a crash between insert and status flip must
        # not add a second set.
        if not await self._repo.list_assignments(course.course_id):
            raw = await self._model.generate(build_assignment_prompt(payload))
            due = due_date_for(
                course.created_at, await self._repo.latest_enrollment(course.course_id)
            )
            now = self._clock()
            await self._repo.add_assignments(
                [
                    CourseAssignment.new(
                        course_id=course.course_id,
                        title=str(spec["title"]),
                        description=str(spec["description"]),
                        due_date=due,
                        now=now,
                        total_points=_points(spec.get("totalPoints")),
                        rubric=spec.get("rubric") if isinstance(spec.get("rubric"), dict) else None,
                    )
                    for spec in _assignment_specs(raw, payload)
                ]
            )

        if await self._repo.transition_course(
            course.course_id, CourseStatus.GENERATING, CourseStatus.READY
        ):
            logger.info("Course %s ready", course.course_id)
        else:
            logger.warning("Course %s left Generating during generation", course.course_id)

    async def handle_generate_failed(
        self, payload: AssignmentsGeneratePayload, exc: BaseException
    ) -> None:
        course = await self._repo.get_course(payload.course_id)
        if course is not None:
            await self._abandon(course, CourseStatus.ERROR, f"generation failed: {exc}")

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def cleanup_stale_courses(
        self, now: datetime | None = None, threshold: timedelta = STALE_AFTER
    ) -> list[str]:
        """Fail and refund courses stuck in Generating longer than threshold."""
        cutoff = (now or self._clock()) - threshold
        stale = await self._repo.list_courses(
            status=CourseStatus.GENERATING, created_before=cutoff
        )
        reaped = [
            c.course_id
            for c in stale
            if await self._abandon(c, CourseStatus.FAILED, "generation timed out")
        ]
        if reaped:
            logger.warning("Reaped %d stale course(s): %s", len(reaped), reaped)
        return reaped

    async def _abandon(self, course: Course, status: CourseStatus, why: str) -> bool:
        if not await self._repo.transition_course(
            course.course_id, CourseStatus.GENERATING, status
        ):
            return False
        await self._ledger.refund(
            course.created_by,
            COURSE_COST,
            f"Refund: {why}",
            course_id=course.course_id,
        )
        logger.warning("Course %s -> %s and refunded: %s", course.course_id, status.value, why)
        return True

    async def _refund_unstored(self, course: Course) -> None:
        try:
            await self._ledger.refund(
                course.created_by,
                COURSE_COST,
                "Refund: course could not be saved",
                course_id=course.course_id,
            )
        except Exception:
            # The debit stays on the ledger with this course_id; reconcile finds it
            logger.exception(
                "Refund failed for unsaved course=%s user=%s",
                course.course_id,
                course.created_by,
            )


def _points(value: Any) -> int:
    try:
        points = int(value)
    except (TypeError, ValueError):
        return 100
    return points if points > 0 else 100
