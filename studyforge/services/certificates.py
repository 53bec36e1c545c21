"""Course completion certificates.

request() checks eligibility and emits certificate.issue; the job re-checks
(grades can change while the task waits) and stores the certificate.  The
(course, student) pair is unique in the store, so a duplicate delivery or
two racing requests end with one certificate and one notification.

A student is eligible when
  - the course is Ready,
  - every assignment of the course is Graded at PASSING_SCORE or above,
  - at least one quiz topic is tracked for the course and the topic
    averages are PASSING_SCORE or above on average.

The final score is the mean of the assignment scores and the quiz average.
"""

from __future__ import annotations

import logging
import uuid
from statistics import fmean

from studyforge.core.clock import Clock, utcnow
from studyforge.core.errors import FatalJobError, NotFoundError, ValidationError
from studyforge.models.certificate import Certificate
from studyforge.models.course import Course, CourseStatus
from studyforge.models.events import CERTIFICATE_ISSUE, CertificateIssuePayload
from studyforge.models.submission import SubmissionStatus
from studyforge.repos.certificate_repo import CertificateRepo
from studyforge.repos.course_repo import CourseRepo
from studyforge.repos.mastery_repo import MasteryRepo
from studyforge.repos.submission_repo import SubmissionRepo
from studyforge.services.dispatcher import EventBus
from studyforge.services.ledger import normalize_email
from studyforge.services.notifier import Notifier, notify_quietly

logger = logging.getLogger(__name__)

PASSING_SCORE = 45


class CertificateService:
    def __init__(
        self,
        repo: CertificateRepo,
        courses: CourseRepo,
        submissions: SubmissionRepo,
        mastery: MasteryRepo,
        bus: EventBus,
        notifier: Notifier,
        *,
        clock: Clock = utcnow,
    ) -> None:
        self._repo = repo
        self._courses = courses
        self._submissions = submissions
        self._mastery = mastery
        self._bus = bus
        self._notifier = notifier
        self._clock = clock

    async def request(
        self, course_id: str, student_email: str, student_name: str = ""
    ) -> Certificate | None:
        """Return the existing certificate, or queue issuance and return None.

        Raises ValidationError naming the first unmet requirement.
        """
        student_email = normalize_email(student_email)
        existing = await self._repo.get_for(course_id, student_email)
        if existing is not None:
            return existing

        await self.final_score(course_id, student_email)
        await self._bus.send(
            CERTIFICATE_ISSUE,
            CertificateIssuePayload(
                course_id=course_id,
                student_email=student_email,
                student_name=student_name,
            ),
        )
        logger.info("Certificate queued course=%s student=%s", course_id, student_email)
        return None

    async def final_score(self, course_id: str, student_email: str) -> int:
        course = await self._ready_course(course_id)
        assignments = await self._courses.list_assignments(course.course_id)
        if not assignments:
            raise ValidationError("course has no assignments yet")

        scores: list[int] = []
        for a in assignments:
            sub = await self._submissions.get(a.assignment_id, student_email)
            if sub is None or sub.status != SubmissionStatus.GRADED or sub.score is None:
                raise ValidationError(f"assignment {a.title!r} is not graded yet")
            if sub.score < PASSING_SCORE:
                raise ValidationError(
                    f"assignment {a.title!r} scored {sub.score}, "
                    f"each assignment needs at least {PASSING_SCORE}"
                )
            scores.append(sub.score)

        topics = await self._mastery.list_for_student(course_id, student_email)
        if not topics:
            raise ValidationError("complete at least one quiz to earn a certificate")
        quiz_average = fmean(t.average_score for t in topics)
        if quiz_average < PASSING_SCORE:
            raise ValidationError(
                f"quiz average must be at least {PASSING_SCORE}, "
                f"yours is {round(quiz_average)}"
            )
        return round(fmean([*scores, quiz_average]))

    async def handle_issue(self, payload: CertificateIssuePayload) -> None:
        if await self._repo.get_for(payload.course_id, payload.student_email) is not None:
            logger.info(
                "Certificate already issued course=%s student=%s",
                payload.course_id,
                payload.student_email,
            )
            return
        try:
            score = await self.final_score(payload.course_id, payload.student_email)
        except (ValidationError, NotFoundError) as e:
            raise FatalJobError(f"no longer eligible: {e}") from e

        course = await self._ready_course(payload.course_id)
        candidate = Certificate.new(
            course_id=payload.course_id,
            student_email=payload.student_email,
            student_name=payload.student_name,
            course_name=course.topic,
            final_score=score,
            now=self._clock(),
        )
        stored = await self._repo.add(candidate)
        if stored.certificate_id != candidate.certificate_id:
            return

        logger.info(
            "Certificate issued id=%s course=%s student=%s score=%d",
            stored.certificate_id,
            stored.course_id,
            stored.student_email,
            stored.final_score,
        )
        await notify_quietly(
            self._notifier,
            "certificate_ready",
            stored.student_email,
            {
                "certificate_id": stored.certificate_id,
                "course_id": stored.course_id,
                "course_name": stored.course_name,
                "final_score": stored.final_score,
            },
        )

    async def get_for(self, course_id: str, student_email: str) -> Certificate:
        cert = await self._repo.get_for(course_id, normalize_email(student_email))
        if cert is None:
            raise NotFoundError(f"no certificate for course {course_id}")
        return cert

    async def verify(self, certificate_id: str) -> Certificate:
        try:
            uuid.UUID(certificate_id)
        except ValueError:
            raise NotFoundError("certificate not found or invalid") from None
        cert = await self._repo.get(certificate_id)
        if cert is None:
            raise NotFoundError("certificate not found or invalid")
        return cert

    async def list_for_student(self, student_email: str) -> list[Certificate]:
        return await self._repo.list_for_student(normalize_email(student_email))

    async def _ready_course(self, course_id: str) -> Course:
        course = await self._courses.get_course(course_id)
        if course is None:
            raise NotFoundError(f"course {course_id} not found")
        if course.status != CourseStatus.READY:
            raise ValidationError(f"course is {course.status.value}, not Ready")
        return course
