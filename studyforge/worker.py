"""Background worker process.

RUN:  python -m studyforge.worker

The API only validates, writes the durable anchor row (course, study
content, submission) and emits an event.  Everything that talks to the AI
model runs here, so a slow or failing model never holds an HTTP request
open, and workers scale separately from the API:

  api:    uvicorn studyforge.main:app --host 0.0.0.0 --port 8000
  worker: python -m studyforge.worker

Without REDIS_URL there is no shared queue, so the API runs the same loop
in-process instead (see main.py) and this module is only used for its
register_handlers().

EVENTS
------
  user.create           provision the user with the welcome grant
  studyType.content     fill a StudyTypeContent row          (fail -> Error)
  assignment.grade      grade a Submitted submission         (fail -> PendingReview)
  assignments.generate  generate a course's assignments      (fail -> Error + refund)
  certificate.issue     store a completion certificate       (not eligible -> dropped)

Delivery is at-least-once; each handler checks the entity's status first
and does nothing for a duplicate.
"""

from __future__ import annotations

import asyncio
import logging

from studyforge.core.config import SETTINGS
from studyforge.core.logging import setup_logging
from studyforge.db.engine import async_session_factory, lifespan_db
from studyforge.db.redis import lifespan_redis, redis_pool
from studyforge.models.events import (
    ASSIGNMENT_GRADE,
    ASSIGNMENTS_GENERATE,
    CERTIFICATE_ISSUE,
    STUDY_CONTENT,
    USER_CREATE,
)
from studyforge.services.pipeline import Pipeline, build_pipeline

logger = logging.getLogger("worker")

MAINTENANCE_INTERVAL_SECONDS = 300


def register_handlers(pipeline: Pipeline) -> None:
    bus = pipeline.bus
    bus.register(USER_CREATE, pipeline.users.handle_create)
    bus.register(
        STUDY_CONTENT,
        pipeline.study_content.handle_generate,
        on_failure=pipeline.study_content.handle_generate_failed,
    )
    bus.register(
        ASSIGNMENT_GRADE,
        pipeline.submissions.handle_grade,
        on_failure=pipeline.submissions.handle_grade_failed,
    )
    bus.register(
        ASSIGNMENTS_GENERATE,
        pipeline.courses.handle_generate_assignments,
        on_failure=pipeline.courses.handle_generate_failed,
    )
    bus.register(CERTIFICATE_ISSUE, pipeline.certificates.handle_issue)


async def run_maintenance(
    pipeline: Pipeline, interval_seconds: float = MAINTENANCE_INTERVAL_SECONDS
) -> None:
    """Periodically reap courses stuck in Generating and send due-date reminders."""
    while True:
        try:
            await pipeline.courses.cleanup_stale_courses()
        except Exception:
            logger.exception("Stale course cleanup failed")
        try:
            await pipeline.submissions.send_due_reminders()
        except Exception:
            logger.exception("Due-date reminders failed")
        await asyncio.sleep(interval_seconds)


async def run_worker() -> None:
    async with lifespan_db(), lifespan_redis():
        pipeline = build_pipeline(
            SETTINGS, redis=redis_pool, session_factory=async_session_factory
        )
        register_handlers(pipeline)
        maintenance = asyncio.create_task(run_maintenance(pipeline))
        try:
            await pipeline.bus.run_forever()
        finally:
            maintenance.cancel()
            await pipeline.aclose()


if __name__ == "__main__":
    setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)
    asyncio.run(run_worker())
