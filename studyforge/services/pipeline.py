"""Assembly of the pipeline components.

build_pipeline() is called once per process (API or worker) and the
result is handed around explicitly: the API keeps it on app.state, the
worker passes it to register_handlers().  Tests build their own with the
in-memory backends.

Backend choice follows configuration:

    session_factory given -> Postgres repositories, each call wrapped in the
                             storage RetryPolicy
    otherwise             -> in-memory repositories

    redis given           -> Redis task queue, cache and rate limiter
    otherwise             -> in-memory equivalents (single process only)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from studyforge.core.clock import Clock, utcnow
from studyforge.core.config import Settings
from studyforge.repos.certificate_repo import InMemoryCertificateRepo
from studyforge.repos.content_repo import InMemoryContentRepo
from studyforge.repos.course_repo import InMemoryCourseRepo
from studyforge.repos.leaderboard_repo import InMemoryLeaderboardRepo
from studyforge.repos.ledger_repo import InMemoryLedgerRepo
from studyforge.repos.mastery_repo import InMemoryMasteryRepo
from studyforge.repos.pg_certificate_repo import PgCertificateRepo
from studyforge.repos.pg_content_repo import PgContentRepo
from studyforge.repos.pg_course_repo import PgCourseRepo
from studyforge.repos.pg_leaderboard_repo import PgLeaderboardRepo
from studyforge.repos.pg_ledger_repo import PgLedgerRepo
from studyforge.repos.pg_mastery_repo import PgMasteryRepo
from studyforge.repos.pg_submission_repo import PgSubmissionRepo
from studyforge.repos.submission_repo import InMemorySubmissionRepo
from studyforge.services.ai_model import (
    ContentModel,
    HttpContentModel,
    UnconfiguredContentModel,
)
from studyforge.services.cache import CacheService, InMemoryCacheService, RedisCacheService
from studyforge.services.certificates import CertificateService
from studyforge.services.courses import CourseService
from studyforge.services.dispatcher import EventBus
from studyforge.services.leaderboard import LeaderboardService
from studyforge.services.ledger import CreditLedger
from studyforge.services.mastery import MasteryEngine
from studyforge.services.notifier import LoggingNotifier, Notifier, WebhookNotifier
from studyforge.services.rate_limiter import (
    InMemoryRateLimiter,
    RateLimiter,
    RedisRateLimiter,
)
from studyforge.services.retry import RetryPolicy
from studyforge.services.study_content import StudyContentService
from studyforge.services.submissions import SubmissionService
from studyforge.services.task_queue import InMemoryTaskQueue, RedisTaskQueue, TaskQueue
from studyforge.services.users_service import UserService

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Pipeline:
    settings: Settings
    cache: CacheService
    rate_limiter: RateLimiter
    queue: TaskQueue
    bus: EventBus
    model: ContentModel
    notifier: Notifier
    ledger: CreditLedger
    users: UserService
    courses: CourseService
    study_content: StudyContentService
    submissions: SubmissionService
    mastery: MasteryEngine
    leaderboard: LeaderboardService
    certificates: CertificateService

    async def aclose(self) -> None:
        for client in (self.model, self.notifier):
            aclose = getattr(client, "aclose", None)
            if aclose is not None:
                await aclose()


def build_pipeline(
    settings: Settings,
    *,
    redis=None,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    model: ContentModel | None = None,
    notifier: Notifier | None = None,
    clock: Clock = utcnow,
) -> Pipeline:
    if session_factory is not None:
        policy = RetryPolicy(
            attempts=settings.storage_retry_attempts,
            delay_seconds=settings.storage_retry_delay_seconds,
        )
        ledger_repo = policy.wrap(PgLedgerRepo(session_factory))
        course_repo = policy.wrap(PgCourseRepo(session_factory))
        content_repo = policy.wrap(PgContentRepo(session_factory))
        submission_repo = policy.wrap(PgSubmissionRepo(session_factory))
        mastery_repo = policy.wrap(PgMasteryRepo(session_factory))
        leaderboard_repo = policy.wrap(PgLeaderboardRepo(session_factory))
        certificate_repo = policy.wrap(PgCertificateRepo(session_factory))
    else:
        ledger_repo = InMemoryLedgerRepo()
        course_repo = InMemoryCourseRepo()
        content_repo = InMemoryContentRepo()
        submission_repo = InMemorySubmissionRepo()
        mastery_repo = InMemoryMasteryRepo()
        leaderboard_repo = InMemoryLeaderboardRepo()
        certificate_repo = InMemoryCertificateRepo()

    if redis is not None:
        cache: CacheService = RedisCacheService(redis)
        rate_limiter: RateLimiter = RedisRateLimiter(redis)
        queue: TaskQueue = RedisTaskQueue(redis)
    else:
        cache = InMemoryCacheService()
        rate_limiter = InMemoryRateLimiter()
        queue = InMemoryTaskQueue()

    if model is None:
        if settings.ai_api_url:
            model = HttpContentModel(
                settings.ai_api_url,
                api_key=settings.ai_api_key,
                timeout_seconds=settings.ai_timeout_seconds,
            )
        else:
            model = UnconfiguredContentModel()
    if notifier is None:
        notifier = (
            WebhookNotifier(settings.notify_webhook_url)
            if settings.notify_webhook_url
            else LoggingNotifier()
        )

    bus = EventBus(
        queue,
        max_attempts=settings.job_max_attempts,
        timeout_seconds=settings.job_timeout_seconds,
        backoff_seconds=settings.job_backoff_seconds,
    )
    ledger = CreditLedger(
        ledger_repo, cache, starting_credits=settings.starting_credits, clock=clock
    )

    logger.info(
        "Pipeline built storage=%s broker=%s model=%s",
        "postgres" if session_factory is not None else "memory",
        "redis" if redis is not None else "memory",
        type(model).__name__,
    )
    return Pipeline(
        settings=settings,
        cache=cache,
        rate_limiter=rate_limiter,
        queue=queue,
        bus=bus,
        model=model,
        notifier=notifier,
        ledger=ledger,
        users=UserService(ledger, bus, notifier),
        courses=CourseService(course_repo, ledger, bus, model, rate_limiter, clock=clock),
        study_content=StudyContentService(
            content_repo, course_repo, bus, model, rate_limiter, clock=clock
        ),
        submissions=SubmissionService(
            submission_repo, course_repo, bus, model, notifier, clock=clock
        ),
        mastery=MasteryEngine(mastery_repo, cache, notifier, clock=clock),
        leaderboard=LeaderboardService(leaderboard_repo, cache, clock=clock),
        certificates=CertificateService(
            certificate_repo,
            course_repo,
            submission_repo,
            mastery_repo,
            bus,
            notifier,
            clock=clock,
        ),
    )
