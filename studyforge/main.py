from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from studyforge.api.adaptive import router as adaptive_router
from studyforge.api.certificates import router as certificates_router
from studyforge.api.courses import router as courses_router
from studyforge.api.credits import router as credits_router
from studyforge.api.health import router as health_router
from studyforge.api.leaderboard import router as leaderboard_router
from studyforge.api.metrics_endpoint import router as metrics_router
from studyforge.api.study_content import router as study_content_router
from studyforge.api.submissions import router as submissions_router
from studyforge.api.users import router as users_router
from studyforge.core.config import SETTINGS
from studyforge.core.logging import setup_logging
from studyforge.db.engine import async_session_factory, lifespan_db
from studyforge.db.redis import lifespan_redis, redis_pool
from studyforge.middleware.metrics import MetricsMiddleware
from studyforge.middleware.request_context import RequestContextMiddleware
from studyforge.services.pipeline import Pipeline, build_pipeline
from studyforge.worker import register_handlers, run_maintenance

# Configure logging before anything else runs.
setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # Nested so teardown runs in reverse order even if one fails
    async with lifespan_db():
        async with lifespan_redis():
            pipeline: Pipeline = app.state.pipeline
            background: list[asyncio.Task] = []
            if app.state.inline_worker:
                # No shared queue: this process is its own worker
                logger.info("No Redis broker, running jobs in-process")
                background.append(asyncio.create_task(pipeline.bus.run_forever()))
                background.append(asyncio.create_task(run_maintenance(pipeline)))
            try:
                yield
            finally:
                for task in background:
                    task.cancel()
                    with contextlib.suppress(asyncio.CancelledError):
                        await task
                await pipeline.aclose()


def create_app(pipeline: Pipeline | None = None) -> FastAPI:
    """Build the API.  Tests pass their own in-memory pipeline."""
    inline_worker = False
    if pipeline is None:
        pipeline = build_pipeline(
            SETTINGS, redis=redis_pool, session_factory=async_session_factory
        )
        register_handlers(pipeline)
        inline_worker = redis_pool is None

    app = FastAPI(
        title="studyforge",
        lifespan=lifespan,
        docs_url="/docs" if SETTINGS.is_dev else None,
        redoc_url="/redoc" if SETTINGS.is_dev else None,
    )
    app.state.pipeline = pipeline
    app.state.inline_worker = inline_worker

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Last added runs first: RequestContext -> Metrics -> CORS -> route
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestContextMiddleware)

    app.include_router(metrics_router)
    app.include_router(health_router)
    app.include_router(users_router)
    app.include_router(credits_router)
    app.include_router(courses_router)
    app.include_router(study_content_router)
    app.include_router(submissions_router)
    app.include_router(adaptive_router)
    app.include_router(leaderboard_router)
    app.include_router(certificates_router)
    return app


app = create_app()

logger.info(
    "studyforge started  env=%s log_level=%s port=%d docs=%s",
    SETTINGS.app_env,
    SETTINGS.log_level,
    SETTINGS.port,
    "on" if SETTINGS.is_dev else "off",
)
