"""Prometheus scrape endpoint.

Queue depth gauges are refreshed from the task queue on every scrape, so
they stay current even when this process only produces events and never
dequeues them.  Keep /metrics off the public ingress; the labels reveal
routes and job names.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Request
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from studyforge.core.metrics import QUEUE_DEPTH
from studyforge.models.events import EVENT_SCHEMAS

logger = logging.getLogger(__name__)

router = APIRouter(tags=["observability"])


@router.get("/metrics", include_in_schema=False)
async def metrics(request: Request) -> Response:
    pipeline = getattr(request.app.state, "pipeline", None)
    if pipeline is not None:
        try:
            for event in EVENT_SCHEMAS:
                QUEUE_DEPTH.labels(queue_name=event).set(
                    await pipeline.queue.queue_length(event)
                )
        except Exception:
            logger.warning("Could not refresh queue depth", exc_info=True)
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
