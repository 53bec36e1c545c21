"""Request context middleware: one ID per request, carried into every log line.

API requests and the jobs they trigger interleave in the same log stream.
The request ID ties an HTTP call to its log lines; the dispatcher adds
job_id/event to its own lines so a job can be followed the same way.

The ID lives in a ContextVar rather than a thread-local: concurrent
requests share the event loop's thread but each task has its own context.
A logging filter on the root logger copies it onto every LogRecord, which
is how _JsonFormatter and the container formatter can print it.
"""

from __future__ import annotations

import logging
import time
import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)

request_id_var: ContextVar[str] = ContextVar("request_id", default="-")


class _RequestContextFilter(logging.Filter):
    """Attach the current request_id to every LogRecord."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "request_id"):
            record.request_id = request_id_var.get("-")  # type: ignore[attr-defined]
        return True


root_logger = logging.getLogger()
if not any(isinstance(f, _RequestContextFilter) for f in root_logger.filters):
    root_logger.addFilter(_RequestContextFilter())


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Assign a request ID, time the request and log one summary line.

    Also copies any X-RateLimit-* headers a rate-limit dependency left on
    request.state onto the response.
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        req_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        token = request_id_var.set(req_id)
        try:
            start = time.monotonic()
            response = await call_next(request)
            duration_ms = round((time.monotonic() - start) * 1000, 1)

            logger.info(
                "%s %s -> %d (%.1fms)",
                request.method,
                request.url.path,
                response.status_code,
                duration_ms,
                extra={
                    "request_id": req_id,
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": response.status_code,
                    "duration_ms": duration_ms,
                },
            )

            for name, value in getattr(request.state, "rate_limit_headers", {}).items():
                response.headers.setdefault(name, value)
            response.headers["X-Request-ID"] = req_id
            return response
        finally:
            request_id_var.reset(token)
