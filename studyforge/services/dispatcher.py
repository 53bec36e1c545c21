"""Event bus: typed events in, background handlers out.

    bus = EventBus(queue)

    @bus.on("assignment.grade", max_attempts=3, on_failure=mark_stuck)
    async def grade(payload: AssignmentGradePayload) -> None: ...

    await bus.send("assignment.grade", {...})   # validates, enqueues, returns

send() never runs a handler; it only validates the payload against the
event's schema and puts a Task on the event's queue.  A worker (the
`studyforge.worker` process, or the in-process loop started by the API
when Redis is not configured) calls process_one()/run_forever().

HANDLER CONTRACT
----------------
  return                      -> success, task acked
  raise FatalJobError         -> no retry; on_failure runs, task acked
  raise anything else         -> retried with exponential backoff
  exceed timeout_seconds      -> same as a retryable failure

After max_attempts the on_failure hook gets the payload and the last
exception so it can leave the durable record in a recoverable state
(PendingReview, Error, refunded).  The task is then acked: the failure is
recorded on the entity, not in the queue.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from studyforge.core.errors import FatalJobError, ValidationError
from studyforge.core.metrics import JOB_DURATION, JOB_RUNS, QUEUE_DEPTH
from studyforge.models.events import parse_payload
from studyforge.services.task_queue import Task, TaskQueue

logger = logging.getLogger(__name__)

Handler = Callable[[Any], Awaitable[None]]
FailureHook = Callable[[Any, BaseException], Awaitable[None]]

_NON_RETRYABLE = (FatalJobError, ValidationError)


@dataclass(frozen=True, slots=True)
class HandlerSpec:
    event: str
    fn: Handler
    max_attempts: int
    timeout_seconds: float
    on_failure: FailureHook | None = None


class EventBus:
    def __init__(
        self,
        queue: TaskQueue,
        *,
        max_attempts: int = 3,
        timeout_seconds: float = 120.0,
        backoff_seconds: float = 1.0,
        backoff_max_seconds: float = 60.0,
    ) -> None:
        self._queue = queue
        self._default_max_attempts = max_attempts
        self._default_timeout = timeout_seconds
        self._backoff = backoff_seconds
        self._backoff_max = backoff_max_seconds
        self._handlers: dict[str, HandlerSpec] = {}

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def on(
        self,
        event: str,
        *,
        max_attempts: int | None = None,
        timeout_seconds: float | None = None,
        on_failure: FailureHook | None = None,
    ):
        """Decorator: register a coroutine as the handler for an event."""

        def decorator(fn: Handler) -> Handler:
            self.register(
                event,
                fn,
                max_attempts=max_attempts,
                timeout_seconds=timeout_seconds,
                on_failure=on_failure,
            )
            return fn

        return decorator

    def register(
        self,
        event: str,
        fn: Handler,
        *,
        max_attempts: int | None = None,
        timeout_seconds: float | None = None,
        on_failure: FailureHook | None = None,
    ) -> None:
        if event in self._handlers:
            raise ValueError(f"handler already registered for {event!r}")
        self._handlers[event] = HandlerSpec(
            event=event,
            fn=fn,
            max_attempts=max_attempts or self._default_max_attempts,
            timeout_seconds=timeout_seconds or self._default_timeout,
            on_failure=on_failure,
        )

    @property
    def events(self) -> list[str]:
        return list(self._handlers)

    # ------------------------------------------------------------------
    # Producer side
    # ------------------------------------------------------------------

    async def send(self, event: str, payload: dict[str, Any] | BaseModel) -> Task:
        """Validate and enqueue.  Raises ValidationError for a bad event/payload."""
        model = parse_payload(event, payload)
        task = Task.new(queue=event, event=event, payload=model.model_dump(mode="json"))
        await self._queue.enqueue(task)
        QUEUE_DEPTH.labels(queue_name=event).set(await self._queue.queue_length(event))
        logger.info(
            "Queued %s task=%s",
            event,
            task.id,
            extra={"job_id": task.id, "event": event},
        )
        return task

    # ------------------------------------------------------------------
    # Consumer side
    # ------------------------------------------------------------------

    async def recover_inflight(self) -> int:
        """Re-deliver tasks a crashed worker dequeued but never acked."""
        total = 0
        for event in self._handlers:
            moved = await self._queue.requeue_inflight(event)
            if moved:
                logger.warning("Re-queued %d orphaned %s task(s)", moved, event)
            total += moved
        return total

    async def process_one(self, timeout: int = 0) -> int:
        """Take at most one task from every registered queue and run it."""
        processed = 0
        for event in list(self._handlers):
            task = await self._queue.dequeue(event, timeout=timeout)
            if task is None:
                continue
            QUEUE_DEPTH.labels(queue_name=event).set(
                await self._queue.queue_length(event)
            )
            await self._run(task)
            await self._queue.ack(task)
            processed += 1
        return processed

    async def drain(self, max_rounds: int = 100) -> int:
        """Process until every queue is empty (including follow-up events)."""
        total = 0
        for _ in range(max_rounds):
            n = await self.process_one()
            if n == 0:
                break
            total += n
        return total

    async def run_forever(self, *, poll_timeout: int = 1, idle_sleep: float = 0.5) -> None:
        await self.recover_inflight()
        logger.info("Worker started, listening on: %s", self.events)
        while True:
            if await self.process_one(timeout=poll_timeout) == 0:
                await asyncio.sleep(idle_sleep)

    async def _run(self, task: Task) -> None:
        log_ctx = {"job_id": task.id, "event": task.event}
        spec = self._handlers.get(task.event)
        if spec is None:
            logger.error("No handler for %s, dropping task=%s", task.event, task.id, extra=log_ctx)
            JOB_RUNS.labels(event=task.event, outcome="fatal").inc()
            return

        try:
            payload = parse_payload(task.event, task.payload)
        except ValidationError:
            logger.exception("Invalid payload for %s task=%s", task.event, task.id, extra=log_ctx)
            JOB_RUNS.labels(event=task.event, outcome="fatal").inc()
            return

        def _before_sleep(state: RetryCallState) -> None:
            JOB_RUNS.labels(event=task.event, outcome="retried").inc()
            exc = state.outcome.exception() if state.outcome else None
            logger.warning(
                "%s task=%s attempt %d failed: %r",
                task.event,
                task.id,
                state.attempt_number,
                exc,
                extra={**log_ctx, "attempt": state.attempt_number},
            )

        retrying = AsyncRetrying(
            stop=stop_after_attempt(spec.max_attempts),
            wait=wait_exponential(multiplier=self._backoff, max=self._backoff_max),
            retry=retry_if_not_exception_type(_NON_RETRYABLE),
            before_sleep=_before_sleep,
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    await self._attempt(spec, payload)
        except Exception as exc:
            outcome = "fatal" if isinstance(exc, _NON_RETRYABLE) else "failed"
            JOB_RUNS.labels(event=task.event, outcome=outcome).inc()
            logger.error(
                "%s task=%s gave up (%s): %r",
                task.event,
                task.id,
                outcome,
                exc,
                extra=log_ctx,
            )
            await self._fail(spec, payload, exc, log_ctx)
            return

        JOB_RUNS.labels(event=task.event, outcome="succeeded").inc()
        logger.info("%s task=%s completed", task.event, task.id, extra=log_ctx)

    async def _attempt(self, spec: HandlerSpec, payload: Any) -> None:
        start = time.monotonic()
        try:
            await asyncio.wait_for(spec.fn(payload), timeout=spec.timeout_seconds)
        finally:
            JOB_DURATION.labels(event=spec.event).observe(time.monotonic() - start)

    async def _fail(
        self, spec: HandlerSpec, payload: Any, exc: BaseException, log_ctx: dict
    ) -> None:
        if spec.on_failure is None:
            return
        try:
            await spec.on_failure(payload, exc)
        except Exception:
            # The entity may now be stuck; the log line is the only trace left
            logger.exception("on_failure hook for %s raised", spec.event, extra=log_ctx)
