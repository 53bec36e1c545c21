"""Retry wrapper for storage calls.

Only transient failures are retried: the connection dropped, the pool
timed out, Redis went away.  A constraint violation or a bug raises on the
first attempt; retrying it would only repeat the damage.

    policy = RetryPolicy(attempts=3, delay_seconds=1.0)
    user = await policy.call(repo.get_user, email)

    repo = policy.wrap(PgLedgerRepo(...))   # every coroutine method retried

When every attempt fails the caller gets TransientStorageError chained to
the last underlying error.
"""

from __future__ import annotations

import functools
import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import redis.exceptions
from sqlalchemy import exc as sa_exc
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from studyforge.core.errors import TransientStorageError
from studyforge.core.metrics import STORAGE_RETRIES

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (
    TransientStorageError,
    ConnectionError,
    TimeoutError,
    sa_exc.OperationalError,
    sa_exc.InterfaceError,
    sa_exc.DisconnectionError,
    redis.exceptions.ConnectionError,
    redis.exceptions.TimeoutError,
)


def _log_retry(state: RetryCallState) -> None:
    STORAGE_RETRIES.inc()
    exc = state.outcome.exception() if state.outcome else None
    logger.warning(
        "Transient storage failure on attempt %d, retrying: %r",
        state.attempt_number,
        exc,
    )


class RetryPolicy:
    def __init__(self, attempts: int = 3, delay_seconds: float = 1.0) -> None:
        if attempts < 1:
            raise ValueError("attempts must be >= 1")
        self.attempts = attempts
        self.delay_seconds = delay_seconds

    async def call(
        self, fn: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any
    ) -> T:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.attempts),
            wait=wait_fixed(self.delay_seconds),
            retry=retry_if_exception_type(TRANSIENT_ERRORS),
            before_sleep=_log_retry,
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    return await fn(*args, **kwargs)
        except TRANSIENT_ERRORS as e:
            logger.error(
                "Storage call %s failed after %d attempts",
                getattr(fn, "__qualname__", fn),
                self.attempts,
            )
            raise TransientStorageError(
                f"storage unavailable after {self.attempts} attempts"
            ) from e
        raise AssertionError("unreachable")  # pragma: no cover

    def wrap(self, target: T) -> T:
        """Return a proxy whose coroutine methods go through call()."""
        return _RetryingProxy(target, self)  # type: ignore[return-value]


class _RetryingProxy:
    def __init__(self, target: Any, policy: RetryPolicy) -> None:
        self._target = target
        self._policy = policy

    def __getattr__(self, name: str) -> Any:
        attr = getattr(self._target, name)
        if not inspect.iscoroutinefunction(attr):
            return attr

        @functools.wraps(attr)
        async def _retried(*args: Any, **kwargs: Any) -> Any:
            return await self._policy.call(attr, *args, **kwargs)

        return _retried
