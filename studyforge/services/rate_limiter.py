"""Fixed-window rate limiting keyed by (identity, operation).

Each expensive operation has its own quota.  The first request opens a
window of `window_seconds`; every allowed request increments the window's
counter; once the counter reaches `max_requests` further requests are
rejected (and NOT counted) until the window expires.

Fixed windows allow a burst of up to 2x the quota across a window
boundary.  For AI generation quotas that is acceptable: the quota exists
to cap spend per user per hour, not to smooth traffic.

Callers check before doing any work, so a limited request never debits
credits, writes a row or enqueues a job.
"""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from studyforge.core.errors import RateLimitedError
from studyforge.core.metrics import RATE_LIMIT_HITS

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RateLimitConfig:
    max_requests: int
    window_seconds: int
    message: str


RATE_LIMITS: dict[str, RateLimitConfig] = {
    "course-generation": RateLimitConfig(
        max_requests=5,
        window_seconds=60 * 60,
        message=(
            "Too many course generation requests. "
            "Please wait before creating another course."
        ),
    ),
    "study-content": RateLimitConfig(
        max_requests=20,
        window_seconds=15 * 60,
        message="Too many content generation requests. Please wait a few minutes.",
    ),
    "assignment": RateLimitConfig(
        max_requests=10,
        window_seconds=5 * 60,
        message="Too many assignment submissions. Please wait a few minutes.",
    ),
    "general": RateLimitConfig(
        max_requests=60,
        window_seconds=60,
        message="Too many requests. Please slow down.",
    ),
}


@dataclass(frozen=True, slots=True)
class RateLimitResult:
    """The outcome of a rate limit check.

    limited:      True if the request must be rejected.
    remaining:    Requests left in the current window.
    limit:        The window's quota.
    reset_in_ms:  Milliseconds until the window resets.
    message:      User-facing explanation (only when limited).
    """

    limited: bool
    remaining: int
    limit: int
    reset_in_ms: int
    message: str | None = None

    @property
    def retry_after(self) -> int:
        """Whole seconds a client should wait (Retry-After header)."""
        return max(1, math.ceil(self.reset_in_ms / 1000)) if self.limited else 0


@runtime_checkable
class RateLimiter(Protocol):
    async def check(self, identity: str, operation: str) -> RateLimitResult: ...
    async def reset(self, identity: str, operation: str) -> None: ...


class InMemoryRateLimiter:
    """Per-process counters; fine for tests and a single API instance.

    `clock` returns seconds (monotonic by default).
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        # key -> (count, window_reset_at)
        self._windows: dict[str, tuple[int, float]] = {}

    async def check(self, identity: str, operation: str) -> RateLimitResult:
        operation = operation if operation in RATE_LIMITS else "general"
        config = RATE_LIMITS[operation]
        key = f"{operation}:{identity}"
        now = self._clock()

        window = self._windows.get(key)
        if window is None or window[1] <= now:
            self._windows[key] = (1, now + config.window_seconds)
            return RateLimitResult(
                limited=False,
                remaining=config.max_requests - 1,
                limit=config.max_requests,
                reset_in_ms=config.window_seconds * 1000,
            )

        count, reset_at = window
        reset_in_ms = int((reset_at - now) * 1000)
        if count >= config.max_requests:
            return _limited(operation, identity, config, reset_in_ms)

        self._windows[key] = (count + 1, reset_at)
        return RateLimitResult(
            limited=False,
            remaining=config.max_requests - (count + 1),
            limit=config.max_requests,
            reset_in_ms=reset_in_ms,
        )

    async def reset(self, identity: str, operation: str) -> None:
        self._windows.pop(f"{operation}:{identity}", None)


class RedisRateLimiter:
    """Redis-backed windows shared by all API instances.

    The read-check-increment runs as one Lua script so two concurrent
    requests cannot both take the last slot.
    """

    # KEYS[1] = window key; ARGV[1] = max_requests, ARGV[2] = window ms
    # Returns {limited (0/1), count, pttl_ms}
    _LUA_SCRIPT = """
    local key = KEYS[1]
    local max_requests = tonumber(ARGV[1])
    local window_ms = tonumber(ARGV[2])

    local current = tonumber(redis.call('GET', key))
    if current == nil then
        redis.call('SET', key, 1, 'PX', window_ms)
        return {0, 1, window_ms}
    end

    local ttl = redis.call('PTTL', key)
    if ttl < 0 then
        redis.call('PEXPIRE', key, window_ms)
        ttl = window_ms
    end

    if current >= max_requests then
        return {1, current, ttl}
    end

    local count = redis.call('INCR', key)
    return {0, count, ttl}
    """

    _PREFIX = "ratelimit:"

    def __init__(self, redis_client) -> None:
        self._redis = redis_client
        self._script = None

    def _get_script(self):
        if self._script is None:
            self._script = self._redis.register_script(self._LUA_SCRIPT)
        return self._script

    async def check(self, identity: str, operation: str) -> RateLimitResult:
        operation = operation if operation in RATE_LIMITS else "general"
        config = RATE_LIMITS[operation]
        script = self._get_script()
        limited, count, ttl_ms = await script(
            keys=[f"{self._PREFIX}{operation}:{identity}"],
            args=[config.max_requests, config.window_seconds * 1000],
        )
        if limited:
            return _limited(operation, identity, config, int(ttl_ms))
        return RateLimitResult(
            limited=False,
            remaining=max(0, config.max_requests - int(count)),
            limit=config.max_requests,
            reset_in_ms=int(ttl_ms),
        )

    async def reset(self, identity: str, operation: str) -> None:
        await self._redis.delete(f"{self._PREFIX}{operation}:{identity}")


def _limited(
    operation: str, identity: str, config: RateLimitConfig, reset_in_ms: int
) -> RateLimitResult:
    RATE_LIMIT_HITS.labels(operation=operation).inc()
    logger.warning(
        "Rate limit exceeded operation=%s identity=%s reset_in_ms=%d",
        operation,
        identity,
        reset_in_ms,
    )
    return RateLimitResult(
        limited=True,
        remaining=0,
        limit=config.max_requests,
        reset_in_ms=reset_in_ms,
        message=config.message,
    )


async def enforce(limiter: RateLimiter, identity: str, operation: str) -> RateLimitResult:
    """Check the quota and raise RateLimitedError when it is exhausted."""
    result = await limiter.check(identity, operation)
    if result.limited:
        raise RateLimitedError(
            result.message or "Rate limit exceeded", retry_after=result.retry_after
        )
    return result
