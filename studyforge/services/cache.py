"""Read-through cache.

The cache is advisory: the relational store is the source of truth and
every value here can be rebuilt from it.  Two mechanisms keep it honest:

  1. TTL: every entry expires (CacheTTL presets below), so a missed
     invalidation heals on its own.
  2. Explicit invalidation: services that mutate a user's balance, a
     mastery record or the leaderboard delete the affected key pattern in
     the same operation.
  3. Generation stamps: invalidation also rewrites gen:<pattern>.  A
     reader that started loading before an invalidation sees the stamp
     change after its write and deletes what it wrote, so a value read
     from the store before a commit cannot outlive the invalidation.

Key layout:
  user:<email>:credits                 balance (SHORT)
  course:<course_id>:mastery:<email>   mastery summary (SHORT)
  leaderboard:top:<limit>:<flag>       ranked projection (MEDIUM)

A cache outage never fails a request: lookups fall through to the loader
and failed invalidations are logged.
"""

from __future__ import annotations

import fnmatch
import json
import logging
import time
import uuid
from collections.abc import Awaitable, Callable
from typing import Any, Protocol, runtime_checkable

from redis.exceptions import RedisError

from studyforge.core.metrics import CACHE_OPERATIONS

logger = logging.getLogger(__name__)


class CacheTTL:
    """TTL presets in seconds."""

    SHORT = 60
    MEDIUM = 5 * 60
    LONG = 15 * 60
    HOUR = 60 * 60
    DAY = 24 * 60 * 60


_GENERATION_PREFIX = "gen:"


@runtime_checkable
class CacheService(Protocol):
    async def get(self, key: str) -> str | None:
        """Fetch a cached value.  Returns None on miss or expiry."""
        ...

    async def set(self, key: str, value: str, ttl_seconds: int) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def delete_pattern(self, pattern: str) -> None:
        """Delete all keys matching a glob pattern (e.g. 'user:a@b.c:*')."""
        ...


class InMemoryCacheService:
    """Single-process cache that enforces TTL on read.

    `clock` returns seconds; tests pass a fake to step past expiry.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._store: dict[str, tuple[str, float]] = {}

    async def get(self, key: str) -> str | None:
        entry = self._store.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            del self._store[key]
            return None
        return value

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self._store[key] = (value, self._clock() + ttl_seconds)

    async def delete(self, key: str) -> None:
        self._store.pop(key, None)

    async def delete_pattern(self, pattern: str) -> None:
        for k in [k for k in self._store if fnmatch.fnmatchcase(k, pattern)]:
            del self._store[k]


class RedisCacheService:
    """Redis-backed cache shared by every API instance and the worker."""

    _PREFIX = "cache:"

    def __init__(self, redis_client) -> None:
        self._redis = redis_client

    async def get(self, key: str) -> str | None:
        return await self._redis.get(f"{self._PREFIX}{key}")

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        await self._redis.setex(f"{self._PREFIX}{key}", ttl_seconds, value)

    async def delete(self, key: str) -> None:
        await self._redis.delete(f"{self._PREFIX}{key}")

    async def delete_pattern(self, pattern: str) -> None:
        # SCAN, not KEYS: cursor-based, never blocks the server
        cursor = 0
        while True:
            cursor, keys = await self._redis.scan(
                cursor, match=f"{self._PREFIX}{pattern}", count=100
            )
            if keys:
                await self._redis.delete(*keys)
            if cursor == 0:
                break


async def get_or_set_json(
    cache: CacheService,
    key: str,
    ttl_seconds: int,
    loader: Callable[[], Awaitable[Any]],
    *,
    scope: str | None = None,
) -> Any:
    """Read-through helper: cached JSON on hit, loader() on miss.

    `scope` is the pattern writers pass to invalidate() for this key
    (defaults to the key itself).  The loader's result must be
    JSON-serializable.
    """
    try:
        cached = await cache.get(key)
    except RedisError:
        logger.warning("Cache read failed key=%s, loading from store", key)
        return await loader()

    if cached is not None:
        CACHE_OPERATIONS.labels(operation="hit").inc()
        return json.loads(cached)

    CACHE_OPERATIONS.labels(operation="miss").inc()
    stamp_key = f"{_GENERATION_PREFIX}{scope or key}"
    try:
        before = await cache.get(stamp_key)
    except RedisError:
        logger.warning("Cache read failed key=%s, not caching", stamp_key)
        return await loader()

    value = await loader()
    try:
        await cache.set(key, json.dumps(value, default=str), ttl_seconds)
        if await cache.get(stamp_key) != before:
            # invalidated while loading; the value may predate the write
            await cache.delete(key)
            CACHE_OPERATIONS.labels(operation="discard").inc()
    except RedisError:
        logger.warning("Cache write failed key=%s", key)
    return value


async def invalidate(cache: CacheService, pattern: str) -> None:
    """Delete every key matching pattern; a cache outage is logged, not raised.

    Call after the store write has committed.
    """
    try:
        await cache.set(f"{_GENERATION_PREFIX}{pattern}", uuid.uuid4().hex, CacheTTL.DAY)
        if any(ch in pattern for ch in "*?["):
            await cache.delete_pattern(pattern)
        else:
            await cache.delete(pattern)
    except RedisError:
        logger.warning("Cache invalidation failed pattern=%s", pattern)
