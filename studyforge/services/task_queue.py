"""Job queue with at-least-once delivery.

PRODUCER / CONSUMER
-------------------
  Producer (API):    LPUSH task onto tasks:<queue>          -> returns at once
  Consumer (worker): BLMOVE tasks:<queue> -> tasks:<queue>:processing
                     ... run handler (with retries) ...
                     LREM the task from :processing         -> ack

A worker that crashes mid-job leaves its task in the processing list.  On
start-up the worker calls requeue_inflight(), which moves those tasks
back onto the queue, so every enqueued task is delivered at least once.
The price is possible duplicates, which is why every handler re-checks the
state of the entity it is about to mutate.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable


@dataclass(frozen=True, slots=True)
class Task:
    """A unit of background work.

    event:   The event name that selects the handler (e.g. "assignment.grade").
    payload: JSON-serializable handler input, already schema-validated.
    """

    id: str
    queue: str
    event: str
    payload: dict[str, Any] = field(default_factory=dict)

    @staticmethod
    def new(*, queue: str, event: str, payload: dict[str, Any]) -> Task:
        return Task(id=str(uuid.uuid4()), queue=queue, event=event, payload=payload)


@runtime_checkable
class TaskQueue(Protocol):
    async def enqueue(self, task: Task) -> Task: ...
    async def dequeue(self, queue: str, timeout: int = 0) -> Task | None: ...
    async def ack(self, task: Task) -> None: ...
    async def requeue_inflight(self, queue: str) -> int: ...
    async def queue_length(self, queue: str) -> int: ...


class InMemoryTaskQueue:
    """In-process queue for tests and single-process dev."""

    def __init__(self) -> None:
        self._queues: dict[str, list[Task]] = {}
        self._inflight: dict[str, dict[str, Task]] = {}

    async def enqueue(self, task: Task) -> Task:
        self._queues.setdefault(task.queue, []).append(task)
        return task

    async def dequeue(self, queue: str, timeout: int = 0) -> Task | None:
        tasks = self._queues.get(queue, [])
        if not tasks:
            return None
        task = tasks.pop(0)  # FIFO
        self._inflight.setdefault(queue, {})[task.id] = task
        return task

    async def ack(self, task: Task) -> None:
        self._inflight.get(task.queue, {}).pop(task.id, None)

    async def requeue_inflight(self, queue: str) -> int:
        orphaned = list(self._inflight.pop(queue, {}).values())
        # Orphans go to the front: they were dequeued before anything waiting
        self._queues[queue] = orphaned + self._queues.get(queue, [])
        return len(orphaned)

    async def queue_length(self, queue: str) -> int:
        return len(self._queues.get(queue, []))

    def inflight_count(self, queue: str) -> int:
        return len(self._inflight.get(queue, {}))


class RedisTaskQueue:
    """Redis lists: LPUSH in, BLMOVE to a processing list, LREM to ack."""

    _PREFIX = "tasks:"

    def __init__(self, redis_client) -> None:
        self._redis = redis_client

    def _keys(self, queue: str) -> tuple[str, str]:
        return f"{self._PREFIX}{queue}", f"{self._PREFIX}{queue}:processing"

    async def enqueue(self, task: Task) -> Task:
        pending, _ = self._keys(task.queue)
        # LPUSH to the head, consumers take from the tail: FIFO
        await self._redis.lpush(pending, _encode(task))
        return task

    async def dequeue(self, queue: str, timeout: int = 5) -> Task | None:
        pending, processing = self._keys(queue)
        raw = await self._redis.blmove(pending, processing, timeout, "RIGHT", "LEFT")
        if raw is None:
            return None
        return _decode(raw)

    async def ack(self, task: Task) -> None:
        _, processing = self._keys(task.queue)
        await self._redis.lrem(processing, 1, _encode(task))

    async def requeue_inflight(self, queue: str) -> int:
        pending, processing = self._keys(queue)
        moved = 0
        # Oldest in-flight task sits at the tail of :processing; put it back
        # on the tail of the pending list so it is consumed next.
        while await self._redis.lmove(processing, pending, "RIGHT", "RIGHT"):
            moved += 1
        return moved

    async def queue_length(self, queue: str) -> int:
        pending, _ = self._keys(queue)
        return await self._redis.llen(pending)


def _encode(task: Task) -> str:
    # sort_keys: ack() removes by value, so encoding must be deterministic
    return json.dumps(
        {"id": task.id, "queue": task.queue, "event": task.event, "payload": task.payload},
        sort_keys=True,
    )


def _decode(raw: str) -> Task:
    data = json.loads(raw)
    return Task(
        id=data["id"], queue=data["queue"], event=data["event"], payload=data["payload"]
    )
