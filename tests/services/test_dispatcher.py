"""Event bus tests: validation at send time, retries, fatal errors, hooks."""

from __future__ import annotations

import asyncio

import pytest

from studyforge.core.errors import DownstreamFailure, FatalJobError, ValidationError
from studyforge.models.events import USER_CREATE, UserCreatePayload
from studyforge.services.dispatcher import EventBus
from studyforge.services.task_queue import InMemoryTaskQueue, Task


def _bus(**kwargs) -> tuple[EventBus, InMemoryTaskQueue]:
    queue = InMemoryTaskQueue()
    return EventBus(queue, backoff_seconds=0, **kwargs), queue


def test_send_validates_payload_and_enqueues() -> None:
    bus, queue = _bus()

    async def _go():
        task = await bus.send(USER_CREATE, {"email": "a@example.com"})
        return task, await queue.queue_length(USER_CREATE)

    task, length = asyncio.run(_go())
    assert task.event == USER_CREATE
    assert task.payload == {"email": "a@example.com", "name": ""}
    assert length == 1


def test_send_rejects_unknown_event_and_bad_payload() -> None:
    bus, queue = _bus()
    with pytest.raises(ValidationError):
        asyncio.run(bus.send("no.such.event", {}))
    with pytest.raises(ValidationError):
        asyncio.run(bus.send(USER_CREATE, {"email": "a@example.com", "extra": 1}))
    assert asyncio.run(queue.queue_length(USER_CREATE)) == 0


def test_send_never_runs_the_handler() -> None:
    bus, _ = _bus()
    calls: list[str] = []

    async def handler(payload: UserCreatePayload) -> None:
        calls.append(payload.email)

    bus.register(USER_CREATE, handler)
    asyncio.run(bus.send(USER_CREATE, {"email": "a@example.com"}))
    assert calls == []


def test_handler_receives_typed_payload() -> None:
    bus, queue = _bus()
    seen: list[UserCreatePayload] = []

    @bus.on(USER_CREATE)
    async def handler(payload: UserCreatePayload) -> None:
        seen.append(payload)

    async def _go():
        await bus.send(USER_CREATE, {"email": "a@example.com", "name": "A"})
        return await bus.drain(), queue.inflight_count(USER_CREATE)

    processed, inflight = asyncio.run(_go())
    assert processed == 1
    assert inflight == 0
    assert isinstance(seen[0], UserCreatePayload)
    assert seen[0].name == "A"


def test_transient_failure_is_retried_until_success() -> None:
    bus, _ = _bus(max_attempts=3)
    attempts: list[int] = []

    async def flaky(payload) -> None:
        attempts.append(1)
        if len(attempts) < 3:
            raise DownstreamFailure("try again")

    failures: list[BaseException] = []

    async def on_failure(payload, exc) -> None:
        failures.append(exc)

    bus.register(USER_CREATE, flaky, on_failure=on_failure)

    async def _go():
        await bus.send(USER_CREATE, {"email": "a@example.com"})
        await bus.drain()

    asyncio.run(_go())
    assert len(attempts) == 3
    assert failures == []


def test_exhausted_retries_call_on_failure_with_last_error() -> None:
    bus, queue = _bus()
    attempts: list[int] = []
    failures: list[tuple[str, BaseException]] = []

    async def always_fails(payload) -> None:
        attempts.append(1)
        raise DownstreamFailure(f"attempt {len(attempts)}")

    async def on_failure(payload, exc) -> None:
        failures.append((payload.email, exc))

    bus.register(USER_CREATE, always_fails, max_attempts=2, on_failure=on_failure)

    async def _go():
        await bus.send(USER_CREATE, {"email": "a@example.com"})
        await bus.drain()
        return queue.inflight_count(USER_CREATE), await queue.queue_length(USER_CREATE)

    inflight, queued = asyncio.run(_go())
    assert len(attempts) == 2
    assert failures[0][0] == "a@example.com"
    assert str(failures[0][1]) == "attempt 2"
    # the failure is recorded on the entity, not left in the queue
    assert (inflight, queued) == (0, 0)


def test_fatal_error_is_not_retried() -> None:
    bus, _ = _bus(max_attempts=5)
    attempts: list[int] = []
    failures: list[BaseException] = []

    async def fatal(payload) -> None:
        attempts.append(1)
        raise FatalJobError("entity gone")

    async def on_failure(payload, exc) -> None:
        failures.append(exc)

    bus.register(USER_CREATE, fatal, on_failure=on_failure)

    async def _go():
        await bus.send(USER_CREATE, {"email": "a@example.com"})
        await bus.drain()

    asyncio.run(_go())
    assert len(attempts) == 1
    assert isinstance(failures[0], FatalJobError)


def test_timeout_counts_as_retryable_failure() -> None:
    bus, _ = _bus()
    attempts: list[int] = []
    failures: list[BaseException] = []

    async def slow(payload) -> None:
        attempts.append(1)
        await asyncio.sleep(1)

    async def on_failure(payload, exc) -> None:
        failures.append(exc)

    bus.register(
        USER_CREATE, slow, max_attempts=2, timeout_seconds=0.01, on_failure=on_failure
    )

    async def _go():
        await bus.send(USER_CREATE, {"email": "a@example.com"})
        await bus.drain()

    asyncio.run(_go())
    assert len(attempts) == 2
    assert isinstance(failures[0], TimeoutError)


def test_failing_on_failure_hook_does_not_break_the_worker() -> None:
    bus, queue = _bus()

    async def fails(payload) -> None:
        raise FatalJobError("bad")

    async def broken_hook(payload, exc) -> None:
        raise RuntimeError("hook bug")

    bus.register(USER_CREATE, fails, on_failure=broken_hook)

    async def _go():
        await bus.send(USER_CREATE, {"email": "a@example.com"})
        await bus.drain()
        return queue.inflight_count(USER_CREATE)

    assert asyncio.run(_go()) == 0


def test_invalid_stored_payload_is_dropped() -> None:
    bus, queue = _bus()
    calls: list[int] = []

    async def handler(payload) -> None:
        calls.append(1)

    bus.register(USER_CREATE, handler)

    async def _go():
        await queue.enqueue(Task.new(queue=USER_CREATE, event=USER_CREATE, payload={}))
        return await bus.drain()

    assert asyncio.run(_go()) == 1
    assert calls == []


def test_recover_inflight_redelivers_orphaned_tasks() -> None:
    bus, queue = _bus()
    seen: list[str] = []

    async def handler(payload) -> None:
        seen.append(payload.email)

    bus.register(USER_CREATE, handler)

    async def _go():
        await bus.send(USER_CREATE, {"email": "a@example.com"})
        # a worker that died after dequeue and before ack
        await queue.dequeue(USER_CREATE)
        moved = await bus.recover_inflight()
        await bus.drain()
        return moved

    assert asyncio.run(_go()) == 1
    assert seen == ["a@example.com"]


def test_duplicate_registration_is_rejected() -> None:
    bus, _ = _bus()

    async def handler(payload) -> None:
        return None

    bus.register(USER_CREATE, handler)
    with pytest.raises(ValueError):
        bus.register(USER_CREATE, handler)
