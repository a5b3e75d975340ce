"""Tests for the retry gateway and slot bookkeeping."""

from __future__ import annotations

import asyncio
import time

from trilium_tui.core.retry import RetryableApiGateway
from trilium_tui.core.tasks import CancelToken, SlotRegistry
from trilium_tui.errors import NetworkError, NotFoundError, ValidationError


def test_three_attempts_with_backoff_and_last_error_surfaced() -> None:
    gateway = RetryableApiGateway(max_attempts=3, base_delay=0.01, multiplier=2)
    errors = [NetworkError("first"), NetworkError("second"), NetworkError("third")]
    stamps: list[float] = []
    retries: list[int] = []

    async def always_fails():
        stamps.append(time.monotonic())
        raise errors[len(stamps) - 1]

    outcome = asyncio.run(gateway.execute("load", always_fails, on_retry=lambda n, e: retries.append(n)))

    assert outcome.attempts == 3
    assert len(stamps) == 3
    assert outcome.error is errors[2]
    assert outcome.delays == (0.01, 0.02)
    assert retries == [1, 2]
    assert stamps[1] - stamps[0] >= 0.009
    assert stamps[2] - stamps[1] >= 0.019
    assert not outcome.ok
    assert not outcome.stale and not outcome.cancelled


def test_success_after_transient_failure() -> None:
    gateway = RetryableApiGateway(base_delay=0.001)
    calls = 0

    async def flaky():
        nonlocal calls
        calls += 1
        if calls == 1:
            raise NetworkError("blip")
        return "value"

    outcome = asyncio.run(gateway.execute("load", flaky))
    assert outcome.ok
    assert outcome.value == "value"
    assert outcome.attempts == 2
    assert gateway.slot("load").last_error is None
    assert not gateway.slot("load").pending


def test_non_retryable_errors_fail_immediately() -> None:
    gateway = RetryableApiGateway(base_delay=0.001)

    for error in (NotFoundError("missing"), ValidationError("bad id")):
        calls = 0

        async def op(error=error):
            nonlocal calls
            calls += 1
            raise error

        outcome = asyncio.run(gateway.execute("load", op))
        assert calls == 1
        assert outcome.error is error
        assert outcome.attempts == 1


def test_delay_schedule() -> None:
    gateway = RetryableApiGateway(base_delay=1.0, multiplier=2.0)
    assert [gateway.delay_for(n) for n in (1, 2, 3)] == [1.0, 2.0, 4.0]


def test_newer_execute_supersedes_older() -> None:
    gateway = RetryableApiGateway(base_delay=10.0)

    async def scenario():
        release = asyncio.Event()

        async def slow():
            await release.wait()
            return "old"

        async def fast():
            return "new"

        first = asyncio.ensure_future(gateway.execute("search", slow))
        await asyncio.sleep(0)
        second = await gateway.execute("search", fast)
        release.set()
        return await first, second

    old, new = asyncio.run(scenario())
    assert old.stale
    assert old.value == "old"
    assert not old.ok
    assert new.ok and new.value == "new"
    assert new.op_id == old.op_id + 1


def test_cancel_aborts_backoff_wait_immediately() -> None:
    gateway = RetryableApiGateway(max_attempts=3, base_delay=30.0)

    async def scenario():
        async def fails():
            raise NetworkError("down")

        task = asyncio.ensure_future(gateway.execute("content", fails))
        await asyncio.sleep(0.01)
        assert gateway.slot("content").retrying
        started = time.monotonic()
        assert gateway.cancel("content")
        outcome = await task
        return outcome, time.monotonic() - started

    outcome, waited = asyncio.run(scenario())
    assert outcome.cancelled
    assert outcome.attempts == 1
    assert waited < 1.0


def test_cancel_token_sleep() -> None:
    async def scenario():
        token = CancelToken()
        assert await token.sleep(0) is True
        assert await token.sleep(0.001) is True
        token.cancel("done")
        assert await token.sleep(5) is False
        return token

    token = asyncio.run(scenario())
    assert token.cancelled
    assert token.reason == "done"


def test_slot_registry_op_ids() -> None:
    registry = SlotRegistry()
    first = registry.begin("tree")
    assert registry.is_current(first)
    second = registry.begin("tree")
    assert first.token.cancelled
    assert first.token.reason == "superseded"
    assert not registry.is_current(first)
    assert registry.is_current(second)
    assert registry.pending() == ["tree"]

    registry.finish(second)
    assert registry.pending() == []
    assert registry.current_op_id("tree") == 2
    assert registry.cancel("tree") is False
