"""
Tests for InFlightRequestRegistry deduplication.
"""
import asyncio

import pytest

from app.cache import InFlightRequestRegistry


def test_concurrent_calls_share_one_execution():
    registry = InFlightRequestRegistry()
    calls = []

    async def work():
        calls.append(1)
        await asyncio.sleep(0.01)
        return {"value": 42}

    async def scenario():
        first, second = await asyncio.gather(
            registry.dedupe("k", work),
            registry.dedupe("k", work),
        )
        return first, second

    first, second = asyncio.run(scenario())

    assert len(calls) == 1
    assert first == {"value": 42}
    assert first is second
    assert registry.active_requests == 0


def test_different_keys_run_independently():
    registry = InFlightRequestRegistry()
    calls = []

    def make_work(name):
        async def work():
            calls.append(name)
            await asyncio.sleep(0)
            return name
        return work

    async def scenario():
        return await asyncio.gather(
            registry.dedupe("a", make_work("a")),
            registry.dedupe("b", make_work("b")),
        )

    assert asyncio.run(scenario()) == ["a", "b"]
    assert sorted(calls) == ["a", "b"]


def test_failure_reaches_every_waiter_and_is_not_sticky():
    registry = InFlightRequestRegistry()
    attempts = []

    async def failing():
        attempts.append(1)
        await asyncio.sleep(0.01)
        raise RuntimeError("upstream down")

    async def succeeding():
        attempts.append(1)
        return "ok"

    async def scenario():
        results = await asyncio.gather(
            registry.dedupe("k", failing),
            registry.dedupe("k", failing),
            return_exceptions=True,
        )
        retry = await registry.dedupe("k", succeeding)
        return results, retry

    results, retry = asyncio.run(scenario())

    assert len(attempts) == 2
    assert all(isinstance(r, RuntimeError) for r in results)
    assert results[0] is results[1]
    assert retry == "ok"
    assert registry.active_requests == 0


def test_sequential_calls_start_fresh_work():
    registry = InFlightRequestRegistry()
    counter = {"n": 0}

    async def work():
        counter["n"] += 1
        return counter["n"]

    async def scenario():
        return await registry.dedupe("k", work), await registry.dedupe("k", work)

    assert asyncio.run(scenario()) == (1, 2)


def test_cancelled_caller_does_not_cancel_shared_work():
    registry = InFlightRequestRegistry()
    finished = []

    async def work():
        await asyncio.sleep(0.02)
        finished.append(True)
        return "done"

    async def scenario():
        loser = asyncio.ensure_future(registry.dedupe("k", work))
        keeper = asyncio.ensure_future(registry.dedupe("k", work))
        await asyncio.sleep(0)
        loser.cancel()
        with pytest.raises(asyncio.CancelledError):
            await loser
        return await keeper

    assert asyncio.run(scenario()) == "done"
    assert finished == [True]


def test_stats_and_clear():
    registry = InFlightRequestRegistry()

    async def scenario():
        gate = asyncio.Event()

        async def work():
            await gate.wait()
            return 1

        task = asyncio.ensure_future(registry.dedupe("usage:1", work))
        await asyncio.sleep(0)
        stats = registry.get_stats()
        pending = registry.is_pending("usage:1")
        registry.clear()
        cleared = registry.active_requests
        gate.set()
        return stats, pending, cleared, await task

    stats, pending, cleared, result = asyncio.run(scenario())

    assert stats == {"active_requests": 1, "active_keys": ["usage:1"]}
    assert pending is True
    assert cleared == 0
    assert result == 1
