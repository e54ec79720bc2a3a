"""Tests for request deduplication."""

import asyncio

import pytest

from notion_access.services.deduplicator import RequestDeduplicator


@pytest.mark.asyncio
async def test_concurrent_calls_share_one_operation() -> None:
    """Test N concurrent callers invoke the operation once."""
    dedup = RequestDeduplicator()
    calls = 0
    release = asyncio.Event()

    async def fetch():
        nonlocal calls
        calls += 1
        await release.wait()
        return {"id": "abc"}

    tasks = [asyncio.create_task(dedup.execute("db:abc", fetch)) for _ in range(5)]
    await asyncio.sleep(0)
    release.set()
    results = await asyncio.gather(*tasks)

    assert calls == 1
    assert all(r == {"id": "abc"} for r in results)
    stats = dedup.get_stats()
    assert stats.misses == 1
    assert stats.hits == 4
    assert stats.pending == 0


@pytest.mark.asyncio
async def test_two_concurrent_calls_counter_is_one() -> None:
    """Test two gathered calls for the same key run fetch once."""
    dedup = RequestDeduplicator()
    counter = {"n": 0}

    async def fetch_fn():
        counter["n"] += 1
        await asyncio.sleep(0.01)
        return "value"

    a, b = await asyncio.gather(
        dedup.execute("db:abc", fetch_fn),
        dedup.execute("db:abc", fetch_fn),
    )

    assert counter["n"] == 1
    assert a == b == "value"


@pytest.mark.asyncio
async def test_different_keys_run_independently() -> None:
    """Test distinct keys are not collapsed."""
    dedup = RequestDeduplicator()
    seen: list[str] = []

    def make(key: str):
        async def op():
            seen.append(key)
            await asyncio.sleep(0)
            return key

        return op

    results = await asyncio.gather(
        dedup.execute("page:1", make("page:1")),
        dedup.execute("page:2", make("page:2")),
    )

    assert results == ["page:1", "page:2"]
    assert sorted(seen) == ["page:1", "page:2"]


@pytest.mark.asyncio
async def test_failure_reaches_all_callers_and_is_not_cached() -> None:
    """Test a shared failure propagates to everyone, then the key is free."""
    dedup = RequestDeduplicator()
    calls = 0

    async def failing():
        nonlocal calls
        calls += 1
        await asyncio.sleep(0)
        raise ValueError("boom")

    results = await asyncio.gather(
        dedup.execute("k", failing),
        dedup.execute("k", failing),
        return_exceptions=True,
    )

    assert calls == 1
    assert all(isinstance(r, ValueError) for r in results)
    assert results[0] is results[1]
    assert dedup.get_in_flight_count() == 0

    async def ok():
        return "fresh"

    assert await dedup.execute("k", ok) == "fresh"


@pytest.mark.asyncio
async def test_sequential_calls_are_not_deduplicated() -> None:
    """Test a settled request is not reused."""
    dedup = RequestDeduplicator()
    calls = 0

    async def op():
        nonlocal calls
        calls += 1
        return calls

    assert await dedup.execute("k", op) == 1
    assert await dedup.execute("k", op) == 2


@pytest.mark.asyncio
async def test_cancelled_caller_does_not_stop_shared_request() -> None:
    """Test abandoning one caller leaves the request running for others."""
    dedup = RequestDeduplicator()
    release = asyncio.Event()
    finished = asyncio.Event()

    async def op():
        await release.wait()
        finished.set()
        return "done"

    first = asyncio.create_task(dedup.execute("k", op))
    second = asyncio.create_task(dedup.execute("k", op))
    await asyncio.sleep(0)

    first.cancel()
    with pytest.raises(asyncio.CancelledError):
        await first

    release.set()
    assert await second == "done"
    assert finished.is_set()


@pytest.mark.asyncio
async def test_in_flight_keys_and_clear() -> None:
    """Test in-flight tracking and clear resetting statistics."""
    dedup = RequestDeduplicator(debug=True)
    release = asyncio.Event()

    async def op():
        await release.wait()
        return 1

    task = asyncio.create_task(dedup.execute("block:b1", op))
    await asyncio.sleep(0)

    assert dedup.get_in_flight_keys() == ["block:b1"]

    dedup.clear()
    assert dedup.get_in_flight_count() == 0
    assert dedup.get_stats().to_dict()["misses"] == 0

    release.set()
    assert await task == 1
