"""Tests for the circuit breaker state machine."""

from datetime import timedelta

import pytest

from notion_access.services.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
    CircuitState,
)
from notion_access.services.errors import CircuitOpenError, RemoteError
from notion_access.services.retry import RetryConfig, RetryExecutor


class Counter:
    """Operation that records calls and fails while `fail` is set."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.fail:
            raise RemoteError("down", status=400)
        return "ok"


def make_breaker(clock, sleeper, **config) -> CircuitBreaker:
    retry = RetryExecutor(RetryConfig(max_retries=0), sleep=sleeper)
    return CircuitBreaker(
        "database",
        CircuitBreakerConfig(**config),
        retry=retry,
        clock=clock,
    )


async def fail_times(breaker: CircuitBreaker, op: Counter, n: int) -> None:
    for _ in range(n):
        with pytest.raises(RemoteError):
            await breaker.execute(op)


@pytest.mark.asyncio
async def test_opens_after_threshold_and_fails_fast(clock, sleeper) -> None:
    """Test three failures open the circuit; a fourth call is not attempted."""
    breaker = make_breaker(clock, sleeper, failure_threshold=3)
    op = Counter(fail=True)

    await fail_times(breaker, op, 3)
    assert breaker.state == CircuitState.OPEN

    with pytest.raises(CircuitOpenError) as exc_info:
        await breaker.execute(op)

    assert op.calls == 3
    assert exc_info.value.service_id == "database"
    assert exc_info.value.reset_after_seconds == pytest.approx(60.0)


@pytest.mark.asyncio
async def test_success_resets_failure_count(clock, sleeper) -> None:
    """Test failures must be consecutive to open the circuit."""
    breaker = make_breaker(clock, sleeper, failure_threshold=3)
    failing = Counter(fail=True)

    await fail_times(breaker, failing, 2)
    assert await breaker.execute(Counter()) == "ok"
    await fail_times(breaker, failing, 2)

    assert breaker.state == CircuitState.CLOSED


@pytest.mark.asyncio
async def test_half_open_after_timeout_then_closes(clock, sleeper) -> None:
    """Test the cooldown leads to half-open and successes close the circuit."""
    breaker = make_breaker(
        clock, sleeper, failure_threshold=2, success_threshold=2,
        reset_timeout=timedelta(seconds=30),
    )
    await fail_times(breaker, Counter(fail=True), 2)

    clock.advance(seconds=29)
    with pytest.raises(CircuitOpenError):
        await breaker.execute(Counter())

    clock.advance(seconds=1)
    probe = Counter()
    assert await breaker.execute(probe) == "ok"
    assert probe.calls == 1
    assert breaker.state == CircuitState.HALF_OPEN

    await breaker.execute(probe)
    assert breaker.state == CircuitState.CLOSED


@pytest.mark.asyncio
async def test_failure_in_half_open_reopens_with_new_cooldown(clock, sleeper) -> None:
    """Test any half-open failure reopens and restarts the cooldown."""
    breaker = make_breaker(
        clock, sleeper, failure_threshold=3, reset_timeout=timedelta(seconds=10)
    )
    await fail_times(breaker, Counter(fail=True), 3)
    clock.advance(seconds=10)

    await fail_times(breaker, Counter(fail=True), 1)
    assert breaker.state == CircuitState.OPEN

    clock.advance(seconds=5)
    with pytest.raises(CircuitOpenError):
        await breaker.execute(Counter())

    clock.advance(seconds=5)
    assert await breaker.execute(Counter()) == "ok"


@pytest.mark.asyncio
async def test_whole_retry_sequence_counts_as_one_failure(clock, sleeper) -> None:
    """Test retries happen inside the breaker and count once."""
    retry = RetryExecutor(RetryConfig(max_retries=2, base_delay_ms=1), sleep=sleeper)
    breaker = CircuitBreaker(
        "page", CircuitBreakerConfig(failure_threshold=2), retry=retry, clock=clock
    )

    async def unavailable():
        raise RemoteError("down", status=503)

    with pytest.raises(RemoteError):
        await breaker.execute(unavailable)

    assert len(sleeper.calls) == 2
    assert breaker.state == CircuitState.CLOSED
    assert breaker.get_status()["failure_count"] == 1


@pytest.mark.asyncio
async def test_reset_and_status(clock, sleeper) -> None:
    """Test manual reset and status reporting."""
    breaker = make_breaker(clock, sleeper, failure_threshold=1)
    await fail_times(breaker, Counter(fail=True), 1)

    status = breaker.get_status()
    assert status["state"] == "OPEN"
    assert status["opened_at"] == clock().isoformat()
    assert status["time_until_reset"] == pytest.approx(60.0)

    breaker.reset()
    assert breaker.state == CircuitState.CLOSED
    assert breaker.get_time_until_reset() is None


def test_registry_keeps_one_breaker_per_service(clock) -> None:
    """Test the registry creates breakers lazily and tracks open circuits."""
    registry = CircuitBreakerRegistry(CircuitBreakerConfig(failure_threshold=1), clock=clock)

    db = registry.get("database")
    assert registry.get("database") is db
    assert registry.find("page") is None

    db.record_failure()
    registry.get("page")

    assert registry.get_open_circuits() == ["database"]
    assert set(registry.get_all_status()) == {"database", "page"}

    assert registry.reset("database") is True
    assert registry.reset("missing") is False
    assert registry.get_open_circuits() == []
