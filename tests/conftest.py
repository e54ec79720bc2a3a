"""Pytest configuration and fixtures."""

import json
from datetime import datetime, timedelta

import pytest
from loguru import logger


class FakeClock:
    """Manually advanced clock for TTL and cooldown tests."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 1, 1, 12, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class SleepRecorder:
    """Replacement for asyncio.sleep that records delays without waiting."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleeper() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def diagnostic_events():
    """Collect diagnostic channel events emitted through loguru."""
    events: list[dict] = []

    def sink(message) -> None:
        record = message.record
        if record["extra"].get("channel") == "diagnostics":
            events.append(json.loads(record["message"]))

    handler_id = logger.add(sink, level="DEBUG")
    yield events
    logger.remove(handler_id)
