"""
RequestDeduplicator - Prevents duplicate concurrent requests.

When multiple callers request the same resource simultaneously,
only one actual request is made and the result is shared.
"""

import asyncio
from typing import Any, Awaitable, Callable, TypeVar

from loguru import logger

T = TypeVar("T")


class RequestDeduplicator:
    """
    Deduplicates concurrent async requests.

    When multiple coroutines request the same key simultaneously,
    only one actual request is made. All callers await the same result,
    or receive the same exception. Failures are not remembered: once the
    shared request settles the key is free again.

    Lookup and registration happen with no await in between, so two
    callers can never both start a request for the same key.

    A caller that is cancelled stops waiting, but the shared request keeps
    running for the other callers.

    Usage:
        dedup = RequestDeduplicator()

        async def fetch_page(page_id: str):
            return await dedup.execute(
                key=f"page:{page_id}",
                operation=lambda: http_client.get(f"/pages/{page_id}"),
            )
    """

    def __init__(self, debug: bool = False):
        self._in_flight: dict[str, asyncio.Task[Any]] = {}
        self._debug = debug
        self._stats = DeduplicatorStats()

    async def execute(
        self,
        key: str,
        operation: Callable[[], Awaitable[T]],
    ) -> T:
        """
        Execute operation with deduplication.

        If a request with the same key is already in flight,
        wait for and return its result instead of making a new request.

        Args:
            key: Unique identifier for this request
            operation: Async function to execute if no duplicate exists

        Returns:
            Result from operation (either fresh or from in-flight request)
        """
        task = self._in_flight.get(key)
        if task is not None:
            self._stats.hits += 1
            self._log(f"DEDUPE: Waiting for in-flight request: {key[:50]}...")
        else:
            self._stats.misses += 1
            self._log(f"NEW: Starting request: {key[:50]}...")
            task = asyncio.ensure_future(operation())
            self._in_flight[key] = task
            task.add_done_callback(lambda t: self._cleanup(key, t))

        return await asyncio.shield(task)

    def _cleanup(self, key: str, task: asyncio.Task[Any]) -> None:
        """Drop the registry entry once, when the shared request settles."""
        if self._in_flight.get(key) is task:
            del self._in_flight[key]

        # Mark the outcome as observed even if every waiter went away
        if not task.cancelled():
            task.exception()

        self._log(f"DONE: Request completed: {key[:50]}...")

    def clear(self) -> None:
        """Forget in-flight requests and reset statistics. Requests keep running."""
        count = len(self._in_flight)
        self._in_flight.clear()
        self._stats = DeduplicatorStats()
        if count:
            logger.warning(f"[Deduplicator] Cleared with {count} pending requests")

    def get_in_flight_count(self) -> int:
        """Get number of in-flight requests."""
        return len(self._in_flight)

    def get_in_flight_keys(self) -> list[str]:
        """Get keys of all in-flight requests."""
        return list(self._in_flight.keys())

    def get_stats(self) -> "DeduplicatorStats":
        """Get deduplication statistics."""
        self._stats.pending = len(self._in_flight)
        return self._stats

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[Deduplicator] {message}")


class DeduplicatorStats:
    """Statistics for request deduplication."""

    def __init__(self):
        self.hits: int = 0  # Callers attached to an in-flight request
        self.misses: int = 0  # Requests actually started
        self.pending: int = 0  # Current in-flight requests

    @property
    def dedup_rate(self) -> float:
        """Calculate deduplication rate."""
        total = self.hits + self.misses
        if total == 0:
            return 0.0
        return self.hits / total

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "hits": self.hits,
            "misses": self.misses,
            "pending": self.pending,
            "dedup_rate": f"{self.dedup_rate:.2%}",
        }
