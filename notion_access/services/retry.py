"""
RetryExecutor - exponential backoff with jitter for transient failures.

Classification:
- Connection-level errors with no response (reset, timeout, DNS) are retried
- Status codes in retryable_status_codes (408, 429, 5xx) are retried
- Domain error codes in retryable_error_codes are retried
- Any other 4xx is never retried, unless its domain code is listed

Delay:
- A server retry hint (Retry-After) is used alone, capped at max_delay_ms
- Otherwise min(base * exp_base^(attempt-1), max) with +/- jitter
"""

import asyncio
import random
import socket
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Sequence, TypeVar

import httpx

from notion_access.services.events import DiagnosticChannel, EventType

T = TypeVar("T")

NETWORK_ERROR_CODES = frozenset({"ECONNRESET", "ETIMEDOUT", "ENOTFOUND", "EAI_AGAIN"})

_CONNECTION_ERRORS = (
    ConnectionError,
    TimeoutError,
    socket.gaierror,
    httpx.NetworkError,
    httpx.TimeoutException,
)


@dataclass(frozen=True)
class RetryConfig:
    """Configuration for retry behaviour. Delays are in milliseconds."""

    max_retries: int = 3
    base_delay_ms: int = 1000
    max_delay_ms: int = 30000
    exponential_base: float = 2.0
    jitter_factor: float = 0.1
    retryable_status_codes: frozenset[int] = frozenset({408, 429, 500, 502, 503, 504})
    retryable_error_codes: frozenset[str] = frozenset(
        {
            "rate_limited",
            "service_unavailable",
            "internal_server_error",
            "conflict_error",
        }
    )


@dataclass
class RetryContext:
    """State of one retry sequence, passed to on_retry callbacks."""

    attempt: int
    max_retries: int
    last_error: BaseException | None = None
    total_delay_ms: int = 0


@dataclass
class BatchResult(Generic[T]):
    """Outcome of one operation in a batch."""

    success: bool
    data: T | None = None
    error: BaseException | None = None


RetryCallback = Callable[[RetryContext], None]


def error_status(error: BaseException) -> int | None:
    """HTTP status carried by an error, if any."""
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    status = getattr(error, "status", None)
    return status if isinstance(status, int) else None


def error_code(error: BaseException) -> str | None:
    """Domain or network error code carried by an error, if any."""
    code = getattr(error, "code", None)
    return code if isinstance(code, str) else None


def retry_after_seconds(error: BaseException) -> float | None:
    """Server-provided retry hint in seconds, if any."""
    hint = getattr(error, "retry_after", None)
    if hint is None and isinstance(error, httpx.HTTPStatusError):
        hint = error.response.headers.get("retry-after")
    if hint is None:
        return None
    try:
        return float(hint)
    except (TypeError, ValueError):
        return None


def is_retryable_error(error: BaseException, config: RetryConfig | None = None) -> bool:
    """Classify an error as retryable or not."""
    config = config or RetryConfig()
    status = error_status(error)
    code = error_code(error)

    # Network errors (no response)
    if status is None and (
        isinstance(error, _CONNECTION_ERRORS) or code in NETWORK_ERROR_CODES
    ):
        return True

    if status is not None and status in config.retryable_status_codes:
        return True

    # A listed domain code opts in explicitly, e.g. 409 conflict_error
    if code is not None and code in config.retryable_error_codes:
        return True

    # Remaining client errors (4xx other than 408/429) are final
    return False


def calculate_delay(
    attempt: int,
    config: RetryConfig | None = None,
    retry_after: float | None = None,
    rng: Callable[[], float] = random.random,
) -> int:
    """
    Delay in milliseconds before retry number `attempt` (1-based).

    A retry hint replaces the backoff computation entirely.
    """
    config = config or RetryConfig()

    if retry_after is not None and retry_after >= 0:
        return min(int(retry_after * 1000), config.max_delay_ms)

    exponential = config.base_delay_ms * config.exponential_base ** (attempt - 1)
    capped = min(exponential, config.max_delay_ms)

    jitter = capped * config.jitter_factor * (rng() * 2 - 1)
    return round(max(0.0, capped + jitter))


def _describe(error: BaseException) -> str:
    status = error_status(error)
    if status == 429:
        return "Rate limited"
    if status is not None:
        return f"HTTP {status}"
    return error_code(error) or type(error).__name__


class RetryExecutor:
    """
    Re-invokes an async operation with exponential backoff.

    Usage:
        retry = RetryExecutor(RetryConfig(max_retries=2))
        data = await retry.fetch_with_retry(lambda: transport.get("/users/me"))
    """

    def __init__(
        self,
        config: RetryConfig | None = None,
        diagnostics: DiagnosticChannel | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Callable[[], float] = random.random,
    ):
        self.config = config or RetryConfig()
        self._diagnostics = diagnostics or DiagnosticChannel()
        self._sleep = sleep
        self._rng = rng

    async def fetch_with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        config: RetryConfig | None = None,
        on_retry: RetryCallback | None = None,
        context: str | None = None,
    ) -> T:
        """
        Run operation, retrying transient failures.

        Args:
            operation: Zero-argument async callable performing the remote call
            config: Overrides the executor's config for this call
            on_retry: Called with a RetryContext before each sleep
            context: Label attached to diagnostic events

        Raises:
            The last error, unchanged, when it is not retryable or retries are exhausted
        """
        config = config or self.config
        total_delay = 0
        namespace = context or "retry"

        for attempt in range(1, config.max_retries + 2):
            try:
                return await operation()
            except Exception as error:
                retryable = is_retryable_error(error, config)

                if not retryable or attempt > config.max_retries:
                    if retryable:
                        self._diagnostics.emit(
                            EventType.RETRY_EXHAUSTED,
                            namespace,
                            level="warning",
                            attempt=attempt,
                            max_retries=config.max_retries,
                            total_delay_ms=total_delay,
                            status=error_status(error),
                            code=error_code(error),
                            context=_describe(error),
                        )
                    raise

                delay = calculate_delay(
                    attempt, config, retry_after_seconds(error), self._rng
                )
                total_delay += delay

                self._diagnostics.emit(
                    EventType.RATE_LIMITED
                    if error_status(error) == 429
                    else EventType.RETRY_ATTEMPT,
                    namespace,
                    attempt=attempt,
                    max_retries=config.max_retries,
                    delay_ms=delay,
                    total_delay_ms=total_delay,
                    status=error_status(error),
                    code=error_code(error),
                    context=_describe(error),
                )

                if on_retry:
                    on_retry(
                        RetryContext(
                            attempt=attempt,
                            max_retries=config.max_retries,
                            last_error=error,
                            total_delay_ms=total_delay,
                        )
                    )

                await self._sleep(delay / 1000)

        raise AssertionError("unreachable")

    async def batch_with_retry(
        self,
        operations: Sequence[Callable[[], Awaitable[T]]],
        concurrency: int = 5,
        config: RetryConfig | None = None,
        on_retry: RetryCallback | None = None,
    ) -> list[BatchResult[T]]:
        """
        Run independent operations in windows of `concurrency`, each with retry.

        One failure never aborts the batch; results keep the input order.
        """
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")

        results: list[BatchResult[T]] = []
        total = len(operations)

        async def run_one(index: int, op: Callable[[], Awaitable[T]]) -> BatchResult[T]:
            try:
                data = await self.fetch_with_retry(
                    op,
                    config=config,
                    on_retry=on_retry,
                    context=f"Operation {index + 1}/{total}",
                )
                return BatchResult(success=True, data=data)
            except Exception as e:
                return BatchResult(success=False, error=e)

        for start in range(0, total, concurrency):
            window = operations[start : start + concurrency]
            results.extend(
                await asyncio.gather(
                    *(run_one(start + i, op) for i, op in enumerate(window))
                )
            )

        return results
