"""
Diagnostic channel - structured JSON events on stderr.

Events go through loguru bound to channel="diagnostics". The default loguru
sink writes to stderr, so nothing here ever reaches the primary stdout output.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Literal

from loguru import logger
from pydantic import BaseModel, Field


class EventType(str, Enum):
    """Diagnostic event names."""

    CACHE_HIT = "cache_hit"
    CACHE_MISS = "cache_miss"
    CACHE_SET = "cache_set"
    CACHE_EVICT = "cache_evict"
    CACHE_INVALIDATE = "cache_invalidate"
    RETRY_ATTEMPT = "retry_attempt"
    RATE_LIMITED = "rate_limited"
    RETRY_EXHAUSTED = "retry_exhausted"


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class DiagnosticEvent(BaseModel):
    """A single structured diagnostic event."""

    level: Literal["debug", "info", "warning"] = "debug"
    event: EventType
    namespace: str
    key: str | None = None
    age_ms: int | None = None
    ttl_ms: int | None = None
    cache_size: int | None = None
    attempt: int | None = None
    max_retries: int | None = None
    delay_ms: int | None = None
    total_delay_ms: int | None = None
    status: int | None = None
    code: str | None = None
    context: str | None = None
    timestamp: str = Field(default_factory=_utc_now_iso)


class DiagnosticChannel:
    """
    Verbosity-gated emitter for diagnostic events.

    Usage:
        diagnostics = DiagnosticChannel(verbose=True)
        diagnostics.emit(EventType.CACHE_HIT, "page", key="p1", age_ms=12)
    """

    def __init__(self, verbose: bool = False):
        self.verbose = verbose
        self._logger = logger.bind(channel="diagnostics")

    def emit(
        self,
        event: EventType,
        namespace: str,
        level: Literal["debug", "info", "warning"] = "debug",
        **fields,
    ) -> None:
        """Emit an event if verbose diagnostics are enabled."""
        if not self.verbose:
            return

        payload = DiagnosticEvent(
            level=level, event=event, namespace=namespace, **fields
        )
        self._logger.log(
            level.upper(), payload.model_dump_json(exclude_none=True)
        )
