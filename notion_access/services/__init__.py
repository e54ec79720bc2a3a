"""
Service layer infrastructure - resilience patterns for remote API calls.

Provides:
- CacheStore: TTL cache with an optional persistent tier
- CircuitBreaker: Prevents cascading failures
- RequestDeduplicator: Collapses duplicate concurrent requests
- RetryExecutor: Exponential backoff with jitter
- ResilientFetch: Composition root combining all patterns
"""

from notion_access.services.errors import (
    ServiceError,
    CacheError,
    RemoteError,
    NetworkError,
    RequestTimeoutError,
    RateLimitError,
    CircuitOpenError,
)
from notion_access.services.resources import ResourceType, make_key
from notion_access.services.events import DiagnosticChannel, DiagnosticEvent, EventType
from notion_access.services.cache import (
    CacheConfig,
    CacheEntry,
    CacheResult,
    CacheStats,
    CacheStore,
    PersistentCacheTier,
)
from notion_access.services.persistence import SqlCacheTier
from notion_access.services.deduplicator import RequestDeduplicator
from notion_access.services.retry import (
    BatchResult,
    RetryConfig,
    RetryContext,
    RetryExecutor,
    calculate_delay,
    is_retryable_error,
)
from notion_access.services.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
    CircuitState,
)
from notion_access.services.transport import HttpTransport
from notion_access.services.client import (
    ClientConfig,
    RequestResult,
    ResilientFetch,
    create_client,
)

__all__ = [
    # Errors
    "ServiceError",
    "CacheError",
    "RemoteError",
    "NetworkError",
    "RequestTimeoutError",
    "RateLimitError",
    "CircuitOpenError",
    # Resources
    "ResourceType",
    "make_key",
    # Diagnostics
    "DiagnosticChannel",
    "DiagnosticEvent",
    "EventType",
    # Cache
    "CacheConfig",
    "CacheEntry",
    "CacheResult",
    "CacheStats",
    "CacheStore",
    "PersistentCacheTier",
    "SqlCacheTier",
    # Deduplicator
    "RequestDeduplicator",
    # Retry
    "BatchResult",
    "RetryConfig",
    "RetryContext",
    "RetryExecutor",
    "calculate_delay",
    "is_retryable_error",
    # Circuit Breaker
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerRegistry",
    "CircuitState",
    # Transport
    "HttpTransport",
    # Client
    "ClientConfig",
    "RequestResult",
    "ResilientFetch",
    "create_client",
]
