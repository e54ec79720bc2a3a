"""
ResilientFetch - composition root for resilient remote access.

Order of operations for a read:
    cache read-through → circuit breaker → deduplication → retry
    → remote call → cache write-through

Combines:
- CacheStore (with optional persistent tier) for response caching
- CircuitBreaker per resource type for failure protection
- RequestDeduplicator for concurrent request collapsing
- RetryExecutor for transient failures
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Generic, Iterable, Sequence, TypeVar

from loguru import logger

from notion_access.datastore.engine import CacheDatabase
from notion_access.services.cache import CacheConfig, CacheStore, PersistentCacheTier
from notion_access.services.circuit_breaker import (
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
)
from notion_access.services.deduplicator import RequestDeduplicator
from notion_access.services.errors import CacheError
from notion_access.services.events import DiagnosticChannel
from notion_access.services.persistence import SqlCacheTier
from notion_access.services.resources import ResourceType, make_key
from notion_access.services.retry import BatchResult, RetryConfig, RetryExecutor
from notion_access.services.transport import HttpTransport

if TYPE_CHECKING:
    from notion_access.settings import Settings

T = TypeVar("T")

# A bare ResourceType invalidates the whole type
InvalidationTarget = ResourceType | tuple[Any, ...]


@dataclass
class RequestResult(Generic[T]):
    """Result from a resilient fetch."""

    data: T
    from_cache: str | None = None  # 'memory' | 'persistent' | None
    resource_type: ResourceType | None = None


@dataclass
class ClientConfig:
    """Configuration for the whole resilient access layer."""

    cache: CacheConfig = field(default_factory=CacheConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    circuit_breaker: CircuitBreakerConfig = field(default_factory=CircuitBreakerConfig)
    use_dedup: bool = True
    use_persistent_cache: bool = True
    verbose: bool = False


def _as_identifiers(identifiers: Any) -> tuple[Any, ...]:
    if identifiers is None:
        return ()
    if isinstance(identifiers, (str, bytes, dict)) or not isinstance(
        identifiers, Iterable
    ):
        return (identifiers,)
    return tuple(identifiers)


class ResilientFetch:
    """
    Resilient fetch layer with caching, circuit breaking, deduplication and retry.

    Usage:
        fetcher = ResilientFetch(ClientConfig())

        result = await fetcher.fetch(
            ResourceType.PAGE,
            [page_id],
            lambda: transport.get(f"/pages/{page_id}"),
        )

        await fetcher.mutate(
            ResourceType.DATABASE,
            lambda: transport.request("PATCH", f"/databases/{db_id}", json_data=body),
            invalidates=[(ResourceType.DATABASE, db_id), ResourceType.SEARCH],
        )
    """

    def __init__(
        self,
        config: ClientConfig | None = None,
        persistence: PersistentCacheTier | None = None,
        diagnostics: DiagnosticChannel | None = None,
        transport: HttpTransport | None = None,
        database: CacheDatabase | None = None,
        clock: Callable[[], datetime] = datetime.now,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.config = config or ClientConfig()
        self.transport = transport
        self._database = database
        self._diagnostics = diagnostics or DiagnosticChannel(verbose=self.config.verbose)

        # Initialize components
        self._cache = CacheStore(
            self.config.cache,
            persistence=persistence if self.config.use_persistent_cache else None,
            diagnostics=self._diagnostics,
            clock=clock,
        )
        self._retry = RetryExecutor(
            self.config.retry, diagnostics=self._diagnostics, sleep=sleep
        )
        self._circuit_breakers = CircuitBreakerRegistry(
            self.config.circuit_breaker, retry=self._retry, clock=clock
        )
        self._deduplicator = RequestDeduplicator(debug=self.config.verbose)

    @property
    def cache(self) -> CacheStore:
        return self._cache

    @property
    def deduplicator(self) -> RequestDeduplicator:
        return self._deduplicator

    @property
    def circuit_breakers(self) -> CircuitBreakerRegistry:
        return self._circuit_breakers

    @property
    def retry(self) -> RetryExecutor:
        return self._retry

    async def fetch(
        self,
        resource_type: ResourceType,
        identifiers: Any,
        operation: Callable[[], Awaitable[T]],
        ttl: timedelta | None = None,
        use_cache: bool | None = None,
        use_dedup: bool | None = None,
        retry_config: RetryConfig | None = None,
    ) -> RequestResult[T]:
        """
        Read a resource with every resilience pattern applied.

        Args:
            resource_type: Resource category (cache namespace, breaker id)
            identifiers: Components of the cache/dedup key
            operation: Zero-argument async callable performing the remote call
            ttl: Override the cache TTL for this resource
            use_cache: Override cache usage (default: enabled)
            use_dedup: Override deduplication (default: ClientConfig.use_dedup)
            retry_config: Override retry settings for this call

        Returns:
            RequestResult with response data

        Raises:
            CircuitOpenError: If the resource type's circuit is open
            Exception: The operation's own error once retries are exhausted
        """
        resource_type = ResourceType(resource_type)
        ids = _as_identifiers(identifiers)
        should_cache = self._cache.is_enabled() if use_cache is None else use_cache
        should_dedup = self.config.use_dedup if use_dedup is None else use_dedup

        # Check cache first
        if should_cache:
            cached = await self._cache.get(resource_type, *ids)
            if cached is not None:
                return RequestResult(
                    data=cached.data,
                    from_cache=cached.from_cache,
                    resource_type=resource_type,
                )

        # Fail fast while the circuit is open
        cb = self._circuit_breakers.get(resource_type.value)
        cb.ensure_can_request()

        key = make_key(resource_type, *ids)

        async def do_request() -> T:
            try:
                data = await self._retry.fetch_with_retry(
                    operation, config=retry_config, context=key
                )
            except Exception:
                cb.record_failure()
                raise

            cb.record_success()

            if should_cache:
                await self._cache.set(resource_type, data, *ids, ttl=ttl)
            return data

        if should_dedup:
            data = await self._deduplicator.execute(key, do_request)
        else:
            data = await do_request()

        return RequestResult(data=data, from_cache=None, resource_type=resource_type)

    async def fetch_json(
        self,
        resource_type: ResourceType,
        identifiers: Any,
        path: str,
        params: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> RequestResult[Any]:
        """Fetch a GET endpoint of the configured transport."""
        if self.transport is None:
            raise RuntimeError("No HTTP transport configured")
        return await self.fetch(
            resource_type,
            identifiers,
            self.transport.operation("GET", path, params=params),
            **kwargs,
        )

    async def mutate(
        self,
        resource_type: ResourceType,
        operation: Callable[[], Awaitable[T]],
        invalidates: Iterable[InvalidationTarget] = (),
        retry_config: RetryConfig | None = None,
    ) -> T:
        """
        Run a write through the circuit breaker and retry, then invalidate.

        Writes are neither cached nor deduplicated. Invalidation happens only
        after the write succeeded.
        """
        resource_type = ResourceType(resource_type)
        cb = self._circuit_breakers.get(resource_type.value)
        result = await cb.execute(
            operation,
            retry_config=retry_config,
            context=f"{resource_type.value}:mutate",
        )

        for target in invalidates:
            await self.invalidate(*_as_identifiers(target))

        return result

    async def batch(
        self,
        operations: Sequence[Callable[[], Awaitable[T]]],
        concurrency: int = 5,
        retry_config: RetryConfig | None = None,
    ) -> list[BatchResult[T]]:
        """Run independent operations with bounded concurrency and retry."""
        return await self._retry.batch_with_retry(
            operations, concurrency=concurrency, config=retry_config
        )

    async def invalidate(self, resource_type: ResourceType, *identifiers: Any) -> int:
        """Invalidate one cached resource, or a whole type."""
        return await self._cache.invalidate(resource_type, *identifiers)

    async def clear_cache(self) -> None:
        await self._cache.clear()

    async def close(self) -> None:
        """Flush pending cache writes and release transport and database."""
        await self._cache.flush()

        if self.transport:
            await self.transport.close()

        if self._database:
            await self._database.close()

        logger.debug("ResilientFetch closed")

    async def __aenter__(self) -> "ResilientFetch":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.close()

    # Health and status methods

    def get_health_status(self) -> dict[str, Any]:
        """Get health status of all components."""
        cache_config = self._cache.config
        return {
            "cache": {
                "enabled": self._cache.is_enabled(),
                "persistent": self._cache.has_persistence,
                "stats": self._cache.get_stats().to_dict(),
                "default_ttl_ms": int(cache_config.default_ttl.total_seconds() * 1000),
                "ttls_ms": {
                    rt.value: int(self._cache.ttl_for(rt).total_seconds() * 1000)
                    for rt in ResourceType
                },
            },
            "deduplicator": {
                "enabled": self.config.use_dedup,
                **self._deduplicator.get_stats().to_dict(),
            },
            "circuit_breakers": self._circuit_breakers.get_all_status(),
            "open_circuits": self._circuit_breakers.get_open_circuits(),
        }

    async def get_cache_info(self) -> dict[str, Any]:
        """Health status plus persistent tier statistics when available."""
        info = self.get_health_status()
        persistence = self._cache.persistence
        if isinstance(persistence, SqlCacheTier):
            try:
                info["cache"]["persistent_stats"] = await persistence.get_stats()
            except CacheError as e:
                logger.warning(f"Could not read persistent cache stats: {e}")
        return info

    def get_circuit_status(self, resource_type: ResourceType) -> dict[str, Any] | None:
        """Get circuit breaker status for a resource type."""
        cb = self._circuit_breakers.find(ResourceType(resource_type).value)
        return cb.get_status() if cb else None

    def reset_circuit(self, resource_type: ResourceType) -> bool:
        """Reset circuit breaker for a resource type."""
        return self._circuit_breakers.reset(ResourceType(resource_type).value)


async def create_client(settings: "Settings") -> ResilientFetch:
    """
    Build the resilient access layer once from settings.

    The persistent tier is optional: if its database cannot be opened the
    client runs memory-only.
    """
    config = settings.to_client_config()
    diagnostics = DiagnosticChannel(verbose=config.verbose)

    database: CacheDatabase | None = None
    persistence: SqlCacheTier | None = None
    if config.cache.enabled and config.use_persistent_cache:
        database = CacheDatabase(settings.disk_cache_url)
        try:
            await database.init()
            persistence = SqlCacheTier(database, settings.disk_cache_max_size)
        except Exception as e:
            logger.warning(f"Persistent cache unavailable, using memory only: {e}")
            await database.close()
            database = None

    transport = HttpTransport(
        settings.api_base_url,
        token=settings.notion_token or None,
        timeout=settings.request_timeout_ms / 1000,
        headers={"Notion-Version": settings.notion_version},
    )

    return ResilientFetch(
        config,
        persistence=persistence,
        diagnostics=diagnostics,
        transport=transport,
        database=database,
    )
