"""
CacheStore - Async TTL cache with an optional persistent tier.

Features:
- Memory-resident entries with per-resource-type default TTLs
- Capacity bound with oldest-entry eviction
- Probabilistic sweep of expired entries on write
- Read-through / write-behind persistent tier; tier failures degrade to misses
- Hit/miss/set/eviction statistics
"""

import asyncio
import random
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Generic, Protocol, TypeVar

from loguru import logger

from notion_access.services.events import DiagnosticChannel, EventType
from notion_access.services.resources import (
    DEFAULT_TTL_BY_TYPE,
    ResourceType,
    make_key,
    namespace_prefix,
)

T = TypeVar("T")


def _ms(delta: timedelta) -> int:
    return int(delta.total_seconds() * 1000)


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    """A single cache entry. Replaced, never mutated."""

    data: T
    stored_at: datetime
    ttl: timedelta

    def is_valid(self, now: datetime) -> bool:
        """Check if entry is still within its TTL."""
        return now - self.stored_at < self.ttl


@dataclass
class CacheResult(Generic[T]):
    """Result from cache lookup."""

    data: T
    from_cache: str  # 'memory' | 'persistent'


@dataclass
class CacheConfig:
    """Configuration for the cache store."""

    enabled: bool = True
    default_ttl: timedelta = timedelta(minutes=5)
    max_size: int = 1000
    ttl_by_type: dict[ResourceType, timedelta] = field(
        default_factory=lambda: dict(DEFAULT_TTL_BY_TYPE)
    )
    sweep_probability: float = 0.1  # Chance of an expiry sweep per write


class PersistentCacheTier(Protocol):
    """Durable backing store. Any method may raise; CacheStore absorbs it."""

    async def get(self, key: str) -> CacheEntry[Any] | None: ...

    async def set(self, key: str, entry: CacheEntry[Any], ttl: timedelta) -> None: ...

    async def invalidate(self, key: str) -> None: ...

    async def invalidate_prefix(self, prefix: str) -> None: ...

    async def clear(self) -> None: ...


class CacheStore:
    """
    Async TTL cache keyed by resource type and identifiers.

    Usage:
        cache = CacheStore(CacheConfig(max_size=500))

        result = await cache.get(ResourceType.PAGE, page_id)
        if result:
            return result.data

        data = await fetch_page(page_id)
        await cache.set(ResourceType.PAGE, data, page_id)

    Eviction removes the entry with the oldest stored_at. Reads do not refresh
    recency, so this approximates LRU rather than implementing it.
    """

    def __init__(
        self,
        config: CacheConfig | None = None,
        persistence: PersistentCacheTier | None = None,
        diagnostics: DiagnosticChannel | None = None,
        clock: Callable[[], datetime] = datetime.now,
        rng: Callable[[], float] = random.random,
    ):
        self.config = config or CacheConfig()
        self._persistence = persistence
        self._diagnostics = diagnostics or DiagnosticChannel()
        self._clock = clock
        self._rng = rng

        self._memory: dict[str, CacheEntry[Any]] = {}
        self._lock = asyncio.Lock()
        self._persist_lock = asyncio.Lock()
        self._stats = CacheStats()
        self._background: set[asyncio.Task[None]] = set()

        # Keys with a persistent read in flight, and those written meanwhile
        self._pending_reads: dict[str, int] = {}
        self._superseded: set[str] = set()

    def is_enabled(self) -> bool:
        return self.config.enabled

    @property
    def persistence(self) -> PersistentCacheTier | None:
        return self._persistence

    @property
    def has_persistence(self) -> bool:
        return self._persistence is not None

    def ttl_for(self, resource_type: ResourceType) -> timedelta:
        """Default TTL for a resource type."""
        return self.config.ttl_by_type.get(
            ResourceType(resource_type), self.config.default_ttl
        )

    async def get(
        self, resource_type: ResourceType, *identifiers: Any
    ) -> CacheResult[Any] | None:
        """
        Get a value from memory, then from the persistent tier.

        Returns CacheResult if found and within TTL, None otherwise.
        """
        if not self.config.enabled:
            return None

        namespace = ResourceType(resource_type).value
        key = make_key(resource_type, *identifiers)

        async with self._lock:
            entry = self._memory.get(key)
            if entry is not None:
                now = self._clock()
                if entry.is_valid(now):
                    return self._hit(namespace, key, entry, now, "memory")

                # Expired, detected lazily
                del self._memory[key]
                self._stats.evictions += 1

            self._pending_reads[key] = self._pending_reads.get(key, 0) + 1

        drop_from_tier = False
        try:
            entry = await self._read_persistent(key)

            async with self._lock:
                now = self._clock()

                # A set during the read wins over the persisted copy
                current = self._memory.get(key)
                if current is not None and current.is_valid(now):
                    return self._hit(namespace, key, current, now, "memory")

                superseded = key in self._superseded
                if not superseded and entry is not None and entry.is_valid(now):
                    if (
                        len(self._memory) >= self.config.max_size
                        and key not in self._memory
                    ):
                        self._evict_oldest()
                    self._memory[key] = entry
                    return self._hit(namespace, key, entry, now, "persistent")

                self._stats.misses += 1
                self._diagnostics.emit(EventType.CACHE_MISS, namespace, key=key)
                drop_from_tier = entry is not None and not superseded
        finally:
            self._end_read(key)

        if drop_from_tier:
            self._spawn(self._call_persistence("invalidate", key))

        return None

    async def set(
        self,
        resource_type: ResourceType,
        data: Any,
        *identifiers: Any,
        ttl: timedelta | None = None,
    ) -> None:
        """
        Set value in cache.

        Args:
            resource_type: Namespace of the value
            data: Data to cache
            *identifiers: Components of the cache key
            ttl: Time to live (uses the per-type default, then the global default)
        """
        if not self.config.enabled:
            return

        if ttl is None:
            ttl = self.ttl_for(resource_type)

        namespace = ResourceType(resource_type).value
        key = make_key(resource_type, *identifiers)
        entry = CacheEntry(data=data, stored_at=self._clock(), ttl=ttl)

        async with self._lock:
            if self._memory and self._rng() < self.config.sweep_probability:
                self._evict_expired()

            if len(self._memory) >= self.config.max_size and key not in self._memory:
                self._evict_oldest()

            self._memory[key] = entry
            self._stats.sets += 1
            self._supersede(key)

            self._diagnostics.emit(
                EventType.CACHE_SET,
                namespace,
                key=key,
                ttl_ms=_ms(ttl),
                cache_size=len(self._memory),
            )

        if self._persistence is not None:
            self._spawn(self._call_persistence("set", key, entry, ttl))

    async def invalidate(self, resource_type: ResourceType, *identifiers: Any) -> int:
        """
        Invalidate one entry, or every entry of a type when no identifiers are given.

        Returns:
            Number of memory entries removed
        """
        namespace = ResourceType(resource_type).value

        if identifiers:
            key = make_key(resource_type, *identifiers)
            async with self._lock:
                removed = 1 if self._memory.pop(key, None) is not None else 0
                self._stats.evictions += removed
                self._supersede(key)
                if removed:
                    self._diagnostics.emit(
                        EventType.CACHE_INVALIDATE,
                        namespace,
                        key=key,
                        cache_size=len(self._memory),
                    )
            if self._persistence is not None:
                self._spawn(self._call_persistence("invalidate", key))
            return removed

        prefix = namespace_prefix(resource_type)
        async with self._lock:
            keys_to_delete = [k for k in self._memory if k.startswith(prefix)]
            for k in keys_to_delete:
                del self._memory[k]
            self._stats.evictions += len(keys_to_delete)
            self._supersede(*(k for k in self._pending_reads if k.startswith(prefix)))

            if keys_to_delete:
                self._diagnostics.emit(
                    EventType.CACHE_INVALIDATE,
                    namespace,
                    cache_size=len(self._memory),
                )

        if self._persistence is not None:
            self._spawn(self._call_persistence("invalidate_prefix", prefix))
        return len(keys_to_delete)

    async def clear(self) -> None:
        """Clear all cache entries."""
        async with self._lock:
            count = len(self._memory)
            self._memory.clear()
            self._stats.evictions += count
            self._supersede(*self._pending_reads)

            if count:
                self._diagnostics.emit(
                    EventType.CACHE_INVALIDATE, "all", level="info", cache_size=0
                )

        if self._persistence is not None:
            self._spawn(self._call_persistence("clear"))

    async def sweep_expired(self) -> int:
        """Remove all expired entries. Returns count of removed entries."""
        async with self._lock:
            return self._evict_expired()

    async def flush(self) -> None:
        """Wait for outstanding persistent-tier writes."""
        while self._background:
            await asyncio.gather(*list(self._background))

    def get_stats(self) -> "CacheStats":
        """Get cache statistics."""
        self._stats.size = len(self._memory)
        self._stats.max_size = self.config.max_size
        return self._stats

    def _supersede(self, *keys: str) -> None:
        """Mark in-flight persistent reads of these keys as outdated."""
        self._superseded.update(k for k in keys if k in self._pending_reads)

    def _end_read(self, key: str) -> None:
        remaining = self._pending_reads[key] - 1
        if remaining:
            self._pending_reads[key] = remaining
        else:
            del self._pending_reads[key]
            self._superseded.discard(key)

    def _hit(
        self,
        namespace: str,
        key: str,
        entry: CacheEntry[Any],
        now: datetime,
        source: str,
    ) -> CacheResult[Any]:
        self._stats.hits += 1
        self._diagnostics.emit(
            EventType.CACHE_HIT,
            namespace,
            key=key,
            age_ms=_ms(now - entry.stored_at),
            ttl_ms=_ms(entry.ttl),
        )
        return CacheResult(data=entry.data, from_cache=source)

    def _evict_expired(self) -> int:
        now = self._clock()
        expired_keys = [k for k, v in self._memory.items() if not v.is_valid(now)]
        for key in expired_keys:
            del self._memory[key]

        if expired_keys:
            self._stats.evictions += len(expired_keys)
            self._diagnostics.emit(
                EventType.CACHE_EVICT, "expired", cache_size=len(self._memory)
            )

        return len(expired_keys)

    def _evict_oldest(self) -> None:
        """Evict the entry with the oldest stored_at (linear scan)."""
        if not self._memory:
            return

        oldest_key = min(
            self._memory.keys(),
            key=lambda k: self._memory[k].stored_at,
        )
        del self._memory[oldest_key]
        self._stats.evictions += 1
        self._diagnostics.emit(
            EventType.CACHE_EVICT,
            "lru",
            key=oldest_key,
            cache_size=len(self._memory),
        )

    async def _read_persistent(self, key: str) -> CacheEntry[Any] | None:
        if self._persistence is None:
            return None
        try:
            return await self._persistence.get(key)
        except Exception as e:
            logger.warning(f"[CacheStore] Persistent read failed for {key[:50]}: {e}")
            return None

    async def _call_persistence(self, method: str, *args: Any) -> None:
        # Tier writes apply in the order they were issued
        async with self._persist_lock:
            try:
                await getattr(self._persistence, method)(*args)
            except Exception as e:
                logger.warning(f"[CacheStore] Persistent {method} failed: {e}")

    def _spawn(self, coro: Awaitable[None]) -> None:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)


@dataclass
class CacheStats:
    """Cache statistics."""

    hits: int = 0
    misses: int = 0
    sets: int = 0
    evictions: int = 0
    size: int = 0
    max_size: int = 0

    @property
    def hit_rate(self) -> float:
        """Calculate cache hit rate."""
        total = self.hits + self.misses
        if total == 0:
            return 0.0
        return self.hits / total

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "hits": self.hits,
            "misses": self.misses,
            "sets": self.sets,
            "evictions": self.evictions,
            "size": self.size,
            "max_size": self.max_size,
            "hit_rate": f"{self.hit_rate:.2%}",
        }
