"""
SqlCacheTier - persistent cache tier backed by SQLAlchemy.

Survives process restarts. Best effort only: every failure is raised as
CacheError and absorbed by CacheStore.
"""

import json
from datetime import datetime, timedelta
from typing import Any, Callable

from sqlalchemy.exc import SQLAlchemyError

from notion_access.datastore.engine import CacheDatabase
from notion_access.datastore.repositories import CacheEntryRepository
from notion_access.services.cache import CacheEntry
from notion_access.services.errors import CacheError

DEFAULT_MAX_SIZE_BYTES = 100 * 1024 * 1024


class SqlCacheTier:
    """
    Persistent cache tier storing JSON payloads in a database table.

    Usage:
        db = CacheDatabase("sqlite+aiosqlite:///~/.notion-cli/cache.db")
        await db.init()
        cache = CacheStore(persistence=SqlCacheTier(db))
    """

    def __init__(
        self,
        database: CacheDatabase,
        max_size_bytes: int = DEFAULT_MAX_SIZE_BYTES,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self._db = database
        self._max_size_bytes = max_size_bytes
        self._clock = clock

    async def get(self, key: str) -> CacheEntry[Any] | None:
        try:
            async with self._db.session() as session:
                row = await CacheEntryRepository(session).get(key)
                if row is None:
                    return None
                return CacheEntry(
                    data=json.loads(row.payload),
                    stored_at=row.stored_at,
                    ttl=timedelta(milliseconds=row.ttl_ms),
                )
        except (SQLAlchemyError, RuntimeError, ValueError) as e:
            raise CacheError(f"Failed to read cache entry {key[:50]}: {e}") from e

    async def set(self, key: str, entry: CacheEntry[Any], ttl: timedelta) -> None:
        try:
            payload = json.dumps(entry.data, ensure_ascii=False)
        except (TypeError, ValueError) as e:
            raise CacheError(f"Value for {key[:50]} is not JSON serializable: {e}") from e

        try:
            async with self._db.session() as session:
                repo = CacheEntryRepository(session)
                await repo.upsert(
                    key=key,
                    payload=payload,
                    stored_at=entry.stored_at,
                    expires_at=entry.stored_at + ttl,
                    ttl_ms=int(ttl.total_seconds() * 1000),
                )
                await repo.delete_expired(self._clock())
                await repo.trim_to_size(self._max_size_bytes)
        except (SQLAlchemyError, RuntimeError) as e:
            raise CacheError(f"Failed to write cache entry {key[:50]}: {e}") from e

    async def invalidate(self, key: str) -> None:
        try:
            async with self._db.session() as session:
                await CacheEntryRepository(session).delete(key)
        except (SQLAlchemyError, RuntimeError) as e:
            raise CacheError(f"Failed to delete cache entry {key[:50]}: {e}") from e

    async def invalidate_prefix(self, prefix: str) -> None:
        try:
            async with self._db.session() as session:
                await CacheEntryRepository(session).delete_prefix(prefix)
        except (SQLAlchemyError, RuntimeError) as e:
            raise CacheError(f"Failed to invalidate '{prefix}': {e}") from e

    async def clear(self) -> None:
        try:
            async with self._db.session() as session:
                await CacheEntryRepository(session).delete_all()
        except (SQLAlchemyError, RuntimeError) as e:
            raise CacheError(f"Failed to clear cache: {e}") from e

    async def get_stats(self) -> dict[str, Any]:
        """Entry count and payload size of the persisted tier."""
        try:
            async with self._db.session() as session:
                repo = CacheEntryRepository(session)
                return {
                    "entries": await repo.count(),
                    "total_size": await repo.total_size(),
                    "max_size": self._max_size_bytes,
                }
        except (SQLAlchemyError, RuntimeError) as e:
            raise CacheError(f"Failed to read cache stats: {e}") from e
