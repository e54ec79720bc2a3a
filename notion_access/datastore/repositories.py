"""
Repository layer - data access for persisted cache entries.
"""

from datetime import datetime

from loguru import logger
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from notion_access.datastore.models import CacheEntryDB


class CacheEntryRepository:
    """Persisted cache entry Repository."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, key: str) -> CacheEntryDB | None:
        result = await self.session.execute(
            select(CacheEntryDB).where(CacheEntryDB.key == key)
        )
        return result.scalar_one_or_none()

    async def upsert(
        self,
        key: str,
        payload: str,
        stored_at: datetime,
        expires_at: datetime,
        ttl_ms: int,
    ) -> None:
        """Insert or replace the row for a key."""
        existing = await self.get(key)
        if existing:
            existing.payload = payload
            existing.stored_at = stored_at
            existing.expires_at = expires_at
            existing.ttl_ms = ttl_ms
            existing.size = len(payload)
        else:
            self.session.add(
                CacheEntryDB(
                    key=key,
                    payload=payload,
                    stored_at=stored_at,
                    expires_at=expires_at,
                    ttl_ms=ttl_ms,
                    size=len(payload),
                )
            )
        await self.session.flush()

    async def delete(self, key: str) -> int:
        result = await self.session.execute(
            delete(CacheEntryDB).where(CacheEntryDB.key == key)
        )
        return result.rowcount or 0

    async def delete_prefix(self, prefix: str) -> int:
        """Delete every row whose key starts with prefix."""
        result = await self.session.execute(
            delete(CacheEntryDB).where(
                CacheEntryDB.key.startswith(prefix, autoescape=True)
            )
        )
        return result.rowcount or 0

    async def delete_all(self) -> int:
        result = await self.session.execute(delete(CacheEntryDB))
        return result.rowcount or 0

    async def delete_expired(self, now: datetime) -> int:
        result = await self.session.execute(
            delete(CacheEntryDB).where(CacheEntryDB.expires_at <= now)
        )
        deleted = result.rowcount or 0
        if deleted > 0:
            logger.debug(f"Removed {deleted} expired persisted cache entries")
        return deleted

    async def total_size(self) -> int:
        result = await self.session.execute(
            select(func.coalesce(func.sum(CacheEntryDB.size), 0))
        )
        return int(result.scalar_one())

    async def count(self) -> int:
        result = await self.session.execute(select(func.count(CacheEntryDB.key)))
        return int(result.scalar_one())

    async def trim_to_size(self, max_bytes: int) -> int:
        """Delete oldest rows by stored_at until the payload total fits max_bytes."""
        total = await self.total_size()
        if total <= max_bytes:
            return 0

        result = await self.session.execute(
            select(CacheEntryDB.key, CacheEntryDB.size).order_by(
                CacheEntryDB.stored_at
            )
        )
        doomed: list[str] = []
        for key, size in result.all():
            if total <= max_bytes:
                break
            doomed.append(key)
            total -= size

        if doomed:
            await self.session.execute(
                delete(CacheEntryDB).where(CacheEntryDB.key.in_(doomed))
            )
            logger.debug(f"Trimmed {len(doomed)} persisted cache entries to fit size")
        return len(doomed)
