"""Local durable key/value store: SQLite (SQLAlchemy), Redis, or in-memory fallback.

All backends expose the same four async operations. Driver failures are
wrapped in StorageError so callers can log them and carry on with in-memory
state instead of crashing the sync loop.
"""

import copy
import json
import logging
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker

from ecosync.core.errors import StorageError
from ecosync.database import build_session_factory
from ecosync.models.storage import KeyValueEntry

logger = logging.getLogger(__name__)


class KeyValueStore:
    """Async key/value contract. Values must be JSON-compatible."""

    async def get(self, key: str) -> Any | None:
        raise NotImplementedError

    async def set(self, key: str, value: Any) -> None:
        raise NotImplementedError

    async def remove(self, key: str) -> None:
        raise NotImplementedError

    async def clear(self) -> None:
        raise NotImplementedError

    async def close(self) -> None:
        return None


class MemoryKeyValueStore(KeyValueStore):
    """Process-lifetime store. Data does not survive a restart."""

    durable = False

    def __init__(self) -> None:
        self._data: dict[str, Any] = {}

    async def get(self, key: str) -> Any | None:
        # Hand out copies so callers cannot mutate stored state in place
        return copy.deepcopy(self._data.get(key))

    async def set(self, key: str, value: Any) -> None:
        self._data[key] = copy.deepcopy(value)

    async def remove(self, key: str) -> None:
        self._data.pop(key, None)

    async def clear(self) -> None:
        self._data.clear()


class SQLAlchemyKeyValueStore(KeyValueStore):
    """Durable store on an async SQLAlchemy engine (sqlite+aiosqlite by default)."""

    durable = True

    def __init__(self, engine: AsyncEngine, session_factory: async_sessionmaker | None = None):
        self.engine = engine
        self.session_factory = session_factory or build_session_factory(engine)

    async def init(self) -> None:
        from ecosync.database import create_tables

        try:
            await create_tables(self.engine)
        except SQLAlchemyError as exc:
            raise StorageError(f"Failed to initialise store: {exc}") from exc

    async def get(self, key: str) -> Any | None:
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(KeyValueEntry.value).where(KeyValueEntry.key == key)
                )
                return result.scalar_one_or_none()
        except SQLAlchemyError as exc:
            raise StorageError(f"Failed to read '{key}': {exc}") from exc

    async def set(self, key: str, value: Any) -> None:
        try:
            async with self.session_factory() as session:
                entry = await session.get(KeyValueEntry, key)
                if entry is None:
                    session.add(KeyValueEntry(key=key, value=value))
                else:
                    entry.value = value
                await session.commit()
        except SQLAlchemyError as exc:
            raise StorageError(f"Failed to write '{key}': {exc}") from exc

    async def remove(self, key: str) -> None:
        try:
            async with self.session_factory() as session:
                await session.execute(delete(KeyValueEntry).where(KeyValueEntry.key == key))
                await session.commit()
        except SQLAlchemyError as exc:
            raise StorageError(f"Failed to remove '{key}': {exc}") from exc

    async def clear(self) -> None:
        try:
            async with self.session_factory() as session:
                await session.execute(delete(KeyValueEntry))
                await session.commit()
        except SQLAlchemyError as exc:
            raise StorageError(f"Failed to clear store: {exc}") from exc

    async def close(self) -> None:
        await self.engine.dispose()


class RedisKeyValueStore(KeyValueStore):
    """Durable store on Redis. Only keys under ``prefix`` are touched."""

    durable = True

    def __init__(self, client, prefix: str = "ecosync:"):
        self.client = client
        self.prefix = prefix

    @classmethod
    def from_url(cls, url: str, prefix: str = "ecosync:") -> "RedisKeyValueStore":
        import redis.asyncio as aioredis

        return cls(aioredis.from_url(url, decode_responses=True), prefix=prefix)

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    async def init(self) -> None:
        try:
            await self.client.ping()
        except Exception as exc:
            raise StorageError(f"Redis unavailable: {exc}") from exc

    async def get(self, key: str) -> Any | None:
        try:
            raw = await self.client.get(self._key(key))
        except Exception as exc:
            raise StorageError(f"Failed to read '{key}': {exc}") from exc
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (json.JSONDecodeError, TypeError) as exc:
            raise StorageError(f"Corrupt value under '{key}'") from exc

    async def set(self, key: str, value: Any) -> None:
        try:
            await self.client.set(self._key(key), json.dumps(value))
        except (TypeError, ValueError) as exc:
            raise StorageError(f"Value for '{key}' is not JSON-serialisable") from exc
        except Exception as exc:
            raise StorageError(f"Failed to write '{key}': {exc}") from exc

    async def remove(self, key: str) -> None:
        try:
            await self.client.delete(self._key(key))
        except Exception as exc:
            raise StorageError(f"Failed to remove '{key}': {exc}") from exc

    async def clear(self) -> None:
        try:
            keys = [k async for k in self.client.scan_iter(match=f"{self.prefix}*")]
            if keys:
                await self.client.delete(*keys)
        except Exception as exc:
            raise StorageError(f"Failed to clear store: {exc}") from exc

    async def close(self) -> None:
        await self.client.aclose()


async def create_store(settings) -> KeyValueStore:
    """Build the configured store, falling back to memory when it cannot start."""
    backend = settings.STORAGE_BACKEND.lower()
    if backend == "memory":
        return MemoryKeyValueStore()

    try:
        if backend == "redis":
            store = RedisKeyValueStore.from_url(
                settings.REDIS_URL, prefix=settings.STORAGE_KEY_PREFIX,
            )
        elif backend == "sqlite":
            from ecosync.database import build_engine

            store = SQLAlchemyKeyValueStore(build_engine(settings.DATABASE_URL))
        else:
            raise ValueError(f"Unknown STORAGE_BACKEND: {settings.STORAGE_BACKEND}")
        await store.init()
        logger.info("Using %s store for offline data", backend)
        return store
    except (StorageError, ImportError) as exc:
        logger.warning(
            "Durable %s store unavailable (%s); offline data will not survive restarts",
            backend,
            exc,
        )
        return MemoryKeyValueStore()
