"""TTL cache of entity snapshots, used for optimistic reads while offline."""

import logging
import time
from typing import Any

from ecosync.core.errors import StorageError
from ecosync.models.enums import EntityType
from ecosync.schemas.sync import entity_key

logger = logging.getLogger(__name__)

CACHE_PREFIX = "ecosync:cache:"

DAY_SECONDS = 24 * 60 * 60

DEFAULT_TTL_SECONDS: dict[str, int] = {
    EntityType.COLLECTION.value: DAY_SECONDS,
    EntityType.USER.value: 7 * DAY_SECONDS,
    EntityType.IMPACT.value: 3 * DAY_SECONDS,
    EntityType.MATERIAL.value: 7 * DAY_SECONDS,
    EntityType.ACHIEVEMENT.value: 7 * DAY_SECONDS,
    EntityType.CHALLENGE.value: DAY_SECONDS,
    EntityType.ORDER.value: 3 * DAY_SECONDS,
    EntityType.FEEDBACK.value: 7 * DAY_SECONDS,
}
FALLBACK_TTL_SECONDS = DAY_SECONDS


class OfflineCache:
    def __init__(self, store, ttl_by_entity: dict[str, int] | None = None):
        self.store = store
        self.ttl_by_entity = dict(DEFAULT_TTL_SECONDS if ttl_by_entity is None else ttl_by_entity)
        self._index_key = f"{CACHE_PREFIX}__index__"

    @staticmethod
    def _key(entity_type, entity_id: str) -> str:
        return f"{CACHE_PREFIX}{entity_key(entity_type)}:{entity_id}"

    def ttl_for(self, entity_type) -> int:
        return self.ttl_by_entity.get(entity_key(entity_type), FALLBACK_TTL_SECONDS)

    async def put(self, entity_type, entity_id: str, data: Any, ttl: int | None = None) -> None:
        key = self._key(entity_type, entity_id)
        expires_at = time.time() + (ttl if ttl is not None else self.ttl_for(entity_type))
        try:
            await self.store.set(key, {"data": data, "expires_at": expires_at})
            await self._track(key)
        except StorageError as exc:
            logger.warning("Could not cache %s: %s", key, exc)

    async def get(self, entity_type, entity_id: str) -> Any | None:
        key = self._key(entity_type, entity_id)
        try:
            entry = await self.store.get(key)
        except StorageError as exc:
            logger.warning("Could not read cached %s: %s", key, exc)
            return None
        if not entry:
            return None
        if entry.get("expires_at", 0) <= time.time():
            await self.invalidate(entity_type, entity_id)
            return None
        return entry.get("data")

    async def invalidate(self, entity_type, entity_id: str) -> None:
        key = self._key(entity_type, entity_id)
        try:
            await self.store.remove(key)
            await self._untrack(key)
        except StorageError as exc:
            logger.warning("Could not evict %s: %s", key, exc)

    async def clear(self) -> None:
        """Drop every cached entity without touching the queue keys in the same store."""
        try:
            keys = await self.store.get(self._index_key) or []
            for key in keys:
                await self.store.remove(key)
            await self.store.remove(self._index_key)
        except StorageError as exc:
            logger.warning("Could not clear offline cache: %s", exc)

    async def _track(self, key: str) -> None:
        keys = await self.store.get(self._index_key) or []
        if key not in keys:
            keys.append(key)
            await self.store.set(self._index_key, keys)

    async def _untrack(self, key: str) -> None:
        keys = await self.store.get(self._index_key) or []
        if key in keys:
            keys.remove(key)
            await self.store.set(self._index_key, keys)
