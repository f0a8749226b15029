"""
Read-through / write-through access to a cache tier backed by a store.

Lookups go cache -> store -> absent. Writes update the cache first and then
the store. Store failures are logged and swallowed so that the cached state
remains usable while the store is down; corrupt documents are logged and
treated as a miss.
"""

from typing import Any, Callable, TypeVar

import structlog

from ..errors import DeserializationError, PersistenceError
from .cache import CacheTier
from .store import PersistenceStore

logger = structlog.get_logger()

T = TypeVar("T")


class CachedRepository:
    """Pairs one cache tier with the persistence store."""

    def __init__(self, cache: CacheTier, store: PersistenceStore):
        self.cache = cache
        self.store = store

    async def read(
        self,
        cache_key: str,
        store_key: str,
        decode: Callable[[Any], T],
        tags_for: Callable[[T], list[str]] | None = None,
    ) -> T | None:
        """Get a value from the cache, falling back to the store.

        ``tags_for`` computes the cache tags of a value loaded from the store.
        """
        cached = self.cache.get(cache_key)
        if cached is not None:
            return cached

        value = await self.load(store_key, decode)
        if value is not None:
            self.cache.set(cache_key, value, tags=tags_for(value) if tags_for else None)
        return value

    async def load(self, store_key: str, decode: Callable[[Any], T]) -> T | None:
        """Read and decode a document from the store only."""
        try:
            raw = await self.store.get(store_key)
        except PersistenceError as e:
            logger.error("Failed to load from store", key=store_key, error=str(e))
            return None
        except DeserializationError as e:
            logger.error("Corrupt document in store", key=store_key, error=str(e))
            return None

        if raw is None:
            return None

        try:
            return decode(raw)
        except DeserializationError as e:
            logger.error("Corrupt document in store", key=store_key, error=str(e))
            return None

    async def write(
        self,
        cache_key: str,
        store_key: str,
        value: Any,
        encode: Callable[[Any], Any],
        tags: list[str] | None = None,
    ) -> bool:
        """Put a value in the cache and persist it. Returns False if the store write failed."""
        self.cache.set(cache_key, value, tags=tags)
        return await self.persist(store_key, encode(value))

    async def persist(self, store_key: str, document: Any) -> bool:
        try:
            await self.store.set(store_key, document)
        except PersistenceError as e:
            logger.error("Failed to persist document", key=store_key, error=str(e))
            return False
        return True

    async def remove(self, cache_key: str, store_key: str) -> bool:
        """Drop a value from the cache and the store. Idempotent."""
        self.cache.delete(cache_key)
        try:
            await self.store.delete(store_key)
        except PersistenceError as e:
            logger.error("Failed to delete from store", key=store_key, error=str(e))
            return False
        return True

    async def keys(self, prefix: str) -> list[str]:
        try:
            return await self.store.keys_with_prefix(prefix)
        except PersistenceError as e:
            logger.error("Failed to enumerate store", prefix=prefix, error=str(e))
            return []
