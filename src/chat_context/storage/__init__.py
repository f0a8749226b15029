"""Persistence stores and cache tiers."""

from .cache import CacheStats, CacheTier, CacheTiers
from .repository import CachedRepository
from .store import InMemoryStore, PersistenceStore, SQLStore, memory_key, session_key

__all__ = [
    "CacheStats",
    "CacheTier",
    "CacheTiers",
    "CachedRepository",
    "InMemoryStore",
    "PersistenceStore",
    "SQLStore",
    "memory_key",
    "session_key",
]
