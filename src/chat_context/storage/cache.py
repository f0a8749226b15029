"""
In-process cache tiers.

Each tier is a bounded map with a time-to-live and one eviction policy:

- ``lru``: drop the least recently used entry
- ``lfu``: drop the least frequently used entry (oldest first on ties)
- ``ttl``: drop the entry closest to expiry

Entries may carry tags so that groups of keys can be invalidated together.
"""

import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Callable

import structlog

from ..config import EvictionPolicy, Settings

logger = structlog.get_logger()


@dataclass
class CacheEntry:
    """A cached value with bookkeeping."""

    value: Any
    expires_at: float
    access_count: int = 0
    tags: tuple[str, ...] = ()


@dataclass
class CacheStats:
    """Counters for one cache tier."""

    hits: int = 0
    misses: int = 0
    sets: int = 0
    deletes: int = 0
    evictions: int = 0
    expirations: int = 0

    def to_dict(self, size: int, max_size: int) -> dict[str, Any]:
        lookups = self.hits + self.misses
        return {
            "hits": self.hits,
            "misses": self.misses,
            "sets": self.sets,
            "deletes": self.deletes,
            "evictions": self.evictions,
            "expirations": self.expirations,
            "hit_rate": self.hits / lookups if lookups else 0.0,
            "size": size,
            "max_size": max_size,
        }


class CacheTier:
    """A bounded, expiring key-value cache."""

    def __init__(
        self,
        name: str,
        max_size: int = 1000,
        ttl_seconds: float = 300,
        policy: EvictionPolicy = "lru",
        clock: Callable[[], float] = time.monotonic,
    ):
        if policy not in ("lru", "lfu", "ttl"):
            raise ValueError(f"Unknown eviction policy: {policy}")
        self.name = name
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self.policy = policy
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._tags: dict[str, set[str]] = {}
        self._stats = CacheStats()

    def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            self._stats.misses += 1
            return None

        if entry.expires_at <= self._clock():
            self._remove(key)
            self._stats.expirations += 1
            self._stats.misses += 1
            return None

        entry.access_count += 1
        if self.policy == "lru":
            self._entries.move_to_end(key)
        self._stats.hits += 1
        return entry.value

    def set(self, key: str, value: Any, tags: list[str] | None = None) -> None:
        if key in self._entries:
            self._remove(key)
        elif len(self._entries) >= self.max_size:
            self._evict()

        entry = CacheEntry(
            value=value,
            expires_at=self._clock() + self.ttl_seconds,
            tags=tuple(tags or ()),
        )
        self._entries[key] = entry
        for tag in entry.tags:
            self._tags.setdefault(tag, set()).add(key)
        self._stats.sets += 1

    def delete(self, key: str) -> bool:
        if key not in self._entries:
            return False
        self._remove(key)
        self._stats.deletes += 1
        return True

    def invalidate_tag(self, tag: str) -> int:
        """Delete every entry carrying tag. Returns the number removed."""
        keys = list(self._tags.get(tag, ()))
        for key in keys:
            self.delete(key)
        return len(keys)

    def clear(self) -> None:
        self._entries.clear()
        self._tags.clear()

    def get_stats(self) -> dict[str, Any]:
        return self._stats.to_dict(size=len(self._entries), max_size=self.max_size)

    def __contains__(self, key: str) -> bool:
        entry = self._entries.get(key)
        return entry is not None and entry.expires_at > self._clock()

    def __len__(self) -> int:
        return len(self._entries)

    def _remove(self, key: str) -> None:
        entry = self._entries.pop(key)
        for tag in entry.tags:
            keys = self._tags.get(tag)
            if keys is not None:
                keys.discard(key)
                if not keys:
                    del self._tags[tag]

    def _evict(self) -> None:
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.expires_at <= now]
        if expired:
            for key in expired:
                self._remove(key)
            self._stats.expirations += len(expired)
            return

        if self.policy == "lfu":
            # min() returns the first minimum, i.e. the oldest on ties
            victim = min(self._entries, key=lambda k: self._entries[k].access_count)
        elif self.policy == "ttl":
            victim = min(self._entries, key=lambda k: self._entries[k].expires_at)
        else:
            victim = next(iter(self._entries))

        self._remove(victim)
        self._stats.evictions += 1
        logger.debug("Evicted cache entry", tier=self.name, key=victim, policy=self.policy)


@dataclass
class CacheTiers:
    """The three independent caches used by the core."""

    session: CacheTier = field(default_factory=lambda: CacheTier("session", 1000, 24 * 60 * 60, "lru"))
    memory: CacheTier = field(default_factory=lambda: CacheTier("memory", 5000, 7 * 24 * 60 * 60, "lfu"))
    compression: CacheTier = field(default_factory=lambda: CacheTier("compression", 500, 60 * 60, "ttl"))

    @classmethod
    def from_settings(cls, settings: Settings) -> "CacheTiers":
        return cls(
            session=CacheTier(
                "session",
                settings.session_cache_max_size,
                settings.session_cache_ttl_seconds,
                settings.session_cache_policy,
            ),
            memory=CacheTier(
                "memory",
                settings.memory_cache_max_size,
                settings.memory_cache_ttl_seconds,
                settings.memory_cache_policy,
            ),
            compression=CacheTier(
                "compression",
                settings.compression_cache_max_size,
                settings.compression_cache_ttl_seconds,
                settings.compression_cache_policy,
            ),
        )

    def get_stats(self) -> dict[str, dict[str, Any]]:
        return {
            "session": self.session.get_stats(),
            "memory": self.memory.get_stats(),
            "compression": self.compression.get_stats(),
        }
