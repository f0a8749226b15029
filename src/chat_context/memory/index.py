"""
Memory index - per-user fragment storage and relevance-ranked search.
"""

import asyncio
import math
from datetime import datetime
from typing import Any

import structlog

from ..context.types import MemoryFragment, MemoryType, utcnow
from ..storage.cache import CacheTier
from ..storage.repository import CachedRepository
from ..storage.store import PersistenceStore, memory_key

logger = structlog.get_logger()

MIN_RELEVANCE = 0.3
CONTENT_MATCH_SCORE = 0.8
TAG_MATCH_SCORE = 0.3
IMPORTANCE_WEIGHT = 0.7
CONFIDENCE_WEIGHT = 0.3
DECAY_DAYS = 30


def relevance_score(fragment: MemoryFragment, query: str, now: datetime | None = None) -> float:
    """Score how relevant a fragment is to a query, in [0, 1].

    Text and tag matches are weighted by the fragment's importance and
    confidence and decay exponentially with its age. Each matching tag
    adds its bonus, so several matching tags can saturate the score.
    """
    now = now or utcnow()
    query_lower = query.lower()
    score = 0.0

    if query_lower in fragment.content.lower():
        score += CONTENT_MATCH_SCORE

    for tag in fragment.tags:
        tag_lower = tag.lower()
        if query_lower in tag_lower or tag_lower in query_lower:
            score += TAG_MATCH_SCORE

    score *= fragment.importance * IMPORTANCE_WEIGHT + fragment.confidence * CONFIDENCE_WEIGHT

    days = (now - fragment.created_at).total_seconds() / 86400
    score *= math.exp(-days / DECAY_DAYS)

    return max(0.0, min(score, 1.0))


def _decode_fragments(data: Any) -> list[MemoryFragment]:
    return [MemoryFragment.from_dict(item) for item in data]


def _encode_fragments(fragments: list[MemoryFragment]) -> list[dict[str, Any]]:
    return [fragment.to_dict() for fragment in fragments]


class MemoryIndex:
    """Stores memory fragments per user and ranks them for queries.

    The full fragment list of a user is cached under
    ``memory_<user_id>_all``; per-type views are derived from it and cached
    under ``memory_<user_id>_<type>``, so every view shares the same
    fragment objects. Read-modify-write cycles on one user's list are
    serialized with a per-user lock.
    """

    def __init__(self, cache: CacheTier, store: PersistenceStore):
        self.repository = CachedRepository(cache, store)
        self._locks: dict[str, asyncio.Lock] = {}

    def lock(self, user_id: str) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = self._locks[user_id] = asyncio.Lock()
        return lock

    @staticmethod
    def cache_key(user_id: str, fragment_type: MemoryType | None = None) -> str:
        return f"memory_{user_id}_{fragment_type.value if fragment_type else 'all'}"

    @staticmethod
    def _tag(user_id: str) -> str:
        return f"memory:{user_id}"

    async def get_user_memory(
        self,
        user_id: str,
        fragment_type: MemoryType | str | None = None,
    ) -> list[MemoryFragment]:
        """Get a user's fragments, optionally of one type only."""
        if fragment_type is not None:
            fragment_type = MemoryType(fragment_type)

        tags = [self._tag(user_id)]
        fragments = await self.repository.read(
            self.cache_key(user_id),
            memory_key(user_id),
            _decode_fragments,
            tags_for=lambda _: tags,
        )
        if fragments is None:
            return []
        if fragment_type is None:
            return fragments

        view_key = self.cache_key(user_id, fragment_type)
        view = self.repository.cache.get(view_key)
        if view is None:
            view = [f for f in fragments if f.type == fragment_type]
            self.repository.cache.set(view_key, view, tags=tags)
        return view

    async def store_fragments(self, user_id: str, fragments: list[MemoryFragment]) -> None:
        """Append fragments to a user's memory in a single write."""
        if not fragments:
            return

        async with self.lock(user_id):
            existing = await self.get_user_memory(user_id)
            combined = existing + list(fragments)

            self.repository.cache.invalidate_tag(self._tag(user_id))
            await self.repository.write(
                self.cache_key(user_id),
                memory_key(user_id),
                combined,
                _encode_fragments,
                tags=[self._tag(user_id)],
            )
        logger.info("Stored memory fragments", user_id=user_id, added=len(fragments), total=len(combined))

    async def search_memory(self, user_id: str, query: str, limit: int = 10) -> list[MemoryFragment]:
        """Get the fragments most relevant to query, best first."""
        async with self.lock(user_id):
            fragments = await self.get_user_memory(user_id)
            now = utcnow()

            scored = [(relevance_score(f, query, now), f) for f in fragments]
            relevant = [item for item in scored if item[0] > MIN_RELEVANCE]
            relevant.sort(key=lambda item: item[0], reverse=True)
            results = [f for _, f in relevant[:limit]]

            if results:
                for fragment in results:
                    fragment.access_count += 1
                    fragment.last_accessed_at = now
                await self.repository.persist(memory_key(user_id), _encode_fragments(fragments))

        return results

    async def delete_user_memory(self, user_id: str) -> bool:
        """Purge every fragment of a user."""
        async with self.lock(user_id):
            self.repository.cache.invalidate_tag(self._tag(user_id))
            deleted = await self.repository.remove(self.cache_key(user_id), memory_key(user_id))
        if deleted:
            logger.info("User memory purged", user_id=user_id)
        return deleted

    async def count_session_fragments(self, user_id: str, session_id: str) -> int:
        fragments = await self.get_user_memory(user_id)
        return sum(1 for f in fragments if f.session_id == session_id)
