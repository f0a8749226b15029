"""
Session management for conversations.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Any

import structlog

from ..config import Settings, get_settings
from ..storage.cache import CacheTier
from ..storage.repository import CachedRepository
from ..storage.store import SESSION_KEY_PREFIX, PersistenceStore, session_key
from .types import ContextSession, SessionConfig, SessionMetadata, new_id, utcnow

logger = structlog.get_logger()


class SessionManager:
    """Manages the lifecycle of context sessions.

    Sessions live in the session cache tier and are written through to the
    persistence store. Mutations of one session are serialized with a
    per-session lock obtained from :meth:`lock`.
    """

    def __init__(
        self,
        cache: CacheTier,
        store: PersistenceStore,
        settings: Settings | None = None,
    ):
        self.settings = settings or get_settings()
        self.repository = CachedRepository(cache, store)
        self._locks: dict[str, asyncio.Lock] = {}

    def lock(self, session_id: str) -> asyncio.Lock:
        """Get the lock serializing mutations of a session."""
        lock = self._locks.get(session_id)
        if lock is None:
            lock = self._locks[session_id] = asyncio.Lock()
        return lock

    def discard_lock(self, session_id: str) -> None:
        """Forget the lock of a session that does not exist."""
        self._locks.pop(session_id, None)

    def _build_config(self, overrides: dict[str, Any] | None) -> SessionConfig:
        values = self.settings.default_session_config()
        if overrides:
            unknown = set(overrides) - set(values)
            if unknown:
                raise ValueError(f"Unknown session config keys: {', '.join(sorted(unknown))}")
            values.update(overrides)
        return SessionConfig(**values)

    @staticmethod
    def _tags(session: ContextSession) -> list[str]:
        return [f"user:{session.user_id}", f"agent:{session.agent_id}"]

    async def create_session(
        self,
        user_id: str,
        agent_id: str,
        title: str | None = None,
        config: dict[str, Any] | None = None,
    ) -> ContextSession:
        """Create and persist a new session."""
        session_config = self._build_config(config)
        now = utcnow()

        session = ContextSession(
            id=new_id("session"),
            user_id=user_id,
            agent_id=agent_id,
            title=title or f"Conversation {now:%Y-%m-%d %H:%M}",
            metadata=SessionMetadata(created_at=now, updated_at=now, last_active_at=now),
            config=session_config,
        )

        await self.save_session(session)
        logger.info("Created new session", user_id=user_id, agent_id=agent_id, session_id=session.id)
        return session

    async def get_session(self, session_id: str) -> ContextSession | None:
        """Get a session from the cache, falling back to the store."""
        return await self.repository.read(
            session_id,
            session_key(session_id),
            ContextSession.from_dict,
            tags_for=self._tags,
        )

    async def save_session(self, session: ContextSession) -> None:
        """Write a session through to the cache and the store."""
        await self.repository.write(
            session.id,
            session_key(session.id),
            session,
            ContextSession.to_dict,
            tags=self._tags(session),
        )

    async def delete_session(self, session_id: str) -> bool:
        """Delete a session from the cache and the store. Idempotent."""
        deleted = await self.repository.remove(session_id, session_key(session_id))
        self._locks.pop(session_id, None)
        if deleted:
            logger.info("Session deleted", session_id=session_id)
        return deleted

    def invalidate_user(self, user_id: str) -> int:
        """Drop every cached session of a user. Persisted copies are kept."""
        return self.repository.cache.invalidate_tag(f"user:{user_id}")

    def invalidate_agent(self, agent_id: str) -> int:
        """Drop every cached session of an agent. Persisted copies are kept."""
        return self.repository.cache.invalidate_tag(f"agent:{agent_id}")

    async def list_session_ids(self) -> list[str]:
        keys = await self.repository.keys(SESSION_KEY_PREFIX)
        return [key[len(SESSION_KEY_PREFIX):] for key in keys]

    @staticmethod
    def is_expired(session: ContextSession, now: datetime | None = None) -> bool:
        """Check whether a session has been idle longer than its retention."""
        now = now or utcnow()
        idle = now - session.metadata.last_active_at
        return idle > timedelta(days=session.config.retention_days)

    async def cleanup_expired_sessions(self) -> int:
        """Delete every persisted session idle past its retention period.

        Returns the number of sessions deleted. A failure on one session is
        logged and does not stop the scan.
        """
        now = utcnow()
        cleaned = 0

        for session_id in await self.list_session_ids():
            try:
                stored = await self.repository.load(session_key(session_id), ContextSession.from_dict)
                if stored is None or not self.is_expired(stored, now):
                    continue

                async with self.lock(session_id):
                    # The cached copy may be fresher than the stored one
                    current = await self.get_session(session_id)
                    if current is not None and not self.is_expired(current, now):
                        continue
                    if await self.delete_session(session_id):
                        cleaned += 1
            except Exception as e:
                logger.error("Failed to clean up session", session_id=session_id, error=str(e))

        logger.info("Expired session cleanup complete", cleaned=cleaned)
        return cleaned
