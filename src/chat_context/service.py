"""
Context memory service - the entry point used by the chat-serving layer.

Wires sessions, the message ledger, compression and long-term memory
around one persistence store and one set of cache tiers. Construct it once
at process start and pass it to whoever needs it.
"""

from typing import Any

import structlog

from .config import Settings, get_settings
from .context.compaction import CompressionEngine
from .context.ledger import MessageLedger
from .context.session import SessionManager
from .context.types import ChatMessage, CompressionResult, ContextSession, MemoryFragment, MemoryType, MessageMetadata, MessageRole
from .errors import SessionNotFoundError
from .memory.extractor import MemoryExtractor
from .memory.index import MemoryIndex
from .storage.cache import CacheTiers
from .storage.store import InMemoryStore, PersistenceStore, SQLStore

logger = structlog.get_logger()


class ContextMemoryService:
    """Conversation state and user memory behind one object."""

    def __init__(
        self,
        store: PersistenceStore,
        caches: CacheTiers | None = None,
        settings: Settings | None = None,
        extractor: MemoryExtractor | None = None,
    ):
        self.settings = settings or get_settings()
        self.store = store
        self.caches = caches or CacheTiers.from_settings(self.settings)

        self.sessions = SessionManager(self.caches.session, store, self.settings)
        self.compression = CompressionEngine(self.caches.compression)
        self.memory = MemoryIndex(self.caches.memory, store)
        self.extractor = extractor or MemoryExtractor()
        self.ledger = MessageLedger(self.sessions, self.compression, self.extractor, self.memory)

    @classmethod
    async def from_settings(cls, settings: Settings | None = None) -> "ContextMemoryService":
        """Build a service on the SQL store configured in settings."""
        settings = settings or get_settings()
        store = await SQLStore.from_url(settings.database_url)
        return cls(store, settings=settings)

    @classmethod
    def in_memory(cls, settings: Settings | None = None) -> "ContextMemoryService":
        return cls(InMemoryStore(), settings=settings)

    async def close(self) -> None:
        await self.store.close()

    # Sessions

    async def create_session(
        self,
        user_id: str,
        agent_id: str,
        title: str | None = None,
        config: dict[str, Any] | None = None,
    ) -> ContextSession:
        return await self.sessions.create_session(user_id, agent_id, title, config)

    async def get_session(self, session_id: str) -> ContextSession | None:
        return await self.sessions.get_session(session_id)

    async def delete_session(self, session_id: str) -> bool:
        return await self.sessions.delete_session(session_id)

    async def cleanup_expired_sessions(self) -> int:
        return await self.sessions.cleanup_expired_sessions()

    # Messages

    async def add_message(
        self,
        session_id: str,
        role: MessageRole | str,
        content: str,
        metadata: MessageMetadata | dict[str, Any] | None = None,
    ) -> ChatMessage:
        return await self.ledger.add_message(session_id, role, content, metadata)

    async def get_messages(
        self,
        session_id: str,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[ChatMessage]:
        return await self.ledger.get_messages(session_id, limit, offset)

    async def compress_session(self, session_id: str) -> CompressionResult:
        """Compress a session now, regardless of its budget.

        Raises:
            SessionNotFoundError: If the session does not exist
        """
        async with self.sessions.lock(session_id):
            session = await self.sessions.get_session(session_id)
            if session is None:
                self.sessions.discard_lock(session_id)
                raise SessionNotFoundError(session_id)
            result = self.compression.compress(session)
            await self.sessions.save_session(session)
        return result

    # Memory

    async def get_user_memory(
        self,
        user_id: str,
        fragment_type: MemoryType | str | None = None,
    ) -> list[MemoryFragment]:
        return await self.memory.get_user_memory(user_id, fragment_type)

    async def search_memory(self, user_id: str, query: str, limit: int | None = None) -> list[MemoryFragment]:
        if limit is None:
            limit = self.settings.memory_search_limit
        return await self.memory.search_memory(user_id, query, limit)

    async def delete_user_memory(self, user_id: str) -> bool:
        return await self.memory.delete_user_memory(user_id)

    # Stats

    def get_stats(self) -> dict[str, dict[str, Any]]:
        """Get counters of the three cache tiers."""
        return self.caches.get_stats()

    async def get_memory_stats(self, session_id: str) -> dict[str, Any]:
        """Get budget and memory figures for one session."""
        session = await self.sessions.get_session(session_id)
        if session is None:
            return {
                "session_exists": False,
                "message_count": 0,
                "total_tokens": 0,
                "memory_fragments": 0,
            }

        return {
            "session_exists": True,
            "message_count": session.metadata.message_count,
            "total_tokens": session.metadata.total_tokens,
            "memory_fragments": await self.memory.count_session_fragments(session.user_id, session.id),
            "last_activity": session.metadata.last_active_at,
            "token_usage": session.metadata.total_tokens / session.config.max_tokens,
        }
