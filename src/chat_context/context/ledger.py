"""
Message ledger - append-only message history of a session.
"""

import dataclasses
from datetime import timedelta
from typing import Any

import structlog

from ..errors import SessionNotFoundError
from ..memory.extractor import MemoryExtractor
from ..memory.index import MemoryIndex
from .compaction import CompressionEngine
from .session import SessionManager
from .tokens import estimate_tokens
from .types import ChatMessage, MessageMetadata, MessageRole, new_id, utcnow

logger = structlog.get_logger()


class MessageLedger:
    """Appends messages to sessions and keeps their budgets in check."""

    def __init__(
        self,
        sessions: SessionManager,
        compression: CompressionEngine,
        extractor: MemoryExtractor,
        memory: MemoryIndex,
    ):
        self.sessions = sessions
        self.compression = compression
        self.extractor = extractor
        self.memory = memory

    async def add_message(
        self,
        session_id: str,
        role: MessageRole | str,
        content: str,
        metadata: MessageMetadata | dict[str, Any] | None = None,
    ) -> ChatMessage:
        """Append a message, compressing the session if it went over budget.

        User messages are also mined for long-term memory.

        Raises:
            SessionNotFoundError: If the session does not exist
            ValueError: If role is not a known message role
        """
        role = MessageRole(role)
        if isinstance(metadata, dict):
            metadata = MessageMetadata.from_dict(metadata)
        # Each message owns its metadata; callers may reuse theirs
        metadata = dataclasses.replace(metadata) if metadata else MessageMetadata()

        async with self.sessions.lock(session_id):
            session = await self.sessions.get_session(session_id)
            if session is None:
                self.sessions.discard_lock(session_id)
                raise SessionNotFoundError(session_id)

            # updated_at strictly increases: it keys memoized compression
            now = utcnow()
            if now <= session.metadata.updated_at:
                now = session.metadata.updated_at + timedelta(microseconds=1)

            tokens = estimate_tokens(content)
            metadata.session_id = session_id
            metadata.tokens = tokens

            message = ChatMessage(
                id=new_id("msg"),
                role=role,
                content=content,
                timestamp=now,
                metadata=metadata,
            )

            session.messages.append(message)
            session.metadata.message_count += 1
            session.metadata.last_active_at = now
            session.metadata.updated_at = now
            session.metadata.total_tokens += tokens

            if self.compression.should_compress(session):
                self.compression.compress(session)

            await self.sessions.save_session(session)

        if role == MessageRole.USER:
            fragments = self.extractor.extract(session, message)
            if fragments:
                await self.memory.store_fragments(session.user_id, fragments)

        return message

    async def get_messages(
        self,
        session_id: str,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[ChatMessage]:
        """Get a session's messages, or an empty list if it does not exist."""
        session = await self.sessions.get_session(session_id)
        if session is None:
            return []

        messages = session.messages
        if offset:
            messages = messages[offset:]
        if limit:
            messages = messages[:limit]
        return list(messages)
