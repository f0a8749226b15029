"""
Shared fixtures for chat-context tests.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from chat_context.config import Settings
from chat_context.context.tokens import estimate_tokens
from chat_context.context.types import (
    ChatMessage,
    ContextSession,
    MessageMetadata,
    MessageRole,
    SessionConfig,
    SessionMetadata,
)
from chat_context.service import ContextMemoryService
from chat_context.storage import CacheTiers, InMemoryStore


@pytest.fixture
def settings():
    return Settings(_env_file=None)


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def service(settings, store):
    return ContextMemoryService(store, caches=CacheTiers.from_settings(settings), settings=settings)


class SlowStore(InMemoryStore):
    """In-memory store that yields to the event loop on every call, like a database."""

    async def get(self, key):
        await asyncio.sleep(0.01)
        return await super().get(key)

    async def set(self, key, value):
        await asyncio.sleep(0.01)
        await super().set(key, value)


@pytest.fixture
def slow_store():
    return SlowStore()


@pytest.fixture
def slow_service(settings, slow_store):
    return ContextMemoryService(slow_store, caches=CacheTiers.from_settings(settings), settings=settings)


def make_message(index: int, role: MessageRole = MessageRole.USER, content: str | None = None,
                 start: datetime | None = None, **flags) -> ChatMessage:
    start = start or datetime(2026, 1, 1, tzinfo=timezone.utc)
    content = content if content is not None else f"message number {index}"
    return ChatMessage(
        id=f"msg_{index}",
        role=role,
        content=content,
        timestamp=start + timedelta(seconds=index),
        metadata=MessageMetadata(tokens=estimate_tokens(content), **flags),
    )


def make_session(messages: list[ChatMessage] | None = None, **config) -> ContextSession:
    now = datetime.now(timezone.utc)
    messages = messages or []
    return ContextSession(
        id="session_test",
        user_id="user-1",
        agent_id="agent-1",
        title="Test",
        metadata=SessionMetadata(
            created_at=now,
            updated_at=now,
            last_active_at=now,
            total_tokens=sum(m.metadata.tokens or 0 for m in messages),
            message_count=len(messages),
        ),
        config=SessionConfig(**config),
        messages=messages,
    )
