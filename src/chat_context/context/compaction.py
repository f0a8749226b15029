"""
Context compression - keep a session inside its token and message budget.

When a session grows past its budget threshold, older messages are folded
into a single system summary while critical messages stay verbatim:

- System messages and messages flagged important or welcome are always kept
- The most recent messages are always kept
- Everything else is removed and described by an extractive summary

Compression is deterministic and memoized per session state, so compressing
an unchanged session twice yields the same result.
"""

import structlog

from ..storage.cache import CacheTier
from .tokens import estimate_tokens
from .types import ChatMessage, CompressionResult, ContextSession, MessageMetadata, MessageRole, new_id

logger = structlog.get_logger()

DEFAULT_KEEP_RECENT = 20  # Always keep the last N messages
SUMMARY_PREFIX = "[context summary] "
EMPTY_SUMMARY = "no conversation content"

MAX_TOPICS = 5
WORDS_PER_MESSAGE = 3
MIN_WORD_LENGTH = 3
MAX_KEY_POINTS = 3
KEY_POINT_LENGTH = 50


def message_tokens(message: ChatMessage) -> int:
    """Stored token count of a message, estimated when missing."""
    if message.metadata.tokens is not None:
        return message.metadata.tokens
    return estimate_tokens(message.content)


def should_compress(session: ContextSession) -> bool:
    """Check whether either budget ratio exceeds the session threshold."""
    config = session.config
    token_ratio = session.metadata.total_tokens / config.max_tokens
    message_ratio = session.metadata.message_count / config.max_messages
    return token_ratio > config.compression_threshold or message_ratio > config.compression_threshold


def _is_important(message: ChatMessage) -> bool:
    return (
        message.role == MessageRole.SYSTEM
        or message.metadata.is_important
        or message.metadata.is_welcome
    )


def create_summary(messages: list[ChatMessage]) -> str:
    """Build an extractive summary of removed messages.

    Topics come from the leading words of user messages, key points from
    the opening of longer assistant replies.
    """
    if not messages:
        return EMPTY_SUMMARY

    topics: dict[str, None] = {}
    key_points: list[str] = []

    for msg in messages:
        if msg.role == MessageRole.USER:
            words = [w for w in msg.content.split() if len(w) >= MIN_WORD_LENGTH]
            for word in words[:WORDS_PER_MESSAGE]:
                topics.setdefault(word)
        elif msg.role == MessageRole.ASSISTANT and len(msg.content) > KEY_POINT_LENGTH:
            key_points.append(msg.content[:KEY_POINT_LENGTH] + "...")

    topics_str = ", ".join(list(topics)[:MAX_TOPICS])
    points_str = " ".join(key_points[:MAX_KEY_POINTS])

    return f"discussed topics: {topics_str}. key points: {points_str}"


class CompressionEngine:
    """Decides when to compress a session and performs the compression."""

    def __init__(self, cache: CacheTier, keep_recent: int = DEFAULT_KEEP_RECENT):
        self.cache = cache
        self.keep_recent = keep_recent

    def should_compress(self, session: ContextSession) -> bool:
        return should_compress(session)

    @staticmethod
    def cache_key(session: ContextSession) -> str:
        return f"compression_{session.id}_{session.metadata.updated_at.isoformat()}"

    def compress(self, session: ContextSession) -> CompressionResult:
        """Compress a session in place.

        Callers must hold the session lock. Never raises because of the
        result cache; a broken cache only disables memoization.
        """
        cache_key = self.cache_key(session)

        try:
            cached = self.cache.get(cache_key)
        except Exception as e:
            logger.warning("Compression cache lookup failed", session_id=session.id, error=str(e))
            cached = None
        if cached is not None:
            return cached

        result = self._compress(session)

        try:
            self.cache.set(cache_key, result, tags=[f"session:{session.id}"])
        except Exception as e:
            logger.warning("Compression cache store failed", session_id=session.id, error=str(e))

        return result

    def _compress(self, session: ContextSession) -> CompressionResult:
        messages = session.messages
        original_tokens = session.metadata.total_tokens
        position = {msg.id: index for index, msg in enumerate(messages)}

        important = [msg for msg in messages if _is_important(msg)]
        important_ids = {msg.id for msg in important}
        recent = messages[-self.keep_recent:] if self.keep_recent > 0 else []

        preserved = important + [msg for msg in recent if msg.id not in important_ids]
        preserved.sort(key=lambda m: (m.timestamp, position[m.id]))
        preserved_ids = {msg.id for msg in preserved}

        removed = [msg for msg in messages if msg.id not in preserved_ids]

        summary_message = None
        if removed:
            content = SUMMARY_PREFIX + create_summary(removed)
            summary_message = ChatMessage(
                id=new_id("summary"),
                role=MessageRole.SYSTEM,
                content=content,
                # Earliest instant of the thread so the list stays ordered
                timestamp=messages[0].timestamp,
                metadata=MessageMetadata(
                    is_summary=True,
                    session_id=session.id,
                    tokens=estimate_tokens(content),
                ),
            )
            session.messages = [summary_message] + preserved

        compressed_tokens = sum(message_tokens(msg) for msg in session.messages)
        session.metadata.total_tokens = compressed_tokens
        session.metadata.message_count = len(session.messages)
        if summary_message is not None:
            session.metadata.summary = summary_message.content

        result = CompressionResult(
            original_tokens=original_tokens,
            compressed_tokens=compressed_tokens,
            compression_ratio=compressed_tokens / original_tokens if original_tokens else 1.0,
            preserved_messages=preserved,
            summary_message=summary_message,
            removed_count=len(removed),
        )

        logger.info(
            "Compressed session",
            session_id=session.id,
            removed=result.removed_count,
            original_tokens=original_tokens,
            compressed_tokens=compressed_tokens,
        )

        return result
