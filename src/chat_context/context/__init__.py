"""
Context module - per-session conversation state.

Includes:
- SessionManager: Session lifecycle and retention cleanup
- CompressionEngine: Budget-driven context compression
- Data model: ChatMessage, ContextSession, MemoryFragment, CompressionResult
"""

from .compaction import CompressionEngine, create_summary, should_compress
from .session import SessionManager
from .tokens import estimate_tokens
from .types import (
    ChatMessage,
    CompressionResult,
    ContextSession,
    MemoryFragment,
    MemoryType,
    MessageMetadata,
    MessageRole,
    SessionConfig,
    SessionMetadata,
)

__all__ = [
    "ChatMessage",
    "CompressionEngine",
    "CompressionResult",
    "ContextSession",
    "MemoryFragment",
    "MemoryType",
    "MessageMetadata",
    "MessageRole",
    "SessionConfig",
    "SessionManager",
    "SessionMetadata",
    "create_summary",
    "estimate_tokens",
    "should_compress",
]
