"""
Data model for sessions, messages, memory fragments and compression results.

Every persisted type converts to and from plain JSON-compatible dicts.
Datetimes are stored as ISO-8601 strings and always come back timezone-aware.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from ..errors import DeserializationError


class MessageRole(str, Enum):
    """Message roles for conversation."""
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class MemoryType(str, Enum):
    """Kinds of durable knowledge kept about a user."""
    FACT = "fact"
    PREFERENCE = "preference"
    CONTEXT = "context"
    SKILL = "skill"
    RELATIONSHIP = "relationship"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid4().hex}"


def parse_datetime(value: str) -> datetime:
    """Parse an ISO-8601 string into an aware datetime (naive means UTC)."""
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class MessageMetadata:
    """Optional flags and bookkeeping attached to a message."""

    is_important: bool = False
    is_welcome: bool = False
    is_summary: bool = False
    tokens: int | None = None
    model: str | None = None
    session_id: str | None = None
    user_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_important": self.is_important,
            "is_welcome": self.is_welcome,
            "is_summary": self.is_summary,
            "tokens": self.tokens,
            "model": self.model,
            "session_id": self.session_id,
            "user_id": self.user_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MessageMetadata":
        return cls(
            is_important=bool(data.get("is_important", False)),
            is_welcome=bool(data.get("is_welcome", False)),
            is_summary=bool(data.get("is_summary", False)),
            tokens=data.get("tokens"),
            model=data.get("model"),
            session_id=data.get("session_id"),
            user_id=data.get("user_id"),
        )


@dataclass
class ChatMessage:
    """A single message in a session."""

    id: str
    role: MessageRole
    content: str
    timestamp: datetime
    metadata: MessageMetadata = field(default_factory=MessageMetadata)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role.value,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
            "metadata": self.metadata.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ChatMessage":
        return cls(
            id=data["id"],
            role=MessageRole(data["role"]),
            content=data["content"],
            timestamp=parse_datetime(data["timestamp"]),
            metadata=MessageMetadata.from_dict(data.get("metadata") or {}),
        )


@dataclass
class SessionConfig:
    """Budget and retention limits of a session."""

    max_tokens: int = 4000
    max_messages: int = 100
    compression_threshold: float = 0.8
    retention_days: int = 30

    def __post_init__(self):
        if not 0 < self.compression_threshold <= 1:
            raise ValueError(
                f"compression_threshold must be in (0, 1], got {self.compression_threshold}"
            )
        if self.max_tokens <= 0 or self.max_messages <= 0:
            raise ValueError("max_tokens and max_messages must be positive")

    def to_dict(self) -> dict[str, Any]:
        return {
            "max_tokens": self.max_tokens,
            "max_messages": self.max_messages,
            "compression_threshold": self.compression_threshold,
            "retention_days": self.retention_days,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SessionConfig":
        return cls(
            max_tokens=data["max_tokens"],
            max_messages=data["max_messages"],
            compression_threshold=data["compression_threshold"],
            retention_days=data["retention_days"],
        )


@dataclass
class SessionMetadata:
    """Lifecycle timestamps and running totals of a session."""

    created_at: datetime
    updated_at: datetime
    last_active_at: datetime
    total_tokens: int = 0
    message_count: int = 0
    is_active: bool = True
    tags: list[str] = field(default_factory=list)
    summary: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "last_active_at": self.last_active_at.isoformat(),
            "total_tokens": self.total_tokens,
            "message_count": self.message_count,
            "is_active": self.is_active,
            "tags": list(self.tags),
            "summary": self.summary,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SessionMetadata":
        return cls(
            created_at=parse_datetime(data["created_at"]),
            updated_at=parse_datetime(data["updated_at"]),
            last_active_at=parse_datetime(data["last_active_at"]),
            total_tokens=data.get("total_tokens", 0),
            message_count=data.get("message_count", 0),
            is_active=data.get("is_active", True),
            tags=list(data.get("tags") or []),
            summary=data.get("summary"),
        )


@dataclass
class ContextSession:
    """A conversation thread between one user and one agent."""

    id: str
    user_id: str
    agent_id: str
    title: str
    metadata: SessionMetadata
    config: SessionConfig = field(default_factory=SessionConfig)
    messages: list[ChatMessage] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "agent_id": self.agent_id,
            "title": self.title,
            "messages": [m.to_dict() for m in self.messages],
            "metadata": self.metadata.to_dict(),
            "config": self.config.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ContextSession":
        try:
            return cls(
                id=data["id"],
                user_id=data["user_id"],
                agent_id=data["agent_id"],
                title=data.get("title", ""),
                messages=[ChatMessage.from_dict(m) for m in data.get("messages", [])],
                metadata=SessionMetadata.from_dict(data["metadata"]),
                config=SessionConfig.from_dict(data["config"]),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise DeserializationError(f"Invalid session payload: {e}") from e


@dataclass
class MemoryFragment:
    """A durable unit of knowledge extracted from a user's messages."""

    id: str
    session_id: str
    user_id: str
    type: MemoryType
    content: str
    importance: float
    confidence: float
    created_at: datetime
    last_accessed_at: datetime
    access_count: int = 0
    tags: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "user_id": self.user_id,
            "type": self.type.value,
            "content": self.content,
            "importance": self.importance,
            "confidence": self.confidence,
            "created_at": self.created_at.isoformat(),
            "last_accessed_at": self.last_accessed_at.isoformat(),
            "access_count": self.access_count,
            "tags": list(self.tags),
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MemoryFragment":
        try:
            return cls(
                id=data["id"],
                session_id=data["session_id"],
                user_id=data["user_id"],
                type=MemoryType(data["type"]),
                content=data["content"],
                importance=float(data["importance"]),
                confidence=float(data["confidence"]),
                created_at=parse_datetime(data["created_at"]),
                last_accessed_at=parse_datetime(data["last_accessed_at"]),
                access_count=data.get("access_count", 0),
                tags=list(data.get("tags") or []),
                metadata=dict(data.get("metadata") or {}),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise DeserializationError(f"Invalid memory fragment payload: {e}") from e


@dataclass
class CompressionResult:
    """Outcome of compressing a session. Derived, never persisted."""

    original_tokens: int
    compressed_tokens: int
    compression_ratio: float
    preserved_messages: list[ChatMessage]
    summary_message: ChatMessage | None
    removed_count: int
