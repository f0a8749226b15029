"""
Configuration management for chat-context

Uses pydantic-settings for environment variable parsing and validation.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

EvictionPolicy = Literal["lru", "lfu", "ttl"]


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_nested_delimiter="__",
    )

    # Application
    app_name: str = "chat-context"
    debug: bool = False
    log_level: str = "INFO"

    # Persistence
    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/context.db",
        description="Async SQLAlchemy URL of the key-value store",
    )

    # Session defaults (overridable per session)
    session_max_tokens: int = Field(default=4000, description="Token budget per session")
    session_max_messages: int = Field(default=100, description="Message budget per session")
    session_compression_threshold: float = Field(
        default=0.8, description="Budget ratio above which a session is compressed"
    )
    session_retention_days: int = Field(default=30, description="Idle days before a session is deleted")

    # Cache tiers
    session_cache_max_size: int = 1000
    session_cache_ttl_seconds: int = 24 * 60 * 60
    session_cache_policy: EvictionPolicy = "lru"

    memory_cache_max_size: int = 5000
    memory_cache_ttl_seconds: int = 7 * 24 * 60 * 60
    memory_cache_policy: EvictionPolicy = "lfu"

    compression_cache_max_size: int = 500
    compression_cache_ttl_seconds: int = 60 * 60
    compression_cache_policy: EvictionPolicy = "ttl"

    # Memory search
    memory_search_limit: int = Field(default=10, description="Default number of search results")

    # Background cleanup
    cleanup_cron: str = Field(default="0 3 * * *", description="Cron expression for session cleanup")

    @field_validator("session_compression_threshold")
    @classmethod
    def validate_threshold(cls, v: float) -> float:
        if not 0 < v <= 1:
            raise ValueError("compression threshold must be in (0, 1]")
        return v

    def default_session_config(self) -> dict[str, float | int]:
        """Get the session config used when a caller passes no overrides."""
        return {
            "max_tokens": self.session_max_tokens,
            "max_messages": self.session_max_messages,
            "compression_threshold": self.session_compression_threshold,
            "retention_days": self.session_retention_days,
        }


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
