"""
Key-value persistence stores.

A store maps string keys to JSON documents. Two implementations ship with
the package: an in-process dict (tests, single-process deployments) and a
SQL table reached through SQLAlchemy's async ORM.
"""

import json
from abc import ABC, abstractmethod
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from ..errors import DeserializationError, PersistenceError
from ..models import StoreEntry, init_database

logger = structlog.get_logger()

SESSION_KEY_PREFIX = "context_session_"
MEMORY_KEY_PREFIX = "user_memory_"


def session_key(session_id: str) -> str:
    return f"{SESSION_KEY_PREFIX}{session_id}"


def memory_key(user_id: str) -> str:
    return f"{MEMORY_KEY_PREFIX}{user_id}"


class PersistenceStore(ABC):
    """Base class for key-value stores holding JSON documents."""

    @abstractmethod
    async def get(self, key: str) -> Any | None:
        """Get the document stored under key, or None."""
        pass

    @abstractmethod
    async def set(self, key: str, value: Any) -> None:
        """Store a JSON-compatible document under key."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove key. Missing keys are ignored."""
        pass

    @abstractmethod
    async def keys_with_prefix(self, prefix: str) -> list[str]:
        """List every stored key starting with prefix."""
        pass

    async def close(self) -> None:
        """Release any held resources."""
        pass


class InMemoryStore(PersistenceStore):
    """Dict-backed store.

    Documents are kept as JSON text so that values go through the same
    encode/decode cycle as with a real backend.
    """

    def __init__(self):
        self._data: dict[str, str] = {}

    async def get(self, key: str) -> Any | None:
        raw = self._data.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            raise DeserializationError(f"Corrupt document at {key}: {e}") from e

    async def set(self, key: str, value: Any) -> None:
        try:
            self._data[key] = json.dumps(value, ensure_ascii=False)
        except (TypeError, ValueError) as e:
            raise PersistenceError(f"Cannot encode document for {key}: {e}") from e

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def keys_with_prefix(self, prefix: str) -> list[str]:
        return [key for key in self._data if key.startswith(prefix)]

    def set_raw(self, key: str, raw: str) -> None:
        """Write raw text, bypassing encoding."""
        self._data[key] = raw

    def __len__(self) -> int:
        return len(self._data)


class SQLStore(PersistenceStore):
    """Store backed by the store_entries table."""

    def __init__(self, session_maker: async_sessionmaker):
        self._session_maker = session_maker

    @classmethod
    async def from_url(cls, database_url: str) -> "SQLStore":
        """Create the schema if needed and open a store on it."""
        try:
            session_maker = await init_database(database_url)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Cannot open database: {e}") from e
        logger.info("Opened SQL store", database_url=database_url)
        return cls(session_maker)

    async def get(self, key: str) -> Any | None:
        try:
            async with self._session_maker() as db:
                entry = await db.get(StoreEntry, key)
                return entry.value if entry is not None else None
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to read {key}: {e}") from e

    async def set(self, key: str, value: Any) -> None:
        try:
            async with self._session_maker() as db:
                entry = await db.get(StoreEntry, key)
                if entry is None:
                    db.add(StoreEntry(key=key, value=value))
                else:
                    entry.value = value
                await db.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to write {key}: {e}") from e
        except (TypeError, ValueError) as e:
            raise PersistenceError(f"Cannot encode document for {key}: {e}") from e

    async def delete(self, key: str) -> None:
        try:
            async with self._session_maker() as db:
                entry = await db.get(StoreEntry, key)
                if entry is not None:
                    await db.delete(entry)
                    await db.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to delete {key}: {e}") from e

    async def keys_with_prefix(self, prefix: str) -> list[str]:
        try:
            async with self._session_maker() as db:
                result = await db.execute(
                    select(StoreEntry.key)
                    .where(StoreEntry.key.startswith(prefix, autoescape=True))
                    .order_by(StoreEntry.key)
                )
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to list keys under {prefix}: {e}") from e

    async def close(self) -> None:
        engine = self._session_maker.kw.get("bind")
        if engine is not None:
            await engine.dispose()
