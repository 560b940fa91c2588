"""Durable key-value storage for client state that outlives a session.

The only value stored today is the bearer token. ``MemoryStore`` keeps
values for the life of the process; ``SqlStore`` writes them to a local
SQLite database through SQLAlchemy.
"""

from __future__ import annotations

import logging
from typing import Protocol

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker

from dicechat.database import Base, create_engine
from dicechat.models import StoredValue

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    """Interface for persisted client state."""

    async def get(self, key: str) -> str | None:
        """Return the stored value, or None when the key is absent."""
        ...

    async def set(self, key: str, value: str) -> None:
        """Store value under key, replacing any previous value."""
        ...

    async def delete(self, key: str) -> None:
        """Remove key. Removing an absent key is not an error."""
        ...


class MemoryStore:
    """Dict-backed store; nothing survives the process."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._values: dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> str | None:
        return self._values.get(key)

    async def set(self, key: str, value: str) -> None:
        self._values[key] = value

    async def delete(self, key: str) -> None:
        self._values.pop(key, None)


class SqlStore:
    """SQLAlchemy-backed store using the ``stored_values`` table.

    Args:
        engine: Async engine for the local database. The schema must exist;
            use :meth:`create` or :meth:`create_schema`.
    """

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine
        self._session_factory = async_sessionmaker(engine, expire_on_commit=False)

    @classmethod
    async def create(cls, database_url: str) -> SqlStore:
        """Open the database at database_url, creating the schema if needed."""
        store = cls(create_engine(database_url))
        await store.create_schema()
        return store

    async def create_schema(self) -> None:
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def get(self, key: str) -> str | None:
        async with self._session_factory() as session:
            row = await session.get(StoredValue, key)
            return row.value if row is not None else None

    async def set(self, key: str, value: str) -> None:
        async with self._session_factory() as session:
            row = await session.get(StoredValue, key)
            if row is None:
                session.add(StoredValue(key=key, value=value))
            else:
                row.value = value
            await session.commit()
        logger.debug("Stored value for %r", key)

    async def delete(self, key: str) -> None:
        async with self._session_factory() as session:
            await session.execute(delete(StoredValue).where(StoredValue.key == key))
            await session.commit()

    async def dispose(self) -> None:
        await self._engine.dispose()
