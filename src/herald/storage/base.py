"""Base storage class and helpers.

Contains engine initialization, schema creation, and session management.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import Any

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from herald.config import settings

from .tables import Base


@asynccontextmanager
async def _serialized_session(
    factory: async_sessionmaker[AsyncSession], lock: asyncio.Lock
) -> AsyncIterator[AsyncSession]:
    async with lock, factory() as session:
        yield session


class StorageBase:
    """Base class for Herald storage with initialization and helpers.

    Provides:
    - Engine creation and lifecycle management
    - Table creation
    - Session factory access
    """

    def __init__(
        self,
        url: str | None = None,
        echo: bool | None = None,
        pool_size: int | None = None,
        max_overflow: int | None = None,
    ) -> None:
        """Initialize storage configuration.

        Args:
            url: SQLAlchemy async URL. Defaults to settings.database_url.
            echo: Echo SQL statements. Defaults to settings.database_echo.
            pool_size: Pool size for server databases. Defaults to settings.db_pool_size.
            max_overflow: Pool overflow. Defaults to settings.db_max_overflow.
        """
        self._url = url or settings.database_url
        self._echo = settings.database_echo if echo is None else echo
        self._pool_size = pool_size or settings.db_pool_size
        self._max_overflow = settings.db_max_overflow if max_overflow is None else max_overflow
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None
        self._memory_lock: asyncio.Lock | None = None

    @property
    def engine(self) -> AsyncEngine:
        """Get the engine, raising if not initialized."""
        if self._engine is None:
            raise RuntimeError("Storage not initialized. Call initialize() first.")
        return self._engine

    @property
    def is_sqlite(self) -> bool:
        """Whether the backing database is SQLite."""
        return self._url.startswith("sqlite")

    @property
    def is_memory(self) -> bool:
        """Whether the backing database is in-memory SQLite."""
        return self.is_sqlite and (self._url.endswith("://") or ":memory:" in self._url)

    @property
    def is_postgres(self) -> bool:
        """Whether the backing database is PostgreSQL."""
        return self._url.startswith("postgresql")

    def session(self) -> AbstractAsyncContextManager[AsyncSession]:
        """Open a new session. Use as an async context manager.

        In-memory SQLite shares one connection between all sessions, so
        sessions there are handed out one at a time.
        """
        if self._session_factory is None:
            raise RuntimeError("Storage not initialized. Call initialize() first.")
        if self._memory_lock is not None:
            return _serialized_session(self._session_factory, self._memory_lock)
        return self._session_factory()

    def _engine_kwargs(self) -> dict[str, Any]:
        kwargs: dict[str, Any] = {"echo": self._echo}
        if self.is_sqlite:
            # An in-memory database lives and dies with its one connection
            if self.is_memory:
                kwargs["poolclass"] = StaticPool
            kwargs["connect_args"] = {"check_same_thread": False}
        else:
            kwargs["pool_size"] = self._pool_size
            kwargs["max_overflow"] = self._max_overflow
            kwargs["pool_pre_ping"] = True
            kwargs["pool_recycle"] = 3600
        return kwargs

    async def initialize(self) -> None:
        """Create the engine and ensure tables exist."""
        self._engine = create_async_engine(self._url, **self._engine_kwargs())
        self._session_factory = async_sessionmaker(
            self._engine, class_=AsyncSession, expire_on_commit=False
        )
        self._memory_lock = asyncio.Lock() if self.is_memory else None
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        """Dispose of the engine and its connections."""
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None
            self._memory_lock = None

    async def __aenter__(self) -> StorageBase:
        """Async context manager entry."""
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.close()
