"""Database connection and session management.

This module provides async database connection management using SQLAlchemy
with asyncpg for PostgreSQL (production) or aiosqlite for SQLite (local
runs and tests). It includes engine creation, session factories and the
transactional session scope used by the ledger, the event log and the
idempotency store.
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from . import Base


logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./outreach.db"


def normalize_database_url(database_url: str) -> str:
    """Rewrite a database URL to its async driver form.

    Args:
        database_url: ``postgresql://``, ``postgresql+asyncpg://``,
            ``sqlite://`` or ``sqlite+aiosqlite://`` URL.

    Returns:
        URL using the asyncpg or aiosqlite driver.

    Raises:
        ValueError: If the URL scheme is not supported.
    """
    if database_url.startswith("postgresql://"):
        return database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if database_url.startswith("postgres://"):
        return database_url.replace("postgres://", "postgresql+asyncpg://", 1)
    if database_url.startswith("sqlite://"):
        return database_url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    if database_url.startswith(("postgresql+asyncpg://", "sqlite+aiosqlite://")):
        return database_url
    raise ValueError(
        "DATABASE_URL must start with 'postgresql://', 'postgresql+asyncpg://' "
        "or 'sqlite+aiosqlite://'"
    )


def _enable_sqlite_foreign_keys(engine: AsyncEngine) -> None:
    """Turn on FK enforcement so ON DELETE CASCADE / SET NULL apply on SQLite."""

    @event.listens_for(engine.sync_engine, "connect")
    def _set_pragma(dbapi_connection, connection_record):  # noqa: ARG001
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def build_engine(database_url: str, echo: bool = False, **pool_kwargs) -> AsyncEngine:
    """Create an async engine with pool settings suited to the backend.

    Args:
        database_url: Database URL (normalized to an async driver).
        echo: Whether to log SQL statements.
        **pool_kwargs: Pool arguments for server databases.

    Returns:
        AsyncEngine: The SQLAlchemy async engine.
    """
    url = normalize_database_url(database_url)

    if url.startswith("sqlite"):
        kwargs = {"echo": echo, "connect_args": {"check_same_thread": False}}
        if ":memory:" in url or url.endswith("sqlite+aiosqlite://"):
            # Single shared connection, otherwise each session sees an empty database
            kwargs["poolclass"] = StaticPool
        engine = create_async_engine(url, **kwargs)
        _enable_sqlite_foreign_keys(engine)
        return engine

    return create_async_engine(
        url,
        pool_size=pool_kwargs.get("pool_size", 5),
        max_overflow=pool_kwargs.get("max_overflow", 10),
        pool_pre_ping=True,
        pool_recycle=3600,  # Recycle connections after 1 hour
        echo=echo,
    )


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create the session factory used throughout the pipeline."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


class DatabaseManager:
    """Manages the process-wide async engine and session factory.

    Entry points (CLI, API) use this to build the engine once and then pass
    the session factory to the components that need it.

    Attributes:
        _engine: The async SQLAlchemy engine instance.
        _session_factory: Factory for creating async sessions.
        _database_url: URL override set via ``configure``.
        _echo: Whether the engine logs SQL.
        _pool_kwargs: Pool settings set via ``configure``.
    """

    _engine: Optional[AsyncEngine] = None
    _session_factory: Optional[async_sessionmaker[AsyncSession]] = None
    _database_url: Optional[str] = None
    _echo: bool = False
    _pool_kwargs: dict = {}

    @classmethod
    def configure(cls, database_url: str, echo: bool = False, **pool_kwargs) -> None:
        """Set the database URL and engine settings before the engine is first created."""
        if cls._engine is not None:
            raise RuntimeError("Database engine already created; call close() first")
        cls._database_url = database_url
        cls._echo = echo
        cls._pool_kwargs = dict(pool_kwargs)

    @classmethod
    def get_database_url(cls) -> str:
        """Get the database URL from configuration or environment variables.

        Returns:
            Database URL with an async driver.
        """
        database_url = cls._database_url or os.getenv("DATABASE_URL") or DEFAULT_DATABASE_URL
        return normalize_database_url(database_url)

    @classmethod
    async def get_engine(cls) -> AsyncEngine:
        """Get or create the async database engine.

        Returns:
            AsyncEngine: The SQLAlchemy async engine.
        """
        if cls._engine is None:
            cls._engine = build_engine(
                cls.get_database_url(),
                echo=cls._echo,
                **cls._pool_kwargs,
            )
            logger.info("Database engine created successfully")

        return cls._engine

    @classmethod
    async def get_session_factory(cls) -> async_sessionmaker[AsyncSession]:
        """Get or create the async session factory."""
        if cls._session_factory is None:
            engine = await cls.get_engine()
            cls._session_factory = build_session_factory(engine)

        return cls._session_factory

    @classmethod
    async def create_tables(cls) -> None:
        """Create all database tables defined in the models."""
        engine = await cls.get_engine()
        await create_all_tables(engine)
        logger.info("Database tables created successfully")

    @classmethod
    async def close(cls) -> None:
        """Dispose the engine and release all connections."""
        if cls._engine is not None:
            await cls._engine.dispose()
            cls._engine = None
            cls._session_factory = None
            logger.info("Database engine closed")


async def create_all_tables(engine: AsyncEngine) -> None:
    """Create every table registered on ``Base.metadata``."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@asynccontextmanager
async def session_scope(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Open a session that commits on success and rolls back on exception.

    Args:
        session_factory: Factory to open the session from.

    Yields:
        AsyncSession: An async database session.

    Example:
        async with session_scope(factory) as session:
            lead = await session.get(Lead, lead_id)
            lead.last_error = None
    """
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def create_test_engine(database_url: Optional[str] = None) -> AsyncEngine:
    """Create an async engine for tests.

    Defaults to a shared in-memory SQLite database.

    Args:
        database_url: Optional database URL.

    Returns:
        AsyncEngine: A test-configured async engine.
    """
    return build_engine(database_url or "sqlite+aiosqlite:///:memory:")
