"""
CardSync Pro Backend — Database Engine & Session Management
============================================================

What:  Async SQLAlchemy engine, session factory, and the transaction helper.
Why:   Centralizes all database connection logic in one explicitly
       constructed object instead of module-level globals.
How:   `Database` owns one async engine with connection pooling. Services
       open a `transaction()` per atomic unit: it commits on success and
       rolls back on error.
Who:   Built by `cardsync.container.build_services()`; used by services and
       the health route.
When:  Engine is created at container build; sessions are per atomic unit.

Connection Pooling Strategy (PostgreSQL):
    pool_size=20, max_overflow=10, pool_pre_ping, pool_recycle=3600.
    SQLite URLs (tests, local dev) skip the pool sizing options because the
    SQLite pools do not accept them, and open every transaction with
    BEGIN IMMEDIATE so concurrent writers queue on the busy timeout instead
    of failing with "database is locked".
"""

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from cardsync.config import Settings


class Base(DeclarativeBase):
    """
    Base class for all SQLAlchemy ORM models.

    Registers every model with a single metadata object, which Alembic reads
    for migrations and the test suite uses for `create_all()`.
    """
    pass


class Database:
    """
    Owns the async engine and session factory for one process.

    Usage:
        database = Database.from_settings(settings)
        async with database.transaction() as session:
            session.add(obj)
        await database.dispose()
    """

    def __init__(self, url: str, **engine_options: Any):
        self.url = url
        self.engine: AsyncEngine = create_async_engine(url, **engine_options)
        # expire_on_commit=False: objects stay readable after the atomic
        # unit commits (ContactService returns them to routes)
        self.session_factory = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "Database":
        """Build the engine with the pool configuration from settings."""
        options: dict = {
            "pool_pre_ping": settings.db_pool_pre_ping,
            "echo": settings.log_level == "DEBUG",
        }
        if not settings.database_url.startswith("sqlite"):
            options.update(
                pool_size=settings.db_pool_size,
                max_overflow=settings.db_max_overflow,
                pool_recycle=3600,
            )
            return cls(settings.database_url, **options)

        database = cls(settings.database_url, **options)
        _use_immediate_transactions(database.engine)
        return database

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        """
        Run a block as one atomic unit.

        Commits when the block exits normally; rolls back and re-raises when
        it raises. The quota gate relies on this: a QuotaExceededError raised
        inside the block leaves no trace in the database.
        """
        async with self.session_factory() as session:
            async with session.begin():
                yield session

    async def create_all(self) -> None:
        """Create all tables from model metadata (tests and local dev only)."""
        # Model modules must be imported so their tables are registered
        from cardsync.models import Contact, UserProfile  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def ping(self) -> bool:
        """Lightweight connectivity check used by the health endpoint."""
        async with self.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True

    async def dispose(self) -> None:
        """
        What:  Gracefully closes all connections in the pool.
        When:  Called during application shutdown (lifespan handler).
        """
        await self.engine.dispose()


def _use_immediate_transactions(engine: AsyncEngine) -> None:
    """
    Take SQLite's write lock at BEGIN.

    With the driver's deferred BEGIN, a transaction that reads and then
    writes can deadlock against another writer and gets SQLITE_BUSY
    immediately. The quota gate needs the second saver to wait instead.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")
