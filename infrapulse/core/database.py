from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional
import logging

from fastapi import Request
from sqlalchemy import event, text
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base

from infrapulse.core.config import Settings
from infrapulse.core.exceptions import DependencyError

logger = logging.getLogger(__name__)

Base = declarative_base()

def utc_now() -> datetime:
    return datetime.now(timezone.utc)

def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Aware UTC datetime; naive values (sqlite hands those back) are taken as UTC"""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)

@contextmanager
def store_errors(operation: str):
    """Translate connectivity failures of the store into DependencyError."""
    try:
        yield
    except (OperationalError, InterfaceError, OSError) as e:
        logger.error(f"Store unavailable during {operation}: {e}")
        raise DependencyError(f"Store unavailable during {operation}") from e

def to_async_url(database_url: str) -> str:
    """Pick the async driver for a plain database URL."""
    if database_url.startswith("sqlite:///"):
        return database_url.replace("sqlite:///", "sqlite+aiosqlite:///", 1)
    if database_url.startswith("postgresql://"):
        return database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return database_url

class Database:
    """
    Owns the async engine and the session factory.

    One instance is built by the composition root and handed to every
    component that needs the store, there is no module level engine.
    """

    def __init__(self, settings: Settings, database_url: Optional[str] = None):
        self.url = to_async_url(database_url or settings.DATABASE_URL)
        self.is_sqlite = self.url.startswith("sqlite")

        connect_args = {}
        engine_kwargs = {
            "echo": settings.DATABASE_ECHO,
            "pool_pre_ping": settings.DATABASE_POOL_PRE_PING,
        }

        if self.is_sqlite:
            connect_args["check_same_thread"] = False
            # wait for the lock instead of failing with "database is locked"
            connect_args["timeout"] = 30
        else:
            engine_kwargs["pool_size"] = settings.DATABASE_POOL_SIZE
            engine_kwargs["max_overflow"] = settings.DATABASE_MAX_OVERFLOW
            engine_kwargs["pool_recycle"] = settings.DATABASE_POOL_RECYCLE

        self.engine = create_async_engine(self.url, connect_args=connect_args, **engine_kwargs)

        if self.is_sqlite:
            self._enable_sqlite_transactions()

        self.session_factory = async_sessionmaker(
            bind=self.engine,
            class_=AsyncSession,
            autoflush=False,
            expire_on_commit=False,
        )

    def _enable_sqlite_transactions(self):
        # pysqlite defers BEGIN until the first DML statement, which breaks
        # SAVEPOINT and lets a read-then-write unit run half outside a
        # transaction. Take over BEGIN ourselves; IMMEDIATE avoids lock
        # upgrade deadlocks between concurrent writers.
        @event.listens_for(self.engine.sync_engine, "connect")
        def _on_connect(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None
            # sqlite leaves foreign keys unenforced unless asked per connection
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        @event.listens_for(self.engine.sync_engine, "begin")
        def _on_begin(conn):
            conn.exec_driver_sql("BEGIN IMMEDIATE")

    def session(self) -> AsyncSession:
        return self.session_factory()

    async def create_all(self):
        # models must be imported so their tables are registered on Base.metadata
        import infrapulse.models  # noqa: F401

        if self.is_sqlite and self.engine.url.database not in (None, "", ":memory:"):
            Path(self.engine.url.database).parent.mkdir(parents=True, exist_ok=True)

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def ping(self) -> bool:
        try:
            async with self.session_factory() as session:
                await session.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.warning(f"Database ping failed: {e}")
            return False

    async def dispose(self):
        await self.engine.dispose()

# -----------------------------------------------------------------------------
# Dependencies
# -----------------------------------------------------------------------------

def get_database(request: Request) -> Database:
    return request.app.state.database

async def get_async_db(request: Request):
    """Per-request async session"""
    async with request.app.state.database.session() as session:
        yield session
