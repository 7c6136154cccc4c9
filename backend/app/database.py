"""Database connection and session management."""

import logging
import os
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path

from sqlalchemy import event, text
from sqlalchemy.engine import Engine
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from app.config import settings

logger = logging.getLogger(__name__)

# Ensure database directory exists
# Skip for in-memory databases or when directory creation fails (e.g., in tests)
if "sqlite" in settings.database_url and ":memory:" not in settings.database_url:
    db_path = settings.database_url.replace("sqlite+aiosqlite:///", "")
    db_dir = os.path.dirname(db_path)
    if db_dir and not os.path.exists(db_dir):
        try:
            os.makedirs(db_dir, exist_ok=True)
            logger.info(f"Created database directory: {db_dir}")
        except PermissionError:
            # In tests or restricted environments, this is expected
            logger.debug(f"Skipping database directory creation (no permissions): {db_dir}")

# For SQLite, add timeout and other settings to handle concurrent writes
connect_args = {}
if "sqlite" in settings.database_url:
    connect_args = {
        "check_same_thread": False,
        "timeout": 30.0,  # 30 second timeout for database locks
    }

engine = create_async_engine(
    settings.database_url,
    echo=settings.log_level == "DEBUG",
    future=True,
    connect_args=connect_args,
    pool_pre_ping=True,  # Verify connections before using
)

async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


@event.listens_for(Engine, "connect")
def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    """Turn on foreign key enforcement so login codes cascade with their user."""
    if "sqlite" not in type(dbapi_connection).__module__:
        return
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


@asynccontextmanager
async def db_session() -> AsyncGenerator[AsyncSession]:
    """
    Async context manager that yields a database session and ensures it closes.
    """
    async with async_session_maker() as session:
        yield session


async def init_db():
    """Initialize database - create all tables and apply migrations."""
    # Import models so their tables are registered on Base.metadata
    import app.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    # Enable WAL mode for better concurrency with SQLite
    if "sqlite" in settings.database_url and ":memory:" not in settings.database_url:
        async with engine.connect() as conn:
            await conn.execute(text("PRAGMA journal_mode=WAL"))
            await conn.execute(text("PRAGMA synchronous=NORMAL"))
            await conn.execute(text("PRAGMA busy_timeout=30000"))  # 30 second busy timeout
            await conn.commit()

    is_test_env = ":memory:" in settings.database_url
    try:
        from app.migrations.runner import run_migrations

        migrations_dir = Path(__file__).parent / "migrations"
        await run_migrations(engine, migrations_dir)
    except Exception as e:
        logger.error(f"Migration error: {e}", exc_info=True)
        if settings.strict_migrations and not is_test_env:
            raise RuntimeError(f"Critical migration failed: {e}") from e

    logger.info("Database initialized successfully")


async def get_db() -> AsyncGenerator[AsyncSession]:
    """
    Dependency for getting database sessions.

    Yields:
        Database session
    """
    async with db_session() as session:
        yield session
