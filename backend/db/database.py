"""
Database configuration and session management.

SQLite (aiosqlite) is used for development and tests, PostgreSQL (asyncpg) in
production. Every request gets its own AsyncSession from the pool; services
receive that session through their constructor and never open one themselves.
"""

import logging

from config import get_settings
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

settings = get_settings()
logger = logging.getLogger(__name__)

# Convert URL for async drivers
database_url = settings.DATABASE_URL
if database_url.startswith("postgresql://"):
    database_url = database_url.replace("postgresql://", "postgresql+asyncpg://", 1)

is_sqlite = database_url.startswith("sqlite")

engine_kwargs: dict = {
    "echo": False,
}

if not is_sqlite:
    # PostgreSQL connection pool settings
    #
    # pool_pre_ping: Verify connections are alive before using them.
    # pool_size: Number of persistent connections to maintain.
    # max_overflow: Additional connections allowed beyond pool_size during spikes.
    #               Total max connections = pool_size + max_overflow = 15
    engine_kwargs["pool_pre_ping"] = True
    engine_kwargs["pool_size"] = 5
    engine_kwargs["max_overflow"] = 10

engine = create_async_engine(database_url, **engine_kwargs)

# SQLite does not enforce foreign keys by default - must be enabled per connection
if is_sqlite:
    from sqlalchemy import event as sa_event

    @sa_event.listens_for(engine.sync_engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


class Base(DeclarativeBase):
    pass


async def get_db():
    """
    Dependency that yields a database session.

    Routes and services commit explicitly. The rollback on exception is kept
    as a safety net so a failed flow never leaves a half-open transaction on
    a pooled connection.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


async def init_db():
    """Create the auth tables if they do not exist yet."""
    # Import models so they register with Base.metadata
    from models import refresh_token, security_audit, user  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all, checkfirst=True)

    logger.info("Database initialized successfully")


async def close_db():
    """Dispose of the connection pool."""
    await engine.dispose()
