"""Async store access for footybets (SQLite for local/tests, PostgreSQL in production)."""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy.exc import InterfaceError, InvalidRequestError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel

from footybets.config import get_settings

logger = logging.getLogger(__name__)

settings = get_settings()

_ASYNC_DRIVERS = (
    ("sqlite://", "sqlite+aiosqlite://"),
    ("postgres://", "postgresql+asyncpg://"),
    ("postgresql://", "postgresql+asyncpg://"),
)

# Substrings of driver errors worth another connection attempt
_TRANSIENT_MARKERS = ("closed", "connection", "terminated")


def get_database_url(url: str) -> str:
    """Rewrite a plain sqlite/postgres URL to its async driver form."""
    for prefix, replacement in _ASYNC_DRIVERS:
        if url.startswith(prefix):
            return replacement + url[len(prefix):]
    return url


def engine_options(url: str) -> dict:
    if url.startswith("sqlite"):
        # One shared connection so in-memory databases survive across sessions
        return {
            "echo": False,
            "connect_args": {"check_same_thread": False},
            "poolclass": StaticPool,
        }

    return {
        "echo": False,
        "pool_pre_ping": True,
        "pool_size": settings.DB_POOL_SIZE,
        "max_overflow": settings.DB_MAX_OVERFLOW,
        "pool_recycle": 300,
        "pool_timeout": 30,
        "pool_reset_on_return": "rollback",
        "connect_args": {
            "server_settings": {"statement_timeout": str(settings.DB_STATEMENT_TIMEOUT_MS)}
        },
    }


DATABASE_URL = get_database_url(settings.DATABASE_URL)

async_engine = create_async_engine(DATABASE_URL, **engine_options(DATABASE_URL))

AsyncSessionLocal = sessionmaker(
    bind=async_engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: one session per request."""
    async with AsyncSessionLocal() as session:
        yield session


async def init_db() -> None:
    """Create the footybets tables and seed the unlockable titles."""
    from footybets.users import seed_titles

    logger.info("Initializing database tables...")
    async with async_engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

    async with AsyncSessionLocal() as session:
        await seed_titles(session)
        await session.commit()
    logger.info("Database ready (tables + titles).")


async def close_db() -> None:
    await async_engine.dispose()
    logger.info("Database connections closed.")


def _is_transient(error: Exception) -> bool:
    message = str(error).lower()
    return any(marker in message for marker in _TRANSIENT_MARKERS)


async def _open_session(max_retries: int, retry_delay: float) -> AsyncSession:
    """Open a session and check out a live connection, backing off on stale ones."""
    delay = retry_delay
    for attempt in range(1, max_retries + 1):
        session = AsyncSessionLocal()
        try:
            await session.connection()
            return session
        except (InterfaceError, OperationalError, InvalidRequestError) as e:
            try:
                await session.close()
            except Exception as close_error:
                logger.debug(f"Error closing failed session: {close_error}")

            if not _is_transient(e) or attempt == max_retries:
                raise
            logger.warning(
                f"Database connection error (attempt {attempt}/{max_retries}): {e}. "
                f"Retrying in {delay}s..."
            )
            await asyncio.sleep(delay)
            delay *= 2

    raise RuntimeError("Failed to create database session after retries")


@asynccontextmanager
async def get_session_with_retry(max_retries: int | None = None, retry_delay: float = 1.0):
    """
    Session for background work (settlement phases, cache refresh).

    A settlement run opens many short sessions; each one first checks out a
    connection so a database restart between scheduler ticks is absorbed here
    instead of failing a phase.

    Example:
        async with get_session_with_retry() as session:
            await session.execute(...)
            await session.commit()

    Only session creation is retried. Errors raised while the caller holds the
    session propagate unchanged.
    """
    retries = max_retries if max_retries is not None else settings.DB_SESSION_RETRIES
    session = await _open_session(max(retries, 1), retry_delay)
    try:
        yield session
    finally:
        try:
            await session.close()
        except Exception as close_error:
            logger.debug(f"Error closing session during cleanup: {close_error}")
