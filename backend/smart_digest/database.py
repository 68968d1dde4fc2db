"""Async engine and session factory backing the digest store.

Every store call the scheduler makes is bounded by
``digest_store_timeout_seconds``; the engine applies the same bound at the
driver level (pool checkout, connect, statement) so a stuck connection is
released rather than left to hang behind a cancelled call.
"""
import asyncio
import logging
from pathlib import Path
from typing import Optional

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import StaticPool

from smart_digest.config import Settings, get_settings

logger = logging.getLogger(__name__)

Base = declarative_base()

INIT_DB_ATTEMPTS = 5
INIT_DB_BASE_DELAY = 2

_engine: Optional[AsyncEngine] = None
_session_maker: Optional[async_sessionmaker] = None


def _create_sqlite_engine(settings: Settings) -> AsyncEngine:
    url = make_url(settings.database_url)
    in_memory = url.database in (None, "", ":memory:")
    connect_args = {"check_same_thread": False}
    engine_kwargs = {}
    if in_memory:
        # All sessions must share the single in-memory database
        engine_kwargs["poolclass"] = StaticPool
    else:
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)
        connect_args["timeout"] = settings.digest_store_timeout_seconds

    logger.info(f"Using SQLite digest store at {url.database or ':memory:'}")
    engine = create_async_engine(url, echo=settings.app_debug, connect_args=connect_args, **engine_kwargs)

    if not in_memory:
        @event.listens_for(engine.sync_engine, "connect")
        def set_sqlite_pragma(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.close()

    return engine


def _create_postgres_engine(settings: Settings) -> AsyncEngine:
    logger.info(f"Connecting to PostgreSQL at {settings.postgres_host}:{settings.postgres_port}")
    timeout = settings.digest_store_timeout_seconds
    return create_async_engine(
        settings.database_url,
        echo=settings.app_debug,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_pre_ping=True,
        pool_recycle=settings.db_pool_recycle,
        pool_timeout=timeout,
        # asyncpg: connection establishment and per-statement limits
        connect_args={"timeout": timeout, "command_timeout": timeout},
    )


def get_engine() -> AsyncEngine:
    """Get or create the database engine (lazy initialization)."""
    global _engine
    if _engine is None:
        settings = get_settings()
        if settings.use_sqlite:
            _engine = _create_sqlite_engine(settings)
        else:
            _engine = _create_postgres_engine(settings)
    return _engine


def get_session_maker() -> async_sessionmaker:
    """Session factory for DigestStore; one short-lived session per store call."""
    global _session_maker
    if _session_maker is None:
        _session_maker = async_sessionmaker(get_engine(), class_=AsyncSession, expire_on_commit=False)
    return _session_maker


async def dispose_engine() -> None:
    global _engine, _session_maker
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_maker = None


async def init_db() -> None:
    """Create the digest tables, retrying while the database comes up.

    Production deployments run the Alembic migration instead; this covers
    SQLite development setups and tests.
    """
    import smart_digest.models  # noqa: F401

    for attempt in range(INIT_DB_ATTEMPTS):
        try:
            async with get_engine().begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            logger.info("Digest tables initialized")
            return
        except Exception as e:
            if attempt == INIT_DB_ATTEMPTS - 1:
                logger.error(f"Database initialization failed after {INIT_DB_ATTEMPTS} attempts: {e}")
                raise
            delay = INIT_DB_BASE_DELAY * (2 ** attempt)
            logger.warning(
                f"Database connection attempt {attempt + 1}/{INIT_DB_ATTEMPTS} failed: {e}. Retrying in {delay}s..."
            )
            await asyncio.sleep(delay)
