"""
Database connection and session management.

Uses SQLAlchemy async against Supabase Postgres.

Connection Pool Strategy:
- Supabase session mode (port 5432): local connection pool keeps connections open
- Supabase transaction mode (port 6543): NullPool (external pooler manages connections)
- Sessions are lightweight wrappers that checkout connections from the pool
- Rows are scoped by user_id in queries; the backend connects with the
  service role, so every tenant-facing query must filter on user_id itself
"""

import logging
from datetime import datetime, timezone
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional
from urllib.parse import urlparse

from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, AsyncEngine, async_sessionmaker
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import NullPool

from config import settings

logger = logging.getLogger(__name__)

Base = declarative_base()

# Ensure URL uses asyncpg driver
_db_url = settings.DATABASE_URL
if _db_url and "+asyncpg" not in _db_url:
    _db_url = _db_url.replace("postgresql://", "postgresql+asyncpg://")

# Detect Supabase pooler mode from port:
# - Port 6543 = transaction mode (must use NullPool, prepared statements break)
# - Port 5432 = session mode (local pooling is safe)
_parsed_url = urlparse(_db_url) if _db_url else None
_db_port: int = _parsed_url.port if _parsed_url and _parsed_url.port else 5432
_use_null_pool: bool = _db_port == 6543

# Global singletons - created lazily, disposed between worker event loops
_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def get_engine() -> AsyncEngine:
    """Get the database engine (singleton - created once, reused)."""
    global _engine
    if _engine is None:
        # Disable prepared statement cache for Supabase/pgbouncer compatibility
        connect_args: dict[str, int] = {
            "statement_cache_size": 0,
            "prepared_statement_cache_size": 0,
        }

        if _use_null_pool:
            _engine = create_async_engine(
                _db_url,
                echo=False,
                future=True,
                poolclass=NullPool,
                connect_args=connect_args,
            )
            logger.info("Database engine created with NullPool (transaction mode, port %d)", _db_port)
        else:
            _engine = create_async_engine(
                _db_url,
                echo=False,
                future=True,
                pool_size=settings.DATABASE_POOL_SIZE,
                max_overflow=settings.DATABASE_MAX_OVERFLOW,
                pool_recycle=300,
                pool_pre_ping=True,
                connect_args=connect_args,
            )
            logger.info(
                "Database engine created with connection pool (session mode, port %d, "
                "pool_size=%d, max_overflow=%d)",
                _db_port,
                settings.DATABASE_POOL_SIZE,
                settings.DATABASE_MAX_OVERFLOW,
            )
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get the async session factory (singleton - created once, reused)."""
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(
            get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,  # Don't auto-flush, we control when to commit
        )
    return _session_factory


@asynccontextmanager
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Yield an async database session.

    Usage:
        async with get_session() as session:
            result = await session.execute(query)
            await session.commit()  # Explicit commit if needed

    The session is closed when the context exits and uncommitted changes are
    rolled back on error.
    """
    factory = get_session_factory()
    session: AsyncSession = factory()
    try:
        yield session
    except Exception:
        await session.rollback()
        raise
    finally:
        # This returns the connection to the pool, doesn't close it
        await session.close()


async def init_db() -> None:
    """Create all tables."""
    engine = get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """
    Close the database engine and release all pooled connections.

    Called on application shutdown and after each Celery task, since asyncpg
    connections cannot be reused across event loops.
    """
    global _engine, _session_factory
    if _engine is not None:
        pool_status = get_pool_status()
        logger.info(
            "Closing database pool: %d checked_in, %d checked_out",
            pool_status["checked_in"],
            pool_status["checked_out"]
        )
        await _engine.dispose()
        _engine = None
        _session_factory = None


def get_pool_status() -> dict[str, int | str]:
    """Get current connection pool status for monitoring."""
    if _engine is None:
        return {"pool_type": "not_initialized", "pool_size": 0, "checked_in": 0, "checked_out": 0, "overflow": 0}

    pool = _engine.pool
    if isinstance(pool, NullPool):
        return {"pool_type": "NullPool", "pool_size": 0, "checked_in": 0, "checked_out": 0, "overflow": 0}

    return {
        "pool_type": type(pool).__name__,
        "pool_size": pool.size(),
        "checked_in": pool.checkedin(),
        "checked_out": pool.checkedout(),
        "overflow": pool.overflow(),
    }


def utc_now() -> datetime:
    """Timezone-aware UTC now, used for column defaults."""
    return datetime.now(timezone.utc)


def column_values(model: Any, values: dict[str, Any]) -> dict[str, Any]:
    """Re-key attribute values by column name (e.g. extra_data -> metadata) for Core upserts."""
    columns = model.__mapper__.columns
    return {columns[key].name: value for key, value in values.items()}
