"""
Database session management.

AsyncSessionLocal is handed to the upload store and the usage meter, which
open one short transaction per operation so a failure on one record never
rolls back another.

The batch worker runs outside a request, so nothing here depends on the
caller's identity; user scoping is an explicit WHERE clause in the store.
"""

from __future__ import annotations

import logging

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from note_companion.core.config import settings

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def _engine_options() -> dict:
    """Pool options only apply to server databases; SQLite picks its own pool."""
    if settings.uses_sqlite:
        return {"echo": settings.db_echo_sql}
    return {
        "pool_size":     settings.db_pool_size,
        "max_overflow":  settings.db_max_overflow,
        "pool_pre_ping": True,          # detect stale connections before use
        "pool_recycle":  3600,          # recycle connections every hour
        "echo":          settings.db_echo_sql,
    }


engine: AsyncEngine = create_async_engine(settings.database_url, **_engine_options())

# Session factory: expire_on_commit=False keeps ORM objects usable after commit
AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


# ---------------------------------------------------------------------------
# Health check helper
# ---------------------------------------------------------------------------

async def check_db_health() -> dict:
    """Ping the database; used by /ready and the startup hook."""
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return {"status": "ok"}
    except Exception as exc:
        logger.error("DB health check failed: %s", exc)
        return {"status": "error", "detail": str(exc)}
