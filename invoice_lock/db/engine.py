"""SQLAlchemy async engine and session factory builders.

Nothing here is created at import time: callers build an engine from a
``Settings`` instance and hand the session factory to a ``ClaimStore``.
"""

from __future__ import annotations

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from invoice_lock.config import Settings, settings as default_settings
from invoice_lock.db.models import Base


def _build_engine_kwargs(settings: Settings) -> dict:
    """Return engine kwargs appropriate for the configured dialect."""
    if settings.is_postgres:
        return {
            "echo": settings.DB_ECHO,
            "pool_size": settings.INVOICE_DB_POOL_SIZE,
            "max_overflow": settings.INVOICE_DB_MAX_OVERFLOW,
            "pool_timeout": settings.INVOICE_DB_POOL_TIMEOUT,
            "pool_pre_ping": True,   # ensure stale connections are recycled
            "pool_recycle": 1800,    # recycle connections older than 30 min
        }
    # SQLite: single-file, no pool tunables
    return {
        "echo": settings.DB_ECHO,
        "connect_args": {"check_same_thread": False},
    }


def _set_sqlite_pragmas(dbapi_conn, _conn_rec) -> None:  # type: ignore[no-untyped-def]
    # WAL lets the eligibility scan read while another worker holds the write
    # lock.  busy_timeout=0 makes a competing claim fail immediately with
    # "database is locked" instead of waiting for the holder to commit.
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA busy_timeout=0")
    cursor.execute("PRAGMA synchronous=NORMAL")
    cursor.close()


def build_engine(settings: Settings | None = None) -> AsyncEngine:
    settings = settings or default_settings
    engine = create_async_engine(settings.INVOICE_DB_URL, **_build_engine_kwargs(settings))
    if settings.is_sqlite:
        event.listen(engine.sync_engine, "connect", _set_sqlite_pragmas)
    return engine


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def create_tables(engine: AsyncEngine) -> None:
    """Create the ``invoices`` table if missing (dev and tests; no migrations)."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
