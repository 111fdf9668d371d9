"""Async database engine for the profile store.

A lazy SQLAlchemy async engine backed by asyncpg, pointed at the Supabase
session pooler (port 5432). Session mode is required because asyncpg uses
prepared statements, which transaction-mode pooling does not support.

Usage:
    from rentkenya_data_access.client import get_engine

    async with get_engine().begin() as conn:
        result = await conn.execute(select(profiles))
"""

from __future__ import annotations

from rentkenya_shared.errors import SettingsError
from rentkenya_shared.settings import get_settings
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

_engine: AsyncEngine | None = None

_ASYNC_SCHEMES = {
    "postgresql://": "postgresql+asyncpg://",
    "postgres://": "postgresql+asyncpg://",
}


def async_db_url(db_url: str) -> str:
    """Rewrite a plain Postgres URL to use the asyncpg driver."""
    for prefix, replacement in _ASYNC_SCHEMES.items():
        if db_url.startswith(prefix):
            return replacement + db_url[len(prefix):]
    return db_url


def get_engine() -> AsyncEngine:
    """Return the engine singleton, creating it from SUPABASE_DB_URL on first use."""
    global _engine
    if _engine is not None:
        return _engine

    db_url = get_settings().supabase_db_url
    if not db_url:
        raise SettingsError(
            "SUPABASE_DB_URL is not set. "
            "Set it to the Supabase direct connection string (session pooler, port 5432)."
        )

    _engine = create_async_engine(
        async_db_url(db_url),
        pool_size=5,
        max_overflow=0,
        pool_pre_ping=True,
    )
    return _engine


def reset_engine() -> None:
    """Forget the engine singleton: used in tests to inject mocks."""
    global _engine
    _engine = None
