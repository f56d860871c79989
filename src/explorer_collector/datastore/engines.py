"""Engine construction per backend.

The backend is taken from the DSN scheme (``sqlite+aiosqlite://``,
``postgresql+asyncpg://``). SQLite files are opened in WAL mode with a busy
timeout so the search API can read while live sync and the backfill
workers write. PostgreSQL gets a bounded, pre-pinged pool.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from sqlalchemy import event
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from explorer_collector.config.settings import DatabaseEngine

if TYPE_CHECKING:
    from collections.abc import Callable

    from explorer_collector.config.settings import DatabaseConfig

logger = logging.getLogger(__name__)

# Milliseconds a SQLite writer waits on the file lock before failing
SQLITE_BUSY_TIMEOUT_MS = 30_000

_INSERTS: dict[str, Callable[..., Any]] = {
    DatabaseEngine.SQLITE: sqlite_insert,
    DatabaseEngine.POSTGRESQL: pg_insert,
}


def backend_of(dsn: str) -> DatabaseEngine:
    """Backend named by *dsn*'s scheme.

    Raises:
        ValueError: The scheme names an unsupported backend.
    """
    backend = make_url(dsn).get_backend_name()
    try:
        return DatabaseEngine(backend)
    except ValueError:
        msg = f"unsupported database backend {backend!r}"
        raise ValueError(msg) from None


def upsert_insert(backend: str) -> Callable[..., Any]:
    """``insert()`` construct of *backend* that supports ``ON CONFLICT``."""
    return _INSERTS[backend]


def create_engine(config: DatabaseConfig) -> AsyncEngine:
    """Create the async engine for ``config.dsn``.

    Returns:
        A configured ``AsyncEngine`` ready for use.
    """
    backend = backend_of(config.dsn)
    if backend != config.engine:
        logger.warning("db.engine is %s but the DSN names %s; using %s", config.engine, backend, backend)

    if backend is DatabaseEngine.SQLITE:
        engine = create_async_engine(config.dsn, echo=config.debug_sql)
        event.listen(engine.sync_engine, "connect", _sqlite_pragmas)
        return engine

    return create_async_engine(
        config.dsn,
        echo=config.debug_sql,
        pool_size=config.max_idle_connections,
        max_overflow=config.max_open_connections - config.max_idle_connections,
        pool_pre_ping=True,
    )


def _sqlite_pragmas(dbapi_connection: Any, _connection_record: Any) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute(f"PRAGMA busy_timeout = {SQLITE_BUSY_TIMEOUT_MS}")
    cursor.execute("PRAGMA journal_mode = WAL")
    cursor.close()
