"""Datastore — engine lifecycle, sessions and driver error translation.

:class:`Datastore` owns the async engine and session factory for one
database. Code above it never sees SQLAlchemy exceptions: they are turned
into :class:`~explorer_collector.errors.StoreError` by :func:`store_error`,
which marks lock contention and dropped connections as transient so the
owning loop retries them.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from explorer_collector.datastore.engines import backend_of, create_engine, upsert_insert
from explorer_collector.errors.collector_errors import StoreError

if TYPE_CHECKING:
    from sqlalchemy.exc import SQLAlchemyError

    from explorer_collector.config.settings import DatabaseConfig

_ERR_NOT_OPEN = "Datastore is not open. Call open() first."


def store_error(exc: SQLAlchemyError, operation: str) -> StoreError:
    """Wrap a driver error raised by *operation*."""
    transient = isinstance(exc, OperationalError) or (
        isinstance(exc, DBAPIError) and exc.connection_invalidated
    )
    detail = getattr(exc, "orig", None) or exc
    return StoreError(
        f"store operation {operation} failed: {detail}",
        status_code=503 if transient else 500,
        transient=transient,
    )


class Datastore:
    """One database: engine, session factory and dialect helpers.

    Usage::

        ds = Datastore(db_config)
        await ds.open()
        async with ds.session() as session:
            await session.execute(ds.insert(LayerRow).values(...))
        await ds.close()
    """

    def __init__(self, config: DatabaseConfig) -> None:
        self._config = config
        self._backend = backend_of(config.dsn)
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise RuntimeError(_ERR_NOT_OPEN)
        return self._engine

    @property
    def dialect(self) -> str:
        """Backend named by the DSN (``sqlite`` or ``postgresql``)."""
        return self._backend

    @property
    def name(self) -> str:
        return self._config.name

    @property
    def is_open(self) -> bool:
        return self._engine is not None

    async def open(self) -> None:
        """Create the engine and session factory. Connections are made lazily."""
        if self._engine is not None:
            return
        self._engine = create_engine(self._config)
        self._session_factory = async_sessionmaker(self._engine, expire_on_commit=False)

    async def close(self) -> None:
        """Dispose the engine and release all connections."""
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None

    def session(self) -> AsyncSession:
        """A new session; use it as an async context manager.

        Raises:
            RuntimeError: If the datastore is not open.
        """
        if self._session_factory is None:
            raise RuntimeError(_ERR_NOT_OPEN)
        return self._session_factory()

    def insert(self, table: type) -> Any:
        """Dialect ``INSERT`` for *table* supporting ``ON CONFLICT``."""
        return upsert_insert(self._backend)(table)
