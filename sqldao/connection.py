"""Database connections and the factory that opens them."""

from __future__ import annotations

import itertools
import logging
from collections.abc import Awaitable, Callable, Mapping, Sequence
from typing import TYPE_CHECKING, Any, Protocol, TypeVar

from sqlalchemy import text
from sqlalchemy.engine import Result, RowMapping
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine
from sqlalchemy.pool import NullPool
from sqlalchemy.sql import Executable

from sqldao.exceptions import InvalidTransactionStateError

if TYPE_CHECKING:
    from sqldao.config import DbSettings

logger = logging.getLogger(__name__)

R = TypeVar("R")

Params = Mapping[str, Any] | Sequence[Mapping[str, Any]]


def _as_statement(statement: str | Executable) -> Executable:
    if isinstance(statement, str):
        return text(statement)
    return statement


class Db:
    """One live database session.

    Statements run outside of :meth:`transaction` are committed as soon as
    they complete. Inside :meth:`transaction` they are only made durable when
    the wrapped action returns.
    """

    _ids = itertools.count()

    def __init__(self, connection: AsyncConnection):
        self.id = next(Db._ids)
        self._conn = connection
        self._in_transaction = False

    def __repr__(self) -> str:
        return f"Db(id={self.id})"

    @property
    def connection(self) -> AsyncConnection:
        """Get the underlying SQLAlchemy connection."""
        return self._conn

    @property
    def closed(self) -> bool:
        return self._conn.closed

    @property
    def in_transaction(self) -> bool:
        """True while :meth:`transaction` is running an action."""
        return self._in_transaction

    async def execute(
        self,
        statement: str | Executable,
        params: Params | None = None,
    ) -> Result[Any]:
        """Execute a statement.

        Args:
            statement: SQL text (named ``:param`` placeholders) or a
                SQLAlchemy executable.
            params: Bind parameters; a sequence of mappings runs the
                statement once per mapping.

        Returns:
            The buffered SQLAlchemy result.
        """
        result = await self._conn.execute(_as_statement(statement), params)
        await self._autocommit()
        return result

    async def query(
        self,
        statement: str | Executable,
        params: Mapping[str, Any] | None = None,
    ) -> list[RowMapping]:
        """Execute a statement and return every row as a mapping."""
        result = await self._conn.execute(_as_statement(statement), params)
        rows = list(result.mappings().all())
        await self._autocommit()
        return rows

    async def transaction(self, action: Callable[[], Awaitable[R]]) -> R:
        """Run ``action`` inside BEGIN/COMMIT, rolling back if it raises."""
        if self._in_transaction:
            raise InvalidTransactionStateError(
                f"Db {self.id} is already running a transaction"
            )
        if self._conn.in_transaction():
            # Leftover implicit transaction from the driver's autobegin.
            await self._conn.commit()

        await self._conn.begin()
        self._in_transaction = True
        try:
            result = await action()
        except BaseException:
            await self._finish(commit=False)
            raise
        await self._finish(commit=True)
        return result

    async def rollback(self) -> None:
        """Roll back the open transaction, if any."""
        if self._conn.in_transaction():
            logger.debug("Rolling back db %s", self.id)
            await self._conn.rollback()

    async def reset(self) -> None:
        """Discard any transaction state before the session is reused."""
        self._in_transaction = False
        if not self._conn.closed and self._conn.in_transaction():
            logger.warning("Db %s returned with an open transaction; rolling back", self.id)
            await self._conn.rollback()

    async def close(self) -> None:
        self._in_transaction = False
        await self._conn.close()

    async def _autocommit(self) -> None:
        if not self._in_transaction and self._conn.in_transaction():
            await self._conn.commit()

    async def _finish(self, *, commit: bool) -> None:
        self._in_transaction = False
        if not self._conn.in_transaction():
            # Already rolled back explicitly by the action.
            return
        if commit:
            await self._conn.commit()
        else:
            await self._conn.rollback()


class Connector(Protocol):
    """Opens new database sessions for a pool."""

    async def connect(self) -> Db: ...

    async def dispose(self) -> None: ...


class SqlAlchemyConnector:
    """Opens :class:`Db` sessions from an async SQLAlchemy engine.

    The engine is created with ``NullPool``: pooling is the job of
    :class:`sqldao.pool.DbPool`, so every :meth:`connect` opens a real session.
    """

    def __init__(self, database_url: str, *, echo: bool = False):
        """Initialize the connector with a connection URL.

        Args:
            database_url: SQLAlchemy database URL. If using sqlite:///, it will
                         be automatically converted to sqlite+aiosqlite:///.
            echo: Log every SQL statement through SQLAlchemy's logger.
        """
        # Convert sqlite:/// to sqlite+aiosqlite:/// for async support
        is_sqlite = database_url.startswith("sqlite")
        if database_url.startswith("sqlite:///"):
            database_url = database_url.replace("sqlite:///", "sqlite+aiosqlite:///")

        connect_args = {}
        if is_sqlite:
            # Increase timeout to reduce "database is locked" errors
            connect_args["timeout"] = 30

        self._is_sqlite = is_sqlite
        self._engine: AsyncEngine = create_async_engine(
            database_url,
            echo=echo,
            poolclass=NullPool,
            connect_args=connect_args,
        )

    @classmethod
    def from_settings(cls, settings: DbSettings) -> SqlAlchemyConnector:
        return cls(settings.resolved_url(), echo=settings.echo)

    @property
    def engine(self) -> AsyncEngine:
        """Get the async engine instance."""
        return self._engine

    async def connect(self) -> Db:
        conn = await self._engine.connect()
        try:
            if self._is_sqlite:
                # WAL lets readers on other sessions proceed while one writes
                await conn.execute(text("PRAGMA journal_mode=WAL"))
                await conn.execute(text("PRAGMA busy_timeout=30000"))
                await conn.commit()
        except BaseException:
            await conn.close()
            raise
        db = Db(conn)
        logger.debug("Opened db %s", db.id)
        return db

    async def dispose(self) -> None:
        """Dispose of the engine."""
        await self._engine.dispose()
