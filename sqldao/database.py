"""Database composition root: settings, pool and units of work."""

from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import TypeVar

from sqldao.config import DbSettings
from sqldao.enums import TransactionNesting
from sqldao.pool import DbPool
from sqldao.transaction import with_transaction

R = TypeVar("R")


class Database:
    """Owns the process's connection pool.

    Create one at application startup, hand it to whatever needs to start
    units of work, and close it at shutdown:

        async with Database(settings) as db:
            await db.with_transaction(do_work)

    Code running inside a unit of work reaches its connection through
    ``Transaction.current().db``; it never needs the Database itself.
    """

    def __init__(self, settings: DbSettings | str):
        """Initialize the database and its (not yet opened) pool.

        Args:
            settings: Settings, or just a SQLAlchemy database URL. If using
                      sqlite:///, it will be converted to sqlite+aiosqlite:///.
        """
        if isinstance(settings, str):
            settings = DbSettings(database_url=settings)
        self._settings = settings
        self._pool = DbPool.from_settings(settings)

    @classmethod
    def from_settings_file(cls, settings_path: str | Path) -> "Database":
        """Create a database from a settings YAML file (env vars override it)."""
        return cls(DbSettings.from_yaml_file(settings_path))

    @property
    def settings(self) -> DbSettings:
        return self._settings

    @property
    def pool(self) -> DbPool:
        """Get the connection pool."""
        return self._pool

    async def __aenter__(self) -> "Database":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def open(self) -> None:
        """Open the pool's minimum number of connections."""
        await self._pool.open()

    async def with_transaction(
        self,
        action: Callable[[], Awaitable[R]],
        *,
        nesting: TransactionNesting = TransactionNesting.NOT_ALLOWED,
        use_transaction: bool = True,
    ) -> R:
        """Run ``action`` as a unit of work on this database's pool.

        See :func:`sqldao.transaction.with_transaction`.
        """
        return await with_transaction(
            self._pool,
            action,
            nesting=nesting,
            use_transaction=use_transaction,
        )

    async def close(self, *, force: bool = False) -> None:
        """Close the pool's connections and dispose of the engine."""
        await self._pool.close(force=force)
