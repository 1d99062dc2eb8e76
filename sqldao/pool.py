"""Bounded pool of reusable database connections.

One pool normally exists per process; the application creates it at startup
(see :class:`sqldao.database.Database`) and closes it at shutdown. Every
check-out is exclusive: a connection is never handed to a second caller until
the first has released it.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from pathlib import Path

from sqldao.config import DbSettings
from sqldao.connection import Connector, Db, SqlAlchemyConnector
from sqldao.exceptions import PoolBusyError, PoolClosedError, PoolError, PoolExhaustedError
from sqldao.models.domain import PoolStats

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class PooledConnection:
    """A :class:`Db` plus the pool's bookkeeping for it."""

    wrapped: Db
    in_use: bool = False
    checked_out_at: float | None = None
    pool: DbPool | None = field(default=None, repr=False)


class DbPool:
    """Hands out :class:`Db` sessions, opening up to ``max_size`` of them.

    ``obtain()`` waits without blocking the event loop when every connection
    is checked out. All bookkeeping happens under one ``asyncio.Condition`` so
    concurrent ``obtain``/``release`` calls never hand out the same session
    twice.
    """

    def __init__(
        self,
        connector: Connector,
        *,
        min_size: int = 1,
        max_size: int = 10,
        acquire_timeout: float | None = None,
        name: str = "sqldao",
    ):
        """Initialize the pool. No connection is opened until ``open``/``obtain``.

        Args:
            connector: Factory for new sessions.
            min_size: Connections opened eagerly by ``open()``.
            max_size: Upper bound on open connections.
            acquire_timeout: Seconds ``obtain()`` may wait; None waits forever.
            name: Pool name used in logs and stats.
        """
        if max_size < 1:
            raise ValueError(f"max_size must be at least 1, got {max_size}")
        if not 0 <= min_size <= max_size:
            raise ValueError(f"min_size must be between 0 and max_size ({max_size}), got {min_size}")

        self.name = name
        self._connector = connector
        self._min_size = min_size
        self._max_size = max_size
        self._acquire_timeout = acquire_timeout

        self._connections: list[PooledConnection] = []
        self._idle: deque[PooledConnection] = deque()
        # Slots reserved for connections that are still being opened
        self._opening = 0
        self._waiting = 0
        self._condition = asyncio.Condition()
        self._opened = False
        self._closed = False

    @classmethod
    def from_settings(cls, settings: DbSettings) -> DbPool:
        return cls(
            SqlAlchemyConnector.from_settings(settings),
            min_size=settings.min_pool_size,
            max_size=settings.max_pool_size,
            acquire_timeout=settings.acquire_timeout,
            name=settings.pool_name,
        )

    @classmethod
    def from_settings_file(cls, settings_path: str | Path) -> DbPool:
        """Create a pool from a settings YAML file (env vars override it)."""
        return cls.from_settings(DbSettings.from_yaml_file(settings_path))

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def size(self) -> int:
        """Number of open connections, idle or checked out."""
        return len(self._connections)

    @property
    def max_size(self) -> int:
        return self._max_size

    async def __aenter__(self) -> DbPool:
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def open(self) -> None:
        """Top the pool up to ``min_size`` connections.

        Safe to call multiple times. A later call replaces connections that
        were discarded, or that failed to open on an earlier call.
        """
        async with self._condition:
            self._check_open()
            first_open = not self._opened

        if first_open:
            logger.info(
                "Opening pool %s (min=%s, max=%s, timeout=%s)",
                self.name,
                self._min_size,
                self._max_size,
                self._acquire_timeout,
            )
        while True:
            async with self._condition:
                self._check_open()
                if self._capacity_used() >= self._min_size:
                    # Only a fully opened pool skips open() in obtain()
                    self._opened = True
                    return
                self._opening += 1
            await self._open_connection(checkout=False)

    async def obtain(self) -> PooledConnection:
        """Check out a connection, waiting for one if the pool is at capacity.

        Raises:
            PoolClosedError: If the pool is (or becomes) closed.
            PoolExhaustedError: If ``acquire_timeout`` elapses first.
        """
        if not self._opened:
            await self.open()

        started = time.monotonic()
        deadline = asyncio.timeout(self._acquire_timeout)
        try:
            async with deadline:
                pooled = await self._acquire()
        except TimeoutError as e:
            if not deadline.expired():
                raise
            raise PoolExhaustedError(
                f"No connection available from pool {self.name} "
                f"within {self._acquire_timeout}s (max_size={self._max_size})"
            ) from e

        logger.debug(
            "Obtained db %s from pool %s in %.1fms",
            pooled.wrapped.id,
            self.name,
            (time.monotonic() - started) * 1000,
        )
        return pooled

    async def release(self, pooled: PooledConnection) -> None:
        """Return a checked-out connection to the pool.

        The connection is reset first so a dangling transaction never leaks to
        the next caller. Broken connections, and any released after the pool
        closed, are closed instead of reused.
        """
        if pooled.pool is not self:
            raise PoolError(f"Db {pooled.wrapped.id} does not belong to pool {self.name}")
        if not pooled.in_use:
            raise PoolError(f"Db {pooled.wrapped.id} is not checked out of pool {self.name}")
        pooled.in_use = False
        pooled.checked_out_at = None

        db = pooled.wrapped
        discard = db.closed
        if not discard and not self._closed:
            try:
                await db.reset()
            except Exception:
                logger.warning("Discarding db %s: reset failed", db.id, exc_info=True)
                discard = True

        async with self._condition:
            if discard or self._closed:
                discard = True
                if pooled in self._connections:
                    self._connections.remove(pooled)
            else:
                self._idle.append(pooled)
            self._condition.notify()

        if discard and not db.closed:
            # Runs in callers' finally blocks; must not mask their exception
            try:
                await db.close()
            except Exception:
                logger.warning(
                    "Error closing discarded db %s in pool %s", db.id, self.name, exc_info=True
                )
        logger.debug("Released db %s to pool %s (discarded=%s)", db.id, self.name, discard)

    async def close(self, *, force: bool = False) -> None:
        """Close every connection and refuse further ``obtain`` calls.

        Args:
            force: Close connections that are still checked out. Their holders
                fail on their next statement.

        Raises:
            PoolBusyError: If connections are checked out and ``force`` is
                False. The pool stays open in that case.
        """
        async with self._condition:
            if self._closed:
                return
            in_use = sum(1 for pooled in self._connections if pooled.in_use)
            if in_use and not force:
                raise PoolBusyError(
                    f"Cannot close pool {self.name}: {in_use} connection(s) are still in use"
                )
            self._closed = True
            connections = list(self._connections)
            self._connections.clear()
            self._idle.clear()
            # Wake every waiter so it fails with PoolClosedError
            self._condition.notify_all()

        logger.info(
            "Closing pool %s (%d connections, %d in use)", self.name, len(connections), in_use
        )
        for pooled in connections:
            try:
                await pooled.wrapped.close()
            except Exception:
                logger.warning(
                    "Error closing db %s in pool %s", pooled.wrapped.id, self.name, exc_info=True
                )
        await self._connector.dispose()

    def get_stats(self) -> PoolStats:
        in_use = sum(1 for pooled in self._connections if pooled.in_use)
        return PoolStats(
            name=self.name,
            size=len(self._connections),
            available=len(self._idle),
            in_use=in_use,
            waiting=self._waiting,
            max_size=self._max_size,
            closed=self._closed,
        )

    def _capacity_used(self) -> int:
        return len(self._connections) + self._opening

    def _check_open(self) -> None:
        if self._closed:
            raise PoolClosedError(f"Pool {self.name} is closed")

    def _checkout(self, pooled: PooledConnection) -> PooledConnection:
        pooled.in_use = True
        pooled.checked_out_at = time.monotonic()
        return pooled

    async def _acquire(self) -> PooledConnection:
        async with self._condition:
            while True:
                self._check_open()
                if self._idle:
                    return self._checkout(self._idle.popleft())
                if self._capacity_used() < self._max_size:
                    self._opening += 1
                    break
                self._waiting += 1
                try:
                    await self._condition.wait()
                except BaseException:
                    # Pass on a wakeup this waiter may have consumed
                    self._condition.notify()
                    raise
                finally:
                    self._waiting -= 1

        # Open outside the lock so other callers are not held up by the connect
        return await self._open_connection(checkout=True)

    async def _open_connection(self, *, checkout: bool) -> PooledConnection:
        """Open a connection for a slot already reserved in ``_opening``."""
        try:
            db = await self._connector.connect()
        except BaseException:
            async with self._condition:
                self._opening -= 1
                self._condition.notify()
            raise

        async with self._condition:
            self._opening -= 1
            if not self._closed:
                pooled = PooledConnection(db, pool=self)
                self._connections.append(pooled)
                if checkout:
                    return self._checkout(pooled)
                self._idle.append(pooled)
                self._condition.notify()
                return pooled

        await db.close()
        raise PoolClosedError(f"Pool {self.name} closed while opening a connection")
