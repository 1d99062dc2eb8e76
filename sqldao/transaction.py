"""Units of work: one connection, one transaction, ambiently visible.

``with_transaction`` is the entry point. It obtains (or shares) a connection,
wraps it in a :class:`Transaction` and publishes that transaction in the
ambient context for the duration of the caller's action, so any code awaited
inside the action can reach it through ``Transaction.current()``.

Usage:
    async def transfer() -> None:
        db = Transaction.current().db
        await db.execute("update account set balance = balance - 10 where id = 1")
        await db.execute("update account set balance = balance + 10 where id = 2")

    await with_transaction(pool, transfer)
"""

from __future__ import annotations

import itertools
import logging
from collections.abc import Awaitable, Callable
from typing import ClassVar, TypeVar

from sqldao.connection import Db
from sqldao.context import ScopeKey, has_key, lookup, run_scoped
from sqldao.enums import TransactionNesting
from sqldao.exceptions import (
    InvalidTransactionStateError,
    MissingScopeKeyError,
    NestedTransactionError,
    NoActiveTransactionError,
)
from sqldao.pool import DbPool, PooledConnection

logger = logging.getLogger(__name__)

R = TypeVar("R")


class Transaction:
    """Binds one :class:`Db` to one unit of work.

    A transaction is created per ``with_transaction`` call and discarded when
    the call ends; it is never reused. ``id`` is only for diagnostics.
    """

    transaction_key: ClassVar[ScopeKey[Transaction]] = ScopeKey("transaction")

    _ids: ClassVar[itertools.count] = itertools.count()

    def __init__(self, db: Db, *, use_transaction: bool):
        """Create a database transaction for ``db``.

        Args:
            db: The connection the unit of work runs on.
            use_transaction: If False no BEGIN/COMMIT/ROLLBACK is issued, so
                changes are visible as soon as they happen. Intended for
                debugging only.
        """
        self.id = next(Transaction._ids)
        self.db = db
        self.use_transaction = use_transaction
        self._committed = False

    def __repr__(self) -> str:
        return (
            f"Transaction(id={self.id}, db={self.db.id}, "
            f"use_transaction={self.use_transaction}, committed={self._committed})"
        )

    @classmethod
    def current(cls) -> Transaction:
        """Return the transaction of the enclosing ``with_transaction`` call.

        Raises:
            NoActiveTransactionError: If no unit of work is active.
        """
        try:
            return lookup(cls.transaction_key)
        except MissingScopeKeyError as e:
            raise NoActiveTransactionError(
                "No transaction is active. Wrap the call in with_transaction()"
            ) from e

    @classmethod
    def is_active(cls) -> bool:
        return has_key(cls.transaction_key)

    @property
    def committed(self) -> bool:
        return self._committed

    async def run(self, action: Callable[[], Awaitable[R]]) -> R:
        logger.info(
            "Start transaction(%s db: %s): use_transaction: %s",
            self.id,
            self.db.id,
            self.use_transaction,
        )
        if self.use_transaction:
            result = await self.db.transaction(action)
        else:
            result = await action()
        self._committed = True
        logger.info(
            "End transaction(%s db: %s): use_transaction: %s",
            self.id,
            self.db.id,
            self.use_transaction,
        )
        return result

    async def rollback(self) -> None:
        """Abort the unit of work's changes.

        Does nothing when ``use_transaction`` is False.

        Raises:
            InvalidTransactionStateError: If the action already completed.
        """
        if not self.use_transaction:
            return
        if self._committed:
            raise InvalidTransactionStateError("commit has already been called")
        logger.info("Rollback transaction(%s db: %s)", self.id, self.db.id)
        await self.db.rollback()


async def with_transaction(
    pool: DbPool,
    action: Callable[[], Awaitable[R]],
    *,
    nesting: TransactionNesting = TransactionNesting.NOT_ALLOWED,
    use_transaction: bool = True,
) -> R:
    """Run ``action`` as a unit of work and return its result.

    The transaction is committed when ``action`` returns and rolled back if it
    raises. Call this at the top of the call stack so every db interaction
    happens inside the one transaction.

    Nesting inside an active unit of work depends on ``nesting``:

    - ``NOT_ALLOWED`` raises :class:`NestedTransactionError`.
    - ``NESTED`` joins the active transaction: same connection, no BEGIN or
      COMMIT of its own. A failure fails the outer transaction too. Without
      an active transaction it starts a normal one.
    - ``DETACHED`` always starts an independent transaction on a new
      connection. Be careful not to create lock waits between the two.

    Args:
        pool: Pool to obtain a connection from.
        action: Zero-argument coroutine function making up the unit of work.
        nesting: Policy when a transaction is already active.
        use_transaction: Debugging aid; False makes changes visible as they
            occur instead of at commit.

    Raises:
        NestedTransactionError: ``NOT_ALLOWED`` inside an active transaction.
        PoolError: The pool could not provide a connection.
    """
    nested = Transaction.is_active()

    if nesting == TransactionNesting.NOT_ALLOWED:
        if nested:
            raise NestedTransactionError(
                "You are already in a transaction. Specify TransactionNesting.NESTED"
            )
        return await _run_transaction(pool, action, use_transaction=use_transaction, share_db=False)

    if nesting == TransactionNesting.DETACHED:
        return await _run_transaction(pool, action, use_transaction=use_transaction, share_db=False)

    return await _run_transaction(
        pool,
        action,
        use_transaction=use_transaction and not nested,
        share_db=nested,
    )


async def _run_transaction(
    pool: DbPool,
    action: Callable[[], Awaitable[R]],
    *,
    use_transaction: bool,
    share_db: bool,
) -> R:
    pooled: PooledConnection | None = None
    if share_db:
        db = Transaction.current().db
    else:
        pooled = await pool.obtain()
        db = pooled.wrapped

    transaction = Transaction(db, use_transaction=use_transaction)
    try:
        return await run_scoped(
            Transaction.transaction_key,
            transaction,
            lambda: transaction.run(action),
        )
    finally:
        # Only a connection this call obtained goes back; a shared one belongs
        # to the outer unit of work.
        if pooled is not None:
            await pool.release(pooled)
