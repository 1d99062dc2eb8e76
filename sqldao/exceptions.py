"""Exceptions raised by the data-access layer."""


class DataAccessError(Exception):
    """Base class for all sqldao errors."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class NestedTransactionError(DataAccessError):
    """A unit of work was started while another one is already ambient."""


class InvalidTransactionStateError(DataAccessError):
    """An operation is not valid for the transaction's current state."""


class MissingScopeKeyError(DataAccessError, LookupError):
    """No binding for the requested scope key is active."""


class NoActiveTransactionError(MissingScopeKeyError):
    """``Transaction.current()`` was called outside of ``with_transaction``."""


class PoolError(DataAccessError):
    """Base class for connection pool failures."""


class PoolClosedError(PoolError):
    """The pool has been closed and no longer hands out connections."""


class PoolExhaustedError(PoolError):
    """No connection became available within the acquire timeout."""


class PoolBusyError(PoolError):
    """The pool cannot close because connections are still checked out."""


class UnknownEntityError(DataAccessError):
    """The requested row does not exist."""


class TooManyRowsError(DataAccessError):
    """A single row was expected but the query returned several."""
