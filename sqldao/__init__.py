"""Transactional data access over async SQLAlchemy connections."""

from sqldao.config import DbSettings
from sqldao.connection import Connector, Db, SqlAlchemyConnector
from sqldao.context import ScopeKey, has_key, lookup, run_scoped, scoped
from sqldao.dao import BaseDAO
from sqldao.database import Database
from sqldao.enums import TransactionNesting
from sqldao.exceptions import (
    DataAccessError,
    InvalidTransactionStateError,
    MissingScopeKeyError,
    NestedTransactionError,
    NoActiveTransactionError,
    PoolBusyError,
    PoolClosedError,
    PoolError,
    PoolExhaustedError,
    TooManyRowsError,
    UnknownEntityError,
)
from sqldao.models import Entity, PoolStats
from sqldao.pool import DbPool, PooledConnection
from sqldao.transaction import Transaction, with_transaction

__all__ = [
    "BaseDAO",
    "Connector",
    "DataAccessError",
    "Database",
    "Db",
    "DbPool",
    "DbSettings",
    "Entity",
    "InvalidTransactionStateError",
    "MissingScopeKeyError",
    "NestedTransactionError",
    "NoActiveTransactionError",
    "PoolBusyError",
    "PoolClosedError",
    "PoolError",
    "PoolExhaustedError",
    "PoolStats",
    "PooledConnection",
    "ScopeKey",
    "SqlAlchemyConnector",
    "TooManyRowsError",
    "Transaction",
    "TransactionNesting",
    "UnknownEntityError",
    "has_key",
    "lookup",
    "run_scoped",
    "scoped",
    "with_transaction",
]
