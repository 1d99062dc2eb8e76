"""Logging helpers and filters.

This module centralizes the logging setup so applications and tests can stamp
log lines with the unit of work they belong to.
"""

from __future__ import annotations

import logging
import sys

from sqldao.transaction import Transaction

LOG_FORMAT = "%(asctime)s %(levelname)s [tx=%(transaction_id)s db=%(db_id)s] %(name)s: %(message)s"


class TransactionContextFilter(logging.Filter):
    """Add ``transaction_id`` and ``db_id`` of the ambient transaction to records.

    Both are "-" when the record is logged outside of a unit of work.
    """

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003 (filter)
        if Transaction.is_active():
            transaction = Transaction.current()
            record.transaction_id = transaction.id
            record.db_id = transaction.db.id
        else:
            record.transaction_id = "-"
            record.db_id = "-"
        return True


def _handlers_reached_by(logger: logging.Logger) -> list[logging.Handler]:
    handlers: list[logging.Handler] = []
    current: logging.Logger | None = logger
    while current is not None:
        handlers.extend(current.handlers)
        if not current.propagate:
            break
        current = current.parent
    return handlers


def install_transaction_log_filter(logger_name: str = "sqldao") -> None:
    """Install the transaction filter on a logger and every handler its records reach.

    Records from child loggers (``sqldao.pool``, ``sqldao.transaction``) skip
    the parent logger's filters but not the handlers they propagate to, so the
    handlers are what make ``LOG_FORMAT`` safe for every library record. Call
    this after handlers are configured. Safe to call multiple times.
    """
    target = logging.getLogger(logger_name)
    loggers_and_handlers: list[logging.Filterer] = [target, *_handlers_reached_by(target)]

    for filterer in loggers_and_handlers:
        # Avoid duplicating the filter if called repeatedly.
        if any(isinstance(f, TransactionContextFilter) for f in filterer.filters):
            continue
        filterer.addFilter(TransactionContextFilter())


def configure_logging(level: int = logging.INFO) -> None:
    """Log to stdout with the ambient transaction in every line."""
    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(TransactionContextFilter())
    handler.setFormatter(logging.Formatter(LOG_FORMAT))

    root = logging.getLogger()
    root.setLevel(level)
    for existing in root.handlers:
        if any(isinstance(f, TransactionContextFilter) for f in existing.filters):
            return
    root.addHandler(handler)
