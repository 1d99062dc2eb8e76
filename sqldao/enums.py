"""StrEnum definitions for type-safe constants."""

from enum import StrEnum


class TransactionNesting(StrEnum):
    """How ``with_transaction`` treats an already active transaction."""

    NOT_ALLOWED = "not_allowed"
    NESTED = "nested"
    DETACHED = "detached"
