"""Pydantic models describing runtime state.

Returned by the pool for diagnostics; never persisted.
"""

from sqldao.models.base import JsonModel


class PoolStats(JsonModel):
    """Snapshot of a connection pool."""

    name: str
    size: int
    available: int
    in_use: int
    waiting: int
    max_size: int
    closed: bool
