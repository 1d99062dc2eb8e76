"""Ambient, task-local key/value scopes.

Values bound here are visible to everything awaited inside the scope without
being passed as parameters. Bindings live in ``contextvars`` so they follow
asyncio's own context propagation:

- a binding survives any ``await`` inside the scope
- tasks created inside the scope start with a copy that includes it
- tasks running concurrently outside the scope never see it

This is how DAO code several calls deep finds "the current transaction".
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Generic, TypeVar

from sqldao.exceptions import MissingScopeKeyError

T = TypeVar("T")
R = TypeVar("R")

_MISSING: Any = object()


class ScopeKey(Generic[T]):
    """A well-known slot in the ambient context.

    Create keys at import time (module or class level); each key owns one
    ``ContextVar`` for the life of the process.
    """

    def __init__(self, name: str):
        self.name = name
        self._var: ContextVar[T] = ContextVar(f"sqldao.scope.{name}")

    def __repr__(self) -> str:
        return f"ScopeKey({self.name!r})"


@contextmanager
def scoped(key: ScopeKey[T], value: T) -> Iterator[T]:
    """Bind ``key`` to ``value`` until the block exits.

    Scopes nest: the innermost binding wins and leaving a scope restores
    whatever was bound before it.
    """
    token = key._var.set(value)
    try:
        yield value
    finally:
        key._var.reset(token)


async def run_scoped(
    key: ScopeKey[T],
    value: T,
    body: Callable[[], Awaitable[R]],
) -> R:
    """Await ``body()`` with ``key`` bound to ``value`` and return its result."""
    with scoped(key, value):
        return await body()


def has_key(key: ScopeKey[Any]) -> bool:
    return key._var.get(_MISSING) is not _MISSING


def lookup(key: ScopeKey[T]) -> T:
    """Return the innermost active binding for ``key``.

    Raises:
        MissingScopeKeyError: If no scope binding ``key`` is active.
    """
    value = key._var.get(_MISSING)
    if value is _MISSING:
        raise MissingScopeKeyError(f"No value is in scope for {key.name!r}")
    return value
