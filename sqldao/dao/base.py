"""Base DAO abstract class."""

import re
from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any, Generic, TypeVar

from sqlalchemy.engine import RowMapping

from sqldao.connection import Db
from sqldao.exceptions import TooManyRowsError, UnknownEntityError
from sqldao.models.base import Entity
from sqldao.transaction import Transaction

# Type variable for Pydantic entity models
T = TypeVar("T", bound=Entity)

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _identifier(name: str) -> str:
    if not _IDENTIFIER.match(name):
        raise ValueError(f"Invalid SQL identifier: {name!r}")
    return name


class BaseDAO(ABC, Generic[T]):
    """Abstract base class for Data Access Objects.

    DAOs MUST return Pydantic entity models, never raw rows. Subclasses
    implement ``from_row``.

    By default a DAO runs on the connection of the ambient transaction, so it
    has to be used inside ``with_transaction``. Pass ``db`` to pin it to a
    specific connection instead.
    """

    def __init__(self, table_name: str, *, db: Db | None = None):
        """Initialize DAO for a table.

        Args:
            table_name: Table the entities live in.
            db: Explicit connection; None means ``Transaction.current().db``.
        """
        self._table = _identifier(table_name)
        self._db = db

    @property
    def table_name(self) -> str:
        return self._table

    @property
    def db(self) -> Db:
        """Get the connection this DAO runs on.

        Raises:
            NoActiveTransactionError: No explicit db and no active transaction.
        """
        if self._db is not None:
            return self._db
        return Transaction.current().db

    @abstractmethod
    def from_row(self, row: RowMapping) -> T:
        """Convert a row into the entity model."""

    async def query(self, sql: str, params: Mapping[str, Any] | None = None) -> list[T]:
        rows = await self.db.query(sql, params)
        return [self.from_row(row) for row in rows]

    @staticmethod
    def try_single(rows: list[T]) -> T | None:
        """Return the only entity in ``rows``, or None if there are none.

        Raises:
            TooManyRowsError: If there is more than one.
        """
        if not rows:
            return None
        if len(rows) > 1:
            raise TooManyRowsError(f"Expected a single row, got {len(rows)}")
        return rows[0]

    async def try_by_id(self, entity_id: int) -> T | None:
        return self.try_single(
            await self.query(f"select * from {self._table} where id = :id", {"id": entity_id})
        )

    async def get_by_id(self, entity_id: int) -> T:
        """Get an entity by primary key.

        Raises:
            UnknownEntityError: If no row has that id.
        """
        entity = await self.try_by_id(entity_id)
        if entity is None:
            raise UnknownEntityError(f"No row in {self._table} with id {entity_id}")
        return entity

    async def get_by_field(self, field: str, value: Any) -> T | None:
        column = _identifier(field)
        return self.try_single(
            await self.query(
                f"select * from {self._table} where {column} = :value", {"value": value}
            )
        )

    async def get_all(self) -> list[T]:
        return await self.query(f"select * from {self._table}")

    async def persist(self, entity: T) -> int:
        """Insert an entity and return its new id.

        The id is also set on ``entity``. Relies on the driver reporting
        ``lastrowid`` (SQLite, MySQL).
        """
        values = entity.column_values()
        columns = [_identifier(column) for column in values]
        sql = (
            f"insert into {self._table} ({', '.join(columns)}) "
            f"values ({', '.join(f':{column}' for column in columns)})"
        )
        result = await self.db.execute(sql, values)
        entity.id = result.lastrowid
        return entity.id

    async def update(self, entity: T) -> int:
        """Write every column of a persisted entity. Returns the row count."""
        if entity.id is None:
            raise UnknownEntityError(f"Cannot update an unsaved {type(entity).__name__}")
        values = entity.column_values()
        assignments = ", ".join(f"{_identifier(column)} = :{column}" for column in values)
        result = await self.db.execute(
            f"update {self._table} set {assignments} where id = :id",
            {**values, "id": entity.id},
        )
        return result.rowcount

    async def remove(self, entity: T) -> int:
        if entity.id is None:
            raise UnknownEntityError(f"Cannot remove an unsaved {type(entity).__name__}")
        return await self.delete_by_id(entity.id)

    async def delete_by_id(self, entity_id: int) -> int:
        result = await self.db.execute(
            f"delete from {self._table} where id = :id", {"id": entity_id}
        )
        return result.rowcount

    async def execute(self, sql: str, params: Mapping[str, Any] | None = None) -> int:
        """Execute a statement and return the affected row count."""
        result = await self.db.execute(sql, params)
        return result.rowcount
