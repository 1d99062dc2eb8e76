"""Entity base class for rows mapped by DAOs."""

from collections.abc import Mapping
from typing import Any, Self

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class JsonModel(BaseModel):
    """Base model with camelCase/snake_case conversion.

    - Column names and JSON output use camelCase
    - Internal Python uses snake_case
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_json(self, by_alias: bool = True, pretty: bool = False) -> str:
        """Serialize to JSON string."""
        return self.model_dump_json(
            indent=2 if pretty else None, exclude_none=True, by_alias=by_alias
        )


class Entity(JsonModel):
    """A row in a table, identified by an integer primary key.

    ``id`` is None until the entity has been persisted.
    """

    id: int | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> Self:
        """Build an entity from a row keyed by (camelCase) column names."""
        return cls.model_validate(dict(row))

    @property
    def is_persisted(self) -> bool:
        return self.id is not None

    def column_values(self) -> dict[str, Any]:
        """Column name -> value for every field except ``id``."""
        return self.model_dump(mode="python", by_alias=True, exclude={"id"})
