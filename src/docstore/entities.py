"""
Descriptors of the relational tables that back the document store.

Every entity lives in a fixed table with a handful of real columns and one JSON
column, the data container, holding its schema-flexible properties. Logical keys
with a leading ``$`` name columns; plain keys name properties inside the data
container.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

COLUMN_MARKER = "$"

# keys that are computed by the query rather than stored in a column
VIRTUAL_KEYS = frozenset({"$documents"})


@dataclass(frozen=True)
class EntityType:
    """
    A table of the document store.

    Parameters
    ----------
    name : str
        Entity name, e.g. ``"Document"``.
    table : str
        Unqualified table name.
    datakey : str
        Logical key of the JSON data container, e.g. ``"$content"``.
    keys : tuple of str
        Logical keys of the entity (columns and virtual keys).
    discriminator : str, optional
        Column holding the declared type name, when the entity is typed.
    """

    name: str
    table: str
    datakey: str
    keys: tuple
    discriminator: str | None = None

    @property
    def data_container(self) -> str:
        """Column name of the JSON data container."""
        return self.datakey[len(COLUMN_MARKER) :]

    @property
    def columns(self) -> tuple:
        """Real column names, without the ``$`` marker."""
        return tuple(k[len(COLUMN_MARKER) :] for k in self.keys if k not in VIRTUAL_KEYS)

    def has_column(self, name: str) -> bool:
        return name in self.columns

    def __repr__(self) -> str:
        return f"EntityType({self.name}, table={self.table})"


Document = EntityType(
    name="Document",
    table="documents",
    datakey="$content",
    keys=("$id", "$type", "$content", "$types_id", "$created", "$modified", "$documents"),
    discriminator="type",
)

Type = EntityType(
    name="Type",
    table="types",
    datakey="$meta",
    keys=("$id", "$name", "$schema", "$validator", "$meta", "$documents", "$created", "$modified"),
)

Attachment = EntityType(
    name="Attachment",
    table="attachments",
    datakey="$meta",
    keys=("$id", "$documents_id", "$content", "$meta", "$created", "$updated"),
)

Lib = EntityType(
    name="Lib",
    table="libs",
    datakey="$meta",
    keys=("$id", "$name", "$content", "$meta", "$created", "$modified"),
)

Method = EntityType(
    name="Method",
    table="methods",
    datakey="$meta",
    keys=("$id", "$types_id", "$type", "$name", "$body", "$meta", "$active", "$created", "$modified"),
    discriminator="type",
)

View = EntityType(
    name="View",
    table="views",
    datakey="$meta",
    keys=("$id", "$types_id", "$type", "$name", "$meta", "$active", "$created", "$modified"),
    discriminator="type",
)

ENTITY_TYPES = {e.name: e for e in (Document, Type, Attachment, Lib, Method, View)}


def get_entity_type(name: str) -> EntityType:
    """Look up an entity type by name (``"Document"``) or table (``"documents"``)."""
    for entity in ENTITY_TYPES.values():
        if name in (entity.name, entity.table):
            return entity
    raise KeyError(f"Unknown entity type {name!r}")


@dataclass
class DocumentType:
    """
    A declared document type as stored in the ``types`` table.

    Only the parts the query compiler needs are kept: the name used as the
    discriminator value, the JSON schema consulted for casts and the default
    relation expressions for the ``$documents`` field.
    """

    name: str
    id: Any = None
    schema: Mapping[str, Any] = field(default_factory=dict)
    meta: Mapping[str, Any] = field(default_factory=dict)

    @property
    def documents(self) -> list:
        """Relation expressions declared for this type."""
        return list(self.meta.get("documents") or [])

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "DocumentType":
        return cls(
            name=row["name"],
            id=row.get("id"),
            schema=row.get("schema") or {},
            meta=row.get("meta") or {},
        )
