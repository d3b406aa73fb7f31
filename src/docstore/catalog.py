"""
Introspection of the live database: index definitions and declared document types.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from .entities import DocumentType, Type
from .settings import config

logger = logging.getLogger(__name__.split(".")[0])


class Catalog:
    """
    Index introspection over ``pg_indexes``.

    Parameters
    ----------
    connection : Connection
        Any object with ``execute(text, params) -> rows`` returning mappings.
    schema_name : str, optional
        Schema the tables live in. Defaults to ``config["database.schema_name"]``.
    """

    def __init__(self, connection, schema_name: str | None = None) -> None:
        self.connection = connection
        self.schema_name = schema_name or config["database.schema_name"]

    def __repr__(self) -> str:
        return f"Catalog(schema={self.schema_name})"

    def index_exists(self, name: str) -> bool:
        rows = self.connection.execute(
            "SELECT 1 FROM pg_indexes WHERE schemaname = $1 AND indexname = $2",
            [self.schema_name, name],
        )
        return bool(rows)

    def index_definition(self, name: str) -> str | None:
        """Return the definition reported by the catalog, or None if the index does not exist."""
        rows = self.connection.execute(
            "SELECT indexdef FROM pg_indexes WHERE schemaname = $1 AND indexname = $2",
            [self.schema_name, name],
        )
        return rows[0]["indexdef"] if rows else None

    def list_indexes(self, table: str) -> dict:
        """Map index name to definition for every index on ``table``."""
        rows = self.connection.execute(
            "SELECT indexname, indexdef FROM pg_indexes WHERE schemaname = $1 AND tablename = $2",
            [self.schema_name, table],
        )
        return {row["indexname"]: row["indexdef"] for row in rows}


def _decode_json(value: Any) -> Any:
    # the driver decodes json columns, plain text columns arrive as str
    if isinstance(value, (str, bytes)):
        return json.loads(value)
    return value


class TypeLookup:
    """
    Callable returning the declared document types with a given name.

    >>> lookup = TypeLookup(connection)
    >>> lookup("Person")
    [DocumentType(name='Person', ...)]
    """

    def __init__(self, connection) -> None:
        self.connection = connection

    def __call__(self, name: str) -> list:
        rows = self.connection.execute(f"SELECT * FROM {Type.table} WHERE name = $1", [name])
        logger.debug(f"Type lookup {name!r} found {len(rows)} row(s)")
        types = []
        for row in rows:
            row = {**row, "schema": _decode_json(row.get("schema")), "meta": _decode_json(row.get("meta"))}
            types.append(DocumentType.from_row(row))
        return types
