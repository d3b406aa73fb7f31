"""
INSERT, UPDATE and DELETE statements for entity rows.

Objects are given in logical form: ``$``-prefixed keys are columns and plain
keys are properties of the data container::

    {"$type": "Person", "name": "Ann", "age": 30}

becomes the row ``{"type": "Person", "content": {"name": "Ann", "age": 30}}``.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Mapping

from deepdiff import DeepDiff

from .condition import normalize_value
from .entities import COLUMN_MARKER, VIRTUAL_KEYS, EntityType
from .errors import InvalidKey, NoIdentifyingKey
from .predicate import Predicate

logger = logging.getLogger(__name__.split(".")[0])

IDENTIFYING_COLUMNS = ("id", "name")


@dataclass(frozen=True)
class Statement:
    """SQL text with ``$n`` placeholders and its parameters."""

    text: str
    params: tuple = ()

    def __iter__(self):
        return iter((self.text, list(self.params)))


def _encode(value: Any) -> Any:
    value = normalize_value(value)
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return value


def to_row(obj_type: EntityType, obj: Mapping[str, Any]) -> dict:
    """
    Convert an object in logical form into a row of column values.

    Plain keys are gathered into the data container, merged over an explicit
    data container value.

    Raises
    ------
    InvalidKey
        If a ``$`` key names no column of the entity.
    """
    row = {}
    data = {}
    for key, value in obj.items():
        if not isinstance(key, str) or not key:
            raise InvalidKey(f"Invalid key {key!r}")
        if key in VIRTUAL_KEYS:
            raise InvalidKey(f"Key {key!r} is computed and cannot be stored")
        if key.startswith(COLUMN_MARKER):
            column = key[len(COLUMN_MARKER) :]
            if not obj_type.has_column(column):
                raise InvalidKey(f"{obj_type.name} has no column for key {key!r}")
            row[column] = normalize_value(value)
        else:
            data[key] = normalize_value(value)
    if data:
        container = obj_type.data_container
        row[container] = {**(row.get(container) or {}), **data}
    return row


def identify(obj_type: EntityType, obj: Mapping[str, Any]) -> tuple[str, Any]:
    """
    Return the column and value that identify an object: ``$id``, else ``$name``.

    Raises
    ------
    NoIdentifyingKey
        If the object has neither.
    """
    for column in IDENTIFYING_COLUMNS:
        value = obj.get(COLUMN_MARKER + column)
        if value is not None and obj_type.has_column(column):
            return column, normalize_value(value)
    raise NoIdentifyingKey(f"{obj_type.name} object has no $id or $name").suggest(
        "Fetch the object first or pass its $id"
    )


def prepare_insert(obj_type: EntityType, data: Mapping[str, Any]) -> Statement:
    """
    Build ``INSERT INTO <table> (...) VALUES (...) RETURNING *``.

    >>> prepare_insert(Document, {"$type": "Person", "name": "Ann"}).text
    'INSERT INTO documents (type, content) VALUES ($1, $2) RETURNING *'
    """
    row = to_row(obj_type, data)
    if not row:
        return Statement(f"INSERT INTO {obj_type.table} DEFAULT VALUES RETURNING *")
    statement = Predicate(
        "INSERT INTO {table} ({columns}) VALUES ({values}) RETURNING *".format(
            table=obj_type.table,
            columns=", ".join(row),
            values=", ".join("$" for _ in row),
        ),
        [_encode(v) for v in row.values()],
    )
    logger.debug(f"Insert: {statement.text}")
    return Statement(statement.text, statement.params)


def changed_columns(obj_type: EntityType, original: Mapping[str, Any], patch: Mapping[str, Any]) -> dict:
    """
    Columns whose value differs after applying ``patch`` to ``original``.

    Values are compared structurally, so reordered mapping keys or an equal
    nested document do not count as a change.
    """
    before = to_row(obj_type, original)
    after = to_row(obj_type, {**original, **patch})
    return {
        column: value
        for column, value in after.items()
        if column != "id" and (column not in before or DeepDiff(before[column], value))
    }


def prepare_update(obj_type: EntityType, original: Mapping[str, Any], patch: Mapping[str, Any]) -> Statement | None:
    """
    Build ``UPDATE <table> SET ... WHERE id = $n RETURNING *`` for the changed columns.

    Parameters
    ----------
    obj_type : EntityType
        Entity of the object.
    original : mapping
        Object as currently stored, in logical form. Identified by ``$id`` or ``$name``.
    patch : mapping
        Keys to change.

    Returns
    -------
    Statement or None
        None when the patch changes nothing.

    Raises
    ------
    NoIdentifyingKey
        If the object can be identified neither by ``$id`` nor ``$name``.
    """
    column, value = identify(obj_type, {**patch, **original})
    changes = changed_columns(obj_type, original, patch)
    if not changes:
        logger.debug(f"Nothing to update in {obj_type.table} {column}={value}")
        return None
    statement = Predicate.concat(
        [
            f"UPDATE {obj_type.table} SET",
            Predicate.concat([Predicate(f"{c} = $", [_encode(v)]) for c, v in changes.items()], ", "),
            Predicate(f"WHERE {column} = $ RETURNING *", [value]),
        ]
    )
    logger.debug(f"Update: {statement.text}")
    return Statement(statement.text, statement.params)


def prepare_delete(obj_type: EntityType, target: Mapping[str, Any]) -> Statement:
    """Build ``DELETE FROM <table> WHERE id = $1`` (or ``name``)."""
    column, value = identify(obj_type, target)
    return Statement(f"DELETE FROM {obj_type.table} WHERE {column} = $1", (value,))
