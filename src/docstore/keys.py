"""
Resolution of logical field keys into SQL expressions.

Logical keys come in a few shapes:

- ``$column`` names a real column of the entity table (``$id``, ``$type``, ...)
- ``plain.dotted.path`` names a property inside the entity's JSON data container
- ``$created`` / ``$modified`` are timestamp columns that can be rendered as
  epoch milliseconds for sorting and function predicates
- ``$documents`` fetches related documents through the relation procedure
- ``$*`` selects every column

A key is parsed once into a :class:`FieldKey` and the parsed form is what the
query compiler, the cast resolver and the index synchronizer pass around. The
same key always resolves to the same SQL text, whether it is used for filtering,
ordering or indexing.
"""

from __future__ import annotations

import enum
import json
import re
from dataclasses import dataclass
from typing import Any, Iterable

import pyparsing as pp

from .entities import COLUMN_MARKER, EntityType
from .errors import InvalidKey
from .predicate import Predicate
from .settings import config

COLUMN_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
PATH_PATTERN = re.compile(r"^[A-Za-z0-9_\-]+(\.[A-Za-z0-9_\-]+)*$")

TIMESTAMP_KEYS = ("$created", "$modified")
RELATIONS_KEY = "$documents"
ALL_KEY = "$*"


class KeyKind(enum.Enum):
    COLUMN = "column"
    PATH = "path"
    TIMESTAMP = "timestamp"
    RELATIONS = "relations"
    ALL = "all"


@dataclass(frozen=True)
class FieldKey:
    """
    Pre-parsed logical key.

    Parameters
    ----------
    name : str
        The logical key as written by the caller.
    kind : KeyKind
        What the key refers to.
    column : str, optional
        Column name for column-like kinds.
    path : tuple of str
        Path inside the data container for ``KeyKind.PATH``.
    """

    name: str
    kind: KeyKind
    column: str | None = None
    path: tuple = ()

    @property
    def is_reserved(self) -> bool:
        """True for keys that name table columns rather than data properties."""
        return self.kind is not KeyKind.PATH

    def __str__(self) -> str:
        return self.name


def parse_key(key: Any) -> FieldKey:
    """
    Parse a logical key.

    Parameters
    ----------
    key : str or FieldKey
        Logical key. An already parsed key is returned unchanged.

    Returns
    -------
    FieldKey
        The parsed key.

    Raises
    ------
    InvalidKey
        If the key is not a string or contains characters that cannot appear in a
        column name or a JSON path.
    """
    if isinstance(key, FieldKey):
        return key
    if not isinstance(key, str) or not key:
        raise InvalidKey(f"Invalid key {key!r}")
    if key == ALL_KEY:
        return FieldKey(key, KeyKind.ALL, column="*")
    if key == RELATIONS_KEY:
        return FieldKey(key, KeyKind.RELATIONS, column=key[1:])
    if key in TIMESTAMP_KEYS:
        return FieldKey(key, KeyKind.TIMESTAMP, column=key[1:])
    if key.startswith(COLUMN_MARKER):
        column = key[len(COLUMN_MARKER) :]
        if not COLUMN_PATTERN.match(column):
            raise InvalidKey(f"Invalid column key {key!r}")
        return FieldKey(key, KeyKind.COLUMN, column=column)
    if not PATH_PATTERN.match(key):
        raise InvalidKey(f"Invalid keyword {key!r}")
    return FieldKey(key, KeyKind.PATH, path=tuple(key.split(".")))


def json_path_expr(container: str, path: Iterable[str], as_text: bool = False) -> str:
    """
    JSON navigation expression into ``container``.

    A single-level path uses ``->`` (``->>`` as text), a multi-level path uses
    ``#>`` (``#>>`` as text).

    >>> json_path_expr("content", ["name"])
    "(content -> 'name'::text)"
    >>> json_path_expr("content", ["address", "city"])
    "(content #> '{address,city}')"
    """
    path = list(path)
    if len(path) == 1:
        return "({} {} '{}'::text)".format(container, "->>" if as_text else "->", path[0])
    return "({} {} '{{{}}}')".format(container, "#>>" if as_text else "#>", ",".join(path))


def resolve_key(
    obj_type: EntityType,
    key: Any,
    *,
    epoch: bool = False,
    documents: Iterable[str] = (),
) -> Predicate:
    """
    Resolve a logical key into an SQL fragment.

    Parameters
    ----------
    obj_type : EntityType
        Entity the key belongs to.
    key : str or FieldKey
        Logical key.
    epoch : bool, optional
        Render ``$created`` / ``$modified`` as epoch milliseconds.
    documents : iterable of str, optional
        Relation expressions used by the ``$documents`` key.

    Returns
    -------
    Predicate
        The fragment. Only ``$documents`` carries a bind parameter.

    Raises
    ------
    InvalidKey
        If the key is malformed or names a column the entity does not have.
    """
    key = parse_key(key)

    if key.kind is KeyKind.PATH:
        container = obj_type.data_container
        return Predicate(
            json_path_expr(container, key.path),
            meta={"data_container": container, "key": key.name},
        )

    if key.kind is KeyKind.ALL:
        return Predicate("*", meta={"key": "*"})

    if key.kind is KeyKind.RELATIONS:
        relations = parse_relations(obj_type, documents)
        return Predicate(
            "{}(row_to_json({}.*), $::json)".format(config["procedures.relations"], obj_type.table),
            [json.dumps(relations)],
            meta={"key": key.column},
        )

    if not obj_type.has_column(key.column):
        raise InvalidKey(f"{obj_type.name} has no column for key {key.name!r}")

    if key.kind is KeyKind.TIMESTAMP and epoch:
        return Predicate(f"extract(epoch from {key.column})*1000", meta={"key": key.column})

    return Predicate(key.column, meta={"key": key.column})


# --- relation expressions for the $documents key


def build_relation_parser() -> pp.ParserElement:
    """
    Build a pyparsing parser for relation expressions.

    Returns
    -------
    pp.ParserElement
        Parser for ``[Type#]property[{filter}][|field1,field2]``.
    """
    type_name = pp.Word(pp.alphanums + "_-").set_results_name("type")
    prop = pp.Combine(pp.Optional(COLUMN_MARKER) + pp.Word(pp.alphanums + "_-.")).set_results_name("prop")
    filter_ = pp.Combine("{" + pp.CharsNotIn("{}") + "}").set_results_name("filter")
    field_name = pp.Word(pp.alphanums + "_-.$*")
    fields = pp.Suppress("|") + pp.Group(pp.DelimitedList(field_name)).set_results_name("fields")
    return (
        pp.Optional(type_name + pp.Suppress("#"))
        + prop
        + pp.Optional(filter_)
        + pp.Optional(fields)
        + pp.StringEnd()
    )


relation_parser = build_relation_parser()


def parse_relation(obj_type: EntityType, expression: str) -> dict:
    """
    Parse one relation expression into the specification read by the relation procedure.

    Parameters
    ----------
    obj_type : EntityType
        Entity whose rows carry the relation.
    expression : str
        ``[Type#]property[{filter}][|field1,field2]``. ``property`` is a data
        property, or a column when prefixed with ``$``. The field list defaults
        to ``*``.

    Returns
    -------
    dict
        ``{"type": ..., "prop": ..., "fields": [...]}``; ``type`` is omitted when
        not given.

    Raises
    ------
    InvalidKey
        If the expression is malformed or lists an unresolvable field.

    Examples
    --------
    >>> parse_relation(Document, "User#owner|name")["prop"]
    'content.owner'
    """
    if not isinstance(expression, str):
        raise InvalidKey(f"Invalid relation expression {expression!r}")
    try:
        parsed = relation_parser.parse_string(expression.strip())
    except pp.ParseException as err:
        raise InvalidKey(f"Invalid relation expression {expression!r}: {err}")

    prop = parsed["prop"] + parsed.get("filter", "")
    if prop.startswith(COLUMN_MARKER):
        prop = prop[len(COLUMN_MARKER) :]
    else:
        prop = f"{obj_type.data_container}.{prop}"

    fields = []
    field_names = parsed["fields"].as_list() if "fields" in parsed else ["*"]
    for name in field_names:
        if name == "*":
            fields.append({"query": "*"})
            continue
        if parse_key(name).kind is KeyKind.RELATIONS:
            raise InvalidKey(f"Relation field list cannot contain {name!r}")
        fragment = resolve_key(obj_type, name)
        fields.append(
            {
                "name": name,
                "datakey": fragment.get_meta("data_container"),
                "key": fragment.get_meta("key"),
                "query": fragment.text,
            }
        )

    relation = {"prop": prop, "fields": fields}
    if "type" in parsed:
        relation = {"type": parsed["type"], **relation}
    return relation


def parse_relations(obj_type: EntityType, documents: Iterable[str]) -> list:
    """Parse every relation expression of a ``documents`` trait."""
    if isinstance(documents, str):
        documents = [documents]
    return [parse_relation(obj_type, d) for d in documents]
