"""
Type casts applied to resolved keys.

JSON navigation yields ``json`` values, which compare poorly: numbers sort as
text and booleans do not test as booleans. The cast kind of a data field comes
from the declared type schema of the document type; columns are never cast.
"""

from __future__ import annotations

import enum
import re
from typing import Any, Mapping

from .errors import InvalidKey, InvalidPredicate
from .keys import FieldKey, KeyKind, parse_key

SQL_TYPE_PATTERN = re.compile(r"^[a-z_][a-z0-9_]*( [a-z0-9_]+)*(\(\d+(, ?\d+)?\))?(\[\])?$", re.I)

PARENTHESIZED = re.compile(r"^\(.+\)$")
TRAILING_CAST = re.compile(r"::[a-z]+$")
LEADING_TEXT_ACCESS = re.compile(r"^[a-z]+ \->> ")
CAST_OPERAND = re.compile(r"^[a-z_][a-z0-9_.]*$", re.I)
FUNCTION_CALL = re.compile(r"^[a-z_][a-z0-9_.]*\(", re.I)


class CastKind(str, enum.Enum):
    DIRECT = "direct"
    NUMERIC = "numeric"
    BOOLEAN = "boolean"
    TEXT = "text"


SCHEMA_KINDS = {
    "number": CastKind.NUMERIC,
    "integer": CastKind.NUMERIC,
    "boolean": CastKind.BOOLEAN,
}


def _schema_properties(type_schema: Any) -> Mapping:
    # accepts a DocumentType or the bare JSON schema
    schema = getattr(type_schema, "schema", type_schema)
    if not isinstance(schema, Mapping):
        return {}
    return schema.get("properties") or {}


def declared_type(type_schema: Any, key: Any) -> str | None:
    """
    Return the JSON-schema type declared for a data key, following nested ``properties``.

    A type list such as ``["number", "null"]`` yields its first non-null entry.
    Returns None when the schema does not declare the key.
    """
    key = parse_key(key)
    if key.kind is not KeyKind.PATH:
        return None
    properties = _schema_properties(type_schema)
    node = None
    for part in key.path:
        node = properties.get(part) if isinstance(properties, Mapping) else None
        if not isinstance(node, Mapping):
            return None
        properties = node.get("properties") or {}
    declared = node.get("type")
    if isinstance(declared, (list, tuple)):
        declared = next((t for t in declared if t != "null"), None)
    return declared if isinstance(declared, str) else None


def cast_for(obj_type, type_schema: Any, key: Any) -> CastKind:
    """
    Choose the cast kind for a key.

    Parameters
    ----------
    obj_type : EntityType
        Entity the key belongs to.
    type_schema : DocumentType or mapping or None
        Declared schema of the document type.
    key : str or FieldKey
        Logical key.

    Returns
    -------
    CastKind
        ``DIRECT`` for columns, otherwise
        ``NUMERIC`` for ``number``/``integer``, ``BOOLEAN`` for ``boolean`` and
        ``TEXT`` for everything else, including undeclared fields.
    """
    key = parse_key(key)
    if key.is_reserved:
        if key.kind in (KeyKind.COLUMN, KeyKind.TIMESTAMP) and not obj_type.has_column(key.column):
            raise InvalidKey(f"{obj_type.name} has no column for key {key.name!r}")
        return CastKind.DIRECT
    return SCHEMA_KINDS.get(declared_type(type_schema, key), CastKind.TEXT)


def parse_cast(name: Any) -> CastKind | str:
    """
    Validate a cast name given by the caller, e.g. the ``numeric`` of ``age:numeric``.

    Returns the matching :class:`CastKind` or, for any other SQL type name,
    the lowercased name itself.
    """
    if isinstance(name, CastKind):
        return name
    if not isinstance(name, str) or not SQL_TYPE_PATTERN.match(name.strip()):
        raise InvalidPredicate(f"Invalid cast type {name!r}")
    name = name.strip().lower()
    try:
        return CastKind(name)
    except ValueError:
        return name


def _replace_last(text: str, old: str, new: str) -> str | None:
    position = text.rfind(old)
    if position < 0:
        return None
    return text[:position] + new + text[position + len(old) :]


def _enclosed(expr: str) -> bool:
    # the parenthesis opening at the start closes at the end
    if not expr.startswith("("):
        return False
    depth = 0
    for position, char in enumerate(expr):
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
            if depth == 0:
                return position == len(expr) - 1
    return False


def _operand(expr: str) -> str:
    """Parenthesize ``expr`` unless it binds at least as tightly as a ``::`` cast."""
    if CAST_OPERAND.match(expr) or _enclosed(expr):
        return expr
    call = FUNCTION_CALL.match(expr)
    if call and _enclosed(expr[call.end() - 1 :]):
        return expr
    return f"({expr})"


def apply_cast(kind: CastKind | str, expr: str) -> str:
    """
    Apply a cast to an SQL expression.

    >>> apply_cast(CastKind.NUMERIC, "(content -> 'age'::text)")
    "(((content -> 'age'::text))::text)::numeric"
    >>> apply_cast(CastKind.TEXT, "(content -> 'name'::text)")
    "(content ->> 'name'::text)"
    """
    kind = parse_cast(kind)
    if kind is CastKind.DIRECT:
        return expr
    if kind is CastKind.BOOLEAN:
        return f"((({expr})::text)::boolean IS TRUE)"
    if kind is CastKind.NUMERIC:
        return f"(({expr})::text)::numeric"
    if kind is CastKind.TEXT:
        for old, new in ((" -> ", " ->> "), (" #> ", " #>> ")):
            replaced = _replace_last(expr, old, new)
            if replaced is not None:
                return replaced
        if expr.endswith("::text") or expr.endswith("::text)"):
            return expr
        return f"{_operand(expr)}::text"
    return f"{_operand(expr)}::{kind}"


def cast_key(obj_type, type_schema: Any, key: FieldKey, expr: str, cast: Any = None) -> str:
    """Cast ``expr`` with an explicit ``cast`` if given, else with the kind chosen by :func:`cast_for`."""
    kind = parse_cast(cast) if cast is not None else cast_for(obj_type, type_schema, key)
    return apply_cast(kind, expr)


def wrap_index_expression(expr: str) -> str:
    """
    Parenthesize an index expression the way ``pg_get_indexdef`` reports it.

    Expressions already in parentheses and expressions ending in a cast gain a
    pair of parentheses; a bare ``col ->> key`` access with a cast gains two.
    Plain columns are left alone.
    """
    if PARENTHESIZED.match(expr):
        return f"({expr})"
    if TRAILING_CAST.search(expr):
        if LEADING_TEXT_ACCESS.match(expr):
            return f"(({expr}))"
        return f"({expr})"
    return expr
