"""
Filter specifications and their translation into SQL WHERE conditions.

A filter is a nested structure of plain Python values:

- ``None`` or ``[]``: no condition
- ``{"$id": 1, "name": "Ann"}``: equality of every entry, joined with the default operator
- ``["OR", spec, spec, ...]``: explicit boolean operator, ``AND`` when omitted
- ``["BIND", "key", ..., function, arg, ...]``: a registered predicate function
- ``"created > now() - interval '1 day'"``: a raw SQL fragment without parameters
- a pandas ``DataFrame``: one equality map per record, records joined with ``OR``

The filter is first parsed into tagged nodes (:func:`parse_filter`), which
rejects anything malformed, and then compiled into a single
:class:`~docstore.predicate.Predicate` (:func:`compile_filter`).
"""

from __future__ import annotations

import collections
import datetime
import decimal
import json
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Union

import numpy
import pandas

from .casts import CastKind, apply_cast, cast_for, declared_type, parse_cast
from .entities import EntityType
from .errors import InvalidKey, InvalidPredicate
from .functions import PredicateFunction, get_function, is_function_reference
from .keys import FieldKey, KeyKind, parse_key, resolve_key
from .predicate import OPERATORS, Predicate
from .settings import config

logger = logging.getLogger(__name__.split(".")[0])

BIND_OPERATOR = "BIND"
MATCH_OPERATORS = {"all": "AND", "any": "OR"}

SCALAR_TYPES = (str, bool, int, float, decimal.Decimal, datetime.date, datetime.time, uuid.UUID)


@dataclass(frozen=True)
class Raw:
    """Raw SQL fragment without parameters."""

    text: str


@dataclass(frozen=True)
class Column:
    """Equality on a table column."""

    key: FieldKey
    value: Any


@dataclass(frozen=True)
class PathEquals:
    """Equality on a property of the data container."""

    key: FieldKey
    value: Any


@dataclass(frozen=True)
class And:
    operands: tuple


@dataclass(frozen=True)
class Or:
    operands: tuple


@dataclass(frozen=True)
class Bind:
    """Call of a registered predicate function on the values of ``keys``."""

    keys: tuple
    function: PredicateFunction
    args: tuple
    return_type: str


Node = Union[Raw, Column, PathEquals, And, Or, Bind]


def normalize_value(value: Any) -> Any:
    """Convert numpy scalars and arrays into plain Python values."""
    if isinstance(value, numpy.generic):
        return value.item()
    if isinstance(value, numpy.ndarray):
        return value.tolist()
    if isinstance(value, tuple):
        return [normalize_value(v) for v in value]
    return value


def split_operator(token: Any) -> tuple[str, str | None] | None:
    """
    Split an operator token into its name and optional return type.

    Returns None if ``token`` is not an operator.

    >>> split_operator("BIND:numeric")
    ('BIND', 'numeric')
    """
    if not isinstance(token, str):
        return None
    name, _, return_type = token.partition(":")
    if name not in OPERATORS and name != BIND_OPERATOR:
        return None
    if return_type and name != BIND_OPERATOR:
        raise InvalidPredicate(f"Operator {name} takes no return type, got {token!r}")
    return name, return_type or None


def _check_value(key: FieldKey, value: Any) -> Any:
    value = normalize_value(value)
    if value is None or isinstance(value, SCALAR_TYPES):
        return value
    if isinstance(value, (dict, list)):
        try:
            json.dumps(value)
        except TypeError as err:
            raise InvalidPredicate(f"Value for {key.name!r} is not JSON serializable: {err}")
        return value
    raise InvalidPredicate(f"Invalid value {value!r} for key {key.name!r}")


def _parse_mapping(items, operator: str) -> Node | None:
    operands = []
    for name, value in items:
        key = parse_key(name)
        if key.kind in (KeyKind.RELATIONS, KeyKind.ALL):
            raise InvalidKey(f"Key {key.name!r} cannot be compared in a filter")
        node_class = PathEquals if key.kind is KeyKind.PATH else Column
        operands.append(node_class(key, _check_value(key, value)))
    if not operands:
        return None
    return And(tuple(operands)) if operator == "AND" else Or(tuple(operands))


def _parse_bind(items: list, return_type: str | None) -> Bind:
    position = next((i for i, item in enumerate(items) if is_function_reference(item)), None)
    if position is None:
        raise InvalidPredicate("BIND filter has no predicate function")
    function = get_function(items[position])
    keys = []
    for name in items[:position]:
        key = parse_key(name)
        if key.kind is KeyKind.ALL:
            raise InvalidKey(f"Key {key.name!r} cannot be passed to a predicate function")
        keys.append(key)
    args = tuple(normalize_value(a) for a in items[position + 1 :])
    try:
        json.dumps(list(args))
    except TypeError as err:
        raise InvalidPredicate(f"Arguments of predicate function {function.name!r} are not JSON serializable: {err}")
    return_type = return_type or function.return_type
    parse_cast(return_type)
    return Bind(tuple(keys), function, args, return_type)


def parse_filter(spec: Any, default_operator: str = "AND") -> Node | None:
    """
    Parse a filter specification into tagged nodes.

    Parameters
    ----------
    spec : any
        Filter specification, see the module documentation.
    default_operator : str, optional
        Operator joining the entries of a mapping: ``"AND"`` (default) or ``"OR"``.
        Explicit operators in lists are not affected.

    Returns
    -------
    Node or None
        The parsed tree, or None when the filter imposes no condition.

    Raises
    ------
    InvalidPredicate
        If the filter has an unsupported shape or an operator without operands.
    InvalidKey
        If a key is malformed.
    """
    if default_operator not in OPERATORS:
        raise InvalidPredicate(f"Unknown boolean operator {default_operator!r}")

    if spec is None:
        return None

    # restrict by pandas.DataFrame: OR of its records
    if isinstance(spec, pandas.DataFrame):
        records = [parse_filter(r, "AND") for r in spec.to_records(index=False)]
        records = [r for r in records if r is not None]
        return Or(tuple(records)) if records else None

    if isinstance(spec, numpy.void):
        return _parse_mapping(((k, spec[k]) for k in spec.dtype.names), default_operator)

    if isinstance(spec, collections.abc.Mapping):
        return _parse_mapping(spec.items(), default_operator)

    if isinstance(spec, (list, tuple)):
        items = list(spec)
        if not items:
            return None
        operator, return_type = "AND", None
        token = split_operator(items[0])
        if token is not None:
            (operator, return_type), items = token, items[1:]
            if not items:
                raise InvalidPredicate(f"Operator {spec[0]!r} has no operands")
        if operator == BIND_OPERATOR:
            return _parse_bind(items, return_type)
        operands = [parse_filter(item, default_operator) for item in items]
        operands = tuple(o for o in operands if o is not None)
        if not operands:
            return None
        return And(operands) if operator == "AND" else Or(operands)

    spec = normalize_value(spec)
    if isinstance(spec, bool):
        return Raw("TRUE" if spec else "FALSE")
    if isinstance(spec, (str, int, float, decimal.Decimal)):
        return Raw(str(spec).strip())
    raise InvalidPredicate(f"Invalid filter {spec!r}")


def _value_kind(value: Any) -> CastKind:
    if isinstance(value, bool):
        return CastKind.BOOLEAN
    if isinstance(value, (int, float, decimal.Decimal)):
        return CastKind.NUMERIC
    return CastKind.TEXT


def _text_param(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, (bool, int, float)):
        return json.dumps(value)
    return str(value)


def _compile_column(node: Column, obj_type: EntityType) -> Predicate:
    expr = resolve_key(obj_type, node.key).text
    if node.value is None:
        return Predicate(f"{expr} IS NULL")
    if isinstance(node.value, (dict, list)):
        return Predicate(f"({expr})::jsonb = $::jsonb", [json.dumps(node.value)])
    return Predicate(f"{expr} = $", [node.value])


def _compile_path(node: PathEquals, obj_type: EntityType, type_schema: Any) -> Predicate:
    expr = resolve_key(obj_type, node.key).text
    value = node.value
    if value is None:
        return Predicate(f"{apply_cast(CastKind.TEXT, expr)} IS NULL")
    if isinstance(value, (dict, list)):
        return Predicate(f"({expr})::jsonb = $::jsonb", [json.dumps(value)])
    if declared_type(type_schema, node.key) is not None:
        kind = cast_for(obj_type, type_schema, node.key)
    else:
        kind = _value_kind(value)
    if kind is CastKind.TEXT:
        value = _text_param(value)
    elif kind is CastKind.NUMERIC and isinstance(value, bool):
        value = int(value)
    elif kind is CastKind.BOOLEAN and isinstance(value, (int, float, decimal.Decimal)):
        # strings are left for the server to read as boolean literals
        value = bool(value)
    return Predicate(f"{apply_cast(kind, expr)} = $", [value])


def compile_bind(node: Bind, obj_type: EntityType, documents=()) -> Predicate:
    """
    Compile a predicate function call.

    The resolved keys are packed into a JSON array; the function name and the
    arguments follow as JSON parameters.
    """
    resolved = [resolve_key(obj_type, k, epoch=True, documents=documents) for k in node.keys]
    values = Predicate.concat([r.map_text(lambda t: f"to_json({t})") for r in resolved], ", ")
    array = f"array_to_json(ARRAY[{values.text}])" if values else "'[]'::json"
    call = Predicate(
        f"{config['procedures.dispatch']}({array}, $::json, $::json)",
        [*values.params, json.dumps(node.function.name), json.dumps(list(node.args))],
    )
    kind = parse_cast(node.return_type)
    if kind is CastKind.TEXT:
        # the text cast rewrites JSON navigation, which belongs to the arguments here
        return call.map_text(lambda text: f"({text})::text")
    return call.map_text(lambda text: apply_cast(kind, text))


def compile_filter(node: Node | None, obj_type: EntityType, type_schema: Any = None, documents=()) -> Predicate:
    """
    Compile a parsed filter into a predicate.

    Parameters
    ----------
    node : Node or None
        Tree returned by :func:`parse_filter`.
    obj_type : EntityType
        Entity the filter applies to.
    type_schema : DocumentType or mapping, optional
        Declared schema used to cast data properties.
    documents : iterable of str, optional
        Relation expressions for ``$documents`` keys.

    Returns
    -------
    Predicate
        The condition; the empty predicate when there is none.
    """
    if node is None:
        return Predicate()
    if isinstance(node, Raw):
        return Predicate(node.text)
    if isinstance(node, Column):
        return _compile_column(node, obj_type)
    if isinstance(node, PathEquals):
        return _compile_path(node, obj_type, type_schema)
    if isinstance(node, Bind):
        return compile_bind(node, obj_type, documents)
    if isinstance(node, (And, Or)):
        return Predicate.join(
            [compile_filter(o, obj_type, type_schema, documents) for o in node.operands],
            "AND" if isinstance(node, And) else "OR",
        )
    raise InvalidPredicate(f"Invalid filter node {node!r}")


def make_condition(
    obj_type: EntityType,
    spec: Any,
    *,
    match: str = "all",
    type_schema: Any = None,
    documents=(),
) -> Predicate:
    """
    Translate a filter specification into a WHERE condition.

    Parameters
    ----------
    obj_type : EntityType
        Entity the filter applies to.
    spec : any
        Filter specification.
    match : str, optional
        ``"all"`` (default) joins mapping entries with ``AND``, ``"any"`` with ``OR``.
    type_schema : DocumentType or mapping, optional
        Declared schema used to cast data properties.
    documents : iterable of str, optional
        Relation expressions for ``$documents`` keys.

    Returns
    -------
    Predicate
        The condition, empty when the filter imposes none.
    """
    if match not in MATCH_OPERATORS:
        raise InvalidPredicate(f"match must be one of {sorted(MATCH_OPERATORS)}, got {match!r}")
    node = parse_filter(spec, MATCH_OPERATORS[match])
    return compile_filter(node, obj_type, type_schema, documents)
