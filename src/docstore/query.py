"""
SELECT and COUNT statements over entity tables.

A search is described by an entity, an optional document type, a filter (see
:mod:`docstore.condition`) and a mapping of traits::

    prepare_select(Document, "Person", {"age": 30}, {"order": [["name", "DESC"]], "limit": 10})

Traits:

- ``fields``: logical keys to return, default ``["$*"]``
- ``order``: ORDER BY items, default ``[config.default_order]``; ``[]`` disables ordering.
  An item is ``"key"``, ``"key:cast"``, ``["key[:cast]", "DESC"]`` or ``["BIND[:type]", key..., function, arg...]``
- ``group``: GROUP BY keys
- ``limit``: row limit, an integer or ``"ALL"``
- ``offset``: rows to skip
- ``match``: ``"all"`` or ``"any"``, the operator joining the entries of filter mappings
- ``count``: return the number of matching rows instead
- ``typeAwareness``: resolve the document type to cast data fields and fetch its related documents
- ``documents``: relation expressions fetched into the ``$documents`` field
"""

from __future__ import annotations

import collections
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Sequence

from .casts import cast_key
from .condition import MATCH_OPERATORS, compile_bind, make_condition, parse_filter, split_operator
from .entities import DocumentType, EntityType
from .errors import InvalidPredicate, UnknownType
from .keys import ALL_KEY, RELATIONS_KEY, KeyKind, parse_key, resolve_key
from .predicate import Predicate
from .settings import config

logger = logging.getLogger(__name__.split(".")[0])

DIRECTIONS = (
    "ASC",
    "DESC",
    "NULLS FIRST",
    "NULLS LAST",
    "ASC NULLS FIRST",
    "ASC NULLS LAST",
    "DESC NULLS FIRST",
    "DESC NULLS LAST",
)

TRAIT_ALIASES = {"typeAwareness": "type_awareness"}

TypeLookupFunction = Callable[[str], Sequence[DocumentType]]


def _as_list(value: Any) -> list:
    if value is None:
        return []
    if isinstance(value, (str, bytes)) or not isinstance(value, collections.abc.Sequence):
        return [value]
    return list(value)


def _parse_count(name: str, value: Any, allow_all: bool = False) -> int | str:
    if allow_all and isinstance(value, str) and value.strip().upper() == "ALL":
        return "ALL"
    if isinstance(value, bool):
        raise InvalidPredicate(f"Invalid {name} {value!r}")
    try:
        value = int(value)
    except (TypeError, ValueError):
        raise InvalidPredicate(f"Invalid {name} {value!r}")
    if value < 0:
        raise InvalidPredicate(f"{name} must not be negative, got {value}")
    return value


@dataclass
class Traits:
    """
    Normalized search traits.

    Use :meth:`from_mapping` to build one from caller supplied traits.
    """

    fields: list = field(default_factory=lambda: [ALL_KEY])
    order: list = field(default_factory=lambda: [config["default_order"]])
    group: list = field(default_factory=list)
    limit: int | str | None = None
    offset: int | None = None
    match: str = "all"
    count: bool = False
    type_awareness: bool = False
    documents: list = field(default_factory=list)

    @classmethod
    def from_mapping(cls, traits: Mapping[str, Any] | None = None) -> "Traits":
        """
        Normalize traits.

        Raises
        ------
        InvalidPredicate
            For unknown traits or invalid values.
        """
        traits = {TRAIT_ALIASES.get(k, k): v for k, v in dict(traits or {}).items()}
        unknown = set(traits) - set(cls.__dataclass_fields__)
        if unknown:
            raise InvalidPredicate(f"Unknown search traits {sorted(unknown)}")

        fields = _as_list(traits.get("fields")) or [ALL_KEY]
        order = traits.get("order")
        order = [config["default_order"]] if order is None else _as_list(order)
        match = traits.get("match", "all")
        if match not in MATCH_OPERATORS:
            raise InvalidPredicate(f"match must be one of {sorted(MATCH_OPERATORS)}, got {match!r}")

        result = cls(
            fields=fields,
            order=order,
            group=_as_list(traits.get("group")),
            limit=None if traits.get("limit") is None else _parse_count("limit", traits["limit"], allow_all=True),
            offset=None if traits.get("offset") is None else _parse_count("offset", traits["offset"]),
            match=match,
            count=traits.get("count") is True,
            type_awareness=(
                traits["type_awareness"] is True if "type_awareness" in traits else config["type_awareness"] is True
            ),
            documents=_as_list(traits.get("documents")),
        )
        if result.count:
            result.fields = ["count"]
            result.order = []
        if result.limit is not None and not result.order and not result.count:
            logger.warning("Limit without ordering will yield unpredictable results")
        return result


@dataclass(frozen=True)
class CompiledQuery:
    """
    A complete statement ready for execution.

    ``field_map`` maps every named result column to the logical key it was
    selected as.
    """

    text: str
    params: tuple
    field_map: Mapping[str, str] = field(default_factory=dict)

    def __iter__(self):
        # allows ``text, params = compiled`` like a plain statement
        return iter((self.text, list(self.params)))


@dataclass
class Query:
    """An assembled SELECT or COUNT, compiled once with :meth:`compile`."""

    method: str
    table: str
    where: Predicate = field(default_factory=Predicate)
    fields: list = field(default_factory=list)
    order: list = field(default_factory=list)
    group: list = field(default_factory=list)
    limit: int | str | None = None
    offset: int | None = None
    field_map: dict = field(default_factory=dict)

    def compile(self) -> CompiledQuery:
        if self.method == "count":
            fields = Predicate("COUNT(*) AS count")
        elif self.method == "select":
            fields = Predicate.concat(self.fields, ", ")
        else:
            raise InvalidPredicate(f"Unknown query method {self.method!r}")
        parts = ["SELECT", fields, "FROM", self.table]
        if self.where:
            parts += ["WHERE", self.where]
        if self.group:
            parts += ["GROUP BY", Predicate.concat(self.group, ", ")]
        if self.order:
            parts += ["ORDER BY", Predicate.concat(self.order, ", ")]
        if self.limit is not None:
            parts.append(f"LIMIT {self.limit}")
        if self.offset:
            parts.append(f"OFFSET {self.offset}")
        statement = Predicate.concat(parts)
        logger.debug(f"Compiled {self.method}: {statement.text} {list(statement.params)}")
        return CompiledQuery(statement.text, statement.params, dict(self.field_map))


def _type_names(document_type: Any) -> list:
    names = []
    for item in _as_list(document_type):
        if isinstance(item, DocumentType):
            names.append(item.name)
        elif isinstance(item, str) and item:
            names.append(item)
        else:
            raise InvalidPredicate(f"Invalid document type {item!r}")
    return names


def type_condition(obj_type: EntityType, document_type: Any) -> Predicate:
    """Discriminator condition ``type = $1`` (OR-joined for several types)."""
    names = _type_names(document_type)
    if not names:
        return Predicate()
    if obj_type.discriminator is None:
        raise InvalidPredicate(f"{obj_type.name} has no document type column")
    return Predicate.join([Predicate(f"{obj_type.discriminator} = $", [n]) for n in names], "OR")


def _split_cast(name: Any) -> tuple[str, str | None]:
    if not isinstance(name, str):
        raise InvalidPredicate(f"Invalid order key {name!r}")
    key, _, cast = name.partition(":")
    return key, cast or None


def _needs_schema(items: list) -> bool:
    # ordering or grouping by a data property without an explicit cast
    for item in items:
        first = item[0] if isinstance(item, (list, tuple)) and item else item
        if not isinstance(first, str):
            continue
        key, cast = _split_cast(first)
        if key == "BIND" or cast is not None:
            continue
        if parse_key(key).kind is KeyKind.PATH:
            return True
    return False


def resolve_type(document_type: Any, type_lookup: TypeLookupFunction | None) -> DocumentType | None:
    """
    Find the declared type of a search.

    A :class:`DocumentType` is used as is. A single type name is looked up
    with ``type_lookup``, which must find exactly one type.

    Raises
    ------
    UnknownType
        If the lookup does not find exactly one type.
    """
    items = _as_list(document_type)
    if len(items) != 1:
        return None
    item = items[0]
    if isinstance(item, DocumentType):
        return item
    if type_lookup is None:
        logger.debug(f"No type lookup available for {item!r}, data fields are cast as text")
        return None
    found = list(type_lookup(item))
    if len(found) != 1:
        raise UnknownType(f"Expected exactly one type named {item!r}, found {len(found)}")
    return found[0]


def _order_item(obj_type: EntityType, type_schema: Any, item: Any, documents) -> Predicate:
    if isinstance(item, (list, tuple)):
        if not item:
            raise InvalidPredicate("Empty order item")
        first, rest = item[0], list(item[1:])
    else:
        first, rest = item, []

    token = split_operator(first) if isinstance(first, str) else None
    if token is not None and token[0] == "BIND":
        node = parse_filter([f"BIND:{token[1] or 'text'}", *rest])
        return compile_bind(node, obj_type, documents)
    if token is not None:
        raise InvalidPredicate(f"Operator {first!r} cannot be used for ordering")

    key, cast = _split_cast(first)
    key = parse_key(key)
    if key.kind in (KeyKind.ALL, KeyKind.RELATIONS):
        raise InvalidPredicate(f"Cannot order by {key.name!r}")
    resolved = resolve_key(obj_type, key, epoch=True, documents=documents)
    expression = resolved.map_text(lambda text: cast_key(obj_type, type_schema, key, text, cast))
    if not rest:
        return expression
    direction = " ".join(str(r) for r in rest).upper()
    if direction not in DIRECTIONS:
        raise InvalidPredicate(f"Invalid order direction {direction!r}")
    return Predicate.concat([expression, direction])


def _group_item(obj_type: EntityType, type_schema: Any, item: Any) -> Predicate:
    key, cast = _split_cast(item)
    key = parse_key(key)
    if key.kind in (KeyKind.ALL, KeyKind.RELATIONS):
        raise InvalidPredicate(f"Cannot group by {key.name!r}")
    resolved = resolve_key(obj_type, key, epoch=True)
    return resolved.map_text(lambda text: cast_key(obj_type, type_schema, key, text, cast))


def _field_item(
    obj_type: EntityType, name: Any, documents, field_map: dict, grouped: Mapping | None = None
) -> Predicate:
    key = parse_key(name)
    resolved = resolve_key(obj_type, key, documents=documents)
    if key.kind is KeyKind.PATH and grouped and key.name in grouped:
        # a grouped data field is selected as the expression it is grouped by
        resolved = grouped[key.name]
    if key.kind is KeyKind.ALL:
        field_map.update({column: f"${column}" for column in obj_type.columns})
        return resolved
    if key.kind is KeyKind.PATH:
        alias = f"{obj_type.data_container}.{key.name}"
        field_map[alias] = key.name
        return resolved.map_text(lambda text: f'{text} AS "{alias}"')
    field_map[key.column] = key.name
    if key.kind is KeyKind.RELATIONS:
        return resolved.map_text(lambda text: f"{text} AS {key.column}")
    return resolved


def build_query(
    obj_type: EntityType,
    document_type: Any = None,
    where: Any = None,
    traits: Traits | Mapping[str, Any] | None = None,
    *,
    type_lookup: TypeLookupFunction | None = None,
) -> Query:
    """
    Assemble a :class:`Query` without compiling it.

    Parameters
    ----------
    obj_type : EntityType
        Entity to search.
    document_type : str or DocumentType or list, optional
        Restrict to documents of these types.
    where : any, optional
        Filter specification.
    traits : Traits or mapping, optional
        Search traits.
    type_lookup : callable, optional
        ``type_lookup(name) -> [DocumentType]``, consulted only when the type
        schema is required.

    Returns
    -------
    Query
        The assembled query.
    """
    if not isinstance(traits, Traits):
        traits = Traits.from_mapping(traits)
    discriminator = type_condition(obj_type, document_type)

    type_schema = None
    if traits.type_awareness or _needs_schema(traits.order + traits.group):
        type_schema = resolve_type(document_type, type_lookup)
    elif isinstance(document_type, DocumentType):
        type_schema = document_type

    documents = list(traits.documents)
    if not documents and traits.type_awareness and type_schema is not None:
        documents = type_schema.documents

    fields = list(traits.fields)
    if documents and RELATIONS_KEY not in fields and not traits.count:
        fields.append(RELATIONS_KEY)

    condition = make_condition(obj_type, where, match=traits.match, type_schema=type_schema, documents=documents)
    query = Query(
        method="count" if traits.count else "select",
        table=obj_type.table,
        where=Predicate.join([discriminator, condition], "AND"),
        limit=None if traits.count else traits.limit,
        offset=None if traits.count else traits.offset,
    )
    query.group = [_group_item(obj_type, type_schema, g) for g in traits.group]
    if traits.count:
        query.field_map = {"count": "count"}
    else:
        grouped = {parse_key(_split_cast(g)[0]).name: item for g, item in zip(traits.group, query.group)}
        query.fields = [_field_item(obj_type, f, documents, query.field_map, grouped) for f in fields]
        query.order = [_order_item(obj_type, type_schema, o, documents) for o in traits.order]
    return query


def prepare_select(
    obj_type: EntityType,
    document_type: Any = None,
    where: Any = None,
    traits: Traits | Mapping[str, Any] | None = None,
    *,
    type_lookup: TypeLookupFunction | None = None,
) -> CompiledQuery:
    """
    Compile a SELECT.

    >>> q = prepare_select(Document, "Person", {"$id": 7}, {"order": []})
    >>> q.text
    'SELECT * FROM documents WHERE (type = $1) AND (id = $2)'
    """
    return build_query(obj_type, document_type, where, traits, type_lookup=type_lookup).compile()


def prepare_count(
    obj_type: EntityType,
    document_type: Any = None,
    where: Any = None,
    traits: Traits | Mapping[str, Any] | None = None,
    *,
    type_lookup: TypeLookupFunction | None = None,
) -> CompiledQuery:
    """Compile a COUNT of the rows a SELECT with the same arguments would return."""
    traits = dict(traits.__dict__) if isinstance(traits, Traits) else dict(traits or {})
    traits["count"] = True
    return build_query(obj_type, document_type, where, traits, type_lookup=type_lookup).compile()
