"""
Synchronization of expression indexes with the fields that are queried.

An index over a field is derived from the same key resolution and cast the
query compiler uses, so the planner can use it for the generated conditions.
Its name is canonical and its definition is compared against the catalog:

- absent: the index is created and the catalog definition is verified
- present and matching: nothing is done
- present with another definition (e.g. the declared field type changed): it
  is dropped, recreated and verified

PostgreSQL reports definitions with the table either schema-qualified or not,
depending on the server version and search path, so a definition is accepted
in exactly those two forms.
"""

from __future__ import annotations

import enum
import logging
import re
from dataclasses import dataclass
from typing import Any, Iterable

from tqdm import tqdm

from .casts import apply_cast, cast_for, wrap_index_expression
from .catalog import Catalog
from .entities import EntityType
from .errors import IndexVerificationFailed, InvalidKey
from .keys import KeyKind, parse_key, resolve_key

logger = logging.getLogger(__name__.split(".")[0])

SLUG_PATTERN = re.compile(r"[^a-z0-9]+")


class IndexAction(str, enum.Enum):
    UNCHANGED = "unchanged"
    CREATED = "created"
    REBUILT = "rebuilt"


def slug(text: str) -> str:
    """Lowercase ``text`` and replace every run of other characters with ``_``."""
    return SLUG_PATTERN.sub("_", text.lower())


@dataclass(frozen=True)
class IndexSpec:
    """
    An index over one field of an entity.

    Parameters
    ----------
    obj_type : EntityType
        Indexed entity.
    field : str
        Logical key of the indexed field.
    type_schema : DocumentType or mapping, optional
        Declared schema deciding the cast of data fields.
    typefield : str, optional
        Column placed before the field, e.g. the discriminator column ``type``.
    unique : bool
        Create a unique index.
    """

    obj_type: EntityType
    field: str
    type_schema: Any = None
    typefield: str | None = None
    unique: bool = False

    def __post_init__(self) -> None:
        if self.typefield is not None and not self.obj_type.has_column(self.typefield):
            raise InvalidKey(f"{self.obj_type.name} has no column {self.typefield!r}")

    def _resolved(self):
        key = parse_key(self.field)
        if key.kind is KeyKind.ALL:
            raise InvalidKey(f"Cannot index {key.name!r}")
        resolved = resolve_key(self.obj_type, key)
        if resolved.params:
            raise InvalidKey(f"Cannot index {key.name!r}: its expression takes parameters")
        return key, resolved

    @property
    def name(self) -> str:
        _, resolved = self._resolved()
        container = resolved.get_meta("data_container")
        field_name = f"{container}.{resolved.get_meta('key')}" if container else resolved.get_meta("key")
        parts = [slug(self.obj_type.table)]
        if self.typefield is not None:
            parts.append(slug(self.typefield))
        parts.append(slug(field_name))
        return "_".join(parts) + "_index"

    @property
    def expression(self) -> str:
        """Indexed expression, parenthesized the way the catalog reports it."""
        key, resolved = self._resolved()
        expression = wrap_index_expression(apply_cast(cast_for(self.obj_type, self.type_schema, key), resolved.text))
        if self.typefield is not None:
            return f"{self.typefield}, {expression}"
        return expression

    def definition(self, schema_name: str | None = None) -> str:
        """``CREATE INDEX`` statement, with the table qualified by ``schema_name`` if given."""
        table = f"{schema_name}.{self.obj_type.table}" if schema_name else self.obj_type.table
        return "CREATE {unique}INDEX {name} ON {table} USING btree ({expression})".format(
            unique="UNIQUE " if self.unique else "",
            name=self.name,
            table=table,
            expression=self.expression,
        )

    def definitions(self, schema_name: str) -> tuple:
        """The two accepted forms: unqualified and schema-qualified table."""
        return self.definition(), self.definition(schema_name)


def index_name(obj_type: EntityType, field: str, typefield: str | None = None) -> str:
    """Canonical name of the index over ``field``."""
    return IndexSpec(obj_type, field, typefield=typefield).name


def index_definitions(
    obj_type: EntityType,
    type_schema: Any,
    field: str,
    *,
    typefield: str | None = None,
    unique: bool = False,
    schema_name: str = "public",
) -> tuple:
    """Return both canonical definitions of an index."""
    return IndexSpec(obj_type, field, type_schema, typefield, unique).definitions(schema_name)


def _create(connection, catalog: Catalog, spec: IndexSpec) -> None:
    connection.execute(spec.definition(), [])
    actual = catalog.index_definition(spec.name)
    if actual not in spec.definitions(catalog.schema_name):
        raise IndexVerificationFailed(
            f"Index {spec.name} was created but the catalog reports {actual!r}, expected {spec.definition()!r}"
        )


def declare_index(
    connection,
    obj_type: EntityType,
    type_schema: Any,
    field: str,
    *,
    typefield: str | None = None,
    unique: bool = False,
    catalog: Catalog | None = None,
) -> IndexAction:
    """
    Make sure the canonical index over ``field`` exists.

    Parameters
    ----------
    connection : Connection
        Executor for the DDL, normally inside a transaction.
    obj_type : EntityType
        Indexed entity.
    type_schema : DocumentType or mapping or None
        Declared schema deciding the cast of data fields.
    field : str
        Logical key of the field.
    typefield : str, optional
        Column placed before the field.
    unique : bool, optional
        Create a unique index.
    catalog : Catalog, optional
        Catalog to compare against. Defaults to ``Catalog(connection)``.

    Returns
    -------
    IndexAction
        What was done.

    Raises
    ------
    InvalidKey
        If the field cannot be indexed.
    IndexVerificationFailed
        If the created index does not match its canonical definition.
    """
    catalog = catalog or Catalog(connection)
    spec = IndexSpec(obj_type, field, type_schema, typefield, unique)

    if not catalog.index_exists(spec.name):
        _create(connection, catalog, spec)
        logger.info(f"Created index {spec.name}")
        return IndexAction.CREATED

    if catalog.index_definition(spec.name) in spec.definitions(catalog.schema_name):
        return IndexAction.UNCHANGED

    logger.info(f"Index {spec.name} differs from its declaration, rebuilding")
    connection.execute(f"DROP INDEX IF EXISTS {spec.name}", [])
    _create(connection, catalog, spec)
    return IndexAction.REBUILT


def declare_indexes(
    connection,
    obj_type: EntityType,
    type_schema: Any,
    fields: Iterable[str],
    *,
    typefield: str | None = None,
    unique: bool = False,
    catalog: Catalog | None = None,
    display_progress: bool = False,
) -> dict:
    """
    Declare indexes for several fields, one after the other.

    Returns a mapping of field to :class:`IndexAction`. The first failure
    propagates; the enclosing transaction is expected to roll back.
    """
    catalog = catalog or Catalog(connection)
    fields = list(fields)
    actions = {}
    for field in tqdm(fields, desc=obj_type.name) if display_progress else fields:
        actions[field] = declare_index(
            connection, obj_type, type_schema, field, typefield=typefield, unique=unique, catalog=catalog
        )
    return actions


def drop_index(
    connection,
    obj_type: EntityType,
    field: str,
    *,
    typefield: str | None = None,
    catalog: Catalog | None = None,
) -> bool:
    """Drop the canonical index over ``field``. Returns False if it did not exist."""
    catalog = catalog or Catalog(connection)
    name = index_name(obj_type, field, typefield)
    if not catalog.index_exists(name):
        return False
    connection.execute(f"DROP INDEX {name}", [])
    logger.info(f"Dropped index {name}")
    return True
