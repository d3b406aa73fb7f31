"""
docstore: a schema-flexible document store on PostgreSQL JSON columns.

Documents, their type definitions, attachments, libs, methods and views live
in fixed tables with one JSON column each. docstore compiles nested filter
specifications into parameterized SQL, builds insert/update/delete statements
from object state and keeps expression indexes in sync with the queried fields.
"""

__author__ = "docstore contributors"
__all__ = [
    "__author__",
    "__version__",
    "config",
    "conn",
    "Connection",
    "Predicate",
    "FieldKey",
    "KeyKind",
    "parse_key",
    "resolve_key",
    "CastKind",
    "cast_for",
    "apply_cast",
    "parse_filter",
    "make_condition",
    "register_function",
    "get_function",
    "list_functions",
    "Traits",
    "CompiledQuery",
    "prepare_select",
    "prepare_count",
    "Statement",
    "prepare_insert",
    "prepare_update",
    "prepare_delete",
    "IndexAction",
    "index_name",
    "index_definitions",
    "declare_index",
    "declare_indexes",
    "drop_index",
    "Catalog",
    "TypeLookup",
    "EntityType",
    "DocumentType",
    "Document",
    "Type",
    "Attachment",
    "Lib",
    "Method",
    "View",
    "get_entity_type",
    "errors",
    "DocStoreError",
    "InvalidKey",
    "InvalidPredicate",
    "NoIdentifyingKey",
    "UnknownType",
    "IndexVerificationFailed",
    "logger",
    "cli",
]

from . import errors
from .casts import CastKind, apply_cast, cast_for
from .catalog import Catalog, TypeLookup
from .condition import make_condition, parse_filter
from .connection import Connection, conn
from .entities import Attachment, Document, DocumentType, EntityType, Lib, Method, Type, View, get_entity_type
from .errors import (
    DocStoreError,
    IndexVerificationFailed,
    InvalidKey,
    InvalidPredicate,
    NoIdentifyingKey,
    UnknownType,
)
from .functions import get_function, list_functions, register_function
from .indexes import IndexAction, declare_index, declare_indexes, drop_index, index_definitions, index_name
from .keys import FieldKey, KeyKind, parse_key, resolve_key
from .logging import logger
from .predicate import Predicate
from .query import CompiledQuery, Traits, prepare_count, prepare_select
from .settings import config
from .statements import Statement, prepare_delete, prepare_insert, prepare_update
from .version import __version__


# cli is loaded on demand by the console entry point
_lazy_modules = {
    "cli": (".cli", "cli"),
}


def __getattr__(name: str):
    """Lazy import for the console interface."""
    if name in _lazy_modules:
        module_path, attr_name = _lazy_modules[name]
        import importlib

        module = importlib.import_module(module_path, __package__)
        attr = getattr(module, attr_name)
        # override the submodule that importlib adds to the package namespace
        globals()[name] = attr
        return attr
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
