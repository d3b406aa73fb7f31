"""
Command-line interface for docstore.

Usage:
    docstore [-u USER] [-p PASSWORD] [-h HOST] compile ENTITY [-t TYPE ...] [-w WHERE] [--traits TRAITS] [--count]
    docstore [-u USER] [-p PASSWORD] [-h HOST] index [-e ENTITY] [-t TYPE] [--typefield COLUMN] [--unique] FIELD ...

Example:
    docstore compile Document -t Person -w '{"age": 30}' --traits '{"limit": 10}'
    docstore -u admin -h db.local index -t Person --typefield type age name
"""

from __future__ import annotations

import argparse
import json
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence

import docstore as ds


def _json_argument(text: str):
    try:
        return json.loads(text)
    except json.JSONDecodeError as err:
        raise argparse.ArgumentTypeError(f"invalid JSON: {err}")


def _compile(kwargs: dict) -> None:
    obj_type = ds.get_entity_type(kwargs["entity"])
    document_type = kwargs["type"] or None
    if kwargs["type_schema"] is not None:
        if not document_type or len(document_type) != 1:
            raise ds.DocStoreError("--type-schema requires exactly one --type")
        document_type = ds.DocumentType(document_type[0], schema=kwargs["type_schema"])
    prepare = ds.prepare_count if kwargs["count"] else ds.prepare_select
    compiled = prepare(obj_type, document_type, kwargs["where"], kwargs["traits"])
    print(
        json.dumps(
            {"text": compiled.text, "params": list(compiled.params), "field_map": dict(compiled.field_map)},
            indent=2,
            default=str,
        )
    )


def _index(kwargs: dict) -> None:
    obj_type = ds.get_entity_type(kwargs["entity"])
    connection = ds.conn()
    type_schema = None
    if kwargs["type"]:
        found = ds.TypeLookup(connection)(kwargs["type"])
        if len(found) != 1:
            raise ds.UnknownType(f"Expected exactly one type named {kwargs['type']!r}, found {len(found)}")
        type_schema = found[0]
    with connection.transaction:
        actions = ds.declare_indexes(
            connection,
            obj_type,
            type_schema,
            kwargs["fields"],
            typefield=kwargs["typefield"],
            unique=kwargs["unique"],
            display_progress=kwargs["progress"],
        )
    for field, action in actions.items():
        print(f"{field}: {action.value}")


def cli(args: Sequence[str] | None = None) -> None:
    """
    Console interface for docstore.

    Args:
        args: List of command-line arguments. If None, reads from sys.argv.

    Raises:
        SystemExit: Always raised when the command completes.
    """
    parser = argparse.ArgumentParser(
        prog="docstore",
        description="docstore console interface.",
        conflict_handler="resolve",
    )
    parser.add_argument("-V", "--version", action="version", version=f"{ds.__name__} {ds.__version__}")
    parser.add_argument(
        "-u",
        "--user",
        type=str,
        default=ds.config["database.user"],
        required=False,
        help="docstore username",
    )
    parser.add_argument(
        "-p",
        "--password",
        type=str,
        default=ds.config["database.password"],
        required=False,
        help="docstore password",
    )
    parser.add_argument(
        "-h",
        "--host",
        type=str,
        default=ds.config["database.host"],
        required=False,
        help="docstore host",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    compile_parser = commands.add_parser("compile", help="Print a compiled search statement as JSON")
    compile_parser.add_argument("entity", type=str, help="Entity name or table, e.g. Document")
    compile_parser.add_argument("-t", "--type", nargs="+", type=str, help="Document type names")
    compile_parser.add_argument("-w", "--where", type=_json_argument, default=None, help="Filter as JSON")
    compile_parser.add_argument("--traits", type=_json_argument, default=None, help="Search traits as JSON")
    compile_parser.add_argument(
        "--type-schema", dest="type_schema", type=_json_argument, default=None, help="JSON schema of the type"
    )
    compile_parser.add_argument("--count", action="store_true", help="Compile a COUNT instead of a SELECT")

    index_parser = commands.add_parser("index", help="Declare indexes inside a transaction")
    index_parser.add_argument("fields", nargs="+", type=str, help="Logical keys to index")
    index_parser.add_argument("-e", "--entity", type=str, default="Document", help="Entity name or table")
    index_parser.add_argument("-t", "--type", type=str, default=None, help="Document type whose schema decides casts")
    index_parser.add_argument("--typefield", type=str, default=None, help="Column placed before the field")
    index_parser.add_argument("--unique", action="store_true", help="Create unique indexes")
    index_parser.add_argument("--progress", action="store_true", help="Display a progress bar")

    kwargs = vars(parser.parse_args(args))
    if kwargs["user"]:
        ds.config["database.user"] = kwargs["user"]
    if kwargs["password"]:
        ds.config["database.password"] = kwargs["password"]
    if kwargs["host"]:
        ds.config["database.host"] = kwargs["host"]

    if kwargs["command"] == "compile":
        _compile(kwargs)
    else:
        _index(kwargs)

    raise SystemExit


if __name__ == "__main__":
    cli()
