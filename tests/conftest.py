"""
Pytest configuration for docstore tests.

No database server is needed: ``FakeConnection`` records every statement and
emulates the parts of ``pg_indexes`` and the ``types`` table the library reads.
"""

import json
import re
from contextlib import contextmanager

import pytest

import docstore as ds
from docstore.functions import register_function, unregister_function

CREATE_PATTERN = re.compile(r"^CREATE (UNIQUE )?INDEX (?P<name>\w+) ON (?P<table>[\w.]+) ")


class FakeConnection:
    """
    Stand-in for ``docstore.Connection``.

    Parameters
    ----------
    qualify : bool
        Report index definitions with a schema-qualified table, like newer servers do.
    mangle : bool
        Report index definitions that differ from the issued DDL.
    types : list of dict
        Rows of the ``types`` table.
    """

    def __init__(self, qualify=False, mangle=False, types=()):
        self.qualify = qualify
        self.mangle = mangle
        self.types = list(types)
        self.indexes = {}
        self.statements = []

    def execute(self, text, params=()):
        params = list(params)
        self.statements.append((text, params))
        if text.startswith("SELECT 1 FROM pg_indexes"):
            return [{"?column?": 1}] if params[1] in self.indexes else []
        if text.startswith("SELECT indexdef FROM pg_indexes"):
            return [{"indexdef": self.indexes[params[1]]}] if params[1] in self.indexes else []
        if text.startswith("SELECT indexname, indexdef FROM pg_indexes"):
            return [{"indexname": k, "indexdef": v} for k, v in self.indexes.items()]
        if text.startswith("CREATE"):
            match = CREATE_PATTERN.match(text)
            definition = text
            if self.qualify:
                table = match.group("table")
                definition = definition.replace(f" ON {table} ", f" ON {ds.config['database.schema_name']}.{table} ", 1)
            if self.mangle:
                definition = definition.replace("USING btree", "USING hash")
            self.indexes[match.group("name")] = definition
            return []
        if text.startswith("DROP INDEX"):
            self.indexes.pop(text.split()[-1], None)
            return []
        if text.startswith("SELECT * FROM types"):
            return [dict(row) for row in self.types if row["name"] == params[0]]
        return []

    @property
    def ddl(self):
        return [text for text, _ in self.statements if text.startswith(("CREATE", "DROP"))]

    @property
    @contextmanager
    def transaction(self):
        self.statements.append(("BEGIN", []))
        try:
            yield self
        except BaseException:
            self.statements.append(("ROLLBACK", []))
            raise
        else:
            self.statements.append(("COMMIT", []))


PERSON_SCHEMA = {
    "type": "object",
    "properties": {
        "name": {"type": "string"},
        "age": {"type": "number"},
        "active": {"type": "boolean"},
        "nickname": {"type": ["string", "null"]},
        "address": {
            "type": "object",
            "properties": {
                "city": {"type": "string"},
                "zip": {"type": "integer"},
            },
        },
    },
}


@pytest.fixture
def person():
    """A declared document type with number, boolean and nested properties."""
    return ds.DocumentType(
        "Person",
        id=1,
        schema=PERSON_SCHEMA,
        meta={"documents": ["User#owner|name"]},
    )


@pytest.fixture
def person_row():
    """The ``types`` row of the Person type as the driver returns it."""
    return {
        "id": 1,
        "name": "Person",
        "schema": json.dumps(PERSON_SCHEMA),
        "meta": {"documents": ["User#owner|name"]},
    }


@pytest.fixture
def connection():
    return FakeConnection()


@pytest.fixture
def fake_connection():
    """Factory for connections with a differently behaving catalog."""
    return FakeConnection


@pytest.fixture
def older_than():
    """A registered predicate function, unregistered after the test."""

    @register_function("older_than")
    def older_than(values, years):
        return values[0] > years

    yield older_than
    unregister_function("older_than")
