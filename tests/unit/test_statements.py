"""
Unit tests for INSERT, UPDATE and DELETE statements.
"""

import json

import numpy as np
import pytest

from docstore.entities import Document, Type
from docstore.errors import InvalidKey, NoIdentifyingKey
from docstore.statements import changed_columns, identify, prepare_delete, prepare_insert, prepare_update, to_row

ANN = {"$id": 1, "$type": "Person", "name": "Ann", "age": 30}


class TestToRow:
    """Test conversion of logical objects into rows."""

    def test_columns_and_data(self):
        assert to_row(Document, ANN) == {"id": 1, "type": "Person", "content": {"name": "Ann", "age": 30}}

    def test_data_merged_over_container(self):
        """Test that plain keys override an explicit data container."""
        row = to_row(Document, {"$content": {"name": "Bob", "tags": ["a"]}, "name": "Ann"})
        assert row == {"content": {"name": "Ann", "tags": ["a"]}}

    def test_numpy_values(self):
        row = to_row(Document, {"score": np.float64(1.5)})
        assert type(row["content"]["score"]) is float

    @pytest.mark.parametrize("key", ["$name", "$documents", ""])
    def test_invalid_keys(self, key):
        with pytest.raises(InvalidKey):
            to_row(Document, {key: 1})


class TestIdentify:
    """Test the columns identifying an object."""

    def test_id(self):
        assert identify(Document, ANN) == ("id", 1)

    def test_name(self):
        assert identify(Type, {"$name": "Person"}) == ("name", "Person")

    def test_id_preferred(self):
        assert identify(Type, {"$name": "Person", "$id": 4}) == ("id", 4)

    def test_name_needs_column(self):
        """Test that documents cannot be identified by name."""
        with pytest.raises(NoIdentifyingKey) as info:
            identify(Document, {"$name": "Ann"})
        assert "Fetch the object first or pass its $id" in info.value.args


class TestInsert:
    """Test INSERT statements."""

    def test_insert(self):
        statement = prepare_insert(Document, {"$type": "Person", "name": "Ann", "age": 30})
        assert statement.text == "INSERT INTO documents (type, content) VALUES ($1, $2) RETURNING *"
        assert statement.params[0] == "Person"
        assert json.loads(statement.params[1]) == {"name": "Ann", "age": 30}

    def test_insert_defaults(self):
        assert prepare_insert(Type, {}).text == "INSERT INTO types DEFAULT VALUES RETURNING *"

    def test_unpacking(self):
        text, params = prepare_insert(Type, {"$name": "Person", "$schema": {"type": "object"}})
        assert text == "INSERT INTO types (name, schema) VALUES ($1, $2) RETURNING *"
        assert params == ["Person", '{"type": "object"}']


class TestUpdate:
    """Test UPDATE statements."""

    def test_changed_data(self):
        statement = prepare_update(Document, ANN, {"age": 31})
        assert statement.text == "UPDATE documents SET content = $1 WHERE id = $2 RETURNING *"
        assert json.loads(statement.params[0]) == {"name": "Ann", "age": 31}
        assert statement.params[1] == 1

    def test_changed_columns(self):
        statement = prepare_update(Type, {"$name": "Person", "$validator": None}, {"$validator": "check", "note": "x"})
        assert statement.text == "UPDATE types SET validator = $1, meta = $2 WHERE name = $3 RETURNING *"
        assert statement.params == ("check", '{"note": "x"}', "Person")

    def test_nothing_changed(self):
        assert prepare_update(Document, ANN, {"age": 30}) is None
        assert prepare_update(Document, ANN, {}) is None

    def test_structural_comparison(self):
        """Test that reordered mapping keys do not count as a change."""
        original = {"$id": 1, "address": {"city": "Oslo", "zip": 150}}
        assert changed_columns(Document, original, {"address": {"zip": 150, "city": "Oslo"}}) == {}

    def test_id_is_never_set(self):
        assert changed_columns(Document, ANN, {"$id": 2}) == {}

    def test_unidentified(self):
        with pytest.raises(NoIdentifyingKey):
            prepare_update(Document, {"name": "Ann"}, {"age": 31})

    def test_identified_by_patch(self):
        """Test that the patch can carry the identifying key."""
        statement = prepare_update(Document, {"name": "Ann"}, {"$id": 3, "name": "Bob"})
        assert statement.text == "UPDATE documents SET content = $1 WHERE id = $2 RETURNING *"
        assert statement.params[1] == 3


class TestDelete:
    """Test DELETE statements."""

    def test_delete_by_id(self):
        statement = prepare_delete(Document, ANN)
        assert statement.text == "DELETE FROM documents WHERE id = $1"
        assert statement.params == (1,)

    def test_delete_by_name(self):
        assert tuple(prepare_delete(Type, {"$name": "Person"})) == ("DELETE FROM types WHERE name = $1", ["Person"])

    def test_delete_unidentified(self):
        with pytest.raises(NoIdentifyingKey):
            prepare_delete(Document, {"name": "Ann"})
