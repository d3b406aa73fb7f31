"""
Unit tests for catalog introspection and type lookup.
"""

from docstore.catalog import Catalog, TypeLookup
from docstore.entities import Document, DocumentType
from docstore.indexes import declare_index


class TestCatalog:
    """Test index introspection."""

    def test_missing_index(self, connection):
        catalog = Catalog(connection)
        assert not catalog.index_exists("documents_id_index")
        assert catalog.index_definition("documents_id_index") is None

    def test_existing_index(self, connection):
        declare_index(connection, Document, None, "$id")
        catalog = Catalog(connection)
        assert catalog.index_exists("documents_id_index")
        assert catalog.index_definition("documents_id_index") == (
            "CREATE INDEX documents_id_index ON documents USING btree (id)"
        )
        assert list(catalog.list_indexes("documents")) == ["documents_id_index"]

    def test_schema_name(self, connection):
        assert Catalog(connection).schema_name == "public"
        assert Catalog(connection, "app").schema_name == "app"


class TestTypeLookup:
    """Test lookup of declared document types."""

    def test_found(self, fake_connection, person_row):
        lookup = TypeLookup(fake_connection(types=[person_row]))
        (found,) = lookup("Person")
        assert isinstance(found, DocumentType)
        assert found.name == "Person"
        assert found.id == 1
        assert found.schema["properties"]["age"] == {"type": "number"}
        assert found.documents == ["User#owner|name"]

    def test_not_found(self, fake_connection, person_row):
        assert TypeLookup(fake_connection(types=[person_row]))("Company") == []

    def test_parameterized(self, connection):
        TypeLookup(connection)("Person'; DROP TABLE types; --")
        assert connection.statements == [("SELECT * FROM types WHERE name = $1", ["Person'; DROP TABLE types; --"])]
