"""
Unit tests for SELECT and COUNT compilation.
"""

import json
import logging

import pytest

import docstore as ds
from docstore.entities import Document, Method, Type
from docstore.errors import InvalidKey, InvalidPredicate, UnknownType
from docstore.query import Traits, prepare_count, prepare_select

EPOCH_ORDER = "ORDER BY extract(epoch from created)*1000"


class TestTraits:
    """Test normalization of search traits."""

    def test_defaults(self):
        traits = Traits.from_mapping(None)
        assert traits.fields == ["$*"]
        assert traits.order == ["$created"]
        assert traits.limit is None
        assert not traits.count

    def test_empty_order(self):
        """Test that an empty order disables ordering."""
        assert Traits.from_mapping({"order": []}).order == []

    def test_single_values(self):
        """Test that single keys are accepted where lists are expected."""
        traits = Traits.from_mapping({"fields": "name", "order": "$id", "documents": "owner"})
        assert traits.fields == ["name"]
        assert traits.order == ["$id"]
        assert traits.documents == ["owner"]

    def test_count(self):
        traits = Traits.from_mapping({"count": True, "fields": ["name"]})
        assert traits.fields == ["count"]
        assert traits.order == []

    def test_type_awareness_alias(self):
        assert Traits.from_mapping({"typeAwareness": True}).type_awareness

    def test_type_awareness_default(self):
        with ds.config(type_awareness=True):
            assert Traits.from_mapping({}).type_awareness

    def test_unknown_trait(self):
        with pytest.raises(InvalidPredicate):
            Traits.from_mapping({"sort": ["name"]})

    @pytest.mark.parametrize("limit", [-1, "ten", True, 1.5j])
    def test_invalid_limit(self, limit):
        with pytest.raises(InvalidPredicate):
            Traits.from_mapping({"limit": limit})

    def test_limit_all(self):
        assert Traits.from_mapping({"limit": "all"}).limit == "ALL"

    def test_limit_without_order(self, caplog):
        """Test that a limit without ordering logs a warning."""
        with caplog.at_level(logging.WARNING, logger="docstore"):
            Traits.from_mapping({"limit": 10, "order": []})
        assert "Limit without ordering" in caplog.text


class TestSelect:
    """Test compiled SELECT statements."""

    def test_type_and_id(self):
        query = prepare_select(Document, "Person", {"$id": 7}, {"order": []})
        assert query.text == "SELECT * FROM documents WHERE (type = $1) AND (id = $2)"
        assert query.params == ("Person", 7)
        assert query.field_map["id"] == "$id"
        assert query.field_map["content"] == "$content"

    def test_unpacking(self):
        text, params = prepare_select(Document, "Person", None, {"order": []})
        assert text == "SELECT * FROM documents WHERE type = $1"
        assert params == ["Person"]

    def test_default_order(self):
        assert prepare_select(Document).text == f"SELECT * FROM documents {EPOCH_ORDER}"

    def test_several_types(self):
        query = prepare_select(Document, ["Person", "Company"], None, {"order": []})
        assert query.text == "SELECT * FROM documents WHERE (type = $1) OR (type = $2)"

    def test_types_on_untyped_entity(self):
        with pytest.raises(InvalidPredicate):
            prepare_select(Type, "Person")

    def test_method_discriminator(self):
        query = prepare_select(Method, "Person", {"$active": True}, {"order": []})
        assert query.text == "SELECT * FROM methods WHERE (type = $1) AND (active = $2)"

    def test_fields(self):
        query = prepare_select(Document, None, None, {"fields": ["$id", "name", "address.city"], "order": []})
        assert query.text == (
            "SELECT id, (content -> 'name'::text) AS \"content.name\", "
            "(content #> '{address,city}') AS \"content.address.city\" FROM documents"
        )
        assert query.field_map == {"id": "$id", "content.name": "name", "content.address.city": "address.city"}

    def test_unknown_field(self):
        with pytest.raises(InvalidKey):
            prepare_select(Document, None, None, {"fields": ["$name"]})

    def test_order_direction(self):
        query = prepare_select(Document, None, None, {"order": [["$id", "desc"], ["$modified", "ASC", "NULLS LAST"]]})
        assert query.text == (
            "SELECT * FROM documents ORDER BY id DESC, extract(epoch from modified)*1000 ASC NULLS LAST"
        )

    def test_invalid_direction(self):
        with pytest.raises(InvalidPredicate):
            prepare_select(Document, None, None, {"order": [["$id", "SIDEWAYS"]]})

    def test_order_explicit_cast(self):
        query = prepare_select(Document, None, None, {"order": ["age:numeric"]})
        assert query.text == "SELECT * FROM documents ORDER BY (((content -> 'age'::text))::text)::numeric"

    @pytest.mark.parametrize("cast", ["text", "bigint"])
    def test_order_timestamp_cast(self, cast):
        """Test that a cast on epoch milliseconds applies to the whole product."""
        query = prepare_select(Document, None, None, {"order": [f"$created:{cast}"]})
        assert query.text == f"SELECT * FROM documents ORDER BY (extract(epoch from created)*1000)::{cast}"

    def test_order_without_schema(self):
        """Test that undeclared data fields order as text."""
        query = prepare_select(Document, "Person", None, {"order": ["name"]})
        assert query.text == "SELECT * FROM documents WHERE type = $1 ORDER BY (content ->> 'name'::text)"

    def test_order_with_declared_type(self, person):
        query = prepare_select(Document, person, None, {"order": [["age", "DESC"]]})
        assert query.text == (
            "SELECT * FROM documents WHERE type = $1 ORDER BY (((content -> 'age'::text))::text)::numeric DESC"
        )

    def test_order_with_type_lookup(self, person):
        """Test that the type is looked up when ordering needs its schema."""
        looked_up = []

        def lookup(name):
            looked_up.append(name)
            return [person]

        query = prepare_select(Document, "Person", None, {"order": ["age"]}, type_lookup=lookup)
        assert query.text.endswith("ORDER BY (((content -> 'age'::text))::text)::numeric")
        assert looked_up == ["Person"]

    def test_lookup_skipped_without_need(self):
        """Test that the type is not looked up for column-only searches."""
        query = prepare_select(Document, "Person", {"$id": 1}, None, type_lookup=pytest.fail)
        assert query.text.endswith(EPOCH_ORDER)

    def test_unknown_type(self):
        with pytest.raises(UnknownType):
            prepare_select(Document, "Ghost", None, {"order": ["age"]}, type_lookup=lambda name: [])

    def test_order_bind(self, older_than):
        query = prepare_select(Document, None, None, {"order": [["BIND", "age", older_than, 30]]})
        assert query.text == (
            "SELECT * FROM documents ORDER BY "
            "(call_func(array_to_json(ARRAY[to_json((content -> 'age'::text))]), $1::json, $2::json))::text"
        )
        assert query.params == ('"older_than"', "[30]")

    def test_order_bind_numbering(self, older_than):
        """Test that call parameters follow the WHERE parameters."""
        query = prepare_select(Document, "Person", None, {"order": [["BIND:numeric", "age", older_than, 30]]})
        assert query.text == (
            "SELECT * FROM documents WHERE type = $1 ORDER BY "
            "((call_func(array_to_json(ARRAY[to_json((content -> 'age'::text))]), $2::json, $3::json))::text)::numeric"
        )
        assert query.params == ("Person", '"older_than"', "[30]")

    def test_order_by_operator(self):
        with pytest.raises(InvalidPredicate):
            prepare_select(Document, None, None, {"order": ["AND"]})

    def test_group(self):
        query = prepare_select(Document, None, None, {"fields": ["$type"], "group": ["$type"], "order": []})
        assert query.text == "SELECT type FROM documents GROUP BY type"

    def test_group_data_field(self, person):
        """Test that a grouped data field is selected as its grouping expression."""
        query = prepare_select(Document, person, None, {"fields": ["age"], "group": ["age"], "order": []})
        numeric = "(((content -> 'age'::text))::text)::numeric"
        assert query.text == f'SELECT {numeric} AS "content.age" FROM documents WHERE type = $1 GROUP BY {numeric}'
        assert query.field_map == {"content.age": "age"}
        query = prepare_select(Document, None, None, {"fields": ["name"], "group": ["name:text"], "order": []})
        text = "(content ->> 'name'::text)"
        assert query.text == f'SELECT {text} AS "content.name" FROM documents GROUP BY {text}'

    def test_limit_offset(self):
        query = prepare_select(Document, None, None, {"limit": 10, "offset": 20})
        assert query.text == f"SELECT * FROM documents {EPOCH_ORDER} LIMIT 10 OFFSET 20"

    def test_zero_offset(self):
        query = prepare_select(Document, None, None, {"limit": 0, "offset": 0})
        assert query.text == f"SELECT * FROM documents {EPOCH_ORDER} LIMIT 0"

    def test_type_awareness(self, person):
        """Test that a type aware search fetches the related documents of the type."""
        query = prepare_select(Document, person, None, {"typeAwareness": True, "order": []})
        assert query.text == (
            "SELECT *, get_documents(row_to_json(documents.*), $1::json) AS documents FROM documents WHERE type = $2"
        )
        relations = json.loads(query.params[0])
        assert relations == [
            {
                "type": "User",
                "prop": "content.owner",
                "fields": [{"name": "name", "datakey": "content", "key": "name", "query": "(content -> 'name'::text)"}],
            }
        ]
        assert query.params[1] == "Person"
        assert query.field_map["documents"] == "$documents"

    def test_explicit_documents(self):
        query = prepare_select(Document, None, None, {"documents": ["owner"], "fields": ["$id"], "order": []})
        assert query.text == "SELECT id, get_documents(row_to_json(documents.*), $1::json) AS documents FROM documents"

    def test_type_awareness_casts_filter(self, person):
        traits = {"typeAwareness": True, "order": []}
        query = prepare_select(Document, "Person", {"age": "30"}, traits, type_lookup=lambda name: [person])
        assert query.text.endswith("WHERE (type = $2) AND ((((content -> 'age'::text))::text)::numeric = $3)")
        assert query.params[1:] == ("Person", "30")


class TestCount:
    """Test compiled COUNT statements."""

    def test_count(self):
        query = prepare_count(Document, "Person", {"$id": 1}, {"limit": 5, "offset": 2})
        assert query.text == "SELECT COUNT(*) AS count FROM documents WHERE (type = $1) AND (id = $2)"
        assert query.params == ("Person", 1)
        assert query.field_map == {"count": "count"}

    def test_count_from_traits(self):
        """Test that prepared traits can be counted."""
        traits = Traits.from_mapping({"order": ["name"]})
        assert prepare_count(Document, None, None, traits).text == "SELECT COUNT(*) AS count FROM documents"

    def test_count_trait(self):
        assert prepare_select(Document, None, None, {"count": True}).text == "SELECT COUNT(*) AS count FROM documents"
