"""
Unit tests for the configuration wrapper.
"""

import json

import pytest

import docstore as ds


class TestConfig:
    """Test dict-like access to the settings."""

    def test_defaults(self):
        assert ds.config["database.schema_name"] == "public"
        assert ds.config["procedures.dispatch"] == "call_func"
        assert ds.config["procedures.relations"] == "get_documents"
        assert ds.config["default_order"] == "$created"

    def test_attribute_access(self):
        assert ds.config.database.dbname == ds.config["database.dbname"]

    def test_unknown_key(self):
        with pytest.raises(KeyError):
            ds.config["database.nothing"]

    def test_temporary_change(self):
        """Test that the context manager restores the previous values."""
        before = ds.config["database.schema_name"]
        with ds.config(database__schema_name="app", type_awareness=True):
            assert ds.config["database.schema_name"] == "app"
            assert ds.config["type_awareness"] is True
        assert ds.config["database.schema_name"] == before
        assert ds.config["type_awareness"] is False

    def test_validation(self):
        with pytest.raises(ValueError):
            ds.config["loglevel"] = "LOUD"
        with pytest.raises(ValueError):
            ds.config["timeout"] = -1

    def test_extra_keys(self):
        ds.config["custom.flag"] = 1
        try:
            assert ds.config["custom.flag"] == 1
            assert "custom.flag" in list(ds.config)
        finally:
            del ds.config["custom.flag"]

    def test_save_and_load(self, tmp_path):
        filename = str(tmp_path / "docstore_config.json")
        ds.config.save(filename)
        with open(filename) as f:
            saved = json.load(f)
        assert saved["procedures.dispatch"] == "call_func"
        with ds.config(default_order="$modified"):
            ds.config.load(filename)
            assert ds.config["default_order"] == saved["default_order"]

    def test_temporary_extra_key(self):
        """Test that a key added inside the context manager is removed on exit."""
        with ds.config(custom__temporary="on"):
            assert ds.config["custom.temporary"] == "on"
        assert "custom.temporary" not in ds.config
        with pytest.raises(KeyError):
            ds.config["custom.temporary"]
