"""Tests for trusted schema descriptors and catalogs."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from contextguard.ai.mcp.catalog import MalformedSchema, SchemaCatalog, SchemaDescriptor
from contextguard.ai.tools.errors import MalformedSchemaError

SEARCH_SCHEMA = {
    "type": "object",
    "properties": {"query": {"type": "string"}, "limit": {"type": "integer", "minimum": 1}},
    "required": ["query"],
}


class TestSchemaDescriptor:
    """Tests for SchemaDescriptor validation."""

    def test_valid_descriptor(self) -> None:
        descriptor = SchemaDescriptor("search", SEARCH_SCHEMA, "Search docs")
        assert descriptor.name == "search"
        assert descriptor.input_schema["required"] == ["query"]

    def test_schema_is_copied_read_only(self) -> None:
        source = dict(SEARCH_SCHEMA)
        descriptor = SchemaDescriptor("search", source)
        source["type"] = "array"
        assert descriptor.input_schema["type"] == "object"
        with pytest.raises(TypeError):
            descriptor.input_schema["type"] = "array"  # type: ignore[index]

    @pytest.mark.parametrize(
        ("schema", "reason"),
        [
            ("not a mapping", "must be an object"),
            ({"type": "array"}, "type must be 'object'"),
            ({"properties": {}}, "type must be 'object'"),
            ({"type": "object", "properties": "nope"}, "invalid JSON Schema"),
            ({"type": "object", "required": "query"}, "invalid JSON Schema"),
        ],
    )
    def test_malformed_schemas(self, schema: object, reason: str) -> None:
        with pytest.raises(MalformedSchemaError) as exc_info:
            SchemaDescriptor("search", schema)  # type: ignore[arg-type]
        assert reason in exc_info.value.reason
        assert exc_info.value.tool_name == "search"

    def test_empty_name_rejected(self) -> None:
        with pytest.raises(MalformedSchemaError):
            SchemaDescriptor("  ", SEARCH_SCHEMA)

    def test_validate_arguments(self) -> None:
        descriptor = SchemaDescriptor("search", SEARCH_SCHEMA)
        assert descriptor.validate({"query": "mcp"}) == []
        errors = descriptor.validate({"limit": 0})
        assert any("'query' is a required property" in error for error in errors)
        assert any(error.startswith("limit:") for error in errors)


class TestSchemaCatalog:
    """Tests for SchemaCatalog construction."""

    def test_from_mapping_keeps_order(self) -> None:
        catalog = SchemaCatalog.from_mapping(
            "docs",
            {
                "b": {"inputSchema": SEARCH_SCHEMA},
                "a": {"input_schema": {"type": "object"}},
                "c": {"parameters": {"type": "object"}, "description": "third"},
            },
        )
        assert catalog.names() == ("b", "a", "c")
        assert catalog.get("c").description == "third"
        assert "a" in catalog
        assert len(catalog) == 3

    def test_from_list_of_definitions(self) -> None:
        catalog = SchemaCatalog.from_mapping(
            "docs",
            [{"name": "search", "inputSchema": SEARCH_SCHEMA}, {"name": "fetch", "inputSchema": {"type": "object"}}],
        )
        assert catalog.names() == ("search", "fetch")

    def test_bare_schema_definition(self) -> None:
        catalog = SchemaCatalog.from_mapping("docs", {"ping": {"type": "object", "properties": {}}})
        assert "ping" in catalog

    def test_malformed_entries_are_collected(self) -> None:
        catalog = SchemaCatalog.from_mapping(
            "docs",
            {
                "good": {"inputSchema": SEARCH_SCHEMA},
                "wrong_type": {"inputSchema": {"type": "string"}},
                "no_schema": {"description": "nothing here"},
                "not_object": "oops",
            },
        )
        assert list(catalog.entries) == ["good"]
        names = [item.name for item in catalog.malformed]
        assert names == ["wrong_type", "no_schema", "not_object"]
        assert all(isinstance(item, MalformedSchema) and item.reason for item in catalog.malformed)
        assert catalog.names() == ("good", "wrong_type", "no_schema", "not_object")

    def test_duplicate_names_keep_first(self) -> None:
        catalog = SchemaCatalog.from_mapping(
            "docs",
            [
                {"name": "search", "inputSchema": SEARCH_SCHEMA, "description": "first"},
                {"name": "search", "inputSchema": {"type": "object"}, "description": "second"},
            ],
        )
        assert catalog.get("search").description == "first"

    def test_from_json_file(self, tmp_path: Path) -> None:
        path = tmp_path / "docs.json"
        path.write_text(json.dumps({"tools": {"search": {"inputSchema": SEARCH_SCHEMA}}}), encoding="utf-8")
        catalog = SchemaCatalog.from_json_file("docs", path)
        assert catalog.server == "docs"
        assert catalog.names() == ("search",)

    def test_from_descriptors(self) -> None:
        catalog = SchemaCatalog.from_descriptors("docs", [SchemaDescriptor("search", SEARCH_SCHEMA)])
        assert catalog.names() == ("search",)
        assert catalog.malformed == ()

    @pytest.mark.parametrize("payload", [42, "search", True])
    def test_scalar_catalog_is_rejected(self, payload: object) -> None:
        with pytest.raises(MalformedSchemaError) as exc_info:
            SchemaCatalog.from_mapping("docs", payload)  # type: ignore[arg-type]
        assert type(payload).__name__ in exc_info.value.reason

    def test_scalar_catalog_file_is_rejected(self, tmp_path: Path) -> None:
        path = tmp_path / "docs.json"
        path.write_text("42", encoding="utf-8")
        with pytest.raises(MalformedSchemaError):
            SchemaCatalog.from_json_file("docs", path)
