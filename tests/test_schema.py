"""Tests for tool parameter schema generation."""

import pytest
from jsonschema import Draft7Validator

from shared.models import FieldDefinition


class TestTypeMapping:
    """Tests for mapping field types onto JSON Schema."""

    def test_nullable_string_with_constraints(self):
        """Test that nullable strings accept null and keep length constraints."""
        from shared.schema import field_schema

        field = FieldDefinition(
            name="title",
            type="string",
            constraints={"min_length": 1, "max_length": 10, "match": "^[a-z]+$"},
            description="The title",
        )

        assert field_schema(field) == {
            "type": ["string", "null"],
            "minLength": 1,
            "maxLength": 10,
            "pattern": "^[a-z]+$",
            "description": "The title",
        }

    def test_required_uuid(self):
        """Test that non-nullable uuids map to formatted strings."""
        from shared.schema import field_schema

        field = FieldDefinition(name="id", type="uuid", allow_nil=False)

        assert field_schema(field) == {"type": "string", "format": "uuid"}

    def test_one_of_becomes_enum(self):
        """Test that one_of constraints become an enum including null when nullable."""
        from shared.schema import field_schema

        field = FieldDefinition(name="status", type="atom", constraints={"one_of": ["a", "b"]})

        assert field_schema(field)["enum"] == ["a", "b", None]

    def test_array_of_integers(self):
        """Test array item types and length constraints."""
        from shared.schema import type_schema

        schema = type_schema("array", {"items": "integer", "item_constraints": {"min": 1}, "max_length": 3})

        assert schema == {"type": "array", "items": {"type": "integer", "minimum": 1}, "maxItems": 3}

    def test_map_with_fields(self):
        """Test that maps with declared fields become closed objects."""
        from shared.schema import type_schema

        schema = type_schema("map", {"fields": {
            "city": {"type": "string", "allow_nil": False},
            "zip": {"type": "string"},
        }})

        assert schema["type"] == "object"
        assert schema["required"] == ["city"]
        assert schema["additionalProperties"] is False
        assert set(schema["properties"]) == {"city", "zip"}

    def test_default_is_carried_over(self):
        """Test that JSON-compatible defaults appear in the schema."""
        from shared.schema import field_schema

        field = FieldDefinition(name="count", type="integer", default=5)

        assert field_schema(field)["default"] == 5

    def test_unknown_type_accepts_anything(self):
        """Test that unknown types map to an open schema."""
        from shared.schema import type_schema

        assert type_schema("embedded_thing") == {}


class TestParameterSchema:
    """Tests for per-tool parameter schemas."""

    def test_read_tool_properties(self, resolve_tool, catalog):
        """Test that read tools expose query parameters and no input."""
        from shared.schema import parameter_schema

        schema = parameter_schema(resolve_tool("list_artists"), catalog.get_entity("Artist"))

        assert set(schema["properties"]) == {"filter", "result_type", "limit", "offset", "sort"}
        assert schema["required"] == []
        assert schema["additionalProperties"] is False
        assert schema["properties"]["limit"]["default"] == 25
        assert schema["properties"]["offset"]["default"] == 0

    def test_read_filter_uses_public_filterable_fields(self, resolve_tool, catalog):
        """Test filter properties cover public, filterable fields only."""
        from shared.schema import parameter_schema

        schema = parameter_schema(resolve_tool("list_artists"), catalog.get_entity("Artist"))
        filters = schema["properties"]["filter"]["properties"]

        assert set(filters) == {"id", "name", "bio", "albums_count", "name_length", "greeting"}
        assert "greater_than" in filters["albums_count"]["properties"]
        assert "contains" in filters["name"]["properties"]
        assert "contains" not in filters["albums_count"]["properties"]
        assert filters["name"]["additionalProperties"] is False

    def test_read_sort_and_aggregate_enums(self, resolve_tool, catalog):
        """Test sort fields are public and sortable, aggregate fields public."""
        from shared.schema import parameter_schema

        schema = parameter_schema(resolve_tool("list_artists"), catalog.get_entity("Artist"))
        sort_item = schema["properties"]["sort"]["items"]
        aggregate = schema["properties"]["result_type"]["oneOf"][1]

        assert sort_item["properties"]["field"]["enum"] == [
            "id", "name", "bio", "albums_count", "name_length", "greeting"
        ]
        assert sort_item["properties"]["direction"]["enum"] == ["asc", "desc"]
        assert "genre" in aggregate["properties"]["field"]["enum"]
        assert "secret" not in aggregate["properties"]["field"]["enum"]
        assert aggregate["properties"]["aggregate"]["enum"] == ["max", "min", "sum", "avg", "count"]
        assert schema["properties"]["result_type"]["oneOf"][0]["enum"] == ["run_query", "count", "exists"]

    def test_sort_inputs_for_calculations_with_arguments(self, resolve_tool, catalog):
        """Test calculations with arguments get an input_for_fields entry."""
        from shared.schema import parameter_schema

        schema = parameter_schema(resolve_tool("list_artists"), catalog.get_entity("Artist"))
        inputs = schema["properties"]["sort"]["items"]["properties"]["input_for_fields"]

        assert set(inputs["properties"]) == {"greeting"}
        assert inputs["properties"]["greeting"]["required"] == ["prefix"]

    def test_paginated_read_uses_default_limit(self, resolve_tool, catalog):
        """Test the limit default follows the action's pagination."""
        from shared.schema import parameter_schema

        schema = parameter_schema(resolve_tool("list_artists_paginated"), catalog.get_entity("Artist"))

        assert schema["properties"]["limit"]["default"] == 10

    def test_action_parameters_restrict_read_properties(self, resolve_tool, catalog):
        """Test action_parameters limits the read parameters exposed."""
        from shared.schema import parameter_schema

        schema = parameter_schema(resolve_tool("filter_artists"), catalog.get_entity("Artist"))

        assert list(schema["properties"]) == ["filter"]

    def test_create_tool_wraps_accepted_attributes_in_input(self, resolve_tool, catalog):
        """Test create tools nest accepted attributes under input."""
        from shared.schema import parameter_schema

        schema = parameter_schema(resolve_tool("create_artist"), catalog.get_entity("Artist"))
        input_schema = schema["properties"]["input"]

        assert schema["required"] == ["input"]
        assert list(input_schema["properties"]) == ["id", "name", "bio", "albums_count"]
        assert input_schema["additionalProperties"] is False
        assert input_schema["required"] == []
        assert input_schema["properties"]["albums_count"] == {"type": ["integer", "null"], "minimum": 0}

    def test_update_tool_adds_primary_key(self, resolve_tool, catalog):
        """Test update tools expose the primary key at the top level."""
        from shared.schema import parameter_schema

        schema = parameter_schema(resolve_tool("update_artist"), catalog.get_entity("Artist"))

        assert schema["properties"]["id"] == {"type": "string", "format": "uuid"}
        assert set(schema["properties"]["input"]["properties"]) == {"name", "bio", "albums_count"}
        assert schema["required"] == ["input"]

    def test_update_by_identity_uses_identity_keys(self, resolve_tool, catalog):
        """Test a named identity replaces the primary key."""
        from shared.schema import parameter_schema

        schema = parameter_schema(resolve_tool("update_artist_by_name"), catalog.get_entity("Artist"))

        assert "id" not in schema["properties"]
        assert schema["properties"]["name"] == {"type": "string", "description": "Artist name"}

    def test_identity_false_adds_no_keys(self, resolve_tool, catalog):
        """Test identity=False exposes no key properties."""
        from shared.schema import parameter_schema

        tool = resolve_tool("destroy_artist").model_copy(update={"identity": False})
        schema = parameter_schema(tool, catalog.get_entity("Artist"))

        assert schema["properties"] == {}
        assert schema["required"] == []

    def test_generic_action_required_arguments(self, resolve_tool, catalog):
        """Test required action and tool arguments are listed under input."""
        from shared.schema import parameter_schema

        schema = parameter_schema(resolve_tool("shout"), catalog.get_entity("Artist"))
        input_schema = schema["properties"]["input"]

        assert list(input_schema["properties"]) == ["text", "volume"]
        assert input_schema["required"] == ["text", "volume"]

    def test_action_without_inputs_has_empty_schema(self, resolve_tool, catalog):
        """Test an action with no inputs yields an empty object schema."""
        from shared.schema import parameter_schema

        schema = parameter_schema(resolve_tool("ping_artist"), catalog.get_entity("Artist"))

        assert schema == {"type": "object", "properties": {}, "required": [], "additionalProperties": False}

    @pytest.mark.parametrize("name", [
        "list_artists", "create_artist", "update_artist", "destroy_artist", "shout",
    ])
    def test_schemas_are_valid_draft7(self, resolve_tool, catalog, name):
        """Test every generated schema is itself a valid JSON Schema."""
        from shared.schema import parameter_schema

        schema = parameter_schema(resolve_tool(name), catalog.get_entity("Artist"))

        Draft7Validator.check_schema(schema)

    def test_schema_is_deterministic(self, resolve_tool, catalog):
        """Test repeated generation gives identical output."""
        from shared.schema import parameter_schema

        entity = catalog.get_entity("Artist")
        tool = resolve_tool("list_artists")

        assert parameter_schema(tool, entity) == parameter_schema(tool, entity)


class TestValidateSchema:
    """Tests for validating payloads against generated schemas."""

    def test_payload_satisfying_schema(self, resolve_tool, catalog):
        """Test a well-formed create payload validates."""
        from shared.schema import parameter_schema, validate_schema

        schema = parameter_schema(resolve_tool("create_artist"), catalog.get_entity("Artist"))

        is_valid, errors = validate_schema({"input": {"name": "Nina", "albums_count": 3}}, schema)

        assert is_valid
        assert errors == []

    def test_unknown_input_key_fails(self, resolve_tool, catalog):
        """Test extra input keys are rejected by the schema."""
        from shared.schema import parameter_schema, validate_schema

        schema = parameter_schema(resolve_tool("create_artist"), catalog.get_entity("Artist"))

        is_valid, errors = validate_schema({"input": {"nickname": "N"}}, schema)

        assert not is_valid
        assert len(errors) == 1


class TestToolDescription:
    """Tests for tool description fallbacks."""

    def test_generated_description(self, resolve_tool):
        """Test the generated description when neither tool nor action has one."""
        from shared.schema import tool_description

        tool = resolve_tool("list_artists")

        assert tool_description(tool, tool.resolved_action) == "Call the read action on the Artist resource"

    def test_action_description_and_trimming(self, resolve_tool):
        """Test action descriptions are used and tool descriptions are trimmed."""
        from shared.schema import tool_description

        shout = resolve_tool("shout")
        filter_tool = resolve_tool("filter_artists")

        assert tool_description(shout, shout.resolved_action) == "Shout some text"
        assert tool_description(filter_tool, filter_tool.resolved_action) == "Find artists by field values"
