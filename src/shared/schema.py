"""JSON Schema generation and validation utilities.

Maps domain field types onto JSON Schema and derives the input schema an
LLM sees for each exposed tool.
"""

from typing import Any

from jsonschema import Draft7Validator

from shared.models import (
    AGGREGATE_KINDS,
    COMPARISON_OPERATORS,
    RESULT_TYPES,
    ActionDefinition,
    ActionType,
    EntityDefinition,
    FieldDefinition,
    FieldKind,
    Tool,
)


DEFAULT_LIMIT = 25

TYPE_MAPPING: dict[str, dict[str, Any]] = {
    "string": {"type": "string"},
    "ci_string": {"type": "string"},
    "atom": {"type": "string"},
    "uuid": {"type": "string", "format": "uuid"},
    "date": {"type": "string", "format": "date"},
    "datetime": {"type": "string", "format": "date-time"},
    "time": {"type": "string", "format": "time"},
    "integer": {"type": "integer"},
    "float": {"type": "number"},
    "decimal": {"type": "number"},
    "boolean": {"type": "boolean"},
    "map": {"type": "object"},
}

_TEMPORAL_FORMATS = ("date", "date-time", "time")


def validate_schema(data: Any, schema: dict[str, Any]) -> tuple[bool, list[str]]:
    """
    Validate data against a JSON Schema.

    Args:
        data: The data to validate
        schema: JSON Schema to validate against

    Returns:
        Tuple of (is_valid, list of error messages)
    """
    if not schema:
        return True, []

    validator = Draft7Validator(schema)
    errors = list(validator.iter_errors(data))

    if not errors:
        return True, []

    error_messages = [
        f"{'.'.join(str(p) for p in e.path)}: {e.message}" if e.path else e.message
        for e in errors
    ]

    return False, error_messages


def type_schema(type_name: str, constraints: dict[str, Any] | None = None) -> dict[str, Any]:
    """
    Build the JSON Schema for a domain type and its constraints.

    Unknown types map to the empty (accept anything) schema.
    """
    constraints = constraints or {}

    if type_name == "array":
        schema: dict[str, Any] = {
            "type": "array",
            "items": type_schema(
                constraints.get("items", "string"),
                constraints.get("item_constraints"),
            ),
        }
        if "min_length" in constraints:
            schema["minItems"] = constraints["min_length"]
        if "max_length" in constraints:
            schema["maxItems"] = constraints["max_length"]
        return schema

    schema = dict(TYPE_MAPPING.get(type_name, {}))
    json_type = schema.get("type")

    if "one_of" in constraints:
        schema["enum"] = list(constraints["one_of"])

    if json_type == "string":
        if "min_length" in constraints:
            schema["minLength"] = constraints["min_length"]
        if "max_length" in constraints:
            schema["maxLength"] = constraints["max_length"]
        if "match" in constraints:
            schema["pattern"] = constraints["match"]
    elif json_type in ("integer", "number"):
        if "min" in constraints:
            schema["minimum"] = constraints["min"]
        if "max" in constraints:
            schema["maximum"] = constraints["max"]
    elif json_type == "object" and "fields" in constraints:
        nested = [
            FieldDefinition(name=name, **definition)
            for name, definition in constraints["fields"].items()
        ]
        schema["properties"] = {field.name: field_schema(field) for field in nested}
        schema["required"] = [field.name for field in nested if field.required]
        schema["additionalProperties"] = False

    return schema


def field_schema(field: FieldDefinition, describe: bool = True) -> dict[str, Any]:
    """
    JSON Schema for a single field.

    Nullable fields also accept null. Descriptions and JSON-compatible
    defaults are carried over.
    """
    schema = type_schema(field.type, field.constraints)

    if field.allow_nil:
        if isinstance(schema.get("type"), str):
            schema["type"] = [schema["type"], "null"]
        if "enum" in schema:
            schema["enum"] = [*schema["enum"], None]

    if describe and field.description:
        schema["description"] = field.description

    if isinstance(field.default, (str, int, float, bool, list, dict)):
        schema["default"] = field.default

    return schema


def filter_field_schema(field: FieldDefinition) -> dict[str, Any]:
    """Operator object accepted when filtering on one field."""
    value = type_schema(field.type, field.constraints)

    operators: dict[str, Any] = {
        "eq": value,
        "not_eq": value,
        "in": {"type": "array", "items": value},
        "is_nil": {"type": "boolean"},
    }

    if value.get("type") in ("integer", "number") or value.get("format") in _TEMPORAL_FORMATS:
        for operator in COMPARISON_OPERATORS:
            operators[operator] = value
    elif value.get("type") == "string":
        operators["contains"] = {"type": "string"}

    schema: dict[str, Any] = {
        "type": "object",
        "properties": operators,
        "additionalProperties": False,
    }
    if field.description:
        schema["description"] = field.description
    return schema


def tool_description(tool: Tool, action: ActionDefinition) -> str:
    """Tool description, falling back to the action's, then to a generated one."""
    description = (
        tool.description
        or action.description
        or f"Call the {action.name} action on the {tool.entity} resource"
    )
    return description.strip()


def identity_keys(tool: Tool, entity: EntityDefinition) -> list[str]:
    """Keys used to locate the record an update/destroy tool targets."""
    if tool.identity is False:
        return []
    if tool.identity is None:
        return list(entity.primary_key)
    identity = entity.identity(tool.identity)
    return list(identity.keys) if identity else []


def parameter_schema(tool: Tool, entity: EntityDefinition) -> dict[str, Any]:
    """
    Derive the JSON Schema describing a tool's arguments.

    Accepted writable attributes (create/update/destroy), public action
    arguments and tool-declared arguments are nested under `input`. Read
    tools add query parameters; update/destroy tools add the keys
    identifying the target record.

    Args:
        tool: A resolved tool (its `resolved_action` set)
        entity: The entity the tool's action belongs to

    Returns:
        JSON Schema dictionary
    """
    action = tool.resolved_action or entity.action(tool.action)
    if action is None:
        raise ValueError(f"Unknown action {entity.name}.{tool.action}")

    input_properties: dict[str, Any] = {}

    if action.type not in (ActionType.READ, ActionType.ACTION):
        for attribute in entity.attributes():
            if attribute.name in action.accept and attribute.writable:
                input_properties[attribute.name] = field_schema(attribute)

    for argument in action.public_arguments():
        input_properties[argument.name] = field_schema(argument)

    for argument in tool.arguments:
        input_properties[argument.name] = field_schema(argument)

    required: list[str] = []
    for argument in [*action.public_arguments(), *tool.arguments]:
        if argument.required and argument.name not in required:
            required.append(argument.name)

    properties: dict[str, Any] = {}
    if input_properties:
        properties["input"] = {
            "type": "object",
            "properties": input_properties,
            "additionalProperties": False,
            "required": required,
        }
    top_level_required = list(properties)

    if action.type == ActionType.READ:
        properties.update(_read_properties(tool, entity, action))
    elif action.type in (ActionType.UPDATE, ActionType.DESTROY):
        for key in identity_keys(tool, entity):
            key_field = entity.field(key)
            if key_field is None:
                properties[key] = {"type": "string"}
            else:
                properties[key] = field_schema(key_field.model_copy(update={"allow_nil": False}))

    return {
        "type": "object",
        "properties": properties,
        "required": top_level_required,
        "additionalProperties": False,
    }


def _read_properties(
    tool: Tool, entity: EntityDefinition, action: ActionDefinition
) -> dict[str, Any]:
    public = entity.public_fields()
    filterable = [field for field in public if field.filterable]
    sortable = [field for field in public if field.sortable]

    pagination = action.pagination
    default_limit = DEFAULT_LIMIT
    if pagination is not None and pagination.default_limit is not None:
        default_limit = pagination.default_limit

    sort_item: dict[str, Any] = {
        "type": "object",
        "properties": {
            "field": {
                "type": "string",
                "description": "The field to sort by",
                "enum": [field.name for field in sortable],
            },
            "direction": {
                "type": "string",
                "description": "The direction to sort by",
                "enum": ["asc", "desc"],
            },
        },
        "required": ["field"],
        "additionalProperties": False,
    }

    calculations = [
        field for field in sortable
        if field.kind == FieldKind.CALCULATION and field.arguments
    ]
    if calculations:
        sort_item["properties"]["input_for_fields"] = {
            "type": "object",
            "description": "Arguments for calculations used when sorting",
            "properties": {
                calculation.name: {
                    "type": "object",
                    "properties": {
                        argument.name: field_schema(argument)
                        for argument in calculation.arguments
                    },
                    "required": [
                        argument.name for argument in calculation.arguments if argument.required
                    ],
                    "additionalProperties": False,
                }
                for calculation in calculations
            },
            "additionalProperties": False,
        }

    properties: dict[str, Any] = {
        "filter": {
            "type": "object",
            "description": "Filter results",
            "properties": {field.name: filter_field_schema(field) for field in filterable},
            "additionalProperties": False,
        },
        "result_type": {
            "default": "run_query",
            "description": "The type of result to return",
            "oneOf": [
                {
                    "type": "string",
                    "description": "Run the query returning all results, or return a count of results, or check if any results exist",
                    "enum": list(RESULT_TYPES),
                },
                {
                    "type": "object",
                    "description": "Aggregate a field over the matching results",
                    "properties": {
                        "aggregate": {
                            "type": "string",
                            "description": "The aggregate function to use",
                            "enum": list(AGGREGATE_KINDS),
                        },
                        "field": {
                            "type": "string",
                            "description": "The field to aggregate",
                            "enum": [field.name for field in public],
                        },
                    },
                    "required": ["aggregate", "field"],
                    "additionalProperties": False,
                },
            ],
        },
        "limit": {
            "type": "integer",
            "description": "The maximum number of records to return",
            "default": default_limit,
        },
        "offset": {
            "type": "integer",
            "description": "The number of records to skip",
            "default": 0,
        },
        "sort": {
            "type": "array",
            "items": sort_item,
        },
    }

    if tool.action_parameters is not None:
        properties = {
            name: schema for name, schema in properties.items()
            if name in tool.action_parameters
        }

    return properties
