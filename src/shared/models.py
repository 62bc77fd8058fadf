"""Core data models for the action MCP server.

This module defines the declarative structures that describe an application
(entities, actions, tools and MCP resources), the per-call options that
shape what gets exposed, and the result/event types that flow through the
execution pipeline.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Callable, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


DEFAULT_PROTOCOL_VERSION = "2025-03-26"
UI_MIME_TYPE = "text/html;profile=mcp-app"

AGGREGATE_KINDS = ("max", "min", "sum", "avg", "count")
RESULT_TYPES = ("run_query", "count", "exists")
READ_PARAMETERS = ("filter", "result_type", "limit", "offset", "sort")

COMPARISON_OPERATORS = (
    "greater_than",
    "greater_than_or_equal",
    "less_than",
    "less_than_or_equal",
)
FILTER_OPERATORS = ("eq", "not_eq", "in", "is_nil", "contains") + COMPARISON_OPERATORS

CSP_KEYS = ("connect_domains", "resource_domains", "frame_domains", "base_uri_domains")
PERMISSION_KEYS = ("camera", "microphone", "geolocation", "clipboard_write")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ActionType(str, Enum):
    """Kind of action an entity exposes."""
    READ = "read"
    CREATE = "create"
    UPDATE = "update"
    DESTROY = "destroy"
    ACTION = "action"


class FieldKind(str, Enum):
    """Where a field's value comes from."""
    ATTRIBUTE = "attribute"
    CALCULATION = "calculation"
    AGGREGATE = "aggregate"


class FieldDefinition(BaseModel):
    """
    A typed value on an entity or an action.

    Used for attributes, calculations, aggregates, action arguments and
    the extra arguments a tool declares on top of its action.
    """
    model_config = ConfigDict(frozen=True)

    name: str
    type: str = Field(default="string", description="Domain type name, e.g. string, integer, uuid, array")
    constraints: dict[str, Any] = Field(default_factory=dict)
    kind: FieldKind = Field(default=FieldKind.ATTRIBUTE)
    description: Optional[str] = None
    allow_nil: bool = True
    default: Any = None
    public: bool = True
    writable: bool = True
    filterable: bool = True
    sortable: bool = True
    arguments: list["FieldDefinition"] = Field(
        default_factory=list,
        description="Arguments accepted by a calculation"
    )

    @property
    def required(self) -> bool:
        """A field is required when it is not nullable and has no default."""
        return not self.allow_nil and self.default is None


class Pagination(BaseModel):
    """Pagination settings of a read action."""
    model_config = ConfigDict(frozen=True)

    default_limit: Optional[int] = None
    max_page_size: Optional[int] = None


class ActionDefinition(BaseModel):
    """A named action on an entity with its typed inputs and return type."""
    model_config = ConfigDict(frozen=True)

    name: str
    type: ActionType
    description: Optional[str] = None
    arguments: list[FieldDefinition] = Field(default_factory=list)
    accept: list[str] = Field(default_factory=list, description="Writable attributes the action accepts")
    pagination: Optional[Pagination] = None
    returns: Optional[str] = None
    returns_constraints: dict[str, Any] = Field(default_factory=dict)

    def public_arguments(self) -> list[FieldDefinition]:
        return [argument for argument in self.arguments if argument.public]


class Identity(BaseModel):
    """A uniqueness key that can locate a single record."""
    model_config = ConfigDict(frozen=True)

    name: str
    keys: list[str]


class EntityDefinition(BaseModel):
    """
    A business entity (a "resource" in the host application).

    Holds the typed fields, primary key, identities and actions the
    schema builder and execution engine need to reason about.
    """
    model_config = ConfigDict(frozen=True)

    name: str
    description: Optional[str] = None
    fields: list[FieldDefinition] = Field(default_factory=list)
    primary_key: list[str] = Field(default_factory=lambda: ["id"])
    identities: list[Identity] = Field(default_factory=list)
    actions: list[ActionDefinition] = Field(default_factory=list)

    def field(self, name: str) -> Optional[FieldDefinition]:
        for field in self.fields:
            if field.name == name:
                return field
        return None

    def attributes(self) -> list[FieldDefinition]:
        return self.fields_of(FieldKind.ATTRIBUTE)

    def fields_of(self, *kinds: FieldKind) -> list[FieldDefinition]:
        return [field for field in self.fields if field.kind in kinds]

    def public_fields(self) -> list[FieldDefinition]:
        return [field for field in self.fields if field.public]

    def action(self, name: str) -> Optional[ActionDefinition]:
        for action in self.actions:
            if action.name == name:
                return action
        return None

    def identity(self, name: str) -> Optional[Identity]:
        for identity in self.identities:
            if identity.name == name:
                return identity
        return None

    def action_inputs(self, action: ActionDefinition) -> list[str]:
        """Names of every input the action accepts: accepted attributes, then arguments."""
        inputs = list(action.accept)
        inputs.extend(argument.name for argument in action.arguments if argument.name not in inputs)
        return inputs


LoadSpec = Union[list[str], Callable[[dict[str, Any]], list[str]]]


class Tool(BaseModel):
    """
    An entity action exposed to LLM agents as a callable tool.

    Declared at configuration time; `domain` and `resolved_action` are
    attached when the tool is resolved for an invocation.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str
    entity: str
    action: str
    description: Optional[str] = None
    load: LoadSpec = Field(
        default_factory=list,
        description="Fields to load on results, or a function of the raw input returning them"
    )
    async_: bool = Field(default=True, alias="async")
    identity: Union[Literal[False], str, None] = Field(
        default=None,
        description="Identity used to target update/destroy; None means primary key, False disables"
    )
    arguments: list[FieldDefinition] = Field(default_factory=list)
    action_parameters: Optional[list[str]] = Field(
        default=None,
        description="Read parameters to expose; defaults to all of filter/result_type/limit/offset/sort"
    )
    meta: dict[str, Any] = Field(default_factory=dict, alias="_meta")
    ui: Optional[str] = Field(
        default=None,
        description="UI resource name or ui:// URI folded into _meta.ui.resourceUri"
    )

    domain: Optional[str] = None
    resolved_action: Optional[ActionDefinition] = None

    @property
    def has_meta(self) -> bool:
        return bool(self.meta)


class ActionResource(BaseModel):
    """An MCP resource whose content is produced by running a string-returning action."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["action"] = "action"
    name: str
    uri: str
    title: str
    description: Optional[str] = None
    mime_type: str = "text/plain"
    entity: str
    action: str

    domain: Optional[str] = None
    resolved_action: Optional[ActionDefinition] = None


class UiResource(BaseModel):
    """An MCP Apps UI resource: a static HTML file rendered in a sandboxed iframe."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["ui"] = "ui"
    name: str
    uri: str
    html_path: str
    title: Optional[str] = None
    description: Optional[str] = None
    csp: dict[str, list[str]] = Field(default_factory=dict)
    permissions: dict[str, bool] = Field(default_factory=dict)
    domain: Optional[str] = Field(
        default="auto",
        description="'auto' computes a sandbox domain from the server URL, None omits it"
    )
    prefers_border: Optional[bool] = None

    @property
    def mime_type(self) -> str:
        return UI_MIME_TYPE

    @field_validator("uri")
    @classmethod
    def _check_uri(cls, value: str) -> str:
        if not value.startswith("ui://"):
            raise ValueError("UI resource URIs must start with ui://")
        return value

    @field_validator("csp")
    @classmethod
    def _check_csp(cls, value: dict[str, list[str]]) -> dict[str, list[str]]:
        unknown = set(value) - set(CSP_KEYS)
        if unknown:
            raise ValueError(f"Unknown csp keys: {', '.join(sorted(unknown))}")
        return value

    @field_validator("permissions")
    @classmethod
    def _check_permissions(cls, value: dict[str, bool]) -> dict[str, bool]:
        unknown = set(value) - set(PERMISSION_KEYS)
        if unknown:
            raise ValueError(f"Unknown permissions: {', '.join(sorted(unknown))}")
        return value


McpResource = Annotated[Union[ActionResource, UiResource], Field(discriminator="kind")]


class DomainDefinition(BaseModel):
    """A group of entities together with the tools and resources declared over them."""
    name: str
    description: Optional[str] = None
    entities: list[EntityDefinition] = Field(default_factory=list)
    tools: list[Tool] = Field(default_factory=list)
    resources: list[McpResource] = Field(default_factory=list)


class ActionSelector(BaseModel):
    """An `{entity, actions}` pair; `actions="*"` selects every action of the entity."""
    model_config = ConfigDict(frozen=True)

    entity: str
    actions: Union[Literal["*"], list[str]] = "*"

    def matches(self, entity: str, action: str) -> bool:
        if entity != self.entity:
            return False
        return self.actions == "*" or action in self.actions


NameFilter = Union[Literal["*"], list[str], None]


def _coerce_selectors(value: Any) -> Any:
    if value is None:
        return value
    if isinstance(value, (tuple, ActionSelector, dict)):
        value = [value]
    coerced = []
    for item in value:
        if isinstance(item, tuple):
            entity, actions = item
            if isinstance(actions, str) and actions != "*":
                actions = [actions]
            item = {"entity": entity, "actions": actions}
        coerced.append(item)
    return coerced


def _coerce_name_filter(value: Any) -> Any:
    if isinstance(value, str) and value != "*":
        return [value]
    return value


class McpOptions(BaseModel):
    """
    Every option recognised when exposing tools and resources.

    Built once from static configuration and copied per request with the
    request's actor, tenant, server URL and session id.
    """
    model_config = ConfigDict(arbitrary_types_allowed=True)

    actor: Any = None
    tenant: Any = None
    context: dict[str, Any] = Field(default_factory=dict)
    app: Optional[str] = Field(default=None, description="Application identifier used to discover domains")

    actions: Optional[list[ActionSelector]] = None
    exclude_actions: list[ActionSelector] = Field(default_factory=list)
    tools: NameFilter = None
    mcp_resources: NameFilter = None

    system_prompt: Union[Callable[..., str], Literal["none"], None] = None
    on_tool_start: Optional[Callable[..., Any]] = None
    on_tool_end: Optional[Callable[..., Any]] = None
    strict: bool = True

    server_name: Optional[str] = None
    server_version: Optional[str] = None
    protocol_version: str = DEFAULT_PROTOCOL_VERSION
    server_url: Optional[str] = None
    session_id: Optional[str] = None

    @field_validator("actions", "exclude_actions", mode="before")
    @classmethod
    def _normalize_actions(cls, value: Any) -> Any:
        return _coerce_selectors(value)

    @field_validator("tools", "mcp_resources", mode="before")
    @classmethod
    def _normalize_names(cls, value: Any) -> Any:
        return _coerce_name_filter(value)

    def for_request(self, **overrides: Any) -> "McpOptions":
        """Copy these options for one request, merging any extra context."""
        context = dict(self.context)
        context.update(overrides.pop("context", None) or {})
        return self.model_copy(update={**overrides, "context": context})


class ToolStartEvent(BaseModel):
    """Passed to `on_tool_start` before a tool runs."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    tool_name: str
    action: str
    entity: str
    arguments: dict[str, Any] = Field(default_factory=dict)
    actor: Any = None
    tenant: Any = None


class ToolResultStatus(str, Enum):
    """Status of a tool execution."""
    SUCCESS = "success"
    INVALID_ARGUMENTS = "invalid_arguments"
    ERROR = "error"


class ToolResult(BaseModel):
    """
    Transport-agnostic outcome of running a tool.

    `text` is always the serialized payload: the result on success, or an
    error document otherwise. `data` keeps the raw, unserialized result.
    """
    model_config = ConfigDict(arbitrary_types_allowed=True)

    tool_name: str
    status: ToolResultStatus
    text: str
    data: Any = None
    error: Optional[str] = None
    execution_time_ms: float = 0

    @property
    def ok(self) -> bool:
        return self.status == ToolResultStatus.SUCCESS


class ToolEndEvent(BaseModel):
    """Passed to `on_tool_end` once a tool has produced its result."""
    tool_name: str
    result: ToolResult


class ResourceResult(BaseModel):
    """Outcome of reading an MCP resource."""
    uri: str
    text: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class ErrorPayload(BaseModel):
    """One entry of a serialized error list."""
    id: Optional[str] = None
    status: Optional[str] = None
    code: Optional[str] = None
    title: Optional[str] = None
    detail: Optional[str] = None
    source_pointer: Optional[str] = None
    source_parameter: Optional[str] = None
    meta: Optional[dict[str, Any]] = None

    def to_dict(self) -> dict[str, Any]:
        """Render only the keys that are defined."""
        data: dict[str, Any] = {}
        for key in ("id", "status", "code", "title", "detail"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        source = {}
        if self.source_pointer is not None:
            source["pointer"] = self.source_pointer
        if self.source_parameter is not None:
            source["parameter"] = self.source_parameter
        if source:
            data["source"] = source
        if self.meta is not None:
            data["meta"] = self.meta
        return data


class AuditEntry(BaseModel):
    """
    Audit log entry for a tool execution.

    Captures who ran which tool with what arguments, and how it ended.
    """
    id: str
    timestamp: datetime = Field(default_factory=_utcnow)

    tool_name: str
    entity: str
    action: str

    actor_id: Optional[str] = None
    tenant: Optional[str] = None
    session_id: Optional[str] = None

    arguments: dict[str, Any] = Field(default_factory=dict)

    status: ToolResultStatus
    error: Optional[str] = None
    execution_time_ms: float = 0
