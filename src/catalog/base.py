"""Base classes for backend collaborators.

The MCP server never talks to an application directly. It goes through
four collaborators:
- ActionCatalog: what domains, entities, tools and resources exist
- ActionRunner: runs reads, creates, bulk updates/destroys and generic actions
- Authorizer: answers whether an actor may run an action
- Serializer: turns results and errors into JSON-compatible values

Runner and serializer methods may be plain or coroutine functions; the
execution engine awaits coroutines and runs plain functions in a thread.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from shared.models import (
    ActionDefinition,
    ActionResource,
    EntityDefinition,
    ErrorPayload,
    Tool,
    UiResource,
)


class ConfigurationError(ValueError):
    """Raised when exposure options or declarations are inconsistent."""


class ActionError(Exception):
    """
    Base error raised by runners for expected action failures.

    Attributes:
        detail: Human readable explanation
        field: Single input field the error is about
        fields: Several input fields the error is about
        path: Path leading to the field(s)
        in_input: Whether the path is relative to the `input` object rather
            than to the top-level tool arguments
    """
    error_class = "unknown"
    status_code = 500
    code = "something_went_wrong"
    title = "SomethingWentWrong"

    def __init__(
        self,
        detail: Optional[str] = None,
        field: Optional[str] = None,
        fields: Optional[list[str]] = None,
        path: Optional[list[Any]] = None,
        code: Optional[str] = None,
        meta: Optional[dict[str, Any]] = None,
        in_input: bool = True,
    ) -> None:
        super().__init__(detail or self.title)
        self.detail = detail or self.title
        self.field = field
        self.fields = fields or []
        self.path = path or []
        self.in_input = in_input
        if code is not None:
            self.code = code
        self.meta = meta


class InvalidInput(ActionError):
    """Input was rejected (validation, unknown field, bad filter)."""
    error_class = "invalid"
    status_code = 400
    code = "invalid"
    title = "InvalidInput"


class Forbidden(ActionError):
    """The actor may not run this action."""
    error_class = "forbidden"
    status_code = 403
    code = "forbidden"
    title = "Forbidden"


class NotFound(ActionError):
    """No record matched."""
    error_class = "invalid"
    status_code = 404
    code = "not_found"
    title = "NotFound"


class ReadQuery(BaseModel):
    """Query built by the execution engine for read actions."""
    filter: Optional[dict[str, Any]] = None
    sort: Optional[str] = Field(default=None, description="Comma joined `field` / `-field` terms")
    sort_inputs: dict[str, Any] = Field(default_factory=dict)
    limit: Optional[int] = None
    offset: Optional[int] = None
    input: dict[str, Any] = Field(default_factory=dict)
    load: list[str] = Field(default_factory=list)


class ActionOptions(BaseModel):
    """Per-call options handed to runners and the authorizer."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    domain: Optional[str] = None
    actor: Any = None
    tenant: Any = None
    context: dict[str, Any] = Field(default_factory=dict)
    load: list[str] = Field(default_factory=list)


class ActionCatalog(ABC):
    """Read-only view of the declared domains."""

    @abstractmethod
    def domains_for_app(self, app: str) -> list[str]:
        """Names of every domain belonging to an application."""

    @abstractmethod
    def domain_for_entity(self, entity: str) -> Optional[str]:
        """Domain owning an entity, or None."""

    @abstractmethod
    def list_tools(self, domain: str) -> list[Tool]:
        pass

    @abstractmethod
    def list_action_resources(self, domain: str) -> list[ActionResource]:
        pass

    @abstractmethod
    def list_ui_resources(self, domain: str) -> list[UiResource]:
        pass

    @abstractmethod
    def get_entity(self, entity: str) -> EntityDefinition:
        """
        Look up an entity definition.

        Raises:
            ConfigurationError: If the entity is unknown
        """

    def resolve_action(self, entity: str, action: str) -> ActionDefinition:
        """
        Resolve an action by name on an entity.

        Raises:
            ConfigurationError: If the action is unknown
        """
        definition = self.get_entity(entity).action(action)
        if definition is None:
            raise ConfigurationError(f"Unknown action {entity}.{action}")
        return definition


class ActionRunner(ABC):
    """Runs actions against the application's data."""

    @abstractmethod
    def read(self, entity: str, action: str, query: ReadQuery, options: ActionOptions) -> list[Any]:
        pass

    @abstractmethod
    def count(self, entity: str, action: str, query: ReadQuery, options: ActionOptions) -> int:
        pass

    @abstractmethod
    def exists(self, entity: str, action: str, query: ReadQuery, options: ActionOptions) -> bool:
        pass

    @abstractmethod
    def aggregate(
        self,
        entity: str,
        action: str,
        query: ReadQuery,
        kind: str,
        field: str,
        options: ActionOptions,
    ) -> Any:
        pass

    @abstractmethod
    def create(self, entity: str, action: str, input: dict[str, Any], options: ActionOptions) -> Any:
        pass

    @abstractmethod
    def bulk_update(
        self,
        entity: str,
        action: str,
        filter: Optional[dict[str, Any]],
        input: dict[str, Any],
        limit: Optional[int],
        options: ActionOptions,
    ) -> list[Any]:
        """Update the records matching `filter` (all records when None) and return them."""

    @abstractmethod
    def bulk_destroy(
        self,
        entity: str,
        action: str,
        filter: Optional[dict[str, Any]],
        input: dict[str, Any],
        limit: Optional[int],
        options: ActionOptions,
    ) -> list[Any]:
        """Destroy the records matching `filter` and return them."""

    @abstractmethod
    def run_action(self, entity: str, action: str, input: dict[str, Any], options: ActionOptions) -> Any:
        pass


class Authorizer(ABC):
    """Decides whether an actor may run an action."""

    @abstractmethod
    def can_perform(
        self,
        actor: Any,
        entity: str,
        action: ActionDefinition,
        tenant: Any = None,
        domain: Optional[str] = None,
    ) -> bool:
        pass


class Serializer(ABC):
    """Converts results and errors into JSON-compatible values."""

    @abstractmethod
    def serialize_value(
        self,
        value: Any,
        type_name: Optional[str],
        constraints: Optional[dict[str, Any]] = None,
        domain: Optional[str] = None,
        load: Optional[list[str]] = None,
    ) -> Any:
        pass

    @abstractmethod
    def serialize_errors(self, errors: list[ErrorPayload]) -> Any:
        pass


class McpBackend(BaseModel):
    """Bundle of the collaborators an MCP server is built on."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    catalog: ActionCatalog
    runner: ActionRunner
    authorizer: Authorizer
    serializer: Serializer
    show_raised_errors: bool = False
