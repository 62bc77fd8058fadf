"""Backend collaborators.

A backend is the catalog of declared domains plus the runner, authorizer
and serializer the MCP server calls into. `StaticCatalog` and the
in-memory collaborators cover applications that declare their entities
in Python; other applications implement the base classes directly.
"""

from catalog.base import (
    ActionCatalog,
    ActionError,
    ActionOptions,
    ActionRunner,
    Authorizer,
    ConfigurationError,
    Forbidden,
    InvalidInput,
    McpBackend,
    NotFound,
    ReadQuery,
    Serializer,
)
from catalog.memory import AllowAll, InMemoryRunner, JsonSerializer, PolicyAuthorizer
from catalog.static import StaticCatalog


def in_memory_backend(catalog: StaticCatalog, authorizer: Authorizer | None = None) -> McpBackend:
    """Build a backend over a static catalog with in-memory storage."""
    return McpBackend(
        catalog=catalog,
        runner=InMemoryRunner(catalog),
        authorizer=authorizer or AllowAll(),
        serializer=JsonSerializer(catalog),
    )


__all__ = [
    "ActionCatalog",
    "ActionError",
    "ActionOptions",
    "ActionRunner",
    "AllowAll",
    "Authorizer",
    "ConfigurationError",
    "Forbidden",
    "InMemoryRunner",
    "InvalidInput",
    "JsonSerializer",
    "McpBackend",
    "NotFound",
    "PolicyAuthorizer",
    "ReadQuery",
    "Serializer",
    "StaticCatalog",
    "in_memory_backend",
]
