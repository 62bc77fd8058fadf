"""Shared models, configuration and utilities for the action MCP server."""

from shared.models import (
    ActionDefinition,
    ActionResource,
    ActionSelector,
    ActionType,
    DomainDefinition,
    EntityDefinition,
    FieldDefinition,
    FieldKind,
    McpOptions,
    Tool,
    ToolResult,
    ToolResultStatus,
    UiResource,
)
from shared.config import Settings, get_settings
from shared.logging import get_logger, setup_logging

__all__ = [
    "ActionDefinition",
    "ActionResource",
    "ActionSelector",
    "ActionType",
    "DomainDefinition",
    "EntityDefinition",
    "FieldDefinition",
    "FieldKind",
    "McpOptions",
    "Tool",
    "ToolResult",
    "ToolResultStatus",
    "UiResource",
    "Settings",
    "get_settings",
    "get_logger",
    "setup_logging",
]
