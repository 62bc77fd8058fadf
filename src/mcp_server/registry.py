"""Exposure registry for the MCP server.

Decides which tools and resources a given set of options exposes. Tools
and resources are declared in the backend catalog; this module applies
the domain selection, deny-list, name filters, de-duplication and, for
tools, the per-actor permission check.
"""

from typing import Any, Optional, TypeVar

from catalog.base import ConfigurationError, McpBackend
from mcp_server.auth import can_perform
from shared.logging import get_logger
from shared.models import (
    ActionResource,
    McpOptions,
    NameFilter,
    Tool,
    UiResource,
)
from shared.schema import parameter_schema, tool_description

logger = get_logger(__name__)

T = TypeVar("T", Tool, ActionResource, UiResource)


def name_allowed(name: str, allowed: NameFilter) -> bool:
    """
    Apply a name filter.

    None, "*" and ["*"] allow everything, [] allows nothing, any other
    list allows exactly its members.
    """
    if allowed is None or allowed == "*" or allowed == ["*"]:
        return True
    return name in allowed


class ExposureRegistry:
    """
    Computes the tools and resources exposed for an invocation.

    Responsibilities:
    - Discover domains from the app or the explicit action selectors
    - Resolve declared tools and resources against their entities
    - Apply exclusions and name filters
    - Drop tools the actor is not allowed to run
    """

    def __init__(self, backend: McpBackend) -> None:
        self.backend = backend
        self.catalog = backend.catalog

    def check_options(self, options: McpOptions) -> None:
        """
        Validate options that would make every listing fail.

        Raises:
            ConfigurationError: If neither an app nor actions are given
        """
        if options.actions is None and not options.app:
            raise ConfigurationError("Must specify `app` if you do not specify `actions`")

    def exposed_tools(self, options: McpOptions) -> list[Tool]:
        """
        List the tools exposed for the given options.

        Args:
            options: Exposure options with actor and tenant

        Returns:
            Resolved tools, in declaration order

        Raises:
            ConfigurationError: On inconsistent options
        """
        if options.actions is not None:
            tools: list[Tool] = []
            for selector in options.actions:
                domain = self._domain_for(selector.entity)
                declared = [
                    tool for tool in self.catalog.list_tools(domain)
                    if selector.matches(tool.entity, tool.action)
                ]
                if not declared:
                    raise ConfigurationError("Cannot use an action that is not exposed as a tool")
                tools.extend(self._resolve_tool(tool, domain) for tool in declared)
        else:
            self.check_options(options)
            tools = [
                self._resolve_tool(tool, domain)
                for domain in self.catalog.domains_for_app(options.app)
                for tool in self.catalog.list_tools(domain)
            ]

        tools = [tool for tool in tools if not self._excluded(tool.entity, tool.action, options)]
        tools = [tool for tool in tools if name_allowed(tool.name, options.tools)]
        tools = _unique(tools, lambda tool: (tool.domain, tool.name))

        return [
            tool for tool in tools
            if can_perform(self.backend.authorizer, tool, options.actor, options.tenant)
        ]

    def exposed_action_resources(self, options: McpOptions) -> list[ActionResource]:
        """List action-backed MCP resources exposed for the given options."""
        resources = [
            self._resolve_resource(resource, domain)
            for domain in self._domains(options)
            for resource in self.catalog.list_action_resources(domain)
        ]

        if options.actions is not None:
            resources = [
                resource for resource in resources
                if any(selector.matches(resource.entity, resource.action) for selector in options.actions)
            ]

        resources = [
            resource for resource in resources
            if not self._excluded(resource.entity, resource.action, options)
        ]
        resources = [resource for resource in resources if name_allowed(resource.name, options.mcp_resources)]
        return _unique(resources, lambda resource: (resource.domain, resource.name))

    def exposed_ui_resources(self, options: McpOptions) -> list[UiResource]:
        """List UI resources exposed for the given options."""
        resources = [
            resource
            for domain in self._domains(options)
            for resource in self.catalog.list_ui_resources(domain)
        ]
        resources = [resource for resource in resources if name_allowed(resource.name, options.mcp_resources)]
        return _unique(resources, lambda resource: resource.name)

    def exposed_resources(self, options: McpOptions) -> list[ActionResource | UiResource]:
        """Action resources followed by UI resources."""
        return [*self.exposed_action_resources(options), *self.exposed_ui_resources(options)]

    def find_tool(self, name: str, options: McpOptions) -> Optional[Tool]:
        """Find an exposed tool by exact name."""
        for tool in self.exposed_tools(options):
            if tool.name == name:
                return tool
        return None

    def find_resource(self, uri: str, options: McpOptions) -> Optional[ActionResource | UiResource]:
        """Find an exposed resource by exact URI."""
        for resource in self.exposed_resources(options):
            if resource.uri == uri:
                return resource
        return None

    def tool_schema(self, tool: Tool) -> dict[str, Any]:
        """Input schema of a resolved tool."""
        return parameter_schema(tool, self.catalog.get_entity(tool.entity))

    def tool_description(self, tool: Tool) -> str:
        action = tool.resolved_action or self.catalog.resolve_action(tool.entity, tool.action)
        return tool_description(tool, action)

    def _domain_for(self, entity: str) -> str:
        domain = self.catalog.domain_for_entity(entity)
        if domain is None:
            raise ConfigurationError("Cannot use an entity that does not have a domain")
        return domain

    def _domains(self, options: McpOptions) -> list[str]:
        if options.actions is not None:
            domains: list[str] = []
            for selector in options.actions:
                domain = self._domain_for(selector.entity)
                if domain not in domains:
                    domains.append(domain)
            return domains

        self.check_options(options)
        return self.catalog.domains_for_app(options.app)

    def _excluded(self, entity: str, action: str, options: McpOptions) -> bool:
        return any(selector.matches(entity, action) for selector in options.exclude_actions)

    def _resolve_tool(self, tool: Tool, domain: str) -> Tool:
        action = self.catalog.resolve_action(tool.entity, tool.action)
        return tool.model_copy(update={"domain": domain, "resolved_action": action})

    def _resolve_resource(self, resource: ActionResource, domain: str) -> ActionResource:
        action = self.catalog.resolve_action(resource.entity, resource.action)
        return resource.model_copy(update={
            "domain": domain,
            "resolved_action": action,
            "description": resource.description or action.description,
        })


def _unique(items: list[T], key) -> list[T]:
    seen = set()
    unique = []
    for item in items:
        identity = key(item)
        if identity in seen:
            continue
        seen.add(identity)
        unique.append(item)
    return unique
