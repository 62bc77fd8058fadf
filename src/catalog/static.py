"""Catalog built from in-memory domain declarations.

Declarations are checked once, when the catalog is built, so that a
misconfigured application fails at startup rather than on the first
tool call.
"""

from typing import Any, Optional

from catalog.base import ActionCatalog, ConfigurationError
from shared.logging import get_logger
from shared.models import (
    ActionResource,
    DomainDefinition,
    EntityDefinition,
    Tool,
    UiResource,
)

logger = get_logger(__name__)


class StaticCatalog(ActionCatalog):
    """
    Catalog over a fixed set of domain definitions.

    Args:
        domains: Domain declarations
        apps: Mapping of application name to the domain names it owns.
            Domains not listed under any app are still reachable through
            explicit action selectors.
    """

    def __init__(
        self,
        domains: list[DomainDefinition],
        apps: Optional[dict[str, list[str]]] = None,
    ) -> None:
        self._domains: dict[str, DomainDefinition] = {}
        self._entities: dict[str, EntityDefinition] = {}
        self._entity_domains: dict[str, str] = {}
        self._tools: dict[str, list[Tool]] = {}
        self._apps = {app: list(names) for app, names in (apps or {}).items()}

        for domain in domains:
            if domain.name in self._domains:
                raise ConfigurationError(f"Duplicate domain {domain.name}")
            self._domains[domain.name] = domain
            for entity in domain.entities:
                if entity.name in self._entities:
                    raise ConfigurationError(
                        f"Entity {entity.name} is declared in more than one domain"
                    )
                self._entities[entity.name] = entity
                self._entity_domains[entity.name] = domain.name

        for app, names in self._apps.items():
            missing = [name for name in names if name not in self._domains]
            if missing:
                raise ConfigurationError(
                    f"App {app} references unknown domains: {', '.join(missing)}"
                )

        self._check_unique_names()
        for domain in domains:
            self._check_resources(domain)
            self._tools[domain.name] = [self._prepare_tool(domain, tool) for tool in domain.tools]

        logger.info(
            "Catalog built",
            domains=len(self._domains),
            entities=len(self._entities),
            tools=sum(len(tools) for tools in self._tools.values()),
        )

    def domains_for_app(self, app: str) -> list[str]:
        return list(self._apps.get(app, []))

    def domain_for_entity(self, entity: str) -> Optional[str]:
        return self._entity_domains.get(entity)

    def list_tools(self, domain: str) -> list[Tool]:
        return list(self._tools.get(domain, []))

    def list_action_resources(self, domain: str) -> list[ActionResource]:
        return [
            resource for resource in self._domain(domain).resources
            if isinstance(resource, ActionResource)
        ]

    def list_ui_resources(self, domain: str) -> list[UiResource]:
        return [
            resource for resource in self._domain(domain).resources
            if isinstance(resource, UiResource)
        ]

    def get_entity(self, entity: str) -> EntityDefinition:
        try:
            return self._entities[entity]
        except KeyError:
            raise ConfigurationError(f"Unknown entity {entity}") from None

    def _domain(self, name: str) -> DomainDefinition:
        try:
            return self._domains[name]
        except KeyError:
            raise ConfigurationError(f"Unknown domain {name}") from None

    def _check_unique_names(self) -> None:
        seen_tools: set[str] = set()
        seen_resources: set[str] = set()
        seen_uris: set[str] = set()

        for domain in self._domains.values():
            for tool in domain.tools:
                if tool.name in seen_tools:
                    raise ConfigurationError(f"Duplicate tool name {tool.name}")
                seen_tools.add(tool.name)
            for resource in domain.resources:
                if resource.name in seen_resources:
                    raise ConfigurationError(f"Duplicate mcp resource name {resource.name}")
                if resource.uri in seen_uris:
                    raise ConfigurationError(f"Duplicate mcp resource uri {resource.uri}")
                seen_resources.add(resource.name)
                seen_uris.add(resource.uri)

    def _check_entity(self, domain: DomainDefinition, entity: str, owner: str) -> EntityDefinition:
        if self._entity_domains.get(entity) != domain.name:
            raise ConfigurationError(
                f"{owner} uses entity {entity}, which is not part of domain {domain.name}"
            )
        return self._entities[entity]

    def _check_resources(self, domain: DomainDefinition) -> None:
        invalid: list[str] = []
        for resource in domain.resources:
            if not isinstance(resource, ActionResource):
                continue
            entity = self._check_entity(domain, resource.entity, f"mcp resource {resource.name}")
            action = entity.action(resource.action)
            if action is None:
                raise ConfigurationError(
                    f"mcp resource {resource.name} uses unknown action {entity.name}.{resource.action}"
                )
            if action.returns != "string":
                invalid.append(resource.name)

        if invalid:
            names = "\n".join(f"  {name}" for name in invalid)
            raise ConfigurationError(
                "All mcp resource actions must return strings.\n\n"
                f"The following mcp_resources do not return strings:\n{names}\n"
            )

    def _prepare_tool(self, domain: DomainDefinition, tool: Tool) -> Tool:
        """Check a tool's references and fold its `ui` shortcut into `_meta`."""
        entity = self._check_entity(domain, tool.entity, f"tool {tool.name}")
        if entity.action(tool.action) is None:
            raise ConfigurationError(
                f"tool {tool.name} uses unknown action {entity.name}.{tool.action}"
            )
        if isinstance(tool.identity, str) and entity.identity(tool.identity) is None:
            raise ConfigurationError(
                f"tool {tool.name} uses unknown identity {tool.identity} on {entity.name}"
            )

        if tool.ui is None:
            return tool

        uri = self._resolve_ui(domain, tool.name, tool.ui)
        meta: dict[str, Any] = dict(tool.meta)
        meta["ui"] = {**meta.get("ui", {}), "resourceUri": uri}
        return tool.model_copy(update={"meta": meta, "ui": None})

    def _resolve_ui(self, domain: DomainDefinition, tool_name: str, ui: str) -> str:
        if ui.startswith("ui://"):
            return ui
        for resource in domain.resources:
            if isinstance(resource, UiResource) and resource.name == ui:
                return resource.uri
        raise ConfigurationError(
            f"tool `{tool_name}` references ui resource `{ui}`, "
            "but no UI resource with that name was found"
        )
