"""In-process tool-calling interface.

Exposes the same tools as the MCP endpoint as plain async callables with
an LLM-ready description, for applications that drive an LLM themselves
instead of going through a network client.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from catalog.base import McpBackend
from mcp_server.audit import AuditLogger
from mcp_server.executor import ToolExecutor
from mcp_server.registry import ExposureRegistry
from shared.models import McpOptions, Tool, ToolResult

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful assistant.\n"
    "Your purpose is to operate the application on behalf of the user."
)


class ToolFunction(BaseModel):
    """
    One exposed tool, callable in-process.

    Calling the function runs the tool with the options it was created
    with; per-call overrides (actor, tenant, context, callbacks) may be
    passed as keyword arguments.
    """
    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: str
    description: str
    parameters_schema: dict[str, Any]
    strict: bool = True
    async_: bool = True
    tool: Tool
    options: McpOptions
    executor: ToolExecutor = Field(exclude=True)

    async def __call__(self, arguments: Optional[dict[str, Any]] = None, **overrides: Any) -> ToolResult:
        options = self.options.for_request(**overrides) if overrides else self.options
        return await self.executor.execute(self.tool, arguments, options)

    def to_llm_format(self) -> dict[str, Any]:
        """Function definition in the OpenAI function-calling format."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters_schema,
                "strict": self.strict,
            },
        }


def tool_functions(
    backend: McpBackend,
    options: McpOptions,
    audit_logger: Optional[AuditLogger] = None,
) -> list[ToolFunction]:
    """
    Build a callable function for every tool the options expose.

    Args:
        backend: Backend collaborators
        options: Exposure options, including actor, tenant and callbacks
        audit_logger: Optional audit logger for executions

    Returns:
        Tool functions, in exposure order
    """
    registry = ExposureRegistry(backend)
    executor = ToolExecutor(backend, audit_logger)

    return [
        ToolFunction(
            name=tool.name,
            description=registry.tool_description(tool),
            parameters_schema=registry.tool_schema(tool),
            strict=options.strict,
            async_=tool.async_,
            tool=tool,
            options=options,
            executor=executor,
        )
        for tool in registry.exposed_tools(options)
    ]


def system_messages(options: McpOptions) -> list[dict[str, str]]:
    """
    System messages to open a conversation with.

    `system_prompt="none"` yields no message, a callable is given the
    options, and the default prompt is used otherwise.
    """
    if options.system_prompt == "none":
        return []
    if callable(options.system_prompt):
        return [{"role": "system", "content": options.system_prompt(options)}]
    return [{"role": "system", "content": DEFAULT_SYSTEM_PROMPT}]
