"""MCP Server - expose application actions to LLM agents.

The server lists and runs tools, serves resources, and speaks JSON-RPC
over HTTP with an SSE stream. The same tools are also available
in-process through `tool_functions`.
"""

from mcp_server.audit import AuditLogger
from mcp_server.executor import ToolExecutor
from mcp_server.functions import ToolFunction, system_messages, tool_functions
from mcp_server.protocol import DispatchResult, McpDispatcher, ResponseKind
from mcp_server.registry import ExposureRegistry
from mcp_server.session import SessionManager
from mcp_server.transport import create_mcp_router

__all__ = [
    "AuditLogger",
    "DispatchResult",
    "ExposureRegistry",
    "McpDispatcher",
    "ResponseKind",
    "SessionManager",
    "ToolExecutor",
    "ToolFunction",
    "create_mcp_router",
    "system_messages",
    "tool_functions",
]
