"""JSON-RPC dispatcher for the MCP server.

Parses request bodies (single messages or batches), routes each message
by method name and produces transport-agnostic dispatch results that the
HTTP layer turns into responses.
"""

import hashlib
import json
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from pydantic import BaseModel

from catalog.base import McpBackend
from mcp_server.audit import AuditLogger
from mcp_server.executor import ToolExecutor
from mcp_server.registry import ExposureRegistry
from mcp_server.session import SessionManager
from shared.logging import get_logger
from shared.models import (
    ActionResource,
    McpOptions,
    ToolResultStatus,
    UiResource,
)

logger = get_logger(__name__)

JSONRPC_VERSION = "2.0"

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603
TOOL_EXECUTION_FAILED = -32000
RESOURCE_NOT_FOUND = -32002

SANDBOX_DOMAIN_SUFFIX = ".claudemcpcontent.com"


class ResponseKind(str, Enum):
    """How the transport should answer a dispatched request."""
    INITIALIZE = "initialize"
    JSON = "json"
    BATCH = "batch"
    NONE = "none"


class DispatchResult(BaseModel):
    """Outcome of dispatching a request body."""
    kind: ResponseKind
    body: Optional[str] = None
    session_id: Optional[str] = None


def success_response(request_id: Any, result: Any) -> dict[str, Any]:
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "result": result}


def error_response(
    request_id: Any,
    code: int,
    message: str,
    data: Optional[dict[str, Any]] = None
) -> dict[str, Any]:
    """Build a JSON-RPC error envelope."""
    error: dict[str, Any] = {"code": code, "message": message}
    if data is not None:
        error["data"] = data
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "error": error}


def sandbox_domain(server_url: str) -> str:
    """Deterministic sandbox domain for UI resources served from `server_url`."""
    digest = hashlib.sha256(server_url.encode("utf-8")).hexdigest()
    return digest[:32] + SANDBOX_DOMAIN_SUFFIX


def _camelize(key: str) -> str:
    head, *rest = key.split("_")
    return head + "".join(part.capitalize() for part in rest)


def ui_meta(resource: UiResource, server_url: Optional[str]) -> dict[str, Any]:
    """
    Build the `_meta.ui` object of a UI resource.

    Keys are camelCased. `domain="auto"` derives the sandbox domain from
    the server URL and is omitted when no URL is known.
    """
    meta: dict[str, Any] = {}

    if resource.csp:
        meta["csp"] = {_camelize(key): list(value) for key, value in resource.csp.items()}

    granted = [key for key, enabled in resource.permissions.items() if enabled]
    if granted:
        meta["permissions"] = {_camelize(key): {} for key in granted}

    if resource.domain == "auto":
        if server_url:
            meta["domain"] = sandbox_domain(server_url)
    elif resource.domain is not None:
        meta["domain"] = resource.domain

    if resource.prefers_border is not None:
        meta["prefersBorder"] = resource.prefers_border

    return meta


def server_name(options: McpOptions) -> str:
    if options.server_name:
        return options.server_name
    if options.app:
        return f"{options.app} MCP Server"
    return "MCP Server"


Handler = Callable[[Any, dict[str, Any], Optional[str], McpOptions], Awaitable[DispatchResult]]


class McpDispatcher:
    """
    Routes JSON-RPC messages to their handlers.

    Supported methods: initialize, shutdown, resources/list,
    resources/read, tools/list, tools/call. Notifications (messages
    without an id) are accepted and never answered.
    """

    def __init__(
        self,
        backend: McpBackend,
        sessions: Optional[SessionManager] = None,
        audit_logger: Optional[AuditLogger] = None,
    ) -> None:
        self.backend = backend
        self.registry = ExposureRegistry(backend)
        self.executor = ToolExecutor(backend, audit_logger)
        self.sessions = sessions or SessionManager()
        self._handlers: dict[str, Handler] = {
            "initialize": self._initialize,
            "shutdown": self._shutdown,
            "resources/list": self._resources_list,
            "resources/read": self._resources_read,
            "tools/list": self._tools_list,
            "tools/call": self._tools_call,
        }

    async def process_request(
        self,
        request: str | bytes | dict[str, Any] | list[Any],
        session_id: Optional[str],
        options: McpOptions,
    ) -> DispatchResult:
        """
        Process a request body containing one message or a batch.

        Args:
            request: Raw JSON text, or an already decoded body
            session_id: Session id supplied by the transport, if any
            options: Options for this request

        Returns:
            Dispatch result
        """
        if isinstance(request, (str, bytes)):
            try:
                request = json.loads(request)
            except ValueError as e:
                logger.info("Unparseable request body", error=str(e))
                body = error_response(None, PARSE_ERROR, "Parse error", {"details": str(e)})
                return DispatchResult(kind=ResponseKind.JSON, body=json.dumps(body), session_id=session_id)

        if not isinstance(request, list):
            return await self.process_message(request, session_id, options)

        bodies: list[str] = []
        for message in request:
            result = await self.process_message(message, session_id, options)
            if result.kind == ResponseKind.INITIALIZE:
                session_id = result.session_id
            if result.body is not None:
                bodies.append(result.body)

        if not bodies:
            return DispatchResult(kind=ResponseKind.NONE, session_id=session_id)
        return DispatchResult(
            kind=ResponseKind.BATCH,
            body="[" + ",".join(bodies) + "]",
            session_id=session_id,
        )

    async def process_message(
        self,
        message: Any,
        session_id: Optional[str],
        options: McpOptions,
    ) -> DispatchResult:
        """Process a single JSON-RPC message."""
        if not isinstance(message, dict) or not isinstance(message.get("method"), str):
            body = error_response(None, INVALID_REQUEST, "Invalid Request")
            return DispatchResult(kind=ResponseKind.JSON, body=json.dumps(body), session_id=session_id)

        method = message["method"]
        if "id" not in message:
            logger.debug("Notification received", method=method, session_id=session_id)
            return DispatchResult(kind=ResponseKind.NONE, session_id=session_id)

        request_id = message["id"]
        handler = self._handlers.get(method)
        if handler is None:
            return self._json(
                error_response(request_id, METHOD_NOT_FOUND, f"Method not implemented: {method}"),
                session_id,
            )

        params = message.get("params")
        if params is None:
            params = {}
        if not isinstance(params, dict):
            return self._json(
                error_response(request_id, INVALID_PARAMS, "Invalid params: params must be an object"),
                session_id,
            )

        try:
            return await handler(request_id, params, session_id, options)
        except Exception as e:
            logger.error(
                "Request handler failed",
                method=method,
                session_id=session_id,
                error=str(e),
                exc_info=True,
            )
            return self._json(
                error_response(request_id, INTERNAL_ERROR, "Internal error", {"error": str(e)}),
                session_id,
            )

    def capabilities(self, options: McpOptions) -> dict[str, Any]:
        """Server capabilities; `resources` is advertised only when any are exposed."""
        capabilities: dict[str, Any] = {"tools": {"listChanged": False}}
        if self.registry.exposed_resources(options):
            capabilities["resources"] = {}
        return capabilities

    async def _initialize(
        self, request_id: Any, params: dict[str, Any], session_id: Optional[str], options: McpOptions
    ) -> DispatchResult:
        session_id = self.sessions.ensure(session_id)
        options = self._with_session(options, session_id)

        client = params.get("clientInfo") or params.get("client") or {}
        logger.info(
            "Client initialized",
            session_id=session_id,
            client=client.get("name") if isinstance(client, dict) else None,
        )

        result = {
            "serverInfo": {
                "name": server_name(options),
                "version": options.server_version or "0.1.0",
            },
            "protocolVersion": options.protocol_version,
            "capabilities": self.capabilities(options),
        }
        return DispatchResult(
            kind=ResponseKind.INITIALIZE,
            body=json.dumps(success_response(request_id, result)),
            session_id=session_id,
        )

    async def _shutdown(
        self, request_id: Any, params: dict[str, Any], session_id: Optional[str], options: McpOptions
    ) -> DispatchResult:
        return self._json(success_response(request_id, None), session_id)

    async def _resources_list(
        self, request_id: Any, params: dict[str, Any], session_id: Optional[str], options: McpOptions
    ) -> DispatchResult:
        options = self._with_session(options, session_id)
        resources = [
            self._resource_to_dict(resource, options)
            for resource in self.registry.exposed_resources(options)
        ]
        return self._json(success_response(request_id, {"resources": resources}), session_id)

    async def _resources_read(
        self, request_id: Any, params: dict[str, Any], session_id: Optional[str], options: McpOptions
    ) -> DispatchResult:
        uri = params.get("uri")
        if not isinstance(uri, str):
            return self._json(
                error_response(request_id, INVALID_PARAMS, "Invalid params: uri is required"),
                session_id,
            )

        options = self._with_session(options, session_id)
        resource = self.registry.find_resource(uri, options)
        if resource is None:
            return self._json(
                error_response(request_id, RESOURCE_NOT_FOUND, "Resource not found", {"uri": uri}),
                session_id,
            )

        outcome = await self.executor.read_resource(resource, params, options)
        if not outcome.ok:
            return self._json(
                error_response(
                    request_id,
                    INTERNAL_ERROR,
                    "Resource read failed",
                    {"uri": uri, "error": outcome.error},
                ),
                session_id,
            )

        content: dict[str, Any] = {"uri": uri, "mimeType": resource.mime_type, "text": outcome.text}
        if isinstance(resource, UiResource):
            meta = ui_meta(resource, options.server_url)
            if meta:
                content["_meta"] = {"ui": meta}

        return self._json(success_response(request_id, {"contents": [content]}), session_id)

    async def _tools_list(
        self, request_id: Any, params: dict[str, Any], session_id: Optional[str], options: McpOptions
    ) -> DispatchResult:
        options = self._with_session(options, session_id)
        tools = []
        for tool in self.registry.exposed_tools(options):
            entry: dict[str, Any] = {
                "name": tool.name,
                "description": self.registry.tool_description(tool),
                "inputSchema": self.registry.tool_schema(tool),
            }
            if tool.has_meta:
                entry["_meta"] = tool.meta
            tools.append(entry)

        return self._json(success_response(request_id, {"tools": tools}), session_id)

    async def _tools_call(
        self, request_id: Any, params: dict[str, Any], session_id: Optional[str], options: McpOptions
    ) -> DispatchResult:
        name = params.get("name")
        options = self._with_session(options, session_id)

        tool = self.registry.find_tool(name, options) if isinstance(name, str) else None
        if tool is None:
            return self._json(
                error_response(request_id, INVALID_PARAMS, f"Tool not found: {name}"),
                session_id,
            )

        result = await self.executor.execute(tool, params.get("arguments") or {}, options)

        if result.status == ToolResultStatus.ERROR:
            return self._json(
                error_response(
                    request_id,
                    TOOL_EXECUTION_FAILED,
                    "Tool execution failed",
                    {"error": result.text},
                ),
                session_id,
            )

        payload: dict[str, Any] = {
            "isError": result.status != ToolResultStatus.SUCCESS,
            "content": [{"type": "text", "text": result.text}],
        }
        if tool.has_meta:
            payload["_meta"] = tool.meta

        return self._json(success_response(request_id, payload), session_id)

    def _resource_to_dict(self, resource: ActionResource | UiResource, options: McpOptions) -> dict[str, Any]:
        if isinstance(resource, ActionResource):
            return {
                "name": resource.name,
                "description": resource.description,
                "uri": resource.uri,
                "title": resource.title,
                "mimeType": resource.mime_type,
            }

        data: dict[str, Any] = {
            "name": resource.name,
            "uri": resource.uri,
            "title": resource.title or resource.name,
            "mimeType": resource.mime_type,
        }
        if resource.description:
            data["description"] = resource.description
        meta = ui_meta(resource, options.server_url)
        if meta:
            data["_meta"] = {"ui": meta}
        return data

    def _with_session(self, options: McpOptions, session_id: Optional[str]) -> McpOptions:
        return options.for_request(session_id=session_id, context={"mcp_session_id": session_id})

    def _json(self, body: dict[str, Any], session_id: Optional[str]) -> DispatchResult:
        return DispatchResult(kind=ResponseKind.JSON, body=json.dumps(body), session_id=session_id)
