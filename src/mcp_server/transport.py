"""HTTP transport for the MCP server.

Mounts the MCP endpoint on a FastAPI router: POST carries JSON-RPC
messages, GET opens the SSE stream, DELETE ends a session.
"""

from typing import Optional

from fastapi import APIRouter, Request, Response, status
from fastapi.responses import PlainTextResponse, StreamingResponse

from mcp_server.auth import ActorResolver
from mcp_server.protocol import McpDispatcher, ResponseKind
from mcp_server.streaming import event_stream
from shared.logging import bind_context, clear_context, get_logger
from shared.models import McpOptions

logger = get_logger(__name__)

SESSION_HEADER = "mcp-session-id"
EVENT_STREAM = "text/event-stream"


def server_url(request: Request) -> str:
    """URL of the MCP endpoint as seen by the client, honouring x-forwarded-proto."""
    scheme = request.headers.get("x-forwarded-proto") or request.url.scheme
    host = request.headers.get("host", "")
    return f"{scheme}://{host}{request.url.path}"


def create_mcp_router(
    dispatcher: McpDispatcher,
    options: McpOptions,
    path: str = "/mcp",
    keepalive_interval: float = 30.0,
    actor_resolver: Optional[ActorResolver] = None,
) -> APIRouter:
    """
    Build the router serving the MCP endpoint.

    Args:
        dispatcher: Dispatcher answering JSON-RPC messages
        options: Static exposure options; copied per request
        path: Path of the endpoint
        keepalive_interval: Seconds between SSE keep-alive comments
        actor_resolver: Resolves the actor and tenant of each request

    Returns:
        Router with POST, GET and DELETE handlers on `path`

    Raises:
        ConfigurationError: If the options cannot expose anything
    """
    dispatcher.registry.check_options(options)
    resolver = actor_resolver or ActorResolver()

    router = APIRouter(tags=["MCP"])

    def request_options(request: Request) -> McpOptions:
        identity = resolver.resolve(request)
        overrides = {"server_url": server_url(request)}
        if identity.actor is not None:
            overrides["actor"] = identity.actor
        if identity.tenant is not None:
            overrides["tenant"] = identity.tenant
        return options.for_request(**overrides)

    async def handle_post(request: Request) -> Response:
        session_id = request.headers.get(SESSION_HEADER)
        bind_context(session_id=session_id)
        try:
            result = await dispatcher.process_request(
                await request.body(), session_id, request_options(request)
            )
        finally:
            clear_context()

        if result.kind == ResponseKind.NONE:
            return Response(status_code=status.HTTP_202_ACCEPTED)

        response = Response(content=result.body, media_type="application/json")
        if result.session_id and (
            result.kind == ResponseKind.INITIALIZE or result.session_id != session_id
        ):
            response.headers[SESSION_HEADER] = result.session_id
        return response

    async def handle_get(request: Request) -> Response:
        accepts = ",".join(request.headers.getlist("accept"))
        if EVENT_STREAM not in accepts:
            logger.info("SSE request rejected", accept=accepts)
            return PlainTextResponse(
                "Client must accept text/event-stream",
                status_code=status.HTTP_400_BAD_REQUEST,
            )

        stream = event_stream(
            server_url(request),
            keepalive_interval=keepalive_interval,
            is_disconnected=request.is_disconnected,
            session_id=request.headers.get(SESSION_HEADER),
        )
        return StreamingResponse(
            stream,
            media_type=EVENT_STREAM,
            headers={"cache-control": "no-cache", "connection": "keep-alive"},
        )

    async def handle_delete(request: Request) -> Response:
        if dispatcher.sessions.terminate(request.headers.get(SESSION_HEADER)):
            return Response(status_code=status.HTTP_200_OK)
        return Response(status_code=status.HTTP_400_BAD_REQUEST)

    router.add_api_route(path, handle_post, methods=["POST"])
    router.add_api_route(path, handle_get, methods=["GET"])
    router.add_api_route(path, handle_delete, methods=["DELETE"])
    return router
