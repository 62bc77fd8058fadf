"""MCP Server - FastAPI Application.

Serves the MCP endpoint for a backend loaded from configuration (or
passed in directly) plus a health check.
"""

import importlib
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from catalog.base import ConfigurationError, McpBackend
from mcp_server.audit import AuditLogger
from mcp_server.auth import ActorResolver, AuthConfig
from mcp_server.protocol import McpDispatcher
from mcp_server.transport import create_mcp_router
from shared.config import Settings, get_settings
from shared.logging import get_logger, setup_logging
from shared.models import McpOptions

logger = get_logger(__name__)


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str
    protocol_version: str


def load_backend(path: str) -> McpBackend:
    """
    Import a backend from a `module:attribute` path.

    The attribute may be a backend or a zero-argument factory returning one.
    """
    module_name, _, attribute = path.partition(":")
    if not module_name or not attribute:
        raise ConfigurationError(f"Backend path must look like `module:attribute`, got {path!r}")

    target = getattr(importlib.import_module(module_name), attribute)
    backend = target() if callable(target) else target
    if not isinstance(backend, McpBackend):
        raise ConfigurationError(f"{path} did not produce an McpBackend")
    return backend


def options_from_settings(settings: Settings) -> McpOptions:
    server = settings.mcp_server
    return McpOptions(
        app=server.app,
        server_name=server.name,
        server_version=server.version,
        protocol_version=server.protocol_version,
    )


def create_app(
    backend: Optional[McpBackend] = None,
    options: Optional[McpOptions] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        backend: Backend to serve; loaded from settings when omitted
        options: Exposure options; derived from settings when omitted
        settings: Settings; the cached application settings when omitted

    Returns:
        Configured FastAPI application
    """
    settings = settings or get_settings()
    server = settings.mcp_server

    if backend is None:
        if not server.backend:
            raise ConfigurationError("No backend given and MCP_SERVER_BACKEND is not set")
        backend = load_backend(server.backend)
    if server.show_raised_errors and not backend.show_raised_errors:
        backend = backend.model_copy(update={"show_raised_errors": True})

    options = options or options_from_settings(settings)

    audit_logger = AuditLogger(log_path=server.audit_log_path, enabled=server.enable_audit)
    dispatcher = McpDispatcher(backend, audit_logger=audit_logger)
    resolver = ActorResolver(AuthConfig(
        secret_key=server.secret_key,
        algorithm=server.algorithm,
        require_auth=server.require_auth,
    ))

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(settings.log_level, json_output=settings.json_logs)
        logger.info(
            "MCP Server started",
            path=server.path,
            app=options.app,
            tool_count=len(dispatcher.registry.exposed_tools(options)),
        )

        yield

        logger.info("Shutting down MCP Server")
        await audit_logger.flush()

    app = FastAPI(
        title=options.server_name or "MCP Server",
        description="Exposes application actions to LLM agents over MCP",
        version=server.version,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["mcp-session-id"],
    )

    app.include_router(create_mcp_router(
        dispatcher,
        options,
        path=server.path,
        keepalive_interval=server.keepalive_interval,
        actor_resolver=resolver,
    ))

    @app.get("/health", response_model=HealthResponse, tags=["System"])
    async def health_check():
        """Health check endpoint."""
        return HealthResponse(
            status="healthy",
            version=server.version,
            protocol_version=options.protocol_version,
        )

    return app


def main():
    """Run the MCP Server."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        create_app(settings=settings),
        host=settings.mcp_server.host,
        port=settings.mcp_server.port,
    )


if __name__ == "__main__":
    main()
