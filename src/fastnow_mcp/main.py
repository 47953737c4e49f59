"""FastNow MCP gateway - FastAPI application.

One POST endpoint carries MCP envelopes; the remaining GET routes serve
discovery metadata and health. Components are built once in the lifespan
and kept on ``app.state``.
"""

import json
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from shared.config import Settings, get_settings
from shared.logging import get_logger, setup_logging
from fastnow_mcp.audit import AuditLogger
from fastnow_mcp.auth import RestTokenStore, TokenValidator
from fastnow_mcp.discovery import SERVER_NAME, SERVER_VERSION, mcp_manifest, oauth_metadata
from fastnow_mcp.dispatcher import ProtocolDispatcher
from fastnow_mcp.errors import ParseError
from fastnow_mcp.registry import ToolRegistry
from fastnow_mcp.resolver import EndpointResolver
from fastnow_mcp.resources import ResourceRegistry
from fastnow_mcp.upstream import UpstreamClient, UpstreamDataSource

logger = get_logger(__name__)


def build_dispatcher(settings: Settings) -> tuple[ProtocolDispatcher, list[Any]]:
    """
    Construct every gateway component from settings.

    Returns the dispatcher and the components that need closing on
    shutdown.
    """
    tools = ToolRegistry.from_yaml(settings.server.tools_catalog, known_scopes=settings.oauth.scopes)
    resources = ResourceRegistry.from_yaml(
        settings.server.widgets_catalog,
        settings.server.data_resources_catalog,
        cdn_url=settings.widgets.cdn_url,
    )
    token_store = RestTokenStore(settings.token_store)
    resolver = EndpointResolver(settings.upstream.base_url, settings.upstream.token_header)
    upstream = UpstreamClient(timeout=settings.upstream.timeout_seconds)
    audit_logger = AuditLogger(
        log_path=settings.server.audit_log_path,
        enabled=settings.server.enable_audit,
    )

    dispatcher = ProtocolDispatcher(
        settings=settings,
        tools=tools,
        resources=resources,
        validator=TokenValidator(token_store),
        resolver=resolver,
        upstream=upstream,
        data_source=UpstreamDataSource(resolver, upstream),
        audit_logger=audit_logger,
    )
    return dispatcher, [token_store, upstream]


def create_app(
    settings: Optional[Settings] = None,
    dispatcher: Optional[ProtocolDispatcher] = None,
) -> FastAPI:
    """
    Create the gateway application.

    Passing a prebuilt ``dispatcher`` skips component construction, which
    is how tests wire in fakes.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if settings is not None:
            app_settings = settings
        elif dispatcher is not None:
            app_settings = dispatcher.settings
        else:
            app_settings = get_settings()
        setup_logging(app_settings.effective_log_level, json_output=app_settings.environment == "production")
        logger.info("Starting FastNow MCP gateway")

        closeables: list[Any] = []
        if dispatcher is None:
            built, closeables = build_dispatcher(app_settings)
        else:
            built = dispatcher

        app.state.settings = app_settings
        app.state.dispatcher = built
        logger.info(
            "FastNow MCP gateway started",
            tools=len(built.tools),
            resources=len(built.resources),
            scopes=len(app_settings.oauth.scopes),
        )

        yield

        logger.info("Shutting down FastNow MCP gateway")
        if built.audit_logger is not None:
            await built.audit_logger.flush()
        for component in closeables:
            await component.close()

    app = FastAPI(
        title=SERVER_NAME,
        description="MCP gateway proxying FastNow tools to upstream functions",
        version=SERVER_VERSION,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
        expose_headers=["WWW-Authenticate", "Link"],
    )

    @app.post("/mcp", tags=["MCP"])
    async def mcp_endpoint(request: Request) -> JSONResponse:
        """Handle one MCP envelope."""
        gateway: ProtocolDispatcher = request.app.state.dispatcher
        authorization = request.headers.get("authorization")

        try:
            payload = json.loads(await request.body())
        except (ValueError, UnicodeDecodeError):
            error = ParseError("Request body is not valid JSON")
            outcome = gateway.error_outcome(None, error)
        else:
            outcome = await gateway.dispatch(payload, authorization=authorization)

        return JSONResponse(
            content=outcome.envelope,
            status_code=outcome.status_code,
            headers=outcome.headers,
        )

    @app.get("/mcp", tags=["Discovery"])
    @app.get("/.well-known/mcp.json", tags=["Discovery"])
    async def manifest(request: Request) -> dict[str, Any]:
        """MCP discovery manifest."""
        gateway: ProtocolDispatcher = request.app.state.dispatcher
        return mcp_manifest(request.app.state.settings, tool_count=len(gateway.tools))

    @app.get("/.well-known/oauth-authorization-server", tags=["Discovery"])
    async def authorization_server(request: Request) -> dict[str, Any]:
        """OAuth authorization server metadata (RFC 8414)."""
        return oauth_metadata(request.app.state.settings)

    @app.get("/", tags=["System"])
    async def root(request: Request) -> dict[str, Any]:
        gateway: ProtocolDispatcher = request.app.state.dispatcher
        return {
            "service": SERVER_NAME,
            "status": "running",
            "version": SERVER_VERSION,
            "tools_count": len(gateway.tools),
            "transport": "HTTP POST (request/response)",
            "endpoints": {
                "health": "/health",
                "mcp": "/mcp",
                "manifest": "/.well-known/mcp.json",
            },
        }

    @app.get("/health", tags=["System"])
    async def health_check(request: Request) -> dict[str, Any]:
        """Health check endpoint."""
        gateway: ProtocolDispatcher = request.app.state.dispatcher
        return {
            "status": "ok",
            "service": "fastnow-mcp-gateway",
            "tools": len(gateway.tools),
            "scopes": len(request.app.state.settings.oauth.scopes),
        }

    return app


app = create_app()


def main():
    """Run the gateway."""
    import uvicorn

    settings = get_settings()

    uvicorn.run(
        "fastnow_mcp.main:app",
        host=settings.server.host,
        port=settings.server.port,
        reload=settings.environment == "development",
    )


if __name__ == "__main__":
    main()
