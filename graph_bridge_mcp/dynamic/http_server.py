import contextlib
import logging
import os
import sys
from collections.abc import AsyncIterator

from mcp.server.streamable_http_manager import StreamableHTTPSessionManager
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Mount, Route
from starlette.types import Receive, Scope, Send

from graph_bridge_mcp.dynamic.config import BridgeConfig
from graph_bridge_mcp.dynamic.core import DynamicMCPServer
from graph_bridge_mcp.dynamic.engine import ExecutionEngine, create_engine

logging.basicConfig(stream=sys.stderr, level=logging.INFO, format='[%(levelname)s] %(message)s')

SERVER_NAME = "graph-bridge-mcp"


def build_app(engine: ExecutionEngine, *, debug: bool = False) -> Starlette:
    """Build the Starlette application around an engine

    Args:
        engine: ExecutionEngine serving the tools
        debug: Starlette debug mode

    Returns:
        Starlette application exposing MCP at / plus the admin routes
    """
    dynamic_server = DynamicMCPServer(SERVER_NAME, engine)

    session_manager = StreamableHTTPSessionManager(
        app=dynamic_server.get_server(),
        event_store=None,
        json_response=True,
        stateless=True,
    )

    async def handle_streamable_http(scope: Scope, receive: Receive, send: Send) -> None:
        """Handle MCP protocol requests via streamable HTTP"""
        await session_manager.handle_request(scope, receive, send)

    async def list_endpoints_handler(request: Request) -> JSONResponse:
        """List the endpoint descriptors that back the advertised tools"""
        endpoints = [
            engine.descriptors.get(name).to_dict() for name in engine.tool_names
        ]
        return JSONResponse({
            "success": True,
            "endpoints": endpoints,
            "count": len(endpoints),
        })

    async def scopes_handler(request: Request) -> JSONResponse:
        """Union of permission scopes the loaded tools declare"""
        scopes = sorted({s for tool in engine.list_tools() for s in tool.required_scopes})
        return JSONResponse({"scopes": scopes})

    async def health_handler(request: Request) -> JSONResponse:
        return JSONResponse({
            "status": "healthy",
            "server": SERVER_NAME,
            "tools_count": len(engine.tool_names),
        })

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        """Run the session manager and release the engine's transport on exit"""
        async with session_manager.run():
            tool_names = engine.tool_names
            logging.info(f"[DynamicHTTP] {len(tool_names)} tools ready: {tool_names}")
            if not tool_names:
                logging.warning("[DynamicHTTP] No tools available! The MCP client won't see any tools.")
            try:
                yield
            finally:
                logging.info("[DynamicHTTP] Server shutting down...")
                await engine.close()

    return Starlette(
        debug=debug,
        routes=[
            Route("/api/endpoints", list_endpoints_handler, methods=["GET"]),
            Route("/api/scopes", scopes_handler, methods=["GET"]),
            Route("/health", health_handler, methods=["GET"]),
            Mount("/", app=handle_streamable_http),
        ],
        lifespan=lifespan,
    )


def main() -> None:
    """Main function to start the MCP HTTP server"""
    port = int(os.getenv("PORT", 8080))
    host = os.getenv("HOST", "0.0.0.0")

    config = BridgeConfig.from_env()
    engine = create_engine(config)
    starlette_app = build_app(engine)

    logging.info(f"[DynamicHTTP] Starting on {host}:{port} against {config.base_url}")
    logging.info(f"[DynamicHTTP]   - POST http://{host}:{port}/ (MCP protocol)")
    logging.info(f"[DynamicHTTP]   - GET http://{host}:{port}/api/endpoints (List endpoints)")
    logging.info(f"[DynamicHTTP]   - GET http://{host}:{port}/health (Health check)")

    import uvicorn
    uvicorn.run(starlette_app, host=host, port=port)


if __name__ == "__main__":
    main()

__all__ = [
    "build_app",
    "main",
]
