"""Core MCP server implementation for declarative endpoints.

This module provides the DynamicMCPServer class which serves as the MCP
server that advertises the engine's tools and routes tool calls to
ExecutionEngine.execute, rendering results and typed errors as text.
"""

import json
import logging
from typing import Any, List

from mcp import types as mcp_types
from mcp.server.lowlevel import Server

from .engine import ExecutionEngine
from .errors import BridgeError, PaginationLimitExceeded
from .models import NormalizedResponse


def format_response(response: NormalizedResponse) -> str:
    """Render a normalized response as text for the calling agent"""
    if response.encoding == "json":
        return json.dumps(response.body, indent=2, ensure_ascii=False)
    if response.encoding == "text":
        return response.body
    if response.encoding == "base64":
        return json.dumps({
            "contentType": response.content_type,
            "encoding": "base64",
            "headers": response.headers,
            "data": response.body,
        }, indent=2)
    return f"Success - status {response.status}, no content returned"


def format_error(error: BridgeError) -> str:
    if isinstance(error, PaginationLimitExceeded):
        lines = [f"Warning ({error.kind}): {error.message}"]
        if error.partial is not None:
            lines.append("")
            lines.append(format_response(error.partial))
        return "\n".join(lines)

    message = f"Error ({error.kind}): {error.message}"
    details = error.details()
    if details:
        message += "\n\n" + json.dumps(details, indent=2, ensure_ascii=False, default=str)
    return message


def to_mcp_tools(engine: ExecutionEngine) -> List[mcp_types.Tool]:
    return [
        mcp_types.Tool(name=tool.name, description=tool.description, inputSchema=tool.input_schema)
        for tool in engine.list_tools()
    ]


class DynamicMCPServer:
    """Pure MCP Server that serves tools from an ExecutionEngine

    This server focuses solely on MCP protocol handling (list_tools, call_tool)
    and delegates validation, dispatch and normalization to the engine.

    Args:
        server_name: Name for the MCP server instance
        engine: ExecutionEngine instance to get tools from
    """

    def __init__(self, server_name: str, engine: ExecutionEngine):
        self.server_name = server_name
        self.server = Server(server_name)
        self.engine = engine
        self._setup_server()
        logging.info(f"[DynamicMCP] Initialized MCP server '{server_name}'")

    def _setup_server(self) -> None:
        """Setup the MCP server with list_tools and call_tool handlers"""

        @self.server.list_tools()
        async def list_tools():
            tool_list = to_mcp_tools(self.engine)
            logging.info(f"[DynamicMCP] Returning {len(tool_list)} tools to MCP client")
            return tool_list

        # The engine reports field-level errors itself.
        @self.server.call_tool(validate_input=False)
        async def call_tool(name: str, arguments: dict):
            return await self.handle_call(name, arguments)

    async def handle_call(self, name: str, arguments: Any) -> List[mcp_types.TextContent]:
        logging.info(f"[DynamicMCP] Tool call: {name} with args: {sorted((arguments or {}).keys())}")
        try:
            response = await self.engine.execute(name, arguments or {})
            text = format_response(response)
            logging.info(f"[DynamicMCP] Tool '{name}' returned status {response.status} ({response.encoding})")
        except BridgeError as e:
            logging.warning(f"[DynamicMCP] Tool '{name}' failed: {e.kind}: {e.message}")
            text = format_error(e)
        return [mcp_types.TextContent(type="text", text=text)]

    def get_server(self) -> Server:
        """Get the configured MCP server instance

        Returns:
            The underlying MCP Server instance
        """
        return self.server


__all__ = [
    "DynamicMCPServer",
    "format_error",
    "format_response",
    "to_mcp_tools",
]
