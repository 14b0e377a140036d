"""Persistent-stream transport built on the MCP SDK's low-level ``Server``.

The same server instance backs stdio and every SSE connection. The
credentials for a connection are bound in a context variable around
``Server.run``; request handlers spawned by the SDK inherit that context, and
pass the config explicitly into the dispatcher.
"""

import logging
from contextvars import ContextVar
from typing import Any, Dict, List, Optional

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from . import SERVER_NAME, __version__
from .config import RequestConfig
from .protocol import Protocol

logger = logging.getLogger(__name__)

_connection_config: ContextVar[Optional[RequestConfig]] = ContextVar(
    "fal_media_mcp_connection_config", default=None
)


def build_stream_server(protocol: Protocol) -> Server:
    server = Server(SERVER_NAME, version=__version__)

    @server.list_tools()
    async def list_tools() -> List[Tool]:
        return protocol.tools()

    @server.call_tool()
    async def call_tool(name: str, arguments: Dict[str, Any]) -> List[TextContent]:
        config = _connection_config.get() or RequestConfig.from_env()
        result = await protocol.invoke(name, arguments, config)
        return result.content

    return server


async def serve_connection(server: Server, read_stream, write_stream, config: RequestConfig) -> None:
    """Run ``server`` over one stream pair with ``config`` as its credentials."""
    token = _connection_config.set(config)
    try:
        await server.run(read_stream, write_stream, server.create_initialization_options())
    finally:
        _connection_config.reset(token)


async def run_stdio(protocol: Protocol, config: RequestConfig) -> None:
    server = build_stream_server(protocol)
    async with stdio_server() as (read_stream, write_stream):
        logger.info("FAL Image/Video MCP server running on stdio")
        await serve_connection(server, read_stream, write_stream, config)
