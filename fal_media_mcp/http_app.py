"""HTTP transport.

``GET /mcp`` opens an SSE channel served by the SDK stream server; its
follow-up ``POST /mcp?session_id=...`` messages are routed back to the SDK.
Any other ``POST /mcp`` is a stateless JSON-RPC exchange answered directly by
the shared protocol table. Credentials come from the environment and can be
overridden per request through dotted query parameters.
"""

import json
import logging

from mcp.server.sse import SseServerTransport
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route
from starlette.types import Receive, Scope, Send

from . import SERVER_NAME, __version__
from .config import RequestConfig, parse_dotted_params
from .errors import ProtocolError
from .protocol import Protocol, error_envelope
from .stream import build_stream_server, serve_connection

logger = logging.getLogger(__name__)

MCP_PATH = "/mcp"
KNOWN_ENDPOINTS = ["GET /mcp", "POST /mcp", "GET /health"]


def request_config(request: Request, base: RequestConfig) -> RequestConfig:
    """Credentials for this request: ``base`` overridden by the URL query."""
    overrides = parse_dotted_params(request.query_params.multi_items())
    return base.merged(overrides)


class McpEndpoint:
    """ASGI endpoint serving both the stream and the stateless side of ``/mcp``."""

    def __init__(self, protocol: Protocol, base_config: RequestConfig):
        self.protocol = protocol
        self.base_config = base_config
        self.stream_server = build_stream_server(protocol)
        self.sse = SseServerTransport(MCP_PATH)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        request = Request(scope, receive)
        config = request_config(request, self.base_config)

        if request.method == "GET":
            logger.info("SSE connection opened from %s", request.client.host if request.client else "?")
            async with self.sse.connect_sse(scope, receive, send) as (read_stream, write_stream):
                await serve_connection(self.stream_server, read_stream, write_stream, config)
            return

        if "session_id" in request.query_params:
            await self.sse.handle_post_message(scope, receive, send)
            return

        response = await self.handle_post(request, config)
        await response(scope, receive, send)

    async def handle_post(self, request: Request, config: RequestConfig) -> Response:
        body = await request.body()
        try:
            message = json.loads(body)
        except ValueError as e:
            return JSONResponse(error_envelope(None, ProtocolError.parse_error(str(e))), status_code=400)

        reply = await self.protocol.handle(message, config)
        if reply is None:
            return Response(status_code=202)
        return JSONResponse(reply)


async def health(request: Request) -> JSONResponse:
    return JSONResponse({"status": "ok", "server": SERVER_NAME, "version": __version__})


async def not_found(request: Request, exc: Exception) -> JSONResponse:
    return JSONResponse(
        {"error": "Not found", "path": request.url.path, "endpoints": KNOWN_ENDPOINTS},
        status_code=404,
    )


def create_app(protocol: Protocol, base_config: RequestConfig, debug: bool = False) -> Starlette:
    return Starlette(
        debug=debug,
        routes=[
            Route(MCP_PATH, endpoint=McpEndpoint(protocol, base_config), methods=["GET", "POST"]),
            Route("/health", endpoint=health, methods=["GET"]),
        ],
        middleware=[
            Middleware(
                CORSMiddleware,
                allow_origins=["*"],
                allow_methods=["GET", "POST", "OPTIONS"],
                allow_headers=["Content-Type"],
            ),
        ],
        exception_handlers={404: not_found},
    )
