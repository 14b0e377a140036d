#!/usr/bin/env python3
"""
MCP Server for fal.ai image and video generation.

Exposes the model registry as MCP tools over stdio (default) or HTTP. HTTP is
selected when PORT is set, MCP_TRANSPORT=http, or --http is passed.
"""

import argparse
import asyncio
import logging
import os
import socket
import sys
from typing import List, Optional

import uvicorn

from .config import RequestConfig, ServerSettings
from .dispatcher import Dispatcher
from .http_app import create_app
from .protocol import Protocol
from .stream import run_stdio

logger = logging.getLogger(__name__)

PORT_SEARCH_ATTEMPTS = 100


def configure_logging(level: str = "INFO") -> None:
    """Send all logs to stderr; stdout belongs to the stdio transport."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="[%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )


def find_available_port(start: int, host: str = "0.0.0.0", attempts: int = PORT_SEARCH_ATTEMPTS) -> int:
    """Return the first port at or above ``start`` that can be bound."""
    for port in range(start, start + attempts):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            try:
                sock.bind((host, port))
            except OSError:
                logger.info("Port %d in use, trying %d", port, port + 1)
                continue
        return port
    raise RuntimeError(f"No free port found in {start}-{start + attempts - 1}")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="fal.ai image/video MCP server")
    parser.add_argument("--http", action="store_true", help="Serve MCP over HTTP instead of stdio")
    parser.add_argument("--host", default=None, help="Host to bind in HTTP mode")
    parser.add_argument("--port", type=int, default=None, help="First port to try in HTTP mode")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> None:
    """Entry point for the MCP server."""
    args = parse_args(argv)
    configure_logging(os.environ.get("LOG_LEVEL", "INFO"))

    settings = ServerSettings.from_env(force_http=args.http)
    overrides = {}
    if args.host:
        overrides["host"] = args.host
    if args.port and not settings.port_is_exact:
        overrides["port"] = args.port
    if overrides:
        settings = settings.model_copy(update=overrides)

    base_config = RequestConfig.from_env()
    if not base_config.fal_key:
        logger.warning("FAL_KEY is not set; tool calls need it from the environment or the request URL")

    protocol = Protocol(Dispatcher(settings))

    if settings.use_http:
        port = settings.port if settings.port_is_exact else find_available_port(settings.port, settings.host)
        app = create_app(protocol, base_config)
        logger.info("FAL Image/Video MCP server running on HTTP port %d at /mcp", port)
        uvicorn.run(app, host=settings.host, port=port, log_level=settings.log_level.lower())
    else:
        asyncio.run(run_stdio(protocol, base_config))


if __name__ == "__main__":
    main()
