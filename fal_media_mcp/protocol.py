"""JSON-RPC method table shared by every transport.

The stateless HTTP handler feeds whole envelopes through ``Protocol.handle``;
the SDK-driven stream server binds its ``tools/list`` and ``tools/call``
handlers to ``Protocol.tools`` and ``Protocol.invoke``. Both end in the same
dispatcher.
"""

import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from mcp.types import LATEST_PROTOCOL_VERSION, CallToolResult, Tool

from . import SERVER_NAME, __version__
from .config import CONFIG_SCHEMA, RequestConfig
from .dispatcher import Dispatcher
from .errors import InternalError, NotFoundError, ProtocolError, ToolError, ValidationError

logger = logging.getLogger(__name__)

MethodHandler = Callable[[Dict[str, Any], RequestConfig], Awaitable[Dict[str, Any]]]


def result_envelope(request_id: Any, result: Dict[str, Any]) -> Dict[str, Any]:
    return {"jsonrpc": "2.0", "id": request_id, "result": result}


def error_envelope(request_id: Any, error: ToolError) -> Dict[str, Any]:
    return {"jsonrpc": "2.0", "id": request_id, "error": error.to_dict()}


def _dump(model) -> Dict[str, Any]:
    return model.model_dump(mode="json", by_alias=True, exclude_none=True)


class Protocol:
    """Routes protocol methods to the dispatcher."""

    def __init__(self, dispatcher: Dispatcher):
        self.dispatcher = dispatcher
        self.methods: Dict[str, MethodHandler] = {
            "initialize": self._initialize,
            "ping": self._ping,
            "tools/list": self._list_tools,
            "tools/call": self._call_tool,
        }

    # Typed entry points, also used by the SDK stream server.

    def tools(self) -> List[Tool]:
        return self.dispatcher.list_tools()

    async def invoke(self, name: str, arguments: Optional[Dict[str, Any]], config: RequestConfig) -> CallToolResult:
        return await self.dispatcher.call_tool(name, arguments, config)

    # JSON-RPC methods

    async def _initialize(self, params: Dict[str, Any], config: RequestConfig) -> Dict[str, Any]:
        requested = params.get("protocolVersion")
        return {
            "protocolVersion": requested if isinstance(requested, str) and requested else LATEST_PROTOCOL_VERSION,
            "capabilities": {"tools": {}},
            "serverInfo": {"name": SERVER_NAME, "version": __version__},
            "configSchema": CONFIG_SCHEMA,
        }

    async def _ping(self, params: Dict[str, Any], config: RequestConfig) -> Dict[str, Any]:
        return {}

    async def _list_tools(self, params: Dict[str, Any], config: RequestConfig) -> Dict[str, Any]:
        return {"tools": [_dump(tool) for tool in self.tools()]}

    async def _call_tool(self, params: Dict[str, Any], config: RequestConfig) -> Dict[str, Any]:
        name = params.get("name")
        if not isinstance(name, str) or not name:
            raise ValidationError("tools/call requires a tool name", field="name")
        arguments = params.get("arguments")
        if arguments is not None and not isinstance(arguments, dict):
            raise ValidationError("arguments must be an object", tool=name, field="arguments")
        result = await self.invoke(name, arguments, config)
        return _dump(result)

    async def handle(self, message: Any, config: RequestConfig) -> Optional[Dict[str, Any]]:
        """Answer one JSON-RPC message. Notifications return ``None``."""
        if not isinstance(message, dict):
            return error_envelope(None, ProtocolError("Invalid Request: expected a JSON object"))

        request_id = message.get("id")
        method = message.get("method")
        if message.get("jsonrpc", "2.0") != "2.0" or not isinstance(method, str):
            return error_envelope(request_id, ProtocolError("Invalid Request"))

        if "id" not in message:
            logger.debug("Notification received: %s", method)
            return None

        handler = self.methods.get(method)
        if handler is None:
            return error_envelope(request_id, NotFoundError(f"Method '{method}' not found", method=method))

        params = message.get("params")
        if params is None:
            params = {}
        if not isinstance(params, dict):
            return error_envelope(request_id, ValidationError("params must be an object"))

        try:
            return result_envelope(request_id, await handler(params, config))
        except ToolError as e:
            return error_envelope(request_id, e)
        except Exception as e:
            logger.exception("Unhandled error in %s", method)
            return error_envelope(request_id, InternalError(f"{type(e).__name__} - {e}", method=method))
