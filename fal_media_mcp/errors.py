"""Error taxonomy shared by the dispatcher and both transports.

Every error carries an MCP ``ErrorData`` so the stateless HTTP handler can put
it straight into a JSON-RPC ``error`` object, while the SDK-driven transports
turn it into an ``isError`` tool result.
"""

from typing import Any, Optional

from mcp.shared.exceptions import McpError
from mcp.types import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    PARSE_ERROR,
    ErrorData,
)


class ToolError(McpError):
    """Base class for structured, per-call failures."""

    kind = "internal"
    code = INTERNAL_ERROR

    def __init__(self, message: str, code: Optional[int] = None, **data: Any):
        payload = {"kind": self.kind}
        payload.update({k: v for k, v in data.items() if v is not None})
        super().__init__(ErrorData(code=code or self.code, message=message, data=payload))

    @property
    def message(self) -> str:
        return self.error.message

    def to_dict(self) -> dict:
        return self.error.model_dump(exclude_none=True)


class NotFoundError(ToolError):
    kind = "not_found"
    code = METHOD_NOT_FOUND


class ValidationError(ToolError):
    kind = "validation"
    code = INVALID_PARAMS


class ConfigError(ToolError):
    """Raised before any upstream call when a required credential is missing."""

    kind = "config"
    code = INVALID_PARAMS


class UpstreamError(ToolError):
    """The generation call failed or returned an unexpected shape."""

    kind = "upstream"
    code = INTERNAL_ERROR


class ProtocolError(ToolError):
    kind = "protocol"
    code = INVALID_REQUEST

    @classmethod
    def parse_error(cls, detail: str) -> "ProtocolError":
        return cls(f"Parse error: {detail}", code=PARSE_ERROR)


class InternalError(ToolError):
    kind = "internal"
    code = INTERNAL_ERROR
