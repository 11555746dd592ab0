"""Exceptions raised by the server side of mcphost."""

from typing import Any

from mcphost.shared.exceptions import McpError
from mcphost.types import INTERNAL_ERROR, INVALID_PARAMS, ErrorData


class ToolError(McpError):
    """Error in tool operations.

    Carries the JSON-RPC error code the failure is reported with. Subclasses
    pick the code; handlers may raise ToolError directly to choose their own.
    """

    code: int = INTERNAL_ERROR

    def __init__(self, message: str, code: int | None = None, data: Any | None = None):
        super().__init__(ErrorData(code=code if code is not None else self.code, message=message, data=data))


class ToolNotFoundError(ToolError):
    """No handler is registered under the requested tool name."""

    code = INVALID_PARAMS


class InvalidArgumentsError(ToolError):
    """The tool call is missing its arguments or name, or they failed validation."""

    code = INVALID_PARAMS


class ToolExecutionError(ToolError):
    """The handler raised while executing."""


class InvalidSignature(Exception):
    """A function cannot be exposed as a tool."""


class PushChannelAlreadyOpenError(Exception):
    """A push channel is already open for this session."""


class SessionClosedError(Exception):
    """The session has been closed and accepts no more traffic."""


class SessionIdCollisionError(RuntimeError):
    """The id generator returned an id that is already registered."""
