"""Wire types for the JSON-RPC envelopes and the MCP payloads carried inside them."""

from typing import Annotated, Any, Final, Literal

from pydantic import BaseModel, ConfigDict, Field, RootModel

JSONRPC_VERSION: Final[str] = "2.0"

LATEST_PROTOCOL_VERSION: Final[str] = "2025-03-26"
SUPPORTED_PROTOCOL_VERSIONS: Final[tuple[str, ...]] = ("2024-11-05", LATEST_PROTOCOL_VERSION)

# Standard JSON-RPC error codes
PARSE_ERROR: Final[int] = -32700
INVALID_REQUEST: Final[int] = -32600
METHOD_NOT_FOUND: Final[int] = -32601
INVALID_PARAMS: Final[int] = -32602
INTERNAL_ERROR: Final[int] = -32603

# Application-level protocol violation (bad session, unknown method, malformed envelope)
PROTOCOL_VIOLATION: Final[int] = -32000

RequestId = Annotated[int, Field(strict=True)] | str


class JSONRPCBase(BaseModel):
    """Base class for all JSON-RPC messages.

    Extra fields are forbidden so that an envelope mixing request and response
    members matches no variant.
    """

    model_config = ConfigDict(extra="forbid")

    jsonrpc: Literal["2.0"] = JSONRPC_VERSION


class JSONRPCRequest(JSONRPCBase):
    """A request that expects a response."""

    id: RequestId
    method: str
    params: dict[str, Any] | None = None


class JSONRPCNotification(JSONRPCBase):
    """A notification which does not expect a response."""

    method: str
    params: dict[str, Any] | None = None


class JSONRPCResponse(JSONRPCBase):
    """A successful (non-error) response to a request."""

    id: RequestId
    result: dict[str, Any]


class ErrorData(BaseModel):
    """Error information in a JSON-RPC error response."""

    model_config = ConfigDict(extra="allow")

    code: int
    message: str
    data: Any | None = None


class JSONRPCError(JSONRPCBase):
    """A response to a request that indicates an error occurred."""

    error: ErrorData
    id: RequestId | None = None


class JSONRPCMessage(RootModel[JSONRPCRequest | JSONRPCNotification | JSONRPCResponse | JSONRPCError]):
    pass


class MCPModel(BaseModel):
    """Base class for MCP payload types. Allows extra fields for forward compatibility."""

    model_config = ConfigDict(extra="allow")


class Implementation(MCPModel):
    """Name and version of an MCP implementation."""

    name: str
    version: str


class ClientCapabilities(MCPModel):
    experimental: dict[str, dict[str, Any]] | None = None
    sampling: dict[str, Any] | None = None
    roots: dict[str, Any] | None = None


class ServerCapabilities(MCPModel):
    experimental: dict[str, dict[str, Any]] | None = None
    logging: dict[str, Any] | None = None
    tools: dict[str, Any] | None = None


class InitializeRequestParams(MCPModel):
    protocolVersion: str
    capabilities: ClientCapabilities
    clientInfo: Implementation


class InitializeResult(MCPModel):
    protocolVersion: str
    capabilities: ServerCapabilities
    serverInfo: Implementation
    instructions: str | None = None


class Tool(MCPModel):
    """Definition for a tool the client can call."""

    name: str
    description: str | None = None
    inputSchema: dict[str, Any]


class ListToolsResult(MCPModel):
    tools: list[Tool]


class TextContent(MCPModel):
    type: Literal["text"] = "text"
    text: str


class ImageContent(MCPModel):
    type: Literal["image"] = "image"
    data: str
    """Base64-encoded image data."""
    mimeType: str


ContentBlock = TextContent | ImageContent


class CallToolRequestParams(MCPModel):
    name: str
    arguments: dict[str, Any] | None = None


class CallToolResult(MCPModel):
    """The server's response to a tool call."""

    content: list[ContentBlock]
    isError: bool = False


LoggingLevel = Literal["debug", "info", "notice", "warning", "error", "critical", "alert", "emergency"]

LOGGING_LEVEL_ORDER: Final[tuple[str, ...]] = (
    "debug",
    "info",
    "notice",
    "warning",
    "error",
    "critical",
    "alert",
    "emergency",
)


class SetLevelRequestParams(MCPModel):
    level: LoggingLevel


class LoggingMessageNotificationParams(MCPModel):
    level: LoggingLevel
    logger: str | None = None
    data: Any


class CancelledNotificationParams(MCPModel):
    requestId: RequestId
    reason: str | None = None
