from .host import McpHost, Settings
from .registry import SessionRegistry
from .session import PushChannel, SessionState, SessionTransport
from .streamable_http import MCP_SESSION_ID_HEADER, StreamableHTTPEndpoint

__all__ = [
    "MCP_SESSION_ID_HEADER",
    "McpHost",
    "PushChannel",
    "SessionRegistry",
    "SessionState",
    "SessionTransport",
    "Settings",
    "StreamableHTTPEndpoint",
]
