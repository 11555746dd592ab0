from .agent import FunctionCall, Generation, ToolCallingAgent
from .streamable_http import StreamableHTTPClient, StreamableHTTPError

__all__ = ["FunctionCall", "Generation", "StreamableHTTPClient", "StreamableHTTPError", "ToolCallingAgent"]
