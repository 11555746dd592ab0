"""mcphost - a Streamable HTTP session server for the Model Context Protocol."""

__version__ = "0.1.0"

from .server.host import McpHost  # noqa: E402
from .server.tools import FunctionTool, ToolContext, ToolHandler  # noqa: E402
from .shared.exceptions import McpError  # noqa: E402

__all__ = ["FunctionTool", "McpError", "McpHost", "ToolContext", "ToolHandler", "__version__"]
