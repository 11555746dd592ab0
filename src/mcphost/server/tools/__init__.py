from .base import FunctionTool, ToolContext, ToolHandler
from .dispatcher import ToolDispatcher

__all__ = ["FunctionTool", "ToolContext", "ToolDispatcher", "ToolHandler"]
