from __future__ import annotations as _annotations

from collections.abc import Callable, Iterable
from typing import Any

from mcphost.server.exceptions import InvalidArgumentsError, ToolError, ToolExecutionError, ToolNotFoundError
from mcphost.server.tools.base import FunctionTool, ToolContext, ToolHandler
from mcphost.types import CallToolRequestParams, CallToolResult, Tool
from mcphost.utilities.logging import get_logger

logger = get_logger(__name__)


class ToolDispatcher:
    """Resolves tool names to registered handlers and executes tool calls.

    Nothing is registered by default; the deploying application adds its tools.
    Calls are independent of each other: the dispatcher keeps no per-call state.
    """

    def __init__(
        self,
        warn_on_duplicate_tools: bool = True,
        *,
        tools: Iterable[ToolHandler] | None = None,
    ):
        self._tools: dict[str, ToolHandler] = {}
        self.warn_on_duplicate_tools = warn_on_duplicate_tools
        for tool in tools or ():
            self.register(tool)

    def register(self, handler: ToolHandler) -> ToolHandler:
        """Register a tool handler. The first handler registered under a name wins."""
        if not handler.name:
            raise ValueError(f"ToolHandler {handler.__class__.__name__} has no name")

        existing = self._tools.get(handler.name)
        if existing is not None:
            if self.warn_on_duplicate_tools:
                logger.warning(f"Tool already exists: {handler.name}")
            return existing

        self._tools[handler.name] = handler
        logger.debug(f"Registered tool: {handler.name}")
        return handler

    def add_tool(
        self,
        fn: Callable[..., Any],
        name: str | None = None,
        description: str | None = None,
    ) -> ToolHandler:
        """Register a plain function as a tool."""
        return self.register(FunctionTool.from_function(fn, name=name, description=description))

    def tool(
        self, name: str | None = None, description: str | None = None
    ) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
        """Decorator to register a function as a tool.

        Example:
            @dispatcher.tool()
            def add(a: int, b: int) -> int:
                return a + b
        """
        if callable(name):
            raise TypeError(
                "The @tool decorator was used incorrectly. Did you forget to call it? Use @tool() instead of @tool"
            )

        def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
            self.add_tool(fn, name=name, description=description)
            return fn

        return decorator

    def get_tool(self, name: str) -> ToolHandler | None:
        return self._tools.get(name)

    def list_tools(self) -> list[Tool]:
        """Describe every registered tool, in registration order."""
        return [handler.describe() for handler in self._tools.values()]

    async def dispatch(self, call: CallToolRequestParams, context: ToolContext | None = None) -> CallToolResult:
        """Execute a tool call.

        Raises:
            InvalidArgumentsError: arguments are missing, the name is empty, or the
                handler rejected the arguments
            ToolNotFoundError: no handler is registered under the name
            ToolExecutionError: the handler raised
        """
        if call.arguments is None:
            raise InvalidArgumentsError("arguments undefined")
        if not call.name:
            raise InvalidArgumentsError("tool name undefined")

        handler = self._tools.get(call.name)
        if handler is None:
            raise ToolNotFoundError(f"Tool not found: {call.name}")

        try:
            return await handler.invoke(call.arguments, context)
        except ToolError:
            raise
        except Exception as e:
            logger.exception(f"Error executing tool {call.name}")
            raise ToolExecutionError(f"Error executing tool {call.name}: {e}") from e
