"""McpHost - serve a set of tools over the Streamable HTTP transport."""

from __future__ import annotations as _annotations

import contextlib
from collections.abc import AsyncIterator, Callable, Iterable
from typing import Any, Literal

import anyio
from pydantic_settings import BaseSettings, SettingsConfigDict
from starlette.applications import Starlette
from starlette.routing import Route

import mcphost
from mcphost.server.registry import SessionRegistry
from mcphost.server.session import SessionTransport
from mcphost.server.streamable_http import MAXIMUM_MESSAGE_SIZE, StreamableHTTPEndpoint
from mcphost.server.tools import ToolDispatcher, ToolHandler
from mcphost.types import CallToolRequestParams, CallToolResult, Implementation, Tool
from mcphost.utilities.logging import configure_logging, get_logger

logger = get_logger(__name__)


class Settings(BaseSettings):
    """McpHost server settings.

    All settings can be configured via environment variables with the prefix MCPHOST_.
    For example, MCPHOST_PORT=8080 will set port=8080.
    """

    model_config = SettingsConfigDict(
        env_prefix="MCPHOST_",
        env_file=".env",
        extra="ignore",
    )

    # Server settings
    debug: bool = False
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"

    # HTTP settings
    host: str = "127.0.0.1"
    port: int = 3000
    streamable_http_path: str = "/mcp"
    max_body_bytes: int = MAXIMUM_MESSAGE_SIZE

    # Push channel settings
    push_buffer_size: int = 16
    sse_ping_interval: int = 15

    # tool settings
    warn_on_duplicate_tools: bool = True


class McpHost:
    """Serves registered tools to MCP clients over Streamable HTTP.

    Args:
        name: Server name reported to clients during initialization
        version: Server version reported to clients; defaults to the package version
        instructions: Optional instructions returned from initialize
        tools: Tool handlers to register up front
        **settings: Overrides for any field of Settings
    """

    def __init__(
        self,
        name: str = "mcphost",
        version: str | None = None,
        instructions: str | None = None,
        *,
        tools: Iterable[ToolHandler] | None = None,
        **settings: Any,
    ):
        self.settings = Settings(**settings)
        self.server_info = Implementation(name=name, version=version or mcphost.__version__)
        self.instructions = instructions

        self._dispatcher = ToolDispatcher(warn_on_duplicate_tools=self.settings.warn_on_duplicate_tools, tools=tools)
        self._registry = SessionRegistry(self._create_session)

        configure_logging(self.settings.log_level)

    @property
    def name(self) -> str:
        return self.server_info.name

    @property
    def dispatcher(self) -> ToolDispatcher:
        return self._dispatcher

    @property
    def registry(self) -> SessionRegistry:
        return self._registry

    def _create_session(self, session_id: str) -> SessionTransport:
        return SessionTransport(
            session_id,
            dispatcher=self._dispatcher,
            server_info=self.server_info,
            instructions=self.instructions,
            push_buffer_size=self.settings.push_buffer_size,
        )

    def add_tool(
        self,
        fn: Callable[..., Any],
        name: str | None = None,
        description: str | None = None,
    ) -> None:
        """Add a function as a tool."""
        self._dispatcher.add_tool(fn, name=name, description=description)

    def register_tool(self, handler: ToolHandler) -> None:
        """Add a ToolHandler implementation."""
        self._dispatcher.register(handler)

    def tool(
        self, name: str | None = None, description: str | None = None
    ) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
        """Decorator to register a tool.

        Example:
            @host.tool()
            def echo(text: str) -> str:
                return text
        """
        return self._dispatcher.tool(name=name, description=description)

    def list_tools(self) -> list[Tool]:
        return self._dispatcher.list_tools()

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> CallToolResult:
        """Call a tool directly, outside of any session."""
        return await self._dispatcher.dispatch(CallToolRequestParams(name=name, arguments=arguments))

    @contextlib.asynccontextmanager
    async def lifespan(self, app: Starlette) -> AsyncIterator[None]:
        logger.info(f"{self.name} streamable HTTP server started")
        try:
            yield
        finally:
            logger.info("Shutting down server...")
            await self._registry.close_all()

    def streamable_http_app(self) -> Starlette:
        """Return an instance of the Streamable HTTP server app."""
        endpoint = StreamableHTTPEndpoint(
            self._registry,
            max_body_bytes=self.settings.max_body_bytes,
            sse_ping_interval=self.settings.sse_ping_interval,
        )
        return Starlette(
            debug=self.settings.debug,
            routes=[Route(self.settings.streamable_http_path, endpoint=endpoint)],
            lifespan=self.lifespan,
        )

    async def run_streamable_http_async(self) -> None:
        """Run the server using the Streamable HTTP transport."""
        import uvicorn

        config = uvicorn.Config(
            self.streamable_http_app(),
            host=self.settings.host,
            port=self.settings.port,
            log_level=self.settings.log_level.lower(),
        )
        server = uvicorn.Server(config)
        logger.info(
            f"MCP Streamable HTTP Server listening on "
            f"http://{self.settings.host}:{self.settings.port}{self.settings.streamable_http_path}"
        )
        await server.serve()

    def run(self) -> None:
        """Run the server. This is a synchronous function."""
        anyio.run(self.run_streamable_http_async)


def main() -> None:
    """Serve an McpHost with no tools registered, configured from the environment."""
    McpHost().run()
