import anyio
import pytest
import sse_starlette
from packaging import version

from mcphost import McpHost, ToolContext

SSE_STARLETTE_VERSION = version.parse(sse_starlette.__version__)
NEEDS_RESET = SSE_STARLETTE_VERSION < version.parse("3.0.0")


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def reset_sse_app_status():
    """Reset sse-starlette's global AppStatus singleton before each test.

    AppStatus.should_exit_event is a global asyncio.Event that gets bound to
    an event loop. Versions 3.0+ use context-local events and need no reset.
    """
    if not NEEDS_RESET:
        yield
        return

    # lazy import to avoid import errors
    from sse_starlette.sse import AppStatus

    AppStatus.should_exit_event = anyio.Event()  # type: ignore[attr-defined]

    yield

    AppStatus.should_exit_event = anyio.Event()  # type: ignore[attr-defined]


@pytest.fixture
def host() -> McpHost:
    host = McpHost("test-server", version="9.9.9")

    @host.tool()
    def add(a: int, b: int) -> int:
        """Add two numbers."""
        return a + b

    @host.tool()
    async def echo(text: str) -> str:
        """Echo the input text."""
        return text

    @host.tool()
    async def shout(text: str, ctx: ToolContext) -> str:
        await ctx.info(f"shouting {text}")
        return text.upper()

    @host.tool()
    def fail() -> str:
        raise RuntimeError("boom")

    return host
