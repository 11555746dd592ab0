import httpx
import pytest
from starlette.applications import Starlette

from mcphost import McpError, McpHost
from mcphost.client import StreamableHTTPClient, StreamableHTTPError
from mcphost.client.streamable_http import error_from_response
from mcphost.server.session import SessionState
from mcphost.types import INTERNAL_ERROR, INVALID_PARAMS, PROTOCOL_VIOLATION, TextContent

URL = "http://testserver/mcp"


@pytest.fixture
async def app(host: McpHost):
    app = host.streamable_http_app()
    async with app.router.lifespan_context(app):
        yield app


@pytest.fixture
async def http_client(app: Starlette):
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app)) as client:
        yield client


@pytest.mark.anyio
async def test_initialize(http_client: httpx.AsyncClient, host: McpHost):
    async with StreamableHTTPClient(URL, http_client=http_client) as client:
        result = await client.initialize()

        assert client.session_id is not None
        assert result.serverInfo.name == "test-server"
        assert client.server_info == result.serverInfo
        session = host.registry.lookup(client.session_id)
        assert session is not None
        assert session.state is SessionState.ACTIVE
        assert session.client_info is not None and session.client_info.name == "mcphost-client"


@pytest.mark.anyio
async def test_list_and_call_tools(http_client: httpx.AsyncClient):
    async with StreamableHTTPClient(URL, http_client=http_client) as client:
        await client.initialize()

        tools = await client.list_tools()
        assert [tool.name for tool in tools] == ["add", "echo", "shout", "fail"]

        result = await client.call_tool("add", {"a": 20, "b": 22})
        assert result.content == [TextContent(text="42")]
        assert not result.isError

        await client.ping()
        await client.set_logging_level("warning")


@pytest.mark.anyio
async def test_tool_errors_raise_mcp_error(http_client: httpx.AsyncClient):
    async with StreamableHTTPClient(URL, http_client=http_client) as client:
        await client.initialize()

        with pytest.raises(McpError) as exc_info:
            await client.call_tool("missing", {})
        assert exc_info.value.error.code == INVALID_PARAMS

        with pytest.raises(McpError) as exc_info:
            await client.call_tool("fail", {})
        assert exc_info.value.error.code == INTERNAL_ERROR


@pytest.mark.anyio
async def test_request_before_initialize_is_rejected(http_client: httpx.AsyncClient):
    async with StreamableHTTPClient(URL, http_client=http_client) as client:
        with pytest.raises(McpError) as exc_info:
            await client.list_tools()

        assert exc_info.value.error.code == PROTOCOL_VIOLATION
        assert client.session_id is None


@pytest.mark.anyio
async def test_exit_terminates_session(http_client: httpx.AsyncClient, host: McpHost):
    async with StreamableHTTPClient(URL, http_client=http_client) as client:
        await client.initialize()
        session_id = client.session_id
        assert session_id is not None

    assert client.session_id is None
    assert host.registry.lookup(session_id) is None
    assert not http_client.is_closed


@pytest.mark.anyio
async def test_terminate_twice(http_client: httpx.AsyncClient):
    client = StreamableHTTPClient(URL, http_client=http_client)
    await client.initialize()

    await client.terminate()
    await client.terminate()

    assert client.session_id is None


@pytest.mark.anyio
async def test_notifications_require_session(http_client: httpx.AsyncClient):
    client = StreamableHTTPClient(URL, http_client=http_client)

    with pytest.raises(StreamableHTTPError):
        async for _ in client.notifications():
            pass  # pragma: no cover


@pytest.mark.anyio
async def test_non_json_reply(http_client: httpx.AsyncClient):
    client = StreamableHTTPClient("http://testserver/elsewhere", http_client=http_client)

    with pytest.raises(StreamableHTTPError):
        await client.ping()


@pytest.mark.anyio
async def test_error_from_response(http_client: httpx.AsyncClient):
    response = await http_client.post(URL, json={"jsonrpc": "2.0", "id": 1, "method": "ping"})

    error = error_from_response(response)

    assert response.status_code == 400
    assert error is not None
    assert error.message == "Bad Request: invalid session ID or method."


@pytest.mark.anyio
async def test_rejected_notification_raises_server_error(http_client: httpx.AsyncClient):
    client = StreamableHTTPClient(URL, http_client=http_client)
    client.session_id = "not-a-session"

    with pytest.raises(McpError) as exc_info:
        await client.send_notification("notifications/initialized")

    assert exc_info.value.error.code == PROTOCOL_VIOLATION
    assert exc_info.value.error.message == "Bad Request: invalid session ID or method."
