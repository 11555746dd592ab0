"""
Streamable HTTP client.

A small request/response client for the mcphost server: it initializes a
session, keeps the session id header on every later request, calls tools, and
can follow the session's push channel.
"""

from __future__ import annotations

import itertools
import logging
from collections.abc import AsyncIterator
from types import TracebackType
from typing import Any

import httpx
from httpx_sse import aconnect_sse

import mcphost
from mcphost.shared import envelope
from mcphost.shared.exceptions import McpError
from mcphost.types import (
    LATEST_PROTOCOL_VERSION,
    CallToolResult,
    ClientCapabilities,
    ErrorData,
    Implementation,
    InitializeRequestParams,
    InitializeResult,
    JSONRPCError,
    JSONRPCMessage,
    JSONRPCNotification,
    JSONRPCRequest,
    ListToolsResult,
    LoggingLevel,
    RequestId,
    Tool,
)

logger = logging.getLogger(__name__)

MCP_SESSION_ID = "mcp-session-id"
CONTENT_TYPE = "content-type"
ACCEPT = "accept"

JSON = "application/json"
SSE = "text/event-stream"


class StreamableHTTPError(Exception):
    """Base exception for Streamable HTTP transport errors."""


class StreamableHTTPClient:
    """Client side of one Streamable HTTP session.

    Args:
        url: The server endpoint, e.g. ``http://localhost:3000/mcp``
        http_client: An httpx client to use; one is created (and closed) when omitted
        headers: Extra headers sent with every request
        timeout: Request timeout in seconds for an owned client
    """

    def __init__(
        self,
        url: str,
        *,
        http_client: httpx.AsyncClient | None = None,
        headers: dict[str, str] | None = None,
        timeout: float = 30,
        client_info: Implementation | None = None,
    ):
        self.url = url
        self.headers = headers or {}
        self.client_info = client_info or Implementation(name="mcphost-client", version=mcphost.__version__)
        self.session_id: str | None = None
        self.server_info: Implementation | None = None

        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=timeout, follow_redirects=True)
        self._request_ids = itertools.count(1)

    async def __aenter__(self) -> StreamableHTTPClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        try:
            if self.session_id is not None:
                await self.terminate()
        finally:
            if self._owns_client:
                await self._client.aclose()

    def _prepare_headers(self) -> dict[str, str]:
        headers = {**self.headers, ACCEPT: f"{JSON}, {SSE}", CONTENT_TYPE: JSON}
        if self.session_id:
            headers[MCP_SESSION_ID] = self.session_id
        return headers

    async def _post(self, message: JSONRPCRequest | JSONRPCNotification) -> httpx.Response:
        response = await self._client.post(self.url, content=envelope.encode(message), headers=self._prepare_headers())
        new_session_id = response.headers.get(MCP_SESSION_ID)
        if new_session_id and self.session_id is None:
            self.session_id = new_session_id
            logger.info(f"Received session ID: {new_session_id}")
        return response

    async def send_request(self, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        """Send a request and return its result.

        Raises:
            McpError: the server answered with an error envelope
            StreamableHTTPError: the reply was not a JSON-RPC response
        """
        request_id: RequestId = next(self._request_ids)
        response = await self._post(JSONRPCRequest(id=request_id, method=method, params=params))

        try:
            message = JSONRPCMessage.model_validate_json(response.content).root
        except ValueError as e:
            raise StreamableHTTPError(
                f"Unexpected reply to {method} (HTTP {response.status_code}): {response.text[:200]}"
            ) from e

        if isinstance(message, JSONRPCError):
            raise McpError(message.error)
        if isinstance(message, JSONRPCRequest | JSONRPCNotification):
            raise StreamableHTTPError(f"Expected a response to {method}, got {message.method}")
        if message.id != request_id:
            logger.warning(f"Response id {message.id!r} does not match request id {request_id!r}")
        return message.result

    async def send_notification(self, method: str, params: dict[str, Any] | None = None) -> None:
        response = await self._post(JSONRPCNotification(method=method, params=params))
        if response.status_code >= 400:
            error = error_from_response(response)
            if error is not None:
                raise McpError(error)
            raise StreamableHTTPError(f"Notification {method} rejected with HTTP {response.status_code}")

    async def initialize(self) -> InitializeResult:
        """Open a session: send initialize, keep the session id, acknowledge."""
        params = InitializeRequestParams(
            protocolVersion=LATEST_PROTOCOL_VERSION,
            capabilities=ClientCapabilities(),
            clientInfo=self.client_info,
        )
        result = InitializeResult.model_validate(
            await self.send_request("initialize", params.model_dump(mode="json", exclude_none=True))
        )
        if self.session_id is None:
            raise StreamableHTTPError("Server did not assign a session ID")

        self.server_info = result.serverInfo
        await self.send_notification("notifications/initialized")
        return result

    async def ping(self) -> None:
        await self.send_request("ping")

    async def list_tools(self) -> list[Tool]:
        return ListToolsResult.model_validate(await self.send_request("tools/list")).tools

    async def call_tool(self, name: str, arguments: dict[str, Any] | None = None) -> CallToolResult:
        logger.debug(f"Calling tool {name} with arguments {arguments}")
        result = await self.send_request("tools/call", {"name": name, "arguments": arguments})
        return CallToolResult.model_validate(result)

    async def set_logging_level(self, level: LoggingLevel) -> None:
        await self.send_request("logging/setLevel", {"level": level})

    async def notifications(self) -> AsyncIterator[JSONRPCNotification]:
        """Open the session's push channel and yield notifications as they arrive."""
        if self.session_id is None:
            raise StreamableHTTPError("Session not initialized")

        headers = {**self.headers, ACCEPT: SSE, MCP_SESSION_ID: self.session_id}
        async with aconnect_sse(self._client, "GET", self.url, headers=headers) as event_source:
            event_source.response.raise_for_status()
            async for sse in event_source.aiter_sse():
                if sse.event != "message" or not sse.data:
                    continue
                message = JSONRPCMessage.model_validate_json(sse.data).root
                if isinstance(message, JSONRPCNotification):
                    yield message

    async def terminate(self) -> None:
        """Close the session on the server. Safe to call more than once."""
        if self.session_id is None:
            return
        session_id, self.session_id = self.session_id, None
        try:
            response = await self._client.delete(self.url, headers={**self.headers, MCP_SESSION_ID: session_id})
        except httpx.HTTPError as e:
            logger.warning(f"Session termination failed: {e}")
            return
        if response.status_code >= 400:
            logger.warning(f"Session termination failed: HTTP {response.status_code}")


def error_from_response(response: httpx.Response) -> ErrorData | None:
    """Extract the error payload from an HTTP error reply, if it carries one."""
    try:
        message = JSONRPCMessage.model_validate_json(response.content).root
    except ValueError:
        return None
    return message.error if isinstance(message, JSONRPCError) else None
