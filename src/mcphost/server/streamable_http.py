"""
Streamable HTTP boundary.

One ASGI endpoint serves the whole protocol on a single path:

- POST submits JSON-RPC messages. Without a session header only an initialize
  request is accepted; it creates the session and the reply carries the new
  id in the ``mcp-session-id`` header.
- GET opens the session's push channel as a Server-Sent Events stream.
- DELETE closes the session.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from http import HTTPStatus
from typing import Any

from sse_starlette import EventSourceResponse
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import Receive, Scope, Send

from mcphost.server.exceptions import PushChannelAlreadyOpenError, SessionClosedError
from mcphost.server.registry import SessionRegistry
from mcphost.server.session import PushChannel, SessionState, SessionTransport
from mcphost.shared import envelope
from mcphost.shared.envelope import DecodedBody
from mcphost.shared.exceptions import EnvelopeDecodeError
from mcphost.types import PROTOCOL_VIOLATION

logger = logging.getLogger(__name__)

MCP_SESSION_ID_HEADER = "mcp-session-id"

# Maximum size for incoming messages
MAXIMUM_MESSAGE_SIZE = 4 * 1024 * 1024  # 4MB

BAD_REQUEST_MESSAGE = "Bad Request: invalid session ID or method."
INTERNAL_ERROR_MESSAGE = "Internal server error."


class StreamableHTTPEndpoint:
    """
    ASGI application translating HTTP verbs into session operations.

    Args:
        registry: The session registry shared by every request
        max_body_bytes: Largest accepted POST body
        sse_ping_interval: Seconds between keep-alive comments on push streams
    """

    def __init__(
        self,
        registry: SessionRegistry,
        *,
        max_body_bytes: int = MAXIMUM_MESSAGE_SIZE,
        sse_ping_interval: int = 15,
    ):
        if max_body_bytes <= 0:
            raise ValueError("max_body_bytes must be positive")
        self.registry = registry
        self.max_body_bytes = max_body_bytes
        self.sse_ping_interval = sse_ping_interval

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        request = Request(scope, receive)

        if request.method == "POST":
            response = await self._handle_post_request(request)
        elif request.method == "GET":
            response = await self._handle_get_request(request)
        elif request.method == "DELETE":
            response = await self._handle_delete_request(request)
        else:
            response = Response(
                "Method Not Allowed",
                status_code=HTTPStatus.METHOD_NOT_ALLOWED,
                headers={"Allow": "GET, POST, DELETE"},
            )

        await response(scope, receive, send)

    async def _handle_post_request(self, request: Request) -> Response:
        session_id = request.headers.get(MCP_SESSION_ID_HEADER)
        logger.debug(f"Received POST request (session: {session_id})")

        try:
            body = await request.body()
            if len(body) > self.max_body_bytes:
                return _error_response(
                    "Payload Too Large: message exceeds maximum size",
                    HTTPStatus.REQUEST_ENTITY_TOO_LARGE,
                )

            # Reuse existing session
            if session_id:
                session = self.registry.lookup(session_id)
                if session is None:
                    return _bad_request()
                return await self._dispatch(session, body)

            # New session
            try:
                decoded = envelope.decode(body)
            except EnvelopeDecodeError:
                return _bad_request()
            if envelope.is_initialize_request(decoded):
                return await self._create_session(decoded)

            return _bad_request()
        except SessionClosedError:
            return _bad_request()
        except Exception:
            logger.exception(f"Error handling MCP request (session: {session_id})")
            return _error_response(INTERNAL_ERROR_MESSAGE, HTTPStatus.INTERNAL_SERVER_ERROR)

    async def _create_session(self, body: DecodedBody) -> Response:
        session = await self.registry.create()
        try:
            payload = await session.handle_inbound(body)
        except Exception:
            await self._discard(session)
            raise

        if session.state is not SessionState.ACTIVE:
            # The initialize request was rejected; the id is never handed out
            logger.info(f"Initialization failed, discarding session {session.session_id}")
            await self._discard(session)
            return _json_response(payload)

        return _json_response(payload, session.session_id)

    async def _dispatch(self, session: SessionTransport, body: bytes) -> Response:
        payload = await session.handle_inbound(body)
        return _json_response(payload, session.session_id)

    async def _handle_get_request(self, request: Request) -> Response:
        session_id = request.headers.get(MCP_SESSION_ID_HEADER)
        session = self.registry.lookup(session_id) if session_id else None
        if session is None:
            return _bad_request()

        logger.info(f"Establishing SSE stream for session {session_id}")
        try:
            channel = await session.open_push()
        except PushChannelAlreadyOpenError:
            return _error_response(
                "Conflict: only one push channel is allowed per session",
                HTTPStatus.CONFLICT,
            )
        except SessionClosedError:
            return _bad_request()

        return EventSourceResponse(
            self._stream_notifications(session, channel),
            headers={MCP_SESSION_ID_HEADER: session.session_id, "Cache-Control": "no-cache, no-transform"},
            ping=self.sse_ping_interval,
        )

    async def _stream_notifications(
        self, session: SessionTransport, channel: PushChannel
    ) -> AsyncIterator[dict[str, Any]]:
        try:
            async for notification in channel:
                yield {"event": "message", "data": envelope.encode(notification).decode()}
        except Exception:
            logger.exception(f"Push channel for session {session.session_id} failed")
            await self._discard(session)
            raise
        finally:
            session.release_push(channel)
            logger.debug(f"SSE stream for session {session.session_id} ended")

    async def _handle_delete_request(self, request: Request) -> Response:
        session_id = request.headers.get(MCP_SESSION_ID_HEADER)
        session = self.registry.lookup(session_id) if session_id else None
        if session is None:
            return _bad_request()

        await self._discard(session)
        return Response(status_code=HTTPStatus.OK)

    async def _discard(self, session: SessionTransport) -> None:
        # Closing also removes the session from the registry
        await session.close()


def _json_response(payload: bytes | None, session_id: str | None = None) -> Response:
    headers = {MCP_SESSION_ID_HEADER: session_id} if session_id else None
    if payload is None:
        return Response(status_code=HTTPStatus.ACCEPTED, headers=headers)
    return Response(payload, status_code=HTTPStatus.OK, headers=headers, media_type="application/json")


def _error_response(message: str, status_code: HTTPStatus, code: int = PROTOCOL_VIOLATION) -> Response:
    return Response(
        envelope.encode(envelope.make_error(message, code=code)),
        status_code=status_code,
        media_type="application/json",
    )


def _bad_request() -> Response:
    return _error_response(BAD_REQUEST_MESSAGE, HTTPStatus.BAD_REQUEST)
