"""
Per-session protocol state for the Streamable HTTP server.

A SessionTransport owns everything that belongs to one client connection: the
initialization state, the negotiated protocol version, the logging level set by
the client and the single outbound push channel used for notifications.
Inbound bodies are processed one at a time per session.
"""

from __future__ import annotations

import logging
from enum import Enum
from collections.abc import Awaitable, Callable
from typing import Any

import anyio
from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream
from pydantic import ValidationError

from mcphost.server.exceptions import PushChannelAlreadyOpenError, SessionClosedError
from mcphost.server.tools import ToolContext, ToolDispatcher
from mcphost.shared import envelope
from mcphost.shared.envelope import DecodedBody
from mcphost.shared.exceptions import EnvelopeDecodeError, McpError
from mcphost.types import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    LATEST_PROTOCOL_VERSION,
    LOGGING_LEVEL_ORDER,
    SUPPORTED_PROTOCOL_VERSIONS,
    CallToolRequestParams,
    CancelledNotificationParams,
    ClientCapabilities,
    Implementation,
    InitializeRequestParams,
    InitializeResult,
    JSONRPCError,
    JSONRPCNotification,
    JSONRPCRequest,
    JSONRPCResponse,
    ListToolsResult,
    LoggingLevel,
    LoggingMessageNotificationParams,
    ServerCapabilities,
    SetLevelRequestParams,
)

logger = logging.getLogger(__name__)

PUSH_CHANNEL_ESTABLISHED = "SSE Connection established"


class SessionState(str, Enum):
    INITIALIZING = "initializing"
    ACTIVE = "active"
    CLOSED = "closed"


class PushChannelState(str, Enum):
    UNOPENED = "unopened"
    OPEN = "open"
    CLOSED = "closed"


class PushChannel:
    """
    One server-to-client notification stream.

    Moves UNOPENED -> OPEN -> CLOSED exactly once. The transport writes
    notifications into a bounded in-memory stream; the HTTP layer drains it by
    iterating over the channel until it is closed.
    """

    def __init__(self, max_buffer_size: int = 16):
        self.state = PushChannelState.UNOPENED
        self._max_buffer_size = max_buffer_size
        self._writer: MemoryObjectSendStream[JSONRPCNotification] | None = None
        self._reader: MemoryObjectReceiveStream[JSONRPCNotification] | None = None

    def open(self) -> None:
        if self.state is not PushChannelState.UNOPENED:
            raise RuntimeError(f"Push channel cannot be opened from state {self.state.value}")
        self._writer, self._reader = anyio.create_memory_object_stream[JSONRPCNotification](self._max_buffer_size)
        self.state = PushChannelState.OPEN

    @property
    def is_open(self) -> bool:
        return self.state is PushChannelState.OPEN

    async def send(self, notification: JSONRPCNotification) -> bool:
        """Queue a notification. Returns False if the channel is not open."""
        if not self.is_open or self._writer is None:
            return False
        try:
            await self._writer.send(notification)
        except (anyio.ClosedResourceError, anyio.BrokenResourceError):
            # Reader went away between the state check and the send
            self.close()
            return False
        return True

    def close(self) -> None:
        """Close the channel. Safe to call in any state, any number of times."""
        if self.state is PushChannelState.CLOSED:
            return
        self.state = PushChannelState.CLOSED
        if self._writer is not None:
            self._writer.close()

    def __aiter__(self) -> PushChannel:
        return self

    async def __anext__(self) -> JSONRPCNotification:
        if self._reader is None:
            raise StopAsyncIteration
        try:
            return await self._reader.receive()
        except (anyio.EndOfStream, anyio.ClosedResourceError):
            raise StopAsyncIteration

    def release(self) -> None:
        """Close both ends of the channel, discarding anything still buffered."""
        self.close()
        if self._reader is not None:
            self._reader.close()


class SessionTransport:
    """
    Protocol state and push channel for one client session.

    handle_inbound() decodes a request body, answers every request it contains
    and returns the encoded reply. Calls are serialized by a per-session lock;
    different sessions never wait on each other.
    """

    def __init__(
        self,
        session_id: str,
        dispatcher: ToolDispatcher,
        server_info: Implementation,
        instructions: str | None = None,
        push_buffer_size: int = 16,
    ):
        self.session_id = session_id
        self.dispatcher = dispatcher
        self.server_info = server_info
        self.instructions = instructions
        self.state = SessionState.INITIALIZING

        self.protocol_version: str | None = None
        self.client_info: Implementation | None = None
        self.client_capabilities: ClientCapabilities | None = None
        self.logging_level: LoggingLevel = "debug"

        self._push_buffer_size = push_buffer_size
        self._push_channel: PushChannel | None = None
        self._lock = anyio.Lock()
        # Set by the registry so that closing the session also deregisters it
        self.on_close: Callable[[str], Awaitable[Any]] | None = None

    @property
    def is_closed(self) -> bool:
        return self.state is SessionState.CLOSED

    @property
    def push_channel(self) -> PushChannel | None:
        return self._push_channel

    async def handle_inbound(self, raw: bytes | str | DecodedBody) -> bytes | None:
        """Process one request body and return the encoded reply.

        The body may be passed already decoded by the caller.

        Returns None when the body held only notifications or responses.

        Raises:
            SessionClosedError: if the session was closed
        """
        async with self._lock:
            if self.is_closed:
                raise SessionClosedError(f"Session {self.session_id} is closed")

            if isinstance(raw, DecodedBody):
                body = raw
            else:
                try:
                    body = envelope.decode(raw)
                except EnvelopeDecodeError as e:
                    logger.warning(f"Session {self.session_id}: undecodable message: {e}")
                    return envelope.encode(envelope.make_error(e.error.message, e.request_id))

            replies: list[JSONRPCResponse | JSONRPCError] = []
            for message in body.messages:
                reply = await self._handle_message(message.root)
                if reply is not None:
                    replies.append(reply)

            if not replies:
                return None
            return envelope.encode(replies if body.is_batch else replies[0])

    async def _handle_message(self, message: Any) -> JSONRPCResponse | JSONRPCError | None:
        if isinstance(message, JSONRPCRequest):
            return await self._handle_request(message)
        if isinstance(message, JSONRPCNotification):
            self._handle_notification(message)
            return None
        # This server never issues requests, so responses from the client are unexpected
        logger.debug(f"Session {self.session_id}: ignoring response message {message.id!r}")
        return None

    async def _handle_request(self, request: JSONRPCRequest) -> JSONRPCResponse | JSONRPCError:
        logger.debug(f"Session {self.session_id}: handling {request.method} (id={request.id!r})")
        try:
            if request.method == "initialize":
                if self.state is not SessionState.INITIALIZING:
                    return envelope.make_error("Invalid Request: session already initialized.", request.id)
                result = self._initialize(request)
            elif request.method == "ping":
                result = {}
            elif self.state is not SessionState.ACTIVE:
                return envelope.make_error("Bad Request: session not initialized.", request.id)
            elif request.method == "tools/list":
                result = ListToolsResult(tools=self.dispatcher.list_tools()).model_dump(
                    mode="json", by_alias=True, exclude_none=True
                )
            elif request.method == "tools/call":
                result = await self._call_tool(request)
            elif request.method == "logging/setLevel":
                result = self._set_logging_level(request)
            else:
                return envelope.make_error(f"Method not found: {request.method}", request.id)
        except McpError as e:
            return JSONRPCError(error=e.error, id=request.id)
        except ValidationError as e:
            return envelope.make_error(f"Invalid params: {e}", request.id, code=INVALID_PARAMS)
        except Exception:
            logger.exception(f"Session {self.session_id}: unexpected failure handling {request.method}")
            return envelope.make_error("Internal error", request.id, code=INTERNAL_ERROR)

        return JSONRPCResponse(id=request.id, result=result)

    def _handle_notification(self, notification: JSONRPCNotification) -> None:
        if notification.method == "notifications/initialized":
            logger.debug(f"Session {self.session_id}: client reported initialized")
        elif notification.method == "notifications/cancelled":
            try:
                params = CancelledNotificationParams.model_validate(notification.params or {})
            except ValidationError:
                logger.debug(f"Session {self.session_id}: malformed cancellation notification")
                return
            # Requests are answered synchronously, so there is nothing in flight to cancel
            logger.debug(f"Session {self.session_id}: client cancelled {params.requestId!r} ({params.reason})")
        else:
            logger.debug(f"Session {self.session_id}: ignoring notification {notification.method}")

    def _initialize(self, request: JSONRPCRequest) -> dict[str, Any]:
        params = InitializeRequestParams.model_validate(request.params or {})
        if params.protocolVersion in SUPPORTED_PROTOCOL_VERSIONS:
            self.protocol_version = params.protocolVersion
        else:
            self.protocol_version = LATEST_PROTOCOL_VERSION
        self.client_info = params.clientInfo
        self.client_capabilities = params.capabilities
        self.state = SessionState.ACTIVE

        logger.info(
            f"Session {self.session_id} initialized by {params.clientInfo.name} {params.clientInfo.version} "
            f"(protocol {self.protocol_version})"
        )
        return InitializeResult(
            protocolVersion=self.protocol_version,
            capabilities=ServerCapabilities(tools={}, logging={}),
            serverInfo=self.server_info,
            instructions=self.instructions,
        ).model_dump(mode="json", by_alias=True, exclude_none=True)

    async def _call_tool(self, request: JSONRPCRequest) -> dict[str, Any]:
        call = CallToolRequestParams.model_validate(request.params or {})
        logger.info(f"Session {self.session_id}: calling tool {call.name!r}")
        result = await self.dispatcher.dispatch(call, ToolContext(self, request.id))
        return result.model_dump(mode="json", by_alias=True, exclude_none=True)

    def _set_logging_level(self, request: JSONRPCRequest) -> dict[str, Any]:
        params = SetLevelRequestParams.model_validate(request.params or {})
        self.logging_level = params.level
        logger.debug(f"Session {self.session_id}: logging level set to {params.level}")
        return {}

    async def open_push(self) -> PushChannel:
        """Open the session's push channel.

        The channel starts with an info-level notification so the client knows the
        stream is live.

        Raises:
            PushChannelAlreadyOpenError: a push channel is already open
            SessionClosedError: the session was closed
        """
        if self.is_closed:
            raise SessionClosedError(f"Session {self.session_id} is closed")
        if self._push_channel is not None and self._push_channel.is_open:
            raise PushChannelAlreadyOpenError(f"Session {self.session_id} already has an open push channel")

        channel = PushChannel(self._push_buffer_size)
        channel.open()
        self._push_channel = channel
        logger.info(f"Push channel opened for session {self.session_id}")

        await channel.send(
            envelope.make_notification(
                "notifications/message",
                LoggingMessageNotificationParams(level="info", data=PUSH_CHANNEL_ESTABLISHED),
            )
        )
        return channel

    def release_push(self, channel: PushChannel) -> None:
        """Release a push channel whose consumer has gone away.

        A later open_push() may then open a fresh channel for this session.
        """
        channel.release()
        if self._push_channel is channel:
            self._push_channel = None
            logger.info(f"Push channel closed for session {self.session_id}")

    async def send_notification(self, notification: JSONRPCNotification) -> bool:
        """Send a notification over the push channel.

        Returns False, and drops the notification, when no channel is open.
        """
        channel = self._push_channel
        if channel is None or not await channel.send(notification):
            logger.debug(f"Session {self.session_id}: no open push channel, dropping {notification.method}")
            return False
        return True

    async def send_log_message(self, level: LoggingLevel, data: Any, logger_name: str | None = None) -> bool:
        """Send a notifications/message, honouring the level set by the client."""
        if LOGGING_LEVEL_ORDER.index(level) < LOGGING_LEVEL_ORDER.index(self.logging_level):
            return False
        return await self.send_notification(
            envelope.make_notification(
                "notifications/message",
                LoggingMessageNotificationParams(level=level, logger=logger_name, data=data),
            )
        )

    async def close(self) -> None:
        """Close the push channel, mark the session closed and run on_close.

        Does not wait for an in-flight handle_inbound, so it can be called at any
        time (for example by a timeout) and any number of times.
        """
        if self.is_closed:
            return
        self.state = SessionState.CLOSED
        if self._push_channel is not None:
            self._push_channel.close()
            self._push_channel = None
        logger.info(f"Session {self.session_id} closed")
        if self.on_close is not None:
            await self.on_close(self.session_id)


__all__ = ["PushChannel", "PushChannelState", "SessionState", "SessionTransport"]
