"""
JSON-RPC 2.0 envelope codec.

Decodes raw HTTP bodies into validated JSONRPCMessage objects (single messages
or batches), encodes messages back to compact JSON, and builds the error and
notification envelopes the server emits on its own.
"""

import json
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any
from uuid import uuid4

import pydantic_core
from pydantic import BaseModel, ValidationError

from mcphost.shared.exceptions import EnvelopeDecodeError
from mcphost.types import (
    JSONRPC_VERSION,
    PROTOCOL_VIOLATION,
    ErrorData,
    InitializeRequestParams,
    JSONRPCError,
    JSONRPCMessage,
    JSONRPCNotification,
    JSONRPCRequest,
    RequestId,
)


@dataclass
class DecodedBody:
    """The messages found in one request body."""

    messages: list[JSONRPCMessage]
    is_batch: bool


def decode(raw: bytes | str) -> DecodedBody:
    """Decode a request body into one or more JSON-RPC messages.

    Raises:
        EnvelopeDecodeError: if the body is not valid JSON, is an empty batch, or
            contains an element that is not a well-formed JSON-RPC 2.0 message.
            A batch with a single bad element is rejected as a whole.
    """
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise EnvelopeDecodeError(f"Parse error: {e}") from e

    if isinstance(data, list):
        if not data:
            raise EnvelopeDecodeError("Invalid Request: empty batch")
        return DecodedBody(messages=[_decode_one(item) for item in data], is_batch=True)

    return DecodedBody(messages=[_decode_one(data)], is_batch=False)


def _decode_one(item: Any) -> JSONRPCMessage:
    if not isinstance(item, dict):
        raise EnvelopeDecodeError("Invalid Request: message must be a JSON object")

    request_id = _best_effort_id(item)
    if item.get("jsonrpc") != JSONRPC_VERSION:
        raise EnvelopeDecodeError('Invalid Request: "jsonrpc" must be "2.0"', request_id)

    try:
        return JSONRPCMessage.model_validate(item)
    except ValidationError as e:
        raise EnvelopeDecodeError(
            f"Invalid Request: not a valid JSON-RPC message ({e.error_count()} validation errors)",
            request_id,
        ) from e


def _best_effort_id(item: dict[str, Any]) -> RequestId | None:
    request_id = item.get("id")
    if isinstance(request_id, str) or (isinstance(request_id, int) and not isinstance(request_id, bool)):
        return request_id
    return None


def _dump(message: BaseModel) -> Any:
    return message.model_dump(mode="json", by_alias=True, exclude_none=True)


def encode(message: BaseModel | Sequence[BaseModel]) -> bytes:
    """Encode a message, or a batch of messages, as compact JSON.

    The ``jsonrpc`` member is a defaulted field on every envelope model, so it is
    always present in the output.
    """
    if isinstance(message, BaseModel):
        return pydantic_core.to_json(_dump(message))
    return pydantic_core.to_json([_dump(m) for m in message])


def make_error(
    message: str,
    request_id: RequestId | None = None,
    code: int = PROTOCOL_VIOLATION,
    data: Any | None = None,
) -> JSONRPCError:
    """Build an error response.

    When no request id is known (transport-level failures such as an unknown
    session or an unparseable body) a fresh token is used as the id. Strict
    JSON-RPC correlation is relaxed here; callers that know the id must pass it.
    """
    return JSONRPCError(
        error=ErrorData(code=code, message=message, data=data),
        id=request_id if request_id is not None else str(uuid4()),
    )


def make_notification(method: str, params: BaseModel | dict[str, Any] | None = None) -> JSONRPCNotification:
    if isinstance(params, BaseModel):
        params = params.model_dump(mode="json", by_alias=True, exclude_none=True)
    return JSONRPCNotification(method=method, params=params)


def is_initialize_request(body: DecodedBody) -> bool:
    """Return True if the decoded body is, or is a batch containing, an initialize request."""
    return any(_is_initialize(message.root) for message in body.messages)


def _is_initialize(message: Any) -> bool:
    if not isinstance(message, JSONRPCRequest) or message.method != "initialize":
        return False
    try:
        InitializeRequestParams.model_validate(message.params or {})
    except ValidationError:
        return False
    return True
