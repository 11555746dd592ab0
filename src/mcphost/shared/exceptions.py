from mcphost.types import PROTOCOL_VIOLATION, ErrorData, RequestId


class McpError(Exception):
    """Exception carrying a JSON-RPC error payload.

    Raised on the server side for failures that must reach the client as an
    error envelope, and on the client side when the peer answers with one.

    Attributes:
        error: The ErrorData describing the failure
    """

    error: ErrorData

    def __init__(self, error: ErrorData):
        super().__init__(error.message)
        self.error = error


class EnvelopeDecodeError(McpError):
    """Raised when a request body is not a valid JSON-RPC 2.0 envelope.

    ``request_id`` holds the id of the offending message when it could still be
    read from the raw payload, so the error can be correlated on a best-effort basis.
    """

    def __init__(self, message: str, request_id: RequestId | None = None):
        super().__init__(ErrorData(code=PROTOCOL_VIOLATION, message=message))
        self.request_id = request_id
