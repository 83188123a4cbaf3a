"""
Exception taxonomy for the app-server bridge.

Transport and framing faults are delivered through the bridge's ``error``
event; request faults are raised from the awaiting call.
"""

from typing import Any, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .message import ErrorResponse, RequestId


# Standard JSON-RPC error codes
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603


class BridgeError(Exception):
    """Base class for every error raised or emitted by codexlink."""


class AlreadyStartedError(BridgeError):
    """start() was called a second time on the same bridge."""


class TransportNotReadyError(BridgeError):
    """A write was attempted with no live, writable child stdin."""


class SpawnFailure(BridgeError):
    """The child process could not be created."""

    def __init__(self, message: str, os_error: Optional[OSError] = None):
        super().__init__(message)
        self.os_error = os_error


class MalformedLineError(BridgeError):
    """A stdout line is not valid JSON."""

    def __init__(self, line: str, reason: str = ""):
        detail = f": {reason}" if reason else ""
        super().__init__(f"Failed to parse JSON{detail}: {line}")
        self.line = line
        self.reason = reason


class UnclassifiableMessageError(BridgeError):
    """Valid JSON that matches none of the four message shapes."""

    def __init__(self, line: str, value: Any = None):
        super().__init__(f"Unknown JSON-RPC message shape: {line}")
        self.line = line
        self.value = value


class WriteFailure(BridgeError):
    """The child's stdin reported an error after a write."""


class DuplicateIdError(BridgeError):
    """A request id is already pending."""

    def __init__(self, request_id: "RequestId"):
        super().__init__(f"Request id {request_id!r} is already pending")
        self.request_id = request_id


class JsonRpcError(BridgeError):
    """An error with JSON-RPC code/message/data fields."""

    def __init__(self, code: int, message: str, data: Any = None):
        super().__init__(f"[{code}] {message}")
        self.code = code
        self.message = message
        self.data = data


class RemoteCallError(JsonRpcError):
    """A request was rejected by the peer, or by disposal of the bridge."""

    def __init__(self, response: "ErrorResponse"):
        super().__init__(
            response.error.code, response.error.message, response.error.data
        )
        self.response = response

    @property
    def request_id(self) -> "RequestId":
        return self.response.id
