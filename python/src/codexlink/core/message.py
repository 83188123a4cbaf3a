"""
JSON-RPC message model and classification for the app-server wire format.

Messages are line-delimited JSON without a ``jsonrpc`` version marker, and
are told apart purely by their structural shape.
"""

import json
import math
from dataclasses import dataclass, is_dataclass
from enum import Enum
from typing import Any, ClassVar, Dict, Optional, Tuple, Union

from .errors import MalformedLineError, UnclassifiableMessageError

RequestId = Union[int, str]


class MessageKind(Enum):
    """The four message shapes carried on the wire."""

    REQUEST = "request"
    NOTIFICATION = "notification"
    RESPONSE = "response"
    ERROR = "error"


@dataclass
class Request:
    """A call that expects a reply, in either direction."""

    id: RequestId
    method: str
    params: Any = None

    kind: ClassVar[MessageKind] = MessageKind.REQUEST

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"id": self.id, "method": self.method}
        if self.params is not None:
            payload["params"] = self.params
        return payload


@dataclass
class Notification:
    """A fire-and-forget call without an id."""

    method: str
    params: Any = None

    kind: ClassVar[MessageKind] = MessageKind.NOTIFICATION

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"method": self.method}
        if self.params is not None:
            payload["params"] = self.params
        return payload


@dataclass
class Response:
    """A successful reply correlated by id."""

    id: RequestId
    result: Any = None

    kind: ClassVar[MessageKind] = MessageKind.RESPONSE

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "result": self.result}


@dataclass
class ErrorObject:
    """Body of an error reply."""

    code: int
    message: str
    data: Any = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.data is not None:
            payload["data"] = self.data
        return payload


@dataclass
class ErrorResponse:
    """A failed reply correlated by id."""

    id: RequestId
    error: ErrorObject

    kind: ClassVar[MessageKind] = MessageKind.ERROR

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "error": self.error.to_dict()}


Message = Union[Request, Notification, Response, ErrorResponse]


def _is_number(value: Any) -> bool:
    # bool is an int subclass but never a JSON number
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_request_id(value: Any) -> bool:
    return _is_number(value) or isinstance(value, str)


def classify(raw: Any) -> Optional[Message]:
    """
    Classify a decoded JSON value into one of the four message kinds.

    Rules are evaluated in order and the first match wins, so a payload that
    carries both ``method`` and ``result`` is a request, never a response.

    Returns:
        The classified message, or None if the value matches no shape.
    """
    if not isinstance(raw, dict):
        return None

    id_value = raw.get("id")
    method = raw.get("method")
    has_id = _is_request_id(id_value)
    has_method = isinstance(method, str)

    if has_id and has_method:
        return Request(id=id_value, method=method, params=raw.get("params"))

    if has_method:
        return Notification(method=method, params=raw.get("params"))

    if has_id and "result" in raw:
        return Response(id=id_value, result=raw["result"])

    error = raw.get("error")
    if (
        has_id
        and isinstance(error, dict)
        and _is_number(error.get("code"))
        and isinstance(error.get("message"), str)
    ):
        return ErrorResponse(
            id=id_value,
            error=ErrorObject(
                code=error["code"],
                message=error["message"],
                data=error.get("data"),
            ),
        )

    return None


def _reject_constant(token: str) -> Any:
    raise ValueError(f"Non-standard JSON constant {token}")


def decode_line(line: str) -> Any:
    """Decode one line of JSON, raising MalformedLineError on failure."""
    try:
        return json.loads(line, parse_constant=_reject_constant)
    except ValueError as e:
        raise MalformedLineError(line, str(e)) from e


def parse_line(line: str) -> Tuple[Message, Any]:
    """
    Decode and classify one stdout line.

    Returns:
        (message, raw) where raw is the decoded JSON value as received

    Raises:
        MalformedLineError: the line is not JSON
        UnclassifiableMessageError: the JSON matches no message shape
    """
    raw = decode_line(line)
    message = classify(raw)
    if message is None:
        raise UnclassifiableMessageError(line, raw)
    return message, raw


def _sanitize_for_json(obj: Any) -> Any:
    """Make a value safe for strict JSON.

    Handles:
    - NaN/Infinity -> null
    - Enum members -> their value
    - Non-string keys -> string conversion
    - Message dataclasses -> their wire dict
    """
    if is_dataclass(obj) and hasattr(obj, "to_dict"):
        obj = obj.to_dict()

    if isinstance(obj, dict):
        return {
            (k.value if isinstance(k, Enum) else str(k)): _sanitize_for_json(v)
            for k, v in obj.items()
        }
    elif isinstance(obj, (list, tuple)):
        return [_sanitize_for_json(v) for v in obj]
    elif isinstance(obj, Enum):
        return _sanitize_for_json(obj.value)
    elif isinstance(obj, float):
        if math.isnan(obj) or math.isinf(obj):
            return None
        return obj
    return obj


def encode_message(payload: Any) -> str:
    """Serialize a message or plain payload to a single line of JSON."""
    return json.dumps(
        _sanitize_for_json(payload),
        ensure_ascii=False,
        separators=(",", ":"),
        allow_nan=False,
    )
