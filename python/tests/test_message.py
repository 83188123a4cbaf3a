"""
Tests for the JSON-RPC message model and classifier.

Tests cover:
- Classification precedence across the four shapes
- Id and error-object validation
- Line parsing failures (malformed JSON, unknown shapes)
- Wire encoding (omitted fields, sanitization, compact output)
"""

import json
import math
import sys
import os
from enum import Enum

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from codexlink.core.errors import MalformedLineError, UnclassifiableMessageError
from codexlink.core.message import (
    ErrorObject,
    ErrorResponse,
    MessageKind,
    Notification,
    Request,
    Response,
    classify,
    decode_line,
    encode_message,
    parse_line,
)


class TestMessageKind:
    """Test MessageKind enum."""

    def test_kinds_exist(self):
        """Test that all four kinds are defined."""
        assert MessageKind.REQUEST.value == "request"
        assert MessageKind.NOTIFICATION.value == "notification"
        assert MessageKind.RESPONSE.value == "response"
        assert MessageKind.ERROR.value == "error"

    def test_kind_on_each_message(self):
        """Each message class carries its kind."""
        assert Request(id=1, method="m").kind is MessageKind.REQUEST
        assert Notification(method="m").kind is MessageKind.NOTIFICATION
        assert Response(id=1).kind is MessageKind.RESPONSE
        assert ErrorResponse(id=1, error=ErrorObject(1, "x")).kind is MessageKind.ERROR


class TestClassify:
    """Test structural classification."""

    def test_request(self):
        """id + method is a request."""
        message = classify({"id": 7, "method": "execCommandApproval", "params": {"a": 1}})
        assert message == Request(id=7, method="execCommandApproval", params={"a": 1})

    def test_request_with_string_id(self):
        """String ids are accepted."""
        message = classify({"id": "abc", "method": "ping"})
        assert isinstance(message, Request)
        assert message.id == "abc"
        assert message.params is None

    def test_notification(self):
        """method without id is a notification."""
        message = classify({"method": "codex/event", "params": {"msg": {}}})
        assert message == Notification(method="codex/event", params={"msg": {}})

    def test_response(self):
        """id + result is a response."""
        assert classify({"id": 3, "result": {"ok": True}}) == Response(id=3, result={"ok": True})

    def test_response_with_null_result(self):
        """A null result still makes a response."""
        message = classify({"id": 3, "result": None})
        assert isinstance(message, Response)
        assert message.result is None

    def test_error(self):
        """id + well-formed error is an error response."""
        message = classify(
            {"id": 4, "error": {"code": -32601, "message": "nope", "data": [1]}}
        )
        assert message == ErrorResponse(
            id=4, error=ErrorObject(code=-32601, message="nope", data=[1])
        )

    def test_method_wins_over_result(self):
        """A payload with both method and result is a request."""
        message = classify({"id": 1, "method": "m", "result": 5})
        assert isinstance(message, Request)

    def test_method_with_invalid_id_is_notification(self):
        """A method with a non-id `id` value falls through to notification."""
        message = classify({"id": {"nested": 1}, "method": "m"})
        assert isinstance(message, Notification)

    def test_result_wins_over_error(self):
        """result is checked before error."""
        message = classify({"id": 1, "result": 1, "error": {"code": 1, "message": "x"}})
        assert isinstance(message, Response)

    def test_boolean_id_rejected(self):
        """Booleans are not JSON numbers."""
        assert classify({"id": True, "result": 1}) is None

    def test_null_id_rejected(self):
        """A null id matches nothing but a notification."""
        assert classify({"id": None, "result": 1}) is None

    def test_float_id_accepted(self):
        """Any JSON number is an id."""
        assert isinstance(classify({"id": 1.5, "result": 1}), Response)

    def test_error_without_code_rejected(self):
        """An error object needs a numeric code."""
        assert classify({"id": 1, "error": {"message": "x"}}) is None
        assert classify({"id": 1, "error": {"code": "1", "message": "x"}}) is None
        assert classify({"id": 1, "error": {"code": True, "message": "x"}}) is None

    def test_error_without_message_rejected(self):
        """An error object needs a string message."""
        assert classify({"id": 1, "error": {"code": 1}}) is None
        assert classify({"id": 1, "error": {"code": 1, "message": 2}}) is None

    def test_non_object_values(self):
        """Arrays, scalars and null classify to nothing."""
        for value in ([], [1, 2], "text", 42, None, True):
            assert classify(value) is None

    def test_empty_object(self):
        """An empty object classifies to nothing."""
        assert classify({}) is None

    def test_jsonrpc_marker_is_ignored(self):
        """Extra fields do not affect classification."""
        message = classify({"jsonrpc": "2.0", "id": 1, "result": "x"})
        assert message == Response(id=1, result="x")


class TestParseLine:
    """Test line decoding."""

    def test_parse_valid_line(self):
        """A valid line yields the message and the raw value."""
        message, raw = parse_line('{"id":1,"result":{"conversationId":"c"}}')
        assert message == Response(id=1, result={"conversationId": "c"})
        assert raw == {"id": 1, "result": {"conversationId": "c"}}

    def test_malformed_line(self):
        """Invalid JSON raises MalformedLineError carrying the line."""
        with pytest.raises(MalformedLineError) as exc_info:
            parse_line("not json")
        assert exc_info.value.line == "not json"
        assert "not json" in str(exc_info.value)

    def test_truncated_line(self):
        """A cut-off object is malformed."""
        with pytest.raises(MalformedLineError):
            parse_line('{"id": 1, "res')

    def test_nan_constant_rejected(self):
        """NaN and Infinity are not JSON."""
        with pytest.raises(MalformedLineError):
            decode_line('{"id": 1, "result": NaN}')
        with pytest.raises(MalformedLineError):
            decode_line("-Infinity")

    def test_unknown_shape(self):
        """Valid JSON of no known shape raises UnclassifiableMessageError."""
        with pytest.raises(UnclassifiableMessageError) as exc_info:
            parse_line('{"hello": "world"}')
        assert str(exc_info.value) == 'Unknown JSON-RPC message shape: {"hello": "world"}'
        assert exc_info.value.value == {"hello": "world"}

    def test_unicode_payload(self):
        """Non-ASCII text survives decoding."""
        message, _ = parse_line('{"method":"codex/event","params":{"text":"héllo 世界 🚀"}}')
        assert message.params["text"] == "héllo 世界 🚀"


class TestEncodeMessage:
    """Test wire encoding."""

    def test_request_omits_missing_params(self):
        """params is left out when None."""
        assert encode_message(Request(id=1, method="initialize")) == '{"id":1,"method":"initialize"}'

    def test_request_with_params(self):
        """params is written when present."""
        encoded = encode_message(Request(id=2, method="newConversation", params={}))
        assert json.loads(encoded) == {"id": 2, "method": "newConversation", "params": {}}

    def test_notification(self):
        """Notifications carry no id."""
        encoded = encode_message(Notification(method="initialized"))
        assert encoded == '{"method":"initialized"}'

    def test_response_always_has_result(self):
        """A response writes result even when it is null."""
        assert encode_message(Response(id="s-1")) == '{"id":"s-1","result":null}'

    def test_error_response(self):
        """Error responses nest the error object and omit missing data."""
        encoded = encode_message(ErrorResponse(id=5, error=ErrorObject(-32601, "Method not found")))
        assert encoded == '{"id":5,"error":{"code":-32601,"message":"Method not found"}}'

    def test_single_line(self):
        """Embedded newlines are escaped so the output is one line."""
        encoded = encode_message(Notification(method="m", params={"text": "a\nb\r\nc"}))
        assert "\n" not in encoded
        assert "\r" not in encoded

    def test_unicode_kept_verbatim(self):
        """Non-ASCII characters are not escaped."""
        encoded = encode_message(Notification(method="m", params={"text": "世界"}))
        assert "世界" in encoded

    def test_special_floats_become_null(self):
        """NaN and Infinity are sanitized to null."""
        encoded = encode_message({"values": [math.nan, math.inf, -math.inf, 1.5]})
        assert json.loads(encoded) == {"values": [None, None, None, 1.5]}

    def test_enum_values(self):
        """Enums serialize as their value."""

        class Decision(str, Enum):
            APPROVED = "approved"

        encoded = encode_message({"decision": Decision.APPROVED})
        assert json.loads(encoded) == {"decision": "approved"}

    def test_non_string_keys(self):
        """Non-string keys are converted to strings."""
        assert json.loads(encode_message({1: "a", 2.5: "b"})) == {"1": "a", "2.5": "b"}

    def test_unserializable_raises(self):
        """Objects with no JSON form raise TypeError."""
        with pytest.raises(TypeError):
            encode_message({"value": object()})
