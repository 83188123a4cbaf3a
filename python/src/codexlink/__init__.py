"""
codexlink - JSON-RPC bridge to a long-lived `codex app-server` process

The bridge spawns the app server, frames its stdout into newline-delimited
JSON, classifies every message, correlates replies with outbound requests
and lets the app server send requests of its own (approval prompts).

## Quick Start

### Start a conversation
```python
from codexlink import AppServerBridge, protocol

async with AppServerBridge(cwd="/path/to/project") as bridge:
    # `initialize` was already sent by start()
    conversation = await bridge.acall.new_conversation({"model": "o4-mini"})
    conversation_id = conversation["conversationId"]

    await bridge.acall.add_conversation_listener({"conversationId": conversation_id})
    await bridge.send_user_message(
        protocol.user_message_params(conversation_id, protocol.text_item("Hello"))
    )
```

### Observe traffic and answer approval requests
```python
from codexlink import AppServerBridge, Request, protocol

bridge = AppServerBridge()

def on_message(message, raw):
    if isinstance(message, Request) and message.method in (
        protocol.ServerRequestMethod.EXEC_COMMAND_APPROVAL,
        protocol.ServerRequestMethod.APPLY_PATCH_APPROVAL,
    ):
        bridge.send_response(
            message.id, protocol.approval_result(protocol.ReviewDecision.DENIED)
        )

bridge.on("message", on_message)
bridge.on("exit", lambda code, signal: print("app server exited", code, signal))
bridge.on("error", lambda error: print("bridge error", error))
await bridge.start()
```

### Blocking use
```python
bridge = AppServerBridge()
bridge.call.start()
conversation = bridge.call.new_conversation({})
bridge.call.close()
```

### With Observability (Metrics & Logging)
```python
from codexlink import AppServerBridge, default_json_handler, null_traffic_logger

bridge = AppServerBridge(
    log_handler=default_json_handler, traffic_logger=null_traffic_logger
)
await bridge.start()

snapshot = bridge.metrics.snapshot()
print(f"Avg latency: {snapshot.latency_avg_ms}ms")
```

## Exports

- AppServerBridge: The bridge facade
- StdioPeer: Base class for the server side of the pipe (fake app servers)
- Request, Notification, Response, ErrorResponse, ErrorObject: Message types
- BridgeError and subclasses: Error taxonomy
- Metrics: Metrics collection for observability
- StructuredLogger: Structured logging
"""

__version__ = "0.1.0"

from .core import protocol
from .core.bridge import AppServerBridge
from .core.errors import (
    AlreadyStartedError,
    BridgeError,
    DuplicateIdError,
    JsonRpcError,
    MalformedLineError,
    RemoteCallError,
    SpawnFailure,
    TransportNotReadyError,
    UnclassifiableMessageError,
    WriteFailure,
)
from .core.events import BridgeEvent
from .core.message import (
    ErrorObject,
    ErrorResponse,
    MessageKind,
    Notification,
    Request,
    Response,
    classify,
    encode_message,
    parse_line,
)
from .core.metrics import Metrics, MetricsSnapshot
from .core.logging import (
    StructuredLogger,
    LogDirection,
    LogEntry,
    LogEvent,
    LogLevel,
    LogHandler,
    default_json_handler,
    default_pretty_handler,
    default_traffic_logger,
    null_traffic_logger,
)
from .core.peer import StdioPeer
from .core.sync_wrapper import SyncWrapper

__all__ = [
    # Core
    "AppServerBridge",
    "BridgeEvent",
    "StdioPeer",
    "SyncWrapper",
    "protocol",
    # Messages
    "MessageKind",
    "Request",
    "Notification",
    "Response",
    "ErrorResponse",
    "ErrorObject",
    "classify",
    "encode_message",
    "parse_line",
    # Errors
    "BridgeError",
    "AlreadyStartedError",
    "TransportNotReadyError",
    "SpawnFailure",
    "MalformedLineError",
    "UnclassifiableMessageError",
    "WriteFailure",
    "DuplicateIdError",
    "JsonRpcError",
    "RemoteCallError",
    # Metrics
    "Metrics",
    "MetricsSnapshot",
    # Logging
    "StructuredLogger",
    "LogDirection",
    "LogEntry",
    "LogEvent",
    "LogLevel",
    "LogHandler",
    "default_json_handler",
    "default_pretty_handler",
    "default_traffic_logger",
    "null_traffic_logger",
]
