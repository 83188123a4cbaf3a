"""
Core modules for the asyncio app-server bridge.
"""

from .message import (
    ErrorObject,
    ErrorResponse,
    Message,
    MessageKind,
    Notification,
    Request,
    RequestId,
    Response,
)
from .errors import BridgeError, JsonRpcError, RemoteCallError, TransportNotReadyError
from .framing import LineFramer
from .correlator import RequestCorrelator
from .events import BridgeEvent, EventEmitter
from .supervisor import ProcessExit, ProcessSupervisor
from .bridge import AppServerBridge
from .peer import StdioPeer
from .sync_wrapper import SyncWrapper, SyncProxy, AsyncProxy
from .metrics import Metrics, MetricsSnapshot
from .logging import (
    StructuredLogger,
    LogDirection,
    LogEntry,
    LogEvent,
    LogLevel,
    LogHandler,
    default_json_handler,
    default_pretty_handler,
    default_traffic_logger,
)

__all__ = [
    "Message",
    "MessageKind",
    "Request",
    "Notification",
    "Response",
    "ErrorResponse",
    "ErrorObject",
    "RequestId",
    "BridgeError",
    "JsonRpcError",
    "RemoteCallError",
    "TransportNotReadyError",
    "LineFramer",
    "RequestCorrelator",
    "BridgeEvent",
    "EventEmitter",
    "ProcessExit",
    "ProcessSupervisor",
    "AppServerBridge",
    "StdioPeer",
    "SyncWrapper",
    "SyncProxy",
    "AsyncProxy",
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
]
