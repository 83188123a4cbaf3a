"""
Structured logging for bridge lifecycle, requests and transport faults.

Provides JSON-formatted logs with pluggable output handlers, plus the
simpler direction-tagged traffic logger for raw wire payloads.
"""

import sys
import time
import json
from dataclasses import dataclass, field, asdict
from typing import Any, Callable, Optional, Dict, Union
from enum import Enum


class LogLevel(Enum):
    """Log levels for structured logging."""

    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


class LogEvent(Enum):
    """Standard log events for bridge operations."""

    # Lifecycle
    BRIDGE_START = "bridge_start"
    BRIDGE_READY = "bridge_ready"
    BRIDGE_DISPOSE = "bridge_dispose"
    BRIDGE_ERROR = "bridge_error"

    # Requests
    REQUEST_START = "request_start"
    REQUEST_END = "request_end"
    REQUEST_ERROR = "request_error"
    RESPONSE_DROPPED = "response_dropped"

    # Process
    PROCESS_SPAWN = "process_spawn"
    PROCESS_SPAWN_FAILED = "process_spawn_failed"
    PROCESS_EXIT = "process_exit"
    PROCESS_KILL = "process_kill"

    # Transport
    MALFORMED_LINE = "malformed_line"
    UNCLASSIFIABLE_MESSAGE = "unclassifiable_message"
    WRITE_FAILED = "write_failed"

    # Observers
    LISTENER_ERROR = "listener_error"


class LogDirection(str, Enum):
    """Direction tag for wire traffic."""

    INBOUND = "inbound"
    OUTBOUND = "outbound"
    STDERR = "stderr"


@dataclass
class LogEntry:
    """
    Structured log entry with all context.

    Can be serialized to JSON or passed to custom handlers.
    """

    # Required
    event: str
    level: str
    message: str
    timestamp: float = field(default_factory=time.time)

    # Context
    bridge_id: Optional[str] = None
    pid: Optional[int] = None
    request_id: Optional[Union[int, str]] = None
    method: Optional[str] = None

    # Timing
    duration_ms: Optional[float] = None

    # Status
    success: Optional[bool] = None
    error: Optional[str] = None
    error_type: Optional[str] = None

    # Custom metadata
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary, omitting None values."""
        result = {}
        for key, value in asdict(self).items():
            if value is not None:
                result[key] = value
        return result

    def to_json(self) -> str:
        """Serialize to JSON string."""
        return json.dumps(self.to_dict(), default=str)


# Type alias for log handler
LogHandler = Callable[[LogEntry], None]

# Type alias for the wire traffic logger
TrafficLogger = Callable[[LogDirection, Any], None]


class StructuredLogger:
    """
    Structured logger with pluggable handlers.

    Usage:
        logger = StructuredLogger(
            handler=lambda entry: print(entry.to_json())
        )

        logger.info(LogEvent.BRIDGE_START, "Bridge started", pid=1234)
        logger.error(LogEvent.WRITE_FAILED, "stdin closed", error="EPIPE")

    Integration with AppServerBridge:
        bridge = AppServerBridge(log_handler=default_pretty_handler)
        bridge.set_log_handler(lambda entry: print(entry.to_json()))
    """

    def __init__(
        self,
        handler: Optional[LogHandler] = None,
        level: LogLevel = LogLevel.INFO,
        bridge_id: Optional[str] = None,
    ):
        self.handler = handler
        self.level = level
        self.bridge_id = bridge_id
        self.pid: Optional[int] = None
        self._level_order = {
            LogLevel.DEBUG: 0,
            LogLevel.INFO: 1,
            LogLevel.WARN: 2,
            LogLevel.ERROR: 3,
        }

    def set_handler(self, handler: Optional[LogHandler]):
        """Set or update the log handler."""
        self.handler = handler

    def set_context(self, bridge_id: Optional[str] = None, pid: Optional[int] = None):
        """Set default context for all log entries."""
        if bridge_id is not None:
            self.bridge_id = bridge_id
        if pid is not None:
            self.pid = pid

    def _should_log(self, level: LogLevel) -> bool:
        """Check if this level should be logged."""
        return self._level_order.get(level, 0) >= self._level_order.get(self.level, 0)

    def log(
        self,
        event: LogEvent,
        message: str,
        level: LogLevel = LogLevel.INFO,
        **kwargs,
    ):
        """
        Log an event with structured data.

        Args:
            event: The event type (from LogEvent enum)
            message: Human-readable message
            level: Log level (default: INFO)
            **kwargs: Additional fields for LogEntry
        """
        if not self.handler or not self._should_log(level):
            return

        kwargs.setdefault("pid", self.pid)
        entry = LogEntry(
            event=event.value,
            level=level.value,
            message=message,
            bridge_id=self.bridge_id,
            **kwargs,
        )

        try:
            self.handler(entry)
        except Exception as e:
            # Don't let logging errors break the bridge
            print(f"Log handler error: {e}", file=sys.stderr)

    def debug(self, event: LogEvent, message: str, **kwargs):
        """Log at DEBUG level."""
        self.log(event, message, level=LogLevel.DEBUG, **kwargs)

    def info(self, event: LogEvent, message: str, **kwargs):
        """Log at INFO level."""
        self.log(event, message, level=LogLevel.INFO, **kwargs)

    def warn(self, event: LogEvent, message: str, **kwargs):
        """Log at WARN level."""
        self.log(event, message, level=LogLevel.WARN, **kwargs)

    def error(self, event: LogEvent, message: str, **kwargs):
        """Log at ERROR level."""
        self.log(event, message, level=LogLevel.ERROR, **kwargs)

    # Convenience methods for common events

    def failure(self, event: LogEvent, error: BaseException, level: LogLevel = LogLevel.ERROR):
        """Log an exception with its type."""
        self.log(
            event,
            str(error),
            level=level,
            error=str(error),
            error_type=type(error).__name__,
        )

    def request_start(self, request_id: Union[int, str], method: str):
        """Log request start."""
        self.debug(
            LogEvent.REQUEST_START,
            f"Calling {method}",
            request_id=request_id,
            method=method,
        )

    def request_end(
        self,
        request_id: Union[int, str],
        method: Optional[str],
        duration_ms: float,
        success: bool = True,
        error: Optional[str] = None,
    ):
        """Log request completion."""
        event = LogEvent.REQUEST_END if success else LogEvent.REQUEST_ERROR
        level = LogLevel.INFO if success else LogLevel.WARN
        self.log(
            event,
            f"{'Completed' if success else 'Failed'} {method}",
            level=level,
            request_id=request_id,
            method=method,
            duration_ms=round(duration_ms, 2),
            success=success,
            error=error,
        )

    def process_spawn(self, pid: int, executable: str):
        """Log child process spawn."""
        self.set_context(pid=pid)
        self.info(
            LogEvent.PROCESS_SPAWN,
            f"Spawned {executable} app-server",
            metadata={"executable": executable},
        )

    def process_exit(self, code: Optional[int], signal: Optional[str]):
        """Log child process exit."""
        level = LogLevel.INFO if code == 0 else LogLevel.WARN
        reason = f"signal {signal}" if signal else f"code {code}"
        self.log(
            LogEvent.PROCESS_EXIT,
            f"Child process exited with {reason}",
            level=level,
            metadata={"exit_code": code, "signal": signal},
        )

    def bridge_dispose(self, rejected: int):
        """Log bridge disposal."""
        self.info(
            LogEvent.BRIDGE_DISPOSE,
            f"Bridge disposed, rejected {rejected} pending request(s)",
            metadata={"rejected": rejected},
        )


def default_json_handler(entry: LogEntry):
    """Default handler that prints JSON to stdout."""
    print(entry.to_json())


def default_pretty_handler(entry: LogEntry):
    """Default handler that prints human-readable output."""
    timestamp = time.strftime("%H:%M:%S", time.localtime(entry.timestamp))
    level = entry.level.upper().ljust(5)
    prefix = f"[{timestamp}] [{level}]"

    parts = [prefix, entry.event, entry.message]

    if entry.request_id is not None:
        parts.append(f"req={entry.request_id}")
    if entry.method:
        parts.append(f"method={entry.method}")
    if entry.duration_ms is not None:
        parts.append(f"{entry.duration_ms:.1f}ms")
    if entry.error:
        parts.append(f"error={entry.error}")

    print(" ".join(parts))


_TRAFFIC_PREFIXES = {
    LogDirection.INBOUND: "← codex",
    LogDirection.OUTBOUND: "codex →",
    LogDirection.STDERR: "codex stderr",
}


def default_traffic_logger(direction: LogDirection, payload: Any):
    """Default traffic logger: a directional prefix and the payload, on stderr."""
    print(_TRAFFIC_PREFIXES[LogDirection(direction)], payload, file=sys.stderr)


def null_traffic_logger(direction: LogDirection, payload: Any):
    """Traffic logger that discards everything."""
