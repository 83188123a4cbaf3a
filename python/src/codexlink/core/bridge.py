"""
Async bridge to a long-lived ``codex app-server`` child process.
"""

import asyncio
import itertools
import os
import sys
import time
import uuid
from typing import Any, Mapping, Optional, Set, TYPE_CHECKING

from .. import __version__
from . import protocol
from .correlator import RequestCorrelator
from .errors import (
    AlreadyStartedError,
    BridgeError,
    MalformedLineError,
    RemoteCallError,
    TransportNotReadyError,
    UnclassifiableMessageError,
    WriteFailure,
)
from .events import BridgeEvent, EventEmitter
from .logging import (
    LogDirection,
    LogEvent,
    LogHandler,
    LogLevel,
    StructuredLogger,
    TrafficLogger,
    default_traffic_logger,
)
from .message import (
    ErrorObject,
    ErrorResponse,
    Notification,
    Request,
    RequestId,
    Response,
    encode_message,
    parse_line,
)
from .metrics import Metrics
from .supervisor import ProcessExit, ProcessSupervisor

if TYPE_CHECKING:
    from .sync_wrapper import AsyncProxy, SyncProxy

DISPOSED_ERROR_CODE = -1
DISPOSED_ERROR_MESSAGE = "App server bridge disposed"
NOT_READY_MESSAGE = "App server process not ready to accept input"


class AppServerBridge(EventEmitter):
    """
    Bidirectional JSON-RPC bridge over the stdio of ``codex app-server``.

    Events (see BridgeEvent):
    - ready(): the child process exists and can accept writes
    - message(message, raw): every classified inbound message
    - raw(line): every inbound stdout line, unmodified
    - exit(code, signal): the child exited
    - error(exc): spawn, framing and write faults

    Usage:
        bridge = AppServerBridge(cwd="/path/to/project")
        bridge.on("message", lambda message, raw: print(message))
        await bridge.start()   # also sends `initialize` by default

        response = await bridge.new_conversation({"model": "o4-mini"})
        conversation_id = response.result["conversationId"]

        await bridge.close()

    As a context manager:
        async with AppServerBridge() as bridge:
            result = await bridge.acall.new_conversation({})
    """

    def __init__(
        self,
        executable: Optional[str] = None,
        cwd: Optional[str] = None,
        env: Optional[Mapping[str, Optional[str]]] = None,
        traffic_logger: Optional[TrafficLogger] = None,
        auto_initialize: bool = True,
        client_info: Optional[dict] = None,
        log_handler: Optional[LogHandler] = None,
        log_level: LogLevel = LogLevel.INFO,
        enable_metrics: bool = True,
        kill_process_tree: bool = True,
        shutdown_grace: float = 2.0,
    ):
        """
        Args:
            executable: Path to the codex executable (default: $CODEX_BIN, then `codex`)
            cwd: Working directory for the app server (default: current directory)
            env: Environment overrides; None values unset inherited variables
            traffic_logger: Callable(direction, payload) for wire traffic
            auto_initialize: Send `initialize` from start() and await its reply
            client_info: clientInfo sent with the automatic `initialize`
            log_handler: Optional handler for structured logs
            log_level: Minimum structured log level
            enable_metrics: Whether to collect metrics
            kill_process_tree: Also terminate the child's descendants on dispose
            shutdown_grace: Seconds close() waits before escalating to SIGKILL
        """
        self._bridge_id = str(uuid.uuid4())[:8]
        self._logger = StructuredLogger(
            handler=log_handler, level=log_level, bridge_id=self._bridge_id
        )
        super().__init__(on_listener_error=self._log_listener_failure)

        self.executable = (
            executable
            or os.environ.get(protocol.EXECUTABLE_ENV_VAR)
            or protocol.DEFAULT_EXECUTABLE
        )
        self.cwd = cwd or os.getcwd()
        self.env = dict(env or {})
        self.traffic_logger = traffic_logger or default_traffic_logger
        self.auto_initialize = auto_initialize
        self.client_info = client_info or protocol.client_info("codexlink", __version__)
        self.shutdown_grace = shutdown_grace

        self.enable_metrics = enable_metrics
        self._metrics = Metrics() if enable_metrics else None

        self._supervisor = ProcessSupervisor(
            self.executable,
            [protocol.APP_SERVER_SUBCOMMAND],
            cwd=self.cwd,
            env=self.env,
            on_stdout_line=self._handle_line,
            on_stderr_line=self._handle_stderr_line,
            on_exit=self._handle_exit,
            on_error=self._emit_error,
            logger=self._logger,
            kill_process_tree=kill_process_tree,
        )
        self._correlator = RequestCorrelator()
        self._ids = itertools.count(1)

        self._started = False
        self._disposed = False
        # Created on first use so they bind to the loop that runs the bridge
        self._ready: Optional[asyncio.Event] = None
        self._drain_lock: Optional[asyncio.Lock] = None
        self._drain_tasks: Set[asyncio.Task] = set()

        self._sync_proxy: Optional["SyncProxy"] = None
        self._async_proxy: Optional["AsyncProxy"] = None

    @property
    def metrics(self) -> Optional[Metrics]:
        """Get the metrics collector."""
        return self._metrics

    @property
    def logger(self) -> StructuredLogger:
        """Get the structured logger."""
        return self._logger

    def set_log_handler(self, handler: Optional[LogHandler]):
        """Set a custom structured log handler."""
        self._logger.set_handler(handler)

    @property
    def is_started(self) -> bool:
        return self._started

    @property
    def is_ready(self) -> bool:
        """True once the gate opened with a live process handle behind it."""
        if self._ready is None or not self._ready.is_set():
            return False
        return self._supervisor.process is not None

    @property
    def is_disposed(self) -> bool:
        return self._disposed

    @property
    def pid(self) -> Optional[int]:
        return self._supervisor.pid

    @property
    def pending_count(self) -> int:
        return len(self._correlator)

    @property
    def acall(self) -> "AsyncProxy":
        """
        Asynchronous proxy interface returning only `result`.

        Usage:
            await bridge.start()
            result = await bridge.acall.new_conversation({"model": "o4-mini"})
        """
        if self._async_proxy is None:
            from .sync_wrapper import AsyncProxy

            self._async_proxy = AsyncProxy(self)
        return self._async_proxy

    @property
    def call(self) -> "SyncProxy":
        """
        Synchronous proxy interface; runs the bridge on a background loop.

        Usage:
            bridge.call.start()
            result = bridge.call.new_conversation({})
            bridge.call.close()
        """
        if self._sync_proxy is None:
            from .sync_wrapper import SyncProxy

            self._sync_proxy = SyncProxy(self)
        return self._sync_proxy

    def _ready_event(self) -> asyncio.Event:
        if self._ready is None:
            self._ready = asyncio.Event()
        return self._ready

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self):
        """
        Spawn the app server and, unless disabled, send `initialize`.

        A spawn failure is delivered through the `error` event only.

        Raises:
            AlreadyStartedError: if called more than once
            RemoteCallError: if the automatic `initialize` is rejected
        """
        if self._started:
            raise AlreadyStartedError("AppServerBridge already started")
        self._started = True

        self._logger.info(
            LogEvent.BRIDGE_START,
            f"Starting {self.executable} {protocol.APP_SERVER_SUBCOMMAND}",
            metadata={"cwd": self.cwd},
        )

        try:
            spawned = await self._supervisor.spawn()
        finally:
            # Release waiters either way; without a process they fail the write guard
            self._ready_event().set()
        if not spawned:
            return
        if self._disposed:
            self._supervisor.terminate()
            return

        self._logger.debug(LogEvent.BRIDGE_READY, "Bridge ready to accept writes")
        self.emit(BridgeEvent.READY)

        if self.auto_initialize:
            await self.initialize()

    async def wait_until_ready(self):
        """Wait for the one-shot readiness gate; returns at once if it already fired."""
        await self._ready_event().wait()

    def dispose(self):
        """
        Reject every pending request and terminate the child if alive.

        Safe to call more than once, and before start().
        """
        synthetic = ErrorResponse(
            id=-1,
            error=ErrorObject(code=DISPOSED_ERROR_CODE, message=DISPOSED_ERROR_MESSAGE),
        )
        rejected = self._correlator.reject_all(synthetic)
        if self._metrics and rejected:
            self._metrics.record_disposed(rejected)

        first = not self._disposed
        self._disposed = True
        if self._ready is not None:
            self._ready.set()
        self._supervisor.terminate()

        if first:
            self._logger.bridge_dispose(rejected)

    async def close(self):
        """Dispose, then wait for the child to exit (escalating to SIGKILL)."""
        self.dispose()
        await self._supervisor.shutdown(self.shutdown_grace)
        if self._drain_tasks:
            await asyncio.gather(*self._drain_tasks, return_exceptions=True)

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, tb):
        await self.close()

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    async def send_request(self, method: str, params: Any = None) -> Response:
        """
        Send a request and wait for the matching reply.

        Returns:
            The Response correlated by id

        Raises:
            TransportNotReadyError: if the bridge was never started or the
                child cannot accept writes; nothing is registered
            RemoteCallError: if the peer answers with an error, or the
                bridge is disposed first
        """
        if not self._started:
            raise TransportNotReadyError(NOT_READY_MESSAGE)

        request_id = next(self._ids)
        await self.wait_until_ready()
        self._ensure_writable()

        future = asyncio.get_running_loop().create_future()
        start_time = time.perf_counter()

        def on_resolve(response: Response):
            self._finish_request(request_id, method, start_time, success=True)
            if not future.done():
                future.set_result(response)

        def on_reject(error: ErrorResponse):
            self._finish_request(
                request_id, method, start_time, success=False, error=error.error.message
            )
            if not future.done():
                future.set_exception(RemoteCallError(error))

        self._correlator.register(request_id, on_resolve, on_reject, method=method)
        if self._metrics:
            start_time = self._metrics.start_request()
        self._logger.request_start(request_id, method)

        def on_done(f: asyncio.Future):
            # Caller gave up; a late reply is dropped like any unknown id
            if f.cancelled() and self._correlator.discard(request_id) and self._metrics:
                self._metrics.end_request(start_time, success=False)

        future.add_done_callback(on_done)

        try:
            self._write_payload(Request(id=request_id, method=method, params=params))
        except BridgeError:
            if self._correlator.discard(request_id):
                self._finish_request(request_id, method, start_time, success=False)
            raise

        return await future

    def send_notification(self, method: str, params: Any = None):
        """Fire-and-forget notification."""
        self._write_payload(Notification(method=method, params=params))

    def send_response(self, request_id: RequestId, result: Any = None):
        """Answer a request initiated by the app server."""
        self._write_payload(Response(id=request_id, result=result))

    def send_error(self, request_id: RequestId, code: int, message: str, data: Any = None):
        """Answer a request initiated by the app server with an error."""
        self._write_payload(
            ErrorResponse(id=request_id, error=ErrorObject(code=code, message=message, data=data))
        )

    async def initialize(self, params: Optional[dict] = None) -> Response:
        return await self.send_request(
            protocol.ClientMethod.INITIALIZE,
            params if params is not None else protocol.initialize_params(self.client_info),
        )

    async def new_conversation(self, params: Optional[dict] = None) -> Response:
        return await self.send_request(
            protocol.ClientMethod.NEW_CONVERSATION, params if params is not None else {}
        )

    async def send_user_message(self, params: dict) -> Response:
        return await self.send_request(protocol.ClientMethod.SEND_USER_MESSAGE, params)

    async def send_user_turn(self, params: dict) -> Response:
        return await self.send_request(protocol.ClientMethod.SEND_USER_TURN, params)

    async def add_conversation_listener(self, params: dict) -> Response:
        return await self.send_request(protocol.ClientMethod.ADD_CONVERSATION_LISTENER, params)

    async def remove_conversation_listener(self, params: dict) -> Response:
        return await self.send_request(
            protocol.ClientMethod.REMOVE_CONVERSATION_LISTENER, params
        )

    def _ensure_writable(self) -> asyncio.StreamWriter:
        stdin = self._supervisor.stdin
        if stdin is None or stdin.is_closing():
            raise TransportNotReadyError(NOT_READY_MESSAGE)
        return stdin

    def _write_payload(self, payload: Any):
        stdin = self._ensure_writable()
        serialized = encode_message(payload)
        self._log_traffic(LogDirection.OUTBOUND, serialized)
        stdin.write(serialized.encode("utf-8") + b"\n")

        task = asyncio.get_running_loop().create_task(self._drain(stdin))
        self._drain_tasks.add(task)
        task.add_done_callback(self._drain_tasks.discard)

    async def _drain(self, stdin: asyncio.StreamWriter):
        if self._drain_lock is None:
            self._drain_lock = asyncio.Lock()
        async with self._drain_lock:
            try:
                await stdin.drain()
            except OSError as e:
                failure = WriteFailure(f"Failed to write to app server stdin: {e}")
                failure.__cause__ = e
                if self._metrics:
                    self._metrics.record_write_failure()
                self._report_error(failure, LogEvent.WRITE_FAILED)

    def _finish_request(
        self,
        request_id: RequestId,
        method: str,
        start_time: float,
        success: bool,
        error: Optional[str] = None,
    ):
        if self._metrics:
            duration_ms = self._metrics.end_request(start_time, success=success)
        else:
            duration_ms = (time.perf_counter() - start_time) * 1000
        self._logger.request_end(request_id, method, duration_ms, success=success, error=error)

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    def _handle_line(self, line: str):
        """Handle one stdout line from the app server."""
        self.emit(BridgeEvent.RAW, line)
        self._log_traffic(LogDirection.INBOUND, line)

        try:
            message, raw = parse_line(line)
        except MalformedLineError as e:
            self._record_malformed()
            self._report_error(e, LogEvent.MALFORMED_LINE, LogLevel.WARN)
            return
        except UnclassifiableMessageError as e:
            self._record_malformed()
            self._report_error(e, LogEvent.UNCLASSIFIABLE_MESSAGE, LogLevel.WARN)
            return

        if self._metrics:
            self._metrics.record_message(message.kind)

        self.emit(BridgeEvent.MESSAGE, message, raw)

        if isinstance(message, Response):
            settled = self._correlator.resolve(message)
        elif isinstance(message, ErrorResponse):
            settled = self._correlator.reject(message)
        else:
            return

        if not settled:
            self._logger.debug(
                LogEvent.RESPONSE_DROPPED,
                "Dropped reply for unknown request id",
                request_id=message.id,
            )

    def _handle_stderr_line(self, line: str):
        self._log_traffic(LogDirection.STDERR, line)

    def _handle_exit(self, exit_info: ProcessExit):
        self.emit(BridgeEvent.EXIT, exit_info.code, exit_info.signal)

    def _record_malformed(self):
        if self._metrics:
            self._metrics.record_malformed_line()

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    def _log_traffic(self, direction: LogDirection, payload: Any):
        try:
            self.traffic_logger(direction, payload)
        except Exception as e:
            self._logger.failure(LogEvent.LISTENER_ERROR, e, level=LogLevel.WARN)

    def _report_error(
        self,
        error: BridgeError,
        event: LogEvent = LogEvent.BRIDGE_ERROR,
        level: LogLevel = LogLevel.ERROR,
    ):
        self._logger.failure(event, error, level=level)
        self._emit_error(error)

    def _emit_error(self, error: BaseException):
        if not self.emit(BridgeEvent.ERROR, error):
            print(f"codexlink: unhandled bridge error: {error}", file=sys.stderr)

    def _log_listener_failure(self, event: BridgeEvent, error: BaseException):
        self._logger.error(
            LogEvent.LISTENER_ERROR,
            f"Listener for '{event.value}' failed: {error}",
            error=str(error),
            error_type=type(error).__name__,
        )
