"""
Server side of the stdio JSON-RPC pipe.

Subclass StdioPeer and add public methods; a request for ``newConversation``
is dispatched to ``new_conversation(params)``. Used for fake app servers in
tests and demos.
"""

import asyncio
import concurrent.futures
import inspect
import io
import sys
import threading
import traceback
from typing import Any, BinaryIO, Callable, Optional, Set, Union

from .errors import INTERNAL_ERROR, METHOD_NOT_FOUND, BridgeError, JsonRpcError
from .framing import READ_CHUNK_SIZE, LineFramer
from .message import (
    ErrorObject,
    ErrorResponse,
    Notification,
    Request,
    Response,
    encode_message,
    parse_line,
)
from .protocol import to_snake


class StdioPeer:
    """
    Base class for scripts that answer JSON-RPC on their own stdin/stdout.

    Handlers take a single ``params`` argument and return the reply's
    ``result``. Raise JsonRpcError to answer with a specific error code.

    Usage:
        class FakeAppServer(StdioPeer):
            def initialize(self, params):
                return {"userAgent": "fake/0.1"}

            async def new_conversation(self, params):
                self.notify("codex/event", {"msg": {"type": "session_configured"}})
                return {"conversationId": "c-1"}

        if __name__ == "__main__":
            FakeAppServer().run()
    """

    def __init__(
        self,
        stdin: Optional[BinaryIO] = None,
        stdout: Optional[Union[BinaryIO, io.TextIOBase]] = None,
    ):
        """
        Args:
            stdin: Byte stream to read requests from (default: sys.stdin.buffer)
            stdout: Stream replies are written to (default: sys.stdout.buffer)
        """
        self._input = stdin if stdin is not None else sys.stdin.buffer
        self._output = stdout if stdout is not None else getattr(sys.stdout, "buffer", sys.stdout)
        self._send_lock = threading.Lock()
        self._running = False

        self.original_stdout = None

        # Dedicated event loop for coroutine handlers
        self._async_loop: Optional[asyncio.AbstractEventLoop] = None
        self._async_thread: Optional[threading.Thread] = None
        self._inflight: Set[concurrent.futures.Future] = set()
        self._inflight_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    def send(self, payload: Any):
        """Write one message as a line of JSON. Safe to call from any thread."""
        line = encode_message(payload) + "\n"
        with self._send_lock:
            if isinstance(self._output, io.TextIOBase):
                self._output.write(line)
            else:
                self._output.write(line.encode("utf-8"))
            self._output.flush()

    def notify(self, method: str, params: Any = None):
        """Send a notification to the bridge."""
        self.send(Notification(method=method, params=params))

    def list_methods(self):
        """
        List the public handler names this peer answers.

        Returns:
            Sorted snake_case attribute names
        """
        excluded = set(dir(StdioPeer))
        return sorted(
            name
            for name in dir(self)
            if not name.startswith("_")
            and name not in excluded
            and callable(getattr(self, name))
        )

    # ------------------------------------------------------------------
    # Serving
    # ------------------------------------------------------------------

    def serve(self):
        """Read requests until EOF (or stop()), then wait for in-flight handlers."""
        if not hasattr(self, "_send_lock"):
            raise RuntimeError(
                f"{self.__class__.__name__}.__init__() must call super().__init__()"
            )

        self._running = True
        self._redirect_stdout()
        self._setup_async_loop()
        framer = LineFramer(self._handle_line)
        try:
            while self._running:
                chunk = self._read_chunk()
                if not chunk:
                    break
                framer.feed(chunk)
            framer.close()
        finally:
            self._wait_inflight()
            self._stop_async_loop()
            self._restore_stdout()
            self._running = False

    def stop(self):
        """Stop serving after the current chunk of input."""
        self._running = False

    def run(self):
        """Serve until stdin closes; Ctrl-C exits quietly."""
        try:
            self.serve()
        except KeyboardInterrupt:
            pass

    def _read_chunk(self) -> bytes:
        read1 = getattr(self._input, "read1", None)
        if read1 is not None:
            return read1(READ_CHUNK_SIZE)
        return self._input.read(READ_CHUNK_SIZE)

    def _redirect_stdout(self):
        # Stray prints must not corrupt the protocol stream
        self.original_stdout = sys.stdout
        sys.stdout = sys.stderr

    def _restore_stdout(self):
        if self.original_stdout is not None:
            sys.stdout = self.original_stdout
            self.original_stdout = None

    def _setup_async_loop(self):
        """Setup a dedicated event loop in a separate thread for coroutine handlers."""
        ready = threading.Event()

        def run_loop():
            self._async_loop = asyncio.new_event_loop()
            asyncio.set_event_loop(self._async_loop)
            ready.set()
            try:
                self._async_loop.run_forever()
            finally:
                self._async_loop.close()

        self._async_thread = threading.Thread(target=run_loop, daemon=True)
        self._async_thread.start()
        ready.wait()

    def _stop_async_loop(self):
        if self._async_loop and self._async_loop.is_running():
            self._async_loop.call_soon_threadsafe(self._async_loop.stop)
            if self._async_thread and self._async_thread.is_alive():
                self._async_thread.join(timeout=2.0)
        self._async_loop = None
        self._async_thread = None

    def _wait_inflight(self):
        with self._inflight_lock:
            pending = list(self._inflight)
        if pending:
            concurrent.futures.wait(pending)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def _handle_line(self, line: str):
        if not line.strip():
            return
        try:
            message, _ = parse_line(line)
        except BridgeError as e:
            print(f"ERROR: {e}", file=sys.stderr)
            return

        if isinstance(message, (Request, Notification)):
            self._dispatch(message)
        # Responses and errors are ignored; this side never issues requests

    def _resolve_handler(self, method: str) -> Callable:
        name = to_snake(method)
        if name.startswith("_") or name in set(dir(StdioPeer)):
            raise JsonRpcError(METHOD_NOT_FOUND, f"Method not found: {method}")
        handler = getattr(self, name, None)
        if handler is None or not callable(handler):
            raise JsonRpcError(METHOD_NOT_FOUND, f"Method not found: {method}")
        return handler

    def _dispatch(self, message: Union[Request, Notification]):
        try:
            handler = self._resolve_handler(message.method)
        except JsonRpcError as e:
            self._reply_failure(message, e)
            return

        if inspect.iscoroutinefunction(handler):
            future = asyncio.run_coroutine_threadsafe(
                handler(message.params), self._async_loop
            )
            with self._inflight_lock:
                self._inflight.add(future)
            future.add_done_callback(lambda f: self._handler_finished(message, f))
            return

        try:
            result = handler(message.params)
        except Exception as e:
            self._reply_failure(message, e)
        else:
            self._reply(message, result)

    def _handler_finished(self, message, future: concurrent.futures.Future):
        try:
            if future.cancelled():
                self._reply_failure(message, RuntimeError("Handler cancelled"))
            elif future.exception() is not None:
                self._reply_failure(message, future.exception())
            else:
                self._reply(message, future.result())
        finally:
            with self._inflight_lock:
                self._inflight.discard(future)

    def _reply(self, message, result: Any):
        if not isinstance(message, Request):
            return
        try:
            encode_message(result)
        except (TypeError, ValueError) as e:
            self._reply_failure(message, e)
            return
        self._send_safely(Response(id=message.id, result=result))

    def _reply_failure(self, message, error: BaseException):
        if not isinstance(message, Request):
            print(f"ERROR: {message.method} failed: {error}", file=sys.stderr)
            return

        if isinstance(error, JsonRpcError):
            error_object = ErrorObject(code=error.code, message=error.message, data=error.data)
        else:
            error_object = ErrorObject(
                code=INTERNAL_ERROR,
                message=f"{type(error).__name__}: {error}",
                data="".join(
                    traceback.format_exception(type(error), error, error.__traceback__)
                ),
            )
        self._send_safely(ErrorResponse(id=message.id, error=error_object))

    def _send_safely(self, payload: Any):
        try:
            self.send(payload)
        except (OSError, ValueError) as e:
            print(f"CRITICAL: Failed to send reply: {e}", file=sys.stderr)
