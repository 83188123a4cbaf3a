"""
Sync wrapper for the async AppServerBridge.
Provides a blocking API on top of the async core.
"""

import asyncio
import threading
from typing import Any, Callable, Optional, TYPE_CHECKING

from .message import RequestId, Response
from .protocol import to_camel

if TYPE_CHECKING:
    from .bridge import AppServerBridge


class SyncWrapper:
    """
    Synchronous wrapper for AppServerBridge.

    Runs the bridge on a private event loop in a daemon thread; every call
    blocks the caller until the coroutine finishes on that loop.

    Usage:
        with SyncWrapper(AppServerBridge()) as bridge:
            response = bridge.request("newConversation", {})
    """

    def __init__(self, bridge: "AppServerBridge"):
        self._bridge = bridge
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._loop_thread: Optional[threading.Thread] = None
        self._loop_started = threading.Event()
        self._loop_stopped = threading.Event()

    @property
    def bridge(self) -> "AppServerBridge":
        return self._bridge

    def start(self):
        """Start the bridge synchronously."""
        self._ensure_loop()
        return self._run_async(self._bridge.start())

    def request(self, method: str, params: Any = None) -> Response:
        """
        Send a request and block until its reply.

        Raises:
            RemoteCallError: if the app server answers with an error
            TransportNotReadyError: if the child cannot accept writes
        """
        self._ensure_loop()
        return self._run_async(self._bridge.send_request(method, params))

    def notify(self, method: str, params: Any = None):
        """Send a notification from the bridge's loop."""
        self._run_on_loop(self._bridge.send_notification, method, params)

    def respond(self, request_id: RequestId, result: Any = None):
        """Answer a request initiated by the app server."""
        self._run_on_loop(self._bridge.send_response, request_id, result)

    def close(self):
        """Close the bridge synchronously and stop the background loop."""
        if self._loop and not self._loop.is_closed():
            try:
                self._run_async(self._bridge.close())
            finally:
                self._stop_loop()

    def _run_on_loop(self, fn: Callable, *args):
        async def invoke():
            return fn(*args)

        self._ensure_loop()
        return self._run_async(invoke())

    def _ensure_loop(self):
        """Ensure an event loop is running in a background thread."""
        if self._loop is None or self._loop.is_closed():
            self._start_loop()

    def _start_loop(self):
        """Start an event loop in a background thread."""
        self._loop_started.clear()
        self._loop_stopped.clear()

        def run_loop():
            self._loop = asyncio.new_event_loop()
            asyncio.set_event_loop(self._loop)
            self._loop_started.set()
            try:
                self._loop.run_forever()
            finally:
                self._loop.close()
                self._loop_stopped.set()

        self._loop_thread = threading.Thread(
            target=run_loop, name="codexlink-loop", daemon=True
        )
        self._loop_thread.start()
        self._loop_started.wait()

    def _stop_loop(self):
        """Stop the background event loop."""
        if self._loop and not self._loop.is_closed():
            self._loop.call_soon_threadsafe(self._loop.stop)
            self._loop_stopped.wait(timeout=2)
            if self._loop_thread is not None:
                self._loop_thread.join(timeout=2)
        self._loop = None
        self._loop_thread = None

    def _run_async(self, coro):
        """
        Run a coroutine in the background loop and return its result.
        """
        if not self._loop or self._loop.is_closed():
            coro.close()
            raise RuntimeError("Event loop is not running")

        future = asyncio.run_coroutine_threadsafe(coro, self._loop)
        return future.result()

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, tb):
        self.close()


class SyncProxy:
    """
    Proxy object for blocking app-server calls.

    Attribute names are snake_case versions of the protocol's camelCase
    methods; each call returns the reply's ``result``.

    Usage:
        bridge = AppServerBridge(...)
        bridge.call.start()
        conversation = bridge.call.new_conversation({"model": "o4-mini"})
        bridge.call.close()
    """

    def __init__(self, bridge: "AppServerBridge"):
        self._bridge = bridge
        self._wrapper = SyncWrapper(bridge)

    @property
    def wrapper(self) -> SyncWrapper:
        return self._wrapper

    def start(self):
        """Start the bridge."""
        return self._wrapper.start()

    def close(self):
        """Close the bridge."""
        return self._wrapper.close()

    def __getattr__(self, name):
        if name.startswith("_"):
            raise AttributeError(name)
        method = to_camel(name)

        def remote_method(params: Any = None) -> Any:
            return self._wrapper.request(method, params).result

        return remote_method

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, tb):
        self.close()


class AsyncProxy:
    """
    Proxy object for awaitable app-server calls returning ``result``.

    Usage:
        bridge = AppServerBridge(...)
        await bridge.start()
        conversation = await bridge.acall.new_conversation({})
        await bridge.close()
    """

    def __init__(self, bridge: "AppServerBridge"):
        self._bridge = bridge

    def __getattr__(self, name):
        if name.startswith("_"):
            raise AttributeError(name)
        method = to_camel(name)

        async def remote_method(params: Any = None) -> Any:
            response = await self._bridge.send_request(method, params)
            return response.result

        return remote_method
