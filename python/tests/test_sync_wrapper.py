"""
Tests for SyncWrapper and the call proxies.

Tests cover:
- SyncWrapper lifecycle (start, request, close)
- Notifications and replies run on the background loop
- SyncProxy and AsyncProxy name mapping and result unwrapping
- Context manager usage
"""

import asyncio
import sys
import os
import threading

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from codexlink.core.errors import RemoteCallError
from codexlink.core.message import ErrorObject, ErrorResponse, Response
from codexlink.core.sync_wrapper import AsyncProxy, SyncProxy, SyncWrapper


class MockBridge:
    """Mock AppServerBridge for testing."""

    def __init__(self):
        self.started = False
        self.closed = False
        self.requests = []
        self.writes = []
        self.loop_threads = set()

    def _record_thread(self):
        asyncio.get_running_loop()  # must be called on a loop
        self.loop_threads.add(threading.current_thread().name)

    async def start(self):
        self._record_thread()
        self.started = True
        await asyncio.sleep(0.01)

    async def close(self):
        self.closed = True
        await asyncio.sleep(0.01)

    async def send_request(self, method, params=None):
        self._record_thread()
        self.requests.append((method, params))
        if method == "fail":
            raise RemoteCallError(ErrorResponse(id=1, error=ErrorObject(code=7, message="bad")))
        return Response(id=len(self.requests), result={"method": method, "params": params})

    def send_notification(self, method, params=None):
        self._record_thread()
        self.writes.append(("notification", method, params))

    def send_response(self, request_id, result=None):
        self._record_thread()
        self.writes.append(("response", request_id, result))


class TestSyncWrapper:
    """Test SyncWrapper class."""

    def test_init(self):
        """Test SyncWrapper initialization."""
        bridge = MockBridge()
        wrapper = SyncWrapper(bridge)

        assert wrapper.bridge is bridge
        assert wrapper._loop is None
        assert wrapper._loop_thread is None

    def test_start_and_close(self):
        """Test starting and closing through the background loop."""
        bridge = MockBridge()
        wrapper = SyncWrapper(bridge)

        wrapper.start()
        assert bridge.started
        assert wrapper._loop is not None
        assert wrapper._loop_thread.is_alive()

        wrapper.close()
        assert bridge.closed
        assert wrapper._loop is None

    def test_request(self):
        """Test a blocking request returns the Response."""
        bridge = MockBridge()
        with SyncWrapper(bridge) as wrapper:
            response = wrapper.request("newConversation", {"model": "o4-mini"})

        assert response.result == {"method": "newConversation", "params": {"model": "o4-mini"}}
        assert bridge.closed

    def test_request_error_propagates(self):
        """Test remote errors are raised in the calling thread."""
        bridge = MockBridge()
        with SyncWrapper(bridge) as wrapper:
            with pytest.raises(RemoteCallError) as exc_info:
                wrapper.request("fail")

        assert exc_info.value.code == 7

    def test_writes_run_on_loop_thread(self):
        """Test notify and respond execute on the bridge's loop."""
        bridge = MockBridge()
        with SyncWrapper(bridge) as wrapper:
            wrapper.notify("initialized")
            wrapper.respond("srv-1", {"decision": "approved"})

        assert bridge.writes == [
            ("notification", "initialized", None),
            ("response", "srv-1", {"decision": "approved"}),
        ]
        assert bridge.loop_threads == {"codexlink-loop"}

    def test_close_without_start(self):
        """Test closing a wrapper that never started is a no-op."""
        bridge = MockBridge()
        SyncWrapper(bridge).close()
        assert not bridge.closed


class TestSyncProxy:
    """Test SyncProxy class."""

    def test_snake_case_mapping(self):
        """Test attribute names map to camelCase methods and return result."""
        bridge = MockBridge()
        proxy = SyncProxy(bridge)
        proxy.start()
        try:
            result = proxy.add_conversation_listener({"conversationId": "c"})
        finally:
            proxy.close()

        assert bridge.requests == [("addConversationListener", {"conversationId": "c"})]
        assert result == {"method": "addConversationListener", "params": {"conversationId": "c"}}

    def test_context_manager(self):
        """Test SyncProxy as a context manager."""
        bridge = MockBridge()
        with SyncProxy(bridge) as proxy:
            assert proxy.initialize({"clientInfo": {}})["method"] == "initialize"
        assert bridge.started and bridge.closed

    def test_private_attributes_not_proxied(self):
        """Test that private names raise AttributeError."""
        proxy = SyncProxy(MockBridge())
        with pytest.raises(AttributeError):
            proxy._secret


class TestAsyncProxy:
    """Test AsyncProxy class."""

    @pytest.mark.asyncio
    async def test_call_returns_result(self):
        """Test awaiting a proxied call."""
        bridge = MockBridge()
        proxy = AsyncProxy(bridge)

        result = await proxy.send_user_turn({"conversationId": "c"})

        assert bridge.requests == [("sendUserTurn", {"conversationId": "c"})]
        assert result["method"] == "sendUserTurn"

    @pytest.mark.asyncio
    async def test_camel_case_passthrough(self):
        """Test that camelCase attribute names pass through."""
        bridge = MockBridge()
        await AsyncProxy(bridge).newConversation()
        assert bridge.requests == [("newConversation", None)]

    @pytest.mark.asyncio
    async def test_error_propagates(self):
        """Test remote errors raise from the awaited call."""
        with pytest.raises(RemoteCallError):
            await AsyncProxy(MockBridge()).fail()
