"""
Typed event emission for the bridge facade.
"""

import asyncio
import inspect
import sys
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set, Union


class BridgeEvent(Enum):
    """Events broadcast by AppServerBridge."""

    READY = "ready"  # ()
    MESSAGE = "message"  # (message, raw)
    RAW = "raw"  # (line,)
    EXIT = "exit"  # (code, signal)
    ERROR = "error"  # (exception,)


Listener = Callable[..., Any]
EventName = Union[BridgeEvent, str]
ListenerErrorHandler = Callable[[BridgeEvent, BaseException], None]


class EventEmitter:
    """
    Broadcast typed events to any number of listeners per event.

    Listeners run synchronously in registration order. A listener that
    returns an awaitable has it scheduled as a task on the running loop.
    A listener that raises never interrupts the emitter; the exception is
    handed to ``on_listener_error``.

    Usage:
        emitter.on("message", lambda message, raw: print(message))
        emitter.once(BridgeEvent.EXIT, on_exit)
        emitter.emit(BridgeEvent.RAW, line)
    """

    def __init__(self, on_listener_error: Optional[ListenerErrorHandler] = None):
        self._listeners: Dict[BridgeEvent, List[Listener]] = {
            event: [] for event in BridgeEvent
        }
        self._listener_tasks: Set[asyncio.Task] = set()
        self._on_listener_error = on_listener_error

    @staticmethod
    def _event(event: EventName) -> BridgeEvent:
        return event if isinstance(event, BridgeEvent) else BridgeEvent(event)

    def on(self, event: EventName, listener: Listener) -> "EventEmitter":
        """Register a listener for every future emission of ``event``."""
        self._listeners[self._event(event)].append(listener)
        return self

    def once(self, event: EventName, listener: Listener) -> "EventEmitter":
        """Register a listener removed after its first call."""

        def wrapper(*args):
            self.off(event, wrapper)
            return listener(*args)

        wrapper.listener = listener  # type: ignore[attr-defined]
        return self.on(event, wrapper)

    def off(self, event: EventName, listener: Listener) -> "EventEmitter":
        """Remove a listener (or a once-wrapper around it)."""
        listeners = self._listeners[self._event(event)]
        for registered in reversed(listeners):
            if registered is listener or getattr(registered, "listener", None) is listener:
                listeners.remove(registered)
                break
        return self

    def listener_count(self, event: EventName) -> int:
        return len(self._listeners[self._event(event)])

    def remove_all_listeners(self, event: Optional[EventName] = None) -> "EventEmitter":
        if event is None:
            for listeners in self._listeners.values():
                listeners.clear()
        else:
            self._listeners[self._event(event)].clear()
        return self

    def emit(self, event: EventName, *args: Any) -> bool:
        """
        Call every listener for ``event`` with ``args``.

        Returns:
            True if the event had at least one listener
        """
        event = self._event(event)
        listeners = list(self._listeners[event])
        for listener in listeners:
            try:
                result = listener(*args)
                if inspect.isawaitable(result):
                    self._schedule(event, result)
            except Exception as e:
                self._listener_failed(event, e)
        return bool(listeners)

    def _schedule(self, event: BridgeEvent, awaitable) -> None:
        task = asyncio.ensure_future(awaitable)
        self._listener_tasks.add(task)

        def done(t: asyncio.Task):
            self._listener_tasks.discard(t)
            if not t.cancelled() and t.exception() is not None:
                self._listener_failed(event, t.exception())

        task.add_done_callback(done)

    def _listener_failed(self, event: BridgeEvent, error: BaseException) -> None:
        if self._on_listener_error is None:
            return
        try:
            self._on_listener_error(event, error)
        except Exception as e:
            # Don't let reporting errors break emission
            print(f"Listener error handler failed: {e}", file=sys.stderr)
