"""
FileSystem Event System.

Socket lifecycle and server-push events are delivered through an
EventEmitter. Subscribers are notifications only: a subscriber's return
value is ignored and its exceptions are logged, so nothing a subscriber
does can steer the connection state machine.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Callable, ClassVar, Dict, List, Optional, Set

from puterfs.shared.gate import GateErrorHandler, GateLogger

_log = GateLogger.get("FileSystem.Events")

Handler = Callable[..., Any]

# Lifecycle events emitted by the channel, in the order socket.io names them.
LIFECYCLE_EVENTS = (
    "connect",
    "disconnect",
    "reconnect",
    "reconnect_attempt",
    "reconnect_error",
    "reconnect_failed",
    "error",
)


class EventEmitter:
    """Minimal synchronous event emitter with async-handler support."""

    def __init__(self, name: str = "FileSystem.Events"):
        self._name = name
        self._handlers: Dict[str, List[Handler]] = {}
        self._any: List[Callable[..., Any]] = []
        # Async handlers still running
        self._pending: Set[asyncio.Future] = set()

    def on(self, event: str, handler: Optional[Handler] = None):
        """
        Subscribe to an event. Usable as a decorator.

        Args:
            event: Event name
            handler: Callable invoked with the event arguments
        """
        if handler is None:
            def decorator(func: Handler) -> Handler:
                self.on(event, func)
                return func
            return decorator

        self._handlers.setdefault(event, []).append(handler)
        return handler

    def off(self, event: str, handler: Optional[Handler] = None) -> None:
        """Remove one handler, or every handler for the event."""
        if handler is None:
            self._handlers.pop(event, None)
            return
        handlers = self._handlers.get(event, [])
        if handler in handlers:
            handlers.remove(handler)

    def on_any(self, handler: Callable[..., Any]) -> None:
        """Subscribe to every event. The handler receives (event, *args)."""
        self._any.append(handler)

    def listener_count(self, event: str) -> int:
        return len(self._handlers.get(event, []))

    def emit(self, event: str, *args: Any) -> None:
        """Deliver an event to its subscribers, then to catch-all subscribers."""
        for handler in list(self._handlers.get(event, [])):
            self._dispatch(event, handler, args)
        for handler in list(self._any):
            self._dispatch(event, handler, (event, *args))

    def clear(self) -> None:
        self._handlers.clear()
        self._any.clear()

    def _dispatch(self, event: str, handler: Callable[..., Any], args: tuple) -> None:
        result = GateErrorHandler.call(self._name, f"'{event}' handler", handler, *args)
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._pending.add(task)
            task.add_done_callback(lambda t: self._report(event, t))

    def _report(self, event: str, task: "asyncio.Future") -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            GateErrorHandler.handle(self._name, f"'{event}' handler", exc)


class DebugLogSubscriber:
    """
    Logs socket lifecycle events.

    Attached to a ConnectionManager when the client runs with debug on.
    While any subscriber is attached its logger is raised to INFO; the
    last one to detach restores the previous level.
    """

    _holders: ClassVar[Dict[str, int]] = {}
    _saved_levels: ClassVar[Dict[str, int]] = {}

    def __init__(self, source: Any = None, logger_name: str = "FileSystem.Socket"):
        self._source = source
        self._logger_name = logger_name
        self._log = GateLogger.get(logger_name)
        self._emitter: Optional[EventEmitter] = None
        self._handlers: Dict[str, Handler] = {
            "connect": self._on_connect,
            "disconnect": self._on_disconnect,
            "reconnect": self._on_reconnect,
            "reconnect_attempt": self._on_reconnect_attempt,
            "reconnect_error": self._on_reconnect_error,
            "reconnect_failed": self._on_reconnect_failed,
            "error": self._on_error,
        }

    @property
    def _socket_id(self) -> Optional[str]:
        return getattr(self._source, "socket_id", None)

    def attach(self, emitter: EventEmitter) -> "DebugLogSubscriber":
        self.detach()
        for event, handler in self._handlers.items():
            emitter.on(event, handler)
        self._emitter = emitter
        self._raise_level()
        return self

    def detach(self) -> None:
        if self._emitter is None:
            return
        for event, handler in self._handlers.items():
            self._emitter.off(event, handler)
        self._emitter = None
        self._restore_level()

    def _raise_level(self) -> None:
        name = self._logger_name
        holders = self._holders.get(name, 0)
        if holders == 0 and not self._log.isEnabledFor(logging.INFO):
            self._saved_levels[name] = self._log.level
            GateLogger.set_level(logging.INFO, name)
        self._holders[name] = holders + 1

    def _restore_level(self) -> None:
        name = self._logger_name
        holders = self._holders.get(name, 0) - 1
        if holders > 0:
            self._holders[name] = holders
            return
        self._holders.pop(name, None)
        if name in self._saved_levels:
            GateLogger.set_level(self._saved_levels.pop(name), name)

    def _on_connect(self, *args):
        self._log.info(f"Connected {self._socket_id}")

    def _on_disconnect(self, reason=None, *args):
        self._log.info(f"Disconnected ({reason})")

    def _on_reconnect(self, attempt=None, *args):
        self._log.info(f"Reconnected {self._socket_id} after {attempt} attempt(s)")

    def _on_reconnect_attempt(self, attempt=None, *args):
        self._log.info(f"Reconnection attempt {attempt}")

    def _on_reconnect_error(self, error=None, *args):
        self._log.info(f"Reconnection error: {error}")

    def _on_reconnect_failed(self, *args):
        self._log.warning("Reconnection failed")

    def _on_error(self, error=None, *args):
        self._log.error(f"Socket error: {error}")


__all__ = ["LIFECYCLE_EVENTS", "EventEmitter", "DebugLogSubscriber"]
