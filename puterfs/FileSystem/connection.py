"""
FileSystem Connection Manager.

Owns the client's single socket channel and its lifecycle state machine:

    disconnected --initialize()--> connecting --connect--> connected
    connected --disconnect (transport)--> reconnecting
    reconnecting --reconnect--> connected
    reconnecting --reconnect_failed--> failed
    any --teardown() / irrecoverable error--> disconnected

Channel events are re-emitted to subscribers after the state has been
updated. Subscribers only observe; they cannot influence transitions.
"""

from __future__ import annotations

import asyncio
from functools import partial
from typing import Any, Callable, Dict, Optional

from puterfs.shared.gate import GateLogger
from puterfs.FileSystem.errors import ChannelError
from puterfs.FileSystem.events import LIFECYCLE_EVENTS, DebugLogSubscriber, EventEmitter
from puterfs.FileSystem.models import ClientSession, ConnectionState
from puterfs.FileSystem.transport import (
    PING_TIMEOUT,
    TRANSPORT_CLOSE,
    TRANSPORT_ERROR,
    SocketTransport,
)

_log = GateLogger.get("FileSystem.Connection")

Transport = Callable[[str, Optional[str]], Any]

TRANSPORT_REASONS = (TRANSPORT_CLOSE, TRANSPORT_ERROR, PING_TIMEOUT)


class ConnectionManager:
    """
    Keeps exactly one socket channel per client session.

    The credential and origin are read from the session each time
    initialize() runs.
    """

    def __init__(
        self,
        session: ClientSession,
        transport: Optional[Transport] = None,
        debug: bool = False,
    ):
        """
        Args:
            session: Session shared with the owning client
            transport: Channel factory ``(origin, credential) -> channel``
            debug: Log lifecycle events through DebugLogSubscriber
        """
        self._session = session
        self._transport = transport or SocketTransport()
        self._channel: Any = None
        self._state = ConnectionState.DISCONNECTED
        self._changed = asyncio.Event()
        self.events = EventEmitter("FileSystem.Connection")
        self._debug: Optional[DebugLogSubscriber] = None
        self.set_debug(debug)

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED

    @property
    def channel(self) -> Any:
        return self._channel

    @property
    def socket_id(self) -> Optional[str]:
        """Socket.IO session id of the live channel, if connected."""
        if self._channel is None or not self.is_connected:
            return None
        return getattr(self._channel, "id", None)

    def set_debug(self, enabled: bool) -> None:
        if enabled and self._debug is None:
            self._debug = DebugLogSubscriber(self).attach(self.events)
        elif not enabled and self._debug is not None:
            self._debug.detach()
            self._debug = None

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def initialize(self) -> None:
        """
        (Re)create the channel with the session's current credential and origin.

        Any existing channel is torn down first, so two live channels
        never coexist.
        """
        self.teardown()

        try:
            asyncio.get_running_loop()
        except RuntimeError:
            _log.warning("No running event loop; socket channel not started")
            return

        self._set_state(ConnectionState.CONNECTING)
        try:
            channel = self._transport(self._session.api_origin, self._session.auth_token)
        except ValueError as e:
            _log.error(f"Cannot open socket channel: {e}")
            self._set_state(ConnectionState.DISCONNECTED)
            raise

        self._channel = channel
        self._bind(channel)
        _log.debug(f"Socket channel initializing for {self._session.api_origin}")

    def teardown(self) -> None:
        """Close the live channel, if any. Synchronous."""
        channel = self._channel
        if channel is None:
            return

        channel.disconnect()
        self._channel = None
        self._set_state(ConnectionState.DISCONNECTED)

    async def close(self) -> None:
        """Tear down and wait for the channel's background work to finish."""
        channel = self._channel
        self.teardown()
        wait_closed = getattr(channel, "wait_closed", None)
        if wait_closed is not None:
            await wait_closed()

    async def wait_connected(self, timeout: Optional[float] = None) -> bool:
        """
        Wait until the channel is connected.

        A channel that is disconnected or has failed will not connect on its
        own, so waiting stops there too.

        Returns:
            True if connected, False on timeout or in a terminal state
        """
        try:
            return await asyncio.wait_for(self._until_settled(), timeout=timeout)
        except asyncio.TimeoutError:
            return False

    async def _until_settled(self) -> bool:
        while True:
            if self._state == ConnectionState.CONNECTED:
                return True
            if self._state in (ConnectionState.DISCONNECTED, ConnectionState.FAILED):
                return False
            await self._changed.wait()

    # =========================================================================
    # Events
    # =========================================================================

    def on(self, event: str, handler=None):
        """Subscribe to lifecycle, state_change or server-push events."""
        return self.events.on(event, handler)

    def off(self, event: str, handler=None) -> None:
        self.events.off(event, handler)

    async def emit(self, event: str, *args: Any) -> None:
        """Send a client event over the live channel."""
        if self._channel is None or not self.is_connected:
            raise ChannelError(f"Cannot emit '{event}': socket is {self._state.value}")
        await self._channel.emit(event, *args)

    def _bind(self, channel: Any) -> None:
        for event in LIFECYCLE_EVENTS + ("close",):
            channel.on(event, partial(self._on_lifecycle, channel, event))
        channel.on_any(partial(self._on_server_event, channel))

    def _on_lifecycle(self, channel: Any, event: str, *args: Any) -> None:
        if channel is not self._channel:
            return

        if event == "connect":
            self._set_state(ConnectionState.CONNECTED)
        elif event == "disconnect":
            reason = args[0] if args else None
            if reason in TRANSPORT_REASONS:
                self._set_state(ConnectionState.RECONNECTING)
            else:
                self._set_state(ConnectionState.DISCONNECTED)
        elif event == "reconnect_attempt":
            self._set_state(ConnectionState.RECONNECTING)
        elif event == "reconnect":
            self._set_state(ConnectionState.CONNECTED)
        elif event == "reconnect_failed":
            self._set_state(ConnectionState.FAILED)
        elif event == "close":
            if self._state != ConnectionState.FAILED:
                self._set_state(ConnectionState.DISCONNECTED)
            return

        self.events.emit(event, *args)

    def _on_server_event(self, channel: Any, event: str, *args: Any) -> None:
        if channel is not self._channel:
            return
        if event in LIFECYCLE_EVENTS or event == "close":
            return
        self.events.emit(event, *args)

    def _set_state(self, state: ConnectionState) -> None:
        old = self._state
        if old == state:
            return
        self._state = state
        # Wake every waiter, then start a fresh event for the next change
        self._changed.set()
        self._changed = asyncio.Event()
        _log.debug(f"Socket state {old.value} -> {state.value}")
        self.events.emit("state_change", old, state)

    def get_status(self) -> Dict[str, Any]:
        return {
            "state": self._state.value,
            "socket_id": self.socket_id,
            "api_origin": self._session.api_origin,
        }


__all__ = ["ConnectionManager"]
