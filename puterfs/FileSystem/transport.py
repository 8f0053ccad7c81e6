"""
FileSystem Socket Transport.

Owns one Socket.IO channel over a WebSocket, including the reconnect
policy. Lifecycle events follow socket.io client naming:

    connect, disconnect(reason), reconnect_attempt(n), reconnect_error(err),
    reconnect(n), reconnect_failed, error(err)

plus ``close(reason)`` once the channel has stopped for good. Server-push
events are emitted under their own names.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Dict, Optional

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from puterfs.shared.gate import GateLogger
from puterfs.FileSystem.errors import ChannelError
from puterfs.FileSystem.events import LIFECYCLE_EVENTS, EventEmitter
from puterfs.FileSystem.models import ReconnectPolicy
from puterfs.FileSystem.protocol import (
    SOCKET_IO_PATH,
    EnginePacketType,
    ProtocolError,
    SocketPacketType,
    build_socket_url,
    connect_frame,
    decode_engine,
    decode_socket,
    disconnect_frame,
    encode_engine,
    event_frame,
)

_log = GateLogger.get("FileSystem.Transport")

Connector = Callable[..., Awaitable[Any]]

# Failures that end one connection attempt but leave the channel retryable.
RETRYABLE_ERRORS = (OSError, asyncio.TimeoutError, WebSocketException, ProtocolError)

CLIENT_DISCONNECT = "io client disconnect"
SERVER_DISCONNECT = "io server disconnect"
TRANSPORT_CLOSE = "transport close"
TRANSPORT_ERROR = "transport error"
PING_TIMEOUT = "ping timeout"


class ConnectRefused(ChannelError):
    """The server rejected the Socket.IO CONNECT (bad or expired credential)."""
    pass


class SocketChannel:
    """
    One Socket.IO channel.

    Runs a background task that connects, answers heartbeats, dispatches
    server events and reconnects with backoff after transport drops.
    """

    def __init__(
        self,
        url: str,
        auth: Optional[Dict[str, Any]] = None,
        policy: Optional[ReconnectPolicy] = None,
        connector: Optional[Connector] = None,
        connect_timeout: float = 10.0,
    ):
        self.url = url
        self._auth = auth
        self._policy = policy or ReconnectPolicy()
        self._connector = connector or websockets.connect
        self._connect_timeout = connect_timeout

        self._events = EventEmitter("FileSystem.Transport")
        self._task: Optional[asyncio.Task] = None
        self._ws: Any = None
        self._heartbeat_timeout: Optional[float] = None
        self._session_open = False
        self._closed = False

        self.id: Optional[str] = None
        self.connected = False

    @property
    def closed(self) -> bool:
        return self._closed

    def on(self, event: str, handler=None):
        return self._events.on(event, handler)

    def on_any(self, handler) -> None:
        self._events.on_any(handler)

    def open(self) -> "SocketChannel":
        """Start the channel task. Requires a running event loop."""
        if self._task is not None:
            return self
        loop = asyncio.get_running_loop()
        self._task = loop.create_task(self._run())
        return self

    def disconnect(self) -> None:
        """
        Close the channel synchronously.

        The channel is dead when this returns; the WebSocket close
        handshake completes in the background.
        """
        if self._closed:
            return
        self._closed = True

        was_connected = self.connected
        self.connected = False
        self.id = None

        if self._task is not None and not self._task.done():
            self._task.cancel()

        if was_connected:
            self._events.emit("disconnect", CLIENT_DISCONNECT)
        self._events.emit("close", CLIENT_DISCONNECT)

    async def emit(self, event: str, *args: Any) -> None:
        """Send a client event to the server."""
        if not self.connected or self._ws is None:
            raise ChannelError(f"Cannot emit '{event}': channel is not connected")
        try:
            await self._ws.send(event_frame(event, *args))
        except (OSError, WebSocketException) as e:
            raise ChannelError(f"Failed to emit '{event}': {e}")

    async def wait_closed(self) -> None:
        """Wait for the background task to finish."""
        if self._task is not None:
            await asyncio.gather(self._task, return_exceptions=True)

    # =========================================================================
    # Background task
    # =========================================================================

    async def _run(self) -> None:
        attempt = 0
        try:
            while not self._closed:
                if attempt:
                    self._events.emit("reconnect_attempt", attempt)

                try:
                    await asyncio.wait_for(self._handshake(), timeout=self._connect_timeout)
                except ConnectRefused as e:
                    _log.warning(f"Server refused socket connection: {e}")
                    await self._drop_ws()
                    self._events.emit("error", e)
                    self._finish(str(e))
                    return
                except RETRYABLE_ERRORS as e:
                    await self._drop_ws()
                    error = ChannelError(f"Socket connection failed: {e!r}")
                    _log.debug(str(error))
                    self._events.emit("reconnect_error" if attempt else "error", error)
                else:
                    self.connected = True
                    _log.debug(f"Socket connected: {self.id}")
                    self._events.emit("connect")
                    if attempt:
                        self._events.emit("reconnect", attempt)
                    attempt = 0

                    reason = await self._receive_loop()
                    self.connected = False
                    self.id = None
                    self._session_open = False
                    await self._drop_ws()
                    self._events.emit("disconnect", reason)
                    if reason == SERVER_DISCONNECT:
                        self._finish(reason)
                        return

                if not self._policy.enabled:
                    self._finish("reconnection disabled")
                    return

                attempt += 1
                if self._policy.exhausted(attempt):
                    self._events.emit("reconnect_failed")
                    self._finish("reconnect failed")
                    return

                await asyncio.sleep(self._policy.backoff(attempt))
        except Exception as e:
            _log.error(f"Socket channel stopped unexpectedly: {e!r}", exc_info=True)
            if self.connected:
                self.connected = False
                self.id = None
                self._events.emit("disconnect", TRANSPORT_ERROR)
            self._events.emit("error", ChannelError(f"Socket channel failed: {e!r}"))
            self._finish(TRANSPORT_ERROR)
        finally:
            if self._ws is not None:
                await self._drop_ws()

    def _finish(self, reason: str) -> None:
        self._closed = True
        self._events.emit("close", reason)

    async def _handshake(self) -> None:
        """Open the WebSocket and complete the Engine.IO and Socket.IO handshakes."""
        self._ws = await self._connector(self.url)

        opening = decode_engine(await self._ws.recv())
        if opening.type != EnginePacketType.OPEN:
            raise ProtocolError(f"Expected OPEN packet, got {opening.type.name}")

        info = opening.json()
        if not isinstance(info, dict):
            raise ProtocolError("OPEN payload is not an object")
        ping_interval = info.get("pingInterval")
        ping_timeout = info.get("pingTimeout")
        if ping_interval and ping_timeout:
            self._heartbeat_timeout = (ping_interval + ping_timeout) / 1000.0

        await self._ws.send(connect_frame(self._auth))

        while True:
            packet = decode_engine(await self._ws.recv())
            if packet.type == EnginePacketType.PING:
                await self._ws.send(encode_engine(EnginePacketType.PONG, packet.data))
                continue
            if packet.type == EnginePacketType.CLOSE:
                raise ProtocolError("Server closed the transport during handshake")
            if packet.type != EnginePacketType.MESSAGE:
                continue

            message = decode_socket(packet.data)
            if message.type == SocketPacketType.CONNECT:
                if message.data is not None and not isinstance(message.data, dict):
                    raise ProtocolError("CONNECT payload is not an object")
                self.id = (message.data or {}).get("sid")
                self._session_open = True
                return
            if message.type == SocketPacketType.CONNECT_ERROR:
                detail = message.data
                if isinstance(detail, dict):
                    detail = detail.get("message", detail)
                raise ConnectRefused(str(detail), payload=message.data)

    async def _receive_loop(self) -> str:
        """Read frames until the connection ends. Returns the disconnect reason."""
        while True:
            try:
                frame = await asyncio.wait_for(
                    self._ws.recv(), timeout=self._heartbeat_timeout
                )
            except asyncio.TimeoutError:
                return PING_TIMEOUT
            except ConnectionClosed:
                return TRANSPORT_CLOSE
            except (OSError, WebSocketException) as e:
                _log.debug(f"Socket read failed: {e!r}")
                return TRANSPORT_ERROR

            try:
                reason = await self._handle_frame(frame)
            except ProtocolError as e:
                _log.warning(f"Dropping malformed frame: {e}")
                continue
            except (OSError, WebSocketException) as e:
                _log.debug(f"Socket write failed: {e!r}")
                return TRANSPORT_ERROR

            if reason:
                return reason

    async def _handle_frame(self, frame: Any) -> Optional[str]:
        packet = decode_engine(frame)

        if packet.type == EnginePacketType.PING:
            await self._ws.send(encode_engine(EnginePacketType.PONG, packet.data))
            return None
        if packet.type == EnginePacketType.CLOSE:
            return TRANSPORT_CLOSE
        if packet.type != EnginePacketType.MESSAGE:
            return None

        message = decode_socket(packet.data)
        if message.type == SocketPacketType.DISCONNECT:
            return SERVER_DISCONNECT
        if message.type == SocketPacketType.EVENT:
            if message.event in LIFECYCLE_EVENTS or message.event == "close":
                _log.warning(f"Ignoring server event with reserved name '{message.event}'")
            else:
                self._events.emit(message.event, *message.args)
        return None

    async def _drop_ws(self) -> None:
        ws, self._ws = self._ws, None
        goodbye, self._session_open = self._session_open, False
        if ws is None:
            return
        try:
            if goodbye:
                await ws.send(disconnect_frame())
            await ws.close()
        except (OSError, WebSocketException) as e:
            _log.debug(f"Error closing socket: {e!r}")


class SocketTransport:
    """
    Channel factory: ``connect(origin, credential) -> SocketChannel``.

    Each call returns a new, already started channel.
    """

    def __init__(
        self,
        policy: Optional[ReconnectPolicy] = None,
        connect_timeout: float = 10.0,
        connector: Optional[Connector] = None,
        path: str = SOCKET_IO_PATH,
    ):
        self.policy = policy or ReconnectPolicy()
        self.connect_timeout = connect_timeout
        self._connector = connector
        self._path = path

    def __call__(self, origin: str, credential: Optional[str]) -> SocketChannel:
        return self.connect(origin, credential)

    def connect(self, origin: str, credential: Optional[str]) -> SocketChannel:
        auth = {"auth_token": credential} if credential else None
        channel = SocketChannel(
            build_socket_url(origin, self._path),
            auth=auth,
            policy=self.policy,
            connector=self._connector,
            connect_timeout=self.connect_timeout,
        )
        return channel.open()


__all__ = [
    "ConnectRefused",
    "SocketChannel",
    "SocketTransport",
    "CLIENT_DISCONNECT",
    "SERVER_DISCONNECT",
    "TRANSPORT_CLOSE",
    "TRANSPORT_ERROR",
    "PING_TIMEOUT",
]
