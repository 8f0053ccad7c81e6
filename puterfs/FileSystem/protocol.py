"""
Socket channel wire protocol.

The file system server speaks Socket.IO v5 on top of Engine.IO v4. Over a
WebSocket every frame is one Engine.IO packet: a single type digit followed
by its payload. MESSAGE packets carry a Socket.IO packet:

    <type>[<attachments>-][<namespace>,][<ack id>][<JSON data>]

Binary attachments are not used by the file system events and are rejected.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, List, Optional
from urllib.parse import urlsplit, urlunsplit

from puterfs.FileSystem.errors import ChannelError

ENGINE_IO_VERSION = 4
SOCKET_IO_PATH = "/socket.io/"
DEFAULT_NAMESPACE = "/"


class ProtocolError(ChannelError):
    """Raised when a frame cannot be decoded."""
    pass


class EnginePacketType(IntEnum):
    OPEN = 0
    CLOSE = 1
    PING = 2
    PONG = 3
    MESSAGE = 4
    UPGRADE = 5
    NOOP = 6


class SocketPacketType(IntEnum):
    CONNECT = 0
    DISCONNECT = 1
    EVENT = 2
    ACK = 3
    CONNECT_ERROR = 4
    BINARY_EVENT = 5
    BINARY_ACK = 6


@dataclass
class EnginePacket:
    """One Engine.IO frame."""

    type: EnginePacketType
    data: str = ""

    def json(self) -> Any:
        """Decode the payload as JSON (OPEN packets)."""
        try:
            return json.loads(self.data) if self.data else {}
        except json.JSONDecodeError as e:
            raise ProtocolError(f"Invalid JSON in {self.type.name} packet: {e}")


@dataclass
class SocketPacket:
    """One Socket.IO packet."""

    type: SocketPacketType
    data: Any = None
    namespace: str = DEFAULT_NAMESPACE
    ack_id: Optional[int] = None

    @property
    def event(self) -> Optional[str]:
        if self.type == SocketPacketType.EVENT and self.data:
            return self.data[0]
        return None

    @property
    def args(self) -> List[Any]:
        if self.type == SocketPacketType.EVENT and self.data:
            return list(self.data[1:])
        return []


def encode_engine(packet_type: EnginePacketType, data: str = "") -> str:
    return f"{int(packet_type)}{data}"


def decode_engine(frame: Any) -> EnginePacket:
    if isinstance(frame, (bytes, bytearray)):
        raise ProtocolError("Binary frames are not supported")
    if not frame:
        raise ProtocolError("Empty frame")
    try:
        packet_type = EnginePacketType(int(frame[0]))
    except ValueError:
        raise ProtocolError(f"Unknown Engine.IO packet type: {frame[0]!r}")
    return EnginePacket(type=packet_type, data=frame[1:])


def encode_socket(packet: SocketPacket) -> str:
    """Encode a Socket.IO packet as the payload of an Engine.IO MESSAGE."""
    out = str(int(packet.type))
    if packet.namespace and packet.namespace != DEFAULT_NAMESPACE:
        out += packet.namespace + ","
    if packet.ack_id is not None:
        out += str(packet.ack_id)
    if packet.data is not None:
        out += json.dumps(packet.data, separators=(",", ":"))
    return out


def decode_socket(payload: str) -> SocketPacket:
    if not payload:
        raise ProtocolError("Empty Socket.IO packet")

    try:
        packet_type = SocketPacketType(int(payload[0]))
    except ValueError:
        raise ProtocolError(f"Unknown Socket.IO packet type: {payload[0]!r}")

    if packet_type in (SocketPacketType.BINARY_EVENT, SocketPacketType.BINARY_ACK):
        raise ProtocolError("Binary Socket.IO packets are not supported")

    i = 1
    namespace = DEFAULT_NAMESPACE
    if i < len(payload) and payload[i] == "/":
        end = payload.find(",", i)
        if end == -1:
            namespace, i = payload[i:], len(payload)
        else:
            namespace, i = payload[i:end], end + 1

    start = i
    while i < len(payload) and payload[i].isdigit():
        i += 1
    ack_id = int(payload[start:i]) if i > start else None

    data = None
    if i < len(payload):
        try:
            data = json.loads(payload[i:])
        except json.JSONDecodeError as e:
            raise ProtocolError(f"Invalid JSON in Socket.IO packet: {e}")

    if packet_type == SocketPacketType.EVENT and not (
        isinstance(data, list) and data and isinstance(data[0], str)
    ):
        raise ProtocolError("EVENT packet without an event name")

    return SocketPacket(type=packet_type, data=data, namespace=namespace, ack_id=ack_id)


def connect_frame(auth: Optional[dict] = None) -> str:
    return encode_engine(
        EnginePacketType.MESSAGE,
        encode_socket(SocketPacket(SocketPacketType.CONNECT, data=auth)),
    )


def event_frame(event: str, *args: Any) -> str:
    return encode_engine(
        EnginePacketType.MESSAGE,
        encode_socket(SocketPacket(SocketPacketType.EVENT, data=[event, *args])),
    )


def disconnect_frame() -> str:
    return encode_engine(
        EnginePacketType.MESSAGE,
        encode_socket(SocketPacket(SocketPacketType.DISCONNECT)),
    )


def build_socket_url(origin: str, path: str = SOCKET_IO_PATH) -> str:
    """
    Turn an API origin into the Socket.IO WebSocket endpoint.

    >>> build_socket_url("https://api.puter.com")
    'wss://api.puter.com/socket.io/?EIO=4&transport=websocket'
    """
    parts = urlsplit(origin)
    scheme = {"https": "wss", "http": "ws"}.get(parts.scheme, parts.scheme)
    if scheme not in ("ws", "wss"):
        raise ValueError(f"Unsupported API origin: {origin!r}")
    base_path = parts.path.rstrip("/")
    query = f"EIO={ENGINE_IO_VERSION}&transport=websocket"
    return urlunsplit((scheme, parts.netloc, base_path + path, query, ""))


__all__ = [
    "ProtocolError",
    "EnginePacketType",
    "SocketPacketType",
    "EnginePacket",
    "SocketPacket",
    "encode_engine",
    "decode_engine",
    "encode_socket",
    "decode_socket",
    "connect_frame",
    "event_frame",
    "disconnect_frame",
    "build_socket_url",
]
