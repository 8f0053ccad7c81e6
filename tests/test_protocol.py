"""Tests for the Engine.IO / Socket.IO frame codec."""

import pytest

from puterfs.FileSystem.errors import ChannelError
from puterfs.FileSystem.protocol import (
    EnginePacketType,
    ProtocolError,
    SocketPacket,
    SocketPacketType,
    build_socket_url,
    connect_frame,
    decode_engine,
    decode_socket,
    disconnect_frame,
    encode_engine,
    encode_socket,
    event_frame,
)


class TestEnginePackets:

    def test_decode_open(self):
        packet = decode_engine('0{"sid":"abc","pingInterval":25000,"pingTimeout":20000}')
        assert packet.type == EnginePacketType.OPEN
        assert packet.json()["sid"] == "abc"

    def test_decode_ping_pong(self):
        assert decode_engine("2").type == EnginePacketType.PING
        assert encode_engine(EnginePacketType.PONG) == "3"
        assert encode_engine(EnginePacketType.PONG, "probe") == "3probe"

    def test_decode_message_keeps_payload(self):
        packet = decode_engine('42["fs.change",{}]')
        assert packet.type == EnginePacketType.MESSAGE
        assert packet.data == '2["fs.change",{}]'

    @pytest.mark.parametrize("frame", ["", b"\x04abc", "9", "x"])
    def test_decode_rejects_bad_frames(self, frame):
        with pytest.raises(ProtocolError):
            decode_engine(frame)

    def test_invalid_open_json(self):
        with pytest.raises(ProtocolError):
            decode_engine("0{broken").json()

    def test_protocol_error_is_channel_error(self):
        assert issubclass(ProtocolError, ChannelError)


class TestSocketPackets:

    def test_decode_connect_ack(self):
        packet = decode_socket('0{"sid":"s-1"}')
        assert packet.type == SocketPacketType.CONNECT
        assert packet.data == {"sid": "s-1"}
        assert packet.namespace == "/"

    def test_decode_event(self):
        packet = decode_socket('2["item.added",{"path":"/a"},1]')
        assert packet.event == "item.added"
        assert packet.args == [{"path": "/a"}, 1]

    def test_decode_namespace_and_ack_id(self):
        packet = decode_socket('2/admin,13["ping"]')
        assert packet.namespace == "/admin"
        assert packet.ack_id == 13
        assert packet.event == "ping"

    def test_decode_disconnect(self):
        packet = decode_socket("1")
        assert packet.type == SocketPacketType.DISCONNECT
        assert packet.data is None

    def test_decode_connect_error(self):
        packet = decode_socket('4{"message":"Invalid token"}')
        assert packet.type == SocketPacketType.CONNECT_ERROR
        assert packet.data["message"] == "Invalid token"

    @pytest.mark.parametrize("payload", ["", "7", '5-["x"]', "2{}", "2[1]", "2[broken"])
    def test_decode_rejects_bad_packets(self, payload):
        with pytest.raises(ProtocolError):
            decode_socket(payload)

    def test_encode_with_namespace_and_ack(self):
        packet = SocketPacket(SocketPacketType.EVENT, data=["hi"], namespace="/chat", ack_id=4)
        assert encode_socket(packet) == '2/chat,4["hi"]'
        assert decode_socket(encode_socket(packet)) == packet


class TestFrames:

    def test_connect_frame_with_auth(self):
        assert connect_frame({"auth_token": "t"}) == '40{"auth_token":"t"}'

    def test_connect_frame_without_auth(self):
        assert connect_frame() == "40"

    def test_event_frame(self):
        assert event_frame("trash.is_empty", {"is_empty": True}) == '42["trash.is_empty",{"is_empty":true}]'

    def test_disconnect_frame(self):
        assert disconnect_frame() == "41"


class TestBuildSocketUrl:

    def test_https_becomes_wss(self):
        assert build_socket_url("https://api.puter.com") == (
            "wss://api.puter.com/socket.io/?EIO=4&transport=websocket"
        )

    def test_http_with_port_and_trailing_slash(self):
        assert build_socket_url("http://localhost:4100/") == (
            "ws://localhost:4100/socket.io/?EIO=4&transport=websocket"
        )

    def test_origin_path_is_kept(self):
        assert build_socket_url("https://host/api") == (
            "wss://host/api/socket.io/?EIO=4&transport=websocket"
        )

    def test_unsupported_scheme(self):
        with pytest.raises(ValueError):
            build_socket_url("ftp://host")
