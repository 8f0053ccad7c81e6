"""Tests for the Socket.IO channel and its reconnect loop."""

import logging

import pytest

from puterfs.FileSystem.errors import ChannelError
from puterfs.FileSystem.models import ReconnectPolicy
from puterfs.FileSystem.transport import (
    CLIENT_DISCONNECT,
    PING_TIMEOUT,
    SERVER_DISCONNECT,
    TRANSPORT_CLOSE,
    TRANSPORT_ERROR,
    ConnectRefused,
    SocketChannel,
    SocketTransport,
)

from conftest import (
    FakeWebSocket,
    ScriptedConnector,
    connect_ack,
    eventually,
    handshaken_socket,
    open_frame,
    record_events,
)

URL = "wss://api.example.com/socket.io/?EIO=4&transport=websocket"


def fast_policy(**overrides) -> ReconnectPolicy:
    values = dict(delay=0.01, delay_max=0.01, randomization_factor=0, attempts=3)
    values.update(overrides)
    return ReconnectPolicy(**values)


def names(events):
    return [e[0] for e in events]


async def open_channel(script, auth=None, **policy):
    connector = ScriptedConnector(script)
    channel = SocketChannel(
        URL, auth=auth, policy=fast_policy(**policy), connector=connector, connect_timeout=1.0
    )
    events = record_events(channel)
    channel.open()
    return channel, connector, events


class TestHandshake:

    @pytest.mark.asyncio
    async def test_connects_and_sends_credential(self):
        ws = handshaken_socket("sock-1")
        channel, connector, events = await open_channel([ws], auth={"auth_token": "T"})

        await eventually(lambda: channel.connected)

        assert channel.id == "sock-1"
        assert ws.sent[0] == '40{"auth_token":"T"}'
        assert connector.urls == [URL]
        assert names(events) == ["connect"]

        channel.disconnect()
        await channel.wait_closed()

    @pytest.mark.asyncio
    async def test_answers_ping_during_handshake(self):
        ws = FakeWebSocket([open_frame(), "2", connect_ack()])
        channel, _, _ = await open_channel([ws])

        await eventually(lambda: channel.connected)
        assert ws.sent == ["40", "3"]

        channel.disconnect()
        await channel.wait_closed()

    @pytest.mark.asyncio
    async def test_refused_connect_is_not_retried(self):
        ws = FakeWebSocket([open_frame(), '44{"message":"Invalid token"}'])
        channel, connector, events = await open_channel([ws, handshaken_socket()])

        await eventually(lambda: channel.closed)
        await channel.wait_closed()

        assert names(events) == ["error", "close"]
        assert isinstance(events[0][1], ConnectRefused)
        assert "Invalid token" in str(events[0][1])
        assert len(connector.urls) == 1
        assert ws.closed

    @pytest.mark.asyncio
    async def test_first_failure_reports_error_then_retries(self):
        channel, _, events = await open_channel([OSError("refused"), handshaken_socket("s-2")])

        await eventually(lambda: channel.connected)

        assert names(events) == ["error", "reconnect_attempt", "connect", "reconnect"]
        assert isinstance(events[0][1], ChannelError)
        assert events[1] == ("reconnect_attempt", 1)
        assert events[3] == ("reconnect", 1)

        channel.disconnect()
        await channel.wait_closed()


class TestConnectedChannel:

    @pytest.mark.asyncio
    async def test_ping_pong(self):
        ws = handshaken_socket()
        channel, _, _ = await open_channel([ws])
        await eventually(lambda: channel.connected)

        ws.feed("2")
        await eventually(lambda: "3" in ws.sent)

        channel.disconnect()
        await channel.wait_closed()

    @pytest.mark.asyncio
    async def test_server_events_dispatched_by_name(self):
        ws = handshaken_socket()
        channel, _, _ = await open_channel([ws])
        received = []
        channel.on("item.added", lambda item: received.append(item))
        await eventually(lambda: channel.connected)

        ws.feed('42["item.added",{"path":"/a"}]')
        await eventually(lambda: received)

        assert received == [{"path": "/a"}]

        channel.disconnect()
        await channel.wait_closed()

    @pytest.mark.asyncio
    async def test_malformed_and_reserved_frames_are_skipped(self):
        ws = handshaken_socket()
        channel, _, events = await open_channel([ws])
        await eventually(lambda: channel.connected)

        ws.feed("9garbage")
        ws.feed('42["connect"]')
        ws.feed('42["after"]')
        await eventually(lambda: "after" in names(events))

        assert names(events).count("connect") == 1
        assert channel.connected

        channel.disconnect()
        await channel.wait_closed()

    @pytest.mark.asyncio
    async def test_emit_sends_event_frame(self):
        ws = handshaken_socket()
        channel, _, _ = await open_channel([ws])
        await eventually(lambda: channel.connected)

        await channel.emit("hello", 1)
        assert ws.sent[-1] == '42["hello",1]'

        channel.disconnect()
        await channel.wait_closed()

    @pytest.mark.asyncio
    async def test_emit_requires_connection(self):
        channel = SocketChannel(URL, connector=ScriptedConnector([]))
        with pytest.raises(ChannelError):
            await channel.emit("hello")


class TestDisconnect:

    @pytest.mark.asyncio
    async def test_client_disconnect(self):
        ws = handshaken_socket()
        channel, _, events = await open_channel([ws])
        await eventually(lambda: channel.connected)

        channel.disconnect()

        # Dead as soon as disconnect() returns
        assert channel.closed
        assert not channel.connected
        assert events[-2:] == [("disconnect", CLIENT_DISCONNECT), ("close", CLIENT_DISCONNECT)]

        await channel.wait_closed()
        assert "41" in ws.sent
        assert ws.closed

    @pytest.mark.asyncio
    async def test_disconnect_before_connected_only_closes(self):
        channel, _, events = await open_channel([FakeWebSocket([open_frame()])])

        channel.disconnect()
        channel.disconnect()
        await channel.wait_closed()

        assert names(events) == ["close"]

    @pytest.mark.asyncio
    async def test_server_disconnect_is_final(self):
        ws = handshaken_socket()
        channel, connector, events = await open_channel([ws, handshaken_socket()])
        await eventually(lambda: channel.connected)

        ws.feed("41")
        await eventually(lambda: channel.closed)
        await channel.wait_closed()

        assert names(events) == ["connect", "disconnect", "close"]
        assert events[1] == ("disconnect", SERVER_DISCONNECT)
        assert len(connector.urls) == 1

    @pytest.mark.asyncio
    async def test_ping_timeout(self):
        ws = FakeWebSocket([open_frame(ping_interval=10, ping_timeout=10), connect_ack()])
        channel, _, events = await open_channel([ws], enabled=False)

        await eventually(lambda: channel.closed)

        assert ("disconnect", PING_TIMEOUT) in events
        await channel.wait_closed()


class TestReconnect:

    @pytest.mark.asyncio
    async def test_reconnects_after_transport_drop(self):
        first, second = handshaken_socket("s-1"), handshaken_socket("s-2")
        channel, _, events = await open_channel([first, second])
        await eventually(lambda: channel.connected)

        first.drop()
        await eventually(lambda: "reconnect" in names(events))

        assert names(events) == ["connect", "disconnect", "reconnect_attempt", "connect", "reconnect"]
        assert events[1] == ("disconnect", TRANSPORT_CLOSE)
        assert channel.id == "s-2"

        channel.disconnect()
        await channel.wait_closed()

    @pytest.mark.asyncio
    async def test_reconnect_failed_after_budget(self):
        ws = handshaken_socket()
        channel, connector, events = await open_channel([ws], attempts=2)
        await eventually(lambda: channel.connected)

        ws.drop()
        await eventually(lambda: channel.closed)
        await channel.wait_closed()

        assert names(events) == [
            "connect",
            "disconnect",
            "reconnect_attempt",
            "reconnect_error",
            "reconnect_attempt",
            "reconnect_error",
            "reconnect_failed",
            "close",
        ]
        assert len(connector.urls) == 3

    @pytest.mark.asyncio
    async def test_no_reconnect_when_disabled(self):
        ws = handshaken_socket()
        channel, connector, events = await open_channel([ws, handshaken_socket()], enabled=False)
        await eventually(lambda: channel.connected)

        ws.drop()
        await eventually(lambda: channel.closed)
        await channel.wait_closed()

        assert names(events) == ["connect", "disconnect", "close"]
        assert len(connector.urls) == 1


class TestUnexpectedFailures:

    @pytest.mark.asyncio
    async def test_non_object_open_payload(self):
        ws = FakeWebSocket(["0[1]"])
        channel, _, events = await open_channel([ws], enabled=False)

        await eventually(lambda: channel.closed)
        await channel.wait_closed()

        assert names(events) == ["error", "close"]
        assert isinstance(events[0][1], ChannelError)
        assert "OPEN payload is not an object" in str(events[0][1])
        assert ws.closed

    @pytest.mark.asyncio
    async def test_non_object_connect_payload(self):
        ws = FakeWebSocket([open_frame(), "40[1]"])
        channel, _, events = await open_channel([ws], enabled=False)

        await eventually(lambda: channel.closed)
        await channel.wait_closed()

        assert names(events) == ["error", "close"]
        assert "CONNECT payload is not an object" in str(events[0][1])
        assert channel.id is None

    @pytest.mark.asyncio
    async def test_connector_bug_ends_channel(self, caplog):
        with caplog.at_level(logging.ERROR):
            channel, _, events = await open_channel([RuntimeError("boom")])
            await eventually(lambda: channel.closed)
            await channel.wait_closed()

        assert names(events) == ["error", "close"]
        assert isinstance(events[0][1], ChannelError)
        assert "boom" in str(events[0][1])
        assert events[1] == ("close", TRANSPORT_ERROR)
        assert channel._task.exception() is None
        assert "stopped unexpectedly" in caplog.text

    @pytest.mark.asyncio
    async def test_read_bug_while_connected_reports_disconnect(self):
        ws = handshaken_socket()
        channel, connector, events = await open_channel([ws, handshaken_socket()])
        await eventually(lambda: channel.connected)

        ws.feed(RuntimeError("reader bug"))
        await eventually(lambda: channel.closed)
        await channel.wait_closed()

        assert names(events) == ["connect", "disconnect", "error", "close"]
        assert events[1] == ("disconnect", TRANSPORT_ERROR)
        assert not channel.connected
        assert channel.id is None
        assert len(connector.urls) == 1
        assert ws.closed


class TestSocketTransport:

    @pytest.mark.asyncio
    async def test_factory_builds_started_channel(self):
        ws = handshaken_socket()
        connector = ScriptedConnector([ws])
        transport = SocketTransport(policy=fast_policy(), connector=connector)

        channel = transport("https://api.example.com", "T")
        await eventually(lambda: channel.connected)

        assert connector.urls == [URL]
        assert ws.sent[0] == '40{"auth_token":"T"}'

        channel.disconnect()
        await channel.wait_closed()

    @pytest.mark.asyncio
    async def test_no_credential_sends_bare_connect(self):
        ws = handshaken_socket()
        transport = SocketTransport(policy=fast_policy(), connector=ScriptedConnector([ws]))

        channel = transport.connect("https://api.example.com", None)
        await eventually(lambda: channel.connected)

        assert ws.sent[0] == "40"

        channel.disconnect()
        await channel.wait_closed()

    def test_rejects_bad_origin(self):
        transport = SocketTransport()
        with pytest.raises(ValueError):
            transport.connect("ftp://example.com", "T")
