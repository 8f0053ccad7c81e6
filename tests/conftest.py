"""
Pytest configuration and fixtures for puterfs tests.
"""

import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest
from websockets.exceptions import ConnectionClosedError

# Add project root to path
PROJECT_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(PROJECT_ROOT))

from puterfs.FileSystem.api import APIClient
from puterfs.FileSystem.events import EventEmitter

# Check for pytest-asyncio
try:
    import pytest_asyncio
    HAS_PYTEST_ASYNCIO = True
except ImportError:
    HAS_PYTEST_ASYNCIO = False


def pytest_collection_modifyitems(config, items):
    """Skip async tests if pytest-asyncio is not installed."""
    if HAS_PYTEST_ASYNCIO:
        return

    skip_asyncio = pytest.mark.skip(
        reason="pytest-asyncio not installed - async tests require pytest-asyncio"
    )
    for item in items:
        if asyncio.iscoroutinefunction(item.function):
            item.add_marker(skip_asyncio)


# =============================================================================
# Fake socket channel (for ConnectionManager / FileSystem tests)
# =============================================================================


class FakeChannel:
    """In-memory stand-in for SocketChannel."""

    def __init__(self, origin: str, credential: Optional[str]):
        self.origin = origin
        self.credential = credential
        self.id: Optional[str] = None
        self.connected = False
        self.closed = False
        self.sent: List[tuple] = []
        self._events = EventEmitter("Tests.FakeChannel")

    def on(self, event, handler=None):
        return self._events.on(event, handler)

    def on_any(self, handler):
        self._events.on_any(handler)

    def disconnect(self):
        if self.closed:
            return
        self.closed = True
        was_connected = self.connected
        self.connected = False
        if was_connected:
            self._events.emit("disconnect", "io client disconnect")
        self._events.emit("close", "io client disconnect")

    async def emit(self, event, *args):
        self.sent.append((event, *args))

    # Test helpers

    def fire(self, event: str, *args: Any) -> None:
        self._events.emit(event, *args)

    def accept(self, sid: str = "sid-1") -> None:
        self.id = sid
        self.connected = True
        self.fire("connect")

    def drop(self, reason: str = "transport close") -> None:
        self.connected = False
        self.id = None
        self.fire("disconnect", reason)


class FakeTransport:
    """Channel factory recording every channel it creates."""

    def __init__(self, accept: bool = False):
        self.accept = accept
        self.channels: List[FakeChannel] = []

    def __call__(self, origin: str, credential: Optional[str]) -> FakeChannel:
        channel = FakeChannel(origin, credential)
        self.channels.append(channel)
        if self.accept:
            asyncio.get_running_loop().call_soon(
                channel.accept, f"sid-{len(self.channels)}"
            )
        return channel

    @property
    def live(self) -> List[FakeChannel]:
        return [c for c in self.channels if not c.closed]

    @property
    def last(self) -> FakeChannel:
        return self.channels[-1]


@pytest.fixture
def fake_transport() -> FakeTransport:
    return FakeTransport()


# =============================================================================
# Fake WebSocket (for SocketChannel tests)
# =============================================================================


class FakeWebSocket:
    """Scriptable WebSocket: frames put on ``incoming`` are returned by recv()."""

    def __init__(self, frames: Optional[List[Any]] = None):
        self.incoming: asyncio.Queue = asyncio.Queue()
        self.sent: List[str] = []
        self.closed = False
        for frame in frames or []:
            self.incoming.put_nowait(frame)

    def feed(self, frame: Any) -> None:
        self.incoming.put_nowait(frame)

    def drop(self) -> None:
        self.incoming.put_nowait(ConnectionClosedError(None, None))

    async def recv(self):
        frame = await self.incoming.get()
        if isinstance(frame, BaseException):
            raise frame
        return frame

    async def send(self, data: str) -> None:
        if self.closed:
            raise ConnectionClosedError(None, None)
        self.sent.append(data)

    async def close(self) -> None:
        self.closed = True


def open_frame(sid: str = "eio-1", ping_interval: int = 25000, ping_timeout: int = 20000) -> str:
    return "0" + json.dumps({
        "sid": sid,
        "upgrades": [],
        "pingInterval": ping_interval,
        "pingTimeout": ping_timeout,
        "maxPayload": 1000000,
    })


def connect_ack(sid: str = "sock-1") -> str:
    return "40" + json.dumps({"sid": sid})


class ScriptedConnector:
    """
    Connector returning scripted sockets in order.

    Entries are FakeWebSocket instances or exceptions to raise.
    """

    def __init__(self, script: List[Any]):
        self.script = list(script)
        self.urls: List[str] = []

    async def __call__(self, url: str):
        self.urls.append(url)
        if not self.script:
            raise ConnectionRefusedError("no more scripted sockets")
        entry = self.script.pop(0)
        if isinstance(entry, BaseException):
            raise entry
        return entry


def handshaken_socket(sid: str = "sock-1") -> FakeWebSocket:
    """A socket that completes the Engine.IO and Socket.IO handshakes."""
    return FakeWebSocket([open_frame(), connect_ack(sid)])


async def settle(rounds: int = 10) -> None:
    """Let background tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


async def eventually(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll until predicate() is true or fail the test."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            pytest.fail("condition not reached before timeout")
        await asyncio.sleep(0.005)


def record_events(emitter: Any) -> List[tuple]:
    """Collect every (event, *args) an emitter or channel delivers."""
    seen: List[tuple] = []
    emitter.on_any(lambda event, *args: seen.append((event, *args)))
    return seen


# =============================================================================
# HTTP
# =============================================================================


class RecordingHandler:
    """httpx.MockTransport handler that records requests and replays responses."""

    def __init__(self, routes: Optional[Dict[str, Any]] = None):
        self.routes = routes or {}
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get(request.url.path)
        if callable(route):
            return route(request)
        if isinstance(route, httpx.Response):
            return route
        if isinstance(route, bytes):
            return httpx.Response(200, content=route)
        return httpx.Response(200, json=route if route is not None else {})

    @property
    def last(self) -> httpx.Request:
        return self.requests[-1]

    def last_json(self) -> Dict[str, Any]:
        return json.loads(self.last.content)


@pytest.fixture
def http_handler() -> RecordingHandler:
    return RecordingHandler()


@pytest.fixture
def make_api() -> Callable[[RecordingHandler], APIClient]:
    def factory(handler: Callable[[httpx.Request], httpx.Response]) -> APIClient:
        return APIClient(timeout=5.0, transport=httpx.MockTransport(handler))
    return factory
