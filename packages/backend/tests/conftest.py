"""Test fixtures — in-memory registry, app clients, fake broker objects.

Learn: Nothing here needs a real RabbitMQ. Relays are disabled for the app
(no lifespan broker connections), and relay tests drive EventRelay with fake
aio-pika connection/channel/queue/message objects that record what the relay
asked for.
"""

import asyncio
import os
from types import SimpleNamespace
from typing import Callable, Optional
from unittest.mock import AsyncMock

os.environ.setdefault("ADSYNC_RELAY_ENABLED", "false")

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from starlette.websockets import WebSocketState  # noqa: E402

from adsync.main import app  # noqa: E402
from adsync.realtime.registry import ConnectionRegistry  # noqa: E402


async def wait_until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    """Yield to the loop until predicate() holds or the timeout passes."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.001)


@pytest.fixture()
def registry():
    return ConnectionRegistry()


@pytest.fixture()
def fresh_registry():
    """Swap in an empty registry on the app for the duration of a test."""
    previous = app.state.registry
    app.state.registry = ConnectionRegistry()
    try:
        yield app.state.registry
    finally:
        app.state.registry = previous


@pytest_asyncio.fixture()
async def client(fresh_registry):
    """HTTP client against the ASGI app (no lifespan, no broker)."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# ─── Fake WebSocket ──────────────────────────────────────


class FakeWebSocket:
    """Just enough of starlette's WebSocket for the events handler."""

    def __init__(self, registry: ConnectionRegistry, params: Optional[dict] = None):
        self.query_params = params or {}
        self.app = SimpleNamespace(state=SimpleNamespace(registry=registry))
        self.client_state = WebSocketState.CONNECTING
        self.accepted = False
        self.closed_with = None
        self.sent: list[str] = []
        self.fail_sends = False
        self._inbound: asyncio.Queue = asyncio.Queue()

    async def accept(self):
        self.accepted = True
        self.client_state = WebSocketState.CONNECTED

    async def close(self, code: int = 1000, reason: Optional[str] = None):
        self.closed_with = (code, reason)
        self.client_state = WebSocketState.DISCONNECTED

    async def receive(self):
        return await self._inbound.get()

    async def send_text(self, data: str):
        if self.fail_sends:
            raise RuntimeError("Cannot call send once a close message has been sent.")
        self.sent.append(data)

    # test-side helpers
    def client_sends(self, text: str):
        self._inbound.put_nowait({"type": "websocket.receive", "text": text})

    def client_sends_bytes(self, data: bytes):
        self._inbound.put_nowait({"type": "websocket.receive", "bytes": data})

    def client_disconnects(self):
        self._inbound.put_nowait({"type": "websocket.disconnect", "code": 1000})


# ─── Fake aio-pika objects ───────────────────────────────


class FakeMessage:
    """Incoming broker delivery."""

    def __init__(self, body: bytes, routing_key: str = "progress.u1"):
        self.body = body
        self.routing_key = routing_key
        self.ack = AsyncMock()


class FakeQueue:
    def __init__(self, connection: "FakeConnection"):
        self.name = "amq.gen-test"
        self.connection = connection
        self.bindings: list[tuple] = []
        self.consumer_tag: Optional[str] = None

    async def bind(self, exchange, routing_key: str):
        self.bindings.append((exchange, routing_key))

    def iterator(self, consumer_tag: Optional[str] = None):
        self.consumer_tag = consumer_tag
        return FakeQueueIterator(self.connection)


class FakeQueueIterator:
    """Yields the connection's scripted messages, then waits until closed."""

    def __init__(self, connection: "FakeConnection"):
        self.connection = connection

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def __aiter__(self):
        return self

    async def __anext__(self):
        if self.connection.messages:
            return self.connection.messages.pop(0)
        if self.connection.end_after_messages:
            raise StopAsyncIteration
        await self.connection.closed.wait()
        raise StopAsyncIteration


class FakeChannel:
    def __init__(self, connection: "FakeConnection"):
        self.connection = connection
        self.qos: Optional[int] = None
        self.exchanges: list[tuple] = []
        self.queues: list[FakeQueue] = []

    async def set_qos(self, prefetch_count: int):
        self.qos = prefetch_count

    async def declare_exchange(self, name, type, durable=False):
        self.exchanges.append((name, type, durable))
        return SimpleNamespace(name=name)

    async def declare_queue(self, name=None, exclusive=False, auto_delete=False):
        self.queue_args = {"name": name, "exclusive": exclusive, "auto_delete": auto_delete}
        queue = FakeQueue(self.connection)
        self.queues.append(queue)
        return queue


class FakeConnection:
    def __init__(self, messages=None, end_after_messages: bool = False):
        self.messages = list(messages or [])
        self.end_after_messages = end_after_messages
        self.closed = asyncio.Event()
        self.channels: list[FakeChannel] = []

    @property
    def is_closed(self) -> bool:
        return self.closed.is_set()

    async def channel(self):
        ch = FakeChannel(self)
        self.channels.append(ch)
        return ch

    async def close(self):
        self.closed.set()


def connection_factory(*outcomes):
    """Build a connect() stand-in returning/raising the given outcomes in order.

    The last outcome repeats once the list runs out.
    """
    calls = []

    async def connect(url: str):
        calls.append(url)
        outcome = outcomes[min(len(calls), len(outcomes)) - 1]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    connect.calls = calls
    return connect
