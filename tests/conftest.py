import asyncio
import json
from collections.abc import AsyncIterator, Callable
from typing import Any

import pytest

from nexus_realtime.client.connection import ConnectionManager
from nexus_realtime.transport.base import Transport

TEST_URL = "ws://localhost:3000/socket.io/"


class FakeTransport(Transport):
    """In-memory transport for testing."""

    def __init__(self, url: str):
        self.url = url
        self.sent_frames: list[str] = []
        self._incoming: asyncio.Queue[str | None] = asyncio.Queue()
        self.closed = False
        self._error: Exception | None = None

    def receive_frame(self, frame: str | dict[str, Any]) -> None:
        """Simulate a frame arriving from the network."""
        if self.closed:
            return
        if isinstance(frame, dict):
            frame = json.dumps(frame)
        self._incoming.put_nowait(frame)

    def simulate_error(self, message: str = "Network down") -> None:
        """Simulate the connection failing."""
        self._error = ConnectionError(message)
        self._incoming.put_nowait(None)

    def simulate_peer_close(self) -> None:
        """Simulate the server closing the connection cleanly."""
        self.closed = True
        self._incoming.put_nowait(None)

    @property
    def sent_messages(self) -> list[dict[str, Any]]:
        return [json.loads(frame) for frame in self.sent_frames]

    @property
    def is_open(self) -> bool:
        return not self.closed

    async def send(self, frame: str) -> None:
        if self.closed:
            raise ConnectionError("Transport closed")
        self.sent_frames.append(frame)

    async def messages(self) -> AsyncIterator[str]:
        while not self.closed:
            if self._error is not None:
                raise self._error
            frame = await self._incoming.get()
            if frame is None:
                continue
            yield frame

    async def close(self) -> None:
        self.closed = True
        self._incoming.put_nowait(None)


class FakeConnector:
    """Connector that hands out FakeTransports and records every call.

    Queue exceptions in `outcomes` to make the next calls fail, or set
    `fail_with` to make every call fail.
    """

    def __init__(self):
        self.calls: list[str] = []
        self.transports: list[FakeTransport] = []
        self.outcomes: list[Exception] = []
        self.fail_with: Exception | None = None
        self.hang = False

    @property
    def latest(self) -> FakeTransport:
        return self.transports[-1]

    async def __call__(self, url: str) -> FakeTransport:
        self.calls.append(url)
        if self.hang:
            await asyncio.Event().wait()
        if self.outcomes:
            raise self.outcomes.pop(0)
        if self.fail_with is not None:
            raise self.fail_with
        transport = FakeTransport(url)
        self.transports.append(transport)
        return transport


@pytest.fixture
def connector() -> FakeConnector:
    return FakeConnector()


@pytest.fixture
async def make_manager(connector):
    """Factory for managers wired to the fake connector, disconnected on teardown."""
    managers: list[ConnectionManager] = []

    def _make(**kwargs) -> ConnectionManager:
        kwargs.setdefault("max_reconnect_attempts", 3)
        kwargs.setdefault("reconnect_delay", 0.01)
        manager = ConnectionManager(TEST_URL, connector, **kwargs)
        managers.append(manager)
        return manager

    yield _make

    for manager in managers:
        await manager.disconnect()


@pytest.fixture
def wait_until() -> Callable:
    async def _wait_until(predicate: Callable[[], bool], timeout: float = 1.0):
        async with asyncio.timeout(timeout):
            while not predicate():
                await asyncio.sleep(0.005)

    return _wait_until
