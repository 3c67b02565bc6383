import asyncio
from typing import Any, Callable, List, Optional

import pytest

from wsconn.config import ConnectionConfig
from wsconn.transport import CloseEvent, OpenEvent, ReadyState, Transport, TransportEvent


class DummyTransport(Transport):
    """In-memory transport; tests drive its notifications by hand."""

    def __init__(self, url: str, config: Optional[ConnectionConfig] = None) -> None:
        super().__init__(url)
        self.config = config
        self.state = ReadyState.CONNECTING
        self.sent_messages: List[str] = []
        self.closed = False

    @property
    def ready_state(self) -> int:
        return int(self.state)

    def send(self, text: str) -> None:
        self.sent_messages.append(text)

    def close(self) -> None:
        self.closed = True
        self.state = ReadyState.CLOSED

    # simulated server-side events

    def simulate_open(self) -> None:
        self.state = ReadyState.OPEN
        self.emit(TransportEvent.OPEN, OpenEvent(url=self.url))

    def simulate_message(self, data: str) -> None:
        self.emit(TransportEvent.MESSAGE, data)

    def simulate_error(self, exc: Exception) -> None:
        self.emit(TransportEvent.ERROR, exc)

    def simulate_close(self, code: int = 1006) -> None:
        self.state = ReadyState.CLOSED
        self.emit(TransportEvent.CLOSE, CloseEvent(code=code))


class DummyTransportFactory:
    def __init__(self) -> None:
        self.created: List[DummyTransport] = []

    def __call__(self, url: str, config: ConnectionConfig) -> DummyTransport:
        transport = DummyTransport(url, config)
        self.created.append(transport)
        return transport

    @property
    def last(self) -> DummyTransport:
        return self.created[-1]


class Recorder:
    """Callable that records every call's positional arguments."""

    def __init__(self) -> None:
        self.calls: List[tuple] = []

    def __call__(self, *args: Any) -> None:
        self.calls.append(args)

    @property
    def count(self) -> int:
        return len(self.calls)


async def wait_for(predicate: Callable[[], bool], timeout: float = 3.0) -> bool:
    loop = asyncio.get_running_loop()
    end = loop.time() + timeout
    while loop.time() < end:
        if predicate():
            return True
        await asyncio.sleep(0.01)
    return predicate()


@pytest.fixture
def factory() -> DummyTransportFactory:
    return DummyTransportFactory()


@pytest.fixture
def callbacks():
    return {
        "on_connect": Recorder(),
        "on_disconnect": Recorder(),
        "on_close": Recorder(),
        "on_receive": Recorder(),
        "on_error": Recorder(),
    }


@pytest.fixture
def make_config(factory, callbacks):
    def _make(**overrides: Any) -> ConnectionConfig:
        kwargs = dict(url="wss://x", token="t", reconnect_interval_ms=20, transport_factory=factory)
        kwargs.update(callbacks)
        kwargs.update(overrides)
        return ConnectionConfig(**kwargs)
    return _make
