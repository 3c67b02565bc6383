"""
Transport layer: a listener-based socket handle.

A transport opens itself as soon as it is constructed and reports what happens
through four notifications:

    open     -> OpenEvent
    message  -> str (binary frames are decoded as UTF-8)
    error    -> the exception that was raised
    close    -> CloseEvent, always last and always exactly once

``ready_state`` follows the WebSocket ready-state codes
(0 connecting, 1 open, 2 closing, 3 closed).
"""

from __future__ import annotations
import asyncio
from contextlib import suppress
from dataclasses import dataclass
from enum import IntEnum
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Set

import websockets
from websockets.exceptions import ConnectionClosed, InvalidURI
from websockets.uri import parse_uri

from wsconn.errors import TransportError
from shared.log import get_logger

if TYPE_CHECKING:
    from wsconn.config import ConnectionConfig

logger = get_logger(__name__)

Listener = Callable[[Any], None]

# Close code used when the connection ended without a close frame.
ABNORMAL_CLOSURE = 1006


class ReadyState(IntEnum):
    CONNECTING = 0
    OPEN = 1
    CLOSING = 2
    CLOSED = 3


class TransportEvent:
    OPEN = "open"
    CLOSE = "close"
    MESSAGE = "message"
    ERROR = "error"

    ALL = (OPEN, CLOSE, MESSAGE, ERROR)


@dataclass(frozen=True)
class OpenEvent:
    url: str


@dataclass(frozen=True)
class CloseEvent:
    code: int
    reason: str = ""


class Transport:
    """
    Base class holding the listener registry.

    Subclasses drive ``emit`` and implement ``ready_state``, ``send`` and
    ``close``.
    """

    def __init__(self, url: str) -> None:
        self.url = url
        self._listeners: Dict[str, List[Listener]] = {event: [] for event in TransportEvent.ALL}

    def add_listener(self, event: str, listener: Listener) -> None:
        """Attach ``listener`` to ``event``. Adding the same callable twice is a no-op."""
        listeners = self._listeners_for(event)
        if listener not in listeners:
            listeners.append(listener)

    def remove_listener(self, event: str, listener: Listener) -> None:
        listeners = self._listeners_for(event)
        if listener in listeners:
            listeners.remove(listener)

    def listener_count(self, event: Optional[str] = None) -> int:
        if event is not None:
            return len(self._listeners_for(event))
        return sum(len(v) for v in self._listeners.values())

    def emit(self, event: str, payload: Any = None) -> None:
        for listener in list(self._listeners_for(event)):
            try:
                listener(payload)
            except Exception:
                logger.exception(f"Listener for '{event}' raised")

    def _listeners_for(self, event: str) -> List[Listener]:
        try:
            return self._listeners[event]
        except KeyError:
            raise ValueError(f"Unknown transport event: {event!r}") from None

    @property
    def ready_state(self) -> int:
        raise NotImplementedError

    def send(self, text: str) -> None:
        raise NotImplementedError

    def close(self) -> None:
        raise NotImplementedError

    async def wait_closed(self) -> None:
        """Wait until the transport has finished shutting down."""
        return None


class WebSocketTransport(Transport):
    """
    Transport backed by a ``websockets`` client connection.

    Construction raises TransportError for a malformed URL and when no event
    loop is running; otherwise the opening handshake runs in a background task.
    """

    def __init__(self, url: str, config: Optional["ConnectionConfig"] = None) -> None:
        super().__init__(url)
        try:
            parse_uri(url)
        except InvalidURI as e:
            raise TransportError(f"invalid websocket url: {url}") from e
        try:
            self._loop = asyncio.get_running_loop()
        except RuntimeError as e:
            raise TransportError("websocket transport requires a running event loop") from e

        self.open_timeout = config.open_timeout if config is not None else 10.0
        self.ping_interval = config.ping_interval if config is not None else 15
        self.ping_timeout = config.ping_timeout if config is not None else 45

        self._state = ReadyState.CONNECTING
        self._websocket: Optional[websockets.ClientConnection] = None
        self._send_lock = asyncio.Lock()
        self._background_tasks: Set[asyncio.Task] = set()
        self._task = self._loop.create_task(self._run())

    @property
    def ready_state(self) -> int:
        return int(self._state)

    def _track_background_task(self, task: asyncio.Task) -> None:
        """Keep a strong reference to background tasks until completion."""
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def _run(self) -> None:
        try:
            self._websocket = await websockets.connect(
                self.url,
                open_timeout=self.open_timeout,
                ping_interval=self.ping_interval,
                ping_timeout=self.ping_timeout,
            )
            self._state = ReadyState.OPEN
            self.emit(TransportEvent.OPEN, OpenEvent(url=self.url))

            async for message in self._websocket:
                if isinstance(message, bytes):
                    message = message.decode("utf-8", errors="replace")
                self.emit(TransportEvent.MESSAGE, message)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.debug(f"Transport failure on {self.url}: {e!r}")
            self.emit(TransportEvent.ERROR, e)
        finally:
            self._state = ReadyState.CLOSED
            self.emit(TransportEvent.CLOSE, self._close_event())

    def _close_event(self) -> CloseEvent:
        ws = self._websocket
        if ws is None or ws.close_code is None:
            return CloseEvent(code=ABNORMAL_CLOSURE)
        return CloseEvent(code=ws.close_code, reason=ws.close_reason or "")

    def send(self, text: str) -> None:
        """Queue ``text`` for sending. Frames go out in call order."""
        if self._state != ReadyState.OPEN:
            raise TransportError("transport is not open")
        self._track_background_task(self._loop.create_task(self._send(text)))

    async def _send(self, text: str) -> None:
        async with self._send_lock:
            ws = self._websocket
            if ws is None or self._state != ReadyState.OPEN:
                logger.debug("Dropping frame queued before close")
                return
            try:
                await ws.send(text)
            except ConnectionClosed:
                logger.warning("Connection closed while sending")
            except Exception as e:
                self.emit(TransportEvent.ERROR, e)

    def close(self, code: int = 1000, reason: str = "client closed") -> None:
        if self._state in (ReadyState.CLOSING, ReadyState.CLOSED):
            return
        if self._websocket is None:
            # Still handshaking; abandon the attempt.
            self._state = ReadyState.CLOSED
            self._task.cancel()
            return
        self._state = ReadyState.CLOSING
        self._track_background_task(self._loop.create_task(self._websocket.close(code=code, reason=reason)))

    async def wait_closed(self) -> None:
        with suppress(asyncio.CancelledError):
            await self._task
        if self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)
