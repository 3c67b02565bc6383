from __future__ import annotations
import asyncio
import inspect
import json
from contextlib import suppress
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Callable, Dict, Optional, Set

from wsconn.config import ConnectionConfig
from wsconn.errors import TOKEN_EMPTY_MSG, URL_EMPTY_MSG, error_payload
from wsconn.transport import ReadyState, Transport, TransportEvent
from shared.log import get_logger, log_connection_event

logger = get_logger(__name__)

# status() value when there is no transport
NO_TRANSPORT = -1


class InitStatus(IntEnum):
    UNINITIALIZED = 0
    CONNECTED = 1
    FAILED = -1


@dataclass
class _Binding:
    """The four listeners attached to one transport instance."""
    generation: int
    handlers: Dict[str, Callable[[Any], None]]

    def attach(self, transport: Transport) -> None:
        for event, handler in self.handlers.items():
            transport.add_listener(event, handler)

    def detach(self, transport: Transport) -> None:
        for event, handler in self.handlers.items():
            transport.remove_listener(event, handler)


class ConnectionManager:
    """
    Keeps one WebSocket connection alive and reports its lifecycle through
    callbacks.

    connect() opens a transport and returns immediately; the outcome arrives
    as on_connect / on_disconnect / on_error calls. When the connection drops,
    a reconnect loop retries every ``reconnect_interval_ms`` until an open
    notification arrives or close() is called. Nothing raises across the
    public methods: failures are reported through on_error and return values.

    Each transport gets a generation number. Notifications from a transport
    whose generation is no longer current are ignored.
    """

    def __init__(self, config: ConnectionConfig) -> None:
        self.config = config
        self.socket_url = ""
        self._init_status = InitStatus.UNINITIALIZED
        self._transport: Optional[Transport] = None
        self._binding: Optional[_Binding] = None
        self._generation = 0
        self._reconnect_task: Optional[asyncio.Task] = None
        self._callback_tasks: Set[asyncio.Task] = set()

    @classmethod
    def from_options(cls, options: Dict[str, Any]) -> "ConnectionManager":
        return cls(ConnectionConfig.from_options(options))

    # ========================================
    #           OBSERVATION
    # ========================================

    @property
    def init_status(self) -> InitStatus:
        return self._init_status

    @property
    def transport(self) -> Optional[Transport]:
        return self._transport

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def reconnect_armed(self) -> bool:
        return self._reconnect_task is not None

    def status(self) -> int:
        """Live ready state of the current transport, or -1 without one."""
        if self._transport is None:
            return NO_TRANSPORT
        return self._transport.ready_state

    # ========================================
    #           PUBLIC LIFECYCLE
    # ========================================

    def connect(self, bind_events: bool = True) -> bool:
        """
        Open a new transport.

        Returns False (after calling on_error) when url or token is empty or
        the transport cannot be constructed, True otherwise. A True result
        only means the attempt started; opening is asynchronous.

        With ``bind_events=False`` no internal listeners are attached, so the
        manager will not see open/close/message/error for this transport.
        """
        if not self.config.url:
            self._report_error(error_payload(URL_EMPTY_MSG))
            return False
        if not self.config.token:
            self._report_error(error_payload(TOKEN_EMPTY_MSG))
            return False

        self.socket_url = self.config.composed_url()
        self._discard_transport()
        self._generation += 1

        try:
            transport = self.config.transport_factory(self.socket_url, self.config)
        except Exception as e:
            self._init_status = InitStatus.FAILED
            self._report_error(error_payload(e), e)
            return False

        self._transport = transport
        if bind_events:
            self._binding = self._make_binding(self._generation)
            self._binding.attach(transport)
        log_connection_event(logger, "debug", "Connection attempt started",
                             url=self.config.url, generation=self._generation)
        return True

    def send(self, payload: Any) -> None:
        """JSON-encode ``payload`` and send it. Dropped unless the connection is open."""
        if self.status() != ReadyState.OPEN:
            logger.debug("Dropping outbound message; connection not open")
            return
        try:
            text = json.dumps(payload, separators=(",", ":"), ensure_ascii=False, allow_nan=False)
        except (TypeError, ValueError) as e:
            self._report_error(error_payload(f"payload is not JSON serializable: {e}"), e)
            return
        try:
            self._transport.send(text)
        except Exception as e:
            self._report_error(error_payload(e), e)

    def close(self) -> None:
        """Stop reconnecting and tear down the transport. Safe to call repeatedly."""
        self._cancel_reconnect()
        had_transport = self._transport is not None
        self._discard_transport()
        # Late notifications from the old transport must not match.
        self._generation += 1
        if had_transport:
            log_connection_event(logger, "info", "Connection closed by client", url=self.config.url)
            self._invoke(self.config.on_close)

    # ========================================
    #           RECONNECT LOOP
    # ========================================

    def _reconnect(self) -> None:
        if self._reconnect_task is not None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.error("Cannot schedule reconnect without a running event loop")
            return
        self._reconnect_task = loop.create_task(self._reconnect_loop())

    async def _reconnect_loop(self) -> None:
        """Retry connect() every reconnect interval until the transport is open."""
        task = asyncio.current_task()
        try:
            while True:
                await asyncio.sleep(self.config.reconnect_interval)
                if self._reconnect_task is not task:
                    return
                state = self.status()
                if state == ReadyState.OPEN:
                    break
                if state == ReadyState.CONNECTING:
                    logger.debug("Previous attempt still connecting; waiting")
                    continue
                log_connection_event(logger, "info", "Reconnecting...", url=self.config.url)
                # Listeners are always rebound on the fresh transport.
                self.connect()
                # close() or an open notification inside connect() disarms this loop.
                if self._reconnect_task is not task:
                    return
        finally:
            if self._reconnect_task is task:
                self._reconnect_task = None

    def _cancel_reconnect(self) -> None:
        task = self._reconnect_task
        self._reconnect_task = None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    # ========================================
    #           TRANSPORT NOTIFICATIONS
    # ========================================

    def _make_binding(self, generation: int) -> _Binding:
        def guarded(handler: Callable[[Any], None]) -> Callable[[Any], None]:
            def listener(event: Any) -> None:
                if generation != self._generation:
                    log_connection_event(logger, "debug", f"Ignoring {handler.__name__} from stale transport",
                                         generation=generation)
                    return
                handler(event)
            return listener

        return _Binding(generation, {
            TransportEvent.OPEN: guarded(self._on_open),
            TransportEvent.CLOSE: guarded(self._on_close),
            TransportEvent.MESSAGE: guarded(self._on_message),
            TransportEvent.ERROR: guarded(self._on_error),
        })

    def _on_open(self, event: Any) -> None:
        self._init_status = InitStatus.CONNECTED
        self._cancel_reconnect()
        log_connection_event(logger, "info", f"websocket init success [{self.config.url}]",
                             generation=self._generation)
        self._invoke(self.config.on_connect, event)

    def _on_close(self, event: Any) -> None:
        if self._init_status in (InitStatus.UNINITIALIZED, InitStatus.FAILED):
            logger.warning("websocket init fail reconnect...")
        else:
            logger.warning("websocket exception reconnect...")
        self._invoke(self.config.on_disconnect, event)
        self._reconnect()

    def _on_message(self, data: Any) -> None:
        try:
            message = json.loads(data)
        except (TypeError, ValueError) as e:
            logger.warning(f"Inbound message is not JSON, passing raw payload: {e}")
            message = data
        self._invoke(self.config.on_receive, message)

    def _on_error(self, event: Any) -> None:
        self._report_error(error_payload(event), event)

    # ========================================
    #           HELPERS
    # ========================================

    def _report_error(self, error: Dict[str, Any], event: Any = None) -> None:
        logger.error(f"{error['msg']} {error}")
        self._invoke(self.config.on_error, error, event)

    def _discard_transport(self) -> None:
        transport = self._transport
        if transport is None:
            return
        if self._binding is not None:
            self._binding.detach(transport)
        self._binding = None
        self._transport = None
        try:
            transport.close()
        except Exception:
            logger.exception("Error closing transport")

    def _invoke(self, callback: Optional[Callable[..., Any]], *args: Any) -> None:
        """Call a user callback; coroutine results are scheduled on the running loop."""
        if callback is None:
            return
        try:
            result = callback(*args)
        except Exception:
            logger.exception(f"Callback {getattr(callback, '__name__', callback)!r} raised")
            return
        if inspect.isawaitable(result):
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                logger.warning("Async callback dropped; no running event loop")
                if inspect.iscoroutine(result):
                    result.close()
                return
            task = asyncio.ensure_future(result, loop=loop)
            self._callback_tasks.add(task)
            task.add_done_callback(self._callback_done)

    def _callback_done(self, task: asyncio.Task) -> None:
        self._callback_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Async callback raised", exc_info=exc)

    async def aclose(self) -> None:
        """close(), then wait for the reconnect loop and pending async callbacks to finish."""
        task = self._reconnect_task
        transport = self._transport
        self.close()
        if task is not None:
            with suppress(asyncio.CancelledError):
                await task
        if transport is not None:
            await transport.wait_closed()
        if self._callback_tasks:
            await asyncio.gather(*list(self._callback_tasks), return_exceptions=True)
