"""
Resilient client wrapper around a single persistent WebSocket connection.
"""

from wsconn.config import ConnectionConfig
from wsconn.errors import ConfigError, TransportError, error_payload
from wsconn.manager import ConnectionManager, InitStatus, NO_TRANSPORT
from wsconn.transport import CloseEvent, OpenEvent, ReadyState, Transport, TransportEvent, WebSocketTransport

__all__ = [
    "CloseEvent",
    "ConfigError",
    "ConnectionConfig",
    "ConnectionManager",
    "InitStatus",
    "NO_TRANSPORT",
    "OpenEvent",
    "ReadyState",
    "Transport",
    "TransportError",
    "TransportEvent",
    "WebSocketTransport",
    "error_payload",
]
