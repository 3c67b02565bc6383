from __future__ import annotations
from dataclasses import dataclass, field, fields
import os
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Dict, Mapping, Optional, Union

from wsconn.errors import ConfigError
from shared.log import get_logger

if TYPE_CHECKING:
    from wsconn.transport import Transport

logger = get_logger(__name__)

Callback = Callable[..., Any]
TransportFactory = Callable[[str, "ConnectionConfig"], "Transport"]

DEFAULT_RECONNECT_INTERVAL_MS = 5000

# Option names accepted by from_options, mapped onto dataclass fields.
_OPTION_ALIASES: Dict[str, str] = {
    "reconnectInterval": "reconnect_interval_ms",
    "reconnect_interval": "reconnect_interval_ms",
    "openTimeout": "open_timeout",
    "onConnect": "on_connect",
    "onDisConnect": "on_disconnect",
    "onDisconnect": "on_disconnect",
    "onClose": "on_close",
    "onReceive": "on_receive",
    "onError": "on_error",
}

_CALLBACK_FIELDS = ("on_connect", "on_disconnect", "on_close", "on_receive", "on_error")

_ENV_VARS = {
    "WSCONN_URL": "url",
    "WSCONN_TOKEN": "token",
    "WSCONN_RECONNECT_INTERVAL_MS": "reconnect_interval_ms",
}


def _default_transport_factory() -> TransportFactory:
    from wsconn.transport import WebSocketTransport
    return WebSocketTransport


@dataclass(frozen=True)
class ConnectionConfig:
    """
    Immutable settings for one ConnectionManager.

    ``url`` and ``token`` may be empty here; ConnectionManager.connect()
    reports that through on_error instead of raising.
    """
    url: str = ""
    token: str = ""
    reconnect_interval_ms: int = DEFAULT_RECONNECT_INTERVAL_MS
    open_timeout: Optional[float] = 10.0
    ping_interval: Optional[float] = 15
    ping_timeout: Optional[float] = 45

    on_connect: Optional[Callback] = None
    on_disconnect: Optional[Callback] = None
    on_close: Optional[Callback] = None
    on_receive: Optional[Callback] = None
    on_error: Optional[Callback] = None

    transport_factory: TransportFactory = field(default_factory=_default_transport_factory, repr=False)

    def __post_init__(self) -> None:
        interval = self.reconnect_interval_ms
        if isinstance(interval, bool) or not isinstance(interval, int) or interval <= 0:
            raise ConfigError(f"reconnect_interval_ms must be a positive integer, got {interval!r}")
        for name in _CALLBACK_FIELDS:
            value = getattr(self, name)
            if value is not None and not callable(value):
                raise ConfigError(f"{name} must be callable")

    @property
    def reconnect_interval(self) -> float:
        """Reconnect interval in seconds."""
        return self.reconnect_interval_ms / 1000.0

    def composed_url(self) -> str:
        return f"{self.url}?token={self.token}"

    # ========================================
    #           ALTERNATE CONSTRUCTORS
    # ========================================

    @classmethod
    def from_options(cls, options: Mapping[str, Any]) -> "ConnectionConfig":
        """
        Build a config from a loose options mapping.

        Accepts both the camelCase option names (``url``, ``token``,
        ``reconnectInterval``, ``onConnect``, ``onDisConnect``, ``onClose``,
        ``onReceive``, ``onError``) and the dataclass field names. Callback
        entries that are not callable are treated as absent; unknown keys are
        ignored.
        """
        known = {f.name for f in fields(cls)}
        kwargs: Dict[str, Any] = {}
        for key, value in options.items():
            name = _OPTION_ALIASES.get(key, key)
            if name not in known:
                logger.debug("Ignoring unknown connection option %r", key)
                continue
            if name in _CALLBACK_FIELDS and not callable(value):
                continue
            kwargs[name] = value

        if kwargs.get("url") is None:
            kwargs["url"] = ""
        if kwargs.get("token") is None:
            kwargs["token"] = ""
        if not kwargs.get("reconnect_interval_ms"):
            kwargs["reconnect_interval_ms"] = DEFAULT_RECONNECT_INTERVAL_MS
        else:
            kwargs["reconnect_interval_ms"] = _as_int(kwargs["reconnect_interval_ms"], "reconnect_interval_ms")
        return cls(**kwargs)

    @classmethod
    def from_env(cls, **overrides: Any) -> "ConnectionConfig":
        """Build a config from WSCONN_* environment variables plus keyword overrides."""
        options: Dict[str, Any] = _env_options()
        options.update(overrides)
        return cls.from_options(options)

    @classmethod
    def from_yaml(cls, path: Union[str, Path], **overrides: Any) -> "ConnectionConfig":
        """
        Load a YAML mapping, then apply environment variables, then keyword
        overrides. Callbacks can only be passed as overrides.

        A missing file is treated as an empty document.
        """
        import yaml

        path = Path(path)
        options: Dict[str, Any] = {}
        if path.exists():
            try:
                with open(path, "r", encoding="utf-8") as f:
                    data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigError(f"Invalid YAML in {path}: {e}") from e
            if not isinstance(data, dict):
                raise ConfigError(f"{path} must contain a mapping, got {type(data).__name__}")
            options.update(data)
        else:
            logger.info(f"No config file at {path}; using environment and defaults")

        options.update(_env_options())
        options.update(overrides)
        return cls.from_options(options)


def _env_options() -> Dict[str, Any]:
    options: Dict[str, Any] = {}
    for var, name in _ENV_VARS.items():
        value = os.getenv(var)
        if value:
            options[name] = value
    return options


def _as_int(value: Any, name: str) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"{name} must be an integer, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{name} must be an integer, got {value!r}") from e
