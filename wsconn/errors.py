from __future__ import annotations
from typing import Any, Dict

# Every error reported through on_error carries this code.
ERROR_CODE = -1

URL_EMPTY_MSG = "url can not be empty"
TOKEN_EMPTY_MSG = "token can not be empty"


class ConfigError(ValueError):
    """Raised when a configuration document or value is unusable."""
    pass


class TransportError(Exception):
    """Raised by a transport that cannot be constructed for the given URL."""
    pass


def error_payload(msg: Any, code: int = ERROR_CODE) -> Dict[str, Any]:
    """Build the ``{"code": ..., "msg": ...}`` dict handed to ``on_error``."""
    if isinstance(msg, BaseException):
        msg = str(msg) or msg.__class__.__name__
    return {"code": code, "msg": msg}
