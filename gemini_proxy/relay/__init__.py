from .session import ClientState, RelaySession, UpstreamState
from .transport import (
    CloseFrame,
    StarletteClientSocket,
    TransportClosed,
    TransportError,
    websockets_dialer,
)


_WS_SCHEMES = {"https": "wss", "http": "ws"}


def realtime_url(upstream_base: str, path: str, query: str = "") -> str:
    """https://host + /path?query -> wss://host/path?query"""
    scheme, sep, rest = upstream_base.partition("://")
    base = f"{_WS_SCHEMES.get(scheme, scheme)}{sep}{rest}".rstrip("/")
    return f"{base}{path}?{query}" if query else f"{base}{path}"


__all__ = [
    "ClientState",
    "CloseFrame",
    "RelaySession",
    "StarletteClientSocket",
    "TransportClosed",
    "TransportError",
    "UpstreamState",
    "realtime_url",
    "websockets_dialer",
]
