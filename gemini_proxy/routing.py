"""Request classification.

Every inbound request, HTTP or WebSocket, is mapped onto exactly one handler.
"""

from enum import Enum
from typing import Mapping

from starlette.requests import HTTPConnection


DIRECT_PREFIXES = ("/v1", "/v1beta")
COMPAT_SUFFIXES = ("/chat/completions", "/embeddings", "/models")


class Route(str, Enum):
    RELAY = "relay"
    DIRECT = "direct"
    COMPAT = "compat"
    STATIC = "static"


def _header(headers: Mapping[str, str], name: str) -> str | None:
    # Starlette headers are already case-insensitive; plain dicts are not
    value = headers.get(name)
    if value is not None:
        return value
    name = name.lower()
    for key, value in headers.items():
        if key.lower() == name:
            return value
    return None


def classify(method: str, headers: Mapping[str, str], path: str) -> Route:
    """First match wins: upgrade, native API prefix, OpenAI suffix, static."""
    upgrade = _header(headers, "upgrade")
    if upgrade is not None and upgrade.lower() == "websocket":
        return Route.RELAY
    if path.startswith(DIRECT_PREFIXES):
        return Route.DIRECT
    if path.endswith(COMPAT_SUFFIXES):
        return Route.COMPAT
    return Route.STATIC


def request_path(conn: HTTPConnection) -> str:
    """Path as sent by the client, before percent-decoding."""
    raw = conn.scope.get("raw_path")
    if raw:
        return raw.split(b"?", 1)[0].decode("latin-1")
    return conn.url.path


def route_for(conn: HTTPConnection) -> Route:
    """Classify an ASGI connection.

    A websocket scope is an upgrade the server already accepted, so it
    counts as `Upgrade: websocket` even when the header was not passed on.
    """
    headers = dict(conn.headers)
    if conn.scope["type"] == "websocket":
        headers["upgrade"] = "websocket"
    return classify(conn.scope.get("method", "GET"), headers, request_path(conn))
