"""Message-socket seam between the relay session and real WebSocket libraries.

The session only ever sees `receive / send / close` on two objects. The
adapters below wrap a Starlette server socket (client side) and a
`websockets` client connection (upstream side); tests inject fakes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Protocol, Union

import websockets
from starlette.websockets import WebSocket, WebSocketDisconnect, WebSocketState


logger = logging.getLogger(__name__)

Frame = Union[str, bytes]

# Codes that may be reported locally but must never be sent in a close frame
_NOT_ON_WIRE = {1005: 1000, 1006: 1011, 1015: 1011}


@dataclass(frozen=True)
class CloseFrame:
    code: int = 1000
    reason: str = ""


class TransportError(Exception):
    """Abnormal socket failure. `close` is the close event that follows it."""

    def __init__(self, message: str, close: Optional[CloseFrame] = None):
        super().__init__(message)
        self.close = close or CloseFrame(1006, "")


class TransportClosed(Exception):
    """Send attempted on a socket that is already gone."""


class MessageSocket(Protocol):
    async def receive(self) -> Union[Frame, CloseFrame]: ...

    async def send(self, frame: Frame) -> None: ...

    async def close(self, code: int = 1000, reason: str = "") -> None: ...


Dialer = Callable[[str], Awaitable[MessageSocket]]


def wire_close_code(code: int) -> int:
    return _NOT_ON_WIRE.get(code, code)


def frame_size(frame: Frame) -> int:
    if isinstance(frame, str):
        return len(frame.encode("utf-8"))
    return len(frame)


class StarletteClientSocket:
    """Client side: an already accepted Starlette/FastAPI WebSocket."""

    def __init__(self, websocket: WebSocket):
        self._ws = websocket

    async def receive(self) -> Union[Frame, CloseFrame]:
        try:
            message = await self._ws.receive()
        except RuntimeError as exc:
            raise TransportError(str(exc)) from exc
        if message["type"] == "websocket.disconnect":
            return CloseFrame(message.get("code") or 1005, message.get("reason") or "")
        if message.get("text") is not None:
            return message["text"]
        return message.get("bytes") or b""

    async def send(self, frame: Frame) -> None:
        if self._ws.application_state != WebSocketState.CONNECTED:
            raise TransportClosed("client socket is closed")
        try:
            if isinstance(frame, bytes):
                await self._ws.send_bytes(frame)
            else:
                await self._ws.send_text(frame)
        except (RuntimeError, OSError, WebSocketDisconnect) as exc:
            raise TransportClosed(str(exc)) from exc

    async def close(self, code: int = 1000, reason: str = "") -> None:
        if self._ws.application_state != WebSocketState.CONNECTED:
            return
        try:
            await self._ws.close(code=wire_close_code(code), reason=reason or None)
        except (RuntimeError, OSError, WebSocketDisconnect) as exc:
            logger.debug("Client close after disconnect: %s", exc)


class WebsocketsUpstreamSocket:
    """Upstream side: a `websockets` client connection."""

    def __init__(self, connection):
        self._conn = connection

    async def receive(self) -> Union[Frame, CloseFrame]:
        try:
            return await self._conn.recv()
        except websockets.ConnectionClosed as exc:
            if exc.rcvd is None:
                raise TransportError(str(exc)) from exc
            return CloseFrame(exc.rcvd.code, exc.rcvd.reason)

    async def send(self, frame: Frame) -> None:
        try:
            await self._conn.send(frame)
        except websockets.ConnectionClosed as exc:
            raise TransportClosed(str(exc)) from exc

    async def close(self, code: int = 1000, reason: str = "") -> None:
        await self._conn.close(wire_close_code(code), reason)


def websockets_dialer(max_size: Optional[int] = None) -> Dialer:
    """Dial upstream with `websockets`; the session applies its own timeout."""

    async def dial(url: str) -> WebsocketsUpstreamSocket:
        connection = await websockets.connect(url, max_size=max_size, open_timeout=None)
        return WebsocketsUpstreamSocket(connection)

    return dial
