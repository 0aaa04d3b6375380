from __future__ import annotations

import asyncio
import logging
from collections import deque
from enum import Enum
from typing import Deque, Optional

from .transport import (
    CloseFrame,
    Dialer,
    Frame,
    MessageSocket,
    TransportClosed,
    TransportError,
    frame_size,
)


logger = logging.getLogger(__name__)

CLOSE_NORMAL = 1000
CLOSE_GOING_AWAY = 1001
CLOSE_INTERNAL_ERROR = 1011
CLOSE_TRY_AGAIN_LATER = 1013


class UpstreamState(str, Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"
    ERRORED = "errored"


class ClientState(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


class RelaySession:
    """One client <-> upstream WebSocket pairing.

    The client socket is already accepted when the session is created; the
    upstream socket is dialed by `run()`. Messages the client sends while the
    dial is in flight wait in `pending` and are flushed, in arrival order,
    the moment upstream opens.

    Every `on_*` method is a transition of the session state machine. They
    all run on the event loop that owns the session, so no locking is needed.
    """

    def __init__(
        self,
        client: MessageSocket,
        dial: Dialer,
        target_url: str,
        *,
        dial_timeout: float = 10.0,
        close_timeout: float = 5.0,
        max_pending_messages: int = 256,
        max_pending_bytes: int = 16 * 1024 * 1024,
    ):
        self.client = client
        self.upstream: Optional[MessageSocket] = None
        self.target_url = target_url
        self._dial = dial
        self.dial_timeout = dial_timeout
        self.close_timeout = close_timeout
        self.max_pending_messages = max_pending_messages
        self.max_pending_bytes = max_pending_bytes

        self.client_state = ClientState.OPEN
        self.upstream_state = UpstreamState.CONNECTING
        self.pending: Deque[Frame] = deque()
        self._pending_bytes = 0
        self._draining = False
        # reason handed to upstream if the client leaves before the dial completes
        self._client_close_reason = ""

    # ---- transitions: client side ----

    async def on_client_message(self, frame: Frame) -> None:
        if self.upstream_state is UpstreamState.OPEN and not self._draining:
            try:
                await self.upstream.send(frame)
            except TransportClosed as exc:
                logger.debug("Upstream gone, dropping client message: %s", exc)
            return
        # while the backlog is flushing, new messages join its tail
        if self.upstream_state is not UpstreamState.CONNECTING and not self._draining:
            return
        if self.client_state is not ClientState.OPEN:
            return
        size = frame_size(frame)
        if (len(self.pending) >= self.max_pending_messages
                or self._pending_bytes + size > self.max_pending_bytes):
            logger.warning(
                "Pending queue full (%d messages, %d bytes) for %s, closing client",
                len(self.pending), self._pending_bytes, self.target_url,
            )
            self._discard_pending()
            self._client_close_reason = "upstream not ready"
            await self._close_client(CLOSE_TRY_AGAIN_LATER, "upstream not ready")
            # mid-flush the upstream is already OPEN and must be closed here
            await self._client_gone(CLOSE_NORMAL, "upstream not ready")
            return
        self.pending.append(frame)
        self._pending_bytes += size

    async def on_client_close(self, code: int, reason: str) -> None:
        logger.info("Client closed (%s %s)", code, reason)
        self.client_state = ClientState.CLOSED
        await self._client_gone(CLOSE_NORMAL, reason)

    async def on_client_error(self, exc: Exception) -> None:
        logger.error("Client WebSocket error: %s", exc)
        self.client_state = ClientState.CLOSED
        await self._client_gone(CLOSE_GOING_AWAY, "client error")

    # ---- transitions: upstream side ----

    async def on_upstream_open(self, upstream: MessageSocket) -> None:
        self.upstream = upstream
        if self.client_state is not ClientState.OPEN:
            # client left while we were dialing; nothing queued survives
            self.upstream_state = UpstreamState.CLOSED
            self._discard_pending()
            await self._close_upstream(CLOSE_NORMAL, self._client_close_reason)
            return
        logger.info("Connected to upstream %s", self.target_url)
        self.upstream_state = UpstreamState.OPEN
        self._draining = True
        try:
            while self.pending and self.upstream_state is UpstreamState.OPEN:
                frame = self.pending.popleft()
                self._pending_bytes -= frame_size(frame)
                await upstream.send(frame)
        except TransportClosed as exc:
            logger.debug("Upstream gone while flushing pending messages: %s", exc)
        finally:
            self._draining = False
            self._discard_pending()

    async def on_upstream_message(self, frame: Frame) -> None:
        if self.client_state is not ClientState.OPEN:
            return
        try:
            await self.client.send(frame)
        except TransportClosed as exc:
            logger.debug("Client gone, dropping upstream message: %s", exc)

    async def on_upstream_close(self, code: int, reason: str) -> None:
        logger.info("Upstream closed (%s %s)", code, reason)
        if self.upstream_state is not UpstreamState.ERRORED:
            self.upstream_state = UpstreamState.CLOSED
        self._discard_pending()
        if self.client_state is ClientState.OPEN:
            await self._close_client(code, reason)

    async def on_upstream_error(self, exc: Exception) -> None:
        # the client is closed by the close event that follows, not here
        logger.error("Upstream WebSocket error: %s", exc)
        self.upstream_state = UpstreamState.ERRORED
        self._discard_pending()

    async def on_dial_failed(self, reason: str) -> None:
        logger.error("Upstream dial to %s failed: %s", self.target_url, reason)
        self.upstream_state = UpstreamState.ERRORED
        self._discard_pending()
        if self.client_state is ClientState.OPEN:
            await self._close_client(CLOSE_INTERNAL_ERROR, reason)

    # ---- driver ----

    async def run(self) -> None:
        """Relay until both sockets are released."""
        upstream_task = asyncio.create_task(self._run_upstream())
        client_task = asyncio.create_task(self._pump_client())
        tasks = (upstream_task, client_task)
        try:
            done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
            if client_task in done:
                # bounded by the dial timeout and the upstream close handshake
                await asyncio.wait({upstream_task})
            else:
                await asyncio.wait({client_task}, timeout=self.close_timeout)
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
            results = await asyncio.gather(*tasks, return_exceptions=True)
            for result in results:
                if isinstance(result, Exception):
                    logger.error("Relay task for %s failed: %r", self.target_url, result)
            await self._release()

    async def _run_upstream(self) -> None:
        try:
            upstream = await asyncio.wait_for(self._dial(self.target_url), timeout=self.dial_timeout)
        except asyncio.TimeoutError:
            await self.on_dial_failed("upstream dial timed out")
            return
        except Exception as exc:
            await self.on_dial_failed(f"upstream dial failed: {exc}"[:120])
            return

        await self.on_upstream_open(upstream)
        if self.upstream_state is not UpstreamState.OPEN:
            return
        while True:
            try:
                frame = await upstream.receive()
            except TransportError as exc:
                await self.on_upstream_error(exc)
                await self.on_upstream_close(exc.close.code, exc.close.reason)
                return
            if isinstance(frame, CloseFrame):
                await self.on_upstream_close(frame.code, frame.reason)
                return
            await self.on_upstream_message(frame)

    async def _pump_client(self) -> None:
        while self.client_state is ClientState.OPEN:
            try:
                frame = await self.client.receive()
            except TransportError as exc:
                await self.on_client_error(exc)
                return
            if isinstance(frame, CloseFrame):
                await self.on_client_close(frame.code, frame.reason)
                return
            await self.on_client_message(frame)

    # ---- helpers ----

    async def _client_gone(self, code: int, reason: str) -> None:
        self._client_close_reason = reason
        if self.upstream_state is UpstreamState.OPEN:
            self.upstream_state = UpstreamState.CLOSED
            await self._close_upstream(code, reason)
        # still CONNECTING: on_upstream_open closes the socket once it exists
        self._discard_pending()

    async def _close_client(self, code: int, reason: str) -> None:
        self.client_state = ClientState.CLOSED
        try:
            await self.client.close(code, reason)
        except TransportClosed as exc:
            logger.debug("Client already closed: %s", exc)

    async def _close_upstream(self, code: int, reason: str) -> None:
        if self.upstream is None:
            return
        try:
            await asyncio.wait_for(self.upstream.close(code, reason), timeout=self.close_timeout)
        except (TransportClosed, TransportError, asyncio.TimeoutError) as exc:
            logger.debug("Upstream close did not complete cleanly: %s", exc)

    def _discard_pending(self) -> None:
        self.pending.clear()
        self._pending_bytes = 0

    async def _release(self) -> None:
        if self.client_state is ClientState.OPEN:
            await self._close_client(CLOSE_GOING_AWAY, "relay shutting down")
        if self.upstream is not None and self.upstream_state in (UpstreamState.OPEN, UpstreamState.CONNECTING):
            self.upstream_state = UpstreamState.CLOSED
            await self._close_upstream(CLOSE_GOING_AWAY, "relay shutting down")
