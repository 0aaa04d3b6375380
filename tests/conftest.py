import asyncio
from pathlib import Path

import httpx
import pytest

from gemini_proxy.config import Config
from gemini_proxy.relay import CloseFrame, TransportClosed


@pytest.fixture
def anyio_backend():
    return "asyncio"


class FakeSocket:
    """In-memory message socket. Exceptions put in `inbox` are raised by receive()."""

    def __init__(self, echo: bool = False):
        self.inbox: asyncio.Queue = asyncio.Queue()
        self.sent = []
        self.closed = None
        self.echo = echo

    async def receive(self):
        item = await self.inbox.get()
        if isinstance(item, Exception):
            raise item
        return item

    async def send(self, frame):
        if self.closed is not None:
            raise TransportClosed("closed")
        self.sent.append(frame)
        if self.echo:
            self.inbox.put_nowait(frame)

    async def close(self, code=1000, reason=""):
        if self.closed is None:
            self.closed = CloseFrame(code, reason)
            # the peer answers the close handshake
            self.inbox.put_nowait(CloseFrame(code, reason))


class FakeDialer:
    """Dial that blocks until `gate` is set, then returns `upstream` or raises `error`."""

    def __init__(self, error=None, open_now=False, upstream_factory=FakeSocket):
        self.urls = []
        self.error = error
        self.upstream = None
        self._open_now = open_now
        self._factory = upstream_factory
        self._gate = None

    @property
    def gate(self) -> asyncio.Event:
        if self._gate is None:
            self._gate = asyncio.Event()
            if self._open_now:
                self._gate.set()
        return self._gate

    async def __call__(self, url):
        self.urls.append(url)
        await self.gate.wait()
        if self.error is not None:
            raise self.error
        self.upstream = self._factory()
        return self.upstream


async def settle(rounds: int = 50):
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def static_root(tmp_path: Path) -> Path:
    root = tmp_path / "static"
    root.mkdir()
    (root / "index.html").write_text("<html><body>console</body></html>")
    (root / "app.js").write_bytes(b"console.log('hi');\n")
    (tmp_path / "secret.txt").write_text("do not serve")
    return root


@pytest.fixture
def test_config(static_root):
    class TestConfig(Config):
        STATIC_DIR = static_root
        UPSTREAM_BASE_URL = "https://generativelanguage.googleapis.com"
        API_CLIENT_ID = "genai-js/0.21.0"
        RELAY_DIAL_TIMEOUT = 2.0
        RELAY_CLOSE_TIMEOUT = 1.0

    return TestConfig


def mock_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler), follow_redirects=False)
