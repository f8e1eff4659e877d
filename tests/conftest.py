"""
screepsapi test configuration
- Environment isolation (no SCREEPS_* leakage from the developer's shell)
- Scripted in-memory socket transport
- Stub token provider for socket session tests
"""

import asyncio
from typing import List, Optional, Set

import pytest

from screepsapi.core.events import EventEmitter


@pytest.fixture(autouse=True)
def scrub_screeps_env(monkeypatch):
    """Keep real credentials and config files out of tests."""
    for name in (
        "SCREEPS_HOST",
        "SCREEPS_PORT",
        "SCREEPS_TOKEN",
        "SCREEPS_USERNAME",
        "SCREEPS_PASSWORD",
        "SCREEPS_SHARD",
        "SCREEPS_SECURE",
        "SCREEPS_CONFIG",
    ):
        monkeypatch.delenv(name, raising=False)


async def settle(rounds: int = 20) -> None:
    """Let queued tasks (reader, writer, listeners) run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


async def wait_until(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.001)


class FakeTransport:
    """In-memory SocketTransport driven by a FakeServer."""

    def __init__(self, server: "FakeServer"):
        self.server = server
        self.sent: List[str] = []
        self.pings = 0
        self.closed = False
        self._inbox: asyncio.Queue = asyncio.Queue()

    async def send(self, frame: str) -> None:
        if self.closed:
            raise RuntimeError("transport closed")
        self.sent.append(frame)
        self.server.handle(self, frame)

    async def ping(self) -> None:
        self.pings += 1

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._inbox.put_nowait(None)

    def push(self, frame) -> None:
        """Deliver a frame from the server."""
        self._inbox.put_nowait(frame)

    def drop(self) -> None:
        """Server-side connection loss."""
        self.closed = True
        self._inbox.put_nowait(None)

    async def __aiter__(self):
        while True:
            frame = await self._inbox.get()
            if frame is None:
                return
            yield frame

    def commands(self, name: str) -> List[str]:
        return [f for f in self.sent if f.split(" ", 1)[0] == name]


class FakeServer:
    """
    Transport factory with scripted auth replies.

    Tokens in ``rejected`` get ``auth failed``; everything else gets
    ``auth ok <token>`` (or ``auth ok <issue_token>`` when set).
    ``fail_opens`` makes that many upcoming opens raise.
    """

    def __init__(self):
        self.transports: List[FakeTransport] = []
        self.urls: List[str] = []
        self.open_attempts = 0
        self.fail_opens = 0
        self.rejected: Set[str] = set()
        self.issue_token: Optional[str] = None
        self.silent_auth = False

    async def factory(self, url: str) -> FakeTransport:
        self.open_attempts += 1
        self.urls.append(url)
        if self.fail_opens > 0:
            self.fail_opens -= 1
            raise OSError("connection refused")
        transport = FakeTransport(self)
        self.transports.append(transport)
        return transport

    def handle(self, transport: FakeTransport, frame: str) -> None:
        if not frame.startswith("auth ") or self.silent_auth:
            return
        token = frame[len("auth "):]
        if token in self.rejected:
            transport.push("auth failed")
        else:
            transport.push(f"auth ok {self.issue_token or token}")

    @property
    def current(self) -> FakeTransport:
        return self.transports[-1]

    def all_sent(self) -> List[str]:
        return [frame for t in self.transports for frame in t.sent]


class StubAPI(EventEmitter):
    """Minimal token provider for the socket session."""

    def __init__(self, token: Optional[str] = "tok-1", user_id: str = "u1"):
        super().__init__()
        self.token = token
        self.socket_url = "wss://screeps.test:443/socket/websocket"
        self.next_token = "tok-fresh"
        self.auth_calls = 0
        self.user_id_calls = 0
        self._user_id = user_id

    async def auth(self):
        self.auth_calls += 1
        self.set_token(self.next_token)
        return {"ok": 1, "token": self.next_token}

    def set_token(self, token: str) -> None:
        self.token = token
        self.emit("token", token)

    async def user_id(self) -> str:
        self.user_id_calls += 1
        await asyncio.sleep(0)
        return self._user_id


@pytest.fixture
def server():
    return FakeServer()


@pytest.fixture
def stub_api():
    return StubAPI()
