import asyncio
import json
import sys
from pathlib import Path
from typing import List, Optional

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from client.events import SessionListener
from client.ws_client import TransportError
from shared.config import ClientConfig, ScriptedMessage


class DummyTransport:
    """In-memory stand-in for RelayTransport."""

    def __init__(self, fail: bool = False, connect_delay: float = 0.0) -> None:
        self.fail = fail
        self.connect_delay = connect_delay
        self.sent: List[str] = []
        self.inbound: "asyncio.Queue[Optional[str]]" = asyncio.Queue()
        self.connected = False
        self.closed = False

    async def connect(self) -> None:
        if self.connect_delay:
            await asyncio.sleep(self.connect_delay)
        if self.fail:
            raise TransportError("connection refused")
        self.connected = True

    async def send(self, frame: str) -> None:
        if self.closed:
            raise TransportError("closed")
        self.sent.append(frame)

    async def frames(self):
        while True:
            frame = await self.inbound.get()
            if frame is None:
                return
            yield frame

    async def close(self) -> None:
        self.closed = True
        self.inbound.put_nowait(None)

    def push(self, frame) -> None:
        self.inbound.put_nowait(frame if isinstance(frame, (str, bytes)) else json.dumps(frame))

    def remote_close(self) -> None:
        self.inbound.put_nowait(None)

    def sent_frames(self) -> List[dict]:
        return [json.loads(f) for f in self.sent]


class StallingTransport(DummyTransport):
    """Accepts the first `accept` frames, then never completes another send."""

    def __init__(self, accept: int = 1, stall_once: bool = True) -> None:
        super().__init__()
        self.accept = accept
        self.stall_once = stall_once
        self.stalled = 0

    async def send(self, frame: str) -> None:
        if len(self.sent) >= self.accept and (self.stalled == 0 or not self.stall_once):
            self.stalled += 1
            await asyncio.Event().wait()
        await super().send(frame)


class TransportFactory:
    def __init__(self, fail: bool = False, connect_delay: float = 0.0) -> None:
        self.fail = fail
        self.connect_delay = connect_delay
        self.created: List[DummyTransport] = []

    def __call__(self, config: ClientConfig) -> DummyTransport:
        transport = DummyTransport(fail=self.fail, connect_delay=self.connect_delay)
        self.created.append(transport)
        return transport

    @property
    def last(self) -> DummyTransport:
        return self.created[-1]


class RecordingListener(SessionListener):
    def __init__(self) -> None:
        self.log: list = []
        self.messages: list = []
        self.rosters: list = []
        self.rejections: list = []
        self.liveness: list = []
        self.states: list = []
        self.notices: list = []

    def on_message(self, author, content):
        self.messages.append((author, content))
        self.log.append(("message", author, content))

    def on_roster_changed(self, members):
        self.rosters.append(list(members))
        self.log.append(("roster", list(members)))

    def on_rejected(self, reason):
        self.rejections.append(reason)
        self.log.append(("rejected", reason))

    def on_connection_state_changed(self, is_live):
        self.liveness.append(is_live)

    def on_state_changed(self, old, new):
        self.states.append((old, new))
        self.log.append(("state", new))

    def on_notice(self, text):
        self.notices.append(text)


async def wait_for(predicate, timeout: float = 2.0) -> bool:
    loop = asyncio.get_running_loop()
    end = loop.time() + timeout
    while loop.time() < end:
        if predicate():
            return True
        await asyncio.sleep(0.005)
    return predicate()


FAST_SCRIPT = (
    ScriptedMessage("Demo User 1", "Welcome!", 30),
    ScriptedMessage("Demo User 2", "Second line", 60),
)


@pytest.fixture
def listener() -> RecordingListener:
    return RecordingListener()


@pytest.fixture
def fast_config() -> ClientConfig:
    return ClientConfig(demo_script=FAST_SCRIPT, connect_timeout=1.0)


@pytest.fixture
def relay() -> TransportFactory:
    return TransportFactory()


@pytest.fixture
def unreachable() -> TransportFactory:
    return TransportFactory(fail=True)
