from __future__ import annotations
import asyncio
from typing import Callable, List, Optional, Sequence

from client.state import Identity
from shared.config import DEFAULT_DEMO_SCRIPT, DEFAULT_DEMO_USERS, ScriptedMessage
from shared.log import get_logger
from shared.protocol import InboundEvent, MessagePosted, RosterChanged

logger = get_logger(__name__)


EventSink = Callable[[InboundEvent], None]


class SimulatedSession:
    """
    Local stand-in for the relay, used when no connection could be made.

    Emits the same event shapes a live session would: one roster on
    activation, then the scripted messages at their delays. Local posts are
    echoed synchronously.
    """

    def __init__(
        self,
        identity: Identity,
        emit: EventSink,
        demo_users: Sequence[str] = DEFAULT_DEMO_USERS,
        script: Sequence[ScriptedMessage] = DEFAULT_DEMO_SCRIPT,
    ) -> None:
        self.identity = identity
        self.emit = emit
        self.demo_users = tuple(demo_users)
        self.script = tuple(sorted(script, key=lambda m: m.delay_ms))
        self._generation = 0
        self._handles: List[asyncio.TimerHandle] = []
        self.active = False

    def activate(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        loop = loop or asyncio.get_running_loop()
        self.active = True
        generation = self._generation

        self.emit(RosterChanged(members=(self.identity.name,) + self.demo_users))

        for entry in self.script:
            handle = loop.call_later(entry.delay_ms / 1000, self._fire, generation, entry)
            self._handles.append(handle)
        logger.debug("Scheduled %d scripted messages", len(self.script),
                     extra={"username": self.identity.name})

    def _fire(self, generation: int, entry: ScriptedMessage) -> None:
        # A cancelled session may still have a callback queued on the loop
        if generation != self._generation:
            return
        self.emit(MessagePosted(author=entry.author, content=entry.text))

    def post(self, text: str) -> None:
        if not self.active:
            return
        self.emit(MessagePosted(author=self.identity.name, content=text))

    def cancel(self) -> None:
        self._generation += 1
        self.active = False
        for handle in self._handles:
            handle.cancel()
        self._handles.clear()
