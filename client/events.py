from __future__ import annotations
from typing import Optional, Sequence

from client.state import SessionState
from shared.log import get_logger
from shared.protocol import InboundEvent, MessagePosted, Rejected, RosterChanged

logger = get_logger(__name__)


class SessionListener:
    """
    Presentation-side callbacks for a chat session.

    Every method is a no-op here; presentation layers override the ones
    they render.
    """

    def on_message(self, author: str, content: str) -> None:
        pass

    def on_roster_changed(self, members: Sequence[str]) -> None:
        pass

    def on_rejected(self, reason: str) -> None:
        pass

    def on_connection_state_changed(self, is_live: bool) -> None:
        pass

    def on_state_changed(self, old: SessionState, new: SessionState) -> None:
        pass

    def on_notice(self, text: str) -> None:
        pass


class EventDispatcher:
    """
    Routes inbound events and state transitions to the single subscriber.

    Listener errors are logged and swallowed so a faulty presentation layer
    cannot tear down the reader loop.
    """

    def __init__(self) -> None:
        self.listener: SessionListener = SessionListener()

    def subscribe(self, listener: Optional[SessionListener]) -> None:
        self.listener = listener or SessionListener()

    def event(self, event: InboundEvent) -> None:
        if isinstance(event, MessagePosted):
            self._call("on_message", event.author, event.content)
        elif isinstance(event, RosterChanged):
            self._call("on_roster_changed", list(event.members))
        elif isinstance(event, Rejected):
            self._call("on_rejected", event.reason)

    def state(self, old: SessionState, new: SessionState) -> None:
        self._call("on_state_changed", old, new)

    def liveness(self, is_live: bool) -> None:
        self._call("on_connection_state_changed", is_live)

    def notice(self, text: str) -> None:
        self._call("on_notice", text)

    def _call(self, method: str, *args) -> None:
        try:
            getattr(self.listener, method)(*args)
        except Exception:
            logger.exception("Listener %s raised", method)
