#!/usr/bin/env python3
"""
Chat session controller.

Owns the one logical session: the identity, the connection state and the
choice between a live relay connection and the local demo simulation.

    DISCONNECTED -> CONNECTING -> LIVE -> DISCONNECTED
    CONNECTING -> FAILED -> SIMULATED -> DISCONNECTED   (relay unreachable)
    LIVE -> FAILED -> DISCONNECTED                      (relay rejected the join)

Everything runs on the event loop thread. Each teardown bumps a generation
counter and every delivery point compares against the generation it was
started with, so nothing reaches the listener after ``leave()``.
"""

from __future__ import annotations
import asyncio
from typing import Callable, Coroutine, Optional, Set

from client.events import EventDispatcher, SessionListener
from client.simulator import SimulatedSession
from client.state import MIN_NAME_LENGTH, Identity, Roster, SessionState
from client.ws_client import RelayTransport, TransportError
from shared.config import ClientConfig
from shared.log import get_logger, log_frame
from shared.protocol import (
    InboundEvent,
    Join,
    Leave,
    MessagePosted,
    OutboundIntent,
    Post,
    Rejected,
    RosterChanged,
    decode,
    encode,
    intent_to_dict,
)

logger = get_logger(__name__)

# Upper bound on the goodbye frame before the transport is closed regardless
LEAVE_NOTICE_TIMEOUT = 1.0


TransportFactory = Callable[[ClientConfig], RelayTransport]


class SessionError(Exception):
    """Base class for errors raised synchronously to the caller."""
    pass


class ValidationError(SessionError):
    """Raised when the display name is empty or too short."""
    pass


class SessionActiveError(SessionError):
    """Raised when join() is called while a session is already running."""
    pass


def default_transport_factory(config: ClientConfig) -> RelayTransport:
    return RelayTransport(config.relay_url, connect_timeout=config.connect_timeout)


def validate_name(name: Optional[str]) -> str:
    """Return the trimmed display name or raise ValidationError."""
    trimmed = (name or "").strip()
    if not trimmed:
        raise ValidationError("Please enter a display name")
    if len(trimmed) < MIN_NAME_LENGTH:
        raise ValidationError(f"Display name needs at least {MIN_NAME_LENGTH} characters")
    return trimmed


class SessionController:

    def __init__(
        self,
        config: Optional[ClientConfig] = None,
        transport_factory: Optional[TransportFactory] = None,
        listener: Optional[SessionListener] = None,
    ) -> None:
        self.config = config or ClientConfig()
        self.transport_factory = transport_factory or default_transport_factory
        self.dispatcher = EventDispatcher()
        self.dispatcher.subscribe(listener)
        self.roster = Roster()

        self._state = SessionState.DISCONNECTED
        self._identity: Optional[Identity] = None
        self._transport: Optional[RelayTransport] = None
        self._simulator: Optional[SimulatedSession] = None
        self._connect_task: Optional[asyncio.Task] = None
        self._reader_task: Optional[asyncio.Task] = None
        self._background: Set[asyncio.Task] = set()
        self._sends: Set[asyncio.Task] = set()
        # Keeps outbound frames in call order, with Join always first
        self._send_lock = asyncio.Lock()
        self._joined = False
        self._generation = 0

    # ========================================
    #           PROPERTIES
    # ========================================

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def identity(self) -> Optional[Identity]:
        return self._identity

    @property
    def is_live(self) -> bool:
        return self._state is SessionState.LIVE

    def subscribe(self, listener: Optional[SessionListener]) -> None:
        """Install the single listener, replacing any previous one."""
        self.dispatcher.subscribe(listener)

    # ========================================
    #           PUBLIC TRIGGERS
    # ========================================

    def join(self, name: str, password: Optional[str] = None) -> asyncio.Task:
        """
        Validate the name and start connecting in the background.

        Raises ValidationError for a bad name and SessionActiveError when a
        session is already running; neither changes state. The returned task
        completes once the session is LIVE or SIMULATED.
        """
        if self._state is not SessionState.DISCONNECTED:
            raise SessionActiveError(f"Cannot join while {self._state.value}")

        username = validate_name(name)
        loop = asyncio.get_running_loop()

        self._identity = Identity(name=username, password=(password or "").strip() or None)
        self.roster.clear()
        self.roster.own_name = username
        self._set_state(SessionState.CONNECTING)

        self._connect_task = loop.create_task(self._connect(self._generation))
        return self._connect_task

    def send_message(self, text: str) -> None:
        content = (text or "").strip()
        if not content:
            return

        if len(content) > self.config.message_max_length:
            logger.warning("Message is %d characters, limit is %d",
                           len(content), self.config.message_max_length)

        if self._state is SessionState.LIVE and self._transport is not None and self._identity:
            self._spawn_send(self._send(self._transport, Post(name=self._identity.name, content=content)))
        elif self._state is SessionState.SIMULATED and self._simulator is not None:
            self._simulator.post(content)
        else:
            logger.debug("Ignoring message while %s", self._state.value)

    def leave(self) -> None:
        """
        Leave the session. Safe to call in any state.

        Pending posts are cancelled and the transport is closed even when the
        relay never acknowledges the Leave frame.
        """
        if self._state is SessionState.DISCONNECTED:
            return

        transport = self._transport
        if self._state is SessionState.LIVE and self._joined and transport is not None and self._identity:
            self._transport = None
            self._spawn(self._notify_leave(transport, Leave(name=self._identity.name)))

        logger.info("Leaving session", extra=self._log_context())
        self._teardown()

    async def drain(self) -> None:
        """Wait for pending sends and transport closes to finish."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # ========================================
    #           CONNECTION LIFECYCLE
    # ========================================

    async def _connect(self, generation: int) -> None:
        transport: Optional[RelayTransport] = None
        try:
            transport = self.transport_factory(self.config)
            await transport.connect()
        except asyncio.CancelledError:
            if transport is not None:
                await self._close_transport(transport)
            raise
        except TransportError as e:
            if generation == self._generation:
                logger.warning("Relay unreachable, switching to demo mode: %s", e,
                               extra=self._log_context())
                self._enter_simulated(generation)
            return
        except Exception:
            if transport is not None:
                self._spawn(self._close_transport(transport))
            if generation == self._generation:
                logger.exception("Unexpected error while connecting, switching to demo mode",
                                 extra=self._log_context())
                self._enter_simulated(generation)
            return

        # Held across the LIVE announcement so nothing a listener sends overtakes Join
        async with self._send_lock:
            if generation != self._generation:
                # leave() ran while the handshake was in flight
                await self._close_transport(transport)
                return

            identity = self._identity
            assert identity is not None
            self._transport = transport
            self._set_state(SessionState.LIVE)
            if generation != self._generation:
                return
            self.dispatcher.notice(f"{identity.name} joined the chat")
            if generation != self._generation:
                return

            await self._write(transport, Join(name=identity.name, password=identity.password))
            self._joined = True

        if generation != self._generation:
            return
        self._reader_task = asyncio.get_running_loop().create_task(self._read_loop(transport, generation))

    def _enter_simulated(self, generation: int) -> None:
        identity = self._identity
        assert identity is not None
        self._set_state(SessionState.FAILED)
        self.dispatcher.notice("Cannot connect to the server (server offline)")

        self._simulator = SimulatedSession(
            identity,
            emit=lambda event: self._deliver(event, generation),
            demo_users=self.config.demo_users,
            script=self.config.demo_script,
        )
        self._set_state(SessionState.SIMULATED)
        self.dispatcher.notice("Demo mode: messages you send are only shown locally")
        self._simulator.activate()

    async def _read_loop(self, transport: RelayTransport, generation: int) -> None:
        try:
            async for frame in transport.frames():
                if generation != self._generation:
                    return
                event = decode(frame)
                if event is None:
                    logger.debug("Dropped malformed frame: %.80r", frame)
                    continue
                self._deliver(event, generation)
        except (TransportError, OSError) as e:
            logger.warning("Relay connection error: %s", e, extra=self._log_context())

        if generation == self._generation:
            logger.info("Relay closed the connection", extra=self._log_context())
            self.dispatcher.notice("Disconnected")
            self._teardown()

    def _deliver(self, event: InboundEvent, generation: int) -> None:
        if generation != self._generation:
            return

        if isinstance(event, RosterChanged):
            self.roster.replace(event.members)
            self.dispatcher.event(RosterChanged(members=self.roster.snapshot()))
        elif isinstance(event, MessagePosted):
            self.dispatcher.event(event)
        elif isinstance(event, Rejected):
            self._reject(event)

    def _reject(self, event: Rejected) -> None:
        logger.warning("Relay rejected the session: %s", event.reason, extra=self._log_context())
        generation = self._generation
        self._set_state(SessionState.FAILED)
        self.dispatcher.event(event)
        if generation == self._generation:
            self._teardown()

    def _teardown(self) -> None:
        self._generation += 1

        if self._simulator is not None:
            self._simulator.cancel()
            self._simulator = None

        transport, self._transport = self._transport, None
        if transport is not None:
            self._spawn(self._close_transport(transport))

        current = asyncio.current_task()
        for task in (self._reader_task, self._connect_task):
            if task is not None and task is not current and not task.done():
                task.cancel()
        for task in list(self._sends):
            if task is not current:
                task.cancel()
        self._reader_task = None
        self._connect_task = None
        self._joined = False

        self._identity = None
        self.roster.clear()
        self._set_state(SessionState.DISCONNECTED)

    # ========================================
    #           OUTBOUND
    # ========================================

    async def _send(self, transport: RelayTransport, intent: OutboundIntent) -> None:
        async with self._send_lock:
            await self._write(transport, intent)

    async def _write(self, transport: RelayTransport, intent: OutboundIntent) -> None:
        # Callers hold _send_lock
        frame = encode(intent)
        log_frame(logger, "debug", "Sending frame", frame=intent_to_dict(intent))
        try:
            await transport.send(frame)
        except TransportError as e:
            logger.warning("Failed to send %s: %s", type(intent).__name__, e)

    async def _notify_leave(self, transport: RelayTransport, intent: Leave) -> None:
        # Best effort: the relay may already be gone or have stopped reading
        async def goodbye() -> None:
            async with self._send_lock:
                await transport.send(encode(intent))

        try:
            await asyncio.wait_for(goodbye(), LEAVE_NOTICE_TIMEOUT)
        except asyncio.TimeoutError:
            logger.debug("Leave notification timed out after %.1fs", LEAVE_NOTICE_TIMEOUT)
        except (TransportError, OSError) as e:
            logger.debug("Leave notification not delivered: %s", e)
        finally:
            await self._close_transport(transport)

    async def _close_transport(self, transport: RelayTransport) -> None:
        try:
            await transport.close()
        except Exception as e:
            logger.debug("Error while closing transport: %s", e)

    # ========================================
    #           HELPERS
    # ========================================

    def _set_state(self, new: SessionState) -> None:
        old = self._state
        if old is new:
            return
        self._state = new
        logger.debug("State %s -> %s", old.value, new.value)
        self.dispatcher.state(old, new)
        if self._state is not new:
            # the listener already moved the session on
            return
        if (old is SessionState.LIVE) != (new is SessionState.LIVE):
            self.dispatcher.liveness(new is SessionState.LIVE)

    def _spawn(self, coro: Coroutine) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    def _spawn_send(self, coro: Coroutine) -> asyncio.Task:
        task = self._spawn(coro)
        self._sends.add(task)
        task.add_done_callback(self._sends.discard)
        return task

    def _log_context(self) -> dict:
        context = {"state": self._state.value}
        if self._identity is not None:
            context["username"] = self._identity.name
        return context
