from __future__ import annotations
import asyncio
from typing import AsyncIterator, Optional, Union

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from shared.log import get_logger

logger = get_logger(__name__)


Frame = Union[str, bytes]


class TransportError(Exception):
    """Raised when the relay connection cannot be opened or used."""
    pass


class RelayTransport:
    """
    Single WebSocket connection to the chat relay.

    Frames are passed through untouched; encoding and decoding belong to
    ``shared.protocol``.
    """

    def __init__(self, url: str, connect_timeout: float = 5.0) -> None:
        self.url = url
        self.connect_timeout = connect_timeout
        self.websocket: Optional[websockets.ClientConnection] = None

    async def connect(self) -> None:
        """Open the connection or raise TransportError."""
        try:
            self.websocket = await asyncio.wait_for(
                websockets.connect(self.url, ping_interval=15, ping_timeout=45),
                timeout=self.connect_timeout,
            )
        except asyncio.TimeoutError as e:
            raise TransportError(f"Timed out after {self.connect_timeout}s connecting to {self.url}") from e
        except (OSError, WebSocketException) as e:
            raise TransportError(f"Cannot connect to {self.url}: {e}") from e
        logger.info("Connected to relay %s", self.url)

    async def send(self, frame: str) -> None:
        if self.websocket is None:
            raise TransportError("Not connected")
        try:
            await self.websocket.send(frame)
        except ConnectionClosed as e:
            raise TransportError(f"Connection closed while sending: {e}") from e

    async def frames(self) -> AsyncIterator[Frame]:
        """Yield inbound frames until the connection closes, for any reason."""
        if self.websocket is None:
            raise TransportError("Not connected")
        try:
            async for raw in self.websocket:
                yield raw
        except ConnectionClosed as e:
            logger.info("Relay connection closed: %s", e)

    async def close(self) -> None:
        websocket, self.websocket = self.websocket, None
        if websocket is not None:
            await websocket.close(code=1000)
