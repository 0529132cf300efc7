"""Duplex client connections.

A session talks to its client only through this interface, so the
bridge can be driven by a FastAPI WebSocket in production and by an
in-memory fake in tests.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod

from starlette.websockets import WebSocket, WebSocketDisconnect, WebSocketState

from termbridge.bridge.errors import BridgeConnectionError, ConnectionClosedError

logger = logging.getLogger(__name__)

# WebSocket close codes (RFC 6455)
CLOSE_NORMAL = 1000
CLOSE_GOING_AWAY = 1001
CLOSE_POLICY_VIOLATION = 1008
CLOSE_INTERNAL_ERROR = 1011
CLOSE_TRY_AGAIN_LATER = 1013


class Connection(ABC):
    """Abstract interface for the client side of a terminal session."""

    @property
    @abstractmethod
    def is_open(self) -> bool:
        """Whether frames can still be exchanged."""
        ...

    @abstractmethod
    async def receive(self) -> str | bytes:
        """Wait for the next inbound frame.

        Raises:
            ConnectionClosedError: Once the peer has disconnected.
            BridgeConnectionError: On any other transport failure.
        """
        ...

    @abstractmethod
    async def send_bytes(self, data: bytes) -> None:
        """Send one outbound data frame.

        Completes only when the transport has accepted the frame, which
        is what lets the output pump apply backpressure.

        Raises:
            ConnectionClosedError: If the connection is already closed.
            BridgeConnectionError: On any other transport failure.
        """
        ...

    @abstractmethod
    async def close(self, code: int = CLOSE_NORMAL, reason: str = "") -> None:
        """Close the connection. Must be safe to call multiple times."""
        ...


class WebSocketConnection(Connection):
    """Connection backed by an accepted Starlette/FastAPI WebSocket."""

    def __init__(self, websocket: WebSocket) -> None:
        self._websocket = websocket
        self._closed = False
        self._close_lock = asyncio.Lock()

    @property
    def is_open(self) -> bool:
        return (
            not self._closed
            and self._websocket.client_state == WebSocketState.CONNECTED
            and self._websocket.application_state == WebSocketState.CONNECTED
        )

    async def receive(self) -> str | bytes:
        if not self.is_open:
            raise ConnectionClosedError("WebSocket is closed")
        try:
            message = await self._websocket.receive()
        except RuntimeError as e:
            self._closed = True
            raise ConnectionClosedError(f"WebSocket receive failed: {e}") from e
        if message["type"] == "websocket.disconnect":
            self._closed = True
            raise ConnectionClosedError(f"Client disconnected (code={message.get('code')})")
        if message.get("text") is not None:
            return message["text"]
        if message.get("bytes") is not None:
            return message["bytes"]
        raise BridgeConnectionError(f"Unexpected ASGI message: {message['type']}")

    async def send_bytes(self, data: bytes) -> None:
        if not self.is_open:
            raise ConnectionClosedError("WebSocket is closed")
        try:
            await self._websocket.send_bytes(data)
        except WebSocketDisconnect as e:
            self._closed = True
            raise ConnectionClosedError(f"Client disconnected (code={e.code})") from e
        except (RuntimeError, OSError) as e:
            self._closed = True
            raise BridgeConnectionError(f"WebSocket send failed: {e}") from e

    async def close(self, code: int = CLOSE_NORMAL, reason: str = "") -> None:
        async with self._close_lock:
            if self._closed:
                return
            self._closed = True
            if self._websocket.application_state != WebSocketState.CONNECTED:
                return
            if self._websocket.client_state == WebSocketState.DISCONNECTED:
                return
            try:
                await self._websocket.close(code=code, reason=reason)
            except (RuntimeError, OSError) as e:
                logger.debug("WebSocket close failed: %s", e)
