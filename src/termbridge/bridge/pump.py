"""Output pump: forwards shell output to the client connection.

Only one read is outstanding at a time and the next read is issued
after the previous send completed. While the client is slow the pty
buffer fills up and the shell blocks on write, so nothing is buffered
without bound and nothing is dropped.
"""

from __future__ import annotations

import asyncio
import logging

from termbridge.bridge.codec import encode_output
from termbridge.bridge.connection import Connection
from termbridge.bridge.errors import BridgeConnectionError
from termbridge.bridge.process import DEFAULT_READ_SIZE, PtyProcess

logger = logging.getLogger(__name__)

FINISH_EOF = "eof"
FINISH_CONNECTION_ERROR = "connection_error"


class OutputPump:
    """Copies process output to the connection until either side ends."""

    def __init__(
        self,
        process: PtyProcess,
        connection: Connection,
        read_size: int = DEFAULT_READ_SIZE,
        send_timeout: float | None = None,
        session_id: str = "",
    ) -> None:
        self._process = process
        self._connection = connection
        self._read_size = read_size
        self._send_timeout = send_timeout
        self._session_id = session_id
        self._bytes_forwarded = 0
        self._finish_reason: str | None = None

    @property
    def bytes_forwarded(self) -> int:
        return self._bytes_forwarded

    @property
    def finish_reason(self) -> str | None:
        return self._finish_reason

    async def run(self) -> str:
        """Pump until end of stream or a connection failure.

        Returns:
            FINISH_EOF or FINISH_CONNECTION_ERROR.
        """
        while True:
            data = await self._process.read(self._read_size)
            if not data:
                logger.debug("[%s] Process output closed", self._session_id)
                self._finish_reason = FINISH_EOF
                return self._finish_reason
            try:
                await self._send(encode_output(data))
            except BridgeConnectionError as e:
                logger.info("[%s] Stopping output pump: %s", self._session_id, e)
                self._finish_reason = FINISH_CONNECTION_ERROR
                return self._finish_reason
            self._bytes_forwarded += len(data)

    async def _send(self, frame: bytes) -> None:
        if self._send_timeout is None:
            await self._connection.send_bytes(frame)
            return
        try:
            await asyncio.wait_for(self._connection.send_bytes(frame), timeout=self._send_timeout)
        except asyncio.TimeoutError as e:
            raise BridgeConnectionError(
                f"Client did not accept output within {self._send_timeout}s"
            ) from e
