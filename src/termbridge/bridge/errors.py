"""Error taxonomy for terminal sessions.

Per-message errors (ResizeError, ProtocolError) are handled inside the
session and only logged. Everything else ends the session through its
single teardown path.
"""

from __future__ import annotations


class BridgeError(Exception):
    """Base class for all termbridge session errors."""

    def __init__(self, message: str, session_id: str = "") -> None:
        super().__init__(message)
        self.session_id = session_id


class SpawnError(BridgeError):
    """Raised when the shell process cannot be started."""


class WriteError(BridgeError):
    """Raised when the process input stream is closed or the write fails."""


class ResizeError(BridgeError):
    """Raised for invalid geometry or a resize of a dead process."""


class ProtocolError(BridgeError):
    """Raised when an inbound frame is malformed or has an unknown type."""


class BridgeConnectionError(BridgeError):
    """Raised on a network-level failure of the client connection."""


class ConnectionClosedError(BridgeConnectionError):
    """Raised when the client connection has been closed."""


class SessionLimitError(BridgeError):
    """Raised when the registry already holds the maximum number of sessions."""
