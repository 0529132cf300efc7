"""Terminal bridge core: codec, process supervisor, output pump, sessions.

A Session pairs one client Connection with one pty-backed shell from the
ProcessSupervisor and tears both down exactly once.
"""

from termbridge.bridge.codec import decode_frame, encode_output
from termbridge.bridge.connection import Connection, WebSocketConnection
from termbridge.bridge.errors import (
    BridgeConnectionError,
    BridgeError,
    ConnectionClosedError,
    ProtocolError,
    ResizeError,
    SessionLimitError,
    SpawnError,
    WriteError,
)
from termbridge.bridge.process import ProcessSupervisor, PtyProcess
from termbridge.bridge.pump import OutputPump
from termbridge.bridge.registry import SessionRegistry
from termbridge.bridge.session import Session

__all__ = [
    "BridgeConnectionError",
    "BridgeError",
    "Connection",
    "ConnectionClosedError",
    "OutputPump",
    "ProcessSupervisor",
    "ProtocolError",
    "PtyProcess",
    "ResizeError",
    "Session",
    "SessionLimitError",
    "SessionRegistry",
    "SpawnError",
    "WebSocketConnection",
    "WriteError",
    "decode_frame",
    "encode_output",
]
