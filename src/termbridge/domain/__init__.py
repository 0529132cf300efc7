"""Domain models shared by the bridge and the HTTP endpoint."""

from termbridge.domain.models import (
    DEFAULT_COLS,
    DEFAULT_ROWS,
    MAX_DIMENSION,
    CommandMessage,
    Message,
    ProcessExit,
    ResizeMessage,
    SessionInfo,
    SessionState,
    TerminalGeometry,
)

__all__ = [
    "DEFAULT_COLS",
    "DEFAULT_ROWS",
    "MAX_DIMENSION",
    "CommandMessage",
    "Message",
    "ProcessExit",
    "ResizeMessage",
    "SessionInfo",
    "SessionState",
    "TerminalGeometry",
]
