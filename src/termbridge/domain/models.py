"""Core domain models for the termbridge system.

These models represent the data flowing through a terminal session:
inbound protocol messages from the browser terminal, terminal geometry,
process exit information, and read-only session snapshots.
"""

from __future__ import annotations

import enum
from datetime import datetime
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


DEFAULT_COLS = 80
DEFAULT_ROWS = 24
MAX_DIMENSION = 0xFFFF  # winsize fields are unsigned short


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class SessionState(str, enum.Enum):
    """Lifecycle states of a terminal session."""

    INITIALIZING = "initializing"  # Shell spawn in progress
    ACTIVE = "active"  # Both directions running
    CLOSING = "closing"  # Teardown in progress
    CLOSED = "closed"  # All resources released


# ---------------------------------------------------------------------------
# Terminal Models
# ---------------------------------------------------------------------------


class TerminalGeometry(BaseModel):
    """Size of the pseudo-terminal in character cells."""

    model_config = ConfigDict(frozen=True)

    cols: int = Field(default=DEFAULT_COLS, gt=0, le=MAX_DIMENSION, description="Number of columns")
    rows: int = Field(default=DEFAULT_ROWS, gt=0, le=MAX_DIMENSION, description="Number of rows")


class ProcessExit(BaseModel):
    """How a shell process ended. Used for logging only."""

    model_config = ConfigDict(frozen=True)

    pid: int
    returncode: int | None = Field(default=None, description="Exit status or negative signal number")
    signal: str | None = Field(default=None, description="Signal name if killed by a signal")

    @property
    def description(self) -> str:
        if self.signal:
            return f"killed by {self.signal}"
        return f"exit code {self.returncode}"


# ---------------------------------------------------------------------------
# Protocol Messages (inbound)
# ---------------------------------------------------------------------------


class CommandMessage(BaseModel):
    """Bytes to deliver to the shell's input, typed as text by the client."""

    model_config = ConfigDict(frozen=True)

    type: Literal["command"] = "command"
    payload: str = Field(description="Keystrokes to write to the process")

    def to_bytes(self) -> bytes:
        return self.payload.encode("utf-8")


class ResizeMessage(BaseModel):
    """New terminal geometry requested by the client."""

    model_config = ConfigDict(frozen=True)

    type: Literal["resize"] = "resize"
    cols: int = Field(gt=0, strict=True)
    rows: int = Field(gt=0, strict=True)


Message = Annotated[
    Union[CommandMessage, ResizeMessage],
    Field(discriminator="type"),
]


# ---------------------------------------------------------------------------
# Session Snapshots
# ---------------------------------------------------------------------------


class SessionInfo(BaseModel):
    """Read-only view of a live session, served by the sessions endpoint."""

    model_config = ConfigDict(frozen=True)

    session_id: str
    identity: str
    state: SessionState
    cols: int
    rows: int
    pid: int | None = None
    created_at: datetime
