"""Tests for the core domain models."""

from __future__ import annotations

from datetime import datetime

import pytest
from pydantic import ValidationError

from termbridge.domain.models import (
    MAX_DIMENSION,
    ProcessExit,
    ResizeMessage,
    SessionInfo,
    SessionState,
    TerminalGeometry,
)


class TestTerminalGeometry:
    def test_defaults(self) -> None:
        geometry = TerminalGeometry()
        assert (geometry.cols, geometry.rows) == (80, 24)

    def test_rejects_non_positive(self) -> None:
        with pytest.raises(ValidationError):
            TerminalGeometry(cols=0, rows=24)

    def test_rejects_beyond_winsize_range(self) -> None:
        assert TerminalGeometry(cols=MAX_DIMENSION, rows=MAX_DIMENSION).cols == 65535
        with pytest.raises(ValidationError):
            TerminalGeometry(cols=70000, rows=24)
        with pytest.raises(ValidationError):
            TerminalGeometry(cols=80, rows=MAX_DIMENSION + 1)

    def test_frozen(self) -> None:
        geometry = TerminalGeometry(cols=100, rows=30)
        with pytest.raises(ValidationError):
            geometry.cols = 120  # type: ignore[misc]


class TestProcessExit:
    def test_exit_code_description(self) -> None:
        assert ProcessExit(pid=1, returncode=0).description == "exit code 0"

    def test_signal_description(self) -> None:
        info = ProcessExit(pid=1, returncode=-9, signal="SIGKILL")
        assert info.description == "killed by SIGKILL"


class TestMessages:
    def test_resize_type_tag(self) -> None:
        assert ResizeMessage(cols=1, rows=1).type == "resize"

    def test_session_info_serializes_state(self) -> None:
        info = SessionInfo(
            session_id="abc",
            identity="anonymous",
            state=SessionState.ACTIVE,
            cols=80,
            rows=24,
            created_at=datetime(2025, 1, 1, 12, 0, 0),
        )
        assert info.model_dump(mode="json")["state"] == "active"
