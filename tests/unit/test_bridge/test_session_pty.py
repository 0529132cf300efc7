"""End-to-end session tests: fake client connection, real /bin/sh."""

from __future__ import annotations

import asyncio
import json
import os
import shutil
import signal
import sys

import pytest

from termbridge.bridge.connection import CLOSE_INTERNAL_ERROR
from termbridge.bridge.process import ProcessSupervisor
from termbridge.bridge.registry import SessionRegistry
from termbridge.bridge.session import Session
from termbridge.domain.models import SessionState, TerminalGeometry

pytestmark = pytest.mark.skipif(
    sys.platform == "win32" or shutil.which("sh") is None,
    reason="needs a POSIX shell and pty support",
)


@pytest.fixture
def supervisor(tmp_path) -> ProcessSupervisor:
    return ProcessSupervisor(
        shell_command="/bin/sh",
        working_directory=str(tmp_path),
        environment={"PS1": "$ "},
        grace_period=0.5,
    )


@pytest.fixture
def sh_session(fake_connection, supervisor, registry: SessionRegistry) -> Session:
    s = Session(fake_connection, supervisor, registry=registry, drain_timeout=0.5)
    registry.register(s)
    return s


async def start(session: Session, wait_until) -> asyncio.Task[None]:
    task = asyncio.create_task(session.run())
    await wait_until(lambda: session.state is SessionState.ACTIVE)
    return task


class TestShellSession:
    @pytest.mark.asyncio
    async def test_echo_round_trip(self, sh_session, fake_connection, wait_until) -> None:
        task = await start(sh_session, wait_until)
        fake_connection.push(json.dumps({"type": "command", "payload": "echo hi\n"}))
        await wait_until(lambda: b"\r\nhi\r\n" in fake_connection.output)
        fake_connection.disconnect()
        await asyncio.wait_for(task, timeout=5)
        assert sh_session.state is SessionState.CLOSED

    @pytest.mark.asyncio
    async def test_resize_applies_geometry(self, sh_session, fake_connection, wait_until) -> None:
        task = await start(sh_session, wait_until)
        fake_connection.push(json.dumps({"type": "command", "payload": "echo ready\n"}))
        await wait_until(lambda: b"\r\nready\r\n" in fake_connection.output)
        sent_before = len(fake_connection.sent)

        fake_connection.push(json.dumps({"type": "resize", "cols": 100, "rows": 30}))
        await wait_until(lambda: sh_session.geometry == TerminalGeometry(cols=100, rows=30))
        await asyncio.sleep(0.1)

        assert len(fake_connection.sent) == sent_before
        assert sh_session.process.query_geometry() == TerminalGeometry(cols=100, rows=30)
        assert sh_session.state is SessionState.ACTIVE
        fake_connection.disconnect()
        await asyncio.wait_for(task, timeout=5)

    @pytest.mark.asyncio
    async def test_exit_command_closes_session(self, sh_session, fake_connection, registry, wait_until) -> None:
        task = await start(sh_session, wait_until)
        fake_connection.push(json.dumps({"type": "command", "payload": "exit\n"}))
        await asyncio.wait_for(task, timeout=5)

        assert sh_session.state is SessionState.CLOSED
        assert sh_session.process.exit is not None
        assert sh_session.process.exit.returncode == 0
        assert len(fake_connection.close_calls) == 1
        assert not fake_connection.is_open
        assert sh_session.session_id not in registry

    @pytest.mark.asyncio
    async def test_nonexistent_shell(self, fake_connection, tmp_path, registry) -> None:
        supervisor = ProcessSupervisor(shell_command="/nonexistent/shell", working_directory=str(tmp_path))
        s = Session(fake_connection, supervisor, registry=registry)
        registry.register(s)
        await asyncio.wait_for(s.run(), timeout=5)

        assert s.state is SessionState.CLOSED
        assert s.process is None
        assert fake_connection.close_calls[0][0] == CLOSE_INTERNAL_ERROR
        assert s.session_id not in registry

    @pytest.mark.asyncio
    async def test_kill_and_disconnect_together(self, sh_session, fake_connection, registry, wait_until) -> None:
        task = await start(sh_session, wait_until)
        os.kill(sh_session.process.pid, signal.SIGKILL)
        fake_connection.disconnect()
        await asyncio.wait_for(task, timeout=5)

        assert sh_session.teardown_count == 1
        assert sh_session.state is SessionState.CLOSED
        assert sh_session.session_id not in registry
        assert len(fake_connection.close_calls) <= 1
