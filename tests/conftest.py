"""Shared test fixtures for the termbridge test suite.

Provides in-memory stand-ins for the two things a session owns: the
client connection and the shell process. Tests that need a real
pseudo-terminal spawn /bin/sh directly.
"""

from __future__ import annotations

import asyncio

import pytest

from termbridge.bridge.connection import CLOSE_NORMAL, Connection
from termbridge.bridge.errors import ConnectionClosedError, ResizeError, SpawnError, WriteError
from termbridge.bridge.registry import SessionRegistry
from termbridge.domain.models import MAX_DIMENSION, ProcessExit, TerminalGeometry

_DISCONNECT = object()


# ---------------------------------------------------------------------------
# Fake connection
# ---------------------------------------------------------------------------


class FakeConnection(Connection):
    """In-memory connection. Queue frames with push(), read output from sent."""

    def __init__(self, frames: list[str | bytes] | None = None) -> None:
        self.inbound: asyncio.Queue[object] = asyncio.Queue()
        for frame in frames or []:
            self.inbound.put_nowait(frame)
        self.sent: list[bytes] = []
        self.close_calls: list[tuple[int, str]] = []
        self.send_gate: asyncio.Event | None = None
        self.fail_sends = False
        self._open = True

    @property
    def is_open(self) -> bool:
        return self._open

    def push(self, frame: str | bytes) -> None:
        self.inbound.put_nowait(frame)

    def disconnect(self) -> None:
        self.inbound.put_nowait(_DISCONNECT)

    @property
    def output(self) -> bytes:
        return b"".join(self.sent)

    async def receive(self) -> str | bytes:
        if not self._open:
            raise ConnectionClosedError("closed")
        frame = await self.inbound.get()
        if frame is _DISCONNECT:
            self._open = False
            raise ConnectionClosedError("Client disconnected (code=1000)")
        return frame  # type: ignore[return-value]

    async def send_bytes(self, data: bytes) -> None:
        if not self._open or self.fail_sends:
            raise ConnectionClosedError("closed")
        if self.send_gate is not None:
            await self.send_gate.wait()
        self.sent.append(data)

    async def close(self, code: int = CLOSE_NORMAL, reason: str = "") -> None:
        self.close_calls.append((code, reason))
        self._open = False


# ---------------------------------------------------------------------------
# Fake process
# ---------------------------------------------------------------------------


class FakeProcess:
    """Duck-typed PtyProcess recording writes and resizes in order."""

    pid = 4242

    def __init__(self, geometry: TerminalGeometry | None = None) -> None:
        self.calls: list[tuple] = []
        self.output: asyncio.Queue[bytes] = asyncio.Queue()
        self.terminate_calls = 0
        self._geometry = geometry or TerminalGeometry()
        self._returncode: int | None = None
        self._exited = asyncio.Event()

    @property
    def is_alive(self) -> bool:
        return self._returncode is None

    @property
    def geometry(self) -> TerminalGeometry:
        return self._geometry

    def emit(self, data: bytes) -> None:
        self.output.put_nowait(data)

    def exit(self, returncode: int = 0) -> None:
        if self._returncode is None:
            self._returncode = returncode
            self.output.put_nowait(b"")
            self._exited.set()

    async def write(self, data: bytes) -> None:
        if not self.is_alive:
            raise WriteError("Shell process is not running")
        self.calls.append(("write", data))

    def resize(self, cols: int, rows: int) -> None:
        if not (0 < cols <= MAX_DIMENSION and 0 < rows <= MAX_DIMENSION):
            raise ResizeError(f"Invalid terminal size {cols}x{rows}")
        if not self.is_alive:
            raise ResizeError("Cannot resize, shell process is not running")
        self.calls.append(("resize", cols, rows))
        self._geometry = TerminalGeometry(cols=cols, rows=rows)

    async def read(self, max_bytes: int = 4096) -> bytes:
        return await self.output.get()

    async def wait(self) -> ProcessExit:
        await self._exited.wait()
        return ProcessExit(pid=self.pid, returncode=self._returncode)

    async def terminate(self) -> None:
        self.terminate_calls += 1
        self.exit(-15)


class FakeSupervisor:
    """Hands out a prepared FakeProcess, or fails like a missing executable.

    ``error`` makes spawn() raise that exception instead.
    """

    shell_command = "/bin/fake"

    def __init__(
        self,
        process: FakeProcess | None = None,
        fail: bool = False,
        error: Exception | None = None,
    ) -> None:
        self.process = process or FakeProcess()
        self.fail = fail
        self.error = error
        self.spawn_calls: list[tuple[int, int]] = []

    async def spawn(self, cols: int = 80, rows: int = 24, **kwargs: object) -> FakeProcess:
        self.spawn_calls.append((cols, rows))
        if self.error is not None:
            raise self.error
        if self.fail:
            raise SpawnError("Failed to start '/bin/fake': [Errno 2] No such file or directory")
        return self.process


async def wait_until(predicate, timeout: float = 5.0, interval: float = 0.01) -> None:
    """Poll ``predicate`` until it is true or fail the test."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            pytest.fail("condition not met within %.1fs" % timeout)
        await asyncio.sleep(interval)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def registry() -> SessionRegistry:
    return SessionRegistry()


@pytest.fixture
def fake_connection() -> FakeConnection:
    return FakeConnection()


@pytest.fixture
def fake_process() -> FakeProcess:
    return FakeProcess()


@pytest.fixture
def fake_supervisor(fake_process: FakeProcess) -> FakeSupervisor:
    return FakeSupervisor(fake_process)


@pytest.fixture(name="wait_until")
def wait_until_fixture():
    """The wait_until() polling helper, for tests that need it."""
    return wait_until


@pytest.fixture
def failing_supervisor() -> FakeSupervisor:
    return FakeSupervisor(fail=True)
