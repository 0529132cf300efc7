"""Pseudo-terminal backed shell processes.

The ProcessSupervisor starts a shell attached to a fresh pty pair and
returns a PtyProcess handle that owns the master side: writing input,
reading output, resizing, and terminating the process group.
"""

from __future__ import annotations

import asyncio
import errno
import fcntl
import logging
import os
import pty
import shlex
import signal
import struct
import subprocess
import termios
from typing import Mapping

from termbridge.bridge.errors import ResizeError, SpawnError, WriteError
from termbridge.domain.models import (
    DEFAULT_COLS,
    DEFAULT_ROWS,
    MAX_DIMENSION,
    ProcessExit,
    TerminalGeometry,
)

logger = logging.getLogger(__name__)

DEFAULT_GRACE_PERIOD = 2.0
DEFAULT_READ_SIZE = 4096


def _pack_winsize(cols: int, rows: int) -> bytes:
    return struct.pack("HHHH", rows, cols, 0, 0)


def _acquire_controlling_tty() -> None:
    # Runs in the child after setsid(); stdin is already the pty slave.
    fcntl.ioctl(0, termios.TIOCSCTTY, 0)


class PtyProcess:
    """Handle to a running shell on the master side of a pty.

    Created by ProcessSupervisor.spawn(). The handle is owned by exactly
    one session; nothing else reads from or writes to the master fd.
    """

    def __init__(
        self,
        process: asyncio.subprocess.Process,
        master_fd: int,
        geometry: TerminalGeometry,
        grace_period: float = DEFAULT_GRACE_PERIOD,
    ) -> None:
        self._process = process
        self._master_fd: int | None = master_fd
        self._geometry = geometry
        self._grace_period = grace_period
        self._loop = asyncio.get_running_loop()
        self._waiters: set[asyncio.Future[None]] = set()
        self._exit: ProcessExit | None = None
        self._terminate_task: asyncio.Task[None] | None = None

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def is_alive(self) -> bool:
        return self._process.returncode is None and self._master_fd is not None

    @property
    def geometry(self) -> TerminalGeometry:
        return self._geometry

    @property
    def exit(self) -> ProcessExit | None:
        return self._exit

    def query_geometry(self) -> TerminalGeometry | None:
        """Read the current window size back from the kernel."""
        if self._master_fd is None:
            return None
        packed = fcntl.ioctl(self._master_fd, termios.TIOCGWINSZ, _pack_winsize(0, 0))
        rows, cols, _, _ = struct.unpack("HHHH", packed)
        return TerminalGeometry(cols=cols, rows=rows)

    async def wait(self) -> ProcessExit:
        """Wait until the process has exited and describe how it ended."""
        returncode = await self._process.wait()
        if self._exit is None:
            sig_name = None
            if returncode < 0:
                try:
                    sig_name = signal.Signals(-returncode).name
                except ValueError:
                    sig_name = f"signal {-returncode}"
            self._exit = ProcessExit(pid=self.pid, returncode=returncode, signal=sig_name)
        return self._exit

    async def write(self, data: bytes) -> None:
        """Write all of ``data`` to the process input, in order.

        Raises:
            WriteError: If the process is gone or the pty rejects the write.
        """
        if not self.is_alive:
            raise WriteError("Shell process is not running")

        view = memoryview(data)
        while view:
            fd = self._master_fd
            if fd is None:
                raise WriteError("Shell process was terminated")
            try:
                written = os.write(fd, view)
            except BlockingIOError:
                await self._wait_ready(writable=True)
                continue
            except OSError as e:
                raise WriteError(f"Failed to write to shell: {e}") from e
            view = view[written:]

    async def read(self, max_bytes: int = DEFAULT_READ_SIZE) -> bytes:
        """Return the next chunk of output, or b"" at end of stream."""
        while True:
            fd = self._master_fd
            if fd is None:
                return b""
            try:
                return os.read(fd, max_bytes)
            except BlockingIOError:
                await self._wait_ready(writable=False)
            except OSError as e:
                # Linux reports EIO once every slave fd is closed.
                if e.errno != errno.EIO:
                    logger.warning("Reading from pid %d failed: %s", self.pid, e)
                return b""

    def resize(self, cols: int, rows: int) -> None:
        """Apply a new window size; the kernel delivers SIGWINCH to the shell.

        Raises:
            ResizeError: If the size is not positive or the process is gone.
        """
        if cols <= 0 or rows <= 0 or cols > MAX_DIMENSION or rows > MAX_DIMENSION:
            raise ResizeError(f"Invalid terminal size {cols}x{rows}")
        if not self.is_alive:
            raise ResizeError("Cannot resize, shell process is not running")
        try:
            fcntl.ioctl(self._master_fd, termios.TIOCSWINSZ, _pack_winsize(cols, rows))
        except OSError as e:
            raise ResizeError(f"Failed to resize terminal: {e}") from e
        self._geometry = TerminalGeometry(cols=cols, rows=rows)
        logger.debug("Resized pid %d to %dx%d", self.pid, cols, rows)

    async def terminate(self) -> None:
        """Stop the process group and release the pty.

        Sends SIGHUP and SIGTERM, waits up to the grace period, then
        SIGKILLs whatever is left. Safe to call any number of times,
        concurrently or after the process already exited.
        """
        if self._terminate_task is None:
            self._terminate_task = asyncio.ensure_future(self._terminate())
        await asyncio.shield(self._terminate_task)

    async def _terminate(self) -> None:
        try:
            if self._process.returncode is None:
                self._signal_group(signal.SIGHUP)
                self._signal_group(signal.SIGTERM)
                try:
                    await asyncio.wait_for(self._process.wait(), timeout=self._grace_period)
                except asyncio.TimeoutError:
                    logger.warning(
                        "Shell pid %d ignored SIGTERM for %.1fs, sending SIGKILL",
                        self.pid, self._grace_period,
                    )
                    self._signal_group(signal.SIGKILL)
                    await self._process.wait()
            exit_info = await self.wait()
            logger.info("Shell pid %d stopped (%s)", self.pid, exit_info.description)
        finally:
            self._close_master()

    def _signal_group(self, sig: signal.Signals) -> None:
        # The shell is a session leader, so its pid is also its pgid.
        try:
            os.killpg(self.pid, sig)
        except ProcessLookupError:
            pass

    async def _wait_ready(self, writable: bool) -> None:
        fd = self._master_fd
        if fd is None:
            return
        fut: asyncio.Future[None] = self._loop.create_future()

        def _ready() -> None:
            if not fut.done():
                fut.set_result(None)

        if writable:
            self._loop.add_writer(fd, _ready)
        else:
            self._loop.add_reader(fd, _ready)
        self._waiters.add(fut)
        try:
            await fut
        finally:
            self._waiters.discard(fut)
            # Only unregister if the fd was not closed (and possibly reused) meanwhile.
            if self._master_fd == fd:
                if writable:
                    self._loop.remove_writer(fd)
                else:
                    self._loop.remove_reader(fd)

    def _close_master(self) -> None:
        fd = self._master_fd
        if fd is None:
            return
        self._master_fd = None
        self._loop.remove_reader(fd)
        self._loop.remove_writer(fd)
        for fut in list(self._waiters):
            if not fut.done():
                fut.set_result(None)
        try:
            os.close(fd)
        except OSError:
            pass


class ProcessSupervisor:
    """Starts shells under a pseudo-terminal.

    Holds the defaults (shell, environment overrides, working directory,
    termination grace period) applied to every spawn.

    Example usage::

        supervisor = ProcessSupervisor(shell_command="/bin/sh")
        proc = await supervisor.spawn(cols=80, rows=24)
        await proc.write(b"echo hi\\n")
        print(await proc.read())
        await proc.terminate()
    """

    def __init__(
        self,
        shell_command: str = "/bin/bash",
        environment: Mapping[str, str] | None = None,
        working_directory: str | None = None,
        term: str = "xterm-256color",
        grace_period: float = DEFAULT_GRACE_PERIOD,
    ) -> None:
        self._shell_command = shell_command
        self._environment = dict(environment or {})
        self._working_directory = working_directory
        self._term = term
        self._grace_period = grace_period

    @property
    def shell_command(self) -> str:
        return self._shell_command

    async def spawn(
        self,
        shell_command: str | None = None,
        environment: Mapping[str, str] | None = None,
        working_directory: str | None = None,
        cols: int = DEFAULT_COLS,
        rows: int = DEFAULT_ROWS,
    ) -> PtyProcess:
        """Start a shell attached to a new pty.

        Raises:
            SpawnError: If the command is empty, the geometry is invalid,
                or the executable cannot be started.
        """
        command = shell_command or self._shell_command
        try:
            argv = shlex.split(command)
        except ValueError as e:
            raise SpawnError(f"Cannot parse shell command {command!r}: {e}") from e
        if not argv:
            raise SpawnError("Shell command is empty")
        if not (0 < cols <= MAX_DIMENSION and 0 < rows <= MAX_DIMENSION):
            raise SpawnError(f"Invalid initial terminal size {cols}x{rows}")

        cwd = working_directory or self._working_directory or os.path.expanduser("~")

        env = os.environ.copy()
        env.update(self._environment)
        env.update(environment or {})
        env["TERM"] = self._term
        env["COLUMNS"] = str(cols)
        env["LINES"] = str(rows)

        try:
            master_fd, slave_fd = pty.openpty()
        except OSError as e:
            raise SpawnError(f"Cannot allocate a pseudo-terminal: {e}") from e

        started = False
        try:
            fcntl.ioctl(slave_fd, termios.TIOCSWINSZ, _pack_winsize(cols, rows))
            flags = fcntl.fcntl(master_fd, fcntl.F_GETFL)
            fcntl.fcntl(master_fd, fcntl.F_SETFL, flags | os.O_NONBLOCK)
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=slave_fd,
                stdout=slave_fd,
                stderr=slave_fd,
                cwd=cwd,
                env=env,
                start_new_session=True,
                preexec_fn=_acquire_controlling_tty,
            )
            started = True
        except (OSError, subprocess.SubprocessError) as e:
            raise SpawnError(f"Failed to start {command!r}: {e}") from e
        finally:
            # The child holds its own copy of the slave side.
            os.close(slave_fd)
            if not started:
                os.close(master_fd)

        logger.info(
            "Started shell %s (pid=%d, %dx%d, cwd=%s)",
            command, process.pid, cols, rows, cwd,
        )
        return PtyProcess(
            process=process,
            master_fd=master_fd,
            geometry=TerminalGeometry(cols=cols, rows=rows),
            grace_period=self._grace_period,
        )
