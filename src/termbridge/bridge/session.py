"""Terminal session: one client connection bridged to one shell process.

A session moves through INITIALIZING -> ACTIVE -> CLOSING -> CLOSED.
While ACTIVE three tasks run side by side:

* inbound: connection frames -> codec -> process write/resize
* outbound: the OutputPump copying process output to the connection
* exit watcher: waits for the process to exit

Whichever finishes first decides why the session ends. Every ending,
including external ones such as server shutdown, goes through close(),
which runs the teardown sequence exactly once.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime

from termbridge.bridge.codec import decode_frame
from termbridge.bridge.connection import (
    CLOSE_GOING_AWAY,
    CLOSE_INTERNAL_ERROR,
    CLOSE_NORMAL,
    Connection,
)
from termbridge.bridge.errors import (
    BridgeConnectionError,
    ConnectionClosedError,
    ProtocolError,
    ResizeError,
    SpawnError,
    WriteError,
)
from termbridge.bridge.process import DEFAULT_READ_SIZE, ProcessSupervisor, PtyProcess
from termbridge.bridge.pump import FINISH_EOF, OutputPump
from termbridge.bridge.registry import SessionRegistry
from termbridge.domain.models import (
    CommandMessage,
    ProcessExit,
    ResizeMessage,
    SessionInfo,
    SessionState,
    TerminalGeometry,
)

logger = logging.getLogger(__name__)

DEFAULT_DRAIN_TIMEOUT = 1.0
MAX_CLOSE_REASON_BYTES = 123

Ending = tuple[str, int]


class Session:
    """Bridges one Connection to one shell started by a ProcessSupervisor.

    Args:
        connection: The accepted client connection. Owned by the session.
        supervisor: Used once, to spawn the shell.
        registry: Registry to deregister from on teardown, if any.
        identity: Authenticated principal, for logging and listings.
        geometry: Initial terminal size (80x24 if omitted).
        session_id: Explicit id; a random one is generated otherwise.
        read_size: Maximum bytes per output read.
        send_timeout: Seconds a single outbound frame may take, or None.
        drain_timeout: Seconds to let remaining output flush after the
                       process exited.
    """

    def __init__(
        self,
        connection: Connection,
        supervisor: ProcessSupervisor,
        registry: SessionRegistry | None = None,
        identity: str = "anonymous",
        geometry: TerminalGeometry | None = None,
        session_id: str | None = None,
        read_size: int = DEFAULT_READ_SIZE,
        send_timeout: float | None = None,
        drain_timeout: float = DEFAULT_DRAIN_TIMEOUT,
    ) -> None:
        self._session_id = session_id or uuid.uuid4().hex
        self._connection = connection
        self._supervisor = supervisor
        self._registry = registry
        self._identity = identity
        self._initial_geometry = geometry or TerminalGeometry()
        self._read_size = read_size
        self._send_timeout = send_timeout
        self._drain_timeout = drain_timeout

        self._state = SessionState.INITIALIZING
        self._created_at = datetime.now()
        self._process: PtyProcess | None = None
        self._pump: OutputPump | None = None
        self._tasks: list[asyncio.Task[Ending]] = []
        self._teardown_task: asyncio.Task[None] | None = None
        self._teardown_count = 0
        self._close_reason: str | None = None
        self._dropped_frames = 0
        self._closed = asyncio.Event()

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def identity(self) -> str:
        return self._identity

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def created_at(self) -> datetime:
        return self._created_at

    @property
    def process(self) -> PtyProcess | None:
        return self._process

    @property
    def geometry(self) -> TerminalGeometry:
        if self._process is not None:
            return self._process.geometry
        return self._initial_geometry

    @property
    def teardown_count(self) -> int:
        return self._teardown_count

    @property
    def close_reason(self) -> str | None:
        return self._close_reason

    @property
    def dropped_frames(self) -> int:
        return self._dropped_frames

    def info(self) -> SessionInfo:
        geometry = self.geometry
        return SessionInfo(
            session_id=self._session_id,
            identity=self._identity,
            state=self._state,
            cols=geometry.cols,
            rows=geometry.rows,
            pid=self._process.pid if self._process is not None else None,
            created_at=self._created_at,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def run(self) -> None:
        """Spawn the shell, bridge both directions, and tear down at the end.

        Returns once the session is CLOSED. Never raises for session
        failures; only cancellation propagates.
        """
        geometry = self._initial_geometry
        try:
            process = await self._supervisor.spawn(cols=geometry.cols, rows=geometry.rows)
        except SpawnError as e:
            logger.error("[%s] %s", self._session_id, e)
            await self._report(f"termbridge: failed to start shell: {e}\r\n")
            await self.close("spawn failed", CLOSE_INTERNAL_ERROR)
            return
        except asyncio.CancelledError:
            await self.close("cancelled", CLOSE_GOING_AWAY)
            raise
        except Exception:
            logger.exception("[%s] Unexpected error while starting shell", self._session_id)
            await self.close("internal error", CLOSE_INTERNAL_ERROR)
            return

        self._process = process
        if self._state is not SessionState.INITIALIZING:
            # Closed while the spawn was in flight.
            await process.terminate()
            return

        self._state = SessionState.ACTIVE
        logger.info(
            "[%s] Session active for %s (pid=%d, %dx%d)",
            self._session_id, self._identity, process.pid, geometry.cols, geometry.rows,
        )

        self._pump = OutputPump(
            process,
            self._connection,
            read_size=self._read_size,
            send_timeout=self._send_timeout,
            session_id=self._session_id,
        )
        outbound = asyncio.create_task(self._pump_output(), name=f"{self._session_id}-outbound")
        inbound = asyncio.create_task(self._receive_input(), name=f"{self._session_id}-inbound")
        exit_watch = asyncio.create_task(
            self._watch_exit(outbound), name=f"{self._session_id}-exit"
        )
        self._tasks = [inbound, outbound, exit_watch]

        try:
            done, _ = await asyncio.wait(self._tasks, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            await self.close("cancelled", CLOSE_GOING_AWAY)
            raise
        reason, code = self._ending_of(done)
        await self.close(reason, code)

    async def close(self, reason: str = "closed", code: int = CLOSE_NORMAL) -> None:
        """Tear the session down.

        The first call starts the teardown; every other call, concurrent
        or later, waits for that same teardown to finish.
        """
        if self._teardown_task is None:
            self._teardown_task = asyncio.ensure_future(self._teardown(reason, code))
        await asyncio.shield(self._teardown_task)

    async def wait_closed(self) -> None:
        await self._closed.wait()

    async def _teardown(self, reason: str, code: int) -> None:
        self._teardown_count += 1
        self._state = SessionState.CLOSING
        self._close_reason = reason
        logger.info("[%s] Closing session: %s", self._session_id, reason)
        try:
            pending = [task for task in self._tasks if not task.done()]
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

            if self._process is not None:
                try:
                    await self._process.terminate()
                except Exception:
                    logger.exception("[%s] Failed to terminate shell", self._session_id)

            if self._connection.is_open:
                await self._connection.close(code, _truncate_reason(reason))
        finally:
            if self._registry is not None:
                self._registry.deregister(self._session_id)
            self._state = SessionState.CLOSED
            self._closed.set()
            logger.info("[%s] Session closed", self._session_id)

    # ------------------------------------------------------------------
    # Inbound direction
    # ------------------------------------------------------------------

    async def handle_frame(self, raw: str | bytes) -> None:
        """Apply one inbound frame to the process.

        Malformed frames and rejected resizes are logged and dropped.

        Raises:
            WriteError: If the command could not be written; the session
                cannot continue.
        """
        if self._state is not SessionState.ACTIVE or self._process is None:
            logger.debug("[%s] Dropping frame in state %s", self._session_id, self._state.value)
            self._dropped_frames += 1
            return

        try:
            message = decode_frame(raw)
        except ProtocolError as e:
            logger.warning("[%s] Dropping frame: %s", self._session_id, e)
            self._dropped_frames += 1
            return

        if isinstance(message, CommandMessage):
            await self._process.write(message.to_bytes())
        elif isinstance(message, ResizeMessage):
            try:
                self._process.resize(message.cols, message.rows)
            except ResizeError as e:
                logger.warning("[%s] Ignoring resize: %s", self._session_id, e)
                self._dropped_frames += 1

    async def _receive_input(self) -> Ending:
        while True:
            try:
                raw = await self._connection.receive()
            except ConnectionClosedError as e:
                logger.info("[%s] %s", self._session_id, e)
                return "client disconnected", CLOSE_NORMAL
            except BridgeConnectionError as e:
                logger.warning("[%s] Connection failed: %s", self._session_id, e)
                return "connection error", CLOSE_INTERNAL_ERROR
            try:
                await self.handle_frame(raw)
            except WriteError as e:
                logger.warning("[%s] %s", self._session_id, e)
                return "shell input closed", CLOSE_INTERNAL_ERROR

    # ------------------------------------------------------------------
    # Outbound direction and process exit
    # ------------------------------------------------------------------

    async def _pump_output(self) -> Ending:
        assert self._pump is not None
        finish = await self._pump.run()
        if finish == FINISH_EOF:
            return "shell output closed", CLOSE_NORMAL
        return "connection error", CLOSE_INTERNAL_ERROR

    async def _watch_exit(self, outbound: asyncio.Task[Ending]) -> Ending:
        assert self._process is not None
        exit_info: ProcessExit = await self._process.wait()
        logger.info("[%s] Shell exited (%s)", self._session_id, exit_info.description)
        # Give the pump a moment to forward what the shell wrote last.
        try:
            await asyncio.wait_for(asyncio.shield(outbound), timeout=self._drain_timeout)
        except asyncio.TimeoutError:
            logger.debug("[%s] Output not drained after exit", self._session_id)
        return f"shell exited ({exit_info.description})", CLOSE_NORMAL

    def _ending_of(self, done: set[asyncio.Task[Ending]]) -> Ending:
        # Checked in list order: inbound, outbound, exit.
        for task in self._tasks:
            if task not in done or task.cancelled():
                continue
            error = task.exception()
            if error is not None:
                logger.error(
                    "[%s] Session task %s failed: %s", self._session_id, task.get_name(), error,
                    exc_info=error,
                )
                return "internal error", CLOSE_INTERNAL_ERROR
            return task.result()
        return "closed", CLOSE_NORMAL

    async def _report(self, text: str) -> None:
        if not self._connection.is_open:
            return
        try:
            await self._connection.send_bytes(text.encode("utf-8"))
        except BridgeConnectionError as e:
            logger.debug("[%s] Could not report to client: %s", self._session_id, e)


def _truncate_reason(reason: str) -> str:
    encoded = reason.encode("utf-8")[:MAX_CLOSE_REASON_BYTES]
    return encoded.decode("utf-8", errors="ignore")
