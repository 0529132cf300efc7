"""Tests for the OutputPump."""

from __future__ import annotations

import asyncio

import pytest

from termbridge.bridge.pump import FINISH_CONNECTION_ERROR, FINISH_EOF, OutputPump


class TestOutputPump:
    @pytest.mark.asyncio
    async def test_forwards_in_emission_order(self, fake_process, fake_connection) -> None:
        chunks = [b"one ", b"two ", b"\x1b[31mthree\x1b[0m"]
        for chunk in chunks:
            fake_process.emit(chunk)
        fake_process.emit(b"")

        pump = OutputPump(fake_process, fake_connection)
        assert await pump.run() == FINISH_EOF

        assert fake_connection.sent == chunks
        assert pump.bytes_forwarded == sum(len(c) for c in chunks)
        assert pump.finish_reason == FINISH_EOF

    @pytest.mark.asyncio
    async def test_backpressure_stops_reading(self, fake_process, fake_connection, wait_until) -> None:
        fake_connection.send_gate = asyncio.Event()
        for i in range(5):
            fake_process.emit(f"chunk{i};".encode())

        pump = OutputPump(fake_process, fake_connection)
        task = asyncio.create_task(pump.run())

        # Only the first chunk is taken while the client is not draining.
        await wait_until(lambda: fake_process.output.qsize() == 4)
        await asyncio.sleep(0.05)
        assert fake_process.output.qsize() == 4
        assert fake_connection.sent == []

        fake_connection.send_gate.set()
        fake_process.emit(b"")
        assert await task == FINISH_EOF
        assert fake_connection.output == b"chunk0;chunk1;chunk2;chunk3;chunk4;"

    @pytest.mark.asyncio
    async def test_connection_error_ends_pump(self, fake_process, fake_connection) -> None:
        fake_connection.fail_sends = True
        fake_process.emit(b"data")

        pump = OutputPump(fake_process, fake_connection)
        assert await pump.run() == FINISH_CONNECTION_ERROR
        assert pump.bytes_forwarded == 0

    @pytest.mark.asyncio
    async def test_send_timeout_is_connection_error(self, fake_process, fake_connection) -> None:
        fake_connection.send_gate = asyncio.Event()
        fake_process.emit(b"stuck")

        pump = OutputPump(fake_process, fake_connection, send_timeout=0.05)
        assert await pump.run() == FINISH_CONNECTION_ERROR
        assert fake_connection.sent == []

    @pytest.mark.asyncio
    async def test_cancellation(self, fake_process, fake_connection) -> None:
        pump = OutputPump(fake_process, fake_connection)
        task = asyncio.create_task(pump.run())
        await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert pump.finish_reason is None
