"""Unit tests for the heartbeat monitor."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from lares_controller.transport.exceptions import TransportError
from lares_controller.transport.heartbeat import HeartbeatMonitor, HeartbeatState
from tests.helpers.panel import wait_until


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def send_probe() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def on_timeout() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def monitor(clock: FakeClock, send_probe: AsyncMock, on_timeout: AsyncMock) -> HeartbeatMonitor:
    return HeartbeatMonitor(30.0, send_probe, on_timeout, clock=clock)


class TestTick:
    """Tests for one heartbeat interval, driven by hand."""

    @pytest.mark.asyncio
    async def test_first_tick_sends_probe(self, monitor: HeartbeatMonitor, send_probe: AsyncMock):
        assert await monitor.tick() is False
        send_probe.assert_awaited_once()
        assert monitor.state is HeartbeatState.PROBE_SENT

    @pytest.mark.asyncio
    async def test_pong_keeps_connection_alive(
        self,
        monitor: HeartbeatMonitor,
        clock: FakeClock,
        on_timeout: AsyncMock,
    ):
        for _ in range(5):
            clock.advance(30)
            assert await monitor.tick() is False
            monitor.record_response()
        on_timeout.assert_not_awaited()
        assert monitor.state is HeartbeatState.IDLE

    @pytest.mark.asyncio
    async def test_silence_within_deadline_is_tolerated(
        self,
        monitor: HeartbeatMonitor,
        clock: FakeClock,
        on_timeout: AsyncMock,
    ):
        """One missed pong is not enough; the deadline is twice the interval."""
        clock.advance(30)
        await monitor.tick()
        clock.advance(30)
        assert await monitor.tick() is False
        on_timeout.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_timeout_fires_exactly_once(
        self,
        monitor: HeartbeatMonitor,
        clock: FakeClock,
        on_timeout: AsyncMock,
        send_probe: AsyncMock,
    ):
        clock.advance(30)
        await monitor.tick()
        clock.advance(30)
        await monitor.tick()
        clock.advance(31)
        assert await monitor.tick() is True
        assert await monitor.tick() is True
        on_timeout.assert_awaited_once()
        silence = on_timeout.await_args.args[0]
        assert silence == pytest.approx(91.0)
        assert send_probe.await_count == 2

    @pytest.mark.asyncio
    async def test_no_timeout_without_outstanding_probe(
        self,
        monitor: HeartbeatMonitor,
        clock: FakeClock,
        on_timeout: AsyncMock,
    ):
        """Long silence while IDLE only triggers a probe."""
        clock.advance(500)
        assert await monitor.tick() is False
        on_timeout.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_probe_failure_is_logged(self, clock: FakeClock, on_timeout: AsyncMock):
        send_probe = AsyncMock(side_effect=TransportError("socket_closed"))
        monitor = HeartbeatMonitor(30.0, send_probe, on_timeout, clock=clock)
        assert await monitor.tick() is False
        assert monitor.state is HeartbeatState.PROBE_SENT


class TestLifecycle:
    """Tests for the background task."""

    @pytest.mark.asyncio
    async def test_start_and_stop(self, send_probe: AsyncMock, on_timeout: AsyncMock):
        monitor = HeartbeatMonitor(0.01, send_probe, on_timeout)
        monitor.start()
        assert monitor.is_running
        await wait_until(lambda: send_probe.await_count >= 1)
        await monitor.wait_stopped()
        assert not monitor.is_running

    @pytest.mark.asyncio
    async def test_dead_connection_stops_monitor(self, send_probe: AsyncMock, on_timeout: AsyncMock):
        monitor = HeartbeatMonitor(0.005, send_probe, on_timeout)
        monitor.start()
        await wait_until(lambda: on_timeout.await_count == 1)
        await wait_until(lambda: not monitor.is_running)
        on_timeout.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_restart_resets_deadline(self, clock: FakeClock, monitor: HeartbeatMonitor, on_timeout: AsyncMock):
        clock.advance(30)
        await monitor.tick()
        clock.advance(100)
        monitor.start()
        await monitor.wait_stopped()
        assert monitor.state is HeartbeatState.IDLE
        assert monitor.last_response == clock.now
        on_timeout.assert_not_awaited()
