"""Transport-level liveness probing.

The panel does not answer application-level pings, so liveness is judged from
WebSocket pong frames. Each interval a probe is sent; if a probe is
outstanding and no pong has been seen for twice the interval, the connection
is declared dead exactly once and the monitor stops.
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from collections.abc import Awaitable, Callable
from enum import Enum

from lares_controller.logging_abstraction import get_logger
from lares_controller.metrics import registry as metrics
from lares_controller.transport.exceptions import TransportError

logger = get_logger(__name__)


class HeartbeatState(Enum):
    IDLE = "idle"
    PROBE_SENT = "probe_sent"


class HeartbeatMonitor:
    """Periodic ping with a pong deadline.

    Args:
        interval: Seconds between probes
        send_probe: Coroutine sending one ping frame
        on_timeout: Coroutine run once when the deadline is missed,
            receives the seconds of silence
        clock: Monotonic time source

    """

    lp = "HeartbeatMonitor:"

    def __init__(
        self,
        interval: float,
        send_probe: Callable[[], Awaitable[None]],
        on_timeout: Callable[[float], Awaitable[None]],
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.interval = interval
        self._send_probe = send_probe
        self._on_timeout = on_timeout
        self._clock = clock
        self.state = HeartbeatState.IDLE
        self.last_response: float = clock()
        self._expired = False
        self._task: asyncio.Task[None] | None = None

    @property
    def deadline(self) -> float:
        return self.interval * 2

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Begin probing; restarting resets the deadline."""
        self.stop()
        self.state = HeartbeatState.IDLE
        self.last_response = self._clock()
        self._expired = False
        self._task = asyncio.create_task(self._run(), name="lares_heartbeat")

    def stop(self) -> None:
        task, self._task = self._task, None
        self.state = HeartbeatState.IDLE
        # The timeout handler stops the monitor from inside its own task
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()

    async def wait_stopped(self) -> None:
        task = self._task
        self.stop()
        if task is not None and task is not asyncio.current_task():
            with contextlib.suppress(asyncio.CancelledError):
                await task

    def record_response(self) -> None:
        """Pong observed: back to IDLE whether or not a probe was outstanding."""
        self.state = HeartbeatState.IDLE
        self.last_response = self._clock()
        metrics.record_heartbeat("pong")

    async def tick(self) -> bool:
        """Run one interval's check; True when the connection was declared dead."""
        if self._expired:
            return True
        silence = self._clock() - self.last_response
        if self.state == HeartbeatState.PROBE_SENT and silence > self.deadline:
            self._expired = True
            metrics.record_heartbeat("timeout")
            logger.warning(
                "%s No pong for %.1fs (deadline %.1fs), connection presumed dead",
                self.lp,
                silence,
                self.deadline,
                extra={"silence_seconds": silence, "deadline_seconds": self.deadline},
            )
            await self._on_timeout(silence)
            return True

        try:
            await self._send_probe()
        except TransportError as e:
            metrics.record_heartbeat("send_failed")
            logger.warning("%s Probe not sent: %s", self.lp, e.reason)
        else:
            metrics.record_heartbeat("probe")
        self.state = HeartbeatState.PROBE_SENT
        return False

    async def _run(self) -> None:
        try:
            while True:
                await asyncio.sleep(self.interval)
                if await self.tick():
                    break
        except asyncio.CancelledError:
            logger.debug("%s cancelled", self.lp)
            raise
