"""Reconnect backoff and connection timeouts.

Transport failures never give up: each failure schedules another attempt with
exponential backoff, capped, with symmetric jitter. The attempt counter only
resets once a connection reaches READY.
"""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

from lares_controller.exceptions import LaresError
from lares_controller.logging_abstraction import get_logger
from lares_controller.metrics import registry as metrics
from lares_controller.transport.exceptions import AuthenticationError

if TYPE_CHECKING:
    from lares_controller.config import ControllerConfig

logger = get_logger(__name__)


class TimeoutConfig:
    """Timeouts for one connection attempt.

    Args:
        connect_timeout: Seconds allowed for the WebSocket handshake
        login_timeout: Seconds allowed for LOGIN_RES after LOGIN is sent
        heartbeat_interval: Seconds between liveness probes; a connection is
            declared dead after twice this without a pong

    """

    def __init__(
        self,
        connect_timeout: float = 10.0,
        login_timeout: float = 10.0,
        heartbeat_interval: float = 30.0,
    ):
        self.connect_timeout = connect_timeout
        self.login_timeout = login_timeout
        self.heartbeat_interval = heartbeat_interval
        self.heartbeat_deadline = heartbeat_interval * 2

    @classmethod
    def from_config(cls, config: ControllerConfig) -> TimeoutConfig:
        return cls(
            connect_timeout=config.panel.connect_timeout,
            login_timeout=config.panel.login_timeout,
            heartbeat_interval=config.heartbeat.interval_ms / 1000.0,
        )

    def __repr__(self) -> str:
        """String representation showing all timeouts."""
        return (
            f"TimeoutConfig(connect={self.connect_timeout:.1f}s, "
            f"login={self.login_timeout:.1f}s, "
            f"heartbeat={self.heartbeat_interval:.1f}s, "
            f"deadline={self.heartbeat_deadline:.1f}s)"
        )


class RetryPolicy:
    """Exponential backoff retry policy with jitter.

    Provides retry delay calculation using exponential backoff with random
    jitter so a panel reboot does not see every client return at once.
    """

    def __init__(
        self,
        base_delay_seconds: float = 5.0,
        max_delay_seconds: float = 60.0,
        jitter_factor: float = 0.1,
    ):
        """Initialize retry policy.

        Args:
            base_delay_seconds: Delay before the first retry (default: 5s)
            max_delay_seconds: Maximum delay cap (default: 60s)
            jitter_factor: Jitter as fraction of delay (default: 0.1 = ±10%)
        """
        self.base_delay_seconds = base_delay_seconds
        self.max_delay_seconds = max_delay_seconds
        self.jitter_factor = jitter_factor

    @classmethod
    def from_config(cls, config: ControllerConfig) -> RetryPolicy:
        return cls(
            base_delay_seconds=config.reconnect.base_delay_ms / 1000.0,
            max_delay_seconds=config.reconnect.max_delay_ms / 1000.0,
            jitter_factor=config.reconnect.jitter_factor,
        )

    def nominal_delay(self, attempt: int) -> float:
        """Delay before jitter: min(base * 2^attempt, cap)."""
        return min(self.base_delay_seconds * (2**attempt), self.max_delay_seconds)

    def get_delay(self, attempt: int) -> float:
        """Calculate delay for retry attempt.

        Args:
            attempt: Retry attempt number (0-indexed, so attempt=0 is first retry)

        Returns:
            Delay in seconds, within ±jitter_factor of the nominal delay
        """
        delay = self.nominal_delay(attempt)
        jitter = random.uniform(-delay * self.jitter_factor, delay * self.jitter_factor)
        return max(0.0, delay + jitter)

    def __repr__(self) -> str:
        """String representation of retry policy."""
        return (
            f"RetryPolicy(base_delay={self.base_delay_seconds}s, "
            f"max_delay={self.max_delay_seconds}s, "
            f"jitter_factor={self.jitter_factor})"
        )


class ReconnectScheduler:
    """Runs ``connect`` again after a backoff delay.

    At most one retry is pending at a time; scheduling again replaces it.
    A failed attempt is expected to schedule the next one itself (the
    connection manager does so for transport failures); an authentication
    rejection ends the chain.
    """

    lp = "ReconnectScheduler:"

    def __init__(
        self,
        connect: Callable[[], Awaitable[object]],
        policy: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ) -> None:
        self._connect = connect
        self.policy = policy or RetryPolicy()
        self._sleep = sleep
        self.attempts = 0
        self.last_delay: float | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def is_pending(self) -> bool:
        return self._task is not None and not self._task.done()

    def schedule_retry(self, reason: str = "connection_lost") -> float:
        """Arm the next attempt; returns the chosen delay in seconds."""
        delay = self.policy.get_delay(self.attempts)
        self.attempts += 1
        self.last_delay = delay
        metrics.record_reconnection(reason)
        logger.info(
            "%s Reconnecting in %.1fs (attempt %d, reason: %s)",
            self.lp,
            delay,
            self.attempts,
            reason,
            extra={"delay_seconds": delay, "attempt": self.attempts, "reason": reason},
        )
        previous = self._task
        if previous is not None and not previous.done() and previous is not asyncio.current_task():
            previous.cancel()
        self._task = asyncio.create_task(self._retry(delay), name="lares_reconnect")
        return delay

    def reset(self) -> None:
        """Connection reached READY."""
        if self.attempts:
            logger.debug("%s Resetting after %d attempt(s)", self.lp, self.attempts)
        self.attempts = 0

    def cancel(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _retry(self, delay: float) -> None:
        await self._sleep(delay)
        try:
            await self._connect()
        except AuthenticationError as e:
            logger.error("%s Panel rejected the PIN, not retrying: %s", self.lp, e)
        except LaresError as e:
            logger.warning("%s Reconnect attempt failed: %s", self.lp, e)
        except Exception:
            logger.exception("%s Unexpected error during reconnect", self.lp)
            self.schedule_retry("unexpected_error")
