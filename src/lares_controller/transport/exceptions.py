"""Transport and session error types.

``TransportError`` is also a builtin :class:`ConnectionError`, so code that
only knows about sockets can still catch it.
"""

from __future__ import annotations

from lares_controller.exceptions import CommandPreconditionError, LaresError


class TransportError(LaresError, ConnectionError):
    """Socket could not be opened, or closed underneath us.

    Always recoverable: the reconnect scheduler retries it.

    Attributes:
        reason: Specific failure reason
        state: Connection state when the error occurred

    """

    def __init__(self, reason: str, state: str = "unknown") -> None:
        self.reason: str = reason
        self.state: str = state
        super().__init__(f"Transport error: {reason} (state: {state})")


class HeartbeatTimeoutError(TransportError):
    """No pong seen within twice the heartbeat interval.

    Attributes:
        silence_seconds: Time since the last observed pong

    """

    def __init__(self, silence_seconds: float, state: str = "ready") -> None:
        self.silence_seconds: float = silence_seconds
        super().__init__(f"heartbeat_timeout after {silence_seconds:.1f}s", state)


class AuthenticationError(LaresError):
    """Panel rejected the PIN.

    Terminal for the attempt: no automatic retry is scheduled, since the same
    credentials would be rejected again. A manual ``connect()`` is still allowed.

    Attributes:
        result: RESULT field of the LOGIN_RES payload
        detail: RESULT_DETAIL field, when the panel sends one

    """

    def __init__(self, result: str, detail: str | None = None) -> None:
        self.result: str = result
        self.detail: str | None = detail
        super().__init__(f"Login rejected by panel: {result} ({detail or 'no detail'})")


class NotConnectedError(CommandPreconditionError):
    """Command issued while the socket is not open.

    Attributes:
        state: Connection state when the command was attempted

    """

    def __init__(self, reason: str = "socket not open", state: str = "disconnected") -> None:
        self.state: str = state
        super().__init__(f"{reason} (state: {state})")
