"""Panel connection: socket, liveness, reconnection and session lifecycle."""

from lares_controller.transport.exceptions import (
    AuthenticationError,
    HeartbeatTimeoutError,
    NotConnectedError,
    TransportError,
)

__all__ = [
    "AuthenticationError",
    "HeartbeatTimeoutError",
    "NotConnectedError",
    "TransportError",
]
