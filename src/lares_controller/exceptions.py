"""Top of the controller's exception hierarchy.

Protocol and transport failures live in ``protocol.exceptions`` and
``transport.exceptions``; everything raised on purpose by this package
derives from :class:`LaresError` so callers can catch it in one place.
"""

from __future__ import annotations


class LaresError(Exception):
    """Base exception for all controller errors."""


class ConfigError(LaresError):
    """Configuration file or environment is unusable.

    Attributes:
        source: File path or variable the bad value came from

    """

    def __init__(self, message: str, source: str = "") -> None:
        self.source: str = source
        detail = f"{message} ({source})" if source else message
        super().__init__(f"Invalid configuration: {detail}")


class CommandPreconditionError(LaresError):
    """A command was issued before the panel session allows it.

    This is a caller bug, not a retryable condition: the command is rejected
    immediately and never queued.
    """

    def __init__(self, reason: str) -> None:
        self.reason: str = reason
        super().__init__(f"Command rejected: {reason}")


class UnknownDeviceError(LaresError):
    """Command addressed to an identifier that is absent or of another kind.

    Attributes:
        identifier: The derived identifier the caller passed
        expected_kind: Kind the command operates on

    """

    def __init__(self, identifier: str, expected_kind: str) -> None:
        self.identifier: str = identifier
        self.expected_kind: str = expected_kind
        super().__init__(f"No {expected_kind} device with identifier {identifier!r}")
