"""Exceptions for frames that cannot be understood.

Raised by the codec instead of returning ``None``; the connection manager
logs the error, drops the frame and keeps the socket open.
"""

from __future__ import annotations

from lares_controller.exceptions import LaresError
from lares_controller.logging_abstraction import mask_sensitive_data

_PREVIEW_CHARS = 64


class LaresProtocolError(LaresError):
    """Base exception for wire-format errors."""


class ProtocolParseError(LaresProtocolError):
    """Frame could not be decoded.

    Attributes:
        reason: Short machine-friendly reason (e.g. "invalid_json", "missing_command")
        data_preview: Head of the offending frame, PIN masked, for logs only

    """

    def __init__(self, reason: str, data: str | bytes = "") -> None:
        self.reason: str = reason
        text = data.decode("utf-8", errors="replace") if isinstance(data, bytes) else data
        self.data_preview: str = mask_sensitive_data(text[:_PREVIEW_CHARS])
        super().__init__(f"Frame decode failed: {reason}")


class ChecksumMismatchError(ProtocolParseError):
    """Transmitted CRC_16 does not match the recomputed value.

    Attributes:
        expected: Checksum computed locally, formatted ``0x....``
        received: Checksum carried by the frame

    """

    def __init__(self, expected: str, received: str, data: str | bytes = "") -> None:
        self.expected: str = expected
        self.received: str = received
        super().__init__("checksum_mismatch", data)
