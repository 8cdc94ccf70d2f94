"""CRC_16 checksum used by the panel's JSON envelopes.

The register starts at 0xFFFF and every data bit is shifted in MSB-first
*before* the 0x1021 polynomial is applied (no zero augmentation), which is
what the panel firmware does and is not interchangeable with table-driven
CRC-16/CCITT implementations.

Only the serialized bytes up to the end of the last ``"CRC_16"`` key label are
covered. The checksum value itself, and the ``:`` that precedes it, are not.
"""

from __future__ import annotations

import re

from lares_controller.const import CHECKSUM_SENTINEL
from lares_controller.protocol.exceptions import ProtocolParseError

__all__ = [
    "CHECKSUM_FIELD",
    "CHECKSUM_SENTINEL",
    "checksum_stop_point",
    "compute_checksum",
    "crc16",
    "format_checksum",
    "read_checksum",
    "verify_checksum",
]

CHECKSUM_FIELD = "CRC_16"
_KEY_LABEL = b'"CRC_16"'
_CRC_SEED = 0xFFFF
_CRC_POLY = 0x1021
_VALUE_PATTERN = re.compile(rb'\s*:\s*"(0x[0-9a-fA-F]{1,4})"')


def _as_bytes(serialized: str | bytes) -> bytes:
    return serialized.encode("utf-8") if isinstance(serialized, str) else serialized


def crc16(data: bytes) -> int:
    """Run the panel's CRC over ``data`` with no stop-point handling."""
    crc = _CRC_SEED
    for byte in data:
        mask = 0x80
        while mask:
            carry = crc & 0x8000
            crc = (crc << 1) & 0xFFFF
            if byte & mask:
                crc |= 1
            if carry:
                crc ^= _CRC_POLY
            mask >>= 1
    return crc


def checksum_stop_point(serialized: str | bytes) -> int:
    """Byte offset just past the last ``"CRC_16"`` label.

    Raises:
        ProtocolParseError: The frame carries no checksum field

    """
    data = _as_bytes(serialized)
    index = data.rfind(_KEY_LABEL)
    if index < 0:
        raise ProtocolParseError("missing_checksum_field", data)
    return index + len(_KEY_LABEL)


def compute_checksum(serialized: str | bytes) -> int:
    """Checksum of a serialized envelope, covering bytes up to the stop-point."""
    data = _as_bytes(serialized)
    return crc16(data[: checksum_stop_point(data)])


def format_checksum(value: int) -> str:
    """``0x`` followed by four lowercase hex digits."""
    return f"0x{value & 0xFFFF:04x}"


def read_checksum(serialized: str | bytes) -> int | None:
    """Checksum value transmitted in the frame, or None if it is unreadable."""
    data = _as_bytes(serialized)
    match = _VALUE_PATTERN.match(data, checksum_stop_point(data))
    if match is None:
        return None
    return int(match.group(1), 16)


def verify_checksum(serialized: str | bytes) -> bool:
    """True when the transmitted checksum matches the recomputed one."""
    data = _as_bytes(serialized)
    transmitted = read_checksum(data)
    if transmitted is None:
        return False
    return transmitted == compute_checksum(data)
