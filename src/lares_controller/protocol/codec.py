"""Envelope serialization.

Encoding serializes the envelope in wire order with the checksum sentinel,
computes CRC_16 over that text up to the stop-point, and re-serializes with
the real value. Both passes use the same compact separators and keep
non-ASCII characters literal, so the checksum input matches the bytes sent.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import replace
from typing import Any

from lares_controller.const import CHECKSUM_SENTINEL
from lares_controller.protocol.checksum import (
    compute_checksum,
    format_checksum,
    read_checksum,
)
from lares_controller.protocol.envelope import Envelope
from lares_controller.protocol.exceptions import ChecksumMismatchError, ProtocolParseError
from lares_controller.protocol.payloads import parse_payload

__all__ = [
    "decode_envelope",
    "encode_envelope",
    "encode_text",
    "seal_envelope",
    "serialize_wire",
]


def serialize_wire(wire: Mapping[str, Any]) -> str:
    return json.dumps(wire, separators=(",", ":"), ensure_ascii=False)


def seal_envelope(envelope: Envelope) -> tuple[Envelope, str]:
    """Return a copy carrying its computed checksum, plus its wire text."""
    draft = serialize_wire(envelope.to_wire(checksum=CHECKSUM_SENTINEL))
    checksum = format_checksum(compute_checksum(draft))
    sealed = replace(envelope, checksum=checksum)
    return sealed, serialize_wire(sealed.to_wire())


def encode_text(envelope: Envelope) -> str:
    return seal_envelope(envelope)[1]


def encode_envelope(envelope: Envelope) -> bytes:
    """UTF-8 wire bytes with a valid CRC_16."""
    return encode_text(envelope).encode("utf-8")


def _timestamp(value: object) -> int:
    try:
        return int(str(value))
    except (TypeError, ValueError):
        return 0


def decode_envelope(data: str | bytes, *, verify: bool = False) -> Envelope:
    """Parse one inbound frame.

    Unknown PAYLOAD_TYPE values and payloads of the wrong shape still decode
    (as an opaque body); only frames without a usable envelope are rejected.

    Args:
        data: Frame text or UTF-8 bytes
        verify: Reject frames whose CRC_16 does not match

    Raises:
        ProtocolParseError: Not JSON, not an object, or no CMD
        ChecksumMismatchError: ``verify`` is set and CRC_16 is wrong

    """
    try:
        raw = json.loads(data)
    except (UnicodeDecodeError, ValueError) as e:
        raise ProtocolParseError("invalid_json", data) from e
    if not isinstance(raw, dict):
        raise ProtocolParseError("not_an_object", data)

    command = raw.get("CMD")
    if not isinstance(command, str) or not command:
        raise ProtocolParseError("missing_command", data)

    checksum = str(raw.get("CRC_16", CHECKSUM_SENTINEL))
    if verify:
        expected = format_checksum(compute_checksum(data))
        received = read_checksum(data)
        if received is None or format_checksum(received) != expected:
            raise ChecksumMismatchError(expected, checksum, data)

    payload_type = str(raw.get("PAYLOAD_TYPE") or "")
    payload = raw.get("PAYLOAD")
    if not isinstance(payload, dict):
        payload = {}

    return Envelope(
        sender=str(raw.get("SENDER") or ""),
        receiver=str(raw.get("RECEIVER") or ""),
        command=command,
        payload_type=payload_type,
        payload=payload,
        message_id=str(raw.get("ID") or ""),
        timestamp=_timestamp(raw.get("TIMESTAMP")),
        checksum=checksum,
        body=parse_payload(command, payload_type, payload),
    )
