"""Lares4 wire protocol: envelopes, CRC_16 and typed payloads.

Public API:
- Envelope and its codec (encode_envelope, decode_envelope)
- Checksum helpers (compute_checksum, verify_checksum)
- Typed payload records (LoginResult, StatusSnapshot, ...)
"""

from lares_controller.protocol.checksum import compute_checksum, format_checksum, verify_checksum
from lares_controller.protocol.codec import decode_envelope, encode_envelope, encode_text
from lares_controller.protocol.envelope import Envelope
from lares_controller.protocol.exceptions import ChecksumMismatchError, LaresProtocolError, ProtocolParseError
from lares_controller.protocol.payloads import (
    ChangesPayload,
    LoginResult,
    MultiTypesInventory,
    OpaquePayload,
    PanelPayload,
    StatusSnapshot,
    ZonesInventory,
)

__all__ = [
    "ChangesPayload",
    "ChecksumMismatchError",
    "Envelope",
    "LaresProtocolError",
    "LoginResult",
    "MultiTypesInventory",
    "OpaquePayload",
    "PanelPayload",
    "ProtocolParseError",
    "StatusSnapshot",
    "ZonesInventory",
    "compute_checksum",
    "decode_envelope",
    "encode_envelope",
    "encode_text",
    "format_checksum",
    "verify_checksum",
]
