"""Unit tests for the CRC_16 helpers."""

from __future__ import annotations

import json

import pytest

from lares_controller.protocol.checksum import (
    checksum_stop_point,
    compute_checksum,
    crc16,
    format_checksum,
    read_checksum,
    verify_checksum,
)
from lares_controller.protocol.exceptions import ProtocolParseError
from tests.helpers.expectations import raises


class TestCrc16:
    """Tests for the raw register arithmetic."""

    def test_empty_input_returns_seed(self):
        """No data leaves the register at its seed."""
        assert crc16(b"") == 0xFFFF

    def test_single_zero_byte(self):
        """A lone NUL byte shifts eight zero bits through the register."""
        assert crc16(b"\x00") == 0xE1F0

    @pytest.mark.parametrize(
        ("data", "expected"),
        [
            (b"ABC", 0xD63A),
            (b"123456789", 0xA69D),
        ],
    )
    def test_known_vectors(self, data: bytes, expected: int):
        """Known inputs produce the values the panel firmware computes."""
        assert crc16(data) == expected


class TestStopPoint:
    """Tests for the checksum coverage boundary."""

    def test_stop_point_is_after_label(self):
        """Coverage ends right after the closing quote of the CRC_16 label."""
        text = '{"CMD":"PING","CRC_16":"0x0000"}'
        assert text[: checksum_stop_point(text)] == '{"CMD":"PING","CRC_16"'

    def test_last_label_wins(self):
        """A CRC_16 key inside the payload does not move the boundary."""
        text = '{"PAYLOAD":{"CRC_16":"x"},"CRC_16":"0x0000"}'
        assert checksum_stop_point(text) == text.rfind('"CRC_16"') + len('"CRC_16"')

    def test_missing_label_raises(self):
        """Frames without the checksum key are rejected."""
        error = raises(ProtocolParseError, checksum_stop_point, '{"CMD":"PING"}')
        assert error.reason == "missing_checksum_field"

    def test_value_does_not_affect_checksum(self):
        """Anything after the stop-point, the value included, is outside coverage."""
        first = '{"CMD":"PING","CRC_16":"0x0000"}'
        second = '{"CMD":"PING","CRC_16":"0xbeef"}'
        assert compute_checksum(first) == compute_checksum(second)

    def test_str_and_bytes_agree(self):
        """Text is hashed as its UTF-8 encoding."""
        text = '{"DES":"Cucina è","CRC_16":"0x0000"}'
        assert compute_checksum(text) == compute_checksum(text.encode("utf-8"))


class TestFormatAndVerify:
    """Tests for formatting, reading and verifying values."""

    def test_format_is_four_lowercase_digits(self):
        """Values are zero-padded lowercase hex."""
        assert format_checksum(0xE1F0) == "0xe1f0"
        assert format_checksum(0x1) == "0x0001"

    def test_read_checksum(self):
        """The transmitted value is parsed from the frame."""
        assert read_checksum('{"CRC_16":"0xABCD"}') == 0xABCD

    def test_read_checksum_unreadable(self):
        """A non-hex value yields None."""
        assert read_checksum('{"CRC_16":null}') is None

    def test_verify_accepts_correct_value(self):
        """A frame carrying its own checksum verifies."""
        draft = json.dumps({"CMD": "PING", "CRC_16": "0x0000"}, separators=(",", ":"))
        value = format_checksum(compute_checksum(draft))
        sealed = draft.replace("0x0000", value)
        assert verify_checksum(sealed) is True

    def test_verify_rejects_wrong_value(self):
        """A tampered frame fails verification."""
        draft = json.dumps({"CMD": "PING", "CRC_16": "0x0000"}, separators=(",", ":"))
        value = compute_checksum(draft)
        sealed = draft.replace("0x0000", format_checksum(value ^ 0x1))
        assert verify_checksum(sealed) is False
