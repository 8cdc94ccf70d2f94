"""Envelope: one JSON message exchanged with the panel."""

from __future__ import annotations

import random
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from lares_controller.const import CHECKSUM_SENTINEL

if TYPE_CHECKING:
    from lares_controller.protocol.payloads import PanelPayload

# Field order is part of the checksum input, never reorder.
ENVELOPE_FIELDS: tuple[str, ...] = (
    "SENDER",
    "RECEIVER",
    "CMD",
    "ID",
    "PAYLOAD_TYPE",
    "PAYLOAD",
    "TIMESTAMP",
    "CRC_16",
)

_MAX_MESSAGE_ID = 100_000


def new_message_id() -> str:
    """Client-chosen correlation id, a decimal string like the panel's own apps send."""
    return str(random.randrange(_MAX_MESSAGE_ID))


def current_timestamp() -> int:
    return int(time.time())


@dataclass(slots=True)
class Envelope:
    """Wire-level message.

    Attributes:
        sender: Id of this client (SENDER)
        command: CMD value, e.g. LOGIN, READ, REALTIME, CMD_USR
        payload_type: PAYLOAD_TYPE tag describing the payload shape
        payload: Raw PAYLOAD mapping as sent/received
        receiver: RECEIVER, empty means the panel itself
        message_id: ID, echoed back by the panel in responses
        timestamp: Seconds since the epoch, travels as a decimal string
        checksum: CRC_16 as ``0x....``; the sentinel until the envelope is encoded
        body: Typed view of ``payload``, filled in by the decoder

    """

    sender: str
    command: str
    payload_type: str
    payload: dict[str, Any] = field(default_factory=dict)
    receiver: str = ""
    message_id: str = field(default_factory=new_message_id)
    timestamp: int = field(default_factory=current_timestamp)
    checksum: str = CHECKSUM_SENTINEL
    body: PanelPayload | None = field(default=None, compare=False, repr=False)

    def to_wire(self, checksum: str | None = None) -> dict[str, Any]:
        """Mapping in wire order; ``checksum`` overrides the stored value."""
        return {
            "SENDER": self.sender,
            "RECEIVER": self.receiver,
            "CMD": self.command,
            "ID": self.message_id,
            "PAYLOAD_TYPE": self.payload_type,
            "PAYLOAD": self.payload,
            "TIMESTAMP": str(self.timestamp),
            "CRC_16": self.checksum if checksum is None else checksum,
        }

    @property
    def is_heartbeat(self) -> bool:
        return self.command == "PING" or self.payload_type == "HEARTBEAT"
