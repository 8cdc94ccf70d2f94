"""Typed views of inbound PAYLOAD maps.

Each known (CMD, PAYLOAD_TYPE) shape decodes into one frozen record. Anything
unrecognised becomes :class:`OpaquePayload` so that dispatch code never pokes
at raw dictionaries. Records keep the panel's per-entity dicts untouched; the
device registry is the single place that interprets their fields.

Malformed list fields are tolerated: a lone object is treated as a one-item
list, any other non-list yields an empty tuple, and list items that are not
objects are skipped.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from lares_controller.const import (
    CMD_LOGIN_RES,
    CMD_REALTIME,
    CMD_REALTIME_RES,
    CMD_STATUS_UPDATE,
    PAYLOAD_TYPE_CHANGES,
)

__all__ = [
    "ChangesPayload",
    "LoginResult",
    "MultiTypesInventory",
    "OpaquePayload",
    "PanelPayload",
    "RawRecord",
    "StatusSnapshot",
    "ZonesInventory",
    "parse_payload",
]

RawRecord = Mapping[str, Any]

_LOGIN_OK = "OK"
_DEFAULT_LOGIN_ID = "1"
_STATUS_PAYLOAD_TYPES = frozenset(
    {"STATUS_OUTPUTS", "STATUS_BUS_HA_SENSORS", "STATUS_ZONES", "STATUS_SYSTEM"},
)


def _records(value: object) -> tuple[RawRecord, ...]:
    if isinstance(value, Mapping):
        return (value,)
    if not isinstance(value, list):
        return ()
    return tuple(item for item in value if isinstance(item, Mapping))


@dataclass(frozen=True, slots=True)
class LoginResult:
    """LOGIN_RES payload.

    Attributes:
        result: RESULT code, "OK" on success
        login_id: Session token (ID_LOGIN) to stamp on later requests
        detail: RESULT_DETAIL explaining a rejection

    """

    result: str
    login_id: str | None = None
    detail: str | None = None

    @property
    def accepted(self) -> bool:
        return self.result == _LOGIN_OK


@dataclass(frozen=True, slots=True)
class ZonesInventory:
    zones: tuple[RawRecord, ...] = ()


@dataclass(frozen=True, slots=True)
class MultiTypesInventory:
    """READ_RES/MULTI_TYPES: outputs, bus sensors and scenarios in one frame."""

    outputs: tuple[RawRecord, ...] = ()
    bus_sensors: tuple[RawRecord, ...] = ()
    scenarios: tuple[RawRecord, ...] = ()


@dataclass(frozen=True, slots=True)
class StatusSnapshot:
    """Status lists keyed by the STATUS_* category they arrived under."""

    outputs: tuple[RawRecord, ...] = ()
    bus_sensors: tuple[RawRecord, ...] = ()
    zones: tuple[RawRecord, ...] = ()
    system: tuple[RawRecord, ...] = ()

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> StatusSnapshot:
        return cls(
            outputs=_records(data.get("STATUS_OUTPUTS")),
            bus_sensors=_records(data.get("STATUS_BUS_HA_SENSORS")),
            zones=_records(data.get("STATUS_ZONES")),
            system=_records(data.get("STATUS_SYSTEM")),
        )

    @property
    def is_empty(self) -> bool:
        return not (self.outputs or self.bus_sensors or self.zones or self.system)


@dataclass(frozen=True, slots=True)
class ChangesPayload:
    """Realtime push: one snapshot per entry of the PAYLOAD map."""

    snapshots: tuple[StatusSnapshot, ...] = ()


@dataclass(frozen=True, slots=True)
class OpaquePayload:
    payload_type: str
    data: Mapping[str, Any] = field(default_factory=dict)


PanelPayload = LoginResult | ZonesInventory | MultiTypesInventory | StatusSnapshot | ChangesPayload | OpaquePayload


def _login_result(payload: Mapping[str, Any]) -> LoginResult:
    result = str(payload.get("RESULT", ""))
    login_id = payload.get("ID_LOGIN")
    detail = payload.get("RESULT_DETAIL")
    return LoginResult(
        result=result,
        login_id=str(login_id) if login_id not in (None, "") else _DEFAULT_LOGIN_ID,
        detail=str(detail) if detail is not None else None,
    )


def _changes(payload: Mapping[str, Any]) -> ChangesPayload:
    snapshots = tuple(
        StatusSnapshot.from_mapping(entry) for entry in payload.values() if isinstance(entry, Mapping)
    )
    return ChangesPayload(snapshots=snapshots)


def parse_payload(command: str, payload_type: str, payload: Mapping[str, Any]) -> PanelPayload:
    """Decode a PAYLOAD map into its typed record."""
    if command == CMD_LOGIN_RES:
        return _login_result(payload)
    if command == CMD_REALTIME_RES:
        return StatusSnapshot.from_mapping(payload)
    if command == CMD_STATUS_UPDATE or (command == CMD_REALTIME and payload_type == PAYLOAD_TYPE_CHANGES):
        return _changes(payload)
    if payload_type == "ZONES":
        return ZonesInventory(zones=_records(payload.get("ZONES")))
    if payload_type == "MULTI_TYPES":
        return MultiTypesInventory(
            outputs=_records(payload.get("OUTPUTS")),
            bus_sensors=_records(payload.get("BUS_HAS")),
            scenarios=_records(payload.get("SCENARIOS")),
        )
    if payload_type in _STATUS_PAYLOAD_TYPES:
        return StatusSnapshot.from_mapping(payload)
    return OpaquePayload(payload_type=payload_type, data=payload)
