"""Device records mirrored from the panel.

A :class:`Device` is keyed by its derived identifier (kind tag + panel id,
e.g. ``light_12``) and carries one kind-specific status dataclass.
"""

from __future__ import annotations

import copy
from dataclasses import asdict, dataclass
from enum import StrEnum
from typing import Any


class DeviceKind(StrEnum):
    LIGHT = "light"
    COVER = "cover"
    THERMOSTAT = "thermostat"
    SENSOR = "sensor"
    ZONE = "zone"
    SCENARIO = "scenario"
    GATE = "gate"


class CoverMotion(StrEnum):
    STOPPED = "stopped"
    OPENING = "opening"
    CLOSING = "closing"


class ThermostatMode(StrEnum):
    OFF = "off"
    HEAT = "heat"
    COOL = "cool"
    AUTO = "auto"


class SensorType(StrEnum):
    TEMPERATURE = "temperature"
    HUMIDITY = "humidity"
    LIGHT = "light"


@dataclass(slots=True)
class LightStatus:
    on: bool = False
    brightness: int | None = None
    dimmable: bool = False


@dataclass(slots=True)
class CoverStatus:
    """Roller shutter state, positions in percent (0 closed, 100 open)."""

    position: int = 0
    target_position: int | None = None
    state: CoverMotion = CoverMotion.STOPPED


@dataclass(slots=True)
class ThermostatStatus:
    current_temperature: float | None = None
    target_temperature: float | None = None
    mode: ThermostatMode = ThermostatMode.OFF


@dataclass(slots=True)
class SensorStatus:
    sensor_type: SensorType
    value: float
    unit: str


@dataclass(slots=True)
class ZoneStatus:
    armed: bool = False
    bypassed: bool = False
    fault: bool = False
    open: bool = False


@dataclass(slots=True)
class ScenarioStatus:
    """Scenarios are momentary; ``active`` only flips while one is being run."""

    active: bool = False


@dataclass(slots=True)
class GateStatus:
    on: bool = False


DeviceStatus = LightStatus | CoverStatus | ThermostatStatus | SensorStatus | ZoneStatus | ScenarioStatus | GateStatus


@dataclass(slots=True)
class Device:
    """One controllable or observable entity of the panel.

    Attributes:
        identifier: Derived identifier, stable for the connection's lifetime
        kind: Device kind, matches the type of ``status``
        name: Display name (custom name when one is configured)
        native_id: Panel's own id, what commands address
        status: Kind-specific status record
        description: Panel DES field, empty when the panel sent none

    """

    identifier: str
    kind: DeviceKind
    name: str
    native_id: str
    status: DeviceStatus
    description: str = ""

    def snapshot(self) -> Device:
        """Independent copy safe to hand to listeners."""
        return copy.deepcopy(self)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.identifier,
            "type": str(self.kind),
            "name": self.name,
            "native_id": self.native_id,
            "description": self.description,
        }
        for key, value in asdict(self.status).items():
            data[key] = str(value) if isinstance(value, StrEnum) else value
        return data
