"""In-memory mirror of the panel's devices.

The registry owns the identifier -> :class:`Device` table. It has two
mutation entry points: :meth:`DeviceRegistry.apply_discovery` for inventory
records (creates or replaces) and :meth:`DeviceRegistry.apply_status_delta`
for realtime/status records (mutates in place, never creates). Everything is
mutated from the event loop thread only.
"""

from __future__ import annotations

import math
from collections.abc import Callable, Iterator, Mapping
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from lares_controller.devices.mapping import (
    KIND_TAGS,
    SENSOR_DEFAULTS,
    SENSOR_SUFFIXES,
    SENSOR_TAGS,
    SENSOR_UNITS,
    cover_motion,
    cover_position,
    derive_identifier,
    output_kind,
    parse_float,
    parse_int,
    parse_panel_temperature,
    thermostat_mode,
)
from lares_controller.devices.models import (
    CoverStatus,
    Device,
    DeviceKind,
    DeviceStatus,
    GateStatus,
    LightStatus,
    ScenarioStatus,
    SensorStatus,
    SensorType,
    ThermostatStatus,
    ZoneStatus,
)
from lares_controller.logging_abstraction import get_logger
from lares_controller.metrics import registry as metrics

if TYPE_CHECKING:
    from lares_controller.devices.filters import DeviceFilter
    from lares_controller.events import EventBus

logger = get_logger(__name__)

RawRecord = Mapping[str, Any]

_IGNORED_SCENARIO_CATEGORIES = frozenset({"ARM", "DISARM"})
_OUTPUT_DEFAULT_NAMES = {
    DeviceKind.LIGHT: "Light",
    DeviceKind.COVER: "Cover",
    DeviceKind.GATE: "Gate",
    DeviceKind.THERMOSTAT: "Thermostat",
}
_OUTPUT_STATUS_FACTORIES: dict[DeviceKind, Callable[[], DeviceStatus]] = {
    DeviceKind.LIGHT: LightStatus,
    DeviceKind.COVER: CoverStatus,
    DeviceKind.GATE: GateStatus,
    DeviceKind.THERMOSTAT: ThermostatStatus,
}
# Outputs share the panel's id space; a delta is offered to each of these
_OUTPUT_KINDS = (DeviceKind.LIGHT, DeviceKind.COVER, DeviceKind.THERMOSTAT, DeviceKind.GATE)
_SENSOR_FIELDS = {
    SensorType.TEMPERATURE: "TEM",
    SensorType.HUMIDITY: "HUM",
    SensorType.LIGHT: "LHT",
}


class RecordKind(StrEnum):
    """Category of a raw panel record, decides how it is interpreted."""

    ZONE = "zone"
    OUTPUT = "output"
    BUS_SENSOR = "bus_sensor"
    SCENARIO = "scenario"
    SYSTEM = "system"


def _round_half_up(value: float) -> float:
    return float(math.floor(value + 0.5))


class DeviceRegistry:
    """Identifier-keyed device table with listener notification.

    Args:
        events: Bus to notify; None keeps the registry silent
        device_filter: Exclusions and custom names. Excluded devices are
            still stored and updated, only their events are suppressed.

    """

    lp = "DeviceRegistry:"

    def __init__(self, events: EventBus | None = None, device_filter: DeviceFilter | None = None) -> None:
        self._devices: dict[str, Device] = {}
        self._events = events
        self._filter = device_filter

    def __contains__(self, identifier: object) -> bool:
        return identifier in self._devices

    def __len__(self) -> int:
        return len(self._devices)

    def __iter__(self) -> Iterator[Device]:
        return iter(list(self._devices.values()))

    def get(self, identifier: str) -> Device | None:
        return self._devices.get(identifier)

    def devices(self) -> list[Device]:
        """Snapshots of every device, in discovery order."""
        return [device.snapshot() for device in self._devices.values()]

    def by_kind(self, kind: DeviceKind) -> list[Device]:
        return [device.snapshot() for device in self._devices.values() if device.kind == kind]

    def is_excluded(self, device: Device) -> bool:
        return self._filter is not None and self._filter.is_excluded(device)

    # -- discovery -------------------------------------------------------

    def apply_discovery(self, kind: RecordKind, record: RawRecord) -> tuple[Device, ...]:
        """Create or replace the device(s) described by one inventory record.

        Returns the stored devices: zero when the record is skipped (no ID,
        unsupported output category, arm/disarm scenario), three for a bus
        sensor, one otherwise. Applying the same record twice leaves a single
        entry per identifier.
        """
        lp = f"{self.lp}apply_discovery:"
        native_id = record.get("ID")
        if native_id in (None, ""):
            logger.debug("%s %s record without ID skipped", lp, kind)
            return ()
        native_id = str(native_id)

        if kind == RecordKind.ZONE:
            created = (self._zone(native_id, record),)
        elif kind == RecordKind.OUTPUT:
            device = self._output(native_id, record)
            created = (device,) if device is not None else ()
        elif kind == RecordKind.SCENARIO:
            category = str(record.get("CAT") or "").upper()
            if category in _IGNORED_SCENARIO_CATEGORIES:
                logger.debug("%s Scenario %s ignored (category %s)", lp, record.get("DES"), category)
                return ()
            created = (self._scenario(native_id, record),)
        elif kind == RecordKind.BUS_SENSOR:
            created = self._sensors(native_id, record)
        else:
            logger.debug("%s No discovery handling for %s records", lp, kind)
            return ()

        for device in created:
            if self._filter is not None:
                device.name = self._filter.display_name(device)
            self._devices[device.identifier] = device
            metrics.record_device_discovered(str(device.kind))
            if self.is_excluded(device):
                logger.debug("%s %s excluded by configuration", lp, device.identifier)
                continue
            if self._events is not None:
                self._events.emit_discovered(device)
        return created

    @staticmethod
    def _description(record: RawRecord) -> str:
        return str(record.get("DES") or "")

    def _zone(self, native_id: str, record: RawRecord) -> Device:
        status = str(record.get("STATUS") or "")
        description = self._description(record)
        return Device(
            identifier=derive_identifier(KIND_TAGS[DeviceKind.ZONE], native_id),
            kind=DeviceKind.ZONE,
            name=description or f"Zone {native_id}",
            native_id=native_id,
            status=ZoneStatus(armed=status == "1", open=status == "2"),
            description=description,
        )

    def _output(self, native_id: str, record: RawRecord) -> Device | None:
        category = str(record.get("CAT") or record.get("TYPE") or "")
        kind = output_kind(category)
        if kind is None:
            logger.debug(
                "%s Output ignored: ID %s, CAT: %s, DES: %s",
                self.lp,
                native_id,
                category,
                record.get("DES"),
            )
            return None
        description = self._description(record)
        return Device(
            identifier=derive_identifier(KIND_TAGS[kind], native_id),
            kind=kind,
            name=description or f"{_OUTPUT_DEFAULT_NAMES[kind]} {native_id}",
            native_id=native_id,
            status=_OUTPUT_STATUS_FACTORIES[kind](),
            description=description,
        )

    def _scenario(self, native_id: str, record: RawRecord) -> Device:
        description = self._description(record)
        return Device(
            identifier=derive_identifier(KIND_TAGS[DeviceKind.SCENARIO], native_id),
            kind=DeviceKind.SCENARIO,
            name=description or f"Scenario {native_id}",
            native_id=native_id,
            status=ScenarioStatus(),
            description=description,
        )

    def _sensors(self, native_id: str, record: RawRecord) -> tuple[Device, ...]:
        base_name = self._description(record) or f"Sensor {native_id}"
        sensors = []
        for sensor_type in SensorType:
            name = base_name + SENSOR_SUFFIXES[sensor_type]
            sensors.append(
                Device(
                    identifier=derive_identifier(SENSOR_TAGS[sensor_type], native_id),
                    kind=DeviceKind.SENSOR,
                    name=name,
                    native_id=native_id,
                    status=SensorStatus(
                        sensor_type=sensor_type,
                        value=SENSOR_DEFAULTS[sensor_type],
                        unit=SENSOR_UNITS[sensor_type],
                    ),
                    description=name,
                ),
            )
        return tuple(sensors)

    # -- status deltas ---------------------------------------------------

    def apply_status_delta(self, kind: RecordKind, record: RawRecord) -> tuple[Device, ...]:
        """Mutate existing devices from one status record.

        Only fields present in the record are touched. A record for an
        identifier that was never discovered is ignored without error.
        Returns the devices a status update was raised for.
        """
        if kind == RecordKind.SYSTEM:
            return self.apply_system_status(record)

        native_id = record.get("ID")
        if native_id in (None, ""):
            metrics.record_status_delta(str(kind), "ignored")
            return ()
        native_id = str(native_id)

        if kind == RecordKind.OUTPUT:
            updated = self._update_outputs(native_id, record)
        elif kind == RecordKind.BUS_SENSOR:
            updated = self._update_sensors(native_id, record)
        elif kind == RecordKind.ZONE:
            updated = self._update_zone(native_id, record)
        else:
            updated = ()

        metrics.record_status_delta(str(kind), "applied" if updated else "ignored")
        for device in updated:
            self._notify(device)
        return updated

    def apply_system_status(self, record: RawRecord) -> tuple[Device, ...]:
        """Fan the panel's internal temperature out to every thermostat.

        A thermostat without a target gets one seeded at current + 1 degree,
        rounded to a whole degree.
        """
        temperatures = record.get("TEMP")
        if not isinstance(temperatures, Mapping):
            metrics.record_status_delta(str(RecordKind.SYSTEM), "ignored")
            return ()
        internal = parse_panel_temperature(temperatures.get("IN"))
        external = parse_panel_temperature(temperatures.get("OUT"))
        logger.debug(
            "%s System temperatures: internal=%s external=%s",
            self.lp,
            internal,
            external,
        )
        if internal is None:
            metrics.record_status_delta(str(RecordKind.SYSTEM), "ignored")
            return ()

        updated = []
        for device in self._devices.values():
            if not isinstance(device.status, ThermostatStatus):
                continue
            status = device.status
            previous = status.current_temperature
            status.current_temperature = internal
            if status.target_temperature is None:
                status.target_temperature = _round_half_up(internal + 1)
                logger.info(
                    "%s %s: initial target temperature set to %sC",
                    self.lp,
                    device.name,
                    status.target_temperature,
                )
            if previous is None or abs(previous - internal) >= 0.5:
                logger.info("%s %s: current temperature %sC", self.lp, device.name, internal)
            updated.append(device)

        metrics.record_status_delta(str(RecordKind.SYSTEM), "applied" if updated else "ignored")
        for device in updated:
            self._notify(device)
        return tuple(updated)

    def _notify(self, device: Device) -> None:
        if self._events is None or self.is_excluded(device):
            return
        self._events.emit_status_update(device)

    def _update_outputs(self, native_id: str, record: RawRecord) -> tuple[Device, ...]:
        updated = []
        for kind in _OUTPUT_KINDS:
            device = self._devices.get(derive_identifier(KIND_TAGS[kind], native_id))
            if device is None:
                continue
            status = device.status
            if isinstance(status, LightStatus):
                changed = self._update_light(device, status, record)
            elif isinstance(status, CoverStatus):
                changed = self._update_cover(device, status, record)
            elif isinstance(status, ThermostatStatus):
                changed = self._update_thermostat(device, status, record)
            elif isinstance(status, GateStatus):
                changed = "STA" in record
                if changed:
                    status.on = record.get("STA") == "ON"
            else:
                changed = False
            if changed:
                updated.append(device)
        return tuple(updated)

    def _update_light(self, device: Device, status: LightStatus, record: RawRecord) -> bool:
        was_on = status.on
        if "STA" in record:
            status.on = record.get("STA") == "ON"
        if "POS" in record:
            status.brightness = parse_int(record.get("POS"), status.brightness)
            status.dimmable = True
        if was_on != status.on:
            logger.info("%s Light %s (output %s): %s", self.lp, device.name, device.native_id, record.get("STA"))
        return "STA" in record or "POS" in record

    def _update_cover(self, device: Device, status: CoverStatus, record: RawRecord) -> bool:
        sta = record.get("STA")
        pos = record.get("POS")
        tpos = record.get("TPOS")
        if sta is None and pos is None and tpos is None:
            return False
        previous = status.position
        if sta is not None or pos is not None:
            status.position = cover_position(sta, pos)
        if tpos not in (None, "") or pos not in (None, ""):
            status.target_position = parse_int(tpos if tpos not in (None, "") else pos, status.target_position)
        status.state = cover_motion(sta, pos, tpos)
        if previous != status.position:
            logger.info(
                "%s Cover %s (output %s): %s position %s%%",
                self.lp,
                device.name,
                device.native_id,
                sta,
                status.position,
            )
        return True

    def _update_thermostat(self, device: Device, status: ThermostatStatus, record: RawRecord) -> bool:
        changed = False
        if "TEMP_CURRENT" in record:
            current = parse_float(record.get("TEMP_CURRENT"))
            if current != status.current_temperature:
                status.current_temperature = current
                logger.info("%s %s: current temperature %sC", self.lp, device.name, current)
                changed = True
        if "TEMP_TARGET" in record:
            target = parse_float(record.get("TEMP_TARGET"))
            if target != status.target_temperature:
                status.target_temperature = target
                logger.info("%s %s: target temperature %sC", self.lp, device.name, target)
                changed = True
        if "MODE" in record:
            mode = thermostat_mode(record.get("MODE"))
            if mode != status.mode:
                status.mode = mode
                logger.info("%s %s: mode %s", self.lp, device.name, mode)
                changed = True
        return changed

    def _update_sensors(self, native_id: str, record: RawRecord) -> tuple[Device, ...]:
        readings = record.get("DOMUS")
        if not isinstance(readings, Mapping):
            return ()
        updated = []
        for sensor_type, field_name in _SENSOR_FIELDS.items():
            device = self._devices.get(derive_identifier(SENSOR_TAGS[sensor_type], native_id))
            if device is None or not isinstance(device.status, SensorStatus) or field_name not in readings:
                continue
            raw = readings.get(field_name)
            default = SENSOR_DEFAULTS[sensor_type]
            if sensor_type == SensorType.TEMPERATURE:
                value = parse_float(raw, default)
            else:
                value = parse_int(raw, int(default))
            previous = device.status.value
            device.status.value = value if value is not None else default
            if previous != device.status.value:
                logger.debug(
                    "%s %s: %s%s",
                    self.lp,
                    device.name,
                    device.status.value,
                    device.status.unit,
                )
            updated.append(device)
        return tuple(updated)

    def _update_zone(self, native_id: str, record: RawRecord) -> tuple[Device, ...]:
        device = self._devices.get(derive_identifier(KIND_TAGS[DeviceKind.ZONE], native_id))
        if device is None or not isinstance(device.status, ZoneStatus):
            return ()
        status = device.status
        was_open = status.open
        if "STA" in record:
            status.open = record.get("STA") == "A"
        if "BYP" in record:
            status.bypassed = record.get("BYP") == "YES"
        if "A" in record:
            status.armed = record.get("A") == "Y"
        if "FM" in record:
            status.fault = record.get("FM") == "T"
        if was_open != status.open:
            logger.info("%s %s: %s", self.lp, device.name, "OPEN/ALARM" if status.open else "IDLE")
        return (device,)
