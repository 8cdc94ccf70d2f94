"""Operator-controlled exclusions and custom names.

Lists and names are keyed by the panel's native id within a category:
zones, outputs (lights, covers, gates, thermostats), sensors and scenarios.
A sensor's custom name keeps the measurement suffix, since one bus sensor
shows up as three devices.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from lares_controller.devices.mapping import SENSOR_SUFFIXES
from lares_controller.devices.models import Device, DeviceKind, SensorStatus

if TYPE_CHECKING:
    from lares_controller.config import FilterConfig

ZONES = "zones"
OUTPUTS = "outputs"
SENSORS = "sensors"
SCENARIOS = "scenarios"

CATEGORY_OF_KIND: dict[DeviceKind, str] = {
    DeviceKind.ZONE: ZONES,
    DeviceKind.LIGHT: OUTPUTS,
    DeviceKind.COVER: OUTPUTS,
    DeviceKind.GATE: OUTPUTS,
    DeviceKind.THERMOSTAT: OUTPUTS,
    DeviceKind.SENSOR: SENSORS,
    DeviceKind.SCENARIO: SCENARIOS,
}


class DeviceFilter:
    def __init__(
        self,
        excluded: dict[str, set[str]] | None = None,
        custom_names: dict[str, dict[str, str]] | None = None,
    ) -> None:
        self.excluded: dict[str, set[str]] = excluded or {}
        self.custom_names: dict[str, dict[str, str]] = custom_names or {}

    @classmethod
    def from_config(cls, config: FilterConfig) -> DeviceFilter:
        return cls(
            excluded={
                ZONES: set(config.exclude_zones),
                OUTPUTS: set(config.exclude_outputs),
                SENSORS: set(config.exclude_sensors),
                SCENARIOS: set(config.exclude_scenarios),
            },
            custom_names={
                ZONES: dict(config.custom_names.zones),
                OUTPUTS: dict(config.custom_names.outputs),
                SENSORS: dict(config.custom_names.sensors),
                SCENARIOS: dict(config.custom_names.scenarios),
            },
        )

    def is_excluded(self, device: Device) -> bool:
        category = CATEGORY_OF_KIND[device.kind]
        return device.native_id in self.excluded.get(category, set())

    def display_name(self, device: Device) -> str:
        """Configured name for the device, or its panel name."""
        category = CATEGORY_OF_KIND[device.kind]
        custom = self.custom_names.get(category, {}).get(device.native_id)
        if not custom:
            return device.name
        if isinstance(device.status, SensorStatus):
            return custom + SENSOR_SUFFIXES[device.status.sensor_type]
        return custom
