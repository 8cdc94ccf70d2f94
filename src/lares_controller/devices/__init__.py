"""Device model and registry."""

from .filters import DeviceFilter
from .models import (
    CoverMotion,
    CoverStatus,
    Device,
    DeviceKind,
    DeviceStatus,
    GateStatus,
    LightStatus,
    ScenarioStatus,
    SensorStatus,
    SensorType,
    ThermostatMode,
    ThermostatStatus,
    ZoneStatus,
)
from .registry import DeviceRegistry, RecordKind

__all__ = [
    "CoverMotion",
    "CoverStatus",
    "Device",
    "DeviceFilter",
    "DeviceKind",
    "DeviceRegistry",
    "DeviceStatus",
    "GateStatus",
    "LightStatus",
    "RecordKind",
    "ScenarioStatus",
    "SensorStatus",
    "SensorType",
    "ThermostatMode",
    "ThermostatStatus",
    "ZoneStatus",
]
