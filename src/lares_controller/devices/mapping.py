"""Translation of panel field values into device state.

The panel sends nearly everything as strings (``"ON"``, ``"42"``, ``"+21.5"``).
These helpers are pure and forgiving: unparseable input falls back to a
documented default rather than raising.
"""

from __future__ import annotations

from lares_controller.devices.models import CoverMotion, DeviceKind, SensorType, ThermostatMode

# Identifier tags; sensors fan out so they get one tag per measurement
KIND_TAGS: dict[DeviceKind, str] = {
    DeviceKind.LIGHT: "light",
    DeviceKind.COVER: "cover",
    DeviceKind.THERMOSTAT: "thermostat",
    DeviceKind.ZONE: "zone",
    DeviceKind.SCENARIO: "scenario",
    DeviceKind.GATE: "gate",
}
SENSOR_TAGS: dict[SensorType, str] = {
    SensorType.TEMPERATURE: "sensor_temp",
    SensorType.HUMIDITY: "sensor_hum",
    SensorType.LIGHT: "sensor_light",
}
SENSOR_SUFFIXES: dict[SensorType, str] = {
    SensorType.TEMPERATURE: " - Temperature",
    SensorType.HUMIDITY: " - Humidity",
    SensorType.LIGHT: " - Light",
}
SENSOR_UNITS: dict[SensorType, str] = {
    SensorType.TEMPERATURE: "C",
    SensorType.HUMIDITY: "%",
    SensorType.LIGHT: "lux",
}
SENSOR_DEFAULTS: dict[SensorType, float] = {
    SensorType.TEMPERATURE: 0.0,
    SensorType.HUMIDITY: 50,
    SensorType.LIGHT: 100,
}

_THERMOSTAT_MARKERS = ("THERM", "CLIMA", "TEMP", "RISCALD", "RAFFRES", "HVAC", "TERMOS")
_MODE_ALIASES: dict[str, ThermostatMode] = {
    "heat": ThermostatMode.HEAT,
    "heating": ThermostatMode.HEAT,
    "riscaldamento": ThermostatMode.HEAT,
    "cool": ThermostatMode.COOL,
    "cooling": ThermostatMode.COOL,
    "raffreddamento": ThermostatMode.COOL,
    "auto": ThermostatMode.AUTO,
    "automatic": ThermostatMode.AUTO,
    "automatico": ThermostatMode.AUTO,
}
_MODE_CODES: dict[ThermostatMode, str] = {
    ThermostatMode.OFF: "0",
    ThermostatMode.HEAT: "1",
    ThermostatMode.COOL: "2",
    ThermostatMode.AUTO: "3",
}
_COVER_KEYWORD_POSITIONS = {"OPEN": 100, "UP": 100, "CLOSE": 0, "DOWN": 0, "STOP": 50}
_COVER_KEYWORD_MOTION = {
    "OPEN": CoverMotion.OPENING,
    "UP": CoverMotion.OPENING,
    "CLOSE": CoverMotion.CLOSING,
    "DOWN": CoverMotion.CLOSING,
}


def derive_identifier(tag: str, native_id: object) -> str:
    return f"{tag}_{native_id}"


def native_id_of(identifier: str, tag: str) -> str | None:
    """Strip ``tag_`` from an identifier; None when the tag does not match."""
    prefix = f"{tag}_"
    if not identifier.startswith(prefix) or len(identifier) == len(prefix):
        return None
    return identifier[len(prefix) :]


def parse_int(value: object, default: int | None = None) -> int | None:
    """Integer from a panel string, truncating decimals like the panel apps do."""
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    text = str(value).strip()
    try:
        return int(text)
    except ValueError:
        pass
    try:
        return int(float(text))
    except (ValueError, OverflowError):
        return default


def parse_float(value: object, default: float | None = None) -> float | None:
    if value is None or isinstance(value, bool):
        return default
    try:
        return float(str(value).strip())
    except ValueError:
        return default


def parse_panel_temperature(value: object) -> float | None:
    """System temperatures arrive signed, e.g. ``"+21.5"``."""
    if value in (None, ""):
        return None
    return parse_float(str(value).replace("+", ""))


def output_kind(category: str) -> DeviceKind | None:
    """Device kind for an output category (CAT, falling back to TYPE)."""
    category = category.upper()
    if category == "LIGHT":
        return DeviceKind.LIGHT
    if category == "ROLL":
        return DeviceKind.COVER
    if category == "GATE":
        return DeviceKind.GATE
    if any(marker in category for marker in _THERMOSTAT_MARKERS):
        return DeviceKind.THERMOSTAT
    return None


def cover_position(sta: object, pos: object) -> int:
    """Position from POS, else from the STA keyword (unknown keywords mean closed)."""
    if pos not in (None, ""):
        parsed = parse_int(pos)
        if parsed is not None:
            return parsed
    return _COVER_KEYWORD_POSITIONS.get(str(sta or "").upper(), 0)


def cover_motion(sta: object, pos: object, tpos: object) -> CoverMotion:
    """Direction of travel.

    With both POS and TPOS: equal means stopped, POS < TPOS opening,
    POS > TPOS closing. Otherwise the STA keyword decides.
    """
    current = parse_int(pos) if pos not in (None, "") else None
    target = parse_int(tpos) if tpos not in (None, "") else None
    if current is not None and target is not None:
        if current == target:
            return CoverMotion.STOPPED
        return CoverMotion.OPENING if current < target else CoverMotion.CLOSING
    return _COVER_KEYWORD_MOTION.get(str(sta or "").upper(), CoverMotion.STOPPED)


def thermostat_mode(raw: object) -> ThermostatMode:
    return _MODE_ALIASES.get(str(raw or "").lower(), ThermostatMode.OFF)


def thermostat_mode_code(mode: ThermostatMode | str) -> str:
    """Numeric MODE code the panel expects in WRITE/THERMOSTAT."""
    try:
        return _MODE_CODES[ThermostatMode(str(mode).lower())]
    except ValueError:
        return _MODE_CODES[ThermostatMode.OFF]


def cover_command(position: int) -> str:
    """STA value for moving a cover: full travel uses keywords."""
    if position <= 0:
        return "DOWN"
    if position >= 100:
        return "UP"
    return str(position)
