"""Unit tests for the device registry."""

from __future__ import annotations

import pytest

from lares_controller.devices.filters import DeviceFilter
from lares_controller.devices.models import (
    CoverMotion,
    CoverStatus,
    DeviceKind,
    GateStatus,
    LightStatus,
    ScenarioStatus,
    SensorStatus,
    ThermostatMode,
    ThermostatStatus,
    ZoneStatus,
)
from lares_controller.devices.registry import DeviceRegistry, RecordKind
from lares_controller.events import EventBus
from tests.helpers.panel import RecordingListener


@pytest.fixture
def registry(listener: RecordingListener) -> DeviceRegistry:
    events = EventBus()
    events.subscribe(listener)
    return DeviceRegistry(events)


class TestDiscovery:
    """Tests for apply_discovery."""

    def test_light_output(self, registry: DeviceRegistry, listener: RecordingListener):
        created = registry.apply_discovery(RecordKind.OUTPUT, {"ID": "12", "DES": "Luce cucina", "CAT": "LIGHT"})
        assert [device.identifier for device in created] == ["light_12"]
        device = registry.get("light_12")
        assert device is not None
        assert device.name == "Luce cucina"
        assert device.native_id == "12"
        assert isinstance(device.status, LightStatus)
        assert [device.identifier for device in listener.discovered] == ["light_12"]

    def test_category_falls_back_to_type(self, registry: DeviceRegistry):
        registry.apply_discovery(RecordKind.OUTPUT, {"ID": "3", "TYPE": "ROLL"})
        device = registry.get("cover_3")
        assert device is not None
        assert device.name == "Cover 3"
        assert isinstance(device.status, CoverStatus)

    def test_gate_and_thermostat_outputs(self, registry: DeviceRegistry):
        registry.apply_discovery(RecordKind.OUTPUT, {"ID": "5", "CAT": "GATE"})
        registry.apply_discovery(RecordKind.OUTPUT, {"ID": "6", "CAT": "TERMOSTATO"})
        assert registry.get("gate_5") is not None
        thermostat = registry.get("thermostat_6")
        assert thermostat is not None
        assert thermostat.name == "Thermostat 6"

    def test_unsupported_output_is_skipped(self, registry: DeviceRegistry, listener: RecordingListener):
        assert registry.apply_discovery(RecordKind.OUTPUT, {"ID": "9", "CAT": "SIREN"}) == ()
        assert len(registry) == 0
        assert listener.discovered == []

    def test_record_without_id_is_skipped(self, registry: DeviceRegistry):
        assert registry.apply_discovery(RecordKind.ZONE, {"DES": "No id"}) == ()
        assert len(registry) == 0

    def test_zone_initial_status(self, registry: DeviceRegistry):
        registry.apply_discovery(RecordKind.ZONE, {"ID": "1", "DES": "Porta ingresso", "STATUS": "2"})
        registry.apply_discovery(RecordKind.ZONE, {"ID": "2", "STATUS": "1"})
        front = registry.get("zone_1")
        second = registry.get("zone_2")
        assert front is not None
        assert second is not None
        assert isinstance(front.status, ZoneStatus)
        assert front.status.open
        assert not front.status.armed
        assert second.name == "Zone 2"
        assert isinstance(second.status, ZoneStatus)
        assert second.status.armed

    def test_arm_disarm_scenarios_are_skipped(self, registry: DeviceRegistry):
        assert registry.apply_discovery(RecordKind.SCENARIO, {"ID": "1", "DES": "Inserisci", "CAT": "ARM"}) == ()
        assert registry.apply_discovery(RecordKind.SCENARIO, {"ID": "2", "CAT": "disarm"}) == ()
        created = registry.apply_discovery(RecordKind.SCENARIO, {"ID": "3", "DES": "Buonanotte", "CAT": "GENERIC"})
        assert len(created) == 1
        assert isinstance(created[0].status, ScenarioStatus)

    def test_bus_sensor_fans_out(self, registry: DeviceRegistry, listener: RecordingListener):
        """One bus sensor becomes temperature, humidity and light devices."""
        created = registry.apply_discovery(RecordKind.BUS_SENSOR, {"ID": "4", "DES": "Bagno"})
        assert [device.identifier for device in created] == ["sensor_temp_4", "sensor_hum_4", "sensor_light_4"]
        assert [device.name for device in created] == ["Bagno - Temperature", "Bagno - Humidity", "Bagno - Light"]
        values = [device.status.value for device in created if isinstance(device.status, SensorStatus)]
        assert values == [0.0, 50, 100]
        assert len(listener.discovered) == 3

    def test_discovery_is_idempotent(self, registry: DeviceRegistry):
        """Re-applying a record replaces the device instead of duplicating it."""
        record = {"ID": "12", "DES": "Luce", "CAT": "LIGHT"}
        registry.apply_discovery(RecordKind.OUTPUT, record)
        registry.apply_discovery(RecordKind.OUTPUT, record)
        assert len(registry) == 1
        assert [device.identifier for device in registry.devices()] == ["light_12"]

    def test_devices_returns_snapshots(self, registry: DeviceRegistry):
        registry.apply_discovery(RecordKind.OUTPUT, {"ID": "12", "CAT": "LIGHT"})
        snapshot = registry.devices()[0]
        snapshot.name = "changed"
        device = registry.get("light_12")
        assert device is not None
        assert device.name == "Light 12"

    def test_by_kind(self, registry: DeviceRegistry):
        registry.apply_discovery(RecordKind.OUTPUT, {"ID": "1", "CAT": "LIGHT"})
        registry.apply_discovery(RecordKind.ZONE, {"ID": "1"})
        assert [device.identifier for device in registry.by_kind(DeviceKind.ZONE)] == ["zone_1"]


class TestStatusDeltas:
    """Tests for apply_status_delta."""

    def test_unknown_identifier_is_a_no_op(self, registry: DeviceRegistry, listener: RecordingListener):
        assert registry.apply_status_delta(RecordKind.OUTPUT, {"ID": "99", "STA": "ON"}) == ()
        assert len(registry) == 0
        assert listener.updates == []

    def test_light_on_off_and_dimming(self, registry: DeviceRegistry, listener: RecordingListener):
        registry.apply_discovery(RecordKind.OUTPUT, {"ID": "1", "CAT": "LIGHT"})
        registry.apply_status_delta(RecordKind.OUTPUT, {"ID": "1", "STA": "ON", "POS": "60"})
        device = registry.get("light_1")
        assert device is not None
        assert isinstance(device.status, LightStatus)
        assert device.status.on
        assert device.status.brightness == 60
        assert device.status.dimmable
        assert len(listener.updates) == 1
        assert isinstance(listener.updates[0].status, LightStatus)
        assert listener.updates[0].status.on

    def test_light_notifies_even_without_change(self, registry: DeviceRegistry, listener: RecordingListener):
        registry.apply_discovery(RecordKind.OUTPUT, {"ID": "1", "CAT": "LIGHT"})
        registry.apply_status_delta(RecordKind.OUTPUT, {"ID": "1", "STA": "OFF"})
        registry.apply_status_delta(RecordKind.OUTPUT, {"ID": "1", "STA": "OFF"})
        assert len(listener.updates) == 2

    @pytest.mark.parametrize(
        ("pos", "tpos", "motion"),
        [
            ("30", "30", CoverMotion.STOPPED),
            ("20", "80", CoverMotion.OPENING),
            ("80", "20", CoverMotion.CLOSING),
        ],
    )
    def test_cover_direction(self, registry: DeviceRegistry, pos: str, tpos: str, motion: CoverMotion):
        registry.apply_discovery(RecordKind.OUTPUT, {"ID": "2", "CAT": "ROLL"})
        registry.apply_status_delta(RecordKind.OUTPUT, {"ID": "2", "STA": "STOP", "POS": pos, "TPOS": tpos})
        device = registry.get("cover_2")
        assert device is not None
        assert isinstance(device.status, CoverStatus)
        assert device.status.position == int(pos)
        assert device.status.target_position == int(tpos)
        assert device.status.state is motion

    def test_cover_target_defaults_to_position(self, registry: DeviceRegistry):
        registry.apply_discovery(RecordKind.OUTPUT, {"ID": "2", "CAT": "ROLL"})
        registry.apply_status_delta(RecordKind.OUTPUT, {"ID": "2", "STA": "UP", "POS": "40"})
        device = registry.get("cover_2")
        assert device is not None
        assert isinstance(device.status, CoverStatus)
        assert device.status.target_position == 40

    def test_gate(self, registry: DeviceRegistry):
        registry.apply_discovery(RecordKind.OUTPUT, {"ID": "5", "CAT": "GATE"})
        registry.apply_status_delta(RecordKind.OUTPUT, {"ID": "5", "STA": "ON"})
        device = registry.get("gate_5")
        assert device is not None
        assert isinstance(device.status, GateStatus)
        assert device.status.on

    def test_thermostat_notifies_only_on_change(self, registry: DeviceRegistry, listener: RecordingListener):
        registry.apply_discovery(RecordKind.OUTPUT, {"ID": "6", "CAT": "THERMOSTAT"})
        record = {"ID": "6", "TEMP_CURRENT": "20.5", "TEMP_TARGET": "22", "MODE": "heat"}
        registry.apply_status_delta(RecordKind.OUTPUT, record)
        registry.apply_status_delta(RecordKind.OUTPUT, record)
        assert len(listener.updates) == 1
        status = listener.updates[0].status
        assert isinstance(status, ThermostatStatus)
        assert status.current_temperature == 20.5
        assert status.target_temperature == 22.0
        assert status.mode is ThermostatMode.HEAT

    def test_sensor_readings(self, registry: DeviceRegistry, listener: RecordingListener):
        registry.apply_discovery(RecordKind.BUS_SENSOR, {"ID": "4"})
        updated = registry.apply_status_delta(
            RecordKind.BUS_SENSOR,
            {"ID": "4", "DOMUS": {"TEM": "21.3", "HUM": "64", "LHT": "abc"}},
        )
        values = {device.identifier: device.status.value for device in updated if isinstance(device.status, SensorStatus)}
        assert values == {"sensor_temp_4": 21.3, "sensor_hum_4": 64, "sensor_light_4": 100}
        assert len(listener.updates) == 3

    def test_sensor_without_domus_is_ignored(self, registry: DeviceRegistry):
        registry.apply_discovery(RecordKind.BUS_SENSOR, {"ID": "4"})
        assert registry.apply_status_delta(RecordKind.BUS_SENSOR, {"ID": "4"}) == ()

    def test_zone_flags(self, registry: DeviceRegistry):
        registry.apply_discovery(RecordKind.ZONE, {"ID": "1"})
        registry.apply_status_delta(RecordKind.ZONE, {"ID": "1", "STA": "A", "BYP": "YES", "A": "Y", "FM": "T"})
        device = registry.get("zone_1")
        assert device is not None
        assert device.status == ZoneStatus(armed=True, bypassed=True, fault=True, open=True)

        registry.apply_status_delta(RecordKind.ZONE, {"ID": "1", "STA": "R", "BYP": "NO", "A": "N", "FM": "F"})
        assert device.status == ZoneStatus()

    def test_partial_delta_keeps_absent_fields(self, registry: DeviceRegistry):
        registry.apply_discovery(RecordKind.OUTPUT, {"ID": "12", "CAT": "LIGHT"})
        registry.apply_status_delta(RecordKind.OUTPUT, {"ID": "12", "STA": "ON"})
        registry.apply_status_delta(RecordKind.OUTPUT, {"ID": "12", "POS": "40"})
        light = registry.get("light_12")
        assert light is not None
        assert light.status == LightStatus(on=True, brightness=40, dimmable=True)

        registry.apply_discovery(RecordKind.ZONE, {"ID": "1"})
        registry.apply_status_delta(RecordKind.ZONE, {"ID": "1", "STA": "A", "A": "Y"})
        registry.apply_status_delta(RecordKind.ZONE, {"ID": "1", "BYP": "YES"})
        zone = registry.get("zone_1")
        assert zone is not None
        assert zone.status == ZoneStatus(armed=True, bypassed=True, fault=False, open=True)

    def test_cover_delta_without_position_fields(self, registry: DeviceRegistry, listener: RecordingListener):
        registry.apply_discovery(RecordKind.OUTPUT, {"ID": "2", "CAT": "ROLL"})
        registry.apply_status_delta(RecordKind.OUTPUT, {"ID": "2", "STA": "STOP", "POS": "70", "TPOS": "70"})
        updates = len(listener.updates)
        assert registry.apply_status_delta(RecordKind.OUTPUT, {"ID": "2", "LBL": "x"}) == ()
        cover = registry.get("cover_2")
        assert cover is not None
        assert isinstance(cover.status, CoverStatus)
        assert (cover.status.position, cover.status.target_position) == (70, 70)
        assert len(listener.updates) == updates

    def test_sensor_delta_keeps_missing_readings(self, registry: DeviceRegistry):
        registry.apply_discovery(RecordKind.BUS_SENSOR, {"ID": "4"})
        registry.apply_status_delta(RecordKind.BUS_SENSOR, {"ID": "4", "DOMUS": {"TEM": "21.3", "HUM": "64"}})
        updated = registry.apply_status_delta(RecordKind.BUS_SENSOR, {"ID": "4", "DOMUS": {"TEM": "22.0"}})
        assert [device.identifier for device in updated] == ["sensor_temp_4"]
        humidity = registry.get("sensor_hum_4")
        assert humidity is not None
        assert humidity.status.value == 64


class TestSystemStatus:
    """Tests for the system temperature fan-out."""

    def test_seeds_thermostat_targets(self, registry: DeviceRegistry, listener: RecordingListener):
        registry.apply_discovery(RecordKind.OUTPUT, {"ID": "6", "CAT": "THERMOSTAT"})
        registry.apply_discovery(RecordKind.OUTPUT, {"ID": "7", "CAT": "THERMOSTAT"})
        registry.apply_discovery(RecordKind.OUTPUT, {"ID": "1", "CAT": "LIGHT"})
        updated = registry.apply_status_delta(RecordKind.SYSTEM, {"ID": "1", "TEMP": {"IN": "+20.5", "OUT": "+8.0"}})
        assert [device.identifier for device in updated] == ["thermostat_6", "thermostat_7"]
        for device in updated:
            assert isinstance(device.status, ThermostatStatus)
            assert device.status.current_temperature == 20.5
            # 21.5 rounds half up
            assert device.status.target_temperature == 22.0
        assert len(listener.updates) == 2

    def test_existing_target_is_kept(self, registry: DeviceRegistry):
        registry.apply_discovery(RecordKind.OUTPUT, {"ID": "6", "CAT": "THERMOSTAT"})
        registry.apply_status_delta(RecordKind.OUTPUT, {"ID": "6", "TEMP_TARGET": "19"})
        registry.apply_system_status({"TEMP": {"IN": "+23.0"}})
        device = registry.get("thermostat_6")
        assert device is not None
        assert isinstance(device.status, ThermostatStatus)
        assert device.status.target_temperature == 19.0

    def test_missing_internal_temperature(self, registry: DeviceRegistry):
        registry.apply_discovery(RecordKind.OUTPUT, {"ID": "6", "CAT": "THERMOSTAT"})
        assert registry.apply_system_status({"TEMP": {"OUT": "+8.0"}}) == ()
        assert registry.apply_system_status({"ARM": "D"}) == ()


class TestExclusion:
    """Excluded devices are stored and updated but never announced."""

    def test_excluded_device_is_silent(self, listener: RecordingListener):
        events = EventBus()
        events.subscribe(listener)
        registry = DeviceRegistry(events, DeviceFilter(excluded={"outputs": {"12"}}))
        registry.apply_discovery(RecordKind.OUTPUT, {"ID": "12", "CAT": "LIGHT"})
        registry.apply_status_delta(RecordKind.OUTPUT, {"ID": "12", "STA": "ON"})
        device = registry.get("light_12")
        assert device is not None
        assert isinstance(device.status, LightStatus)
        assert device.status.on
        assert registry.is_excluded(device)
        assert listener.discovered == []
        assert listener.updates == []

    def test_custom_name_applied_on_discovery(self, listener: RecordingListener):
        events = EventBus()
        events.subscribe(listener)
        registry = DeviceRegistry(events, DeviceFilter(custom_names={"sensors": {"4": "Bathroom"}}))
        registry.apply_discovery(RecordKind.BUS_SENSOR, {"ID": "4", "DES": "Bagno"})
        assert [device.name for device in listener.discovered] == [
            "Bathroom - Temperature",
            "Bathroom - Humidity",
            "Bathroom - Light",
        ]
