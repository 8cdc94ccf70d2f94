"""Unit tests for the MQTT bridge: state payloads, topic parsing, command routing."""

from __future__ import annotations

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import aiomqtt
import pytest

from lares_controller.config import MqttConfig
from lares_controller.devices.models import (
    CoverMotion,
    CoverStatus,
    Device,
    DeviceKind,
    GateStatus,
    LightStatus,
    SensorStatus,
    SensorType,
    ThermostatMode,
    ThermostatStatus,
    ZoneStatus,
)
from lares_controller.exceptions import UnknownDeviceError
from lares_controller.mqtt import MqttBridge, state_payload


@pytest.fixture
def lares() -> MagicMock:
    client = MagicMock()
    client.is_ready = True
    for method in (
        "switch_light",
        "dim_light",
        "move_cover",
        "set_thermostat_mode",
        "set_thermostat_target",
        "trigger_scenario",
        "pulse_gate",
    ):
        setattr(client, method, AsyncMock())
    return client


@pytest.fixture
def bridge(lares: MagicMock) -> MqttBridge:
    return MqttBridge(MqttConfig(topic_prefix="lares4/"), lares)


def _light(on: bool = False) -> Device:
    return Device("light_12", DeviceKind.LIGHT, "Luce", "12", LightStatus(on=on))


class TestStatePayload:
    def test_light(self):
        payload = state_payload(_light(on=True))
        assert payload["id"] == "light_12"
        assert payload["type"] == "light"
        assert payload["on"] is True
        assert payload["brightness"] == 0
        assert "timestamp" in payload

    def test_cover(self):
        device = Device("cover_5", DeviceKind.COVER, "T", "5", CoverStatus(30, 80, CoverMotion.OPENING))
        payload = state_payload(device)
        assert (payload["position"], payload["targetPosition"], payload["state"]) == (30, 80, "opening")

    def test_thermostat(self):
        status = ThermostatStatus(20.5, 22.0, ThermostatMode.HEAT)
        payload = state_payload(Device("thermostat_8", DeviceKind.THERMOSTAT, "C", "8", status))
        assert payload["type"] == "thermostat"
        assert payload["currentTemperature"] == 20.5
        assert payload["targetTemperature"] == 22.0
        assert payload["mode"] == "heat"

    def test_sensor_zone_gate(self):
        sensor = Device("sensor_hum_3", DeviceKind.SENSOR, "S", "3", SensorStatus(SensorType.HUMIDITY, 55.0, "%"))
        assert state_payload(sensor)["sensorType"] == "humidity"
        zone = Device("zone_1", DeviceKind.ZONE, "Z", "1", ZoneStatus(open=True))
        assert state_payload(zone)["open"] is True
        gate = Device("gate_9", DeviceKind.GATE, "G", "9", GateStatus(on=True))
        assert state_payload(gate)["on"] is True


class TestTopics:
    def test_state_topic(self, bridge: MqttBridge):
        assert bridge.state_topic(_light()) == "lares4/light/light_12/state"
        assert bridge.command_topic_filter == "lares4/+/+/set"
        assert bridge.availability_topic == "lares4/bridge/availability"

    @pytest.mark.parametrize(
        ("topic", "expected"),
        [
            ("lares4/light/light_12/set", ("light", "light_12")),
            ("lares4/light/light_12/state", None),
            ("other/light/light_12/set", None),
            ("lares4/light/set", None),
            ("lares4//light_12/set", None),
        ],
    )
    def test_parse_command_topic(self, bridge: MqttBridge, topic: str, expected: tuple[str, str] | None):
        assert bridge.parse_command_topic(topic) == expected


class TestHandleCommand:
    """Tests for routing `.../set` payloads onto LaresClient calls."""

    @pytest.mark.asyncio
    async def test_light_on_and_brightness(self, bridge: MqttBridge, lares: MagicMock):
        assert await bridge.handle_command("lares4/light/light_12/set", b'{"on": true, "brightness": 40}')
        lares.switch_light.assert_awaited_once_with("light_12", True)
        lares.dim_light.assert_awaited_once_with("light_12", 40)

    @pytest.mark.asyncio
    async def test_cover(self, bridge: MqttBridge, lares: MagicMock):
        assert await bridge.handle_command("lares4/cover/cover_5/set", '{"position": 50}')
        lares.move_cover.assert_awaited_once_with("cover_5", 50)

    @pytest.mark.asyncio
    async def test_thermostat(self, bridge: MqttBridge, lares: MagicMock):
        payload = json.dumps({"targetTemperature": 21.5, "mode": "heat"})
        assert await bridge.handle_command("lares4/thermostat/thermostat_8/set", payload)
        lares.set_thermostat_target.assert_awaited_once_with("thermostat_8", 21.5)
        lares.set_thermostat_mode.assert_awaited_once_with("thermostat_8", "heat")

    @pytest.mark.asyncio
    async def test_scenario_and_gate(self, bridge: MqttBridge, lares: MagicMock):
        assert await bridge.handle_command("lares4/scenario/scenario_4/set", b'{"active": true}')
        lares.trigger_scenario.assert_awaited_once_with("scenario_4")
        assert await bridge.handle_command("lares4/gate/gate_9/set", b'{"on": true}')
        lares.pulse_gate.assert_awaited_once_with("gate_9")

    @pytest.mark.asyncio
    async def test_nothing_to_do(self, bridge: MqttBridge, lares: MagicMock):
        assert not await bridge.handle_command("lares4/scenario/scenario_4/set", b'{"active": false}')
        lares.trigger_scenario.assert_not_awaited()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("topic", "payload"),
        [
            ("lares4/light/light_12/set", b"not json"),
            ("lares4/light/light_12/set", b"[1, 2]"),
            ("lares4/sensor/sensor_temp_3/set", b'{"value": 1}'),
            ("lares4/light/light_12", b'{"on": true}'),
        ],
    )
    async def test_dropped(self, bridge: MqttBridge, lares: MagicMock, topic: str, payload: bytes):
        assert not await bridge.handle_command(topic, payload)
        lares.switch_light.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_client_errors_are_contained(self, bridge: MqttBridge, lares: MagicMock):
        lares.switch_light.side_effect = UnknownDeviceError("light_99", "light")
        assert not await bridge.handle_command("lares4/light/light_99/set", b'{"on": true}')
        lares.dim_light.side_effect = ValueError("brightness must be 0-100")
        assert not await bridge.handle_command("lares4/light/light_12/set", b'{"brightness": 300}')


class TestStateQueue:
    """Tests for coalescing of outbound states."""

    def test_latest_state_per_topic_wins(self, bridge: MqttBridge):
        bridge.on_device_status_update(_light(on=True))
        bridge.on_device_status_update(_light(on=False))
        topic = "lares4/light/light_12/state"
        assert list(bridge._pending) == [topic]
        assert json.loads(bridge._pending[topic])["on"] is False

    def test_panel_availability(self, bridge: MqttBridge):
        bridge.on_connected()
        bridge.on_disconnected()
        assert bridge._pending[bridge.panel_topic] == b"offline"

    @pytest.mark.asyncio
    async def test_publisher_drains_queue(self, bridge: MqttBridge):
        client = MagicMock()
        published: list[tuple[str, bytes]] = []

        async def _publish(topic: str, payload: bytes, **_kwargs: object) -> None:
            published.append((topic, payload))

        client.publish = AsyncMock(side_effect=_publish)
        bridge.publish_device_state(_light(on=True))
        bridge.on_connected()
        task = asyncio.create_task(bridge._publisher(client))
        try:
            await asyncio.sleep(0.01)
        finally:
            task.cancel()
        assert [topic for topic, _ in published] == ["lares4/light/light_12/state", "lares4/bridge/panel"]
        assert bridge._pending == {}

    @pytest.mark.asyncio
    async def test_failed_publish_requeues_only_unsent(self, lares: MagicMock):
        bridge = MqttBridge(MqttConfig(topic_prefix="lares4/", reconnect_delay=60), lares)
        client = MagicMock()
        client.publish = AsyncMock(side_effect=[None, aiomqtt.MqttError("broker gone")])
        gate = Device("gate_9", DeviceKind.GATE, "G", "9", GateStatus(on=True))
        bridge.publish_device_state(_light(on=True))
        bridge.publish_device_state(gate)
        bridge.on_connected()
        task = asyncio.create_task(bridge._publisher(client))
        try:
            await asyncio.sleep(0.01)
        finally:
            task.cancel()
        assert client.publish.await_count == 2
        assert list(bridge._pending) == ["lares4/gate/gate_9/state", "lares4/bridge/panel"]

    @pytest.mark.asyncio
    async def test_stop_without_broker(self, bridge: MqttBridge):
        await bridge.stop()
        assert not bridge.is_connected
