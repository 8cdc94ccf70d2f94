"""Republish device state to an MQTT broker and accept commands from it.

Topics, with ``{prefix}`` from ``mqtt.topic_prefix``:

- ``{prefix}/{kind}/{identifier}/state``: retained JSON state, one per device
- ``{prefix}/{kind}/{identifier}/set``: JSON command, e.g. ``{"on": true}``
- ``{prefix}/bridge/availability``: ``online`` / ``offline`` (last will)
- ``{prefix}/bridge/panel``: ``online`` while the panel session is READY
"""

from __future__ import annotations

import asyncio
import contextlib
import json
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, override

import aiomqtt

from lares_controller.devices.models import (
    CoverStatus,
    Device,
    GateStatus,
    LightStatus,
    ScenarioStatus,
    SensorStatus,
    ThermostatStatus,
    ZoneStatus,
)
from lares_controller.events import BaseDeviceListener
from lares_controller.exceptions import LaresError
from lares_controller.logging_abstraction import get_logger

if TYPE_CHECKING:
    from lares_controller.client import LaresClient
    from lares_controller.config import MqttConfig

logger = get_logger(__name__)

ONLINE = b"online"
OFFLINE = b"offline"


def state_payload(device: Device) -> dict[str, Any]:
    """JSON body published on a device's state topic."""
    payload: dict[str, Any] = {
        "id": device.identifier,
        "name": device.name,
        "type": str(device.kind),
        "timestamp": datetime.now(UTC).isoformat(),
    }
    status = device.status
    if isinstance(status, LightStatus):
        payload.update(on=status.on, brightness=status.brightness or 0, dimmable=status.dimmable)
    elif isinstance(status, CoverStatus):
        payload.update(position=status.position, targetPosition=status.target_position, state=str(status.state))
    elif isinstance(status, ThermostatStatus):
        payload.update(
            currentTemperature=status.current_temperature,
            targetTemperature=status.target_temperature,
            mode=str(status.mode),
        )
    elif isinstance(status, SensorStatus):
        payload.update(sensorType=str(status.sensor_type), value=status.value, unit=status.unit)
    elif isinstance(status, ZoneStatus):
        payload.update(open=status.open, armed=status.armed, fault=status.fault, bypassed=status.bypassed)
    elif isinstance(status, ScenarioStatus):
        payload.update(active=status.active)
    elif isinstance(status, GateStatus):
        payload.update(on=status.on)
    return payload


class MqttBridge(BaseDeviceListener):
    """Event listener that mirrors devices to MQTT.

    State updates are coalesced per topic: if the broker is slow or away,
    only the latest state of each device is published once it is back.
    """

    lp = "MqttBridge:"

    def __init__(self, config: MqttConfig, lares: LaresClient) -> None:
        self.config = config
        self.lares = lares
        self.topic_prefix = config.topic_prefix.rstrip("/")
        self.client: aiomqtt.Client | None = None
        self._pending: dict[str, bytes] = {}
        self._wake = asyncio.Event()
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def availability_topic(self) -> str:
        return f"{self.topic_prefix}/bridge/availability"

    @property
    def panel_topic(self) -> str:
        return f"{self.topic_prefix}/bridge/panel"

    @property
    def command_topic_filter(self) -> str:
        return f"{self.topic_prefix}/+/+/set"

    def state_topic(self, device: Device) -> str:
        return f"{self.topic_prefix}/{device.kind}/{device.identifier}/state"

    def parse_command_topic(self, topic: str) -> tuple[str, str] | None:
        """``(kind, identifier)`` for a ``.../set`` topic under our prefix."""
        prefix = f"{self.topic_prefix}/"
        if not topic.startswith(prefix):
            return None
        parts = topic[len(prefix) :].split("/")
        if len(parts) != 3 or parts[2] != "set" or not parts[0] or not parts[1]:
            return None
        return parts[0], parts[1]

    # -- listener hooks --------------------------------------------------

    @override
    def on_device_discovered(self, device: Device) -> None:
        self.publish_device_state(device)

    @override
    def on_device_status_update(self, device: Device) -> None:
        self.publish_device_state(device)

    @override
    def on_connected(self) -> None:
        self._enqueue(self.panel_topic, ONLINE)

    @override
    def on_disconnected(self) -> None:
        self._enqueue(self.panel_topic, OFFLINE)

    def publish_device_state(self, device: Device) -> None:
        self._enqueue(self.state_topic(device), json.dumps(state_payload(device)).encode())

    def _enqueue(self, topic: str, payload: bytes) -> None:
        self._pending[topic] = payload
        self._wake.set()

    # -- commands --------------------------------------------------------

    async def handle_command(self, topic: str, payload: bytes | str) -> bool:
        """Run the command carried by one ``.../set`` message; False if dropped."""
        lp = f"{self.lp}command:"
        target = self.parse_command_topic(topic)
        if target is None:
            logger.warning("%s Invalid command topic: %s", lp, topic)
            return False
        kind, identifier = target
        try:
            command = json.loads(payload)
        except (TypeError, ValueError):
            logger.warning("%s Payload for %s is not JSON: %r", lp, topic, payload)
            return False
        if not isinstance(command, dict):
            logger.warning("%s Payload for %s is not an object", lp, topic)
            return False

        logger.debug("%s %s %s <- %s", lp, kind, identifier, command)
        try:
            return await self._route(kind, identifier, command)
        except (LaresError, ValueError, TypeError) as e:
            logger.warning("%s %s %s failed: %s", lp, kind, identifier, e)
            return False

    async def _route(self, kind: str, identifier: str, command: dict[str, Any]) -> bool:
        handled = False
        if kind == "light":
            if "on" in command:
                await self.lares.switch_light(identifier, bool(command["on"]))
                handled = True
            if "brightness" in command:
                await self.lares.dim_light(identifier, int(command["brightness"]))
                handled = True
        elif kind == "cover":
            if "position" in command:
                await self.lares.move_cover(identifier, int(command["position"]))
                handled = True
        elif kind == "thermostat":
            if "targetTemperature" in command:
                await self.lares.set_thermostat_target(identifier, float(command["targetTemperature"]))
                handled = True
            if "mode" in command:
                await self.lares.set_thermostat_mode(identifier, str(command["mode"]))
                handled = True
        elif kind == "scenario":
            if command.get("active"):
                await self.lares.trigger_scenario(identifier)
                handled = True
        elif kind == "gate":
            if command.get("on"):
                await self.lares.pulse_gate(identifier)
                handled = True
        else:
            logger.warning("%s Commands not supported for %s", self.lp, kind)
            return False
        if not handled:
            logger.debug("%s Nothing to do for %s %s", self.lp, identifier, command)
        return handled

    # -- broker session --------------------------------------------------

    def _get_connection_delay(self) -> float:
        """Get connection retry delay, defaulting to 5 seconds."""
        delay = self.config.reconnect_delay
        return delay if delay > 0 else 5

    async def start(self) -> None:
        lp = f"{self.lp}start:"
        while True:
            will = aiomqtt.Will(topic=self.availability_topic, payload=OFFLINE, qos=self.config.qos, retain=True)
            try:
                async with aiomqtt.Client(
                    hostname=self.config.host,
                    port=self.config.port,
                    username=self.config.username,
                    password=self.config.password,
                    identifier=self.config.client_id,
                    will=will,
                ) as client:
                    self.client = client
                    self._connected = True
                    logger.info("%s Connected to MQTT broker %s:%s", lp, self.config.host, self.config.port)
                    await client.publish(self.availability_topic, ONLINE, qos=self.config.qos, retain=True)
                    self._enqueue(self.panel_topic, ONLINE if self.lares.is_ready else OFFLINE)
                    for device in self.lares.devices():
                        if not self.lares.registry.is_excluded(device):
                            self.publish_device_state(device)
                    await client.subscribe(self.command_topic_filter, qos=self.config.qos)
                    await self._serve(client)
            except (aiomqtt.MqttError, aiomqtt.MqttCodeError) as e:
                logger.warning("%s MQTT error: %s", lp, e)
            finally:
                self.client = None
                self._connected = False
            delay = self._get_connection_delay()
            logger.info(
                "%s connecting to MQTT broker failed, sleeping for %s seconds before re-trying...",
                lp,
                delay,
            )
            await asyncio.sleep(delay)

    async def _serve(self, client: aiomqtt.Client) -> None:
        publisher = asyncio.create_task(self._publisher(client), name="lares_mqtt_publisher")
        try:
            async for message in client.messages:
                payload = message.payload
                if not isinstance(payload, (bytes, str)):
                    payload = b""
                await self.handle_command(str(message.topic), payload)
        finally:
            publisher.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await publisher

    async def _publisher(self, client: aiomqtt.Client) -> None:
        while True:
            await self._wake.wait()
            self._wake.clear()
            batch = list(self._pending.items())
            self._pending = {}
            for index, (topic, payload) in enumerate(batch):
                try:
                    await client.publish(topic, payload, qos=self.config.qos, retain=self.config.retain)
                except (aiomqtt.MqttError, aiomqtt.MqttCodeError) as e:
                    logger.warning("%s publish to %s failed: %s", self.lp, topic, e)
                    # requeue the unsent rest; newer states that arrived meanwhile win
                    self._pending = dict(batch[index:]) | self._pending
                    self._wake.set()
                    await asyncio.sleep(self._get_connection_delay())
                    break
                logger.debug("%s published %s", self.lp, topic)

    async def stop(self) -> None:
        client = self.client
        if client is None:
            return
        with contextlib.suppress(aiomqtt.MqttError):
            await client.publish(self.availability_topic, OFFLINE, qos=self.config.qos, retain=True)
