"""Public entry point for talking to a Lares4 panel.

Example:
    client = LaresClient(load_config("/data/lares-controller/lares.yaml"))
    client.subscribe(MyListener())
    await client.start()
    await client.switch_light("light_12", True)

"""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING

from lares_controller.commands import CommandBuilder, PanelCommand
from lares_controller.devices.filters import DeviceFilter
from lares_controller.devices.mapping import KIND_TAGS, native_id_of
from lares_controller.devices.models import Device, DeviceKind, ThermostatMode
from lares_controller.devices.registry import DeviceRegistry
from lares_controller.events import DeviceListener, EventBus
from lares_controller.exceptions import UnknownDeviceError
from lares_controller.logging_abstraction import get_logger
from lares_controller.transport.connection_manager import ConnectionManager, SocketFactory
from lares_controller.transport.exceptions import TransportError
from lares_controller.transport.retry_policy import RetryPolicy, TimeoutConfig

if TYPE_CHECKING:
    from lares_controller.config import ControllerConfig
    from lares_controller.protocol.envelope import Envelope

logger = get_logger(__name__)


class LaresClient:
    """Panel session, device mirror and command surface in one object.

    Commands address devices by derived identifier (``light_12``) and fail
    with :class:`UnknownDeviceError` for identifiers that were not discovered
    or belong to another kind. Session problems surface as
    :class:`CommandPreconditionError` to the caller; nothing is queued.
    """

    lp = "LaresClient:"

    def __init__(
        self,
        config: ControllerConfig,
        *,
        events: EventBus | None = None,
        socket_factory: SocketFactory | None = None,
    ) -> None:
        self.config = config
        self.events = events or EventBus()
        self.registry = DeviceRegistry(self.events, DeviceFilter.from_config(config.filters))
        self.connection = ConnectionManager(
            config.panel,
            self.registry,
            self.events,
            timeouts=TimeoutConfig.from_config(config),
            retry_policy=RetryPolicy.from_config(config),
            socket_factory=socket_factory,
        )

    def subscribe(self, listener: DeviceListener) -> Callable[[], None]:
        return self.events.subscribe(listener)

    def unsubscribe(self, listener: DeviceListener) -> None:
        self.events.unsubscribe(listener)

    @property
    def is_ready(self) -> bool:
        return self.connection.is_ready

    async def start(self) -> None:
        """Connect once; transport failures keep retrying in the background.

        Raises:
            AuthenticationError: Panel rejected the PIN

        """
        logger.info("%s Starting", self.lp, extra={"url": self.config.panel.url})
        try:
            await self.connection.connect()
        except TransportError as e:
            logger.warning("%s First connection attempt failed (%s), retrying in background", self.lp, e.reason)

    async def stop(self) -> None:
        await self.connection.disconnect()
        logger.info("%s Stopped", self.lp)

    def devices(self) -> list[Device]:
        return self.registry.devices()

    def get_device(self, identifier: str) -> Device | None:
        device = self.registry.get(identifier)
        return device.snapshot() if device is not None else None

    def _native_id(self, identifier: str, kind: DeviceKind) -> str:
        native_id = native_id_of(identifier, KIND_TAGS[kind])
        if native_id is None or identifier not in self.registry:
            raise UnknownDeviceError(identifier, str(kind))
        return native_id

    async def _execute(self, command: PanelCommand, description: str) -> Envelope:
        envelope = await self.connection.execute(command)
        logger.info("%s Command sent: %s", self.lp, description)
        return envelope

    async def switch_light(self, identifier: str, on: bool) -> None:
        native_id = self._native_id(identifier, DeviceKind.LIGHT)
        await self._execute(
            CommandBuilder.switch_light(native_id, on),
            f"output {native_id} -> {'ON' if on else 'OFF'}",
        )

    async def dim_light(self, identifier: str, brightness: int) -> None:
        if not 0 <= brightness <= 100:
            msg = f"brightness must be 0-100, got {brightness}"
            raise ValueError(msg)
        native_id = self._native_id(identifier, DeviceKind.LIGHT)
        await self._execute(CommandBuilder.dim_light(native_id, brightness), f"dimmer {native_id} -> {brightness}%")

    async def move_cover(self, identifier: str, position: int) -> None:
        if not 0 <= position <= 100:
            msg = f"position must be 0-100, got {position}"
            raise ValueError(msg)
        native_id = self._native_id(identifier, DeviceKind.COVER)
        await self._execute(CommandBuilder.move_cover(native_id, position), f"cover {native_id} -> {position}%")

    async def set_thermostat_mode(self, identifier: str, mode: ThermostatMode | str) -> None:
        try:
            mode = ThermostatMode(str(mode).lower())
        except ValueError as e:
            msg = f"unknown thermostat mode {mode!r}"
            raise ValueError(msg) from e
        native_id = self._native_id(identifier, DeviceKind.THERMOSTAT)
        await self._execute(
            CommandBuilder.set_thermostat_mode(native_id, mode),
            f"thermostat {native_id} mode -> {mode}",
        )

    async def set_thermostat_target(self, identifier: str, temperature: float) -> None:
        native_id = self._native_id(identifier, DeviceKind.THERMOSTAT)
        await self._execute(
            CommandBuilder.set_thermostat_target(native_id, temperature),
            f"thermostat {native_id} target -> {temperature}C",
        )

    async def trigger_scenario(self, identifier: str) -> None:
        native_id = self._native_id(identifier, DeviceKind.SCENARIO)
        await self._execute(CommandBuilder.trigger_scenario(native_id), f"scenario {native_id}")

    async def pulse_gate(self, identifier: str) -> None:
        native_id = self._native_id(identifier, DeviceKind.GATE)
        await self._execute(CommandBuilder.pulse_gate(native_id), f"gate {native_id} pulse")
