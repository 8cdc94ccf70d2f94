"""Listener registration for device and connection events.

Consumers (UI adapters, the MQTT bridge, the inventory writer) subscribe a
:class:`DeviceListener`; the registry and connection manager publish through
one :class:`EventBus`. Dispatch is synchronous and in subscription order.
A listener that raises is logged and skipped, never propagated into the
transport.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from lares_controller.logging_abstraction import get_logger

if TYPE_CHECKING:
    from lares_controller.devices.models import Device

logger = get_logger(__name__)


@runtime_checkable
class DeviceListener(Protocol):
    def on_device_discovered(self, device: Device) -> None: ...

    def on_device_status_update(self, device: Device) -> None: ...

    def on_connected(self) -> None: ...

    def on_disconnected(self) -> None: ...


class BaseDeviceListener:
    """No-op implementation; subclass and override what you need."""

    def on_device_discovered(self, device: Device) -> None:
        pass

    def on_device_status_update(self, device: Device) -> None:
        pass

    def on_connected(self) -> None:
        pass

    def on_disconnected(self) -> None:
        pass


class EventBus:
    """Fan-out of events to subscribed listeners.

    Devices are passed as snapshots: each listener gets its own copy, so one
    consumer mutating what it received cannot affect another or the registry.
    """

    def __init__(self) -> None:
        self._listeners: list[DeviceListener] = []

    def subscribe(self, listener: DeviceListener) -> Callable[[], None]:
        """Register ``listener``; returns a callable that unsubscribes it."""
        if listener not in self._listeners:
            self._listeners.append(listener)
        return lambda: self.unsubscribe(listener)

    def unsubscribe(self, listener: DeviceListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def __len__(self) -> int:
        return len(self._listeners)

    def emit_discovered(self, device: Device) -> None:
        for listener in list(self._listeners):
            self._deliver(listener, "on_device_discovered", device.snapshot())

    def emit_status_update(self, device: Device) -> None:
        for listener in list(self._listeners):
            self._deliver(listener, "on_device_status_update", device.snapshot())

    def emit_connected(self) -> None:
        for listener in list(self._listeners):
            self._deliver(listener, "on_connected")

    def emit_disconnected(self) -> None:
        for listener in list(self._listeners):
            self._deliver(listener, "on_disconnected")

    def _deliver(self, listener: DeviceListener, event: str, *args: object) -> None:
        handler = getattr(listener, event, None)
        if handler is None:
            return
        try:
            handler(*args)
        except Exception as e:
            logger.exception(
                "Listener failed handling %s",
                event,
                extra={"listener": type(listener).__name__, "error": str(e)},
            )
