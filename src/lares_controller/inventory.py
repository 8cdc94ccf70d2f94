"""Device inventory file and summary log.

The inventory lists every discovered device with the native id to use in
``filters.exclude_*``. Writes are debounced so a discovery sweep, which
reports devices one by one, produces a single file write and one summary.
"""

from __future__ import annotations

import asyncio
import json
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, override

from lares_controller.const import LARES_INVENTORY_DELAY
from lares_controller.devices.filters import CATEGORY_OF_KIND, OUTPUTS, SCENARIOS, SENSORS, ZONES
from lares_controller.devices.models import Device
from lares_controller.events import BaseDeviceListener
from lares_controller.logging_abstraction import get_logger

logger = get_logger(__name__)

_SECTIONS = (ZONES, OUTPUTS, SENSORS, SCENARIOS)


def build_inventory(devices: list[Device]) -> dict[str, Any]:
    """Group devices by panel category, each section sorted by name."""
    inventory: dict[str, Any] = {section: [] for section in _SECTIONS}
    for device in devices:
        section = CATEGORY_OF_KIND.get(device.kind)
        if section is None:
            continue
        inventory[section].append(
            {
                "id": device.native_id,
                "name": device.name,
                "type": str(device.kind),
                "description": device.description or device.name,
                "fullId": device.identifier,
            },
        )
    for section in _SECTIONS:
        inventory[section].sort(key=lambda entry: entry["name"].casefold())
    inventory["lastUpdated"] = datetime.now(UTC).isoformat()
    return inventory


def write_inventory(devices: list[Device], path: str | Path) -> dict[str, Any]:
    """Write the inventory as JSON, replacing the file atomically."""
    target = Path(path)
    inventory = build_inventory(devices)
    target.parent.mkdir(parents=True, exist_ok=True)
    tmp = target.with_suffix(target.suffix + ".tmp")
    tmp.write_text(json.dumps(inventory, indent=2), encoding="utf-8")
    tmp.replace(target)
    return inventory


def log_summary(inventory: dict[str, Any]) -> None:
    logger.info("========== AVAILABLE DEVICES ==========")
    logger.info("Use these ids in the filters section to exclude devices")
    for section in _SECTIONS:
        entries = inventory.get(section, [])
        if not entries:
            continue
        logger.info("%s (%d):", section.upper(), len(entries))
        for entry in entries:
            logger.info("   ID: %-4s %-10s %s", entry["id"], entry["type"], entry["name"])
    logger.info("=======================================")


class InventoryWriter(BaseDeviceListener):
    """Listener that keeps the inventory file in step with discovery."""

    lp = "InventoryWriter:"

    def __init__(
        self,
        source: Any,
        path: str | Path,
        delay: float = LARES_INVENTORY_DELAY,
    ) -> None:
        # anything with a devices() -> list[Device]
        self.source = source
        self.path = Path(path)
        self.delay = delay
        self._handle: asyncio.TimerHandle | None = None
        self.last_inventory: dict[str, Any] | None = None

    @property
    def is_pending(self) -> bool:
        return self._handle is not None

    @override
    def on_device_discovered(self, device: Device) -> None:
        self.schedule()

    def schedule(self) -> None:
        """(Re)start the debounce timer."""
        if self._handle is not None:
            self._handle.cancel()
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.delay, self.flush)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def flush(self) -> None:
        lp = f"{self.lp}flush:"
        self._handle = None
        devices = self.source.devices()
        try:
            self.last_inventory = write_inventory(devices, self.path)
        except OSError as e:
            logger.error("%s Cannot write %s: %s", lp, self.path, e)
            return
        logger.debug("%s Saved %d devices to %s", lp, len(devices), self.path)
        log_summary(self.last_inventory)
