"""Main entrypoint and lifecycle management for the Lares controller service."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import importlib
import logging
import signal
import sys
from pathlib import Path
from typing import TYPE_CHECKING

import dotenv
import uvloop

from lares_controller import config as config_module
from lares_controller import const
from lares_controller.client import LaresClient
from lares_controller.const import (
    CLIENT_START_TASK_NAME,
    LARES_CONFIG_FILE_PATH,
    LARES_DEBUG,
    LARES_VERSION,
    MQTT_BRIDGE_START_TASK_NAME,
)
from lares_controller.correlation import correlation_context
from lares_controller.exceptions import ConfigError
from lares_controller.inventory import InventoryWriter
from lares_controller.logging_abstraction import get_logger
from lares_controller.metrics import start_metrics_server
from lares_controller.mqtt import MqttBridge
from lares_controller.transport.exceptions import AuthenticationError

if TYPE_CHECKING:
    from collections.abc import Sequence

logger = get_logger(__name__)

# Suppress verbose MQTT library warnings
mqtt_logger = logging.getLogger("mqtt")
mqtt_logger.setLevel(logging.ERROR)
mqtt_logger.propagate = False


class LaresController:
    """Runs the panel client plus the optional MQTT bridge, inventory and metrics."""

    lp: str = "LaresController:"

    def __init__(self, config: config_module.ControllerConfig) -> None:
        self.config = config
        self.client = LaresClient(config)
        self.bridge: MqttBridge | None = None
        self.inventory: InventoryWriter | None = None
        self.tasks: list[asyncio.Task[None]] = []
        self._stop_event = asyncio.Event()

    def request_stop(self) -> None:
        logger.info("%s Stop requested", self.lp)
        self._stop_event.set()

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(signum, self.request_stop)
        logger.debug("Signal handlers configured for SIGINT & SIGTERM")

    async def run(self) -> None:
        """Start every service, wait for a stop request, then shut down."""
        lp = f"{self.lp}run:"
        self._install_signal_handlers()

        if self.config.devices_file:
            self.inventory = InventoryWriter(self.client, self.config.devices_file)
            self.client.subscribe(self.inventory)
            logger.info("%s Device inventory will be written", lp, extra={"path": self.config.devices_file})

        if self.config.metrics_port > 0:
            start_metrics_server(self.config.metrics_port)

        if self.config.mqtt.enabled:
            self.bridge = MqttBridge(self.config.mqtt, self.client)
            self.client.subscribe(self.bridge)
            self.tasks.append(asyncio.create_task(self.bridge.start(), name=MQTT_BRIDGE_START_TASK_NAME))
            logger.info("%s Starting MQTT bridge...", lp, extra={"broker": self.config.mqtt.host})

        start_task = asyncio.create_task(self.client.start(), name=CLIENT_START_TASK_NAME)
        try:
            await start_task
        except AuthenticationError as e:
            logger.error(
                "%s Panel rejected the PIN, not retrying",
                lp,
                extra={"result": e.result, "action_required": "check panel.pin"},
            )
            await self.stop()
            raise

        try:
            await self._stop_event.wait()
        finally:
            await self.stop()

    async def stop(self) -> None:
        """Stop the MQTT bridge and inventory timer, then close the panel session."""
        logger.info("%s Shutting down Lares controller...", self.lp)
        if self.inventory is not None:
            self.inventory.cancel()
        if self.bridge is not None:
            await self.bridge.stop()
        for task in self.tasks:
            if not task.done():
                logger.debug("%s Cancelling task: %s", self.lp, task.get_name())
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        self.tasks.clear()
        await self.client.stop()


def parse_cli(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for the controller process."""
    parser = argparse.ArgumentParser(description="Lares4 controller")
    _ = parser.add_argument(
        "-c",
        "--config",
        help="Path to the YAML configuration file",
        default=LARES_CONFIG_FILE_PATH,
        type=Path,
    )
    _ = parser.add_argument(
        "-D",
        "--debug",
        action="store_true",
        help="Enable debug mode",
    )
    _ = parser.add_argument("--env", help="Path to the environment file", default=None, type=Path)
    return parser.parse_args(argv)


def _enable_debug(reason: str) -> None:
    # every module logger carries its own level and handlers
    for name, item in logging.root.manager.loggerDict.items():
        if name.startswith(const.LARES_LOG_NAME) and isinstance(item, logging.Logger):
            item.setLevel(logging.DEBUG)
            for handler in item.handlers:
                handler.setLevel(logging.DEBUG)
    logger.info("Debug mode enabled via %s", reason)


def load_env_file(env_file: Path) -> bool:
    """Load ``KEY=value`` lines into the environment; False if nothing was loaded."""
    env_path = env_file.expanduser().resolve()
    if not env_path.exists():
        logger.error("Environment file not found", extra={"path": str(env_path)})
        return False
    loaded_any = dotenv.load_dotenv(env_path, override=True)
    if loaded_any:
        logger.info("Environment variables loaded", extra={"source": str(env_path)})
    else:
        logger.warning("No environment variables loaded from file", extra={"path": str(env_path)})
    return loaded_any


def main(argv: Sequence[str] | None = None) -> int:
    """Run the Lares controller entry point."""
    with correlation_context():
        logger.info("Starting Lares controller", extra={"version": LARES_VERSION})
        args = parse_cli(argv)
        if args.debug:
            _enable_debug("CLI argument")
        elif LARES_DEBUG:
            _enable_debug("configuration")

        if args.env:
            if not load_env_file(args.env):
                return 1
            # settings defaults are read from the environment at import time
            importlib.reload(const)
            importlib.reload(config_module)

        try:
            config = config_module.load_config(args.config.expanduser())
        except ConfigError as e:
            logger.error("Invalid configuration", extra={"source": e.source, "error": str(e)})
            return 2

        loop = uvloop.new_event_loop()
        asyncio.set_event_loop(loop)
        controller = LaresController(config)
        exit_code = 0
        try:
            loop.run_until_complete(controller.run())
        except AuthenticationError:
            exit_code = 3
        except (asyncio.CancelledError, KeyboardInterrupt):
            logger.info("Lares controller interrupted, shutting down...")
        except Exception as e:
            logger.exception("Fatal error in main loop", extra={"error": str(e)})
            exit_code = 1
        else:
            logger.info("Lares controller stopped gracefully")
        finally:
            loop.close()
            logger.info("Lares controller shutdown complete")
        return exit_code


if __name__ == "__main__":
    sys.exit(main())
