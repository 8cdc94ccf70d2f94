"""Outbound commands: typed construction, session finalization, dispatch.

Building a command and stamping it with session credentials are two separate
steps. :class:`CommandBuilder` produces a :class:`PanelCommand` from typed
arguments without knowing whether a session exists; :class:`SessionFinalizer`
injects the live ``ID_LOGIN`` (and the PIN where the panel wants it) just
before :class:`CommandDispatcher` writes the frame.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

from lares_controller.const import (
    CMD_LOGIN,
    CMD_READ,
    CMD_REALTIME,
    CMD_USR,
    CMD_WRITE,
    REALTIME_CATEGORIES,
)
from lares_controller.devices.mapping import cover_command, thermostat_mode_code
from lares_controller.exceptions import CommandPreconditionError
from lares_controller.logging_abstraction import get_logger, mask_sensitive_data
from lares_controller.metrics import registry as metrics
from lares_controller.protocol.codec import seal_envelope
from lares_controller.protocol.envelope import Envelope
from lares_controller.transport.exceptions import NotConnectedError, TransportError

if TYPE_CHECKING:
    from lares_controller.devices.models import ThermostatMode

logger = get_logger(__name__)

_LOGIN_PAYLOAD_TYPE = "UNKNOWN"
# Categories whose frames are too frequent to log at INFO
_QUIET_COMMANDS = frozenset({"PING", CMD_REALTIME})


class FrameSink(Protocol):
    """What the dispatcher needs from a socket."""

    @property
    def is_open(self) -> bool: ...

    async def send_text(self, text: str) -> None: ...


@dataclass(frozen=True, slots=True)
class PanelCommand:
    """A logical request, not yet bound to a session.

    Attributes:
        command: CMD value
        payload_type: PAYLOAD_TYPE value
        payload: Command-specific fields, without credentials
        include_login_id: Prepend ``ID_LOGIN`` when finalizing
        include_pin: Prepend ``PIN`` when finalizing

    """

    command: str
    payload_type: str
    payload: Mapping[str, Any] = field(default_factory=dict)
    include_login_id: bool = True
    include_pin: bool = False


@dataclass(frozen=True, slots=True)
class SessionCredentials:
    login_id: str | None
    pin: str | None


class CommandBuilder:
    """Typed constructors for every request this client sends."""

    @staticmethod
    def set_output(native_id: str, sta: str) -> PanelCommand:
        return PanelCommand(
            CMD_USR,
            "CMD_SET_OUTPUT",
            {"OUTPUT": {"ID": str(native_id), "STA": sta}},
            include_pin=True,
        )

    @classmethod
    def switch_light(cls, native_id: str, on: bool) -> PanelCommand:
        return cls.set_output(native_id, "ON" if on else "OFF")

    @classmethod
    def dim_light(cls, native_id: str, brightness: int) -> PanelCommand:
        return cls.set_output(native_id, str(int(brightness)))

    @classmethod
    def move_cover(cls, native_id: str, position: int) -> PanelCommand:
        """Full travel is sent as UP/DOWN, anything in between as a percentage."""
        return cls.set_output(native_id, cover_command(int(position)))

    @classmethod
    def pulse_gate(cls, native_id: str) -> PanelCommand:
        return cls.set_output(native_id, "ON")

    @staticmethod
    def trigger_scenario(native_id: str) -> PanelCommand:
        return PanelCommand(
            CMD_USR,
            "CMD_EXE_SCENARIO",
            {"SCENARIO": {"ID": str(native_id)}},
            include_pin=True,
        )

    @staticmethod
    def set_thermostat_mode(native_id: str, mode: ThermostatMode | str) -> PanelCommand:
        return PanelCommand(
            CMD_WRITE,
            "THERMOSTAT",
            {"ID_THERMOSTAT": str(native_id), "MODE": thermostat_mode_code(mode)},
        )

    @staticmethod
    def set_thermostat_target(native_id: str, temperature: float) -> PanelCommand:
        return PanelCommand(
            CMD_WRITE,
            "THERMOSTAT",
            {"ID_THERMOSTAT": str(native_id), "TARGET_TEMP": f"{temperature:g}"},
        )

    @staticmethod
    def read_zones() -> PanelCommand:
        return PanelCommand(CMD_READ, "ZONES", {"ID_ITEMS_RANGE": ["ALL", "ALL"]})

    @staticmethod
    def read_multi_types() -> PanelCommand:
        return PanelCommand(CMD_READ, "MULTI_TYPES", {"TYPES": ["OUTPUTS", "BUS_HAS", "SCENARIOS"]})

    @staticmethod
    def read_status(category: str) -> PanelCommand:
        return PanelCommand(CMD_READ, category)

    @staticmethod
    def register_realtime(categories: tuple[str, ...] = REALTIME_CATEGORIES) -> PanelCommand:
        return PanelCommand(CMD_REALTIME, "REGISTER", {"TYPES": list(categories)})

    @classmethod
    def discovery_sweep(cls) -> tuple[PanelCommand, ...]:
        """Requests issued after every successful login, in order.

        The panel only streams deltas for categories that were registered,
        so the realtime registration goes last, after the reads.
        """
        return (
            cls.read_zones(),
            cls.read_multi_types(),
            cls.read_status("STATUS_OUTPUTS"),
            cls.read_status("STATUS_BUS_HA_SENSORS"),
            cls.read_status("STATUS_SYSTEM"),
            cls.register_realtime(),
        )


class SessionFinalizer:
    """Bind a :class:`PanelCommand` to the live session."""

    @staticmethod
    def finalize(command: PanelCommand, credentials: SessionCredentials) -> dict[str, Any]:
        """Return the wire payload with credentials first, as the panel apps send them.

        Raises:
            CommandPreconditionError: The command needs a credential the
                session does not have yet

        """
        payload: dict[str, Any] = {}
        if command.include_login_id:
            if not credentials.login_id:
                raise CommandPreconditionError("not authenticated")
            payload["ID_LOGIN"] = credentials.login_id
        if command.include_pin:
            if not credentials.pin:
                raise CommandPreconditionError("no PIN configured")
            payload["PIN"] = credentials.pin
        payload.update(command.payload)
        return payload


class CommandDispatcher:
    """Single writer for outbound frames.

    Every frame, including LOGIN, goes through :meth:`send`, which holds a
    lock across encode and write so frames never interleave on the socket.
    """

    lp = "CommandDispatcher:"

    def __init__(self, sender: str) -> None:
        self.sender = sender
        self._socket: FrameSink | None = None
        self._write_lock = asyncio.Lock()

    def attach(self, socket: FrameSink) -> None:
        self._socket = socket

    def detach(self) -> None:
        self._socket = None

    @property
    def is_attached(self) -> bool:
        return self._socket is not None and self._socket.is_open

    async def send(self, command: str, payload_type: str, payload: Mapping[str, Any] | None = None) -> Envelope:
        """Encode and write one envelope; returns it with its checksum filled in.

        Raises:
            NotConnectedError: No open socket; never queued for later
            TransportError: The write itself failed

        """
        socket = self._socket
        if socket is None or not socket.is_open:
            metrics.record_frame_sent(command, "not_connected")
            raise NotConnectedError()

        envelope = Envelope(
            sender=self.sender,
            command=command,
            payload_type=payload_type,
            payload=dict(payload or {}),
        )
        async with self._write_lock:
            sealed, text = seal_envelope(envelope)
            try:
                await socket.send_text(text)
            except TransportError:
                metrics.record_frame_sent(command, "error")
                raise
        metrics.record_frame_sent(command, "success")
        self._log_frame(sealed, text)
        return sealed

    async def dispatch(self, command: PanelCommand, credentials: SessionCredentials) -> Envelope:
        """Finalize ``command`` for the current session and send it."""
        payload = SessionFinalizer.finalize(command, credentials)
        return await self.send(command.command, command.payload_type, payload)

    async def send_login(self, pin: str) -> Envelope:
        return await self.send(CMD_LOGIN, _LOGIN_PAYLOAD_TYPE, {"PIN": pin})

    def _log_frame(self, envelope: Envelope, text: str) -> None:
        lp = f"{self.lp}send:"
        quiet = envelope.command in _QUIET_COMMANDS and envelope.payload_type != "REGISTER"
        if envelope.is_heartbeat or quiet:
            logger.debug("%s > %s", lp, mask_sensitive_data(text))
            return
        logger.info(
            "%s > %s/%s id=%s",
            lp,
            envelope.command,
            envelope.payload_type,
            envelope.message_id,
            extra={"command": envelope.command, "payload_type": envelope.payload_type},
        )
        logger.debug("%s > %s", lp, mask_sensitive_data(text))
