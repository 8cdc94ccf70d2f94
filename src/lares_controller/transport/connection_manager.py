"""Connection management with state machine, login, and frame routing.

One ConnectionManager owns one panel session at a time:

    DISCONNECTED -> CONNECTING -> AUTHENTICATING -> READY -> DISCONNECTED

Any transport failure drops the session back to DISCONNECTED and hands off to
the :class:`ReconnectScheduler`. A rejected PIN also ends in DISCONNECTED but
schedules nothing. Session data (login id, socket, heartbeat) never survives
a reconnect.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Callable
from enum import Enum
from typing import TYPE_CHECKING

from lares_controller.commands import CommandBuilder, CommandDispatcher, PanelCommand, SessionCredentials
from lares_controller.const import (
    CMD_LOGIN_RES,
    CMD_PING,
    CMD_READ_RES,
    CMD_REALTIME,
    CMD_REALTIME_RES,
    CMD_STATUS_UPDATE,
)
from lares_controller.correlation import correlation_context
from lares_controller.devices.registry import RecordKind
from lares_controller.exceptions import CommandPreconditionError, LaresError
from lares_controller.logging_abstraction import get_logger, mask_sensitive_data
from lares_controller.metrics import registry as metrics
from lares_controller.protocol.codec import decode_envelope
from lares_controller.protocol.exceptions import ProtocolParseError
from lares_controller.protocol.payloads import (
    ChangesPayload,
    LoginResult,
    MultiTypesInventory,
    StatusSnapshot,
    ZonesInventory,
)
from lares_controller.transport.exceptions import (
    AuthenticationError,
    HeartbeatTimeoutError,
    NotConnectedError,
    TransportError,
)
from lares_controller.transport.heartbeat import HeartbeatMonitor
from lares_controller.transport.retry_policy import ReconnectScheduler, RetryPolicy, TimeoutConfig
from lares_controller.transport.websocket import FrameKind, PanelSocket, PanelWebSocket, build_ssl_context

if TYPE_CHECKING:
    from lares_controller.config import PanelConfig
    from lares_controller.devices.registry import DeviceRegistry
    from lares_controller.events import EventBus
    from lares_controller.protocol.envelope import Envelope

logger = get_logger(__name__)

SocketFactory = Callable[[], PanelSocket]


class ConnectionState(Enum):
    """Connection state enumeration."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AUTHENTICATING = "authenticating"
    READY = "ready"


class ConnectionManager:
    """Owns the socket, the login handshake and inbound routing.

    **Thread Safety**: state transitions happen under ``_state_lock``
    (asyncio.Lock) so the receive loop, the heartbeat task and a reconnect
    timer cannot tear the same session down twice.

    **Inbound routing** by CMD:
    - LOGIN_RES: completes the pending login
    - READ_RES: inventory goes to discovery, STATUS_* to status deltas
    - REALTIME / REALTIME_RES / STATUS_UPDATE: status deltas only
    - PING: ignored, liveness is judged from transport pongs
    """

    lp = "ConnectionManager:"

    def __init__(
        self,
        config: PanelConfig,
        registry: DeviceRegistry,
        events: EventBus,
        *,
        timeouts: TimeoutConfig | None = None,
        retry_policy: RetryPolicy | None = None,
        socket_factory: SocketFactory | None = None,
    ) -> None:
        self.config = config
        self.registry = registry
        self.events = events
        self.timeouts: TimeoutConfig = timeouts or TimeoutConfig(
            connect_timeout=config.connect_timeout,
            login_timeout=config.login_timeout,
        )
        self._socket_factory: SocketFactory = socket_factory or self._default_socket
        self.state: ConnectionState = ConnectionState.DISCONNECTED
        self._state_lock: asyncio.Lock = asyncio.Lock()
        self.dispatcher = CommandDispatcher(config.sender)
        self.scheduler = ReconnectScheduler(self.connect, retry_policy)
        self.heartbeat = HeartbeatMonitor(
            self.timeouts.heartbeat_interval,
            self._send_probe,
            self._on_heartbeat_timeout,
        )
        self.login_id: str | None = None
        self._socket: PanelSocket | None = None
        self._receive_task: asyncio.Task[None] | None = None
        self._login_future: asyncio.Future[LoginResult] | None = None
        self._closing = False
        self._auth_failed = False
        self._connected_emitted = False
        self._routes: dict[str, Callable[[Envelope], None]] = {
            CMD_LOGIN_RES: self._on_login_response,
            CMD_READ_RES: self._on_read_response,
            CMD_REALTIME: self._on_status_frame,
            CMD_REALTIME_RES: self._on_status_frame,
            CMD_STATUS_UPDATE: self._on_status_frame,
            CMD_PING: self._on_ping,
        }

    def _default_socket(self) -> PanelSocket:
        ssl_context = build_ssl_context() if self.config.use_tls else None
        return PanelWebSocket(self.config.url, ssl_context, self.timeouts.connect_timeout)

    @property
    def is_ready(self) -> bool:
        return self.state == ConnectionState.READY

    @property
    def credentials(self) -> SessionCredentials:
        return SessionCredentials(login_id=self.login_id, pin=self.config.pin)

    async def _set_state(self, state: ConnectionState) -> None:
        async with self._state_lock:
            self.state = state
            metrics.record_connection_state(state.value)
        logger.debug("%s state -> %s", self.lp, state.value)

    # -- lifecycle -------------------------------------------------------

    async def connect(self) -> None:
        """Open the socket, log in, and run the discovery sweep.

        Transport failures schedule a retry before they propagate, so callers
        may treat :class:`TransportError` as informational.

        Raises:
            TransportError: Socket could not be opened, or login timed out
            AuthenticationError: Panel rejected the PIN; no retry is scheduled

        """
        with correlation_context() as session_id:
            await self._connect(session_id)

    async def _connect(self, session_id: str) -> None:
        lp = f"{self.lp}connect:"
        async with self._state_lock:
            if self.state != ConnectionState.DISCONNECTED:
                logger.debug("%s already %s, ignoring", lp, self.state.value)
                return
            self.state = ConnectionState.CONNECTING
            metrics.record_connection_state(self.state.value)
        self._closing = False
        self._auth_failed = False
        self.scheduler.cancel()
        logger.info(
            "%s → Connecting to panel",
            lp,
            extra={"url": self.config.url, "session_id": session_id},
        )

        socket = self._socket_factory()
        try:
            await socket.open()
        except TransportError as e:
            await self._set_state(ConnectionState.DISCONNECTED)
            logger.warning("%s ✗ Socket open failed: %s", lp, e.reason)
            if not self._closing:
                self.scheduler.schedule_retry("open_failed")
            raise
        if self._closing:
            await socket.close()
            await self._set_state(ConnectionState.DISCONNECTED)
            raise TransportError("client_stopped", ConnectionState.CONNECTING.value)

        self._socket = socket
        self.dispatcher.attach(socket)
        self._login_future = asyncio.get_running_loop().create_future()
        self._receive_task = asyncio.create_task(self._receive_loop(socket), name="lares_receive")
        await self._set_state(ConnectionState.AUTHENTICATING)

        result = await self._login()
        if not result.accepted:
            self._auth_failed = True
            metrics.record_authentication("rejected")
            error = AuthenticationError(result.result, result.detail)
            logger.error("%s ✗ %s", lp, error, extra={"result": result.result, "detail": result.detail})
            await self._handle_connection_lost("auth_failed")
            raise error

        async with self._state_lock:
            if self.state != ConnectionState.AUTHENTICATING or self._socket is not socket:
                logger.warning("%s ✗ Session closed right after login", lp)
                raise TransportError("socket_closed", ConnectionState.AUTHENTICATING.value)
            self.login_id = result.login_id
            self.state = ConnectionState.READY
            metrics.record_connection_state(self.state.value)
        metrics.record_authentication("success")
        self.scheduler.reset()
        self.heartbeat.start()
        logger.info("%s ✓ Logged in", lp, extra={"session_id": session_id})
        self._connected_emitted = True
        self.events.emit_connected()
        await self._run_discovery_sweep()

    async def _login(self) -> LoginResult:
        lp = f"{self.lp}login:"
        future = self._login_future
        if future is None:
            raise TransportError("socket_closed", ConnectionState.AUTHENTICATING.value)
        try:
            await self.dispatcher.send_login(self.config.pin)
            return await asyncio.wait_for(future, timeout=self.timeouts.login_timeout)
        except TimeoutError as e:
            metrics.record_authentication("timeout")
            logger.warning("%s No LOGIN_RES within %.1fs", lp, self.timeouts.login_timeout)
            await self._handle_connection_lost("login_timeout", force=True)
            raise TransportError("login_timeout", ConnectionState.AUTHENTICATING.value) from e
        except NotConnectedError as e:
            await self._handle_connection_lost("socket_closed", force=True)
            raise TransportError("socket_closed", ConnectionState.AUTHENTICATING.value) from e
        except TransportError as e:
            await self._handle_connection_lost(e.reason, force=True)
            raise

    async def _run_discovery_sweep(self) -> None:
        lp = f"{self.lp}discovery:"
        for command in CommandBuilder.discovery_sweep():
            try:
                await self.execute(command)
            except LaresError as e:
                # connection loss already scheduled the retry that will sweep again
                logger.warning("%s Sweep interrupted at %s: %s", lp, command.payload_type, e)
                return
        logger.debug("%s sweep requests sent", lp)

    async def disconnect(self) -> None:
        """Close the session on purpose; cancels pending timers, never reconnects."""
        logger.info("%s Disconnecting...", self.lp)
        self._closing = True
        self.scheduler.cancel()
        receive_task = self._receive_task
        await self._handle_connection_lost("client_stopped")
        await self.heartbeat.wait_stopped()
        if receive_task is not None and receive_task is not asyncio.current_task():
            with contextlib.suppress(asyncio.CancelledError):
                await receive_task

    async def _handle_connection_lost(
        self,
        reason: str,
        *,
        force: bool = False,
        socket: PanelSocket | None = None,
    ) -> None:
        """Tear down the current session once; later calls are no-ops.

        Args:
            reason: Why the session ended, used for logs and metrics
            force: Drop the socket without a close handshake
            socket: Socket the caller was serving; ignored if it is stale

        """
        lp = f"{self.lp}connection_lost:"
        async with self._state_lock:
            if socket is not None and socket is not self._socket:
                return
            if self.state == ConnectionState.DISCONNECTED:
                return
            previous = self.state
            self.state = ConnectionState.DISCONNECTED
            metrics.record_connection_state(self.state.value)

        logger.info("%s %s -> disconnected (%s)", lp, previous.value, reason, extra={"reason": reason})
        current, self._socket = self._socket, None
        self.heartbeat.stop()
        self.login_id = None
        self.dispatcher.detach()

        future, self._login_future = self._login_future, None
        if future is not None and not future.done():
            future.set_exception(TransportError(reason, previous.value))

        receive_task, self._receive_task = self._receive_task, None
        if receive_task is not None and receive_task is not asyncio.current_task() and not receive_task.done():
            receive_task.cancel()

        if current is not None:
            if force:
                await current.terminate()
            else:
                await current.close()

        if self._connected_emitted:
            self._connected_emitted = False
            self.events.emit_disconnected()

        if not self._closing and not self._auth_failed:
            self.scheduler.schedule_retry(reason)

    # -- liveness --------------------------------------------------------

    async def _send_probe(self) -> None:
        socket = self._socket
        if socket is None:
            raise TransportError("socket_closed", self.state.value)
        await socket.ping()

    async def _on_heartbeat_timeout(self, silence: float) -> None:
        error = HeartbeatTimeoutError(silence, self.state.value)
        logger.warning("%s %s, forcing reconnect", self.lp, error)
        await self._handle_connection_lost("heartbeat_timeout", force=True)

    # -- inbound ---------------------------------------------------------

    async def _receive_loop(self, socket: PanelSocket) -> None:
        lp = f"{self.lp}receive:"
        reason = "socket_closed"
        try:
            while True:
                event = await socket.receive()
                if event.kind is FrameKind.PONG:
                    self.heartbeat.record_response()
                    continue
                if event.kind is FrameKind.CLOSED:
                    reason = event.data or reason
                    break
                try:
                    self._process_frame(event.data)
                except Exception as e:
                    # one bad frame must not take the session down
                    logger.exception(
                        "%s Error handling frame",
                        lp,
                        extra={"error": str(e), "error_type": type(e).__name__},
                    )
        except asyncio.CancelledError:
            logger.debug("%s cancelled", lp)
            raise
        except TransportError as e:
            reason = e.reason
        logger.debug("%s loop ended: %s", lp, reason)
        await self._handle_connection_lost(reason, socket=socket)

    def _process_frame(self, text: str) -> None:
        lp = f"{self.lp}process_frame:"
        try:
            envelope = decode_envelope(text, verify=self.config.verify_inbound_checksum)
        except ProtocolParseError as e:
            metrics.record_decode_error(e.reason)
            metrics.record_frame_recv("unknown", "dropped")
            logger.warning(
                "%s Dropping frame: %s",
                lp,
                e.reason,
                extra={"reason": e.reason, "preview": e.data_preview},
            )
            return

        metrics.record_frame_recv(envelope.command, "success")
        if envelope.is_heartbeat or envelope.command == CMD_REALTIME:
            logger.debug("%s < %s", lp, mask_sensitive_data(text))
        else:
            logger.info(
                "%s < %s/%s id=%s",
                lp,
                envelope.command,
                envelope.payload_type,
                envelope.message_id,
                extra={"command": envelope.command, "payload_type": envelope.payload_type},
            )

        handler = self._routes.get(envelope.command)
        if handler is None:
            logger.debug("%s No handler for %s", lp, envelope.command)
            return
        handler(envelope)

    def _on_login_response(self, envelope: Envelope) -> None:
        future = self._login_future
        if not isinstance(envelope.body, LoginResult):
            return
        if future is None or future.done():
            logger.debug("%s Unsolicited LOGIN_RES ignored", self.lp)
            return
        future.set_result(envelope.body)

    def _on_read_response(self, envelope: Envelope) -> None:
        body = envelope.body
        if isinstance(body, ZonesInventory):
            logger.info("%s Found %d zones", self.lp, len(body.zones))
            for record in body.zones:
                self.registry.apply_discovery(RecordKind.ZONE, record)
        elif isinstance(body, MultiTypesInventory):
            logger.info(
                "%s Found %d outputs, %d scenarios, %d sensors",
                self.lp,
                len(body.outputs),
                len(body.scenarios),
                len(body.bus_sensors),
            )
            for record in body.outputs:
                self.registry.apply_discovery(RecordKind.OUTPUT, record)
            for record in body.scenarios:
                self.registry.apply_discovery(RecordKind.SCENARIO, record)
            for record in body.bus_sensors:
                self.registry.apply_discovery(RecordKind.BUS_SENSOR, record)
        elif isinstance(body, StatusSnapshot):
            self._apply_snapshot(body)
        else:
            logger.debug("%s READ_RES %s not handled", self.lp, envelope.payload_type)

    def _on_status_frame(self, envelope: Envelope) -> None:
        body = envelope.body
        if isinstance(body, ChangesPayload):
            for snapshot in body.snapshots:
                self._apply_snapshot(snapshot)
        elif isinstance(body, StatusSnapshot):
            self._apply_snapshot(body)
        else:
            logger.debug("%s %s/%s carries no status", self.lp, envelope.command, envelope.payload_type)

    def _apply_snapshot(self, snapshot: StatusSnapshot) -> None:
        for record in snapshot.outputs:
            self.registry.apply_status_delta(RecordKind.OUTPUT, record)
        for record in snapshot.bus_sensors:
            self.registry.apply_status_delta(RecordKind.BUS_SENSOR, record)
        for record in snapshot.zones:
            self.registry.apply_status_delta(RecordKind.ZONE, record)
        for record in snapshot.system:
            self.registry.apply_status_delta(RecordKind.SYSTEM, record)

    def _on_ping(self, envelope: Envelope) -> None:
        logger.debug("%s PING %s ignored", self.lp, envelope.message_id)

    # -- outbound --------------------------------------------------------

    async def execute(self, command: PanelCommand) -> Envelope:
        """Send a command bound to the live session.

        Raises:
            CommandPreconditionError: Not logged in
            NotConnectedError: Socket not open
            TransportError: Write failed

        """
        if self.state != ConnectionState.READY:
            raise CommandPreconditionError(f"not authenticated (state: {self.state.value})")
        return await self.dispatcher.dispatch(command, self.credentials)
