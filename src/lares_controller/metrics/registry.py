"""Prometheus metrics registry for the panel connection."""

import threading
from typing import Final

from prometheus_client import (  # type: ignore[import-untyped]
    Counter,
    Gauge,
    start_http_server,
)

CONNECTION_STATES: Final = ("disconnected", "connecting", "authenticating", "ready")

lares_frames_sent_total: Final = Counter(  # type: ignore[assignment]
    "lares_frames_sent_total",
    "Total frames sent to the panel",
    ["command", "outcome"],
)

lares_frames_recv_total: Final = Counter(  # type: ignore[assignment]
    "lares_frames_recv_total",
    "Total frames received from the panel",
    ["command", "outcome"],
)

lares_decode_errors_total: Final = Counter(  # type: ignore[assignment]
    "lares_decode_errors_total",
    "Total inbound frames dropped because they failed to decode",
    ["reason"],
)

lares_connection_state: Final = Gauge(  # type: ignore[assignment]
    "lares_connection_state",
    "Current connection state",
    ["state"],
)

lares_authentication_total: Final = Counter(  # type: ignore[assignment]
    "lares_authentication_total",
    "Total login attempts",
    ["outcome"],
)

lares_reconnection_total: Final = Counter(  # type: ignore[assignment]
    "lares_reconnection_total",
    "Total reconnections scheduled",
    ["reason"],
)

lares_heartbeat_total: Final = Counter(  # type: ignore[assignment]
    "lares_heartbeat_total",
    "Total liveness probes",
    ["outcome"],
)

lares_devices_discovered_total: Final = Counter(  # type: ignore[assignment]
    "lares_devices_discovered_total",
    "Total devices created or replaced by discovery",
    ["kind"],
)

lares_status_deltas_total: Final = Counter(  # type: ignore[assignment]
    "lares_status_deltas_total",
    "Total status delta records",
    ["kind", "outcome"],
)

_server_state = {"started": False}
_server_lock = threading.Lock()


def start_metrics_server(port: int = 9400) -> None:
    """Start Prometheus HTTP metrics server (idempotent)."""
    with _server_lock:
        if not _server_state["started"]:
            start_http_server(port)  # type: ignore[no-untyped-call]
            _server_state["started"] = True


def record_frame_sent(command: str, outcome: str) -> None:
    """Record a sent frame."""
    lares_frames_sent_total.labels(command=command, outcome=outcome).inc()  # type: ignore[no-untyped-call]


def record_frame_recv(command: str, outcome: str) -> None:
    """Record a received frame."""
    lares_frames_recv_total.labels(command=command, outcome=outcome).inc()  # type: ignore[no-untyped-call]


def record_decode_error(reason: str) -> None:
    """Record a dropped frame."""
    lares_decode_errors_total.labels(reason=reason).inc()  # type: ignore[no-untyped-call]


def record_connection_state(state: str) -> None:
    """Record connection state change."""
    # Set gauge to 1 for current state, 0 for all others
    for s in CONNECTION_STATES:
        value = 1 if s == state else 0
        lares_connection_state.labels(state=s).set(value)  # type: ignore[no-untyped-call]


def record_authentication(outcome: str) -> None:
    """Record a login outcome."""
    lares_authentication_total.labels(outcome=outcome).inc()  # type: ignore[no-untyped-call]


def record_reconnection(reason: str) -> None:
    """Record a scheduled reconnection."""
    lares_reconnection_total.labels(reason=reason).inc()  # type: ignore[no-untyped-call]


def record_heartbeat(outcome: str) -> None:
    """Record a heartbeat outcome."""
    lares_heartbeat_total.labels(outcome=outcome).inc()  # type: ignore[no-untyped-call]


def record_device_discovered(kind: str) -> None:
    lares_devices_discovered_total.labels(kind=kind).inc()  # type: ignore[no-untyped-call]


def record_status_delta(kind: str, outcome: str) -> None:
    """Record a status delta as ``applied`` or ``ignored``."""
    lares_status_deltas_total.labels(kind=kind, outcome=outcome).inc()  # type: ignore[no-untyped-call]
