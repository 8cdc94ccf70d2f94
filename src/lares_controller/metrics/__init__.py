"""Metrics module."""

from . import registry
from .registry import (
    record_authentication,
    record_connection_state,
    record_decode_error,
    record_device_discovered,
    record_frame_recv,
    record_frame_sent,
    record_heartbeat,
    record_reconnection,
    record_status_delta,
    start_metrics_server,
)

__all__ = [
    "record_authentication",
    "record_connection_state",
    "record_decode_error",
    "record_device_discovered",
    "record_frame_recv",
    "record_frame_sent",
    "record_heartbeat",
    "record_reconnection",
    "record_status_delta",
    "registry",
    "start_metrics_server",
]
