"""MQTT bridge for device state and commands."""

from .bridge import MqttBridge, state_payload

__all__ = ["MqttBridge", "state_payload"]
