"""Controller configuration.

Values come from a YAML file when one exists; anything the file leaves out
falls back to the ``LARES_*`` environment constants in :mod:`lares_controller.const`.
Example file::

    panel:
      host: 192.168.1.50
      pin: "123456"
      use_tls: true
    filters:
      exclude_zones: [3, 7]
      custom_names:
        outputs: {"12": "Porch light"}
    mqtt:
      enabled: true
      host: broker.local
"""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
from typing import Any, cast

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from lares_controller.const import (
    LARES_CONNECT_TIMEOUT,
    LARES_DEVICES_FILE_PATH,
    LARES_HEARTBEAT_INTERVAL_MS,
    LARES_HOST,
    LARES_LOGIN_TIMEOUT,
    LARES_MAX_RECONNECT_DELAY_MS,
    LARES_METRICS_PORT,
    LARES_MQTT_CONN_DELAY,
    LARES_MQTT_ENABLED,
    LARES_MQTT_HOST,
    LARES_MQTT_PASS,
    LARES_MQTT_PORT,
    LARES_MQTT_QOS,
    LARES_MQTT_TOPIC_PREFIX,
    LARES_MQTT_USER,
    LARES_PIN,
    LARES_PORT,
    LARES_RECONNECT_INTERVAL_MS,
    LARES_SENDER,
    LARES_USE_TLS,
)
from lares_controller.exceptions import ConfigError
from lares_controller.logging_abstraction import get_logger
from lares_controller.transport.websocket import panel_url

logger = get_logger(__name__)


def _as_id_list(value: object) -> list[str]:
    if value is None:
        return []
    if isinstance(value, (str, int)):
        value = [value]
    return [str(item) for item in cast("list[object]", value)]


def _as_name_map(value: object) -> dict[str, str]:
    if not value:
        return {}
    return {str(key): str(name) for key, name in cast("Mapping[object, object]", value).items()}


class PanelConfig(BaseModel):
    """Where the panel is and how to log in."""

    host: str = LARES_HOST
    port: int | None = LARES_PORT
    use_tls: bool = LARES_USE_TLS
    pin: str = Field(default=LARES_PIN, repr=False)
    sender: str = LARES_SENDER
    connect_timeout: float = Field(default=LARES_CONNECT_TIMEOUT, gt=0)
    login_timeout: float = Field(default=LARES_LOGIN_TIMEOUT, gt=0)
    # Panels in the field have been seen with stale CRC_16 values on pushes
    verify_inbound_checksum: bool = False

    @field_validator("pin", mode="before")
    @classmethod
    def _pin_as_text(cls, value: object) -> object:
        return str(value) if isinstance(value, int) else value

    @property
    def resolved_port(self) -> int:
        if self.port:
            return self.port
        return 443 if self.use_tls else 80

    @property
    def url(self) -> str:
        return panel_url(self.host, self.resolved_port, self.use_tls)


class ReconnectConfig(BaseModel):
    base_delay_ms: int = Field(default=LARES_RECONNECT_INTERVAL_MS, gt=0)
    max_delay_ms: int = Field(default=LARES_MAX_RECONNECT_DELAY_MS, gt=0)
    jitter_factor: float = Field(default=0.1, ge=0, lt=1)


class HeartbeatConfig(BaseModel):
    interval_ms: int = Field(default=LARES_HEARTBEAT_INTERVAL_MS, gt=0)


class CustomNames(BaseModel):
    """Display names keyed by the panel's native id."""

    zones: dict[str, str] = Field(default_factory=dict)
    outputs: dict[str, str] = Field(default_factory=dict)
    sensors: dict[str, str] = Field(default_factory=dict)
    scenarios: dict[str, str] = Field(default_factory=dict)

    @field_validator("zones", "outputs", "sensors", "scenarios", mode="before")
    @classmethod
    def _names(cls, value: object) -> dict[str, str]:
        return _as_name_map(value)


class FilterConfig(BaseModel):
    exclude_zones: list[str] = Field(default_factory=list)
    exclude_outputs: list[str] = Field(default_factory=list)
    exclude_sensors: list[str] = Field(default_factory=list)
    exclude_scenarios: list[str] = Field(default_factory=list)
    custom_names: CustomNames = Field(default_factory=CustomNames)

    @field_validator("exclude_zones", "exclude_outputs", "exclude_sensors", "exclude_scenarios", mode="before")
    @classmethod
    def _ids(cls, value: object) -> list[str]:
        return _as_id_list(value)


class MqttConfig(BaseModel):
    enabled: bool = LARES_MQTT_ENABLED
    host: str = LARES_MQTT_HOST
    port: int = LARES_MQTT_PORT
    username: str | None = LARES_MQTT_USER
    password: str | None = Field(default=LARES_MQTT_PASS, repr=False)
    client_id: str = "lares4-bridge"
    topic_prefix: str = LARES_MQTT_TOPIC_PREFIX
    qos: int = Field(default=LARES_MQTT_QOS, ge=0, le=2)
    retain: bool = True
    reconnect_delay: float = Field(default=LARES_MQTT_CONN_DELAY, gt=0)


class ControllerConfig(BaseModel):
    """Root of the configuration file."""

    panel: PanelConfig = Field(default_factory=PanelConfig)
    reconnect: ReconnectConfig = Field(default_factory=ReconnectConfig)
    heartbeat: HeartbeatConfig = Field(default_factory=HeartbeatConfig)
    filters: FilterConfig = Field(default_factory=FilterConfig)
    mqtt: MqttConfig = Field(default_factory=MqttConfig)
    devices_file: str | None = LARES_DEVICES_FILE_PATH
    metrics_port: int = LARES_METRICS_PORT

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], source: str = "") -> ControllerConfig:
        """Validate a parsed mapping.

        Raises:
            ConfigError: Invalid values, or no panel host/PIN anywhere

        """
        try:
            config = cls.model_validate(dict(data))
        except ValidationError as e:
            raise ConfigError(str(e), source) from e
        if not config.panel.host:
            raise ConfigError("panel host is required (panel.host or LARES_HOST)", source)
        if not config.panel.pin:
            raise ConfigError("panel PIN is required (panel.pin or LARES_PIN)", source)
        return config


def load_config(path: str | Path | None = None) -> ControllerConfig:
    """Read and validate the YAML configuration.

    A missing file is not an error: the environment alone may be enough.

    Raises:
        ConfigError: File unreadable, not YAML, or fails validation

    """
    data: Mapping[str, Any] = {}
    source = str(path) if path else "environment"
    if path is not None:
        config_file = Path(path)
        if config_file.exists():
            logger.debug("Parsing config file: %s", config_file)
            try:
                with config_file.open() as f:
                    raw_config_obj = yaml.safe_load(f)
            except (OSError, yaml.YAMLError) as e:
                raise ConfigError(f"cannot read config file: {e}", source) from e
            if raw_config_obj is None:
                raw_config_obj = {}
            if not isinstance(raw_config_obj, Mapping):
                raise ConfigError("expected a mapping at the root", source)
            data = cast("Mapping[str, Any]", raw_config_obj)
        else:
            logger.info("Config file %s not found, using environment only", config_file)
    return ControllerConfig.from_mapping(data, source)
