import os

from lares_controller import __version__

__all__ = [
    "CHECKSUM_SENTINEL",
    "CLIENT_START_TASK_NAME",
    "CMD_LOGIN",
    "CMD_LOGIN_RES",
    "CMD_PING",
    "CMD_READ",
    "CMD_READ_RES",
    "CMD_REALTIME",
    "CMD_REALTIME_RES",
    "CMD_STATUS_UPDATE",
    "CMD_USR",
    "CMD_WRITE",
    "DEFAULT_PLAIN_PORT",
    "DEFAULT_TLS_PORT",
    "LARES_CONFIG_FILE_PATH",
    "LARES_CONNECT_TIMEOUT",
    "LARES_DEBUG",
    "LARES_DEVICES_FILE_PATH",
    "LARES_HEARTBEAT_INTERVAL_MS",
    "LARES_HOST",
    "LARES_INVENTORY_DELAY",
    "LARES_LOGIN_TIMEOUT",
    "LARES_LOG_FORMAT",
    "LARES_LOG_HUMAN_OUTPUT",
    "LARES_LOG_JSON_FILE",
    "LARES_LOG_NAME",
    "LARES_MAX_RECONNECT_DELAY_MS",
    "LARES_METRICS_PORT",
    "LARES_MQTT_CONN_DELAY",
    "LARES_MQTT_ENABLED",
    "LARES_MQTT_HOST",
    "LARES_MQTT_PASS",
    "LARES_MQTT_PORT",
    "LARES_MQTT_QOS",
    "LARES_MQTT_TOPIC_PREFIX",
    "LARES_MQTT_USER",
    "LARES_PIN",
    "LARES_PORT",
    "LARES_RECONNECT_INTERVAL_MS",
    "LARES_SENDER",
    "LARES_USE_TLS",
    "LARES_VERSION",
    "MQTT_BRIDGE_START_TASK_NAME",
    "PAYLOAD_TYPE_CHANGES",
    "PERSISTENT_BASE_DIR",
    "REALTIME_CATEGORIES",
    "TLS_CIPHERS",
    "WS_PATH",
    "WS_SUBPROTOCOL",
    "YES_ANSWER",
]

YES_ANSWER = ("true", "1", "yes", "y", "t", 1, "on", "o")
LARES_LOG_NAME: str = "lares_controller"
LARES_VERSION: str = __version__


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "")
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, "")
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


# Panel connection
LARES_HOST: str = os.environ.get("LARES_HOST", "")
LARES_USE_TLS: bool = os.environ.get("LARES_USE_TLS", "true").casefold() in YES_ANSWER
_port = _env_int("LARES_PORT", 0)
LARES_PORT: int | None = _port if _port > 0 else None
LARES_PIN: str = os.environ.get("LARES_PIN", "")
LARES_SENDER: str = os.environ.get("LARES_SENDER", "lares_controller")
LARES_CONNECT_TIMEOUT: float = _env_float("LARES_CONNECT_TIMEOUT", 10.0)
LARES_LOGIN_TIMEOUT: float = _env_float("LARES_LOGIN_TIMEOUT", 10.0)

# Liveness and reconnection, milliseconds like the panel tooling uses
LARES_RECONNECT_INTERVAL_MS: int = _env_int("LARES_RECONNECT_INTERVAL_MS", 5000)
LARES_MAX_RECONNECT_DELAY_MS: int = _env_int("LARES_MAX_RECONNECT_DELAY_MS", 60000)
LARES_HEARTBEAT_INTERVAL_MS: int = _env_int("LARES_HEARTBEAT_INTERVAL_MS", 30000)

LARES_DEBUG: bool = os.environ.get("LARES_DEBUG", "0").casefold() in YES_ANSWER

PERSISTENT_BASE_DIR: str = os.environ.get("LARES_PERSISTENT_BASE_DIR", "/data/lares-controller")
LARES_CONFIG_FILE_PATH: str = os.environ.get("LARES_CONFIG_FILE", f"{PERSISTENT_BASE_DIR}/lares.yaml")
LARES_DEVICES_FILE_PATH: str = os.environ.get("LARES_DEVICES_FILE", f"{PERSISTENT_BASE_DIR}/lares4-devices.json")
LARES_INVENTORY_DELAY: float = _env_float("LARES_INVENTORY_DELAY", 2.0)

# MQTT bridge
LARES_MQTT_ENABLED: bool = os.environ.get("LARES_MQTT_ENABLED", "false").casefold() in YES_ANSWER
LARES_MQTT_HOST: str = os.environ.get("LARES_MQTT_HOST", "localhost")
LARES_MQTT_PORT: int = _env_int("LARES_MQTT_PORT", 1883)
LARES_MQTT_USER: str | None = os.environ.get("LARES_MQTT_USER") or None
LARES_MQTT_PASS: str | None = os.environ.get("LARES_MQTT_PASS") or None
LARES_MQTT_TOPIC_PREFIX: str = os.environ.get("LARES_MQTT_TOPIC_PREFIX", "lares4")
LARES_MQTT_QOS: int = _env_int("LARES_MQTT_QOS", 1)
LARES_MQTT_CONN_DELAY: int = _env_int("LARES_MQTT_CONN_DELAY", 5)

LARES_METRICS_PORT: int = _env_int("LARES_METRICS_PORT", 0)

# Logging Configuration
LARES_LOG_FORMAT: str = os.environ.get("LARES_LOG_FORMAT", "human")  # "json", "human", or "both"
LARES_LOG_JSON_FILE: str = os.environ.get("LARES_LOG_JSON_FILE", "")
LARES_LOG_HUMAN_OUTPUT: str = os.environ.get("LARES_LOG_HUMAN_OUTPUT", "stdout")  # "stdout", "stderr", or file path

CLIENT_START_TASK_NAME = "LaresClient_START"
MQTT_BRIDGE_START_TASK_NAME = "MqttBridge_START"

# Wire protocol
WS_PATH = "/KseniaWsock/"
WS_SUBPROTOCOL = "KS_WSOCK"
DEFAULT_TLS_PORT = 443
DEFAULT_PLAIN_PORT = 80
# older panel firmware only negotiates legacy suites
TLS_CIPHERS = "ALL:!aNULL:!eNULL:!EXPORT:!DES:!RC4:!MD5:!PSK:!SRP:!CAMELLIA"
CHECKSUM_SENTINEL = "0x0000"

CMD_LOGIN = "LOGIN"
CMD_LOGIN_RES = "LOGIN_RES"
CMD_READ = "READ"
CMD_READ_RES = "READ_RES"
CMD_REALTIME = "REALTIME"
CMD_REALTIME_RES = "REALTIME_RES"
CMD_STATUS_UPDATE = "STATUS_UPDATE"
CMD_PING = "PING"
CMD_USR = "CMD_USR"
CMD_WRITE = "WRITE"
PAYLOAD_TYPE_CHANGES = "CHANGES"

REALTIME_CATEGORIES: tuple[str, ...] = (
    "STATUS_ZONES",
    "STATUS_OUTPUTS",
    "STATUS_BUS_HA_SENSORS",
    "STATUS_SYSTEM",
    "SCENARIOS",
)
