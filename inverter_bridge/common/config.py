"""
Configuration Dataclasses

Type-safe configuration structures for the bridge.
Configuration is read from a YAML file at startup.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

import yaml

from .exceptions import ConfigError


class Protocol(str, Enum):
    """Modbus transport to the device"""
    TCP = "tcp"
    RTU = "rtu"


class RegisterDataType(str, Enum):
    """Modbus register data types"""
    UINT16 = "uint16"
    INT16 = "int16"
    UINT32 = "uint32"
    INT32 = "int32"
    FLOAT32 = "float32"
    FLOAT64 = "float64"
    UTF8 = "utf8"


class IdentityRefresh(str, Enum):
    """When the device identity is read again"""
    ONCE = "once"                      # first success only, until restart
    PER_CONNECTION = "per_connection"  # again after every validated reconnect


@dataclass
class ReconnectDelay:
    """Reconnect backoff in seconds"""
    min: float = 1.0
    max: float = 60.0
    exponential: bool = True

    def next_delay(self, current: float | None) -> float:
        """Delay to use after `current` (None on the first failure)"""
        if current is None:
            return self.min
        if not self.exponential:
            return self.min
        return min(current * 2, self.max)


@dataclass
class ResponseTimeout:
    """Modbus response timeout"""
    sec: int = 1
    usec: int = 0

    @property
    def seconds(self) -> float:
        return self.sec + self.usec / 1_000_000


@dataclass
class TcpSettings:
    host: str
    port: int = 502


@dataclass
class RtuSettings:
    device: str
    baud: int = 9600
    parity: str = "N"     # N=None, E=Even, O=Odd
    stopbits: int = 1


@dataclass
class RegisterDefinition:
    """Where one logical field lives on the device"""
    name: str
    address: int
    datatype: RegisterDataType = RegisterDataType.UINT16
    type: str = "holding"  # holding, input
    scale: float = 1.0
    size: int = 0  # Register count override (0 = use datatype default)
    labels: dict[int, str] = field(default_factory=dict)


@dataclass
class DeviceTopology:
    """Electrical layout of the device"""
    phases: int = 1
    inputs: int = 1
    hybrid: bool = False


@dataclass
class ValidationSettings:
    """Register that must hold a known marker for the device to be usable"""
    address: int
    expected: str | int
    datatype: RegisterDataType = RegisterDataType.UTF8
    type: str = "holding"
    size: int = 0


@dataclass
class ModbusSettings:
    """Device side of the bridge"""
    tcp: TcpSettings | None = None
    rtu: RtuSettings | None = None
    slave_id: int = 1
    update_interval: float = 5.0
    response_timeout: ResponseTimeout = field(default_factory=ResponseTimeout)
    reconnect_delay: ReconnectDelay = field(default_factory=ReconnectDelay)
    identity_refresh: IdentityRefresh = IdentityRefresh.ONCE
    device: DeviceTopology = field(default_factory=DeviceTopology)
    validation: ValidationSettings | None = None
    registers: dict[str, RegisterDefinition] = field(default_factory=dict)

    @property
    def protocol(self) -> Protocol:
        return Protocol.TCP if self.tcp is not None else Protocol.RTU

    @property
    def endpoint(self) -> str:
        if self.tcp is not None:
            return f"{self.tcp.host}:{self.tcp.port}"
        return self.rtu.device if self.rtu else "unconfigured"


@dataclass
class MqttSettings:
    """Broker side of the bridge"""
    broker: str = "localhost"
    port: int = 1883
    user: str | None = None
    password: str | None = None
    client_id: str | None = None
    topic: str = "inverter"
    queue_size: int = 100
    qos: int = 1
    retain: bool = True
    keepalive: int = 60
    reconnect_delay: ReconnectDelay = field(default_factory=ReconnectDelay)

    @property
    def values_topic(self) -> str:
        return self.topic

    @property
    def events_topic(self) -> str:
        return f"{self.topic}/events"

    @property
    def device_topic(self) -> str:
        return f"{self.topic}/device"


@dataclass
class LoggerSettings:
    """Log level and format, globally and per component"""
    level: str = "info"
    format: str = "text"  # text, json
    levels: dict[str, str] = field(default_factory=dict)


@dataclass
class HealthSettings:
    """Local HTTP health endpoint"""
    host: str = "127.0.0.1"
    port: int = 0  # 0 = disabled


@dataclass
class BridgeConfig:
    """Complete bridge configuration"""
    modbus: ModbusSettings
    mqtt: MqttSettings = field(default_factory=MqttSettings)
    logger: LoggerSettings = field(default_factory=LoggerSettings)
    health: HealthSettings = field(default_factory=HealthSettings)


def load_config_file(config_path: str | Path) -> dict[str, Any]:
    """
    Read the YAML configuration file.

    Raises:
        ConfigError: file missing, unreadable or not a mapping
    """
    path = Path(config_path)
    if not path.exists():
        raise ConfigError(f"Configuration file not found: {config_path}")

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Error loading configuration: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Configuration root must be a mapping: {config_path}")
    return data


def _reconnect_delay(data: dict | None) -> ReconnectDelay:
    data = data or {}
    return ReconnectDelay(
        min=float(data.get("min", 1.0)),
        max=float(data.get("max", 60.0)),
        exponential=bool(data.get("exponential", True)),
    )


def _register(name: str, r: dict) -> RegisterDefinition:
    return RegisterDefinition(
        name=name,
        address=int(r["address"]),
        datatype=RegisterDataType(r.get("datatype", "uint16")),
        type=r.get("type", "holding"),
        scale=float(r.get("scale", 1.0)),
        size=int(r.get("size", 0)),
        labels={int(k): str(v) for k, v in (r.get("labels") or {}).items()},
    )


def load_bridge_config(data: dict) -> BridgeConfig:
    """Load BridgeConfig from dictionary (e.g., parsed from YAML)"""
    modbus_data = data.get("modbus") or {}

    tcp = None
    if modbus_data.get("tcp"):
        tcp_data = modbus_data["tcp"]
        tcp = TcpSettings(host=tcp_data["host"], port=int(tcp_data.get("port", 502)))

    rtu = None
    if modbus_data.get("rtu"):
        rtu_data = modbus_data["rtu"]
        rtu = RtuSettings(
            device=rtu_data["device"],
            baud=int(rtu_data.get("baud", 9600)),
            parity=rtu_data.get("parity", "N"),
            stopbits=int(rtu_data.get("stopbits", 1)),
        )

    timeout_data = modbus_data.get("response_timeout") or {}
    device_data = modbus_data.get("device") or {}

    validation = None
    if modbus_data.get("validation"):
        v = modbus_data["validation"]
        validation = ValidationSettings(
            address=int(v["address"]),
            expected=v["expected"],
            datatype=RegisterDataType(v.get("datatype", "utf8")),
            type=v.get("type", "holding"),
            size=int(v.get("size", 0)),
        )

    registers = {
        name: _register(name, r)
        for name, r in (modbus_data.get("registers") or {}).items()
    }

    modbus = ModbusSettings(
        tcp=tcp,
        rtu=rtu,
        slave_id=int(modbus_data.get("slave_id", 1)),
        update_interval=float(modbus_data.get("update_interval", 5.0)),
        response_timeout=ResponseTimeout(
            sec=int(timeout_data.get("sec", 1)),
            usec=int(timeout_data.get("usec", 0)),
        ),
        reconnect_delay=_reconnect_delay(modbus_data.get("reconnect_delay")),
        identity_refresh=IdentityRefresh(modbus_data.get("identity_refresh", "once")),
        device=DeviceTopology(
            phases=int(device_data.get("phases", 1)),
            inputs=int(device_data.get("inputs", 1)),
            hybrid=bool(device_data.get("hybrid", False)),
        ),
        validation=validation,
        registers=registers,
    )

    mqtt_data = data.get("mqtt") or {}
    mqtt = MqttSettings(
        broker=mqtt_data.get("broker", "localhost"),
        port=int(mqtt_data.get("port", 1883)),
        user=mqtt_data.get("user"),
        password=mqtt_data.get("password"),
        client_id=mqtt_data.get("client_id"),
        topic=str(mqtt_data.get("topic", "inverter")).rstrip("/"),
        queue_size=int(mqtt_data.get("queue_size", 100)),
        qos=int(mqtt_data.get("qos", 1)),
        retain=bool(mqtt_data.get("retain", True)),
        keepalive=int(mqtt_data.get("keepalive", 60)),
        reconnect_delay=_reconnect_delay(mqtt_data.get("reconnect_delay")),
    )

    logger_data = data.get("logger") or {}
    logger = LoggerSettings(
        level=str(logger_data.get("level", "info")),
        format=str(logger_data.get("format", "text")),
        levels={str(k): str(v) for k, v in (logger_data.get("levels") or {}).items()},
    )

    health_data = data.get("health") or {}
    health = HealthSettings(
        host=health_data.get("host", "127.0.0.1"),
        port=int(health_data.get("port", 0)),
    )

    return BridgeConfig(modbus=modbus, mqtt=mqtt, logger=logger, health=health)
