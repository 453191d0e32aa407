"""
Common Utilities

Shared modules used across all components:
- config.py - Configuration dataclasses and YAML loading
- validator.py - Configuration validation
- exceptions.py - Custom exception classes
- logging_setup.py - Structured logging setup
- shutdown.py - Process-wide shutdown signal
"""

from .config import (
    BridgeConfig,
    ModbusSettings,
    MqttSettings,
    LoggerSettings,
    HealthSettings,
    TcpSettings,
    RtuSettings,
    RegisterDefinition,
    DeviceTopology,
    ValidationSettings,
    ReconnectDelay,
    ResponseTimeout,
    IdentityRefresh,
    Protocol,
    RegisterDataType,
    load_bridge_config,
    load_config_file,
)
from .exceptions import (
    BridgeError,
    ConfigError,
    DeviceError,
    CommunicationError,
    RegisterError,
    PublishError,
    CallbackError,
)
from .logging_setup import (
    setup_logging,
    get_service_logger,
    apply_logger_settings,
)
from .shutdown import ShutdownCoordinator
from .validator import ConfigValidator, required_registers

__all__ = [
    # Config
    "BridgeConfig",
    "ModbusSettings",
    "MqttSettings",
    "LoggerSettings",
    "HealthSettings",
    "TcpSettings",
    "RtuSettings",
    "RegisterDefinition",
    "DeviceTopology",
    "ValidationSettings",
    "ReconnectDelay",
    "ResponseTimeout",
    "IdentityRefresh",
    "Protocol",
    "RegisterDataType",
    "load_bridge_config",
    "load_config_file",
    "ConfigValidator",
    "required_registers",
    # Exceptions
    "BridgeError",
    "ConfigError",
    "DeviceError",
    "CommunicationError",
    "RegisterError",
    "PublishError",
    "CallbackError",
    # Logging
    "setup_logging",
    "get_service_logger",
    "apply_logger_settings",
    # Lifecycle
    "ShutdownCoordinator",
]
