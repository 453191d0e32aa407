"""
Configuration Validator

Validates the raw configuration mapping before it is turned into
dataclasses, so every problem is reported at once instead of failing on
the first KeyError.
"""

from typing import Any

from .config import IdentityRefresh, RegisterDataType

VALID_LOG_LEVELS = {"trace", "debug", "info", "warn", "warning", "error", "critical"}
VALID_LOG_FORMATS = {"text", "json"}
VALID_REGISTER_TYPES = {"holding", "input"}

PHASE_SUFFIXES = ("a", "b", "c")

IDENTITY_REGISTERS = ("manufacturer", "model", "serial_number", "firmware_version")
EVENT_REGISTERS = ("active_state_code", "state", "events")
OPTIONAL_REGISTERS = ("device_address",)


def required_registers(phases: int, inputs: int, hybrid: bool) -> list[str]:
    """
    Register names the driver reads for a device of the given topology.

    Args:
        phases: Number of AC phases (1-3)
        inputs: Number of DC inputs (1-2)
        hybrid: Hybrid devices report no per-input DC energy

    Returns:
        Ordered list of register field names
    """
    names = [
        "ac_energy",
        "ac_power_active",
        "ac_power_apparent",
        "ac_power_reactive",
        "ac_power_factor",
        "ac_frequency",
        "dc_power",
    ]
    for suffix in PHASE_SUFFIXES[:max(1, min(phases, 3))]:
        names.append(f"ac_voltage_{suffix}")
        names.append(f"ac_current_{suffix}")
    for index in range(1, max(1, min(inputs, 2)) + 1):
        names.append(f"dc_power_{index}")
        names.append(f"dc_voltage_{index}")
        names.append(f"dc_current_{index}")
        if not hybrid:
            names.append(f"dc_energy_{index}")
    names.extend(EVENT_REGISTERS)
    names.extend(IDENTITY_REGISTERS)
    return names


class ConfigValidator:
    """Validates bridge configuration"""

    def validate(self, config: dict[str, Any]) -> tuple[bool, list[str]]:
        """
        Validate configuration.

        Args:
            config: Configuration dictionary

        Returns:
            Tuple of (is_valid, list of error messages)
        """
        errors: list[str] = []

        modbus = config.get("modbus")
        if not isinstance(modbus, dict):
            errors.append("Missing required section: modbus")
        else:
            errors.extend(self._validate_modbus(modbus))

        mqtt = config.get("mqtt")
        if not isinstance(mqtt, dict):
            errors.append("Missing required section: mqtt")
        else:
            errors.extend(self._validate_mqtt(mqtt))

        errors.extend(self._validate_logger(config.get("logger") or {}))
        errors.extend(self._validate_health(config.get("health") or {}))

        return len(errors) == 0, errors

    def _validate_modbus(self, modbus: dict[str, Any]) -> list[str]:
        """Validate the device connection and register map"""
        errors = []

        tcp = modbus.get("tcp")
        rtu = modbus.get("rtu")
        if bool(tcp) == bool(rtu):
            errors.append("modbus: exactly one of 'tcp' or 'rtu' must be configured")
        if tcp:
            if not tcp.get("host"):
                errors.append("modbus.tcp: missing host")
            if not _valid_port(tcp.get("port", 502)):
                errors.append("modbus.tcp: port must be 1-65535")
        if rtu:
            if not rtu.get("device"):
                errors.append("modbus.rtu: missing device")
            if rtu.get("parity", "N") not in ("N", "E", "O"):
                errors.append("modbus.rtu: parity must be N, E or O")

        slave_id = modbus.get("slave_id", 1)
        if not isinstance(slave_id, int) or not 1 <= slave_id <= 247:
            errors.append("modbus: slave_id must be 1-247")

        interval = modbus.get("update_interval", 5)
        if not isinstance(interval, (int, float)) or interval <= 0:
            errors.append("modbus: update_interval must be positive")

        errors.extend(_validate_reconnect("modbus", modbus.get("reconnect_delay")))

        refresh = modbus.get("identity_refresh", "once")
        if refresh not in {r.value for r in IdentityRefresh}:
            errors.append(f"modbus: identity_refresh must be one of {[r.value for r in IdentityRefresh]}")

        device = modbus.get("device") or {}
        phases = device.get("phases", 1)
        inputs = device.get("inputs", 1)
        if not isinstance(phases, int) or not 1 <= phases <= 3:
            errors.append("modbus.device: phases must be 1-3")
            phases = 1
        if not isinstance(inputs, int) or not 1 <= inputs <= 2:
            errors.append("modbus.device: inputs must be 1-2")
            inputs = 1

        registers = modbus.get("registers") or {}
        if not isinstance(registers, dict):
            errors.append("modbus.registers must be a mapping of field name to register")
            return errors

        known = set(required_registers(3, 2, False)) | set(OPTIONAL_REGISTERS)
        for name, reg in registers.items():
            if name not in known:
                errors.append(f"modbus.registers: unknown field '{name}'")
                continue
            errors.extend(_validate_register(f"modbus.registers.{name}", reg))

        for name in required_registers(phases, inputs, bool(device.get("hybrid", False))):
            if name not in registers:
                errors.append(f"modbus.registers: missing required field '{name}'")

        validation = modbus.get("validation")
        if validation:
            if "expected" not in validation:
                errors.append("modbus.validation: missing expected value")
            errors.extend(_validate_register("modbus.validation", validation))

        return errors

    def _validate_mqtt(self, mqtt: dict[str, Any]) -> list[str]:
        """Validate broker settings"""
        errors = []

        if not mqtt.get("broker"):
            errors.append("mqtt: missing broker")
        if not _valid_port(mqtt.get("port", 1883)):
            errors.append("mqtt: port must be 1-65535")

        topic = str(mqtt.get("topic", "inverter"))
        if not topic.strip("/"):
            errors.append("mqtt: topic must not be empty")
        elif "+" in topic or "#" in topic:
            errors.append("mqtt: topic must not contain wildcards")

        queue_size = mqtt.get("queue_size", 100)
        if not isinstance(queue_size, int) or queue_size < 1:
            errors.append("mqtt: queue_size must be at least 1")

        if mqtt.get("qos", 1) not in (0, 1, 2):
            errors.append("mqtt: qos must be 0, 1 or 2")

        keepalive = mqtt.get("keepalive", 60)
        if not isinstance(keepalive, int) or keepalive <= 0:
            errors.append("mqtt: keepalive must be positive")

        if mqtt.get("password") and not mqtt.get("user"):
            errors.append("mqtt: password given without user")

        errors.extend(_validate_reconnect("mqtt", mqtt.get("reconnect_delay")))
        return errors

    def _validate_logger(self, logger: dict[str, Any]) -> list[str]:
        """Validate log levels and format"""
        errors = []
        if str(logger.get("level", "info")).lower() not in VALID_LOG_LEVELS:
            errors.append(f"logger: invalid level '{logger.get('level')}'")
        if str(logger.get("format", "text")).lower() not in VALID_LOG_FORMATS:
            errors.append(f"logger: invalid format '{logger.get('format')}'")
        for name, level in (logger.get("levels") or {}).items():
            if str(level).lower() not in VALID_LOG_LEVELS:
                errors.append(f"logger.levels: invalid level '{level}' for '{name}'")
        return errors

    def _validate_health(self, health: dict[str, Any]) -> list[str]:
        port = health.get("port", 0)
        if port != 0 and not _valid_port(port):
            return ["health: port must be 0 (disabled) or 1-65535"]
        return []


def _valid_port(port: Any) -> bool:
    return isinstance(port, int) and 1 <= port <= 65535


def _validate_reconnect(section: str, data: dict | None) -> list[str]:
    if not data:
        return []
    errors = []
    low = data.get("min", 1)
    high = data.get("max", 60)
    if not isinstance(low, (int, float)) or low <= 0:
        errors.append(f"{section}.reconnect_delay: min must be positive")
    elif not isinstance(high, (int, float)) or high < low:
        errors.append(f"{section}.reconnect_delay: max must be >= min")
    return errors


def _validate_register(path: str, reg: Any) -> list[str]:
    if not isinstance(reg, dict):
        return [f"{path}: must be a mapping"]
    errors = []
    address = reg.get("address")
    if not isinstance(address, int) or not 0 <= address <= 0xFFFF:
        errors.append(f"{path}: address must be 0-65535")
    datatype = reg.get("datatype", "uint16")
    if datatype not in {d.value for d in RegisterDataType}:
        errors.append(f"{path}: unsupported datatype '{datatype}'")
    if reg.get("type", "holding") not in VALID_REGISTER_TYPES:
        errors.append(f"{path}: type must be holding or input")
    return errors
