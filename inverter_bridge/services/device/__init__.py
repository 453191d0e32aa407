"""
Device Layer - Modbus Communication

Responsibilities:
- Define the driver capability the observation engine consumes
- Maintain the Modbus connection with reconnect backoff
- Read and decode the configured register map
"""

from .driver import DeviceDriver, DeviceListener, Input, Phase
from .inverter import ModbusInverterDriver
from .modbus_client import ModbusClient, ReadResult, decode_registers

__all__ = [
    "DeviceDriver",
    "DeviceListener",
    "Input",
    "Phase",
    "ModbusInverterDriver",
    "ModbusClient",
    "ReadResult",
    "decode_registers",
]
