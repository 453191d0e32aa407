"""
Inverter Bridge

Polls a Modbus inverter and forwards structured snapshots to an MQTT broker.
"""

__version__ = "1.0.0"
