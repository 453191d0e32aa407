"""
Device Driver Capability

What the observation engine needs from a polled device, and the edge
callbacks a driver fires back into the engine. Any object with these
methods can be bridged; `ModbusInverterDriver` is the bundled one.
"""

from enum import Enum
from typing import Protocol, runtime_checkable

from inverter_bridge.common.exceptions import DeviceError


class Phase(Enum):
    """AC phase selector"""
    A = 1
    B = 2
    C = 3

    @property
    def suffix(self) -> str:
        return self.name.lower()


class Input(Enum):
    """DC input selector"""
    TOTAL = 0
    ONE = 1
    TWO = 2


class DeviceListener(Protocol):
    """Edge-triggered notifications fired from the driver's own task"""

    async def on_device_connected(self) -> None:
        """Low-level link is up; the device has not been validated yet"""

    async def on_device_disconnected(self, delay: float) -> None:
        """Link lost; the driver retries after `delay` seconds"""

    async def on_device_error(self, error: DeviceError) -> None:
        """Transient (`error.recoverable`) or fatal device failure"""


@runtime_checkable
class DeviceDriver(Protocol):
    """
    Capability object for one polled device.

    `fetch_registers()` / `fetch_identity()` talk to the device; the typed
    accessors only read what the last fetch returned and raise
    `DeviceError` when that value is unavailable.
    """

    @property
    def phases(self) -> int: ...

    @property
    def inputs(self) -> int: ...

    @property
    def is_hybrid(self) -> bool: ...

    def set_listener(self, listener: DeviceListener) -> None: ...

    async def connect(self) -> None: ...

    def trigger_reconnect(self) -> None: ...

    async def close(self) -> None: ...

    async def validate_device(self) -> bool: ...

    async def fetch_registers(self) -> None: ...

    async def fetch_identity(self) -> None: ...

    # Values
    def ac_energy(self) -> float: ...
    def ac_power_active(self) -> float: ...
    def ac_power_apparent(self) -> float: ...
    def ac_power_reactive(self) -> float: ...
    def ac_power_factor(self) -> float: ...
    def ac_voltage(self, phase: Phase) -> float: ...
    def ac_current(self, phase: Phase) -> float: ...
    def ac_frequency(self) -> float: ...
    def dc_power(self, dc_input: Input) -> float: ...
    def dc_voltage(self, dc_input: Input) -> float: ...
    def dc_current(self, dc_input: Input) -> float: ...
    def dc_energy(self, dc_input: Input) -> float: ...

    # Events
    def active_state_code(self) -> int: ...
    def state(self) -> str: ...
    def events(self) -> list[str]: ...

    # Identity
    def manufacturer(self) -> str: ...
    def model(self) -> str: ...
    def serial_number(self) -> str: ...
    def firmware_version(self) -> str: ...
    def device_address(self) -> int | None: ...
