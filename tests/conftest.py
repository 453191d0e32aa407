from __future__ import annotations

import asyncio
from collections.abc import Callable

import pytest

from inverter_bridge.common.exceptions import DeviceError, PublishError, RegisterError
from inverter_bridge.common.shutdown import ShutdownCoordinator
from inverter_bridge.services.device.driver import Input, Phase

VALUES = {
    "ac_energy": 1_234_567.0,  # Wh
    "ac_power_active": 2950.04,
    "ac_power_apparent": 3010.0,
    "ac_power_reactive": -120.0,
    "ac_power_factor": 0.987,
    "ac_frequency": 50.017,
    "dc_power": 3100.0,
    "ac_voltage_a": 230.123,
    "ac_voltage_b": 231.0,
    "ac_voltage_c": 229.5,
    "ac_current_a": 4.2777,
    "ac_current_b": 4.3,
    "ac_current_c": 4.1,
    "dc_power_1": 1550.0,
    "dc_voltage_1": 410.55,
    "dc_current_1": 3.7751,
    "dc_energy_1": 600_000.0,
    "dc_power_2": 1550.0,
    "dc_voltage_2": 412.0,
    "dc_current_2": 3.76,
    "dc_energy_2": 610_000.0,
    "active_state_code": 0,
    "state": "MPPT",
    "events": ["GROUND_FAULT"],
}

IDENTITY = {
    "manufacturer": "Fronius",
    "model": "Symo 3.0-3-M",
    "serial_number": "12345678",
    "firmware_version": "1.2.3",
    "device_address": 1,
}


class FakeDriver:
    """In-memory DeviceDriver; failures are injected per fetch kind"""

    def __init__(self, phases: int = 3, inputs: int = 2, hybrid: bool = False) -> None:
        self.phases = phases
        self.inputs = inputs
        self.is_hybrid = hybrid
        self.listener = None

        self.values = dict(VALUES)
        self.identity = dict(IDENTITY)
        self.failures: dict[str, DeviceError] = {}
        self.valid = True

        self.fetch_registers_calls = 0
        self.fetch_identity_calls = 0
        self.identity_reads = 0
        self.reconnects = 0
        self.closed = False
        self._fetched = False

    def set_listener(self, listener) -> None:
        self.listener = listener

    async def connect(self) -> None:
        if self.listener:
            await self.listener.on_device_connected()

    def trigger_reconnect(self) -> None:
        self.reconnects += 1

    async def close(self) -> None:
        self.closed = True

    async def validate_device(self) -> bool:
        return self.valid

    async def fetch_registers(self) -> None:
        self.fetch_registers_calls += 1
        if "registers" in self.failures:
            self._fetched = False
            raise self.failures["registers"]
        self._fetched = True

    async def fetch_identity(self) -> None:
        self.fetch_identity_calls += 1
        if "identity" in self.failures:
            raise self.failures["identity"]

    def _get(self, name: str):
        if not self._fetched:
            raise RegisterError(f"Register '{name}' not available", register=name)
        return self.values[name]

    def _event(self, name: str):
        if "events" in self.failures:
            raise self.failures["events"]
        return self._get(name)

    def _ident(self, name: str):
        self.identity_reads += 1
        return self.identity[name]

    def ac_energy(self) -> float:
        return self._get("ac_energy")

    def ac_power_active(self) -> float:
        return self._get("ac_power_active")

    def ac_power_apparent(self) -> float:
        return self._get("ac_power_apparent")

    def ac_power_reactive(self) -> float:
        return self._get("ac_power_reactive")

    def ac_power_factor(self) -> float:
        return self._get("ac_power_factor")

    def ac_voltage(self, phase: Phase) -> float:
        return self._get(f"ac_voltage_{phase.suffix}")

    def ac_current(self, phase: Phase) -> float:
        return self._get(f"ac_current_{phase.suffix}")

    def ac_frequency(self) -> float:
        return self._get("ac_frequency")

    def dc_power(self, dc_input: Input) -> float:
        if dc_input == Input.TOTAL:
            return self._get("dc_power")
        return self._get(f"dc_power_{dc_input.value}")

    def dc_voltage(self, dc_input: Input) -> float:
        return self._get(f"dc_voltage_{dc_input.value}")

    def dc_current(self, dc_input: Input) -> float:
        return self._get(f"dc_current_{dc_input.value}")

    def dc_energy(self, dc_input: Input) -> float:
        return self._get(f"dc_energy_{dc_input.value}")

    def active_state_code(self) -> int:
        return self._event("active_state_code")

    def state(self) -> str:
        return self._event("state")

    def events(self) -> list[str]:
        return list(self._event("events"))

    def manufacturer(self) -> str:
        return self._ident("manufacturer")

    def model(self) -> str:
        return self._ident("model")

    def serial_number(self) -> str:
        return self._ident("serial_number")

    def firmware_version(self) -> str:
        return self._ident("firmware_version")

    def device_address(self) -> int | None:
        return self._ident("device_address")


class FakeTransport:
    """TransportClient recording publishes; `fail_next` rejects that many"""

    def __init__(self, connected: bool = False) -> None:
        self.is_connected = connected
        self.listeners: list = []
        self.published: list[tuple[str, str]] = []
        self.attempts = 0
        self.fail_next = 0
        self.started = False
        self.closed = False

    def add_listener(self, listener) -> None:
        self.listeners.append(listener)

    def connect_async(self) -> None:
        self.started = True

    def publish(self, channel: str, payload: str) -> None:
        self.attempts += 1
        if self.fail_next:
            self.fail_next -= 1
            raise PublishError("rejected", channel=channel, rc=4)
        self.published.append((channel, payload))

    async def close(self) -> None:
        self.closed = True

    def set_connected(self, connected: bool) -> None:
        self.is_connected = connected
        for listener in self.listeners:
            if connected:
                listener.on_transport_connected()
            else:
                listener.on_transport_disconnected(7)


async def wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll `predicate` on the loop until it holds"""

    async def _poll() -> None:
        while not predicate():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(_poll(), timeout)


@pytest.fixture
def shutdown() -> ShutdownCoordinator:
    return ShutdownCoordinator()


@pytest.fixture
def driver() -> FakeDriver:
    return FakeDriver()


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()
