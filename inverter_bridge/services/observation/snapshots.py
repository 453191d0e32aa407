"""
Snapshot Builder

Turns raw driver readings into immutable, precision-rounded records and
their serialized JSON form. One record type per observation category.
"""

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Union

from inverter_bridge.services.device.driver import DeviceDriver, Input, Phase

# Decimal places per quantity
ENERGY_DECIMALS = 1
POWER_DECIMALS = 1
POWER_FACTOR_DECIMALS = 2
FREQUENCY_DECIMALS = 2
VOLTAGE_DECIMALS = 2
CURRENT_DECIMALS = 3
EFFICIENCY_DECIMALS = 1

WH_TO_KWH = 1e-3
EPSILON = 1e-12


class Category(str, Enum):
    """Observation categories, each with one current snapshot"""
    VALUES = "values"
    EVENTS = "events"
    DEVICE = "device"


def round_to(value: float, decimals: int) -> float:
    """Round for publishing; never yields negative zero"""
    return round(value, decimals) + 0.0


def safe_divide(numerator: float, denominator: float, default: float = 0.0) -> float:
    if abs(denominator) > EPSILON:
        return numerator / denominator
    return default


@dataclass(frozen=True)
class PhaseReading:
    id: int
    voltage: float = 0.0
    current: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "voltage_v": self.voltage, "current_a": self.current}


@dataclass(frozen=True)
class InputReading:
    id: int
    voltage: float = 0.0
    current: float = 0.0
    power: float = 0.0
    energy: float | None = None  # kWh, None on hybrid devices

    def to_dict(self) -> dict[str, Any]:
        result = {
            "id": self.id,
            "voltage_v": self.voltage,
            "current_a": self.current,
            "power_w": self.power,
        }
        if self.energy is not None:
            result["energy_kwh"] = self.energy
        return result


@dataclass(frozen=True)
class ValuesSnapshot:
    """Electrical values at one instant; `time` is epoch milliseconds"""
    time: int = 0
    ac_energy: float = 0.0
    ac_power_active: float = 0.0
    ac_power_apparent: float = 0.0
    ac_power_reactive: float = 0.0
    ac_power_factor: float = 0.0
    ac_frequency: float = 0.0
    phases: tuple[PhaseReading, ...] = ()
    dc_power: float = 0.0
    inputs: tuple[InputReading, ...] = ()
    efficiency: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "time": self.time,
            "ac": {
                "energy_kwh": self.ac_energy,
                "power_active_w": self.ac_power_active,
                "power_apparent_va": self.ac_power_apparent,
                "power_reactive_var": self.ac_power_reactive,
                "power_factor": self.ac_power_factor,
                "frequency_hz": self.ac_frequency,
                "phases": [p.to_dict() for p in self.phases],
            },
            "dc": {
                "power_w": self.dc_power,
                "inputs": [i.to_dict() for i in self.inputs],
            },
            "efficiency_pct": self.efficiency,
        }


@dataclass(frozen=True)
class EventsSnapshot:
    """Operating state and active event flags"""
    time: int = 0
    active_code: int = 0
    state: str = ""
    events: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "time": self.time,
            "active_code": self.active_code,
            "state": self.state,
            "events": list(self.events),
        }


@dataclass(frozen=True)
class DeviceIdentity:
    """Nameplate data, read rarely"""
    time: int = 0
    manufacturer: str = ""
    model: str = ""
    serial_number: str = ""
    firmware_version: str = ""
    device_address: int | None = None
    phases: int = 0
    inputs: int = 0
    hybrid: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "time": self.time,
            "manufacturer": self.manufacturer,
            "model": self.model,
            "serial_number": self.serial_number,
            "firmware_version": self.firmware_version,
            "device_address": self.device_address,
            "phases": self.phases,
            "inputs": self.inputs,
            "hybrid": self.hybrid,
        }


Snapshot = Union[ValuesSnapshot, EventsSnapshot, DeviceIdentity]

DEFAULT_SNAPSHOTS: dict[Category, Snapshot] = {
    Category.VALUES: ValuesSnapshot(),
    Category.EVENTS: EventsSnapshot(),
    Category.DEVICE: DeviceIdentity(),
}


def serialize(snapshot: Snapshot) -> str:
    """Compact JSON payload for a snapshot"""
    return json.dumps(snapshot.to_dict(), separators=(",", ":"))


@dataclass(frozen=True)
class Committed:
    """A snapshot and the payload serialized from it, stored as one unit"""
    snapshot: Snapshot
    payload: str

    @classmethod
    def of(cls, snapshot: Snapshot) -> "Committed":
        return cls(snapshot=snapshot, payload=serialize(snapshot))


class SnapshotBuilder:
    """
    Reads the driver's typed accessors and builds snapshots.

    Every accessor may raise `DeviceError`; the builder lets it propagate so
    a half-read snapshot is never produced.
    """

    def __init__(self, driver: DeviceDriver):
        self.driver = driver

    @property
    def phase_count(self) -> int:
        return max(1, min(self.driver.phases, 3))

    @property
    def input_count(self) -> int:
        return max(1, min(self.driver.inputs, 2))

    def build_values(self, time_ms: int) -> ValuesSnapshot:
        driver = self.driver

        ac_power_active = driver.ac_power_active()
        dc_power = driver.dc_power(Input.TOTAL)

        phases = []
        for phase in list(Phase)[:self.phase_count]:
            phases.append(PhaseReading(
                id=phase.value,
                voltage=round_to(driver.ac_voltage(phase), VOLTAGE_DECIMALS),
                current=round_to(driver.ac_current(phase), CURRENT_DECIMALS),
            ))

        inputs = []
        for dc_input in (Input.ONE, Input.TWO)[:self.input_count]:
            energy = None
            if not driver.is_hybrid:
                energy = round_to(driver.dc_energy(dc_input) * WH_TO_KWH, ENERGY_DECIMALS)
            inputs.append(InputReading(
                id=dc_input.value,
                voltage=round_to(driver.dc_voltage(dc_input), VOLTAGE_DECIMALS),
                current=round_to(driver.dc_current(dc_input), CURRENT_DECIMALS),
                power=round_to(driver.dc_power(dc_input), POWER_DECIMALS),
                energy=energy,
            ))

        efficiency = safe_divide(ac_power_active, dc_power) * 100.0

        return ValuesSnapshot(
            time=time_ms,
            ac_energy=round_to(driver.ac_energy() * WH_TO_KWH, ENERGY_DECIMALS),
            ac_power_active=round_to(ac_power_active, POWER_DECIMALS),
            ac_power_apparent=round_to(driver.ac_power_apparent(), POWER_DECIMALS),
            ac_power_reactive=round_to(driver.ac_power_reactive(), POWER_DECIMALS),
            ac_power_factor=round_to(driver.ac_power_factor(), POWER_FACTOR_DECIMALS),
            ac_frequency=round_to(driver.ac_frequency(), FREQUENCY_DECIMALS),
            phases=tuple(phases),
            dc_power=round_to(dc_power, POWER_DECIMALS),
            inputs=tuple(inputs),
            efficiency=round_to(efficiency, EFFICIENCY_DECIMALS),
        )

    def build_events(self, time_ms: int) -> EventsSnapshot:
        return EventsSnapshot(
            time=time_ms,
            active_code=self.driver.active_state_code(),
            state=self.driver.state(),
            events=tuple(self.driver.events()),
        )

    def build_identity(self, time_ms: int) -> DeviceIdentity:
        return DeviceIdentity(
            time=time_ms,
            manufacturer=self.driver.manufacturer(),
            model=self.driver.model(),
            serial_number=self.driver.serial_number(),
            firmware_version=self.driver.firmware_version(),
            device_address=self.driver.device_address(),
            phases=self.phase_count,
            inputs=self.input_count,
            hybrid=self.driver.is_hybrid,
        )
