from __future__ import annotations

import asyncio

import pytest
from conftest import wait_for

from inverter_bridge.common.config import (
    DeviceTopology,
    ModbusSettings,
    ReconnectDelay,
    RegisterDataType,
    RegisterDefinition,
    TcpSettings,
    ValidationSettings,
)
from inverter_bridge.common.exceptions import CommunicationError, DeviceError, RegisterError
from inverter_bridge.common.validator import OPTIONAL_REGISTERS, required_registers
from inverter_bridge.services.device import Input, ModbusInverterDriver, Phase, ReadResult

STRING_REGISTERS = {"manufacturer", "model", "serial_number", "firmware_version"}


class FakeModbusClient:
    """Answers reads from a table keyed by register address"""

    def __init__(self, settings: ModbusSettings) -> None:
        self.results: dict[int, ReadResult] = {}
        self.connect_results: list[object] = [True]
        self.is_connected = False
        self.reads: list[int] = []
        self.connect_calls = 0
        self.disconnects = 0

        for name, register in settings.registers.items():
            if name in STRING_REGISTERS:
                value = f"{name}-value"
            else:
                value = float(register.address)
            self.results[register.address] = ReadResult(success=True, value=value)

    async def connect(self) -> bool:
        self.connect_calls += 1
        result = self.connect_results.pop(0) if len(self.connect_results) > 1 else self.connect_results[0]
        if isinstance(result, Exception):
            raise result
        self.is_connected = bool(result)
        return self.is_connected

    async def disconnect(self) -> None:
        self.is_connected = False
        self.disconnects += 1

    async def read(self, address, datatype=RegisterDataType.UINT16, register_type="holding", size=0, scale=1.0):
        self.reads.append(address)
        return self.results[address]


class RecordingListener:
    def __init__(self) -> None:
        self.edges: list[tuple] = []

    async def on_device_connected(self) -> None:
        self.edges.append(("connected",))

    async def on_device_disconnected(self, delay: float) -> None:
        self.edges.append(("disconnected", delay))

    async def on_device_error(self, error: DeviceError) -> None:
        self.edges.append(("error", error))


def _settings(phases: int = 1, inputs: int = 1, hybrid: bool = False, **kwargs) -> ModbusSettings:
    names = required_registers(phases, inputs, hybrid) + list(OPTIONAL_REGISTERS)
    registers = {
        name: RegisterDefinition(name=name, address=100 + index)
        for index, name in enumerate(names)
    }
    registers["state"].labels = {4: "MPPT"}
    registers["events"].labels = {0: "GROUND_FAULT"}
    return ModbusSettings(
        tcp=TcpSettings(host="10.0.0.2"),
        device=DeviceTopology(phases=phases, inputs=inputs, hybrid=hybrid),
        registers=registers,
        reconnect_delay=ReconnectDelay(min=0.01, max=0.04),
        **kwargs,
    )


def _driver(settings: ModbusSettings | None = None) -> tuple[ModbusInverterDriver, FakeModbusClient]:
    settings = settings or _settings()
    client = FakeModbusClient(settings)
    return ModbusInverterDriver(settings, client=client), client  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_fetch_registers_reads_values_not_identity() -> None:
    driver, client = _driver()

    await driver.fetch_registers()

    identity_addresses = {
        driver.settings.registers[name].address
        for name in ("manufacturer", "model", "serial_number", "firmware_version", "device_address")
    }
    assert not identity_addresses & set(client.reads)
    assert driver.ac_energy() == float(driver.settings.registers["ac_energy"].address)
    assert driver.ac_voltage(Phase.A) == float(driver.settings.registers["ac_voltage_a"].address)
    assert driver.dc_power(Input.TOTAL) == float(driver.settings.registers["dc_power"].address)
    assert driver.dc_energy(Input.ONE) == float(driver.settings.registers["dc_energy_1"].address)


@pytest.mark.asyncio
async def test_hybrid_device_skips_dc_energy() -> None:
    driver, client = _driver(_settings(hybrid=True))

    await driver.fetch_registers()

    assert "dc_energy_1" not in driver.settings.registers
    with pytest.raises(RegisterError):
        driver.dc_energy(Input.ONE)


def test_accessor_before_fetch_is_transient() -> None:
    driver, _ = _driver()

    with pytest.raises(RegisterError) as exc_info:
        driver.ac_power_active()

    assert exc_info.value.recoverable


@pytest.mark.asyncio
async def test_link_failure_is_communication_error() -> None:
    driver, client = _driver()
    await driver.fetch_registers()
    address = driver.settings.registers["ac_frequency"].address
    client.results[address] = ReadResult(success=False, error="Read timeout", link_error=True)

    with pytest.raises(CommunicationError) as exc_info:
        await driver.fetch_registers()

    assert exc_info.value.recoverable
    assert exc_info.value.host == "10.0.0.2"
    # All or nothing: previous values are gone
    with pytest.raises(RegisterError):
        driver.ac_energy()


@pytest.mark.asyncio
@pytest.mark.parametrize("code,recoverable", [(1, False), (2, False), (4, True), (6, True)])
async def test_exception_code_decides_severity(code: int, recoverable: bool) -> None:
    driver, client = _driver()
    address = driver.settings.registers["ac_energy"].address
    client.results[address] = ReadResult(success=False, error="Modbus error", exception_code=code)

    with pytest.raises(RegisterError) as exc_info:
        await driver.fetch_registers()

    assert exc_info.value.recoverable is recoverable
    assert exc_info.value.register == "ac_energy"


@pytest.mark.asyncio
async def test_state_and_event_labels() -> None:
    driver, client = _driver()
    registers = driver.settings.registers
    client.results[registers["state"].address] = ReadResult(success=True, value=4)
    client.results[registers["events"].address] = ReadResult(success=True, value=0b101)

    await driver.fetch_registers()

    assert driver.state() == "MPPT"
    assert driver.events() == ["GROUND_FAULT", "BIT2"]

    client.results[registers["state"].address] = ReadResult(success=True, value=9)
    await driver.fetch_registers()
    assert driver.state() == "9"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "datatype,raw,expected",
    [
        (RegisterDataType.INT32, -2147483648, ["BIT31"]),
        (RegisterDataType.INT32, -1, ["GROUND_FAULT"] + [f"BIT{i}" for i in range(1, 32)]),
        (RegisterDataType.INT16, -32767, ["GROUND_FAULT", "BIT15"]),
    ],
)
async def test_negative_event_word_keeps_register_bits(
    datatype: RegisterDataType, raw: int, expected: list[str]
) -> None:
    settings = _settings()
    settings.registers["events"].datatype = datatype
    driver, client = _driver(settings)
    client.results[settings.registers["events"].address] = ReadResult(success=True, value=raw)

    await driver.fetch_registers()

    assert driver.events() == expected


@pytest.mark.asyncio
async def test_fetch_identity() -> None:
    driver, client = _driver()
    client.results[driver.settings.registers["device_address"].address] = ReadResult(success=True, value=1)

    await driver.fetch_identity()

    assert driver.manufacturer() == "manufacturer-value"
    assert driver.firmware_version() == "firmware_version-value"
    assert driver.device_address() == 1


@pytest.mark.asyncio
async def test_device_address_is_optional() -> None:
    settings = _settings()
    del settings.registers["device_address"]
    driver, _ = _driver(settings)

    await driver.fetch_identity()

    assert driver.device_address() is None


@pytest.mark.asyncio
async def test_validate_device() -> None:
    settings = _settings(validation=ValidationSettings(address=40000, expected="SunS", size=2))
    driver, client = _driver(settings)

    client.results[40000] = ReadResult(success=True, value="SunS")
    assert await driver.validate_device() is True

    client.results[40000] = ReadResult(success=True, value="Nope")
    assert await driver.validate_device() is False

    client.results[40000] = ReadResult(success=False, error="timeout", link_error=True)
    assert await driver.validate_device() is False


@pytest.mark.asyncio
async def test_without_validation_any_device_is_valid() -> None:
    driver, _ = _driver()
    assert await driver.validate_device() is True


@pytest.mark.asyncio
async def test_connect_loop_backs_off_and_reconnects() -> None:
    driver, client = _driver()
    client.connect_results = [False, True]
    listener = RecordingListener()
    driver.set_listener(listener)

    await driver.connect()
    await wait_for(lambda: ("connected",) in listener.edges)
    assert listener.edges == [("disconnected", 0.01), ("connected",)]

    driver.trigger_reconnect()
    await wait_for(lambda: len(listener.edges) == 4)
    assert listener.edges[2:] == [("disconnected", 0.01), ("connected",)]
    assert client.disconnects == 1

    await driver.close()
    assert not client.is_connected


@pytest.mark.asyncio
async def test_backoff_grows_until_max() -> None:
    driver, client = _driver()
    client.connect_results = [False, False, False, False, True]
    listener = RecordingListener()
    driver.set_listener(listener)

    await driver.connect()
    await wait_for(lambda: ("connected",) in listener.edges)
    await driver.close()

    delays = [edge[1] for edge in listener.edges if edge[0] == "disconnected"]
    assert delays == [0.01, 0.02, 0.04, 0.04]


@pytest.mark.asyncio
async def test_unbuildable_client_is_fatal() -> None:
    driver, client = _driver()
    client.connect_results = [ValueError("bad port")]
    listener = RecordingListener()
    driver.set_listener(listener)

    await driver.connect()
    await wait_for(lambda: len(listener.edges) == 1)

    kind, error = listener.edges[0]
    assert kind == "error"
    assert not error.recoverable
    await asyncio.sleep(0)
    await driver.close()
