"""
Modbus Inverter Driver

Reads an inverter through a configured register map and keeps the link up
with reconnect-with-backoff. Connection edges are reported to a
`DeviceListener`; fetch failures are raised to the caller.
"""

import asyncio

from inverter_bridge.common.config import ModbusSettings, RegisterDefinition
from inverter_bridge.common.exceptions import CommunicationError, DeviceError, RegisterError
from inverter_bridge.common.logging_setup import get_service_logger
from inverter_bridge.common.validator import (
    IDENTITY_REGISTERS,
    OPTIONAL_REGISTERS,
    required_registers,
)

from .driver import DeviceListener, Input, Phase
from .modbus_client import ModbusClient, ReadResult, get_register_count

logger = get_service_logger("modbus")


class ModbusInverterDriver:
    """
    DeviceDriver implementation on top of pymodbus.

    Lifecycle:
    - connect() starts a background task that connects, fires
      on_device_connected(), then parks until trigger_reconnect()
    - every failed attempt fires on_device_disconnected(delay) and sleeps
      for the backoff delay before retrying
    - close() cancels the task and drops the link
    """

    def __init__(self, settings: ModbusSettings, client: ModbusClient | None = None):
        self.settings = settings
        self._client = client or ModbusClient(settings)
        self._listener: DeviceListener | None = None

        identity = set(IDENTITY_REGISTERS) | set(OPTIONAL_REGISTERS)
        self._value_names = [
            name for name in required_registers(self.phases, self.inputs, self.is_hybrid)
            if name not in identity
        ]
        self._identity_names = [
            name for name in (*IDENTITY_REGISTERS, *OPTIONAL_REGISTERS)
            if name in settings.registers
        ]

        # Last fetched values, replaced wholesale on every fetch
        self._values: dict[str, float | int | str] = {}
        self._identity: dict[str, float | int | str] = {}

        self._task: asyncio.Task | None = None
        self._reconnect_requested = asyncio.Event()
        self._delay: float | None = None

    # --- topology ---

    @property
    def phases(self) -> int:
        return self.settings.device.phases

    @property
    def inputs(self) -> int:
        return self.settings.device.inputs

    @property
    def is_hybrid(self) -> bool:
        return self.settings.device.hybrid

    @property
    def is_connected(self) -> bool:
        return self._client.is_connected

    # --- lifecycle ---

    def set_listener(self, listener: DeviceListener) -> None:
        self._listener = listener

    async def connect(self) -> None:
        """Start the connect/reconnect task (returns immediately)"""
        if self._task and not self._task.done():
            return
        self._task = asyncio.create_task(self._connect_loop(), name="modbus-connect")
        logger.info(f"Connecting to inverter at {self.settings.endpoint} (slave {self.settings.slave_id})")

    def trigger_reconnect(self) -> None:
        """Drop the current link and go through the backoff cycle again"""
        self._reconnect_requested.set()

    async def close(self) -> None:
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        await self._client.disconnect()
        self._values = {}

    async def _connect_loop(self) -> None:
        """Connect, wait for a reconnect request, back off, repeat"""
        while True:
            try:
                connected = await self._client.connect()
            except (ValueError, TypeError) as e:
                await self._notify_error(DeviceError(
                    f"Cannot create Modbus client for {self.settings.endpoint}: {e}",
                    recoverable=False,
                ))
                return

            if connected:
                self._delay = None
                self._reconnect_requested.clear()
                if self._listener:
                    await self._listener.on_device_connected()

                await self._reconnect_requested.wait()
                self._reconnect_requested.clear()
                await self._client.disconnect()
                self._values = {}

            self._delay = self.settings.reconnect_delay.next_delay(self._delay)
            if self._listener:
                await self._listener.on_device_disconnected(self._delay)
            await asyncio.sleep(self._delay)

    async def _notify_error(self, error: DeviceError) -> None:
        if self._listener:
            await self._listener.on_device_error(error)
        else:
            logger.error(error.message)

    # --- device access ---

    async def validate_device(self) -> bool:
        """Check the configured marker register, if any"""
        validation = self.settings.validation
        if validation is None:
            return True

        result = await self._client.read(
            validation.address,
            datatype=validation.datatype,
            register_type=validation.type,
            size=validation.size,
        )
        if not result.success:
            logger.warning(f"Device validation read failed: {result.error}")
            return False

        expected = validation.expected
        actual = result.value
        if isinstance(expected, str):
            valid = str(actual) == expected
        else:
            valid = actual == expected

        if not valid:
            logger.error(
                f"Device validation failed at register {validation.address}: "
                f"expected {expected!r}, got {actual!r}"
            )
        return valid

    async def fetch_registers(self) -> None:
        """Read every value and event register; all or nothing"""
        try:
            self._values = await self._read_all(self._value_names)
        except DeviceError:
            self._values = {}
            raise
        logger.debug(f"Fetched {len(self._values)} registers from {self.settings.endpoint}")

    async def fetch_identity(self) -> None:
        """Read the identity registers (manufacturer, model, serial, firmware)"""
        self._identity = await self._read_all(self._identity_names)

    async def _read_all(self, names: list[str]) -> dict[str, float | int | str]:
        values = {}
        for name in names:
            register = self.settings.registers[name]
            result = await self._client.read(
                register.address,
                datatype=register.datatype,
                register_type=register.type,
                size=register.size,
                scale=register.scale,
            )
            if not result.success:
                raise self._read_error(register, result)
            values[name] = result.value
        return values

    def _read_error(self, register: RegisterDefinition, result: ReadResult) -> DeviceError:
        if result.link_error:
            host = self.settings.tcp.host if self.settings.tcp else self.settings.endpoint
            port = self.settings.tcp.port if self.settings.tcp else None
            return CommunicationError(
                f"Reading '{register.name}' failed: {result.error}",
                host=host,
                port=port,
            )
        return RegisterError(
            f"Reading '{register.name}' at {register.address} failed: {result.error}",
            register=register.name,
            address=register.address,
            code=result.exception_code,
        )

    def _value(self, name: str) -> float | int | str:
        try:
            return self._values[name]
        except KeyError:
            raise RegisterError(f"Register '{name}' not available, fetch registers first", register=name)

    def _number(self, name: str) -> float:
        value = self._value(name)
        if isinstance(value, str):
            raise RegisterError(f"Register '{name}' is not numeric", register=name)
        return float(value)

    def _identity_value(self, name: str) -> float | int | str:
        try:
            return self._identity[name]
        except KeyError:
            raise RegisterError(f"Identity register '{name}' not available", register=name)

    # --- typed accessors: values (energies in Wh) ---

    def ac_energy(self) -> float:
        return self._number("ac_energy")

    def ac_power_active(self) -> float:
        return self._number("ac_power_active")

    def ac_power_apparent(self) -> float:
        return self._number("ac_power_apparent")

    def ac_power_reactive(self) -> float:
        return self._number("ac_power_reactive")

    def ac_power_factor(self) -> float:
        return self._number("ac_power_factor")

    def ac_voltage(self, phase: Phase) -> float:
        return self._number(f"ac_voltage_{phase.suffix}")

    def ac_current(self, phase: Phase) -> float:
        return self._number(f"ac_current_{phase.suffix}")

    def ac_frequency(self) -> float:
        return self._number("ac_frequency")

    def dc_power(self, dc_input: Input) -> float:
        if dc_input == Input.TOTAL:
            return self._number("dc_power")
        return self._number(f"dc_power_{dc_input.value}")

    def dc_voltage(self, dc_input: Input) -> float:
        return self._number(f"dc_voltage_{dc_input.value}")

    def dc_current(self, dc_input: Input) -> float:
        return self._number(f"dc_current_{dc_input.value}")

    def dc_energy(self, dc_input: Input) -> float:
        return self._number(f"dc_energy_{dc_input.value}")

    # --- typed accessors: events ---

    def active_state_code(self) -> int:
        return int(self._number("active_state_code"))

    def state(self) -> str:
        code = int(self._number("state"))
        labels = self.settings.registers["state"].labels
        return labels.get(code, str(code))

    def events(self) -> list[str]:
        register = self.settings.registers["events"]
        # Signed and float datatypes can read back negative; keep the raw bit pattern
        width = 16 * get_register_count(register.datatype, register.size)
        bits = int(self._number("events")) & ((1 << width) - 1)
        active = []
        for index in range(bits.bit_length()):
            if bits >> index & 1:
                active.append(register.labels.get(index, f"BIT{index}"))
        return active

    # --- typed accessors: identity ---

    def manufacturer(self) -> str:
        return str(self._identity_value("manufacturer"))

    def model(self) -> str:
        return str(self._identity_value("model"))

    def serial_number(self) -> str:
        return str(self._identity_value("serial_number"))

    def firmware_version(self) -> str:
        return str(self._identity_value("firmware_version"))

    def device_address(self) -> int | None:
        if "device_address" not in self._identity:
            return None
        return int(self._identity["device_address"])
