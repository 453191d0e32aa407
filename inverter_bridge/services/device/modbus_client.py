"""
Async Modbus Client

Wrapper around pymodbus for async Modbus TCP and RTU serial communication.
"""

import asyncio
import math
import struct
from dataclasses import dataclass

from pymodbus.client import AsyncModbusSerialClient, AsyncModbusTcpClient
from pymodbus.exceptions import ModbusException

from inverter_bridge.common.config import ModbusSettings, RegisterDataType
from inverter_bridge.common.logging_setup import get_service_logger

logger = get_service_logger("modbus")

REGISTER_COUNTS = {
    RegisterDataType.UINT16: 1,
    RegisterDataType.INT16: 1,
    RegisterDataType.UINT32: 2,
    RegisterDataType.INT32: 2,
    RegisterDataType.FLOAT32: 2,
    RegisterDataType.FLOAT64: 4,
    RegisterDataType.UTF8: 16,
}


@dataclass
class ReadResult:
    """Result of a register read operation"""
    success: bool
    value: float | int | str | None = None
    raw_registers: list[int] | None = None
    error: str | None = None
    exception_code: int | None = None  # Modbus exception code from the device
    link_error: bool = False            # Connection/timeout rather than a device reply


def get_register_count(datatype: RegisterDataType, size: int = 0) -> int:
    """Get number of registers for a data type. size overrides default if > 0."""
    if size > 0:
        return size
    return REGISTER_COUNTS.get(datatype, 1)


def decode_registers(
    registers: list[int],
    datatype: RegisterDataType,
) -> float | int | str | None:
    """Convert raw big-endian registers to a typed value"""
    if not registers:
        return None

    try:
        if datatype == RegisterDataType.UINT16:
            return registers[0]

        elif datatype == RegisterDataType.INT16:
            value = registers[0]
            if value >= 0x8000:
                value -= 0x10000
            return value

        elif datatype == RegisterDataType.UINT32:
            if len(registers) < 2:
                return None
            # Big-endian: high word first
            return (registers[0] << 16) | registers[1]

        elif datatype == RegisterDataType.INT32:
            if len(registers) < 2:
                return None
            value = (registers[0] << 16) | registers[1]
            if value >= 0x80000000:
                value -= 0x100000000
            return value

        elif datatype == RegisterDataType.FLOAT32:
            if len(registers) < 2:
                return None
            packed = struct.pack(">HH", registers[0], registers[1])
            value = struct.unpack(">f", packed)[0]
            if math.isnan(value) or math.isinf(value):
                return None
            return value

        elif datatype == RegisterDataType.FLOAT64:
            if len(registers) < 4:
                return None
            packed = struct.pack(">HHHH", *registers[:4])
            value = struct.unpack(">d", packed)[0]
            if math.isnan(value) or math.isinf(value):
                return None
            return value

        elif datatype == RegisterDataType.UTF8:
            raw_bytes = b"".join(reg.to_bytes(2, byteorder="big") for reg in registers)
            return raw_bytes.decode("utf-8", errors="replace").rstrip("\x00").strip()

        return registers[0]

    except (struct.error, IndexError, OverflowError) as e:
        logger.warning(f"Error converting registers: {e}")
        return None


class ModbusClient:
    """
    Async Modbus client for one device.

    Handles:
    - Modbus TCP connections
    - Modbus RTU over a local serial port
    - Various register data types (uint16, int16, uint32, int32, float32, float64, utf8)
    """

    def __init__(self, settings: ModbusSettings):
        self.settings = settings
        self.slave_id = settings.slave_id
        self.timeout = settings.response_timeout.seconds

        self._client: AsyncModbusTcpClient | AsyncModbusSerialClient | None = None
        self._lock = asyncio.Lock()

    @property
    def endpoint(self) -> str:
        return self.settings.endpoint

    @property
    def is_connected(self) -> bool:
        return self._client is not None and self._client.connected

    def _create_client(self) -> AsyncModbusTcpClient | AsyncModbusSerialClient:
        if self.settings.tcp is not None:
            return AsyncModbusTcpClient(
                host=self.settings.tcp.host,
                port=self.settings.tcp.port,
                timeout=self.timeout,
                retries=0,
            )
        rtu = self.settings.rtu
        return AsyncModbusSerialClient(
            port=rtu.device,
            baudrate=rtu.baud,
            parity=rtu.parity,
            stopbits=rtu.stopbits,
            timeout=self.timeout,
            retries=0,
        )

    async def connect(self) -> bool:
        """
        Establish connection to the Modbus device.

        Raises:
            ValueError/TypeError: the client could not be built from the
                configured parameters (not retryable)
        """
        async with self._lock:
            if self.is_connected:
                return True

            if self._client is None:
                self._client = self._create_client()

            try:
                connected = await self._client.connect()
            except (ModbusException, OSError) as e:
                logger.debug(f"Connection error to {self.endpoint}: {e}")
                connected = False

            if connected:
                logger.debug(f"Connected to Modbus device at {self.endpoint}")
            return bool(connected)

    async def disconnect(self) -> None:
        """Close connection"""
        async with self._lock:
            if self._client:
                self._client.close()
                self._client = None
            logger.debug(f"Disconnected from {self.endpoint}")

    async def read(
        self,
        address: int,
        datatype: RegisterDataType = RegisterDataType.UINT16,
        register_type: str = "holding",
        size: int = 0,
        scale: float = 1.0,
    ) -> ReadResult:
        """
        Read holding or input registers with data type conversion.

        Args:
            address: Starting register address
            datatype: Data type for conversion
            register_type: "holding" or "input"
            size: Register count override (0 = datatype default)
            scale: Scale factor to apply to numeric values

        Returns:
            ReadResult with converted value
        """
        if not self.is_connected:
            return ReadResult(
                success=False,
                error=f"Not connected to {self.endpoint}",
                link_error=True,
            )

        count = get_register_count(datatype, size)
        try:
            async with self._lock:
                # A reconnect may have closed the client while this read waited
                if self._client is None:
                    return ReadResult(
                        success=False,
                        error=f"Not connected to {self.endpoint}",
                        link_error=True,
                    )
                if register_type == "input":
                    response = await self._client.read_input_registers(
                        address=address,
                        count=count,
                        device_id=self.slave_id,
                    )
                else:
                    response = await self._client.read_holding_registers(
                        address=address,
                        count=count,
                        device_id=self.slave_id,
                    )

            if response.isError():
                return ReadResult(
                    success=False,
                    error=f"Modbus error: {response}",
                    exception_code=getattr(response, "exception_code", None),
                )

            value = decode_registers(response.registers, datatype)
            if value is None:
                return ReadResult(
                    success=False,
                    raw_registers=list(response.registers),
                    error=f"Could not decode {datatype.value} at {address}",
                )

            if not isinstance(value, str):
                value = value * scale

            return ReadResult(
                success=True,
                value=value,
                raw_registers=list(response.registers),
            )

        except ModbusException as e:
            return ReadResult(success=False, error=f"Modbus exception: {e}", link_error=True)
        except asyncio.TimeoutError:
            return ReadResult(success=False, error="Read timeout", link_error=True)
        except (ConnectionError, OSError) as e:
            return ReadResult(success=False, error=str(e), link_error=True)
