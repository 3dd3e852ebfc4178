"""
Async Modbus Client

Wrapper around pymodbus for async Modbus TCP communication with
big-endian float32 register pairs.
"""

import asyncio
import struct

from pymodbus.client import AsyncModbusTcpClient
from pymodbus.exceptions import ModbusException

from ...common.exceptions import CommunicationError
from ...common.logging_setup import get_service_logger

logger = get_service_logger("device.modbus")


def registers_to_float32(high: int, low: int) -> float:
    """Decode two 16-bit registers (network word order) into a float32"""
    packed = struct.pack(">HH", high, low)
    return struct.unpack(">f", packed)[0]


def float32_to_registers(value: float) -> list[int]:
    """Encode a float32 into two 16-bit registers (network word order)"""
    high, low = struct.unpack(">HH", struct.pack(">f", value))
    return [high, low]


class ModbusClient:
    """
    Async Modbus TCP client.

    Connects lazily and reconnects when the transport drops. All failures
    surface as CommunicationError so callers only need one except clause.
    """

    def __init__(
        self,
        host: str,
        port: int = 502,
        timeout: float = 3.0,
    ):
        self.host = host
        self.port = port
        self.timeout = timeout

        self._client: AsyncModbusTcpClient | None = None
        self._lock = asyncio.Lock()
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected and self._client is not None

    async def connect(self) -> bool:
        """Establish connection to Modbus device"""
        async with self._lock:
            if self._connected and self._client and self._client.connected:
                return True

            if self._client is not None:
                logger.warning(f"Reconnecting to Modbus device at {self.host}:{self.port}")
                self._client.close()

            self._client = AsyncModbusTcpClient(
                host=self.host,
                port=self.port,
                timeout=self.timeout,
            )

            try:
                await self._client.connect()
            except (ModbusException, OSError) as e:
                logger.error(f"Connection error to {self.host}:{self.port}: {e}")
                self._connected = False
                return False

            self._connected = self._client.connected
            if self._connected:
                logger.debug(f"Connected to Modbus device at {self.host}:{self.port}")
            else:
                logger.warning(f"Failed to connect to Modbus device at {self.host}:{self.port}")
            return self._connected

    async def disconnect(self) -> None:
        """Close connection"""
        async with self._lock:
            if self._client:
                self._client.close()
                self._client = None
            self._connected = False
            logger.debug(f"Disconnected from {self.host}:{self.port}")

    async def read_holding_registers(
        self,
        address: int,
        count: int,
        slave_id: int = 1,
    ) -> list[int]:
        """
        Read a block of holding registers.

        Args:
            address: Starting register address
            count: Number of registers to read
            slave_id: Modbus slave (socket) ID

        Returns:
            Raw 16-bit register values

        Raises:
            CommunicationError: on connection, timeout or Modbus errors
        """
        await self._ensure_connected()

        try:
            response = await self._client.read_holding_registers(
                address=address,
                count=count,
                device_id=slave_id,
            )
        except ModbusException as e:
            self._connected = False
            raise self._error(f"Modbus exception reading {count} registers at {address}: {e}") from e
        except asyncio.TimeoutError as e:
            self._connected = False
            raise self._error(f"Read timeout at register {address}") from e

        if response.isError():
            raise self._error(f"Modbus error reading register {address}: {response}")

        if len(response.registers) < count:
            raise self._error(
                f"Short read at register {address}: expected {count}, got {len(response.registers)}"
            )

        return list(response.registers)

    async def write_registers(
        self,
        address: int,
        values: list[int],
        slave_id: int = 1,
    ) -> None:
        """
        Write multiple holding registers.

        Raises:
            CommunicationError: on connection, timeout or Modbus errors
        """
        await self._ensure_connected()

        try:
            response = await self._client.write_registers(
                address=address,
                values=values,
                device_id=slave_id,
            )
        except ModbusException as e:
            self._connected = False
            raise self._error(f"Modbus exception writing register {address}: {e}") from e
        except asyncio.TimeoutError as e:
            self._connected = False
            raise self._error(f"Write timeout at register {address}") from e

        if response.isError():
            raise self._error(f"Write failed at register {address}: {response}")

        logger.debug(
            f"Write successful: {self.host}:{self.port} slave={slave_id} "
            f"reg={address} values={values}"
        )

    async def _ensure_connected(self) -> None:
        """Ensure connection is established"""
        if self._connected and self._client and self._client.connected:
            return

        self._connected = False
        if not await self.connect():
            raise self._error(f"Not connected to {self.host}:{self.port}")

    def _error(self, message: str) -> CommunicationError:
        return CommunicationError(message, host=self.host, port=self.port)
