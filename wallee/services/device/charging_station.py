"""
Charging Station Clients

ChargingStation is the contract the control loop consumes.
AlfenEveChargingStation implements it over Modbus TCP.
"""

import math
import time
from abc import ABC, abstractmethod

from ...common.exceptions import ChargingStationError, CommunicationError
from ...common.logging_setup import get_service_logger
from .modbus_client import ModbusClient, float32_to_registers, registers_to_float32
from .models import ChargingStationData

logger = get_service_logger("device.station")


class ChargingStation(ABC):
    """Charging station contract"""

    @abstractmethod
    async def get_charging_station_data(self) -> ChargingStationData:
        """
        Get the latest charging currents and power from the station.

        Raises:
            ChargingStationError: communication with the station failed
        """

    @abstractmethod
    async def set_current_limit(self, current_limit_ampere: float) -> None:
        """
        Instruct the station to draw no more than current_limit_ampere.

        Raises:
            ChargingStationError: communication with the station failed
        """

    async def close(self) -> None:
        """Release any connection held by the client"""


class AlfenEveChargingStation(ChargingStation):
    """
    Modbus master for an Alfen Eve charging station.

    Only socket 1 is controlled. The station must be configured for active
    load balancing with "Energy Management System" as data source, otherwise
    it does not act as a Modbus slave.

    All values are float32 spread over two registers, high word first.
    """

    REGISTER_CURRENT_PHASE_1 = 320
    REGISTER_REAL_POWER_SUM = 344
    REGISTER_MAX_CURRENT_SETPOINT = 1210
    WARN_THRESHOLD_MS = 500

    def __init__(self, client: ModbusClient, socket_id: int = 1):
        self.client = client
        self.socket_id = socket_id

    async def get_charging_station_data(self) -> ChargingStationData:
        count = self.REGISTER_REAL_POWER_SUM - self.REGISTER_CURRENT_PHASE_1 + 2
        start = time.monotonic()
        try:
            measurements = await self.client.read_holding_registers(
                self.REGISTER_CURRENT_PHASE_1, count, slave_id=self.socket_id
            )
            setpoint_registers = await self.client.read_holding_registers(
                self.REGISTER_MAX_CURRENT_SETPOINT, 2, slave_id=self.socket_id
            )
        except CommunicationError as e:
            raise ChargingStationError(
                f"Failed to fetch data from charging station at {self.client.host}: {e.message}",
                host=self.client.host,
                port=self.client.port,
            ) from e
        self._log_duration("Getting currents and RealPowerSum", start)

        offset = self.REGISTER_REAL_POWER_SUM - self.REGISTER_CURRENT_PHASE_1
        values = [
            registers_to_float32(measurements[i], measurements[i + 1])
            for i in (0, 2, 4, offset)
        ]
        if any(math.isnan(v) or math.isinf(v) for v in values):
            raise ChargingStationError(
                f"Charging station at {self.client.host} returned non-finite values: {values}",
                host=self.client.host,
                port=self.client.port,
            )

        setpoint = registers_to_float32(setpoint_registers[0], setpoint_registers[1])

        return ChargingStationData(
            real_power_sum=values[3],
            current1=values[0],
            current2=values[1],
            current3=values[2],
            current_limit_setpoint=setpoint if math.isfinite(setpoint) else None,
        )

    async def set_current_limit(self, current_limit_ampere: float) -> None:
        start = time.monotonic()
        try:
            await self.client.write_registers(
                self.REGISTER_MAX_CURRENT_SETPOINT,
                float32_to_registers(current_limit_ampere),
                slave_id=self.socket_id,
            )
        except CommunicationError as e:
            raise ChargingStationError(
                f"Failed to send current limit to charging station at {self.client.host}: {e.message}",
                host=self.client.host,
                port=self.client.port,
            ) from e
        self._log_duration("Setting current limit", start)

    async def close(self) -> None:
        await self.client.disconnect()

    def _log_duration(self, action: str, start: float) -> None:
        elapsed_ms = (time.monotonic() - start) * 1000
        if elapsed_ms >= self.WARN_THRESHOLD_MS:
            logger.warning(f"{action} over modbus took {elapsed_ms:.0f} milliseconds")
        else:
            logger.debug(f"{action} over modbus took {elapsed_ms:.0f} milliseconds")
