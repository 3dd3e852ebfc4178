"""
Device Service - Meter and charging station I/O

Responsibilities:
- Read the main meter over HTTP
- Read and write the charging station over Modbus TCP
"""

from .charging_station import AlfenEveChargingStation, ChargingStation
from .meter import HomeWizardMeterDataProvider, MeterDataProvider
from .modbus_client import ModbusClient
from .models import ChargingStationData, MeterData

__all__ = [
    "AlfenEveChargingStation",
    "ChargingStation",
    "ChargingStationData",
    "HomeWizardMeterDataProvider",
    "MeterData",
    "MeterDataProvider",
    "ModbusClient",
]
