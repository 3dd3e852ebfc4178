"""
Storage - Local persistence of charging parameters and day-ahead prices
"""

from .local_db import (
    ChargingControlParameters,
    ElectricityPrice,
    LocalDatabase,
    ParameterStore,
)

__all__ = [
    "ChargingControlParameters",
    "ElectricityPrice",
    "LocalDatabase",
    "ParameterStore",
]
