"""
Common Utilities

Shared modules used across all services:
- config.py - Configuration dataclasses
- exceptions.py - Custom exception classes
- logging_setup.py - Structured logging setup
- timestamp.py - UTC handling and interval alignment
"""

from .config import (
    ControllerConfig,
    ControlLoopSettings,
    ChargingStationSettings,
    MeterSettings,
    PriceSettings,
    StorageSettings,
    ApiSettings,
    LoggingSettings,
    CapacityTariffMode,
    load_controller_config,
    load_config_file,
)
from .exceptions import (
    WalleeError,
    ConfigError,
    DeviceError,
    CommunicationError,
    MeterDataError,
    ChargingStationError,
    InconsistentDataError,
    StorageError,
    PriceConflictError,
    PriceFetchError,
    NotificationError,
)
from .logging_setup import (
    setup_logging,
    get_service_logger,
    configure_from_env,
    log_control_iteration,
)

__all__ = [
    # Config
    "ControllerConfig",
    "ControlLoopSettings",
    "ChargingStationSettings",
    "MeterSettings",
    "PriceSettings",
    "StorageSettings",
    "ApiSettings",
    "LoggingSettings",
    "CapacityTariffMode",
    "load_controller_config",
    "load_config_file",
    # Exceptions
    "WalleeError",
    "ConfigError",
    "DeviceError",
    "CommunicationError",
    "MeterDataError",
    "ChargingStationError",
    "InconsistentDataError",
    "StorageError",
    "PriceConflictError",
    "PriceFetchError",
    "NotificationError",
    # Logging
    "setup_logging",
    "get_service_logger",
    "configure_from_env",
    "log_control_iteration",
]
