"""
Configuration Dataclasses

Type-safe configuration structures for the controller.
Configuration is read from a YAML file; secrets may come from the environment.
"""

import os
from dataclasses import dataclass, field
from datetime import time
from enum import Enum
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml

from .exceptions import ConfigError


class CapacityTariffMode(str, Enum):
    """How MaxTotalPowerWatts is interpreted"""
    INSTANTANEOUS = "instantaneous"
    QUARTER_HOUR = "quarter_hour"


@dataclass
class ControlLoopSettings:
    """Control loop behaviour"""
    loop_delay_ms: int = 5000
    max_safe_current_ampere: int = 16
    shadow_mode: bool = False
    consistency_max_attempts: int = 10
    consistency_retry_delay_ms: int = 250
    capacity_tariff_mode: CapacityTariffMode = CapacityTariffMode.QUARTER_HOUR


@dataclass
class ChargingStationSettings:
    """Alfen Eve modbus slave connection"""
    host: str = ""
    port: int = 502
    socket_id: int = 1
    timeout_s: float = 3.0


@dataclass
class MeterSettings:
    """HomeWizard P1 meter API"""
    url: str = ""
    timeout_s: float = 5.0


@dataclass
class PriceSettings:
    """Day-ahead price fetching from the ENTSO-E transparency platform"""
    enabled: bool = True
    api_key: str = ""
    domain: str = "10YBE----------2"
    fetch_interval_s: int = 300
    tomorrow_available_after: time = time(13, 10)
    local_timezone: str = "Europe/Brussels"


@dataclass
class StorageSettings:
    """Local SQLite database"""
    db_path: str = "/var/lib/wallee/wallee.sqlite"


@dataclass
class ApiSettings:
    """HTTP API for health, state, parameters and prices"""
    enabled: bool = True
    host: str = "127.0.0.1"
    port: int = 8084


@dataclass
class LoggingSettings:
    """Log output"""
    level: str = "INFO"
    json_format: bool = True


@dataclass
class ControllerConfig:
    """Complete controller configuration"""
    control: ControlLoopSettings = field(default_factory=ControlLoopSettings)
    charging_station: ChargingStationSettings = field(default_factory=ChargingStationSettings)
    meter: MeterSettings = field(default_factory=MeterSettings)
    prices: PriceSettings = field(default_factory=PriceSettings)
    storage: StorageSettings = field(default_factory=StorageSettings)
    api: ApiSettings = field(default_factory=ApiSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)


def _section(data: dict, name: str) -> dict:
    section = data.get(name) or {}
    if not isinstance(section, dict):
        raise ConfigError(f"section '{name}' must be a mapping", key=name)
    return section


def _required(section: dict, section_name: str, key: str) -> str:
    value = section.get(key)
    if value in (None, ""):
        raise ConfigError(
            f"missing required configuration key '{section_name}.{key}'",
            key=f"{section_name}.{key}",
        )
    return value


def _int(section: dict, section_name: str, key: str, default: int) -> int:
    value = section.get(key, default)
    if isinstance(value, bool):
        raise ConfigError(
            f"'{section_name}.{key}' must be an integer: {value!r}",
            key=f"{section_name}.{key}",
        )
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(
            f"'{section_name}.{key}' must be an integer: {value!r}",
            key=f"{section_name}.{key}",
        ) from e


def _float(section: dict, section_name: str, key: str, default: float) -> float:
    value = section.get(key, default)
    if isinstance(value, bool):
        raise ConfigError(
            f"'{section_name}.{key}' must be a number: {value!r}",
            key=f"{section_name}.{key}",
        )
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(
            f"'{section_name}.{key}' must be a number: {value!r}",
            key=f"{section_name}.{key}",
        ) from e


def _bool(section: dict, section_name: str, key: str, default: bool) -> bool:
    value = section.get(key, default)
    # Only YAML booleans; bool("false") is True
    if not isinstance(value, bool):
        raise ConfigError(
            f"'{section_name}.{key}' must be true or false: {value!r}",
            key=f"{section_name}.{key}",
        )
    return value


def _parse_time_of_day(value, key: str) -> time:
    if isinstance(value, time):
        return value
    # YAML reads an unquoted 13:10 as a sexagesimal int (790)
    if isinstance(value, int):
        return time(value // 60, value % 60)
    try:
        return time.fromisoformat(str(value))
    except ValueError as e:
        raise ConfigError(f"'{key}' is not a time of day: {value!r}", key=key) from e


def load_controller_config(data: dict) -> ControllerConfig:
    """Load ControllerConfig from dictionary (e.g., parsed YAML)"""
    control_data = _section(data, "control")
    try:
        tariff_mode = CapacityTariffMode(control_data.get("capacity_tariff_mode", "quarter_hour"))
    except ValueError as e:
        raise ConfigError(str(e), key="control.capacity_tariff_mode") from e

    control = ControlLoopSettings(
        loop_delay_ms=_int(control_data, "control", "loop_delay_ms", 5000),
        max_safe_current_ampere=_int(control_data, "control", "max_safe_current_ampere", 16),
        shadow_mode=_bool(control_data, "control", "shadow_mode", False),
        consistency_max_attempts=_int(control_data, "control", "consistency_max_attempts", 10),
        consistency_retry_delay_ms=_int(control_data, "control", "consistency_retry_delay_ms", 250),
        capacity_tariff_mode=tariff_mode,
    )
    if control.loop_delay_ms < 0:
        raise ConfigError("loop_delay_ms must not be negative", key="control.loop_delay_ms")
    if control.max_safe_current_ampere <= 0:
        raise ConfigError(
            "max_safe_current_ampere must be positive",
            key="control.max_safe_current_ampere",
        )
    if control.consistency_max_attempts < 1:
        raise ConfigError(
            "consistency_max_attempts must be at least 1",
            key="control.consistency_max_attempts",
        )

    station_data = _section(data, "charging_station")
    charging_station = ChargingStationSettings(
        host=_required(station_data, "charging_station", "host"),
        port=_int(station_data, "charging_station", "port", 502),
        socket_id=_int(station_data, "charging_station", "socket_id", 1),
        timeout_s=_float(station_data, "charging_station", "timeout_s", 3.0),
    )

    meter_data = _section(data, "meter")
    meter = MeterSettings(
        url=_required(meter_data, "meter", "url"),
        timeout_s=_float(meter_data, "meter", "timeout_s", 5.0),
    )

    price_data = _section(data, "prices")
    prices = PriceSettings(
        enabled=_bool(price_data, "prices", "enabled", True),
        api_key=os.environ.get("WALLEE_ENTSOE_API_KEY", price_data.get("api_key", "")),
        domain=price_data.get("domain", "10YBE----------2"),
        fetch_interval_s=_int(price_data, "prices", "fetch_interval_s", 300),
        tomorrow_available_after=_parse_time_of_day(
            price_data.get("tomorrow_available_after", "13:10"),
            "prices.tomorrow_available_after",
        ),
        local_timezone=str(price_data.get("local_timezone", "Europe/Brussels")),
    )
    try:
        ZoneInfo(prices.local_timezone)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ConfigError(
            f"unknown timezone '{prices.local_timezone}'",
            key="prices.local_timezone",
        ) from e
    if prices.enabled and not prices.api_key:
        raise ConfigError(
            "missing required configuration key 'prices.api_key' "
            "(or environment variable WALLEE_ENTSOE_API_KEY)",
            key="prices.api_key",
        )

    storage_data = _section(data, "storage")
    storage = StorageSettings(
        db_path=storage_data.get("db_path", "/var/lib/wallee/wallee.sqlite"),
    )

    api_data = _section(data, "api")
    api = ApiSettings(
        enabled=_bool(api_data, "api", "enabled", True),
        host=api_data.get("host", "127.0.0.1"),
        port=_int(api_data, "api", "port", 8084),
    )

    logging_data = _section(data, "logging")
    logging_settings = LoggingSettings(
        level=str(logging_data.get("level", "INFO")),
        json_format=_bool(logging_data, "logging", "json_format", True),
    )

    return ControllerConfig(
        control=control,
        charging_station=charging_station,
        meter=meter,
        prices=prices,
        storage=storage,
        api=api,
        logging=logging_settings,
    )


def load_config_file(config_path: str | Path) -> ControllerConfig:
    """
    Load configuration from YAML file.

    Raises:
        ConfigError: if the file is missing, unparsable, or invalid
    """
    path = Path(config_path)
    if not path.exists():
        raise ConfigError(f"configuration file not found: {path}")

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"cannot parse {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a mapping at the top level")

    return load_controller_config(data)
