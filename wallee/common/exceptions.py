"""
Custom Exception Classes for the Wallee charging controller

Hierarchical exception structure for error handling across services.
The control loop treats everything marked recoverable as a per-iteration
failure and anything outside this hierarchy as fatal.
"""


class WalleeError(Exception):
    """Base exception for all Wallee controller errors"""

    def __init__(self, message: str, recoverable: bool = True):
        self.message = message
        self.recoverable = recoverable
        super().__init__(message)


class ConfigError(WalleeError):
    """Configuration-related errors"""

    def __init__(self, message: str, key: str | None = None):
        self.key = key
        super().__init__(f"Config Error: {message}", recoverable=False)


class DeviceError(WalleeError):
    """Device communication errors"""

    def __init__(
        self,
        message: str,
        device_name: str | None = None,
        recoverable: bool = True,
    ):
        self.device_name = device_name
        super().__init__(f"Device Error: {message}", recoverable)


class CommunicationError(DeviceError):
    """Modbus/HTTP transport errors"""

    def __init__(
        self,
        message: str,
        device_name: str | None = None,
        host: str | None = None,
        port: int | None = None,
    ):
        self.host = host
        self.port = port
        super().__init__(message, device_name, recoverable=True)


class MeterDataError(CommunicationError):
    """Meter unreachable, timed out, or returned an unexpected response"""

    def __init__(self, message: str, url: str | None = None):
        self.url = url
        super().__init__(message, device_name="meter")


class ChargingStationError(CommunicationError):
    """Charging station unreachable or rejected a request"""

    def __init__(
        self,
        message: str,
        host: str | None = None,
        port: int | None = None,
    ):
        super().__init__(message, device_name="charging_station", host=host, port=port)


class InconsistentDataError(WalleeError):
    """Meter kept lagging behind the charging station after all retries"""

    def __init__(self, attempts: int, meter_power_w: float, station_power_w: float):
        self.attempts = attempts
        self.meter_power_w = meter_power_w
        self.station_power_w = station_power_w
        super().__init__(
            f"Meter data inconsistent with charging station data after {attempts} attempts: "
            f"meter {meter_power_w:.0f}W < station {station_power_w:.0f}W",
            recoverable=True,
        )


class StorageError(WalleeError):
    """Local database errors"""

    def __init__(self, message: str, recoverable: bool = True):
        super().__init__(f"Storage Error: {message}", recoverable)


class PriceConflictError(StorageError):
    """A price interval overlaps one that is already stored"""

    def __init__(self, price, conflicting_price):
        self.price = price
        self.conflicting_price = conflicting_price
        super().__init__(
            f"Price '{price}' cannot be saved because it conflicts with "
            f"an existing price: {conflicting_price}",
            recoverable=False,
        )


class PriceFetchError(WalleeError):
    """Day-ahead price download failed or returned unexpected data"""

    def __init__(self, message: str):
        super().__init__(f"Price Fetch Error: {message}", recoverable=True)


class NotificationError(WalleeError):
    """A notification sink failed to deliver an update"""

    def __init__(self, message: str, sink: str | None = None):
        self.sink = sink
        super().__init__(f"Notification Error: {message}", recoverable=True)
