"""pytest configuration and shared fakes for the Wallee test suite.

The fakes implement the collaborator contracts in memory so the control
loop, policies and API can be tested without hardware, network or disk.
"""

from datetime import datetime, timedelta, timezone

import pytest

from wallee.common.config import CapacityTariffMode, ControlLoopSettings
from wallee.common.exceptions import ChargingStationError, MeterDataError, PriceConflictError
from wallee.services.device.charging_station import ChargingStation
from wallee.services.device.meter import MeterDataProvider
from wallee.services.device.models import ChargingStationData, MeterData
from wallee.services.notification.sinks import NotificationSink
from wallee.storage.local_db import ChargingControlParameters, ElectricityPrice, ParameterStore

# -----------------------------------------------------------------------
# Shared constants
# -----------------------------------------------------------------------

NOW = datetime(2024, 5, 14, 10, 7, 30, tzinfo=timezone.utc)


# -----------------------------------------------------------------------
# Builders
# -----------------------------------------------------------------------


def meter_data(
    power: float = 0.0,
    currents: tuple[float, float, float] = (0.0, 0.0, 0.0),
    voltages: tuple[float, float, float] = (230.0, 230.0, 230.0),
    import_kwh: float = 1000.0,
) -> MeterData:
    return MeterData(
        total_active_power=power,
        current1=currents[0],
        current2=currents[1],
        current3=currents[2],
        voltage1=voltages[0],
        voltage2=voltages[1],
        voltage3=voltages[2],
        total_power_import_kwh=import_kwh,
    )


def station_data(
    power: float = 0.0,
    currents: tuple[float, float, float] = (0.0, 0.0, 0.0),
) -> ChargingStationData:
    return ChargingStationData(
        real_power_sum=power,
        current1=currents[0],
        current2=currents[1],
        current3=currents[2],
    )


def price(start: datetime, eurocent_per_mwh: int, minutes: int = 60) -> ElectricityPrice:
    return ElectricityPrice(start, start + timedelta(minutes=minutes), eurocent_per_mwh)


# -----------------------------------------------------------------------
# Fakes
# -----------------------------------------------------------------------


class FixedClock:
    """Callable clock that only moves when told to"""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeMeter(MeterDataProvider):
    """Returns queued readings in order, then repeats the last one"""

    def __init__(self, *readings: MeterData | Exception):
        self.readings = list(readings) or [meter_data()]
        self.calls = 0
        self.closed = False

    async def get_meter_data(self) -> MeterData:
        index = min(self.calls, len(self.readings) - 1)
        self.calls += 1
        reading = self.readings[index]
        if isinstance(reading, Exception):
            raise reading
        return reading

    async def close(self) -> None:
        self.closed = True


class FakeStation(ChargingStation):
    """Records every current limit it is asked to apply"""

    def __init__(self, *readings: ChargingStationData | Exception, fail_on_set: bool = False):
        self.readings = list(readings) or [station_data()]
        self.calls = 0
        self.fail_on_set = fail_on_set
        self.limits: list[float] = []
        self.closed = False

    async def get_charging_station_data(self) -> ChargingStationData:
        index = min(self.calls, len(self.readings) - 1)
        self.calls += 1
        reading = self.readings[index]
        if isinstance(reading, Exception):
            raise reading
        return reading

    async def set_current_limit(self, current_limit_ampere: float) -> None:
        if self.fail_on_set:
            raise ChargingStationError("connection refused", host="station", port=502)
        self.limits.append(current_limit_ampere)

    async def close(self) -> None:
        self.closed = True


class FakeStore(ParameterStore):
    """In-memory ParameterStore with the same overlap rules as LocalDatabase"""

    def __init__(self, parameters: ChargingControlParameters | None = None, prices=()):
        self.parameters = parameters or ChargingControlParameters()
        self.prices: list[ElectricityPrice] = list(prices)

    def get_charging_parameters(self) -> ChargingControlParameters:
        return self.parameters

    def save_charging_parameters(self, parameters: ChargingControlParameters) -> None:
        self.parameters = parameters

    def get_price(self, instant: datetime) -> ElectricityPrice | None:
        for stored in self.prices:
            if stored.contains(instant):
                return stored
        return None

    def get_prices(self, start: datetime, end: datetime) -> list[ElectricityPrice]:
        return sorted(
            (p for p in self.prices if p.start_time < end and p.end_time > start),
            key=lambda p: p.start_time,
        )

    def save_prices(self, prices: list[ElectricityPrice]) -> None:
        for new in prices:
            for stored in self.prices:
                if stored.overlaps(new):
                    raise PriceConflictError(new, stored)
        self.prices.extend(prices)


class FakeSink(NotificationSink):
    """Captures notifications; can be told to fail"""

    def __init__(self, error: Exception | None = None):
        self.notifications: list[dict] = []
        self.error = error

    async def notify(self, parameters, price, station_data, meter_data, limit_ampere, message) -> None:
        if self.error is not None:
            raise self.error
        self.notifications.append({
            "parameters": parameters,
            "price": price,
            "station_data": station_data,
            "meter_data": meter_data,
            "limit_ampere": limit_ampere,
            "message": message,
        })


# -----------------------------------------------------------------------
# Shared fixtures
# -----------------------------------------------------------------------


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def store() -> FakeStore:
    return FakeStore(ChargingControlParameters(max_total_power_watts=4000, max_price_eurocent_per_mwh=10000))


@pytest.fixture
def settings() -> ControlLoopSettings:
    """Fast loop settings: no sleeping between consistency retries"""
    return ControlLoopSettings(
        loop_delay_ms=0,
        max_safe_current_ampere=16,
        consistency_max_attempts=10,
        consistency_retry_delay_ms=0,
        capacity_tariff_mode=CapacityTariffMode.INSTANTANEOUS,
    )


@pytest.fixture
def meter_error() -> MeterDataError:
    return MeterDataError("timed out", url="http://meter/api/v1/data")
