"""
Charging Policies - Pluggable current-limit constraints

Each policy maps the current station and meter readings (plus stored
parameters) to a proposed current limit with a human-readable reason.
The control loop applies the most restrictive one.

New policies can be added by:
1. Create class extending ChargingPolicy
2. Implement evaluate()
3. Register it in build_policies()
"""

import math
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Callable

from ...common.config import CapacityTariffMode, ControlLoopSettings
from ...common.exceptions import MeterDataError
from ...common.logging_setup import get_service_logger
from ...common.timestamp import QUARTER_HOUR_SECONDS, most_recent_quarter_hour, utc_now
from ...storage.local_db import ParameterStore
from ..device.models import ChargingStationData, MeterData
from .state import ChargingPolicyResult

logger = get_service_logger("control.policy")

Clock = Callable[[], datetime]

JOULES_PER_KWH = 3_600_000
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class ChargingPolicy(ABC):
    """Base class for all charging policies"""

    @property
    @abstractmethod
    def name(self) -> str:
        """Short identifier used in logs and the state endpoint"""

    @abstractmethod
    async def evaluate(
        self,
        station_data: ChargingStationData | None,
        meter_data: MeterData | None,
    ) -> ChargingPolicyResult:
        """Propose a current limit for the charging station"""

    def _result(self, current_limit_ampere: float, message: str) -> ChargingPolicyResult:
        return ChargingPolicyResult(
            current_limit_ampere=current_limit_ampere,
            message=message,
            policy=self.name,
        )

    def _require_data(
        self,
        station_data: ChargingStationData | None,
        meter_data: MeterData | None,
    ) -> tuple[ChargingStationData, MeterData]:
        if station_data is None or meter_data is None:
            raise ValueError(f"Charging station data and meter data are required for {self.name}")
        return station_data, meter_data


def _voltage_sum(meter_data: MeterData) -> float:
    voltage_sum = meter_data.voltage_sum
    if not voltage_sum > 0:
        raise MeterDataError(f"Meter reported an unusable voltage sum: {voltage_sum}")
    return voltage_sum


class PricePolicy(ChargingPolicy):
    """
    Forbid charging while the day-ahead price is unknown or above the
    configured maximum; otherwise impose no constraint.
    """

    name = "price"

    def __init__(self, store: ParameterStore, clock: Clock = utc_now):
        self._store = store
        self._clock = clock

    async def evaluate(self, station_data, meter_data) -> ChargingPolicyResult:
        max_price = self._store.get_charging_parameters().max_price_eurocent_per_mwh
        current_price = self._store.get_price(self._clock())

        if current_price is None:
            logger.debug("Price is unknown")
            return self._result(0.0, "Price is unknown.")

        price = current_price.price_eurocent_per_mwh
        if price > max_price:
            logger.debug(f"Price is too high: {price} > {max_price}")
            return self._result(0.0, f"Price is too high: {price} > {max_price}")

        logger.debug(f"Price is acceptable: {price} <= {max_price}")
        return self._result(math.inf, f"Price is acceptable: {price} <= {max_price}")


class WireCapacityPolicy(ChargingPolicy):
    """
    Keep the current on every phase of the household wiring below
    max_safe_current_ampere.

    Phase mapping between meter and station is unknown, so the smallest
    station phase current is taken as the charging share of every phase.
    This slightly overestimates non-charger loads. For single-phase charging
    the smallest current is zero and the estimate degrades to the raw meter
    current.
    """

    name = "wire_capacity"

    def __init__(self, max_safe_current_ampere: float):
        self.max_safe_current_ampere = max_safe_current_ampere

    async def evaluate(self, station_data, meter_data) -> ChargingPolicyResult:
        station_data, meter_data = self._require_data(station_data, meter_data)

        smallest_charging_current = min(station_data.currents)
        non_charger_currents = [
            meter_current - smallest_charging_current
            for meter_current in meter_data.currents
        ]
        if any(current < 0 for current in non_charger_currents):
            # Meter has not caught up with the charger yet
            logger.warning(
                "Meter currents are lower than charging currents, "
                f"assuming measurement lag: meter={meter_data.currents} "
                f"station={station_data.currents}"
            )

        current_limit = min(
            self.max_safe_current_ampere - non_charger_current
            for non_charger_current in non_charger_currents
        )

        logger.debug(f"Wire capacity policy result: {current_limit:.2f} ampere")
        return self._result(
            current_limit,
            f"Limiting meter current to {self.max_safe_current_ampere}A.",
        )


class CapacityTariffPolicy(ChargingPolicy):
    """
    Keep instantaneous meter power below MaxTotalPowerWatts, assuming the
    charger draws a balanced three-phase current.
    """

    name = "capacity_tariff"

    def __init__(self, store: ParameterStore):
        self._store = store

    async def evaluate(self, station_data, meter_data) -> ChargingPolicyResult:
        station_data, meter_data = self._require_data(station_data, meter_data)
        max_total_power = self._store.get_charging_parameters().max_total_power_watts

        non_charger_power = meter_data.total_active_power - station_data.real_power_sum
        if non_charger_power < 0:
            # Meter is out of date and does not show the charging power yet
            logger.warning(
                "Meter data is not yet showing charging, capacity tariff result may be unreliable"
            )
            non_charger_power = meter_data.total_active_power

        power_available_for_charging = max_total_power - non_charger_power
        current_limit = power_available_for_charging / _voltage_sum(meter_data)

        logger.debug(f"Capacity tariff policy result: {current_limit:.2f} ampere")
        return self._result(current_limit, f"Limiting meter power to {max_total_power}W.")


class QuarterHourCapacityTariffPolicy(ChargingPolicy):
    """
    Interpret MaxTotalPowerWatts as the ceiling on average power over each
    quarter-hour (:00, :15, :30, :45 UTC), as billed by the Flanders
    capacity tariff.

    The remaining energy budget of the current quarter-hour is spread over
    its remaining seconds, so the limit tightens as budget is consumed and
    loosens when early consumption was low.

    The quarter-hour baseline is mutable state owned by this instance.
    Evaluate it from one task at a time.
    """

    name = "capacity_tariff_quarter_hour"

    def __init__(self, store: ParameterStore, clock: Clock = utc_now):
        self._store = store
        self._clock = clock
        # (start of quarter-hour, estimated cumulative import at that start in kWh)
        self._baseline: tuple[datetime, float] = (EPOCH, 0.0)

    @property
    def baseline(self) -> tuple[datetime, float]:
        return self._baseline

    async def evaluate(self, station_data, meter_data) -> ChargingPolicyResult:
        station_data, meter_data = self._require_data(station_data, meter_data)
        max_total_power = self._store.get_charging_parameters().max_total_power_watts

        now = self._clock()
        self._refresh_baseline(now, meter_data, max_total_power)
        quarter_start, import_at_start_kwh = self._baseline

        energy_budget_joules = max_total_power * QUARTER_HOUR_SECONDS
        consumed_joules = (meter_data.total_power_import_kwh - import_at_start_kwh) * JOULES_PER_KWH
        remaining_joules = energy_budget_joules - consumed_joules
        quarter_end = quarter_start + timedelta(seconds=QUARTER_HOUR_SECONDS)
        remaining_seconds = (quarter_end - now).total_seconds()

        power_limit_watts = remaining_joules / remaining_seconds
        current_limit = power_limit_watts / _voltage_sum(meter_data)

        logger.debug(
            f"Quarter-hour policy: consumed={consumed_joules:.0f}J of {energy_budget_joules:.0f}J, "
            f"{remaining_seconds:.0f}s left, result {current_limit:.2f} ampere"
        )
        return self._result(
            current_limit,
            f"Limiting meter power to {power_limit_watts:.0f}W to stay within quarter-hour budget.",
        )

    def _refresh_baseline(self, now: datetime, meter_data: MeterData, max_total_power: float) -> None:
        """Move the baseline to the current quarter-hour when a boundary was crossed"""
        quarter_start = most_recent_quarter_hour(now)
        if self._baseline[0] >= quarter_start:
            return

        # The import at the boundary itself was not observed; bound it by
        # assuming max power was drawn since the boundary.
        seconds_elapsed = (now - quarter_start).total_seconds()
        import_correction_kwh = seconds_elapsed * max_total_power / JOULES_PER_KWH
        import_at_start_kwh = meter_data.total_power_import_kwh - import_correction_kwh

        self._baseline = (quarter_start, import_at_start_kwh)
        logger.debug(
            f"New quarter-hour {quarter_start.isoformat()}: "
            f"estimated import at start {import_at_start_kwh:.4f}kWh"
        )


def build_policies(
    settings: ControlLoopSettings,
    store: ParameterStore,
    clock: Clock = utc_now,
) -> list[ChargingPolicy]:
    """
    Create the registered policy set.

    Order matters only for ties: the first policy with the minimal limit wins.
    """
    if settings.capacity_tariff_mode == CapacityTariffMode.QUARTER_HOUR:
        capacity_policy: ChargingPolicy = QuarterHourCapacityTariffPolicy(store, clock)
    else:
        capacity_policy = CapacityTariffPolicy(store)

    return [
        PricePolicy(store, clock),
        WireCapacityPolicy(settings.max_safe_current_ampere),
        capacity_policy,
    ]
