"""
Control Loop - Charging current limit

Each iteration:
1. Read charging parameters and current price from the local database
2. Read meter and charging station in parallel, retrying while the meter
   lags behind the station
3. Evaluate every registered policy against the same readings
4. Apply the most restrictive limit (minimum wins)
5. Write the limit to the charging station (unless in shadow mode)
6. Log and notify, then sleep until the next iteration

Communication and consistency failures hold the previous limit instead of
stopping the charger. Unexpected exceptions stop the loop.
"""

import asyncio
import logging
import math
import time

from ...common.config import ControlLoopSettings
from ...common.exceptions import (
    ChargingStationError,
    CommunicationError,
    InconsistentDataError,
    NotificationError,
    StorageError,
)
from ...common.logging_setup import get_service_logger, log_control_iteration
from ...common.timestamp import utc_now
from ...storage.local_db import ParameterStore
from ..device.charging_station import ChargingStation
from ..device.meter import MeterDataProvider
from ..device.models import ChargingStationData, MeterData
from ..notification.sinks import NotificationSink
from .policies import ChargingPolicy, Clock
from .state import ChargingPolicyResult, IterationResult, LoopExitReason

logger = get_service_logger("control")

# Errors after which the iteration holds the previous limit
ACQUISITION_ERRORS = (CommunicationError, InconsistentDataError, StorageError)

# Relative setpoint change that is logged at INFO instead of DEBUG
SIGNIFICANT_CHANGE = 0.1


def arbitrate(results: list[ChargingPolicyResult]) -> ChargingPolicyResult:
    """
    Pick the most restrictive policy result.

    Ties go to the earliest result, i.e. policy registration order.
    A NaN limit is treated as the most restrictive of all.
    """
    if not results:
        raise ValueError("At least one policy result is required")

    def key(result: ChargingPolicyResult) -> float:
        limit = result.current_limit_ampere
        return -math.inf if math.isnan(limit) else limit

    return min(results, key=key)


def is_significant_change(previous: float, current: float) -> bool:
    """True if current differs from previous by more than 10%"""
    if previous == 0:
        return current != 0
    return abs(current - previous) / abs(previous) > SIGNIFICANT_CHANGE


class ControlLoop:
    """
    Charging current control loop.

    Runs one iteration at a time, forever, until the stop event is set.
    Only this instance reads or writes the previous setpoint.
    """

    def __init__(
        self,
        settings: ControlLoopSettings,
        store: ParameterStore,
        meter: MeterDataProvider,
        station: ChargingStation,
        policies: list[ChargingPolicy],
        sink: NotificationSink,
        clock: Clock = utc_now,
    ):
        if not policies:
            raise ValueError("ControlLoop needs at least one charging policy")

        self._settings = settings
        self._store = store
        self._meter = meter
        self._station = station
        self._policies = list(policies)
        self._sink = sink
        self._clock = clock

        self._previous_setpoint: float = 0.0
        self._last_result: IterationResult | None = None
        self._iterations = 0

    @property
    def previous_setpoint(self) -> float:
        return self._previous_setpoint

    @property
    def last_result(self) -> IterationResult | None:
        return self._last_result

    @property
    def iterations(self) -> int:
        return self._iterations

    async def run(self, stop_event: asyncio.Event) -> LoopExitReason:
        """
        Run until stop_event is set.

        Returns:
            LoopExitReason.CANCELLED on a clean stop

        Raises:
            asyncio.CancelledError: the task running the loop was cancelled
            Exception: any unanticipated error, after logging it as critical
        """
        logger.info(
            f"Starting control loop with delay between iterations of "
            f"{self._settings.loop_delay_ms} milliseconds. Iterations are only logged at "
            f"INFO when the charging current limit changes significantly.",
            extra={
                "loop_delay_ms": self._settings.loop_delay_ms,
                "shadow_mode": self._settings.shadow_mode,
                "policies": [p.name for p in self._policies],
            },
        )

        try:
            while not stop_event.is_set():
                await self.run_iteration()
                await self._sleep(stop_event)
        except asyncio.CancelledError:
            logger.info("Control loop task cancelled.")
            raise
        except Exception:
            logger.critical("Exiting control loop because of unexpected exception.", exc_info=True)
            raise

        logger.info("Exiting control loop.")
        return LoopExitReason.CANCELLED

    async def run_iteration(self) -> IterationResult:
        """Execute a single control loop iteration"""
        loop_start = time.monotonic()
        result = IterationResult(
            timestamp=self._clock(),
            shadow_mode=self._settings.shadow_mode,
        )

        try:
            result.parameters = self._store.get_charging_parameters()
            result.price = self._store.get_price(result.timestamp)

            meter_data, station_data = await self._acquire_data()
            result.meter_data = meter_data
            result.station_data = station_data

            result.policy_results = await self._evaluate_policies(station_data, meter_data)
            binding = arbitrate(result.policy_results)
            result.binding_limit_ampere = binding.current_limit_ampere
            result.message = binding.message

        except ACQUISITION_ERRORS as e:
            logger.error(f"Failed to retrieve information in control loop: {e}", exc_info=True)
            result.fallback = True
            result.binding_limit_ampere = self._previous_setpoint
            result.message = (
                f"Error occurred, holding previous limit of "
                f"{self._previous_setpoint:.2f}A: {e.message}"
            )

        result.setpoint_ampere = self._sanitize(result.binding_limit_ampere)

        await self._actuate(result)

        result.execution_time_ms = (time.monotonic() - loop_start) * 1000
        await self._log_and_notify(result)

        # Remembered even if the send failed
        self._previous_setpoint = result.setpoint_ampere
        self._last_result = result
        self._iterations += 1
        return result

    async def _acquire_data(self) -> tuple[MeterData, ChargingStationData]:
        """
        Fetch meter and station data in parallel.

        The meter must account for at least the power the station reports;
        otherwise it has not caught up yet and both are fetched again.

        Raises:
            InconsistentDataError: meter still lagging after all attempts
        """
        max_attempts = self._settings.consistency_max_attempts
        retry_delay_s = self._settings.consistency_retry_delay_ms / 1000

        for attempt in range(1, max_attempts + 1):
            meter_data, station_data = await self._fetch_once()

            if meter_data.total_active_power >= station_data.real_power_sum:
                if attempt > 1:
                    logger.debug(f"Meter data consistent after {attempt} attempts")
                return meter_data, station_data

            logger.debug(
                f"Inconsistent data on attempt {attempt}/{max_attempts}: "
                f"meter {meter_data.total_active_power:.0f}W < "
                f"station {station_data.real_power_sum:.0f}W"
            )
            if attempt < max_attempts and retry_delay_s > 0:
                await asyncio.sleep(retry_delay_s)

        raise InconsistentDataError(
            max_attempts,
            meter_data.total_active_power,
            station_data.real_power_sum,
        )

    async def _fetch_once(self) -> tuple[MeterData, ChargingStationData]:
        meter_result, station_result = await asyncio.gather(
            self._meter.get_meter_data(),
            self._station.get_charging_station_data(),
            return_exceptions=True,
        )
        for outcome in (meter_result, station_result):
            if isinstance(outcome, BaseException):
                raise outcome
        return meter_result, station_result

    async def _evaluate_policies(
        self,
        station_data: ChargingStationData,
        meter_data: MeterData,
    ) -> list[ChargingPolicyResult]:
        """Evaluate all policies; results keep registration order"""
        results = await asyncio.gather(
            *(policy.evaluate(station_data, meter_data) for policy in self._policies)
        )
        return list(results)

    def _sanitize(self, limit: float) -> float:
        """Clamp a limit to what can be sent to hardware"""
        if math.isnan(limit):
            logger.warning("NaN detected in current limit, forcing 0A")
            return 0.0
        return max(0.0, min(float(self._settings.max_safe_current_ampere), limit))

    async def _actuate(self, result: IterationResult) -> None:
        if self._settings.shadow_mode:
            logger.warning(
                f"Running in SHADOW MODE, not sending current limit of "
                f"{result.setpoint_ampere:.2f} ampere"
            )
            return

        try:
            await self._station.set_current_limit(result.setpoint_ampere)
            result.send_success = True
        except ChargingStationError as e:
            # Retried next iteration with a freshly computed limit
            result.send_success = False
            result.send_error = e.message
            logger.error(f"Failed to send current limit to charging station: {e}", exc_info=True)

    async def _log_and_notify(self, result: IterationResult) -> None:
        if is_significant_change(self._previous_setpoint, result.setpoint_ampere):
            level = logging.INFO
        else:
            level = logging.DEBUG
        log_control_iteration(logger, level, result)

        try:
            await self._sink.notify(
                result.parameters,
                result.price,
                result.station_data,
                result.meter_data,
                result.setpoint_ampere,
                result.message,
            )
        except NotificationError as e:
            logger.error(f"Failed to notify about control loop iteration: {e}")

    async def _sleep(self, stop_event: asyncio.Event) -> None:
        """Wait for the loop delay, returning early when stop_event is set"""
        try:
            await asyncio.wait_for(
                stop_event.wait(),
                timeout=self._settings.loop_delay_ms / 1000,
            )
        except asyncio.TimeoutError:
            pass
