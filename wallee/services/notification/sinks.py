"""
Notification Sinks

Receivers of the per-iteration outcome of the control loop. A sink that
cannot deliver an update raises NotificationError; the loop logs it and
carries on.
"""

from abc import ABC, abstractmethod
from collections import deque
from datetime import datetime
from typing import Any, Callable

from ...common.logging_setup import get_service_logger
from ...common.timestamp import utc_now
from ...storage.local_db import ChargingControlParameters, ElectricityPrice
from ..device.models import ChargingStationData, MeterData

logger = get_service_logger("notification")

DEFAULT_HISTORY_SIZE = 720  # one hour at the default 5s loop delay


class NotificationSink(ABC):
    """Receives one update per control loop iteration"""

    @property
    def name(self) -> str:
        return type(self).__name__

    @abstractmethod
    async def notify(
        self,
        parameters: ChargingControlParameters | None,
        price: ElectricityPrice | None,
        station_data: ChargingStationData | None,
        meter_data: MeterData | None,
        limit_ampere: float,
        message: str,
    ) -> None:
        """
        Publish an iteration outcome.

        Raises:
            NotificationError: delivery failed, next update may succeed
        """


def build_snapshot(
    timestamp: datetime,
    parameters: ChargingControlParameters | None,
    price: ElectricityPrice | None,
    station_data: ChargingStationData | None,
    meter_data: MeterData | None,
    limit_ampere: float,
    message: str,
) -> dict[str, Any]:
    """JSON-serialisable view of one notification"""
    return {
        "timestamp": timestamp.isoformat(),
        "parameters": parameters.to_dict() if parameters else None,
        "price": price.to_dict() if price else None,
        "station_data": station_data.to_dict() if station_data else None,
        "meter_data": meter_data.to_dict() if meter_data else None,
        "current_limit_ampere": round(limit_ampere, 2),
        "message": message,
    }


class SnapshotNotificationSink(NotificationSink):
    """
    In-memory sink backing the HTTP API.

    Keeps the most recent snapshot plus a bounded history (oldest entries
    are dropped once max_history is reached).
    """

    def __init__(
        self,
        max_history: int = DEFAULT_HISTORY_SIZE,
        clock: Callable[[], datetime] = utc_now,
    ):
        if max_history < 1:
            raise ValueError("max_history must be at least 1")
        self._history: deque[dict[str, Any]] = deque(maxlen=max_history)
        self._clock = clock

    @property
    def latest(self) -> dict[str, Any] | None:
        return self._history[-1] if self._history else None

    def history(self, limit: int | None = None) -> list[dict[str, Any]]:
        """Snapshots oldest first, optionally only the newest `limit`"""
        items = list(self._history)
        if limit is not None:
            items = items[-limit:] if limit > 0 else []
        return items

    async def notify(self, parameters, price, station_data, meter_data, limit_ampere, message) -> None:
        self._history.append(build_snapshot(
            self._clock(),
            parameters,
            price,
            station_data,
            meter_data,
            limit_ampere,
            message,
        ))


class LoggingNotificationSink(NotificationSink):
    """Writes a one-line summary per update"""

    async def notify(self, parameters, price, station_data, meter_data, limit_ampere, message) -> None:
        price_text = price.price_eurocent_per_mwh if price else "unknown"
        power_text = f"{meter_data.total_active_power:.0f}W" if meter_data else "unknown"
        logger.info(
            f"Current limit {limit_ampere:.2f}A (price {price_text}, meter {power_text}): {message}",
            extra={"current_limit_a": limit_ampere},
        )

