"""
Meter Data Providers

MeterDataProvider is the contract the control loop consumes.
HomeWizardMeterDataProvider reads the HomeWizard P1 meter's local JSON API.
"""

from abc import ABC, abstractmethod

import httpx

from ...common.exceptions import MeterDataError
from ...common.logging_setup import get_service_logger
from .models import MeterData

logger = get_service_logger("device.meter")


class MeterDataProvider(ABC):
    """Main electricity meter contract"""

    @abstractmethod
    async def get_meter_data(self) -> MeterData:
        """
        Get the latest readings from the meter.

        Raises:
            MeterDataError: timeout, transport, or parse failure
        """

    async def close(self) -> None:
        """Release any connection held by the provider"""


class HomeWizardMeterDataProvider(MeterDataProvider):
    """
    HomeWizard Wi-Fi P1 meter, API v1 (GET /api/v1/data).

    Reuses a single HTTP client across calls.
    """

    def __init__(
        self,
        url: str,
        timeout_s: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.url = url
        self.timeout_s = timeout_s
        self._client = client

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create reusable HTTP client"""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout_s)
        return self._client

    async def close(self) -> None:
        """Close HTTP client"""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def get_meter_data(self) -> MeterData:
        client = await self._get_client()
        try:
            response = await client.get(self.url)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise MeterDataError(f"HomeWizard API request to {self.url} failed: {e}", url=self.url) from e

        try:
            data = response.json()
        except ValueError as e:
            raise MeterDataError(
                f"HomeWizard API response from {self.url} is not JSON:\n{response.text}",
                url=self.url,
            ) from e

        if not data:
            raise MeterDataError(
                f"HomeWizard API request to {self.url} seemed successful but returned an empty response",
                url=self.url,
            )

        try:
            meter_data = MeterData(
                total_active_power=float(data["active_power_w"]),
                current1=float(data["active_current_l1_a"]),
                current2=float(data["active_current_l2_a"]),
                current3=float(data["active_current_l3_a"]),
                voltage1=float(data["active_voltage_l1_v"]),
                voltage2=float(data["active_voltage_l2_v"]),
                voltage3=float(data["active_voltage_l3_v"]),
                total_power_import_kwh=float(data["total_power_import_kwh"]),
                total_power_import_t1_kwh=_optional_float(data.get("total_power_import_t1_kwh")),
                total_power_import_t2_kwh=_optional_float(data.get("total_power_import_t2_kwh")),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise MeterDataError(
                f"HomeWizard API response from {self.url} did not contain the expected data "
                f"({e!r}). Response body follows.\n{response.text}",
                url=self.url,
            ) from e

        logger.debug(f"Meter data: {meter_data}")
        return meter_data


def _optional_float(value) -> float | None:
    return None if value is None else float(value)
