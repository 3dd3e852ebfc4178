"""
Day-Ahead Price Fetcher

Downloads day-ahead prices from the ENTSO-E transparency platform
(document type A44) and converts them into ElectricityPrice intervals.

Response format (namespace varies between publication document versions):

    <Publication_MarketDocument xmlns="urn:iec62325.351:tc57wg16:451-3:publicationdocument:7:3">
      <TimeSeries>
        <Period>
          <timeInterval><start>2024-03-30T23:00Z</start><end>2024-03-31T22:00Z</end></timeInterval>
          <resolution>PT15M</resolution>
          <Point><position>1</position><price.amount>81.23</price.amount></Point>
          ...

Positions missing from a period repeat the price of the previous position.
When no data is published yet, an Acknowledgement_MarketDocument is returned
instead, which yields an empty list.
"""

import asyncio
import re
import xml.etree.ElementTree as ET
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation

import httpx

from ...common.exceptions import PriceFetchError
from ...common.logging_setup import get_service_logger
from ...common.timestamp import parse_utc_iso, require_utc
from ...storage.local_db import ElectricityPrice

logger = get_service_logger("price.fetcher")

ENTSOE_API_URL = "https://web-api.tp.entsoe.eu/api"
DEFAULT_DOMAIN = "10YBE----------2"  # Belgium bidding zone

_RESOLUTION_PATTERN = re.compile(r"^PT(\d+)([MH])$")


class PriceFetcher(ABC):
    """Source of day-ahead prices"""

    @abstractmethod
    async def get_prices(self, start: datetime, end: datetime) -> list[ElectricityPrice]:
        """
        Fetch the prices covering [start, end).

        Returns an empty list when the prices are not published yet.

        Raises:
            PriceFetchError: transport failure or unexpected response
        """

    async def close(self) -> None:
        """Release any connection held by the fetcher"""


class EntsoePriceFetcher(PriceFetcher):
    """ENTSO-E transparency platform REST API client"""

    def __init__(
        self,
        api_key: str,
        domain: str = DEFAULT_DOMAIN,
        timeout_s: float = 30.0,
        request_delay_s: float = 1.0,
        client: httpx.AsyncClient | None = None,
    ):
        """
        Args:
            api_key: ENTSO-E security token
            domain: EIC code of the bidding zone (used as in and out domain)
            timeout_s: HTTP timeout
            request_delay_s: pause before every request, the API is rate limited
            client: optional preconfigured HTTP client
        """
        self.api_key = api_key
        self.domain = domain
        self.timeout_s = timeout_s
        self.request_delay_s = request_delay_s
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

    async def get_prices(self, start: datetime, end: datetime) -> list[ElectricityPrice]:
        require_utc(start, "start")
        require_utc(end, "end")
        if end <= start:
            raise ValueError("end must be after start")

        if self.request_delay_s > 0:
            await asyncio.sleep(self.request_delay_s)

        params = {
            "securityToken": self.api_key,
            "documentType": "A44",
            "in_Domain": self.domain,
            "out_Domain": self.domain,
            "TimeInterval": f"{_format_entsoe_time(start)}/{_format_entsoe_time(end)}",
        }

        client = await self._get_client()
        try:
            response = await client.get(ENTSOE_API_URL, params=params)
        except httpx.HTTPError as e:
            raise PriceFetchError(f"HTTP request to entso-e API failed: {e}") from e

        if response.status_code != httpx.codes.OK:
            logger.error(f"Response from entso-e API ({response.status_code}): {response.text}")
            raise PriceFetchError(f"entso-e API returned HTTP {response.status_code}")
        logger.debug(f"Response from entso-e API: {response.text}")

        prices = parse_day_ahead_document(response.text, start, end)
        if prices:
            _check_coverage(prices, start, end)
        return prices


def parse_day_ahead_document(
    document: str,
    start: datetime,
    end: datetime,
) -> list[ElectricityPrice]:
    """
    Parse an A44 document into prices clipped to [start, end).

    Raises:
        PriceFetchError: malformed XML or unexpected content
    """
    try:
        root = ET.fromstring(document)
    except ET.ParseError as e:
        raise PriceFetchError(f"entso-e API returned invalid XML: {e}") from e

    if _local_name(root.tag) == "Acknowledgement_MarketDocument":
        reason = _find_text(root, "text") or "no reason given"
        logger.warning(f"entso-e API acknowledged the request without data: {reason}")
        return []

    prices_by_start: dict[datetime, ElectricityPrice] = {}
    for period in _iter_children(root, "Period"):
        for price in _parse_period(period):
            if price.start_time < start or price.start_time >= end:
                continue
            # Duplicate time series describe the same intervals; first one wins
            prices_by_start.setdefault(price.start_time, price)

    return [prices_by_start[key] for key in sorted(prices_by_start)]


def _parse_period(period: ET.Element) -> list[ElectricityPrice]:
    try:
        period_start = parse_utc_iso(_require_text(period, "start"))
        period_end = parse_utc_iso(_require_text(period, "end"))
    except ValueError as e:
        raise PriceFetchError(f"Invalid period time interval: {e}") from e

    step = _parse_resolution(_require_text(period, "resolution"))
    slot_count = int((period_end - period_start) / step)

    amounts: dict[int, int] = {}
    for point in _iter_children(period, "Point"):
        try:
            position = int(_require_text(point, "position"))
            amount = Decimal(_require_text(point, "price.amount"))
        except (ValueError, InvalidOperation) as e:
            raise PriceFetchError(f"Invalid price point: {e}") from e
        # euro/MWh to whole eurocent/MWh, truncated toward zero
        amounts[position] = int(amount * 100)

    if not amounts:
        return []
    if min(amounts) != 1:
        raise PriceFetchError(f"Period starting {period_start.isoformat()} does not start at position 1")

    prices = []
    current_amount = amounts[1]
    for position in range(1, slot_count + 1):
        current_amount = amounts.get(position, current_amount)
        slot_start = period_start + (position - 1) * step
        prices.append(ElectricityPrice(slot_start, slot_start + step, current_amount))
    return prices


def _parse_resolution(value: str) -> timedelta:
    match = _RESOLUTION_PATTERN.match(value.strip())
    if not match:
        raise PriceFetchError(f"Unsupported price resolution: {value}")
    amount, unit = int(match.group(1)), match.group(2)
    return timedelta(minutes=amount) if unit == "M" else timedelta(hours=amount)


def _check_coverage(prices: list[ElectricityPrice], start: datetime, end: datetime) -> None:
    """Prices must tile [start, end) without gaps"""
    if prices[0].start_time != start or prices[-1].end_time != end:
        raise PriceFetchError(
            f"Received {len(prices)} price points covering "
            f"{prices[0].start_time.isoformat()} to {prices[-1].end_time.isoformat()}, "
            f"expected {start.isoformat()} to {end.isoformat()}"
        )
    for previous, current in zip(prices, prices[1:]):
        if previous.end_time != current.start_time:
            raise PriceFetchError(f"Gap in received prices at {previous.end_time.isoformat()}")


def _format_entsoe_time(ts: datetime) -> str:
    return ts.strftime("%Y-%m-%dT%H:%MZ")


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _iter_children(element: ET.Element, name: str):
    for child in element.iter():
        if _local_name(child.tag) == name:
            yield child


def _find_text(element: ET.Element, name: str) -> str | None:
    for child in _iter_children(element, name):
        if child.text is not None:
            return child.text.strip()
    return None


def _require_text(element: ET.Element, name: str) -> str:
    text = _find_text(element, name)
    if text is None:
        raise PriceFetchError(f"Missing <{name}> in <{_local_name(element.tag)}>")
    return text
