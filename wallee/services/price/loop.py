"""
Price Fetching Loop

Keeps the local database stocked with day-ahead prices:
- today's prices are fetched as soon as they are missing
- tomorrow's prices are fetched once the market results are published
  (after 13:10 local time by default)

Days are local calendar days; prices are stored with UTC intervals.
"""

import asyncio
from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo

from ...common.config import PriceSettings
from ...common.exceptions import PriceFetchError
from ...common.logging_setup import get_service_logger
from ...common.timestamp import utc_now
from ...storage.local_db import ParameterStore
from ..control.policies import Clock
from ..control.state import LoopExitReason
from .fetcher import PriceFetcher

logger = get_service_logger("price")


class PriceFetchingLoop:
    """Periodically fetches missing day-ahead prices"""

    def __init__(
        self,
        fetcher: PriceFetcher,
        store: ParameterStore,
        settings: PriceSettings,
        clock: Clock = utc_now,
    ):
        self._fetcher = fetcher
        self._store = store
        self._settings = settings
        self._clock = clock
        self._zone = ZoneInfo(settings.local_timezone)

    def day_bounds(self, day: date) -> tuple[datetime, datetime]:
        """UTC start and end of a local calendar day (23 to 25 hours long)"""
        local_start = datetime.combine(day, time(0), tzinfo=self._zone)
        local_end = datetime.combine(day + timedelta(days=1), time(0), tzinfo=self._zone)
        utc = ZoneInfo("UTC")
        return local_start.astimezone(utc), local_end.astimezone(utc)

    async def fetch_prices_if_missing(self, day: date) -> int:
        """
        Fetch and store the prices of a local day unless already stored.

        Returns:
            Number of price points saved
        """
        start, end = self.day_bounds(day)
        if self._store.get_price(start) is not None:
            return 0

        try:
            prices = await self._fetcher.get_prices(start, end)
        except PriceFetchError as e:
            logger.error(f"Error occurred when fetching prices for {day.isoformat()}: {e}", exc_info=True)
            return 0

        if not prices:
            logger.warning(f"Prices for {day.isoformat()} were not available.")
            return 0

        logger.info(
            f"Saving {len(prices)} price points for {day.isoformat()}.",
            extra={"day": day.isoformat(), "price_points": len(prices)},
        )
        self._store.save_prices(prices)
        return len(prices)

    async def run_once(self) -> None:
        """One round: today, and tomorrow if it may be published"""
        now_local = self._clock().astimezone(self._zone)
        today = now_local.date()

        await self.fetch_prices_if_missing(today)

        if now_local.time() >= self._settings.tomorrow_available_after:
            await self.fetch_prices_if_missing(today + timedelta(days=1))

    async def run(self, stop_event: asyncio.Event) -> LoopExitReason:
        """
        Run until stop_event is set.

        PriceFetchError is retried next round. Anything else is fatal.
        """
        logger.info("Starting price fetching loop.")
        try:
            while not stop_event.is_set():
                await self.run_once()
                try:
                    await asyncio.wait_for(
                        stop_event.wait(),
                        timeout=self._settings.fetch_interval_s,
                    )
                except asyncio.TimeoutError:
                    pass
        except asyncio.CancelledError:
            logger.info("Price fetching loop task cancelled.")
            raise
        except Exception:
            logger.critical("Exiting price fetching loop because of unexpected exception.", exc_info=True)
            raise

        logger.info("Exiting price fetching loop.")
        return LoopExitReason.CANCELLED
