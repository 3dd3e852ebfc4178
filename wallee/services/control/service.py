"""
Control Service - Process-level wiring

Responsible for:
- Building the store, device clients, policies and notification sink
- Running the control loop and the price fetching loop as tasks
- Serving the HTTP API (health, state, history, parameters, prices)
- Graceful shutdown on SIGTERM/SIGINT

If either loop dies with an unexpected exception the other one is stopped
and the exception propagates out of start().
"""

import asyncio
import signal
from datetime import datetime, timedelta

from aiohttp import web

from ...common.config import ControllerConfig
from ...common.exceptions import StorageError
from ...common.logging_setup import get_service_logger
from ...common.timestamp import parse_utc_iso, utc_now
from ...storage.local_db import ChargingControlParameters, LocalDatabase, ParameterStore
from ..device.charging_station import AlfenEveChargingStation, ChargingStation
from ..device.meter import HomeWizardMeterDataProvider, MeterDataProvider
from ..device.modbus_client import ModbusClient
from ..notification.sinks import (
    LoggingNotificationSink,
    NotificationSink,
    SnapshotNotificationSink,
)
from ..price.fetcher import EntsoePriceFetcher, PriceFetcher
from ..price.loop import PriceFetchingLoop
from .loop import ControlLoop
from .policies import Clock, build_policies

logger = get_service_logger("control")

# Default window of GET /prices
DEFAULT_PRICE_WINDOW = timedelta(hours=36)

PARAMETER_FIELDS = ("max_total_power_watts", "max_price_eurocent_per_mwh")


class ControlService:
    """
    Control Service

    Collaborators are built from the configuration unless passed in.
    """

    def __init__(
        self,
        config: ControllerConfig,
        store: ParameterStore | None = None,
        meter: MeterDataProvider | None = None,
        station: ChargingStation | None = None,
        fetcher: PriceFetcher | None = None,
        clock: Clock = utc_now,
    ):
        self.config = config
        self._clock = clock

        self.store = store if store is not None else LocalDatabase(config.storage.db_path)
        self.meter = meter if meter is not None else HomeWizardMeterDataProvider(
            config.meter.url,
            timeout_s=config.meter.timeout_s,
        )
        self.station = station if station is not None else AlfenEveChargingStation(
            ModbusClient(
                config.charging_station.host,
                port=config.charging_station.port,
                timeout=config.charging_station.timeout_s,
            ),
            socket_id=config.charging_station.socket_id,
        )

        # The API serves history from the snapshot sink; without API, log instead
        if config.api.enabled:
            self.sink: NotificationSink = SnapshotNotificationSink(clock=clock)
        else:
            self.sink = LoggingNotificationSink()

        self.control_loop = ControlLoop(
            config.control,
            self.store,
            self.meter,
            self.station,
            build_policies(config.control, self.store, clock),
            self.sink,
            clock,
        )

        self.fetcher: PriceFetcher | None = None
        self.price_loop: PriceFetchingLoop | None = None
        if config.prices.enabled:
            self.fetcher = fetcher if fetcher is not None else EntsoePriceFetcher(
                config.prices.api_key,
                domain=config.prices.domain,
            )
            self.price_loop = PriceFetchingLoop(self.fetcher, self.store, config.prices, clock)

        self._start_time = clock()
        self._running = False
        self._shutdown_event = asyncio.Event()
        self._tasks: list[asyncio.Task] = []
        self._api_runner: web.AppRunner | None = None

    @property
    def running(self) -> bool:
        return self._running

    def request_shutdown(self) -> None:
        """Ask both loops to finish their current iteration and exit"""
        logger.info("Shutdown requested")
        self._shutdown_event.set()

    async def start(self) -> None:
        """
        Start the loops and the API, and wait until shutdown or a fatal error.

        Raises:
            Exception: whatever ended a loop unexpectedly
        """
        logger.info(
            "Starting Control Service",
            extra={
                "shadow_mode": self.config.control.shadow_mode,
                "prices_enabled": self.config.prices.enabled,
                "api_enabled": self.config.api.enabled,
            },
        )
        if self.config.control.shadow_mode:
            logger.warning("SHADOW MODE: current limits are computed but never sent to the charging station")

        self._running = True
        self._start_time = self._clock()
        self._setup_signal_handlers()

        if self.config.api.enabled:
            await self._start_api_server()

        self._tasks = [
            asyncio.create_task(self.control_loop.run(self._shutdown_event), name="control-loop"),
        ]
        if self.price_loop is not None:
            self._tasks.append(
                asyncio.create_task(self.price_loop.run(self._shutdown_event), name="price-loop")
            )

        done, pending = await asyncio.wait(self._tasks, return_when=asyncio.FIRST_COMPLETED)

        # One loop ended: stop the other one too
        self._shutdown_event.set()
        if pending:
            await asyncio.wait(pending)

        self._running = False
        for task in self._tasks:
            if not task.cancelled():
                task.result()

    async def stop(self) -> None:
        """Stop tasks, the API server, and release device connections"""
        logger.info("Stopping Control Service")
        self._running = False
        self._shutdown_event.set()

        for task in self._tasks:
            if not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

        await self._stop_api_server()

        await self.meter.close()
        await self.station.close()
        if self.fetcher is not None:
            await self.fetcher.close()

        logger.info("Control Service stopped")

    def _setup_signal_handlers(self) -> None:
        """Setup graceful shutdown signal handlers"""
        loop = asyncio.get_running_loop()

        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(sig, self._handle_shutdown)
            except NotImplementedError:
                signal.signal(sig, lambda s, f: self._handle_shutdown())

    def _handle_shutdown(self) -> None:
        """Handle shutdown signal"""
        logger.info("Received shutdown signal")
        self._shutdown_event.set()

    # ============================================
    # HTTP API
    # ============================================

    def create_app(self) -> web.Application:
        """Build the aiohttp application serving the HTTP API"""
        app = web.Application()
        app.router.add_get("/health", self._health_handler)
        app.router.add_get("/state", self._state_handler)
        app.router.add_get("/history", self._history_handler)
        app.router.add_get("/parameters", self._get_parameters_handler)
        app.router.add_post("/parameters", self._post_parameters_handler)
        app.router.add_get("/prices", self._prices_handler)
        return app

    async def _start_api_server(self) -> None:
        self._api_runner = web.AppRunner(self.create_app())
        await self._api_runner.setup()

        site = web.TCPSite(self._api_runner, self.config.api.host, self.config.api.port)
        await site.start()

        logger.info(f"API server started on {self.config.api.host}:{self.config.api.port}")

    async def _stop_api_server(self) -> None:
        if self._api_runner:
            await self._api_runner.cleanup()
            self._api_runner = None

    async def _health_handler(self, request: web.Request) -> web.Response:
        """Handle health check requests"""
        uptime = (self._clock() - self._start_time).total_seconds()
        last_result = self.control_loop.last_result

        return web.json_response({
            "status": "healthy" if self._running else "unhealthy",
            "service": "control",
            "uptime": int(uptime),
            "shadow_mode": self.config.control.shadow_mode,
            "iterations": self.control_loop.iterations,
            "last_setpoint_ampere": last_result.setpoint_ampere if last_result else None,
            "last_iteration_fallback": last_result.fallback if last_result else None,
        })

    async def _state_handler(self, request: web.Request) -> web.Response:
        """Return the last control loop iteration"""
        last_result = self.control_loop.last_result
        if last_result is None:
            return _error_response(503, "No control loop iteration completed yet")
        return web.json_response(last_result.to_dict())

    async def _history_handler(self, request: web.Request) -> web.Response:
        """Return recent notifications, oldest first"""
        if not isinstance(self.sink, SnapshotNotificationSink):
            return _error_response(404, "History is not recorded")

        limit = None
        if "limit" in request.query:
            try:
                limit = int(request.query["limit"])
            except ValueError:
                return _error_response(400, "limit must be an integer")
            if limit < 0:
                return _error_response(400, "limit must not be negative")

        return web.json_response({"history": self.sink.history(limit)})

    async def _get_parameters_handler(self, request: web.Request) -> web.Response:
        try:
            parameters = self.store.get_charging_parameters()
        except StorageError as e:
            logger.error(f"Failed to read charging parameters: {e}")
            return _error_response(500, e.message)
        return web.json_response(parameters.to_dict())

    async def _post_parameters_handler(self, request: web.Request) -> web.Response:
        try:
            body = await request.json()
        except ValueError:
            return _error_response(400, "Request body must be JSON")
        if not isinstance(body, dict):
            return _error_response(400, "Request body must be a JSON object")

        values = {}
        for name in PARAMETER_FIELDS:
            value = body.get(name)
            # bool is an int subclass; reject it explicitly
            if not isinstance(value, int) or isinstance(value, bool) or value < 0:
                return _error_response(400, f"{name} must be a non-negative integer")
            values[name] = value

        parameters = ChargingControlParameters(**values)
        try:
            self.store.save_charging_parameters(parameters)
        except StorageError as e:
            logger.error(f"Failed to save charging parameters: {e}")
            return _error_response(500, e.message)

        return web.json_response(parameters.to_dict())

    async def _prices_handler(self, request: web.Request) -> web.Response:
        """
        Return stored prices overlapping [start, end).

        Query parameters are ISO-8601 timestamps with an explicit UTC marker;
        the default window is now until now + 36 hours.
        """
        try:
            start = _query_time(request, "start") or self._clock()
            end = _query_time(request, "end") or start + DEFAULT_PRICE_WINDOW
        except ValueError as e:
            return _error_response(400, str(e))
        if end <= start:
            return _error_response(400, "end must be after start")

        try:
            prices = self.store.get_prices(start, end)
        except StorageError as e:
            logger.error(f"Failed to read prices: {e}")
            return _error_response(500, e.message)

        return web.json_response({
            "start": start.isoformat(),
            "end": end.isoformat(),
            "prices": [price.to_dict() for price in prices],
        })


def _query_time(request: web.Request, name: str) -> datetime | None:
    value = request.query.get(name)
    if value is None:
        return None
    try:
        return parse_utc_iso(value)
    except ValueError as e:
        raise ValueError(f"{name} must be an ISO-8601 UTC timestamp: {value}") from e


def _error_response(status: int, message: str) -> web.Response:
    return web.json_response({"error": message}, status=status)
