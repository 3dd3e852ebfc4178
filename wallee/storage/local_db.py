"""
Local SQLite Database

Stores the operator's charging parameters and the day-ahead prices.

Features:
- Charging parameters are append-only; the newest row is the active one
- Price points carry their own [start, end) interval, so both 60-minute and
  15-minute market resolutions fit the same table
- Overlapping price intervals are rejected on save
- Times are stored as Unix seconds (UTC)
"""

import sqlite3
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Iterator

from ..common.exceptions import PriceConflictError, StorageError
from ..common.logging_setup import get_service_logger
from ..common.timestamp import from_unix, require_utc, to_unix, utc_now

logger = get_service_logger("storage")


@dataclass
class ChargingControlParameters:
    """Operator-configured ceilings, edited through the HTTP API"""
    max_total_power_watts: int = 0
    max_price_eurocent_per_mwh: int = 0

    def to_dict(self) -> dict:
        return {
            "max_total_power_watts": self.max_total_power_watts,
            "max_price_eurocent_per_mwh": self.max_price_eurocent_per_mwh,
        }

    def __str__(self) -> str:
        return (
            f"MaxTotalPowerWatts={self.max_total_power_watts} "
            f"MaxPriceEurocentPerMWh={self.max_price_eurocent_per_mwh}"
        )


@dataclass(frozen=True)
class ElectricityPrice:
    """
    A day-ahead price valid for [start_time, end_time).

    Both timestamps must be timezone-aware UTC whole seconds and end_time
    must come after start_time.
    """
    start_time: datetime
    end_time: datetime
    price_eurocent_per_mwh: int

    def __post_init__(self):
        require_utc(self.start_time, "start_time")
        require_utc(self.end_time, "end_time")
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        # Stored as whole Unix seconds
        if self.start_time.microsecond or self.end_time.microsecond:
            raise ValueError("price interval bounds must be whole seconds")

    def contains(self, instant: datetime) -> bool:
        return self.start_time <= instant < self.end_time

    def overlaps(self, other: "ElectricityPrice") -> bool:
        return self.start_time < other.end_time and other.start_time < self.end_time

    def to_dict(self) -> dict:
        return {
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "price_eurocent_per_mwh": self.price_eurocent_per_mwh,
        }

    def __str__(self) -> str:
        return (
            f"StartTime={self.start_time.isoformat()} EndTime={self.end_time.isoformat()} "
            f"Price={self.price_eurocent_per_mwh}"
        )


class ParameterStore(ABC):
    """Parameter and price persistence contract"""

    @abstractmethod
    def get_charging_parameters(self) -> ChargingControlParameters:
        """Newest saved parameters, or all-zero defaults"""

    @abstractmethod
    def save_charging_parameters(self, parameters: ChargingControlParameters) -> None:
        """Store parameters; they become the active set"""

    @abstractmethod
    def get_price(self, instant: datetime) -> ElectricityPrice | None:
        """Price whose interval contains instant, or None"""

    @abstractmethod
    def get_prices(self, start: datetime, end: datetime) -> list[ElectricityPrice]:
        """All prices overlapping [start, end), ordered by start time"""

    @abstractmethod
    def save_prices(self, prices: list[ElectricityPrice]) -> None:
        """
        Store prices.

        Raises:
            PriceConflictError: a price overlaps a stored one (nothing is saved)
        """


class LocalDatabase(ParameterStore):
    """SQLite implementation of ParameterStore"""

    def __init__(self, db_path: str = "/var/lib/wallee/wallee.sqlite"):
        """
        Initialize local database.

        Args:
            db_path: Path to SQLite database file; parent directories are created.
        """
        self.db_path = Path(db_path)

        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(
                f"Cannot create database directory {self.db_path.parent}: {e}",
                recoverable=False,
            ) from e

        logger.info(f"Opening sqlite database '{self.db_path}'")
        self._init_db()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """Connection that commits on success, rolls back on error, always closes"""
        try:
            conn = sqlite3.connect(str(self.db_path))
        except sqlite3.Error as e:
            raise StorageError(f"Cannot open {self.db_path}: {e}") from e

        try:
            with conn:
                yield conn
        except sqlite3.Error as e:
            raise StorageError(f"SQLite error on {self.db_path}: {e}") from e
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Create database tables if they don't exist."""
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS charging_parameters (
                    unix_time INTEGER PRIMARY KEY,
                    max_total_power_watts INTEGER NOT NULL,
                    max_price_eurocent_per_mwh INTEGER NOT NULL
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS day_ahead_prices (
                    start_unix_time INTEGER NOT NULL,
                    end_unix_time INTEGER NOT NULL,
                    price_eurocent_per_mwh INTEGER NOT NULL
                )
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_prices_start
                ON day_ahead_prices(start_unix_time)
            """)

    # ============================================
    # CHARGING PARAMETERS
    # ============================================

    def get_charging_parameters(self) -> ChargingControlParameters:
        with self._connect() as conn:
            row = conn.execute("""
                SELECT max_total_power_watts, max_price_eurocent_per_mwh
                FROM charging_parameters
                ORDER BY unix_time DESC
                LIMIT 1
            """).fetchone()

        if row is None:
            return ChargingControlParameters()
        return ChargingControlParameters(
            max_total_power_watts=row[0],
            max_price_eurocent_per_mwh=row[1],
        )

    def save_charging_parameters(self, parameters: ChargingControlParameters) -> None:
        # Saving twice within one second keeps the latest values
        with self._connect() as conn:
            conn.execute("""
                INSERT OR REPLACE INTO charging_parameters (
                    unix_time, max_total_power_watts, max_price_eurocent_per_mwh
                ) VALUES (?, ?, ?)
            """, (
                to_unix(utc_now()),
                parameters.max_total_power_watts,
                parameters.max_price_eurocent_per_mwh,
            ))
        logger.info(f"Saved charging parameters: {parameters}")

    # ============================================
    # DAY-AHEAD PRICES
    # ============================================

    def get_price(self, instant: datetime) -> ElectricityPrice | None:
        require_utc(instant, "instant")
        unix_time = to_unix(instant)

        with self._connect() as conn:
            rows = conn.execute("""
                SELECT start_unix_time, end_unix_time, price_eurocent_per_mwh
                FROM day_ahead_prices
                WHERE start_unix_time <= ? AND end_unix_time > ?
            """, (unix_time, unix_time)).fetchall()

        if not rows:
            return None
        if len(rows) > 1:
            raise StorageError(
                f"Database integrity error: more than one price point found for {instant.isoformat()}",
                recoverable=False,
            )
        return self._row_to_price(rows[0])

    def get_prices(self, start: datetime, end: datetime) -> list[ElectricityPrice]:
        require_utc(start, "start")
        require_utc(end, "end")
        logger.debug(f"Querying prices from {start.isoformat()} to {end.isoformat()}")

        with self._connect() as conn:
            rows = self._overlapping_rows(conn, to_unix(start), to_unix(end))

        return [self._row_to_price(row) for row in rows]

    def save_prices(self, prices: list[ElectricityPrice]) -> None:
        with self._connect() as conn:
            for price in prices:
                conflicts = self._overlapping_rows(
                    conn, to_unix(price.start_time), to_unix(price.end_time)
                )
                if conflicts:
                    logger.error(f"Rejecting price that overlaps stored data: {price}")
                    raise PriceConflictError(price, self._row_to_price(conflicts[0]))

                conn.execute("""
                    INSERT INTO day_ahead_prices (
                        start_unix_time, end_unix_time, price_eurocent_per_mwh
                    ) VALUES (?, ?, ?)
                """, (
                    to_unix(price.start_time),
                    to_unix(price.end_time),
                    price.price_eurocent_per_mwh,
                ))

        logger.debug(f"Saved {len(prices)} price points")

    @staticmethod
    def _overlapping_rows(conn: sqlite3.Connection, start_unix: int, end_unix: int) -> list:
        return conn.execute("""
            SELECT start_unix_time, end_unix_time, price_eurocent_per_mwh
            FROM day_ahead_prices
            WHERE start_unix_time < ? AND end_unix_time > ?
            ORDER BY start_unix_time ASC
        """, (end_unix, start_unix)).fetchall()

    @staticmethod
    def _row_to_price(row) -> ElectricityPrice:
        return ElectricityPrice(
            start_time=from_unix(row[0]),
            end_time=from_unix(row[1]),
            price_eurocent_per_mwh=row[2],
        )
