"""
Price Service - Day-ahead electricity prices

Responsibilities:
- Download day-ahead prices from ENTSO-E
- Keep today's and tomorrow's prices in the local database
"""

from .fetcher import EntsoePriceFetcher, PriceFetcher, parse_day_ahead_document
from .loop import PriceFetchingLoop

__all__ = [
    "EntsoePriceFetcher",
    "PriceFetcher",
    "PriceFetchingLoop",
    "parse_day_ahead_document",
]
