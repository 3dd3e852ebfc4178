"""
Wallee - Home EV charging controller

Steers the charging current of an Alfen Eve charging station so the
household stays within its wiring limits, its capacity tariff, and the
operator's maximum electricity price.
"""

__version__ = "1.0.0"
