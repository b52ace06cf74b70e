# backend/portfolio_tracker/services/constants.py
"""
Centralized constants for the portfolio tracker services.

This module provides a single source of truth for business constants used
across the services. Runtime-tunable values (API key, delays, TTLs) live in
config.Settings; the values here are defaults and fixed business rules.

Usage:
    from portfolio_tracker.services.constants import (
        DEFAULT_HISTORY_DAYS,
        FOREX_WATCHLIST,
        ZERO,
    )
"""

from decimal import Decimal


# =============================================================================
# MARKET DATA FETCH SETTINGS
# =============================================================================

# Number of daily bars requested when refreshing an asset's history
DEFAULT_HISTORY_DAYS: int = 30

# Assets with fewer stored price rows than this are considered incomplete
# and picked up by the backfill run
MIN_HISTORY_DAYS: int = 7

# Interval requested from the time-series endpoint (daily bars only)
TIME_SERIES_INTERVAL: str = "1day"

# Metals and crypto are quoted against USD by the provider
USD: str = "USD"


# =============================================================================
# RATE LIMITING
# =============================================================================

# Pause between consecutive items of a batch run (seconds)
# Free plan allows 8 calls/minute (800/day)
DEFAULT_RATE_LIMIT_DELAY_SECONDS: float = 1.0


# =============================================================================
# FRESHNESS
# =============================================================================

# A price older than this many days is stale and worth refreshing
PRICE_STALENESS_DAYS: int = 1

# Rates older than this are not returned by get_current_rate
DEFAULT_RATE_MAX_AGE_HOURS: int = 24

# Default lifetime of a cached quote (seconds)
QUOTE_CACHE_TTL_SECONDS: int = 300

# Maximum number of quotes held by the in-process cache
QUOTE_CACHE_MAX_SIZE: int = 1000


# =============================================================================
# WATCH-LISTS
# =============================================================================

# Currency pairs refreshed by the scheduled forex batch
FOREX_WATCHLIST: list[tuple[str, str]] = [
    ("USD", "TRY"),
    ("EUR", "TRY"),
    ("EUR", "USD"),
    ("GBP", "USD"),
    ("USD", "JPY"),
]


# =============================================================================
# ANALYTICS
# =============================================================================

# Default size of the top/worst/largest position lists
DEFAULT_POSITION_LIST_LIMIT: int = 5

# Periods supported by period performance, in display order
PERFORMANCE_PERIODS: tuple[str, ...] = ("week", "month", "quarter", "year", "ytd")

# HHI upper bound when allocations are expressed in percent (100²)
HHI_MAX: Decimal = Decimal("10000")


# =============================================================================
# UTILITY CONSTANTS
# =============================================================================

# Type-safe zero for Decimal comparisons
ZERO: Decimal = Decimal("0")

ONE: Decimal = Decimal("1")

HUNDRED: Decimal = Decimal("100")
