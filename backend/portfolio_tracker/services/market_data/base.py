# backend/portfolio_tracker/services/market_data/base.py
"""
Abstract interface for market data providers.

This module defines the contract that all market data providers must follow,
plus the normalized OHLCV record every fetcher stores.

The provider contract is deliberately thin: three logical calls returning
the provider's JSON payload (already checked for error status). Turning
payloads into OHLCVData happens here, once, through pydantic models of the
minimal response shape this system relies on:

    quote / time-series bar:  datetime, open, high, low, close, volume
    exchange rate:            rate

Design Principles:
- Services depend on the abstraction, tests plug in a mock provider
- Common retry logic implemented once in the base class
- Missing open/high/low fall back to close so stored OHLC is never null
"""

import datetime as dt
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import TypeVar, Callable, Any

from pydantic import BaseModel, ConfigDict, ValidationError as PydanticValidationError, field_validator
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log,
)

from portfolio_tracker.services.exceptions import (
    ProviderUnavailableError,
    RateLimitError,
)

logger = logging.getLogger(__name__)

# Type variable for generic return type in retry method
T = TypeVar('T')


# =============================================================================
# DATA CLASSES - PRICE DATA (OHLCV)
# =============================================================================

@dataclass(frozen=True)
class OHLCVData:
    """
    Single day's OHLCV (Open, High, Low, Close, Volume) price data.

    This is the normalized format every fetcher writes to price history.

    Attributes:
        date: Trading date (no time component)
        open: Opening price
        high: Highest price during the day
        low: Lowest price during the day
        close: Closing price (primary valuation price)
        volume: Trading volume, None when the provider omits it
    """

    date: dt.date
    open: Decimal
    high: Decimal
    low: Decimal
    close: Decimal
    volume: int | None = None

    def __post_init__(self) -> None:
        """Validate price data."""
        if self.close <= 0:
            raise ValueError(f"close price must be positive, got {self.close}")

    @classmethod
    def flat(cls, date: dt.date, price: Decimal) -> "OHLCVData":
        """Build a bar where open = high = low = close (used for FX rates)."""
        return cls(date=date, open=price, high=price, low=price, close=price, volume=None)


# =============================================================================
# PAYLOAD MODELS
# =============================================================================

class PriceBar(BaseModel):
    """One quote or time-series bar as returned by the provider."""

    model_config = ConfigDict(extra="ignore")

    datetime: str | None = None
    open: Decimal | None = None
    high: Decimal | None = None
    low: Decimal | None = None
    close: Decimal | None = None
    volume: int | None = None

    @field_validator("open", "high", "low", "close", mode="before")
    @classmethod
    def _blank_price_is_missing(cls, value: Any) -> Any:
        if value is None or (isinstance(value, str) and not value.strip()):
            return None
        return value

    @field_validator("volume", mode="before")
    @classmethod
    def _parse_volume(cls, value: Any) -> int | None:
        if value is None or (isinstance(value, str) and not value.strip()):
            return None
        try:
            return int(Decimal(str(value)))
        except (InvalidOperation, ValueError):
            return None

    def bar_date(self, default: dt.date) -> dt.date:
        """Calendar date of the bar ("2024-01-15" or "2024-01-15 15:30:00")."""
        if not self.datetime:
            return default
        return dt.date.fromisoformat(self.datetime[:10])

    def to_ohlcv(self, default_date: dt.date) -> OHLCVData | None:
        """
        Normalize into OHLCVData.

        Returns None when close is missing or not positive. A missing or
        non-positive open/high/low takes the close price.
        """
        if self.close is None or self.close <= 0:
            return None
        return OHLCVData(
            date=self.bar_date(default_date),
            open=self._or_close(self.open),
            high=self._or_close(self.high),
            low=self._or_close(self.low),
            close=self.close,
            volume=self.volume,
        )

    def _or_close(self, price: Decimal | None) -> Decimal:
        if price is None or price <= 0:
            return self.close
        return price


class ExchangeRatePayload(BaseModel):
    """Exchange rate response: 1 unit of the base = rate units of the quote."""

    model_config = ConfigDict(extra="ignore")

    symbol: str | None = None
    rate: Decimal | None = None


def parse_quote(payload: dict[str, Any]) -> OHLCVData | None:
    """
    Normalize a quote payload.

    Bars without a date are stamped with today's date.

    Returns:
        OHLCVData, or None if the payload has no usable close price
    """
    try:
        return PriceBar.model_validate(payload).to_ohlcv(dt.date.today())
    except (PydanticValidationError, ValueError) as e:
        logger.warning(f"Unparseable quote payload: {e}")
        return None


def parse_time_series(payload: dict[str, Any]) -> list[OHLCVData]:
    """
    Normalize a time-series payload ({"values": [bar, ...]}).

    Bars that fail to parse or lack a positive close are skipped with a
    warning. Result is sorted by date ascending.
    """
    prices = []

    for raw in payload.get("values") or []:
        try:
            bar = PriceBar.model_validate(raw)
            ohlcv = bar.to_ohlcv(dt.date.today())
        except (PydanticValidationError, ValueError) as e:
            logger.warning(f"Skipping unparseable bar {raw!r}: {e}")
            continue

        if ohlcv is None:
            logger.warning(f"Skipping {raw.get('datetime')}: missing close price")
            continue

        prices.append(ohlcv)

    return sorted(prices, key=lambda p: p.date)


def parse_exchange_rate(payload: dict[str, Any]) -> Decimal | None:
    """Extract a positive rate from an exchange rate payload, else None."""
    try:
        parsed = ExchangeRatePayload.model_validate(payload)
    except PydanticValidationError as e:
        logger.warning(f"Unparseable exchange rate payload: {e}")
        return None
    if parsed.rate is None or parsed.rate <= 0:
        return None
    return parsed.rate


# =============================================================================
# ABSTRACT BASE CLASS
# =============================================================================

class MarketDataProvider(ABC):
    """
    Abstract base class for market data providers.

    Retry Behavior:
        The base class provides a `_execute_with_retry` method that implements
        exponential backoff retry logic. Subclasses (or tests) can override
        the retry configuration through these attributes:

        - MAX_RETRY_ATTEMPTS: Total attempts (default: 3)
        - RETRY_MIN_WAIT: Minimum wait in seconds (default: 1)
        - RETRY_MAX_WAIT: Maximum wait in seconds (default: 10)
        - RETRY_MULTIPLIER: Exponential multiplier (default: 1)

    Retryable Exceptions:
        - ProviderUnavailableError: Network issues, timeouts, server errors
        - RateLimitError: API rate limit exceeded

    Non-Retryable Exceptions:
        - ApiError: The API rejected the request (unknown symbol, bad key)
    """

    # =========================================================================
    # RETRY CONFIGURATION (can be overridden by subclasses)
    # =========================================================================

    MAX_RETRY_ATTEMPTS: int = 3
    RETRY_MIN_WAIT: int = 1
    RETRY_MAX_WAIT: int = 10
    RETRY_MULTIPLIER: int = 1

    # =========================================================================
    # ABSTRACT PROPERTIES AND METHODS
    # =========================================================================

    @property
    @abstractmethod
    def name(self) -> str:
        """
        Unique identifier for this provider.

        Used for logging and error messages.
        """
        pass

    @abstractmethod
    def get_quote(self, symbol: str) -> dict[str, Any]:
        """
        Fetch the latest quote for a provider-formatted symbol.

        Returns:
            Payload with datetime/open/high/low/close/volume keys

        Raises:
            ApiError: Error payload or non-success status
        """
        pass

    @abstractmethod
    def get_time_series(
            self,
            symbol: str,
            interval: str = "1day",
            outputsize: int = 30,
    ) -> dict[str, Any]:
        """
        Fetch the most recent `outputsize` bars for a symbol.

        Returns:
            Payload with a "values" list of bars

        Raises:
            ApiError: Error payload or non-success status
        """
        pass

    @abstractmethod
    def get_exchange_rate(self, from_currency: str, to_currency: str) -> dict[str, Any]:
        """
        Fetch the current rate for a currency pair.

        Returns:
            Payload with a "rate" key (1 from_currency = rate to_currency)

        Raises:
            ApiError: Error payload or non-success status
        """
        pass

    # =========================================================================
    # RETRY HELPER METHOD
    # =========================================================================

    def _execute_with_retry(
            self,
            func: Callable[..., T],
            *args: Any,
            **kwargs: Any,
    ) -> T:
        """
        Execute a function with retry logic for transient failures.

        Uses exponential backoff for ProviderUnavailableError and
        RateLimitError. Other ApiErrors fail immediately.

        Raises:
            The last exception if all retries fail
        """

        @retry(
            stop=stop_after_attempt(self.MAX_RETRY_ATTEMPTS),
            wait=wait_exponential(
                multiplier=self.RETRY_MULTIPLIER,
                min=self.RETRY_MIN_WAIT,
                max=self.RETRY_MAX_WAIT,
            ),
            retry=retry_if_exception_type((ProviderUnavailableError, RateLimitError)),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        def _inner() -> T:
            return func(*args, **kwargs)

        return _inner()

