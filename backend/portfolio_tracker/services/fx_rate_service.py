# backend/portfolio_tracker/services/fx_rate_service.py
"""
FX Rate Service: rate store and currency conversion.

This service handles:
- Rate lookups against the currency_rates table (direct, then inverse)
- Live fetch of today's rate from the market data provider when nothing
  is stored
- Historical rate refresh from the provider time series
- Amount conversion, single and batch

=============================================================================
FX RATE CONVENTION
=============================================================================

    rate = "1 from_currency = X to_currency"

Example:
    from_currency = "USD", to_currency = "TRY", rate = 30

    Meaning: 1 USD = 30 TRY

Conversion formula:
    TRY_amount = USD_amount × rate
    USD_amount = TRY_amount × (1 / rate)   (inverse of the stored pair)

=============================================================================
LOOKUP CHAIN (first hit wins)
=============================================================================

    1. from == to                -> rate 1, no I/O
    2. stored FROM/TO rate       -> exact date; for today also yesterday
    3. stored TO/FROM rate       -> same date rule, inverted
    4. target date is today      -> live fetch, stored under today
    5. otherwise                 -> NoRateAvailableError

Historical dates never fall back to a neighbouring day: a rate for
2024-03-01 must be stored for 2024-03-01 (or its inverse).

No rounding happens here; amounts are multiplied as Decimals and rounding
to display precision is left to the caller.

Usage:
    service = FXRateService(provider)

    # Rate for today (may hit the provider)
    result = service.get_rate(db, "USD", "TRY")
    print(f"1 USD = {result.rate} TRY ({result.source})")

    # Convert a historical amount (stored rates only)
    amount = service.convert(db, Decimal("100"), "EUR", "TRY", date(2024, 3, 1))
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from portfolio_tracker.models import CurrencyRate
from portfolio_tracker.services.constants import (
    DEFAULT_HISTORY_DAYS,
    DEFAULT_RATE_MAX_AGE_HOURS,
    ONE,
    TIME_SERIES_INTERVAL,
    ZERO,
)
from portfolio_tracker.services.exceptions import MarketDataError, NoRateAvailableError
from portfolio_tracker.services.market_data.base import (
    MarketDataProvider,
    parse_exchange_rate,
    parse_time_series,
)
from portfolio_tracker.services.market_data.storage import upsert_rates
from portfolio_tracker.utils.date_utils import iter_dates

logger = logging.getLogger(__name__)


# =============================================================================
# RESULT DATA CLASSES
# =============================================================================

@dataclass
class FXRateResult:
    """
    Result of an FX rate lookup.

    Attributes:
        from_currency: Currency converted from
        to_currency: Currency converted to
        date: Date the rate was requested for
        rate: 1 from_currency = rate to_currency
        actual_date: Date of the stored row used (yesterday for a today
                     lookup that fell back)
        source: "identity", "direct", "inverse" or "live"
    """

    from_currency: str
    to_currency: str
    date: date
    rate: Decimal
    actual_date: date | None = None
    source: str = "direct"

    def __post_init__(self):
        if self.actual_date is None:
            self.actual_date = self.date

    @property
    def is_exact_match(self) -> bool:
        return self.actual_date == self.date


@dataclass
class ConversionRequest:
    """One entry of a batch conversion. rate_date=None means today."""

    amount: Decimal
    from_currency: str
    to_currency: str
    rate_date: date | None = None


# =============================================================================
# FX RATE SERVICE
# =============================================================================

class FXRateService:
    """
    Service for exchange rate lookup, refresh and conversion.

    Attributes:
        _provider: Market data provider used for live and historical fetches
        _today: Callable returning the current date (injectable for tests)

    Example:
        service = FXRateService(provider)

        service.fetch_rate_history(db, "EUR", "TRY", days=30)
        rate = service.get_rate(db, "TRY", "EUR", date(2024, 6, 14))
        print(f"1 TRY = {rate.rate} EUR (inverse of stored EUR/TRY)")
    """

    def __init__(
            self,
            provider: MarketDataProvider,
            today: Callable[[], date] = date.today,
    ) -> None:
        """
        Initialize the FX Rate Service.

        Args:
            provider: Market data provider for fetching FX rates.
            today: Current-date source. "Today" lookups get the yesterday
                   fallback and the live fetch.
        """
        self._provider = provider
        self._today = today
        logger.info(f"FXRateService initialized (provider={provider.name})")

    # =========================================================================
    # LOOKUP
    # =========================================================================

    def get_rate(
            self,
            db: Session,
            from_currency: str,
            to_currency: str,
            target_date: date | None = None,
    ) -> FXRateResult:
        """
        Get the exchange rate for a pair on a date.

        Args:
            db: Database session
            from_currency: Currency code to convert from (e.g., "USD")
            to_currency: Currency code to convert to (e.g., "TRY")
            target_date: Date to get the rate for (default: today)

        Returns:
            FXRateResult with the rate and where it came from

        Raises:
            NoRateAvailableError: No stored, inverse or fetchable rate
        """
        src = from_currency.upper().strip()
        dst = to_currency.upper().strip()
        today = self._today()
        target = target_date or today

        if src == dst:
            return FXRateResult(src, dst, target, ONE, source="identity")

        is_today = target == today

        record = self._find_stored_rate(db, src, dst, target, is_today)
        if record is not None:
            return FXRateResult(src, dst, target, record.rate, actual_date=record.date, source="direct")

        reverse = self._find_stored_rate(db, dst, src, target, is_today)
        if reverse is not None:
            return FXRateResult(
                src, dst, target, self.invert_rate(reverse.rate),
                actual_date=reverse.date, source="inverse",
            )

        if is_today:
            fetched = self._fetch_live_rate(db, src, dst)
            if fetched is not None:
                return FXRateResult(src, dst, target, fetched.rate, actual_date=fetched.date, source="live")
        else:
            logger.warning(f"No rate found for {src}/{dst} on {target}")

        raise NoRateAvailableError(src, dst, target)

    def get_rate_or_none(
            self,
            db: Session,
            from_currency: str,
            to_currency: str,
            target_date: date | None = None,
    ) -> FXRateResult | None:
        """
        Get the exchange rate, returning None if not found.

        Same as get_rate() but returns None instead of raising exception.
        """
        try:
            return self.get_rate(db, from_currency, to_currency, target_date)
        except NoRateAvailableError:
            return None

    def get_rates_for_date_range(
            self,
            db: Session,
            from_currency: str,
            to_currency: str,
            start_date: date,
            end_date: date,
    ) -> dict[date, FXRateResult]:
        """
        Fetch all stored rates for a pair and date range in two queries.

        Uses the direct pair where stored, otherwise the inverted reverse
        pair. Dates are matched exactly (no neighbouring-day fallback, no
        live fetch), so dates without any stored rate are omitted.

        Example:
            rates = fx_service.get_rates_for_date_range(
                db, "USD", "TRY", date(2024, 1, 1), date(2024, 1, 31)
            )
            for day in iter_dates(start, end):
                if day in rates:
                    value = amount * rates[day].rate
        """
        src = from_currency.upper().strip()
        dst = to_currency.upper().strip()

        if src == dst:
            return {
                day: FXRateResult(src, dst, day, ONE, source="identity")
                for day in iter_dates(start_date, end_date)
            }

        direct = self._get_rates_in_range(db, src, dst, start_date, end_date)
        reverse = self._get_rates_in_range(db, dst, src, start_date, end_date)

        result: dict[date, FXRateResult] = {}
        for day in iter_dates(start_date, end_date):
            if day in direct:
                result[day] = FXRateResult(src, dst, day, direct[day], source="direct")
            elif day in reverse:
                result[day] = FXRateResult(
                    src, dst, day, self.invert_rate(reverse[day]), source="inverse"
                )

        return result

    def get_current_rate(
            self,
            db: Session,
            from_currency: str,
            to_currency: str,
            max_age_hours: int = DEFAULT_RATE_MAX_AGE_HOURS,
    ) -> Decimal | None:
        """
        Newest stored FROM/TO rate if it is recent enough, else a live fetch.

        Returns None if neither is available.
        """
        src = from_currency.upper().strip()
        dst = to_currency.upper().strip()
        if src == dst:
            return ONE

        cutoff = (datetime.now(timezone.utc) - timedelta(hours=max_age_hours)).date()
        cached = db.scalar(
            select(CurrencyRate)
            .where(
                CurrencyRate.from_currency == src,
                CurrencyRate.to_currency == dst,
                CurrencyRate.date >= cutoff,
            )
            .order_by(CurrencyRate.date.desc())
            .limit(1)
        )
        if cached is not None:
            return cached.rate

        fetched = self._fetch_live_rate(db, src, dst)
        return fetched.rate if fetched is not None else None

    def available_rates(self, db: Session, rate_date: date | None = None) -> dict[str, Decimal]:
        """All stored rates for a date, keyed "FROM/TO"."""
        rate_date = rate_date or self._today()
        rows = db.scalars(select(CurrencyRate).where(CurrencyRate.date == rate_date)).all()
        return {f"{r.from_currency}/{r.to_currency}": r.rate for r in rows}

    # =========================================================================
    # CONVERSION
    # =========================================================================

    def convert(
            self,
            db: Session,
            amount: Decimal,
            from_currency: str,
            to_currency: str,
            target_date: date | None = None,
    ) -> Decimal:
        """
        Convert an amount between currencies.

        Same currency and zero amounts are returned unchanged without any
        lookup.

        Raises:
            NoRateAvailableError: No rate could be found or fetched
        """
        if from_currency.upper().strip() == to_currency.upper().strip():
            return amount
        if amount == ZERO:
            return amount

        result = self.get_rate(db, from_currency, to_currency, target_date)
        return amount * result.rate

    def convert_or_none(
            self,
            db: Session,
            amount: Decimal,
            from_currency: str,
            to_currency: str,
            target_date: date | None = None,
    ) -> Decimal | None:
        """Convert an amount, returning None instead of raising when no rate exists."""
        try:
            return self.convert(db, amount, from_currency, to_currency, target_date)
        except NoRateAvailableError:
            return None

    def batch_convert(self, db: Session, requests: list[ConversionRequest]) -> list[Decimal | None]:
        """
        Convert each request independently.

        Returns:
            One entry per request, in order; None where no rate was available
        """
        return [
            self.convert_or_none(db, r.amount, r.from_currency, r.to_currency, r.rate_date)
            for r in requests
        ]

    # =========================================================================
    # REFRESH FROM PROVIDER
    # =========================================================================

    def fetch_latest_rate(self, db: Session, from_currency: str, to_currency: str) -> CurrencyRate | None:
        """
        Fetch the current rate from the provider and store it under today.

        Returns:
            The stored CurrencyRate, or None if the response had no usable rate

        Raises:
            ApiError: Provider call failed
        """
        src = from_currency.upper().strip()
        dst = to_currency.upper().strip()

        rate = parse_exchange_rate(self._provider.get_exchange_rate(src, dst))
        if rate is None:
            logger.warning(f"Provider returned no usable rate for {src}/{dst}")
            return None

        today = self._today()
        upsert_rates(db, src, dst, {today: rate})
        logger.info(f"Stored live rate {src}/{dst} = {rate} for {today}")

        return db.scalar(
            select(CurrencyRate)
            .where(
                CurrencyRate.from_currency == src,
                CurrencyRate.to_currency == dst,
                CurrencyRate.date == today,
            )
            .execution_options(populate_existing=True)
        )

    def fetch_rate_history(
            self,
            db: Session,
            from_currency: str,
            to_currency: str,
            days: int = DEFAULT_HISTORY_DAYS,
    ) -> int:
        """
        Fetch the last `days` daily rates for a pair and store the closes.

        Returns:
            Number of rate rows written

        Raises:
            ApiError: Provider call failed
        """
        src = from_currency.upper().strip()
        dst = to_currency.upper().strip()

        payload = self._provider.get_time_series(
            f"{src}/{dst}", interval=TIME_SERIES_INTERVAL, outputsize=days
        )
        bars = parse_time_series(payload)
        if not bars:
            logger.warning(f"No rate history returned for {src}/{dst}")
            return 0

        return upsert_rates(db, src, dst, {bar.date: bar.close for bar in bars})

    # =========================================================================
    # UTILITY METHODS
    # =========================================================================

    @staticmethod
    def invert_rate(rate: Decimal) -> Decimal:
        """
        Invert an exchange rate (1 / rate).

        Example:
            invert_rate(Decimal("30")) -> Decimal("0.03333...")
        """
        if rate == ZERO:
            raise ValueError("Cannot invert zero rate")
        return ONE / rate

    # =========================================================================
    # PRIVATE METHODS
    # =========================================================================

    def _find_stored_rate(
            self,
            db: Session,
            from_currency: str,
            to_currency: str,
            target_date: date,
            is_today: bool,
    ) -> CurrencyRate | None:
        """Exact-date row; a today lookup also accepts yesterday's row."""
        earliest = target_date - timedelta(days=1) if is_today else target_date
        return db.scalar(
            select(CurrencyRate)
            .where(
                CurrencyRate.from_currency == from_currency,
                CurrencyRate.to_currency == to_currency,
                CurrencyRate.date >= earliest,
                CurrencyRate.date <= target_date,
            )
            .order_by(CurrencyRate.date.desc())
            .limit(1)
        )

    def _fetch_live_rate(self, db: Session, from_currency: str, to_currency: str) -> CurrencyRate | None:
        """Live fetch for the lookup chain; provider failures become None."""
        try:
            return self.fetch_latest_rate(db, from_currency, to_currency)
        except MarketDataError as e:
            logger.error(f"Failed to fetch rate {from_currency}/{to_currency}: {e}")
            return None

    def _get_rates_in_range(
            self,
            db: Session,
            from_currency: str,
            to_currency: str,
            start_date: date,
            end_date: date,
    ) -> dict[date, Decimal]:
        query = select(CurrencyRate.date, CurrencyRate.rate).where(
            CurrencyRate.from_currency == from_currency,
            CurrencyRate.to_currency == to_currency,
            CurrencyRate.date >= start_date,
            CurrencyRate.date <= end_date,
        )
        return {row.date: row.rate for row in db.execute(query)}
