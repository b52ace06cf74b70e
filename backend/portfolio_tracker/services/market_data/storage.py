# backend/portfolio_tracker/services/market_data/storage.py
"""
Persistence helpers for price history and currency rates.

All writes are upserts keyed on the table's unique constraint:
- price_history:   (asset_id, date)
- currency_rates:  (from_currency, to_currency, date)

so re-running a fetch for the same dates overwrites values instead of
inserting duplicates. Reads implement the "latest observation at or before
a date" rule used by valuation.
"""

import logging
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy import select, func
from sqlalchemy.orm import Session

from portfolio_tracker.models import Asset, CurrencyRate, PriceHistory
from portfolio_tracker.services.constants import PRICE_STALENESS_DAYS
from portfolio_tracker.services.exceptions import ValidationError
from portfolio_tracker.services.market_data.base import OHLCVData
from portfolio_tracker.utils.sql import upsert

logger = logging.getLogger(__name__)

_PRICE_UPDATE_COLUMNS = ["open", "high", "low", "close", "volume", "currency", "updated_at"]
_RATE_UPDATE_COLUMNS = ["rate", "updated_at"]


# =============================================================================
# WRITES
# =============================================================================

def upsert_prices(
        db: Session,
        asset: Asset,
        prices: list[OHLCVData],
        currency: str,
) -> list[PriceHistory]:
    """
    Insert or overwrite daily price rows for an asset.

    Args:
        db: Database session
        asset: Asset the prices belong to
        prices: Normalized OHLCV bars (at most one per date is kept, last wins)
        currency: Currency the prices are quoted in

    Returns:
        The stored PriceHistory rows, ordered by date

    Raises:
        ValidationError: If a bar has a non-positive price or currency is blank
    """
    if not prices:
        return []
    if not currency:
        raise ValidationError("currency is required for price history", field="currency")

    now = datetime.now(timezone.utc)
    by_date: dict[date, dict] = {}

    for bar in prices:
        if min(bar.open, bar.high, bar.low, bar.close) <= 0:
            raise ValidationError(
                f"Non-positive price for {asset.symbol} on {bar.date}", field="close"
            )
        by_date[bar.date] = {
            "asset_id": asset.id,
            "date": bar.date,
            "open": bar.open,
            "high": bar.high,
            "low": bar.low,
            "close": bar.close,
            "volume": bar.volume,
            "currency": currency.upper(),
            "created_at": now,
            "updated_at": now,
        }

    upsert(
        db,
        PriceHistory,
        list(by_date.values()),
        index_elements=["asset_id", "date"],
        update_columns=_PRICE_UPDATE_COLUMNS,
    )
    db.commit()

    logger.info(f"Upserted {len(by_date)} price rows for {asset.symbol}")

    query = (
        select(PriceHistory)
        .where(PriceHistory.asset_id == asset.id, PriceHistory.date.in_(list(by_date)))
        .order_by(PriceHistory.date)
        .execution_options(populate_existing=True)
    )
    return list(db.scalars(query).all())


def upsert_rates(
        db: Session,
        from_currency: str,
        to_currency: str,
        rates: dict[date, Decimal],
) -> int:
    """
    Insert or overwrite rates for one currency pair.

    Args:
        db: Database session
        from_currency: Base currency (1 unit of this...)
        to_currency: Quote currency (...equals `rate` units of this)
        rates: Mapping of date -> rate

    Returns:
        Number of rows written

    Raises:
        ValidationError: If any rate is not positive
    """
    if not rates:
        return 0

    now = datetime.now(timezone.utc)
    records = []
    for rate_date, rate in rates.items():
        if rate <= 0:
            raise ValidationError(
                f"Non-positive rate {rate} for {from_currency}/{to_currency} on {rate_date}",
                field="rate",
            )
        records.append({
            "from_currency": from_currency.upper(),
            "to_currency": to_currency.upper(),
            "date": rate_date,
            "rate": rate,
            "created_at": now,
            "updated_at": now,
        })

    written = upsert(
        db,
        CurrencyRate,
        records,
        index_elements=["from_currency", "to_currency", "date"],
        update_columns=_RATE_UPDATE_COLUMNS,
    )
    db.commit()

    logger.info(f"Upserted {written} rates for {from_currency}/{to_currency}")
    return written


# =============================================================================
# READS
# =============================================================================

def get_latest_price(
        db: Session,
        asset_id: int,
        as_of: date | None = None,
) -> PriceHistory | None:
    """
    Most recent price row for an asset, optionally at or before a date.

    Args:
        db: Database session
        asset_id: Asset to look up
        as_of: Only consider rows with date <= as_of (None = newest row)
    """
    query = select(PriceHistory).where(PriceHistory.asset_id == asset_id)
    if as_of is not None:
        query = query.where(PriceHistory.date <= as_of)
    query = query.order_by(PriceHistory.date.desc()).limit(1)
    return db.scalar(query)


def count_price_rows(db: Session, asset_id: int) -> int:
    """Number of stored price rows for an asset."""
    return db.scalar(
        select(func.count(PriceHistory.id)).where(PriceHistory.asset_id == asset_id)
    ) or 0


def is_price_stale(
        db: Session,
        asset_id: int,
        max_age_days: int = PRICE_STALENESS_DAYS,
        today: date | None = None,
) -> bool:
    """
    True when the asset has no price or its newest price is too old.

    A price dated `max_age_days` ago is still fresh; older is stale.
    """
    latest = get_latest_price(db, asset_id)
    if latest is None:
        return True
    today = today or date.today()
    return latest.date < today - timedelta(days=max_age_days)
