# backend/portfolio_tracker/services/market_data/fetchers.py
"""
Asset-class price fetchers.

Each fetcher knows how one family of asset classes is addressed on the
provider and writes the normalized result to price history:

    EquityFetcher          EQUITY, ETF       THYAO:BIST, AAPL
    PreciousMetalFetcher   PRECIOUS_METAL    XAU/USD
    ForexFetcher           FOREX             USD/TRY (verbatim)
    CryptocurrencyFetcher  CRYPTOCURRENCY    BTC/USD

All fetchers share the same two operations:
- fetch_latest(db, asset): one quote call, upserts one row
- fetch_history(db, asset, days): one time-series call, upserts one row per bar

Callers pick a fetcher through the FETCHERS lookup table (or
build_fetchers), so supporting a new asset class means adding one entry.

Provider errors (ApiError and subclasses) propagate; the router and batch
layers decide how to record them. Handing a fetcher an asset of another
class raises InvalidAssetClassError before any provider call.
"""

import logging
from abc import ABC, abstractmethod

from sqlalchemy.orm import Session

from portfolio_tracker.models import Asset, AssetClass, Exchange, PriceHistory
from portfolio_tracker.services.constants import DEFAULT_HISTORY_DAYS, TIME_SERIES_INTERVAL, USD
from portfolio_tracker.services.exceptions import InvalidAssetClassError, ValidationError
from portfolio_tracker.services.market_data.base import (
    MarketDataProvider,
    OHLCVData,
    parse_quote,
    parse_time_series,
)
from portfolio_tracker.services.market_data.storage import upsert_prices, upsert_rates

logger = logging.getLogger(__name__)


def split_pair(symbol: str) -> tuple[str, str]:
    """
    Split a "BASE/QUOTE" forex symbol into its currencies.

    Raises:
        ValidationError: If the symbol is not a BASE/QUOTE pair
    """
    parts = [p.strip().upper() for p in symbol.split("/")]
    if len(parts) != 2 or not all(parts):
        raise ValidationError(f"Forex symbol must look like 'BASE/QUOTE', got '{symbol}'", field="symbol")
    return parts[0], parts[1]


# =============================================================================
# BASE FETCHER
# =============================================================================

class PriceFetcher(ABC):
    """
    Fetch-and-store strategy for one family of asset classes.

    Subclasses declare `asset_classes` and implement `format_symbol`; they
    may override `price_currency` and `_store` when the class needs it.
    """

    asset_classes: tuple[AssetClass, ...] = ()

    def __init__(self, provider: MarketDataProvider) -> None:
        self._provider = provider

    @abstractmethod
    def format_symbol(self, asset: Asset) -> str:
        """Provider symbol for an asset."""
        pass

    def price_currency(self, asset: Asset) -> str:
        """Currency the provider quotes this asset in."""
        return asset.currency

    def fetch_latest(self, db: Session, asset: Asset) -> PriceHistory | None:
        """
        Fetch the latest quote and upsert it into price history.

        The row is dated with the quote's datetime (today if absent).

        Returns:
            The stored row, or None if the quote had no usable close price

        Raises:
            InvalidAssetClassError: Asset is not handled by this fetcher
            ApiError: Provider call failed
        """
        self._check_asset_class(asset)
        symbol = self.format_symbol(asset)

        bar = parse_quote(self._provider.get_quote(symbol))
        if bar is None:
            logger.warning(f"No usable quote for {symbol}")
            return None

        rows = self._store(db, asset, [bar])
        return rows[0] if rows else None

    def fetch_history(
            self,
            db: Session,
            asset: Asset,
            days: int = DEFAULT_HISTORY_DAYS,
    ) -> list[PriceHistory]:
        """
        Fetch the most recent `days` daily bars and upsert them.

        Returns:
            Stored rows ordered by date (empty if the provider returned none)

        Raises:
            InvalidAssetClassError: Asset is not handled by this fetcher
            ApiError: Provider call failed
        """
        self._check_asset_class(asset)
        symbol = self.format_symbol(asset)

        payload = self._provider.get_time_series(
            symbol, interval=TIME_SERIES_INTERVAL, outputsize=days
        )
        bars = parse_time_series(payload)
        if not bars:
            logger.warning(f"No history returned for {symbol}")
            return []

        return self._store(db, asset, bars)

    def _store(self, db: Session, asset: Asset, bars: list[OHLCVData]) -> list[PriceHistory]:
        return upsert_prices(db, asset, bars, self.price_currency(asset))

    def _check_asset_class(self, asset: Asset) -> None:
        if asset.asset_class not in self.asset_classes:
            raise InvalidAssetClassError(
                symbol=asset.symbol,
                asset_class=asset.asset_class.value if asset.asset_class else "None",
                expected=[c.value for c in self.asset_classes],
            )


# =============================================================================
# CONCRETE FETCHERS
# =============================================================================

class EquityFetcher(PriceFetcher):
    """Stocks and ETFs. Non-default venues get a ':VENUE' suffix."""

    asset_classes = (AssetClass.EQUITY, AssetClass.ETF)

    # Venues that need an explicit suffix; US venues and generic sources don't
    VENUE_SUFFIXES: dict[Exchange, str] = {
        Exchange.BIST: "BIST",
    }

    def format_symbol(self, asset: Asset) -> str:
        suffix = self.VENUE_SUFFIXES.get(asset.exchange)
        return f"{asset.symbol}:{suffix}" if suffix else asset.symbol


class PreciousMetalFetcher(PriceFetcher):
    """Gold, silver, platinum, palladium. Always quoted and stored in USD."""

    asset_classes = (AssetClass.PRECIOUS_METAL,)

    def format_symbol(self, asset: Asset) -> str:
        return f"{asset.symbol}/{USD}"

    def price_currency(self, asset: Asset) -> str:
        return USD


class CryptocurrencyFetcher(PriceFetcher):
    """Coins quoted against USD."""

    asset_classes = (AssetClass.CRYPTOCURRENCY,)

    def format_symbol(self, asset: Asset) -> str:
        return f"{asset.symbol}/{USD}"


class ForexFetcher(PriceFetcher):
    """
    Currency pairs. The asset symbol is already "BASE/QUOTE".

    Rows are stored in the quote currency and also written to
    currency_rates (close as the rate).
    """

    asset_classes = (AssetClass.FOREX,)

    def format_symbol(self, asset: Asset) -> str:
        return asset.symbol

    def price_currency(self, asset: Asset) -> str:
        return split_pair(asset.symbol)[1]

    def _store(self, db: Session, asset: Asset, bars: list[OHLCVData]) -> list[PriceHistory]:
        base, quote = split_pair(asset.symbol)
        upsert_rates(db, base, quote, {bar.date: bar.close for bar in bars})
        return upsert_prices(db, asset, bars, quote)


# =============================================================================
# LOOKUP TABLE
# =============================================================================

FETCHERS: dict[AssetClass, type[PriceFetcher]] = {
    AssetClass.EQUITY: EquityFetcher,
    AssetClass.ETF: EquityFetcher,
    AssetClass.PRECIOUS_METAL: PreciousMetalFetcher,
    AssetClass.FOREX: ForexFetcher,
    AssetClass.CRYPTOCURRENCY: CryptocurrencyFetcher,
}


def build_fetchers(provider: MarketDataProvider) -> dict[AssetClass, PriceFetcher]:
    """
    Instantiate one fetcher per class in FETCHERS, sharing the provider.

    Classes mapped to the same fetcher type share one instance.
    """
    instances: dict[type[PriceFetcher], PriceFetcher] = {}
    fetchers = {}
    for asset_class, fetcher_cls in FETCHERS.items():
        if fetcher_cls not in instances:
            instances[fetcher_cls] = fetcher_cls(provider)
        fetchers[asset_class] = instances[fetcher_cls]
    return fetchers
