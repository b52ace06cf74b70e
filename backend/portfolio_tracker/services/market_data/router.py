# backend/portfolio_tracker/services/market_data/router.py
"""
Market Data Router: single entry point for historical price fetches.

Dispatches on asset class:

    EQUITY, ETF, PRECIOUS_METAL, CRYPTOCURRENCY -> fetcher.fetch_history
    FOREX  -> FX service rate history for BASE/QUOTE, then every stored
              rate of the pair mirrored into price_history as a flat bar
    BOND   -> unsupported, 0 with a warning
    other  -> 0 with an error log

fetch_for_asset never raises for provider or unexpected errors: they are
logged and reported as 0 records, so it is safe to call in a loop.
ValidationError and InvalidAssetClassError are defects and propagate.

The wrappers (asset class, portfolio, all, backfill) enumerate assets and
run fetch_for_asset through a BatchRunner, where 0 records counts as a
failure.
"""

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from portfolio_tracker.models import Asset, AssetClass, CurrencyRate, Portfolio, PriceHistory, Position
from portfolio_tracker.services.batch import BatchRunner, BatchSummary
from portfolio_tracker.services.constants import DEFAULT_HISTORY_DAYS, MIN_HISTORY_DAYS
from portfolio_tracker.services.exceptions import InvalidAssetClassError, MarketDataError, ValidationError
from portfolio_tracker.services.market_data.base import OHLCVData
from portfolio_tracker.services.market_data.fetchers import PriceFetcher, split_pair
from portfolio_tracker.services.market_data.storage import upsert_prices

if TYPE_CHECKING:
    from portfolio_tracker.services.fx_rate_service import FXRateService

logger = logging.getLogger(__name__)


@dataclass
class FetchAllSummary(BatchSummary):
    """Overall summary of fetch_all plus one summary per asset class."""

    by_asset_class: dict[AssetClass, BatchSummary] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["by_asset_class"] = {c.value: s.to_dict() for c, s in self.by_asset_class.items()}
        return data


class MarketDataRouter:
    """
    Routes history fetches to the fetcher matching each asset's class.

    Example:
        router = MarketDataRouter(build_fetchers(provider), fx_service, BatchRunner())

        router.fetch_for_asset(db, asset, days=30)
        summary = router.fill_missing_history(db)
    """

    def __init__(
            self,
            fetchers: dict[AssetClass, PriceFetcher],
            fx_service: "FXRateService",
            runner: BatchRunner,
    ) -> None:
        self._fetchers = fetchers
        self._fx_service = fx_service
        self._runner = runner
        logger.info(f"MarketDataRouter initialized ({len(fetchers)} asset classes)")

    # =========================================================================
    # SINGLE ASSET
    # =========================================================================

    def fetch_for_asset(self, db: Session, asset: Asset, days: int = DEFAULT_HISTORY_DAYS) -> int:
        """
        Fetch and store price history for one asset.

        Returns:
            Number of records written (0 on any fetch failure)

        Raises:
            ValidationError: Stored data would violate a model invariant
            InvalidAssetClassError: Asset handed to the wrong fetcher
        """
        try:
            if asset.asset_class == AssetClass.FOREX:
                return self._fetch_forex(db, asset, days)

            if asset.asset_class == AssetClass.BOND:
                logger.warning(f"Historical prices not available for bonds: {asset.symbol}")
                return 0

            fetcher = self._fetchers.get(asset.asset_class)
            if fetcher is None:
                logger.error(f"Unknown asset class for {asset.symbol}: {asset.asset_class}")
                return 0

            return len(fetcher.fetch_history(db, asset, days=days))

        except (ValidationError, InvalidAssetClassError):
            raise
        except MarketDataError as e:
            db.rollback()
            logger.error(f"API error fetching history for {asset.symbol}: {e}")
            return 0
        except Exception as e:
            db.rollback()
            logger.exception(f"Failed to fetch history for {asset.symbol}: {e}")
            return 0

    def _fetch_forex(self, db: Session, asset: Asset, days: int) -> int:
        base, quote = split_pair(asset.symbol)
        count = self._fx_service.fetch_rate_history(db, base, quote, days=days)
        self.sync_forex_to_price_history(db, asset)
        return count

    def sync_forex_to_price_history(self, db: Session, asset: Asset) -> int:
        """
        Mirror every stored rate of a forex asset's pair into its price history.

        Each rate becomes a flat bar (open = high = low = close = rate, no
        volume) in the quote currency. Re-running re-upserts the same values.

        Returns:
            Number of price rows written
        """
        base, quote = split_pair(asset.symbol)
        rates = db.scalars(
            select(CurrencyRate)
            .where(CurrencyRate.from_currency == base, CurrencyRate.to_currency == quote)
            .order_by(CurrencyRate.date)
        ).all()

        rows = upsert_prices(db, asset, [OHLCVData.flat(r.date, r.rate) for r in rates], quote)
        logger.info(f"Synced {len(rows)} forex rates to price history for {asset.symbol}")
        return len(rows)

    # =========================================================================
    # WRAPPERS
    # =========================================================================

    def fetch_for_asset_class(
            self,
            db: Session,
            asset_class: AssetClass,
            days: int = DEFAULT_HISTORY_DAYS,
    ) -> BatchSummary:
        """Fetch history for every asset of one class."""
        assets = db.scalars(
            select(Asset).where(Asset.asset_class == asset_class).order_by(Asset.symbol)
        ).all()
        return self._run(db, assets, days)

    def fetch_for_portfolio(
            self,
            db: Session,
            portfolio: Portfolio,
            days: int = DEFAULT_HISTORY_DAYS,
    ) -> BatchSummary:
        """Fetch history for each distinct asset held in a portfolio."""
        assets = db.scalars(
            select(Asset)
            .join(Position, Position.asset_id == Asset.id)
            .where(Position.portfolio_id == portfolio.id)
            .distinct()
            .order_by(Asset.symbol)
        ).all()
        return self._run(db, assets, days)

    def fetch_all(
            self,
            db: Session,
            days: int = DEFAULT_HISTORY_DAYS,
            exclude_bonds: bool = True,
    ) -> FetchAllSummary:
        """
        Fetch history for every asset, class by class.

        This can consume a lot of API credits.
        """
        overall = FetchAllSummary()

        for asset_class in AssetClass:
            if exclude_bonds and asset_class == AssetClass.BOND:
                continue
            logger.info(f"Fetching historical prices for {asset_class.value}")
            summary = self.fetch_for_asset_class(db, asset_class, days=days)
            overall.by_asset_class[asset_class] = summary
            overall.merge(summary)

        logger.info(
            f"fetch_all finished: total={overall.total}, success={overall.success}, "
            f"failed={overall.failed}"
        )
        return overall

    # =========================================================================
    # BACKFILL
    # =========================================================================

    def find_assets_missing_history(self, db: Session, min_days: int = MIN_HISTORY_DAYS) -> list[Asset]:
        """Assets with fewer than `min_days` stored price rows."""
        row_count = func.count(PriceHistory.id)
        query = (
            select(Asset)
            .outerjoin(PriceHistory, PriceHistory.asset_id == Asset.id)
            .group_by(Asset.id)
            .having(row_count < min_days)
            .order_by(Asset.symbol)
        )
        return list(db.scalars(query).all())

    def fill_missing_history(
            self,
            db: Session,
            min_days: int = MIN_HISTORY_DAYS,
            fetch_days: int = DEFAULT_HISTORY_DAYS,
    ) -> BatchSummary:
        """Re-fetch history only for assets below `min_days` rows."""
        missing = self.find_assets_missing_history(db, min_days=min_days)
        logger.info(f"{len(missing)} assets have fewer than {min_days} price rows")
        return self._run(db, missing, fetch_days)

    def _run(self, db: Session, assets: list[Asset], days: int) -> BatchSummary:
        return self._runner.run(
            assets,
            lambda asset: self.fetch_for_asset(db, asset, days=days),
            lambda asset: asset.symbol,
        )
