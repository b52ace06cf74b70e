# backend/portfolio_tracker/services/batch.py
"""
Batch Update Orchestrator.

Runs a per-item fetch over many assets or currency pairs against a
provider with a hard per-minute call budget:

- Rate limiting: a fixed delay between items (not before the first, not
  after the last)
- Per-item isolation: a failing item is recorded and the run continues
- Summary: total == success + failed and len(errors) == failed, always

An item fails when its operation raises, or when it returns nothing
(None, 0 or an empty list), recorded as "No data returned".
ValidationError and InvalidAssetClassError are data/programming defects
and abort the run instead of being recorded.

Usage:
    runner = BatchRunner(delay_seconds=1.0)
    updater = BatchUpdateService(fetchers, fx_service, runner)

    summary = updater.batch_update_prices(db, exchange=Exchange.BIST)
    print(f"{summary.success}/{summary.total} updated")
    for error in summary.errors:
        print(f"{error.identifier}: {error.message}")
"""

import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, TypeVar

from sqlalchemy import select
from sqlalchemy.orm import Session

from portfolio_tracker.models import Asset, AssetClass, Exchange
from portfolio_tracker.services.constants import DEFAULT_RATE_LIMIT_DELAY_SECONDS, FOREX_WATCHLIST
from portfolio_tracker.services.exceptions import InvalidAssetClassError, ValidationError
from portfolio_tracker.utils.context import correlation_scope

if TYPE_CHECKING:
    from portfolio_tracker.services.fx_rate_service import FXRateService
    from portfolio_tracker.services.market_data.fetchers import PriceFetcher

logger = logging.getLogger(__name__)

T = TypeVar("T")

NO_DATA_MESSAGE = "No data returned"


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass
class BatchItemError:
    """One failed item of a batch run."""

    identifier: str
    message: str


@dataclass
class BatchSummary:
    """Aggregate result of a batch run."""

    total: int = 0
    success: int = 0
    failed: int = 0
    errors: list[BatchItemError] = field(default_factory=list)

    def record_success(self) -> None:
        self.total += 1
        self.success += 1

    def record_failure(self, identifier: str, message: str) -> None:
        self.total += 1
        self.failed += 1
        self.errors.append(BatchItemError(identifier, message))

    def merge(self, other: "BatchSummary") -> None:
        """Add another summary's counts and errors into this one."""
        self.total += other.total
        self.success += other.success
        self.failed += other.failed
        self.errors.extend(other.errors)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "success": self.success,
            "failed": self.failed,
            "errors": [{"identifier": e.identifier, "message": e.message} for e in self.errors],
        }


# =============================================================================
# BATCH RUNNER
# =============================================================================

class BatchRunner:
    """
    Applies an operation to each item with rate limiting and isolation.

    The sleep function is injectable so tests never wait.
    """

    def __init__(
            self,
            delay_seconds: float = DEFAULT_RATE_LIMIT_DELAY_SECONDS,
            sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._delay = delay_seconds
        self._sleep = sleep

    def run(
            self,
            items: Iterable[T],
            operation: Callable[[T], Any],
            identify: Callable[[T], str],
    ) -> BatchSummary:
        """
        Run `operation` on every item.

        Args:
            items: Assets, currency pairs, ...
            operation: Per-item call; a falsy result counts as a failure
            identify: Label for an item in logs and error entries

        Returns:
            BatchSummary over all items

        Raises:
            ValidationError, InvalidAssetClassError: Propagated immediately
        """
        summary = BatchSummary()
        items = list(items)

        with correlation_scope("batch") as correlation_id:
            logger.info(f"Batch run {correlation_id} started ({len(items)} items)")

            for index, item in enumerate(items):
                if index > 0 and self._delay > 0:
                    self._sleep(self._delay)

                identifier = identify(item)
                try:
                    result = operation(item)
                except (ValidationError, InvalidAssetClassError):
                    raise
                except Exception as e:
                    summary.record_failure(identifier, str(e) or type(e).__name__)
                    logger.error(f"Batch item {identifier} failed: {e}")
                    continue

                if result:
                    summary.record_success()
                    logger.debug(f"Batch item {identifier} done: {result!r}")
                else:
                    summary.record_failure(identifier, NO_DATA_MESSAGE)
                    logger.warning(f"Batch item {identifier}: {NO_DATA_MESSAGE}")

            logger.info(
                f"Batch run {correlation_id} finished: total={summary.total}, "
                f"success={summary.success}, failed={summary.failed}"
            )

        return summary


# =============================================================================
# BATCH UPDATE SERVICE
# =============================================================================

class BatchUpdateService:
    """
    Scheduled refresh of latest prices and rates.

    Each operation enumerates its item set and delegates per item to a
    fetcher's fetch_latest or the FX service's fetch_latest_rate.
    """

    def __init__(
            self,
            fetchers: dict[AssetClass, "PriceFetcher"],
            fx_service: "FXRateService",
            runner: BatchRunner,
    ) -> None:
        self._fetchers = fetchers
        self._fx_service = fx_service
        self._runner = runner
        logger.info("BatchUpdateService initialized")

    def batch_update_prices(self, db: Session, exchange: Exchange | None = None) -> BatchSummary:
        """Refresh the latest price of every stock and ETF, optionally on one venue."""
        query = select(Asset).where(Asset.asset_class.in_([AssetClass.EQUITY, AssetClass.ETF]))
        if exchange is not None:
            query = query.where(Asset.exchange == exchange)
        return self._update_latest(db, list(db.scalars(query.order_by(Asset.symbol)).all()))

    def batch_update_precious_metals(self, db: Session) -> BatchSummary:
        """Refresh the latest price of every precious metal."""
        return self._update_latest(db, self._assets_of_class(db, AssetClass.PRECIOUS_METAL))

    def batch_update_cryptocurrencies(self, db: Session) -> BatchSummary:
        """Refresh the latest price of every cryptocurrency."""
        return self._update_latest(db, self._assets_of_class(db, AssetClass.CRYPTOCURRENCY))

    def batch_update_rates(
            self,
            db: Session,
            pairs: list[tuple[str, str]] | None = None,
    ) -> BatchSummary:
        """
        Refresh today's rate for each pair (default: the forex watch-list).
        """
        pairs = pairs if pairs is not None else FOREX_WATCHLIST
        return self._runner.run(
            pairs,
            lambda pair: self._fx_service.fetch_latest_rate(db, pair[0], pair[1]),
            lambda pair: f"{pair[0]}/{pair[1]}",
        )

    def _update_latest(self, db: Session, assets: list[Asset]) -> BatchSummary:
        return self._runner.run(
            assets,
            lambda asset: self._fetchers[asset.asset_class].fetch_latest(db, asset),
            lambda asset: asset.symbol,
        )

    @staticmethod
    def _assets_of_class(db: Session, asset_class: AssetClass) -> list[Asset]:
        query = select(Asset).where(Asset.asset_class == asset_class).order_by(Asset.symbol)
        return list(db.scalars(query).all())
