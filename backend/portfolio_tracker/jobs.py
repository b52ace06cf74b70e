# backend/portfolio_tracker/jobs.py
"""
Scheduler-facing entry points.

An external scheduler (cron, systemd timer, a worker queue) decides when to
run; this module wires the services from settings and runs one update:

    stocks   latest prices of stocks and ETFs
    metals   latest precious metal prices
    forex    today's rates for the forex watch-list
    crypto   latest cryptocurrency prices
    all      the four above, in that order
    history  backfill price history for assets with too few rows

Usage:
    python -m portfolio_tracker.jobs stocks
    python -m portfolio_tracker.jobs history --min-days 7 --fetch-days 30

Each run logs under one "job-..." correlation ID and returns the batch
summaries keyed by update type.
"""

import argparse
import json
import logging
import time
from collections.abc import Callable, Sequence
from contextlib import AbstractContextManager
from dataclasses import dataclass

from sqlalchemy.orm import Session

from portfolio_tracker.config import Settings, settings as app_settings
from portfolio_tracker.database import session_scope
from portfolio_tracker.models import AssetClass
from portfolio_tracker.services.analytics import PortfolioAnalyticsService
from portfolio_tracker.services.batch import BatchRunner, BatchSummary, BatchUpdateService
from portfolio_tracker.services.constants import DEFAULT_HISTORY_DAYS, MIN_HISTORY_DAYS
from portfolio_tracker.services.exceptions import ValidationError
from portfolio_tracker.services.fx_rate_service import FXRateService
from portfolio_tracker.services.market_data import (
    MarketDataProvider,
    MarketDataRouter,
    PriceFetcher,
    QuoteCache,
    TwelveDataProvider,
    build_fetchers,
)
from portfolio_tracker.services.positions import PositionService
from portfolio_tracker.utils import correlation_scope, setup_logging

logger = logging.getLogger(__name__)

UPDATE_TYPES: tuple[str, ...] = ("stocks", "metals", "forex", "crypto", "all", "history")


@dataclass
class Services:
    """The wired service graph for one process."""
    provider: MarketDataProvider
    fx_service: FXRateService
    fetchers: dict[AssetClass, PriceFetcher]
    runner: BatchRunner
    router: MarketDataRouter
    updater: BatchUpdateService
    analytics: PortfolioAnalyticsService
    positions: PositionService


def build_services(
        settings: Settings = app_settings,
        provider: MarketDataProvider | None = None,
        sleep: Callable[[float], None] = time.sleep,
) -> Services:
    """
    Wire every service from settings.

    Args:
        settings: Application settings
        provider: Use this provider instead of a Twelve Data client
        sleep: Sleep used between batch items
    """
    if provider is None:
        provider = TwelveDataProvider.from_settings(
            settings, cache=QuoteCache(ttl_seconds=settings.quote_cache_ttl_seconds)
        )

    fx_service = FXRateService(provider)
    fetchers = build_fetchers(provider)
    runner = BatchRunner(delay_seconds=settings.rate_limit_delay_seconds, sleep=sleep)

    return Services(
        provider=provider,
        fx_service=fx_service,
        fetchers=fetchers,
        runner=runner,
        router=MarketDataRouter(fetchers, fx_service, runner),
        updater=BatchUpdateService(fetchers, fx_service, runner),
        analytics=PortfolioAnalyticsService(fx_service),
        positions=PositionService(fetchers),
    )


def run_update(
        update_type: str,
        services: Services | None = None,
        session_factory: Callable[[], AbstractContextManager[Session]] = session_scope,
        min_days: int = MIN_HISTORY_DAYS,
        fetch_days: int = DEFAULT_HISTORY_DAYS,
) -> dict[str, BatchSummary]:
    """
    Run one scheduled update.

    Returns:
        Batch summary per update type that ran

    Raises:
        ValidationError: Unknown update type
    """
    if update_type not in UPDATE_TYPES:
        raise ValidationError(
            f"Unknown update type '{update_type}', expected one of: {', '.join(UPDATE_TYPES)}",
            field="update_type",
        )

    services = services or build_services()
    updater = services.updater

    steps: dict[str, Callable[[Session], BatchSummary]] = {
        "stocks": updater.batch_update_prices,
        "metals": updater.batch_update_precious_metals,
        "forex": updater.batch_update_rates,
        "crypto": updater.batch_update_cryptocurrencies,
        "history": lambda db: services.router.fill_missing_history(
            db, min_days=min_days, fetch_days=fetch_days
        ),
    }
    names = ["stocks", "metals", "forex", "crypto"] if update_type == "all" else [update_type]

    results: dict[str, BatchSummary] = {}
    with correlation_scope("job") as correlation_id:
        logger.info(f"Job {correlation_id}: running '{update_type}' update")
        with session_factory() as db:
            for name in names:
                results[name] = steps[name](db)
                logger.info(
                    f"Job {correlation_id}: {name} done "
                    f"(success={results[name].success}, failed={results[name].failed})"
                )

    return results


def main(argv: Sequence[str] | None = None) -> int:
    """
    Command-line entry point.

    Returns:
        0 when every item succeeded, 1 when any item failed
    """
    parser = argparse.ArgumentParser(description="Run a market data update")
    parser.add_argument("update_type", choices=UPDATE_TYPES)
    parser.add_argument("--min-days", type=int, default=MIN_HISTORY_DAYS)
    parser.add_argument("--fetch-days", type=int, default=DEFAULT_HISTORY_DAYS)
    args = parser.parse_args(argv)

    setup_logging(level=app_settings.log_level, log_format=app_settings.log_format)

    results = run_update(args.update_type, min_days=args.min_days, fetch_days=args.fetch_days)
    print(json.dumps({name: summary.to_dict() for name, summary in results.items()}, indent=2))

    return 1 if any(summary.failed for summary in results.values()) else 0


if __name__ == "__main__":
    raise SystemExit(main())
