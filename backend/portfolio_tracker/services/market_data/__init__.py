# backend/portfolio_tracker/services/market_data/__init__.py
"""
Market data services package.

This package contains:
- Abstract interface for market data providers and OHLCV types (base.py)
- Twelve Data implementation (twelve_data.py)
- TTL quote cache injected into the provider (cache.py)
- Price history / currency rate upserts and reads (storage.py)
- Asset-class price fetchers and their lookup table (fetchers.py)
- Market data router (router.py)

Usage:
    from portfolio_tracker.services.market_data import (
        TwelveDataProvider,
        QuoteCache,
        build_fetchers,
        MarketDataRouter,
    )

    provider = TwelveDataProvider.from_settings(settings, cache=QuoteCache())
    fetchers = build_fetchers(provider)

Architecture:
    MarketDataProvider (ABC)
    └── TwelveDataProvider (concrete, httpx)

    PriceFetcher (ABC)
    ├── EquityFetcher           EQUITY, ETF
    ├── PreciousMetalFetcher    PRECIOUS_METAL
    ├── ForexFetcher            FOREX
    └── CryptocurrencyFetcher   CRYPTOCURRENCY

    MarketDataRouter
    └── Dispatches on asset class via the fetcher table
    └── Uses FXRateService for forex history
"""

# Base provider interface and data classes
from portfolio_tracker.services.market_data.base import (
    MarketDataProvider,
    OHLCVData,
    parse_exchange_rate,
    parse_quote,
    parse_time_series,
)
from portfolio_tracker.services.market_data.cache import QuoteCache
# Fetchers
from portfolio_tracker.services.market_data.fetchers import (
    FETCHERS,
    CryptocurrencyFetcher,
    EquityFetcher,
    ForexFetcher,
    PreciousMetalFetcher,
    PriceFetcher,
    build_fetchers,
    split_pair,
)
# Router
from portfolio_tracker.services.market_data.router import FetchAllSummary, MarketDataRouter
# Concrete implementations
from portfolio_tracker.services.market_data.twelve_data import TwelveDataProvider

__all__ = [
    # Abstract interface
    "MarketDataProvider",
    "OHLCVData",
    "parse_quote",
    "parse_time_series",
    "parse_exchange_rate",
    # Concrete implementations
    "TwelveDataProvider",
    "QuoteCache",
    # Fetchers
    "PriceFetcher",
    "EquityFetcher",
    "PreciousMetalFetcher",
    "ForexFetcher",
    "CryptocurrencyFetcher",
    "FETCHERS",
    "build_fetchers",
    "split_pair",
    # Router
    "MarketDataRouter",
    "FetchAllSummary",
]
