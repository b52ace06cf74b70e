# backend/portfolio_tracker/services/__init__.py
"""
Service layer for business logic.

Services:
- Have NO knowledge of transport (no HTTP, no CLI)
- Raise domain-specific exceptions
- Receive database sessions as parameters
- Receive collaborators (provider, FX service, runner) via constructor

Only the exceptions are re-exported here; models.py imports them, so this
package must not import any service module at load time.

Usage:
    from portfolio_tracker.services.fx_rate_service import FXRateService
    from portfolio_tracker.services.market_data import MarketDataRouter
    from portfolio_tracker.services.analytics import PortfolioAnalyticsService
    from portfolio_tracker.services import NoRateAvailableError

Architecture:
    services/
    ├── __init__.py                  # This file - exception exports
    ├── exceptions.py                # Domain exceptions
    ├── constants.py                 # Business constants and defaults
    ├── fx_rate_service.py           # Rate store and currency conversion
    ├── batch.py                     # Batch runner and scheduled updates
    ├── positions.py                 # Position creation and price refresh
    ├── catalog.py                   # Reference asset catalogs
    ├── analytics/                   # Valuation and analytics engine
    │   ├── service.py               # Portfolio analytics
    │   └── types.py                 # Analytics data types
    └── market_data/                 # Market data package
        ├── base.py                  # Abstract provider interface
        ├── twelve_data.py           # Twelve Data implementation
        ├── cache.py                 # Quote cache
        ├── storage.py               # Price/rate persistence
        ├── fetchers.py              # Asset-class fetchers
        └── router.py                # History fetch dispatch
"""

from portfolio_tracker.services.exceptions import (
    ServiceError,
    ValidationError,
    InvalidAssetClassError,
    MarketDataError,
    ApiError,
    RateLimitError,
    ProviderUnavailableError,
    FXRateError,
    NoRateAvailableError,
)

__all__ = [
    "ServiceError",
    "ValidationError",
    "InvalidAssetClassError",
    "MarketDataError",
    "ApiError",
    "RateLimitError",
    "ProviderUnavailableError",
    "FXRateError",
    "NoRateAvailableError",
]
