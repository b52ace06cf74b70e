# backend/portfolio_tracker/services/analytics/__init__.py
"""
Portfolio Analytics Package.

This package provides portfolio valuation and analytics:
- Current value, cost basis, profit/loss, return percentage
- Allocation by asset class and by currency
- Top/worst performers, largest positions
- Diversity score (normalized HHI)
- Point-in-time valuation, period performance, value timeline

Architecture:
    analytics/
    ├── __init__.py              # This file - package exports
    ├── types.py                 # Data classes for results
    └── service.py               # PortfolioAnalyticsService / PortfolioAnalytics

Usage:
    from portfolio_tracker.services.analytics import PortfolioAnalyticsService

    service = PortfolioAnalyticsService(fx_service)
    analytics = service.analyze(db, portfolio)

    print(f"Value: {analytics.total_value()} {analytics.base_currency}")
    print(f"Diversity: {analytics.diversity_score()}")

    summary = analytics.analytics_summary()

Data Flow:
    Position + Asset
        ↓
    PriceHistory (latest / as-of-date close)
        ↓
    FXRateService (asset or purchase currency → base currency)
        ↓
    PortfolioAnalytics (memoized snapshots and rates)
"""

from portfolio_tracker.services.analytics.service import (
    PortfolioAnalytics,
    PortfolioAnalyticsService,
)
from portfolio_tracker.services.analytics.types import (
    AllocationEntry,
    AnalyticsSummary,
    PeriodPerformance,
    PortfolioOverview,
    PositionSnapshot,
    ValuePoint,
)

__all__ = [
    # Service
    "PortfolioAnalyticsService",
    "PortfolioAnalytics",
    # Types
    "AllocationEntry",
    "AnalyticsSummary",
    "PeriodPerformance",
    "PortfolioOverview",
    "PositionSnapshot",
    "ValuePoint",
]
