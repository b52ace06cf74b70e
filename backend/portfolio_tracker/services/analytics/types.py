# backend/portfolio_tracker/services/analytics/types.py
"""
Data types for the Portfolio Analytics Service.

This module defines the data structures returned by the valuation and
analytics calculations. All amounts use Decimal and are expressed in the
portfolio's base currency unless stated otherwise. Nothing is rounded;
rounding to display precision is up to the consumer.

Architecture:
    - PositionSnapshot: One open position valued at the latest price
    - AllocationEntry: One group of an allocation breakdown
    - PeriodPerformance: Value change between two dates
    - ValuePoint: One point of a value timeline
    - PortfolioOverview: Headline totals
    - AnalyticsSummary: Everything above bundled for a consumer
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any

from portfolio_tracker.models import AssetClass


# =============================================================================
# POSITION LEVEL
# =============================================================================

@dataclass
class PositionSnapshot:
    """
    An open position valued at its asset's latest stored price.

    Attributes:
        position_id: Position primary key
        asset_symbol: Asset symbol
        asset_name: Asset display name
        asset_class: Asset class
        asset_currency: Currency the asset is quoted in
        quantity: Units held
        average_cost: Average cost per unit (in purchase_currency)
        purchase_currency: Currency of average_cost
        latest_price: Latest close (None if the asset has no price)
        price_date: Date of latest_price
        current_value: quantity × latest_price in base currency
        total_cost: quantity × average_cost in base currency
        is_priced: False when the asset has no price observation
        is_converted: False when a value or cost conversion failed
                      (the failed amount then counts as 0)
    """
    position_id: int
    asset_symbol: str
    asset_name: str
    asset_class: AssetClass
    asset_currency: str
    quantity: Decimal
    average_cost: Decimal
    purchase_currency: str
    latest_price: Decimal | None
    price_date: date | None
    current_value: Decimal
    total_cost: Decimal
    is_priced: bool = True
    is_converted: bool = True
    portfolio_weight: Decimal = field(default_factory=lambda: Decimal("0"))

    @property
    def profit_loss(self) -> Decimal:
        return self.current_value - self.total_cost

    @property
    def profit_loss_percentage(self) -> Decimal:
        """Profit/loss relative to cost, 0 when the cost is 0."""
        if self.total_cost == 0:
            return Decimal("0")
        return self.profit_loss / self.total_cost * Decimal("100")

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.position_id,
            "asset_symbol": self.asset_symbol,
            "asset_name": self.asset_name,
            "asset_class": self.asset_class.value,
            "quantity": self.quantity,
            "latest_price": self.latest_price,
            "price_date": self.price_date,
            "current_value": self.current_value,
            "total_cost": self.total_cost,
            "profit_loss": self.profit_loss,
            "profit_loss_percentage": self.profit_loss_percentage,
            "portfolio_weight": self.portfolio_weight,
        }


# =============================================================================
# PORTFOLIO LEVEL
# =============================================================================

@dataclass
class AllocationEntry:
    """
    One group of an allocation breakdown.

    Attributes:
        value: Summed current value of the group
        percentage: value / total value × 100
        count: Number of open positions in the group
    """
    value: Decimal
    percentage: Decimal
    count: int

    def to_dict(self) -> dict[str, Any]:
        return {"value": self.value, "percentage": self.percentage, "count": self.count}


@dataclass
class PeriodPerformance:
    """
    Point-in-time value change over a named period.

    change_percentage is 0 when start_value is 0.
    """
    period: str
    start_date: date
    end_date: date
    start_value: Decimal
    end_value: Decimal
    change: Decimal
    change_percentage: Decimal

    def to_dict(self) -> dict[str, Any]:
        return {
            "period": self.period,
            "start_date": self.start_date,
            "end_date": self.end_date,
            "start_value": self.start_value,
            "end_value": self.end_value,
            "change": self.change,
            "change_percentage": self.change_percentage,
        }


@dataclass
class ValuePoint:
    """Portfolio value on one date."""
    date: date
    value: Decimal


@dataclass
class PortfolioOverview:
    """Headline totals of a portfolio."""
    total_value: Decimal
    total_cost: Decimal
    total_profit_loss: Decimal
    total_return_percentage: Decimal
    base_currency: str
    position_count: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_value": self.total_value,
            "total_cost": self.total_cost,
            "total_profit_loss": self.total_profit_loss,
            "total_return_percentage": self.total_return_percentage,
            "base_currency": self.base_currency,
            "position_count": self.position_count,
        }


@dataclass
class AnalyticsSummary:
    """
    Complete analytics bundle for one portfolio.

    This is the shape consumed by display layers and the advisory feature.
    warnings lists data gaps (missing prices or rates) found while valuing.
    """
    overview: PortfolioOverview
    allocation_by_class: dict[AssetClass, AllocationEntry]
    allocation_by_currency: dict[str, AllocationEntry]
    top_performers: list[PositionSnapshot]
    worst_performers: list[PositionSnapshot]
    largest_positions: list[PositionSnapshot]
    diversity_score: Decimal
    periods: dict[str, PeriodPerformance]
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "overview": self.overview.to_dict(),
            "allocation": {
                "by_asset_class": {c.value: e.to_dict() for c, e in self.allocation_by_class.items()},
                "by_currency": {c: e.to_dict() for c, e in self.allocation_by_currency.items()},
            },
            "performance": {
                "top_performers": [p.to_dict() for p in self.top_performers],
                "worst_performers": [p.to_dict() for p in self.worst_performers],
                "largest_positions": [p.to_dict() for p in self.largest_positions],
            },
            "metrics": {"diversity_score": self.diversity_score},
            "periods": {name: p.to_dict() for name, p in self.periods.items()},
            "warnings": list(self.warnings),
        }
