# backend/portfolio_tracker/services/analytics/service.py
"""
Portfolio Analytics Service: valuation and analytics engine.

Computes, for the OPEN positions of one portfolio, in its base currency:
- Current value, cost basis, profit/loss and return percentage
- Allocation by asset class and by currency
- Top/worst performers and largest positions
- A 0-100 diversity score (normalized Herfindahl-Hirschman index)
- Point-in-time value at any date, period performance and value timelines

Valuation rules:
    current value   quantity × latest close, converted at today's rate
    cost basis      quantity × average cost, converted at today's rate
    value at D      positions bought on or before D; close of the newest
                    price row dated <= D, or the average cost when the
                    asset has no price that old; converted at D's rate

Degrade policy (aggregates never raise for data gaps):
    - No price observation: the position's current value is 0
    - No rate for the value conversion: the position's current value is 0
    - No rate for the cost conversion: the position's cost basis is 0
    - No rate at date D: the position contributes 0 to the value at D
Each gap is recorded once in `warnings`.

Lookups are bounded: one query for the open positions, one for all their
price rows, and one rate lookup per (currency, date) pair, memoized for
the lifetime of a PortfolioAnalytics object.

Usage:
    service = PortfolioAnalyticsService(fx_service)

    analytics = service.analyze(db, portfolio)
    print(analytics.total_value(), analytics.diversity_score())

    summary = analytics.analytics_summary()
"""

import logging
from bisect import bisect_right
from collections.abc import Callable
from datetime import date, timedelta
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from portfolio_tracker.models import Portfolio, Position, PositionStatus, PriceHistory, AssetClass
from portfolio_tracker.services.analytics.types import (
    AllocationEntry,
    AnalyticsSummary,
    PeriodPerformance,
    PortfolioOverview,
    PositionSnapshot,
    ValuePoint,
)
from portfolio_tracker.services.constants import (
    DEFAULT_POSITION_LIST_LIMIT,
    HHI_MAX,
    HUNDRED,
    ONE,
    PERFORMANCE_PERIODS,
    ZERO,
)
from portfolio_tracker.services.exceptions import ValidationError
from portfolio_tracker.services.fx_rate_service import FXRateService
from portfolio_tracker.utils.date_utils import iter_dates, subtract_months

logger = logging.getLogger(__name__)


class PortfolioAnalytics:
    """
    Analytics for one portfolio, memoizing every price and rate lookup.

    Create through PortfolioAnalyticsService.analyze(). The object reflects
    the data at the time of its first lookups; create a new one to see
    fresh prices.
    """

    def __init__(
            self,
            db: Session,
            portfolio: Portfolio,
            fx_service: FXRateService,
            today: date,
    ) -> None:
        self._db = db
        self._portfolio = portfolio
        self._fx = fx_service
        self._today = today
        self._base = portfolio.base_currency

        self._positions: list[Position] | None = None
        self._prices: dict[int, list[PriceHistory]] | None = None
        self._price_dates: dict[int, list[date]] = {}
        self._rates: dict[tuple[str, date], Decimal | None] = {}
        self._snapshots: list[PositionSnapshot] | None = None
        self._values_at: dict[date, Decimal] = {}

        self.warnings: list[str] = []

    @property
    def base_currency(self) -> str:
        return self._base

    # =========================================================================
    # TOTALS
    # =========================================================================

    def total_value(self) -> Decimal:
        """Sum of open positions' current values."""
        return sum((s.current_value for s in self._get_snapshots()), ZERO)

    def total_cost(self) -> Decimal:
        """Sum of open positions' cost bases."""
        return sum((s.total_cost for s in self._get_snapshots()), ZERO)

    def total_profit_loss(self) -> Decimal:
        return self.total_value() - self.total_cost()

    def total_return_percentage(self) -> Decimal:
        """Profit/loss over cost × 100; exactly 0 when the cost is 0."""
        cost = self.total_cost()
        if cost == ZERO:
            return ZERO
        return self.total_profit_loss() / cost * HUNDRED

    # =========================================================================
    # ALLOCATION
    # =========================================================================

    def asset_allocation_by_class(self) -> dict[AssetClass, AllocationEntry]:
        """Value share per asset class; empty when the total value is 0."""
        return self._allocation(lambda s: s.asset_class)

    def asset_allocation_by_currency(self) -> dict[str, AllocationEntry]:
        """Value share per asset quote currency; empty when the total value is 0."""
        return self._allocation(lambda s: s.asset_currency)

    def _allocation(self, key: Callable[[PositionSnapshot], object]) -> dict:
        total = self.total_value()
        if total == ZERO:
            return {}

        groups: dict = {}
        for snapshot in self._get_snapshots():
            groups.setdefault(key(snapshot), []).append(snapshot)

        allocation = {}
        for group_key, members in groups.items():
            value = sum((m.current_value for m in members), ZERO)
            allocation[group_key] = AllocationEntry(
                value=value,
                percentage=value / total * HUNDRED,
                count=len(members),
            )

        return dict(sorted(allocation.items(), key=lambda item: item[1].value, reverse=True))

    # =========================================================================
    # POSITION RANKINGS
    # =========================================================================

    def top_performers(self, limit: int = DEFAULT_POSITION_LIST_LIMIT) -> list[PositionSnapshot]:
        """Positions with positive profit/loss, best percentage first."""
        winners = [s for s in self._get_snapshots() if s.profit_loss > ZERO]
        winners.sort(key=lambda s: s.profit_loss_percentage, reverse=True)
        return winners[:limit]

    def worst_performers(self, limit: int = DEFAULT_POSITION_LIST_LIMIT) -> list[PositionSnapshot]:
        """Positions with negative profit/loss (unpriced ones included), worst percentage first."""
        losers = [s for s in self._get_snapshots() if s.profit_loss < ZERO]
        losers.sort(key=lambda s: s.profit_loss_percentage)
        return losers[:limit]

    def largest_positions(self, limit: int = DEFAULT_POSITION_LIST_LIMIT) -> list[PositionSnapshot]:
        """Open positions by current value, largest first."""
        return sorted(self._get_snapshots(), key=lambda s: s.current_value, reverse=True)[:limit]

    def position_summaries(self) -> list[PositionSnapshot]:
        """Every open position with value, cost and portfolio weight."""
        return list(self._get_snapshots())

    # =========================================================================
    # DIVERSIFICATION
    # =========================================================================

    def diversity_score(self) -> Decimal:
        """
        0-100 diversification score across asset classes.

        HHI = Σ pct_i² (pct in percent, so 10000 means one class holds
        everything). With n classes the lowest possible HHI is 10000 / n:

            score = (10000 - HHI) / (10000 - 10000 / n) × 100

        An even split scores 100; a single class (or an empty portfolio)
        scores 0.
        """
        allocation = self.asset_allocation_by_class()
        n = len(allocation)
        if n <= 1:
            return ZERO

        hhi = sum((entry.percentage ** 2 for entry in allocation.values()), ZERO)
        if hhi >= HHI_MAX:
            return ZERO

        min_hhi = HHI_MAX / n
        score = (HHI_MAX - hhi) / (HHI_MAX - min_hhi) * HUNDRED
        return min(max(score, ZERO), HUNDRED)

    # =========================================================================
    # POINT-IN-TIME VALUATION
    # =========================================================================

    def value_at(self, valuation_date: date) -> Decimal:
        """
        Portfolio value on a past (or the current) date.

        Positions purchased after the date contribute 0. A position whose
        asset has no price on or before the date is valued at its average
        cost.
        """
        if valuation_date in self._values_at:
            return self._values_at[valuation_date]

        total = ZERO
        for position in self._get_positions():
            if position.purchase_date > valuation_date:
                continue

            row = self._price_at(position.asset_id, valuation_date)
            if row is not None:
                amount = position.quantity * row.close
                currency = row.currency
            else:
                amount = position.quantity * position.average_cost
                currency = position.purchase_currency

            converted = self._convert(amount, currency, valuation_date, position.asset.symbol)
            if converted is not None:
                total += converted

        self._values_at[valuation_date] = total
        return total

    def period_performance(self, period: str) -> PeriodPerformance:
        """
        Value change from the start of a period until today.

        Args:
            period: "week", "month", "quarter", "year" or "ytd"

        Raises:
            ValidationError: Unknown period
        """
        start_date = self._period_start(period)
        start_value = self.value_at(start_date)
        end_value = self.value_at(self._today)
        change = end_value - start_value

        return PeriodPerformance(
            period=period,
            start_date=start_date,
            end_date=self._today,
            start_value=start_value,
            end_value=end_value,
            change=change,
            change_percentage=change / start_value * HUNDRED if start_value != ZERO else ZERO,
        )

    def value_timeline(self, start_date: date, end_date: date | None = None) -> list[ValuePoint]:
        """
        Portfolio value for every calendar day from start_date to end_date.

        Rates for the whole range are loaded up front, one pair at a time.

        Raises:
            ValidationError: start_date is after end_date
        """
        end_date = end_date or self._today
        if start_date > end_date:
            raise ValidationError(
                f"start_date {start_date} is after end_date {end_date}", field="start_date"
            )

        self._preload_rates(start_date, end_date)
        return [ValuePoint(day, self.value_at(day)) for day in iter_dates(start_date, end_date)]

    # =========================================================================
    # SUMMARY
    # =========================================================================

    def overview(self) -> PortfolioOverview:
        return PortfolioOverview(
            total_value=self.total_value(),
            total_cost=self.total_cost(),
            total_profit_loss=self.total_profit_loss(),
            total_return_percentage=self.total_return_percentage(),
            base_currency=self._base,
            position_count=len(self._get_positions()),
        )

    def analytics_summary(self) -> AnalyticsSummary:
        """Bundle overview, allocations, rankings, diversity and all periods."""
        summary = AnalyticsSummary(
            overview=self.overview(),
            allocation_by_class=self.asset_allocation_by_class(),
            allocation_by_currency=self.asset_allocation_by_currency(),
            top_performers=self.top_performers(),
            worst_performers=self.worst_performers(),
            largest_positions=self.largest_positions(),
            diversity_score=self.diversity_score(),
            periods={period: self.period_performance(period) for period in PERFORMANCE_PERIODS},
        )
        summary.warnings = list(self.warnings)
        return summary

    # =========================================================================
    # PRIVATE METHODS
    # =========================================================================

    def _get_positions(self) -> list[Position]:
        if self._positions is None:
            query = (
                select(Position)
                .where(
                    Position.portfolio_id == self._portfolio.id,
                    Position.status == PositionStatus.OPEN,
                )
                .options(selectinload(Position.asset))
                .order_by(Position.id)
            )
            self._positions = list(self._db.scalars(query).all())
        return self._positions

    def _load_prices(self) -> dict[int, list[PriceHistory]]:
        if self._prices is None:
            asset_ids = {p.asset_id for p in self._get_positions()}
            self._prices = {asset_id: [] for asset_id in asset_ids}
            if asset_ids:
                query = (
                    select(PriceHistory)
                    .where(PriceHistory.asset_id.in_(asset_ids))
                    .order_by(PriceHistory.asset_id, PriceHistory.date)
                )
                for row in self._db.scalars(query):
                    self._prices[row.asset_id].append(row)
            self._price_dates = {
                asset_id: [row.date for row in rows] for asset_id, rows in self._prices.items()
            }
        return self._prices

    def _latest_price(self, asset_id: int) -> PriceHistory | None:
        rows = self._load_prices().get(asset_id)
        return rows[-1] if rows else None

    def _price_at(self, asset_id: int, valuation_date: date) -> PriceHistory | None:
        rows = self._load_prices().get(asset_id) or []
        index = bisect_right(self._price_dates.get(asset_id, []), valuation_date)
        return rows[index - 1] if index else None

    def _rate(self, currency: str, rate_date: date) -> Decimal | None:
        if currency == self._base:
            return ONE

        key = (currency, rate_date)
        if key not in self._rates:
            result = self._fx.get_rate_or_none(self._db, currency, self._base, rate_date)
            self._rates[key] = result.rate if result is not None else None
        return self._rates[key]

    def _preload_rates(self, start_date: date, end_date: date) -> None:
        currencies = set()
        for position in self._get_positions():
            currencies.add(position.purchase_currency)
            currencies.update(row.currency for row in self._load_prices()[position.asset_id])
        currencies.discard(self._base)

        for currency in sorted(currencies):
            stored = self._fx.get_rates_for_date_range(
                self._db, currency, self._base, start_date, end_date
            )
            for day in iter_dates(start_date, end_date):
                if day in stored:
                    self._rates[(currency, day)] = stored[day].rate
                elif day != self._today:
                    self._rates[(currency, day)] = None

    def _convert(self, amount: Decimal, currency: str, rate_date: date, symbol: str) -> Decimal | None:
        if amount == ZERO:
            return amount

        rate = self._rate(currency, rate_date)
        if rate is None:
            self._warn(f"No {currency}/{self._base} rate for {rate_date}; {symbol} amount counted as 0")
            return None
        return amount * rate

    def _get_snapshots(self) -> list[PositionSnapshot]:
        if self._snapshots is not None:
            return self._snapshots

        snapshots = []
        for position in self._get_positions():
            asset = position.asset
            row = self._latest_price(position.asset_id)

            cost = self._convert(
                position.quantity * position.average_cost,
                position.purchase_currency,
                self._today,
                asset.symbol,
            )
            if row is not None:
                value = self._convert(position.quantity * row.close, row.currency, self._today, asset.symbol)
            else:
                self._warn(f"No price for {asset.symbol}; valued at 0")
                value = ZERO

            converted = cost is not None and value is not None
            snapshots.append(PositionSnapshot(
                position_id=position.id,
                asset_symbol=asset.symbol,
                asset_name=asset.name,
                asset_class=asset.asset_class,
                asset_currency=asset.currency,
                quantity=position.quantity,
                average_cost=position.average_cost,
                purchase_currency=position.purchase_currency,
                latest_price=row.close if row is not None else None,
                price_date=row.date if row is not None else None,
                current_value=value if value is not None else ZERO,
                total_cost=cost if cost is not None else ZERO,
                is_priced=row is not None,
                is_converted=converted,
            ))

        total = sum((s.current_value for s in snapshots), ZERO)
        if total != ZERO:
            for snapshot in snapshots:
                snapshot.portfolio_weight = snapshot.current_value / total * HUNDRED

        self._snapshots = snapshots
        return snapshots

    def _period_start(self, period: str) -> date:
        if period == "week":
            return self._today - timedelta(days=7)
        if period == "month":
            return subtract_months(self._today, 1)
        if period == "quarter":
            return subtract_months(self._today, 3)
        if period == "year":
            return subtract_months(self._today, 12)
        if period == "ytd":
            return date(self._today.year, 1, 1)
        raise ValidationError(
            f"Unknown period '{period}', expected one of: {', '.join(PERFORMANCE_PERIODS)}",
            field="period",
        )

    def _warn(self, message: str) -> None:
        if message not in self.warnings:
            logger.warning(f"Portfolio {self._portfolio.id}: {message}")
            self.warnings.append(message)


class PortfolioAnalyticsService:
    """
    Entry point for portfolio valuation and analytics.

    Example:
        service = PortfolioAnalyticsService(fx_service)
        summary = service.get_summary(db, portfolio)
        print(summary.overview.total_value, summary.overview.base_currency)
    """

    def __init__(
            self,
            fx_service: FXRateService,
            today: Callable[[], date] = date.today,
    ) -> None:
        self._fx = fx_service
        self._today = today
        logger.info("PortfolioAnalyticsService initialized")

    def analyze(self, db: Session, portfolio: Portfolio) -> PortfolioAnalytics:
        """Create an analytics object for one portfolio."""
        return PortfolioAnalytics(db, portfolio, self._fx, self._today())

    def get_summary(self, db: Session, portfolio: Portfolio) -> AnalyticsSummary:
        """Shortcut for analyze(db, portfolio).analytics_summary()."""
        return self.analyze(db, portfolio).analytics_summary()
