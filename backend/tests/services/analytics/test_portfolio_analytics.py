# backend/tests/services/analytics/test_portfolio_analytics.py
"""
Tests for the portfolio valuation and analytics engine.

This module tests:
- Totals with currency conversion to the base currency
- Degrade policy for missing prices and rates
- Allocation, rankings and the diversity score
- Point-in-time valuation, period performance and value timelines
- The bundled analytics summary
"""

from datetime import date, timedelta
from decimal import Decimal

import pytest

from portfolio_tracker.models import AssetClass, Exchange, PositionStatus
from portfolio_tracker.services.analytics import PortfolioAnalyticsService
from portfolio_tracker.services.constants import PERFORMANCE_PERIODS
from portfolio_tracker.services.exceptions import ValidationError
from portfolio_tracker.services.fx_rate_service import FXRateService
from tests.conftest import (
    add_price,
    add_rate,
    create_asset,
    create_portfolio,
    create_position,
)


TODAY = date(2024, 6, 14)
BOUGHT = date(2023, 1, 2)
TOLERANCE = Decimal("1e-18")


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def fx(mock_provider) -> FXRateService:
    return FXRateService(mock_provider, today=lambda: TODAY)


@pytest.fixture
def service(fx) -> PortfolioAnalyticsService:
    return PortfolioAnalyticsService(fx, today=lambda: TODAY)


def hold(db, portfolio, symbol, asset_class, currency, quantity, average_cost, price=None,
         purchase_date=BOUGHT):
    """Create an asset, an open position in it and optionally today's price."""
    asset = create_asset(db, symbol, asset_class, Exchange.TWELVE_DATA, currency)
    position = create_position(
        db, portfolio, asset,
        quantity=Decimal(quantity),
        average_cost=Decimal(average_cost),
        purchase_date=purchase_date,
    )
    if price is not None:
        add_price(db, asset, TODAY, price)
    return asset, position


# =============================================================================
# TOTALS
# =============================================================================

class TestTotals:
    """Tests for value, cost and return in the base currency."""

    def test_converts_to_base_currency(self, db, service):
        """USD position in a TRY portfolio at USD/TRY 30."""
        portfolio = create_portfolio(db, base_currency="TRY")
        hold(db, portfolio, "AAPL", AssetClass.EQUITY, "USD", "10", "100", price="110")
        add_rate(db, "USD", "TRY", TODAY, "30")

        analytics = service.analyze(db, portfolio)

        assert analytics.total_cost() == Decimal("30000")
        assert analytics.total_value() == Decimal("33000")
        assert analytics.total_profit_loss() == Decimal("3000")
        assert analytics.total_return_percentage() == Decimal("10")
        assert analytics.warnings == []

    def test_uses_inverse_rate(self, db, service):
        """A stored TRY/USD rate is inverted for USD -> TRY."""
        portfolio = create_portfolio(db, base_currency="TRY")
        hold(db, portfolio, "AAPL", AssetClass.EQUITY, "USD", "10", "100", price="110")
        add_rate(db, "TRY", "USD", TODAY, "0.025")

        assert service.analyze(db, portfolio).total_value() == Decimal("44000")

    def test_mixed_currencies(self, db, service):
        portfolio = create_portfolio(db, base_currency="USD")
        hold(db, portfolio, "AAPL", AssetClass.EQUITY, "USD", "2", "100", price="150")
        hold(db, portfolio, "THYAO", AssetClass.EQUITY, "TRY", "100", "250", price="300")
        add_rate(db, "USD", "TRY", TODAY, "30")

        analytics = service.analyze(db, portfolio)

        # TRY -> USD goes through the inverted rate, exact up to Decimal precision
        assert abs(analytics.total_value() - Decimal("1300")) < TOLERANCE
        assert abs(analytics.total_cost() - (Decimal("200") + Decimal("25000") / Decimal("30"))) < TOLERANCE

    def test_closed_positions_ignored(self, db, service):
        portfolio = create_portfolio(db, base_currency="USD")
        asset, _ = hold(db, portfolio, "AAPL", AssetClass.EQUITY, "USD", "10", "100", price="110")
        create_position(
            db, portfolio, asset, quantity=Decimal("5"), average_cost=Decimal("90"),
            status=PositionStatus.CLOSED,
        )

        analytics = service.analyze(db, portfolio)

        assert analytics.total_value() == Decimal("1100")
        assert analytics.overview().position_count == 1

    def test_empty_portfolio(self, db, service):
        """No positions: everything is 0 and nothing divides by zero."""
        portfolio = create_portfolio(db, base_currency="USD")

        analytics = service.analyze(db, portfolio)

        assert analytics.total_value() == Decimal("0")
        assert analytics.total_return_percentage() == Decimal("0")
        assert analytics.asset_allocation_by_class() == {}
        assert analytics.diversity_score() == Decimal("0")


# =============================================================================
# DEGRADE POLICY
# =============================================================================

class TestDegradePolicy:
    """Missing data never makes an aggregate raise."""

    def test_missing_rate_contributes_zero(self, db, service, mock_provider):
        """No EUR/TRY rate anywhere and a failing live fetch: the EUR position adds 0."""
        portfolio = create_portfolio(db, base_currency="TRY")
        hold(db, portfolio, "THYAO", AssetClass.EQUITY, "TRY", "10", "250", price="300")
        hold(db, portfolio, "SAP", AssetClass.EQUITY, "EUR", "10", "100", price="120")

        analytics = service.analyze(db, portfolio)

        assert analytics.total_value() == Decimal("3000")
        assert analytics.total_cost() == Decimal("2500")
        assert any("EUR/TRY" in w for w in analytics.warnings)
        assert mock_provider.calls_for("exchange_rate") == ["EUR/TRY"]

        sap = next(s for s in analytics.position_summaries() if s.asset_symbol == "SAP")
        assert not sap.is_converted
        assert sap.current_value == Decimal("0")
        assert sap.total_cost == Decimal("0")

    def test_missing_value_rate_keeps_cost(self, db, service, mock_provider):
        """A EUR-priced asset bought in TRY: only the value conversion fails."""
        portfolio = create_portfolio(db, base_currency="TRY")
        asset = create_asset(db, "SAP", AssetClass.EQUITY, Exchange.TWELVE_DATA, "EUR")
        create_position(
            db, portfolio, asset,
            quantity=Decimal("10"),
            average_cost=Decimal("100"),
            purchase_currency="TRY",
            purchase_date=BOUGHT,
        )
        add_price(db, asset, TODAY, "120", currency="EUR")

        analytics = service.analyze(db, portfolio)

        assert analytics.total_value() == Decimal("0")
        assert analytics.total_cost() == Decimal("1000")
        assert analytics.total_profit_loss() == Decimal("-1000")
        assert not analytics.position_summaries()[0].is_converted
        assert any("EUR/TRY" in w for w in analytics.warnings)

    def test_missing_rate_fetched_live(self, db, service, mock_provider):
        """Today's rate is fetched from the provider when nothing is stored."""
        portfolio = create_portfolio(db, base_currency="TRY")
        hold(db, portfolio, "SAP", AssetClass.EQUITY, "EUR", "10", "100", price="120")
        mock_provider.add_rate("EUR", "TRY", "35")

        analytics = service.analyze(db, portfolio)

        assert analytics.total_value() == Decimal("42000")
        assert len(mock_provider.calls_for("exchange_rate")) == 1

    def test_missing_price_values_at_zero(self, db, service):
        """An unpriced position is worth 0 but its cost still counts."""
        portfolio = create_portfolio(db, base_currency="USD")
        hold(db, portfolio, "AAPL", AssetClass.EQUITY, "USD", "10", "100")

        analytics = service.analyze(db, portfolio)

        assert analytics.total_value() == Decimal("0")
        assert analytics.total_cost() == Decimal("1000")
        assert analytics.total_return_percentage() == Decimal("-100")
        assert analytics.position_summaries()[0].is_priced is False
        assert analytics.warnings == ["No price for AAPL; valued at 0"]

    def test_rate_lookups_are_memoized(self, db, service, mock_provider):
        """A failed rate lookup is attempted once per currency and date."""
        portfolio = create_portfolio(db, base_currency="TRY")
        hold(db, portfolio, "SAP", AssetClass.EQUITY, "EUR", "10", "100", price="120")
        hold(db, portfolio, "ASML", AssetClass.EQUITY, "EUR", "1", "600", price="900")

        analytics = service.analyze(db, portfolio)
        analytics.total_value()
        analytics.total_cost()
        analytics.asset_allocation_by_currency()

        assert len(mock_provider.calls_for("exchange_rate")) == 1

    def test_zero_cost_guard(self, db, service):
        """When every cost fails to convert the return percentage is exactly 0."""
        portfolio = create_portfolio(db, base_currency="TRY")
        hold(db, portfolio, "SAP", AssetClass.EQUITY, "EUR", "10", "100", price="120")

        analytics = service.analyze(db, portfolio)

        assert analytics.total_cost() == Decimal("0")
        assert analytics.total_return_percentage() == Decimal("0")


# =============================================================================
# ALLOCATION AND RANKINGS
# =============================================================================

class TestAllocation:
    """Tests for allocation breakdowns."""

    def test_allocation_by_class_sums_to_100(self, db, service):
        portfolio = create_portfolio(db, base_currency="USD")
        hold(db, portfolio, "AAPL", AssetClass.EQUITY, "USD", "1", "100", price="100")
        hold(db, portfolio, "XAU", AssetClass.PRECIOUS_METAL, "USD", "1", "200", price="200")
        hold(db, portfolio, "BTC", AssetClass.CRYPTOCURRENCY, "USD", "1", "300", price="300")

        allocation = service.analyze(db, portfolio).asset_allocation_by_class()

        assert list(allocation) == [AssetClass.CRYPTOCURRENCY, AssetClass.PRECIOUS_METAL, AssetClass.EQUITY]
        assert allocation[AssetClass.CRYPTOCURRENCY].percentage == Decimal("50")
        total = sum(entry.percentage for entry in allocation.values())
        assert abs(total - Decimal("100")) < TOLERANCE

    def test_allocation_by_currency_groups_and_counts(self, db, service):
        portfolio = create_portfolio(db, base_currency="USD")
        hold(db, portfolio, "AAPL", AssetClass.EQUITY, "USD", "1", "100", price="100")
        hold(db, portfolio, "SPY", AssetClass.ETF, "USD", "1", "100", price="300")

        allocation = service.analyze(db, portfolio).asset_allocation_by_currency()

        assert allocation["USD"].count == 2
        assert allocation["USD"].value == Decimal("400")
        assert allocation["USD"].percentage == Decimal("100")


class TestRankings:
    """Tests for top/worst performers and largest positions."""

    @pytest.fixture
    def analytics(self, db, service):
        portfolio = create_portfolio(db, base_currency="USD")
        hold(db, portfolio, "UP50", AssetClass.EQUITY, "USD", "1", "100", price="150")
        hold(db, portfolio, "UP10", AssetClass.EQUITY, "USD", "10", "100", price="110")
        hold(db, portfolio, "DOWN20", AssetClass.EQUITY, "USD", "1", "100", price="80")
        hold(db, portfolio, "FLAT", AssetClass.EQUITY, "USD", "1", "100", price="100")
        hold(db, portfolio, "NOPRICE", AssetClass.EQUITY, "USD", "1", "100")
        return service.analyze(db, portfolio)

    def test_top_performers(self, analytics):
        assert [s.asset_symbol for s in analytics.top_performers()] == ["UP50", "UP10"]

    def test_worst_performers_include_unpriced(self, analytics):
        """An unpriced position is worth 0, so it loses its whole cost."""
        assert [s.asset_symbol for s in analytics.worst_performers()] == ["NOPRICE", "DOWN20"]

    def test_largest_positions(self, analytics):
        assert [s.asset_symbol for s in analytics.largest_positions(limit=2)] == ["UP10", "UP50"]

    def test_limit(self, analytics):
        assert len(analytics.top_performers(limit=1)) == 1

    def test_portfolio_weights_sum_to_100(self, analytics):
        total = sum(s.portfolio_weight for s in analytics.position_summaries())
        assert abs(total - Decimal("100")) < TOLERANCE

    def test_snapshot_profit_loss(self, analytics):
        up10 = next(s for s in analytics.position_summaries() if s.asset_symbol == "UP10")
        assert up10.profit_loss == Decimal("100")
        assert up10.profit_loss_percentage == Decimal("10")
        assert up10.to_dict()["asset_class"] == "EQUITY"


# =============================================================================
# DIVERSITY SCORE
# =============================================================================

class TestDiversityScore:
    """Tests for the normalized HHI diversity score."""

    def test_even_split_across_four_classes(self, db, service):
        portfolio = create_portfolio(db, base_currency="USD")
        for symbol, asset_class in [
            ("AAPL", AssetClass.EQUITY),
            ("XAU", AssetClass.PRECIOUS_METAL),
            ("BTC", AssetClass.CRYPTOCURRENCY),
            ("SPY", AssetClass.ETF),
        ]:
            hold(db, portfolio, symbol, asset_class, "USD", "1", "100", price="100")

        score = service.analyze(db, portfolio).diversity_score()

        assert score >= Decimal("90")
        assert score == Decimal("100")

    def test_concentrated_two_classes(self, db, service):
        """90% / 10% across two classes scores well below 50."""
        portfolio = create_portfolio(db, base_currency="USD")
        hold(db, portfolio, "AAPL", AssetClass.EQUITY, "USD", "9", "100", price="100")
        hold(db, portfolio, "XAU", AssetClass.PRECIOUS_METAL, "USD", "1", "100", price="100")

        score = service.analyze(db, portfolio).diversity_score()

        assert score < Decimal("50")
        assert score == Decimal("36")

    def test_single_class_scores_zero(self, db, service):
        portfolio = create_portfolio(db, base_currency="USD")
        hold(db, portfolio, "AAPL", AssetClass.EQUITY, "USD", "1", "100", price="100")
        hold(db, portfolio, "MSFT", AssetClass.EQUITY, "USD", "1", "100", price="100")

        assert service.analyze(db, portfolio).diversity_score() == Decimal("0")

    def test_score_within_bounds(self, db, service):
        portfolio = create_portfolio(db, base_currency="USD")
        hold(db, portfolio, "AAPL", AssetClass.EQUITY, "USD", "5", "100", price="100")
        hold(db, portfolio, "XAU", AssetClass.PRECIOUS_METAL, "USD", "3", "100", price="100")
        hold(db, portfolio, "BTC", AssetClass.CRYPTOCURRENCY, "USD", "2", "100", price="100")

        score = service.analyze(db, portfolio).diversity_score()

        assert Decimal("0") < score < Decimal("100")


# =============================================================================
# POINT-IN-TIME VALUATION
# =============================================================================

class TestValueAt:
    """Tests for value_at."""

    def test_falls_back_to_average_cost_before_first_price(self, db, service):
        """Ten days before the only price row, the position is valued at its average cost."""
        portfolio = create_portfolio(db, base_currency="USD")
        hold(db, portfolio, "AAPL", AssetClass.EQUITY, "USD", "10", "100", price="130")

        analytics = service.analyze(db, portfolio)

        assert analytics.value_at(TODAY - timedelta(days=10)) == Decimal("1000")
        assert analytics.value_at(TODAY) == Decimal("1300")

    def test_uses_latest_price_on_or_before_date(self, db, service):
        portfolio = create_portfolio(db, base_currency="USD")
        asset, _ = hold(db, portfolio, "AAPL", AssetClass.EQUITY, "USD", "10", "100", price="130")
        add_price(db, asset, TODAY - timedelta(days=20), "110")
        add_price(db, asset, TODAY - timedelta(days=5), "120")

        analytics = service.analyze(db, portfolio)

        assert analytics.value_at(TODAY - timedelta(days=10)) == Decimal("1100")
        assert analytics.value_at(TODAY - timedelta(days=5)) == Decimal("1200")

    def test_excludes_positions_bought_later(self, db, service):
        portfolio = create_portfolio(db, base_currency="USD")
        hold(db, portfolio, "AAPL", AssetClass.EQUITY, "USD", "10", "100", price="130",
             purchase_date=TODAY - timedelta(days=3))

        assert service.analyze(db, portfolio).value_at(TODAY - timedelta(days=4)) == Decimal("0")

    def test_converts_at_that_dates_rate(self, db, service):
        portfolio = create_portfolio(db, base_currency="TRY")
        asset, _ = hold(db, portfolio, "AAPL", AssetClass.EQUITY, "USD", "10", "100")
        past = TODAY - timedelta(days=30)
        add_price(db, asset, past, "120")
        add_rate(db, "USD", "TRY", past, "28")
        add_rate(db, "USD", "TRY", past + timedelta(days=1), "99")

        assert service.analyze(db, portfolio).value_at(past) == Decimal("33600")

    def test_missing_historical_rate_contributes_zero(self, db, service):
        portfolio = create_portfolio(db, base_currency="TRY")
        hold(db, portfolio, "THYAO", AssetClass.EQUITY, "TRY", "10", "250", price="300")
        hold(db, portfolio, "AAPL", AssetClass.EQUITY, "USD", "10", "100")

        analytics = service.analyze(db, portfolio)

        assert analytics.value_at(TODAY - timedelta(days=30)) == Decimal("2500")
        assert analytics.warnings


class TestPeriodPerformance:
    """Tests for period_performance."""

    def test_week(self, db, service):
        portfolio = create_portfolio(db, base_currency="USD")
        asset, _ = hold(db, portfolio, "AAPL", AssetClass.EQUITY, "USD", "10", "90", price="110")
        add_price(db, asset, TODAY - timedelta(days=7), "100")

        performance = service.analyze(db, portfolio).period_performance("week")

        assert performance.start_date == TODAY - timedelta(days=7)
        assert performance.end_date == TODAY
        assert performance.start_value == Decimal("1000")
        assert performance.end_value == Decimal("1100")
        assert performance.change == Decimal("100")
        assert performance.change_percentage == Decimal("10")

    @pytest.mark.parametrize("period, start", [
        ("month", date(2024, 5, 14)),
        ("quarter", date(2024, 3, 14)),
        ("year", date(2023, 6, 14)),
        ("ytd", date(2024, 1, 1)),
    ])
    def test_period_start_dates(self, db, service, period, start):
        portfolio = create_portfolio(db, base_currency="USD")

        assert service.analyze(db, portfolio).period_performance(period).start_date == start

    def test_zero_start_value(self, db, service):
        """A portfolio empty at the period start reports a 0% change."""
        portfolio = create_portfolio(db, base_currency="USD")
        hold(db, portfolio, "AAPL", AssetClass.EQUITY, "USD", "10", "100", price="110",
             purchase_date=TODAY - timedelta(days=2))

        performance = service.analyze(db, portfolio).period_performance("week")

        assert performance.start_value == Decimal("0")
        assert performance.change == Decimal("1100")
        assert performance.change_percentage == Decimal("0")

    def test_unknown_period(self, db, service):
        portfolio = create_portfolio(db, base_currency="USD")

        with pytest.raises(ValidationError):
            service.analyze(db, portfolio).period_performance("decade")


class TestValueTimeline:
    """Tests for value_timeline."""

    def test_one_point_per_day(self, db, service):
        portfolio = create_portfolio(db, base_currency="USD")
        asset, _ = hold(db, portfolio, "AAPL", AssetClass.EQUITY, "USD", "10", "100", price="130")
        add_price(db, asset, TODAY - timedelta(days=2), "110")

        timeline = service.analyze(db, portfolio).value_timeline(TODAY - timedelta(days=2))

        assert [p.date for p in timeline] == [TODAY - timedelta(days=i) for i in (2, 1, 0)]
        assert [p.value for p in timeline] == [Decimal("1100"), Decimal("1100"), Decimal("1300")]

    def test_converts_with_daily_rates(self, db, service):
        """Days without a stored rate value the foreign position at 0."""
        portfolio = create_portfolio(db, base_currency="TRY")
        asset, _ = hold(db, portfolio, "AAPL", AssetClass.EQUITY, "USD", "1", "100")
        start = TODAY - timedelta(days=2)
        add_price(db, asset, start, "100")
        add_rate(db, "USD", "TRY", start, "30")
        add_rate(db, "USD", "TRY", TODAY, "32")

        timeline = service.analyze(db, portfolio).value_timeline(start, TODAY)

        assert [p.value for p in timeline] == [Decimal("3000"), Decimal("0"), Decimal("3200")]

    def test_start_after_end(self, db, service):
        portfolio = create_portfolio(db, base_currency="USD")

        with pytest.raises(ValidationError):
            service.analyze(db, portfolio).value_timeline(TODAY, TODAY - timedelta(days=1))


# =============================================================================
# SUMMARY
# =============================================================================

class TestAnalyticsSummary:
    """Tests for the bundled summary."""

    def test_summary_contents(self, db, service):
        portfolio = create_portfolio(db, base_currency="USD")
        hold(db, portfolio, "AAPL", AssetClass.EQUITY, "USD", "10", "100", price="110")
        hold(db, portfolio, "XAU", AssetClass.PRECIOUS_METAL, "USD", "1", "2000", price="2300")

        summary = service.get_summary(db, portfolio)

        assert summary.overview.total_value == Decimal("3400")
        assert summary.overview.base_currency == "USD"
        assert set(summary.periods) == set(PERFORMANCE_PERIODS)
        assert [s.asset_symbol for s in summary.top_performers] == ["XAU", "AAPL"]
        assert summary.worst_performers == []

        data = summary.to_dict()
        assert data["overview"]["position_count"] == 2
        assert set(data["allocation"]["by_asset_class"]) == {"EQUITY", "PRECIOUS_METAL"}
        assert data["metrics"]["diversity_score"] == summary.diversity_score
