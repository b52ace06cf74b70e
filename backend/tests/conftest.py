# backend/tests/conftest.py
"""
Pytest configuration and fixtures.

This module provides shared fixtures for all tests:
- Database session fixtures (in-memory SQLite)
- Mock provider fixtures
- Sample data factories
"""

import os

# Settings are read at import time; tests never need a real database URL
os.environ.setdefault("ENVIRONMENT", "test")

from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Iterator

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from portfolio_tracker.models import (
    Base,
    Asset,
    AssetClass,
    CurrencyRate,
    Exchange,
    Portfolio,
    Position,
    PositionStatus,
    PriceHistory,
)
from portfolio_tracker.services.batch import BatchRunner
from portfolio_tracker.services.exceptions import ApiError
from portfolio_tracker.services.fx_rate_service import FXRateService
from portfolio_tracker.services.market_data.base import MarketDataProvider
from portfolio_tracker.services.market_data.fetchers import build_fetchers

TODAY = date.today()


# =============================================================================
# DATABASE FIXTURES
# =============================================================================

@pytest.fixture(scope="function")
def db_engine():
    """Create an in-memory SQLite database engine for testing."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)


@pytest.fixture(scope="function")
def db(db_engine) -> Iterator[Session]:
    """Create a database session for testing."""
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


# =============================================================================
# MOCK MARKET DATA PROVIDER
# =============================================================================

class MockMarketDataProvider(MarketDataProvider):
    """
    Mock implementation of MarketDataProvider for testing.

    Payloads are configured per provider symbol ("THYAO:BIST", "XAU/USD",
    "USD/TRY"). Unconfigured symbols raise ApiError like an unknown symbol
    would. Every call is recorded in `calls` as (endpoint, symbol).
    """

    # No retries in tests
    MAX_RETRY_ATTEMPTS = 1

    def __init__(self):
        self._quotes: dict[str, dict[str, Any]] = {}
        self._series: dict[str, dict[str, Any]] = {}
        self._rates: dict[str, dict[str, Any]] = {}
        self._errors: dict[str, Exception] = {}
        self.calls: list[tuple[str, str]] = []

    @property
    def name(self) -> str:
        return "mock"

    def add_quote(self, symbol: str, payload: dict[str, Any]) -> None:
        """Configure the quote payload for a symbol."""
        self._quotes[symbol] = payload

    def add_time_series(self, symbol: str, bars: list[dict[str, Any]]) -> None:
        """Configure the time-series bars for a symbol."""
        self._series[symbol] = {"meta": {"symbol": symbol}, "values": bars, "status": "ok"}

    def add_rate(self, from_currency: str, to_currency: str, rate: Decimal | str) -> None:
        """Configure the exchange rate payload for a pair."""
        symbol = f"{from_currency}/{to_currency}"
        self._rates[symbol] = {"symbol": symbol, "rate": str(rate), "timestamp": 1700000000}

    def add_error(self, symbol: str, error: Exception) -> None:
        """Make every call for a symbol raise an error."""
        self._errors[symbol] = error

    def calls_for(self, endpoint: str) -> list[str]:
        """Symbols requested from one endpoint, in order."""
        return [symbol for name, symbol in self.calls if name == endpoint]

    @property
    def call_count(self) -> int:
        return len(self.calls)

    def get_quote(self, symbol: str) -> dict[str, Any]:
        return self._respond("quote", symbol, self._quotes)

    def get_time_series(self, symbol: str, interval: str = "1day", outputsize: int = 30) -> dict[str, Any]:
        payload = self._respond("time_series", symbol, self._series)
        return {**payload, "values": payload["values"][:outputsize]}

    def get_exchange_rate(self, from_currency: str, to_currency: str) -> dict[str, Any]:
        return self._respond("exchange_rate", f"{from_currency}/{to_currency}", self._rates)

    def _respond(self, endpoint: str, symbol: str, payloads: dict[str, dict[str, Any]]) -> dict[str, Any]:
        self.calls.append((endpoint, symbol))
        if symbol in self._errors:
            raise self._errors[symbol]
        if symbol not in payloads:
            raise ApiError(f"Symbol {symbol} not found", provider=self.name, status_code=404)
        return payloads[symbol]


@pytest.fixture
def mock_provider() -> MockMarketDataProvider:
    """Create a fresh mock provider for each test."""
    return MockMarketDataProvider()


@pytest.fixture
def fx_service(mock_provider) -> FXRateService:
    """FXRateService backed by the mock provider."""
    return FXRateService(mock_provider)


@pytest.fixture
def fetchers(mock_provider):
    """One fetcher per asset class, backed by the mock provider."""
    return build_fetchers(mock_provider)


@pytest.fixture
def sleeps() -> list[float]:
    """Records the delays a BatchRunner would have slept."""
    return []


@pytest.fixture
def runner(sleeps) -> BatchRunner:
    """BatchRunner with a 1s delay that never actually sleeps."""
    return BatchRunner(delay_seconds=1.0, sleep=sleeps.append)


# =============================================================================
# PAYLOAD FACTORIES
# =============================================================================

def make_bar(
        day: date,
        close: str,
        open_: str | None = None,
        high: str | None = None,
        low: str | None = None,
        volume: str | None = None,
) -> dict[str, Any]:
    """One provider bar with string fields, as the API returns them."""
    bar: dict[str, Any] = {"datetime": day.isoformat(), "close": close}
    if open_ is not None:
        bar["open"] = open_
    if high is not None:
        bar["high"] = high
    if low is not None:
        bar["low"] = low
    if volume is not None:
        bar["volume"] = volume
    return bar


def make_bars(end_date: date, closes: list[str]) -> list[dict[str, Any]]:
    """
    Daily bars ending at end_date, newest first (provider order).

    closes are given oldest first.
    """
    start = end_date - timedelta(days=len(closes) - 1)
    bars = [make_bar(start + timedelta(days=i), close) for i, close in enumerate(closes)]
    return list(reversed(bars))


# =============================================================================
# SAMPLE DATA FACTORIES
# =============================================================================

def create_asset(
        db: Session,
        symbol: str = "AAPL",
        asset_class: AssetClass = AssetClass.EQUITY,
        exchange: Exchange = Exchange.NASDAQ,
        currency: str = "USD",
        name: str | None = None,
) -> Asset:
    """Factory function for creating Asset entities in the database."""
    asset = Asset(
        symbol=symbol,
        exchange=exchange,
        name=name or symbol,
        asset_class=asset_class,
        currency=currency,
    )
    db.add(asset)
    db.commit()
    db.refresh(asset)
    return asset


def create_portfolio(
        db: Session,
        name: str = "Test Portfolio",
        base_currency: str = "USD",
) -> Portfolio:
    """Factory function for creating Portfolio entities in the database."""
    portfolio = Portfolio(name=name, base_currency=base_currency)
    db.add(portfolio)
    db.commit()
    db.refresh(portfolio)
    return portfolio


def create_position(
        db: Session,
        portfolio: Portfolio,
        asset: Asset,
        quantity: Decimal = Decimal("10"),
        average_cost: Decimal = Decimal("100"),
        purchase_currency: str | None = None,
        purchase_date: date | None = None,
        status: PositionStatus = PositionStatus.OPEN,
) -> Position:
    """Factory function for creating Position entities in the database."""
    position = Position(
        portfolio_id=portfolio.id,
        asset_id=asset.id,
        status=status,
        quantity=quantity,
        average_cost=average_cost,
        purchase_currency=purchase_currency or asset.currency,
        purchase_date=purchase_date or TODAY - timedelta(days=365),
    )
    db.add(position)
    db.commit()
    db.refresh(position)
    return position


def add_price(
        db: Session,
        asset: Asset,
        day: date,
        close: Decimal | str,
        currency: str | None = None,
) -> PriceHistory:
    """Store a flat price row for an asset."""
    close = Decimal(str(close))
    row = PriceHistory(
        asset_id=asset.id,
        date=day,
        open=close,
        high=close,
        low=close,
        close=close,
        volume=None,
        currency=currency or asset.currency,
    )
    db.add(row)
    db.commit()
    return row


def add_rate(
        db: Session,
        from_currency: str,
        to_currency: str,
        day: date,
        rate: Decimal | str,
) -> CurrencyRate:
    """Store one exchange rate."""
    row = CurrencyRate(
        from_currency=from_currency,
        to_currency=to_currency,
        date=day,
        rate=Decimal(str(rate)),
    )
    db.add(row)
    db.commit()
    return row
