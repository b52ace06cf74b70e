# backend/portfolio_tracker/models.py
import enum
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import String, Text, Date, DateTime, ForeignKey, Enum, Numeric, UniqueConstraint, BigInteger, Index
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship, validates

from portfolio_tracker.services.exceptions import ValidationError


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


# Enums help enforce data integrity at the database level
class AssetClass(str, enum.Enum):
    EQUITY = "EQUITY"
    ETF = "ETF"
    PRECIOUS_METAL = "PRECIOUS_METAL"
    FOREX = "FOREX"
    CRYPTOCURRENCY = "CRYPTOCURRENCY"

    # No historical feed exists for bonds
    BOND = "BOND"


class Exchange(str, enum.Enum):
    """Venue or data source an asset is quoted on."""
    BIST = "BIST"
    TWELVE_DATA = "TWELVE_DATA"
    BINANCE = "BINANCE"
    NYSE = "NYSE"
    NASDAQ = "NASDAQ"


class PositionStatus(str, enum.Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"


class Asset(Base):
    """
    Global table of tradable instruments shared by all portfolios.

    An asset is uniquely identified by the combination of symbol AND exchange.
    Forex assets use a "BASE/QUOTE" pair as their symbol (e.g. "USD/TRY").
    """
    __tablename__ = "assets"
    __table_args__ = (
        UniqueConstraint('symbol', 'exchange', name='uq_symbol_exchange'),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)

    # Symbol is NOT unique alone, must be combined with exchange
    symbol: Mapped[str] = mapped_column(String, index=True)  # e.g. "THYAO", "XAU", "EUR/TRY"
    exchange: Mapped[Exchange] = mapped_column(Enum(Exchange), index=True)

    name: Mapped[str] = mapped_column(String)
    asset_class: Mapped[AssetClass] = mapped_column(Enum(AssetClass), index=True)
    currency: Mapped[str] = mapped_column(String(3), default="USD")  # Currency prices are quoted in
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    prices: Mapped[list["PriceHistory"]] = relationship(back_populates="asset")
    positions: Mapped[list["Position"]] = relationship(back_populates="asset")

    def __repr__(self) -> str:
        return f"<Asset {self.symbol} ({self.exchange.value if self.exchange else '-'})>"


class Portfolio(Base):
    """
    A set of positions valued in a single base currency.
    """
    __tablename__ = "portfolios"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String)
    base_currency: Mapped[str] = mapped_column(String(3), default="USD")
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    positions: Mapped[list["Position"]] = relationship(back_populates="portfolio", cascade="all, delete-orphan")

    @property
    def open_positions(self) -> list["Position"]:
        return [p for p in self.positions if p.status == PositionStatus.OPEN]

    @validates("base_currency")
    def _validate_base_currency(self, key: str, value: str) -> str:
        if not value or len(value.strip()) != 3:
            raise ValidationError(f"Invalid base currency: {value!r}", field=key)
        return value.strip().upper()


class Position(Base):
    """
    A holding of one asset inside one portfolio.

    Quantity and average cost must stay positive while the position is open.
    To close a position, set status to CLOSED before zeroing the quantity.
    """
    __tablename__ = "positions"
    __table_args__ = (
        Index('ix_position_portfolio_asset', 'portfolio_id', 'asset_id'),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    portfolio_id: Mapped[int] = mapped_column(ForeignKey("portfolios.id"), index=True)
    asset_id: Mapped[int] = mapped_column(ForeignKey("assets.id"), index=True)

    # Fractional units down to 1e-8 (crypto)
    quantity: Mapped[Decimal] = mapped_column(Numeric(28, 8))
    average_cost: Mapped[Decimal] = mapped_column(Numeric(18, 8))  # In purchase_currency
    purchase_currency: Mapped[str] = mapped_column(String(3))
    purchase_date: Mapped[date] = mapped_column(Date, index=True)
    status: Mapped[PositionStatus] = mapped_column(Enum(PositionStatus), default=PositionStatus.OPEN, index=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    portfolio: Mapped["Portfolio"] = relationship(back_populates="positions")
    asset: Mapped["Asset"] = relationship(back_populates="positions")

    @validates("quantity", "average_cost")
    def _validate_positive(self, key: str, value: Decimal) -> Decimal:
        if value is None:
            raise ValidationError(f"{key} is required", field=key)
        value = Decimal(str(value))
        if value < 0 or (value == 0 and self.status != PositionStatus.CLOSED):
            raise ValidationError(f"{key} must be positive, got {value}", field=key)
        return value

    @validates("purchase_currency")
    def _validate_currency(self, key: str, value: str) -> str:
        if not value or not value.strip():
            raise ValidationError(f"{key} is required", field=key)
        return value.strip().upper()


class PriceHistory(Base):
    """
    Daily OHLCV observation for one asset (one row per asset per date).

    Written only through upserts keyed on (asset_id, date). Forex assets get
    flat rows (open = high = low = close = rate) mirrored from currency_rates.
    """
    __tablename__ = "price_history"
    __table_args__ = (
        UniqueConstraint('asset_id', 'date', name='uq_price_history_asset_date'),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    asset_id: Mapped[int] = mapped_column(ForeignKey("assets.id"), index=True)
    date: Mapped[date] = mapped_column(Date, index=True)

    open: Mapped[Decimal] = mapped_column(Numeric(18, 8))
    high: Mapped[Decimal] = mapped_column(Numeric(18, 8))
    low: Mapped[Decimal] = mapped_column(Numeric(18, 8))
    close: Mapped[Decimal] = mapped_column(Numeric(18, 8))  # Primary valuation price
    volume: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    currency: Mapped[str] = mapped_column(String(3), default="USD")

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    asset: Mapped["Asset"] = relationship(back_populates="prices")


class CurrencyRate(Base):
    """
    Historical exchange rates between currency pairs.

    Convention: rate represents "1 from_currency = X to_currency"
    Example: from=USD, to=TRY, rate=30 means 1 USD = 30 TRY
    """
    __tablename__ = "currency_rates"
    __table_args__ = (
        UniqueConstraint('from_currency', 'to_currency', 'date',
                         name='uq_currency_rate_pair_date'),
        Index('ix_currency_rate_to_from_date', 'to_currency', 'from_currency', 'date'),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    from_currency: Mapped[str] = mapped_column(String(3), index=True)
    to_currency: Mapped[str] = mapped_column(String(3), index=True)
    date: Mapped[date] = mapped_column(Date, index=True)
    rate: Mapped[Decimal] = mapped_column(Numeric(18, 8))

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)
