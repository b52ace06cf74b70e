# backend/portfolio_tracker/services/positions.py
"""
Position creation and the explicit price refresh that follows it.

Creating a position only persists it. Fetching the asset's latest price is
a separate call the caller makes afterwards, so the network dependency is
visible and can be skipped or mocked:

    service = PositionService(fetchers)
    position = service.create_position(db, portfolio, asset, Decimal("10"), Decimal("100"))
    service.refresh_asset_price(db, position.asset)
"""

import logging
from datetime import date
from decimal import Decimal

from sqlalchemy.orm import Session

from portfolio_tracker.models import Asset, AssetClass, Portfolio, Position, PositionStatus, PriceHistory
from portfolio_tracker.services.constants import PRICE_STALENESS_DAYS
from portfolio_tracker.services.exceptions import MarketDataError
from portfolio_tracker.services.market_data.fetchers import PriceFetcher
from portfolio_tracker.services.market_data.storage import get_latest_price, is_price_stale

logger = logging.getLogger(__name__)


class PositionService:
    """Records positions and keeps their assets' latest prices fresh."""

    def __init__(self, fetchers: dict[AssetClass, PriceFetcher]) -> None:
        self._fetchers = fetchers

    def create_position(
            self,
            db: Session,
            portfolio: Portfolio,
            asset: Asset,
            quantity: Decimal,
            average_cost: Decimal,
            purchase_currency: str | None = None,
            purchase_date: date | None = None,
            notes: str | None = None,
    ) -> Position:
        """
        Persist a new open position. No network calls are made.

        Args:
            purchase_currency: Currency of average_cost (default: asset currency)
            purchase_date: Default today

        Raises:
            ValidationError: Non-positive quantity or cost, blank currency
        """
        position = Position(
            portfolio_id=portfolio.id,
            asset_id=asset.id,
            status=PositionStatus.OPEN,
            quantity=quantity,
            average_cost=average_cost,
            purchase_currency=purchase_currency or asset.currency,
            purchase_date=purchase_date or date.today(),
            notes=notes,
        )
        db.add(position)
        db.commit()
        db.refresh(position)

        logger.info(
            f"Created position {position.id}: {quantity} {asset.symbol} @ "
            f"{average_cost} {position.purchase_currency} in portfolio {portfolio.id}"
        )
        return position

    def refresh_asset_price(
            self,
            db: Session,
            asset: Asset,
            max_age_days: int = PRICE_STALENESS_DAYS,
    ) -> PriceHistory | None:
        """
        Fetch the asset's latest price if the stored one is missing or stale.

        Provider failures are logged and yield None; the position stays
        valid without a price.

        Returns:
            The newest price row (fetched or already fresh), or None
        """
        if not is_price_stale(db, asset.id, max_age_days=max_age_days):
            logger.debug(f"Price for {asset.symbol} is fresh, skipping fetch")
            return get_latest_price(db, asset.id)

        fetcher = self._fetchers.get(asset.asset_class)
        if fetcher is None:
            logger.warning(f"Price fetching not supported for {asset.symbol} ({asset.asset_class.value})")
            return None

        try:
            return fetcher.fetch_latest(db, asset)
        except MarketDataError as e:
            logger.warning(f"Could not fetch price for {asset.symbol}: {e}")
            return None
