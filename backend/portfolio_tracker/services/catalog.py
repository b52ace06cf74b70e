# backend/portfolio_tracker/services/catalog.py
"""
Reference asset catalogs and seeding.

Catalogs list the instruments the scheduled batches refresh out of the box:
Turkish BIST stocks, precious metals, popular cryptocurrencies and the
Turkish lira forex pairs. Seeding is idempotent: assets are found by
(symbol, exchange) and their descriptive fields refreshed.

Usage:
    from portfolio_tracker.services.catalog import seed_assets, ALL_CATALOGS

    for name, catalog in ALL_CATALOGS.items():
        seed_assets(db, catalog)
"""

import logging
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.orm import Session

from portfolio_tracker.models import Asset, AssetClass, Exchange

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CatalogEntry:
    """One reference asset."""
    symbol: str
    name: str
    asset_class: AssetClass
    exchange: Exchange
    currency: str
    description: str | None = None


# =============================================================================
# CATALOGS
# =============================================================================

TURKISH_STOCKS: list[CatalogEntry] = [
    CatalogEntry(symbol, name, AssetClass.EQUITY, Exchange.BIST, "TRY", f"{sector} - Borsa Istanbul")
    for symbol, name, sector in [
        ("THYAO", "Türk Hava Yolları", "Transportation"),
        ("ASELS", "Aselsan Elektronik", "Defense"),
        ("AKBNK", "Akbank", "Banking"),
        ("EREGL", "Ereğli Demir Çelik", "Steel"),
        ("TUPRS", "Tüpraş", "Oil & Gas"),
        ("SAHOL", "Sabancı Holding", "Conglomerate"),
        ("KOZAL", "Koza Altın", "Mining"),
        ("SISE", "Şişe Cam", "Glass"),
        ("GARAN", "Garanti Bankası", "Banking"),
        ("ISCTR", "İş Bankası", "Banking"),
    ]
]

PRECIOUS_METALS: list[CatalogEntry] = [
    CatalogEntry(
        symbol, name, AssetClass.PRECIOUS_METAL, Exchange.TWELVE_DATA, "USD",
        f"{name} spot price in USD per troy ounce",
    )
    for symbol, name in [
        ("XAU", "Gold"),
        ("XAG", "Silver"),
        ("XPT", "Platinum"),
        ("XPD", "Palladium"),
    ]
]

POPULAR_CRYPTOCURRENCIES: list[CatalogEntry] = [
    CatalogEntry(symbol, name, AssetClass.CRYPTOCURRENCY, Exchange.TWELVE_DATA, "USD", description)
    for symbol, name, description in [
        ("BTC", "Bitcoin", "Digital currency"),
        ("ETH", "Ethereum", "Smart contract platform"),
        ("BNB", "Binance Coin", "Exchange token"),
        ("XRP", "Ripple", "Payment protocol"),
        ("ADA", "Cardano", "Blockchain platform"),
        ("DOGE", "Dogecoin", "Meme cryptocurrency"),
        ("SOL", "Solana", "High-performance blockchain"),
        ("DOT", "Polkadot", "Multi-chain protocol"),
    ]
]

# Forex assets are quoted in their quote currency
FOREX_PAIRS: list[CatalogEntry] = [
    CatalogEntry(
        f"{base}/{quote}", name, AssetClass.FOREX, Exchange.TWELVE_DATA, quote,
        f"Exchange rate from {base} to {quote}",
    )
    for base, quote, name in [
        ("USD", "TRY", "US Dollar / Turkish Lira"),
        ("EUR", "TRY", "Euro / Turkish Lira"),
        ("GBP", "TRY", "British Pound / Turkish Lira"),
        ("EUR", "USD", "Euro / US Dollar"),
    ]
]

ALL_CATALOGS: dict[str, list[CatalogEntry]] = {
    "stocks": TURKISH_STOCKS,
    "metals": PRECIOUS_METALS,
    "crypto": POPULAR_CRYPTOCURRENCIES,
    "forex": FOREX_PAIRS,
}


# =============================================================================
# SEEDING
# =============================================================================

def find_or_create_asset(db: Session, entry: CatalogEntry) -> tuple[Asset, bool]:
    """
    Find an asset by (symbol, exchange) or create it.

    The asset class is set only on creation. Name, currency and description
    of an existing asset are refreshed from the entry.

    Flushes but does not commit.

    Returns:
        (asset, created)
    """
    asset = db.scalar(
        select(Asset).where(Asset.symbol == entry.symbol, Asset.exchange == entry.exchange)
    )
    created = asset is None
    if created:
        asset = Asset(symbol=entry.symbol, exchange=entry.exchange, asset_class=entry.asset_class)
        db.add(asset)

    asset.name = entry.name
    asset.currency = entry.currency
    asset.description = entry.description
    db.flush()

    return asset, created


def seed_assets(db: Session, catalog: list[CatalogEntry]) -> int:
    """
    Create or update every asset of a catalog.

    Returns:
        Number of assets newly created
    """
    created_count = 0
    for entry in catalog:
        _, created = find_or_create_asset(db, entry)
        if created:
            created_count += 1
            logger.info(f"Created asset: {entry.symbol} ({entry.exchange.value})")

    db.commit()
    logger.info(f"Seeded {len(catalog)} assets ({created_count} new)")
    return created_count
