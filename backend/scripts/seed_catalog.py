#!/usr/bin/env python3
# backend/scripts/seed_catalog.py
"""
Seed the reference asset catalogs (BIST stocks, metals, crypto, forex).

Safe to re-run: existing assets are updated in place.

    python backend/scripts/seed_catalog.py            # every catalog
    python backend/scripts/seed_catalog.py metals     # one catalog
"""
import logging
import sys
from pathlib import Path

# Setup path to import portfolio_tracker modules
backend_dir = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(backend_dir))

from portfolio_tracker.database import session_scope
from portfolio_tracker.services.catalog import ALL_CATALOGS, seed_assets
from portfolio_tracker.utils import setup_logging

logger = logging.getLogger(__name__)


def seed(names: list[str]) -> None:
    with session_scope() as db:
        for name in names:
            created = seed_assets(db, ALL_CATALOGS[name])
            logger.info(f"Catalog '{name}': {created} new assets")


if __name__ == "__main__":
    setup_logging()

    requested = sys.argv[1:] or list(ALL_CATALOGS)
    unknown = [name for name in requested if name not in ALL_CATALOGS]
    if unknown:
        logger.error(f"Unknown catalog(s): {', '.join(unknown)}. Choose from: {', '.join(ALL_CATALOGS)}")
        sys.exit(1)

    seed(requested)
