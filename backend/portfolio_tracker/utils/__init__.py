# backend/portfolio_tracker/utils/__init__.py
"""
Utility modules for the portfolio tracker.

This package contains cross-cutting utilities used throughout the services:
- logging: Logging configuration and setup with correlation ID support
- context: Correlation IDs for batch runs and jobs
- date_utils: Date manipulation helpers (month arithmetic, ranges)
- sql: Dialect-aware upsert helper

Usage:
    from portfolio_tracker.utils import setup_logging
    from portfolio_tracker.utils import correlation_scope, get_correlation_id
    from portfolio_tracker.utils.sql import upsert
"""

from portfolio_tracker.utils.context import (
    get_correlation_id,
    set_correlation_id,
    clear_correlation_id,
    correlation_scope,
)
from portfolio_tracker.utils.logging import setup_logging

__all__ = [
    # Logging
    "setup_logging",
    # Context
    "get_correlation_id",
    "set_correlation_id",
    "clear_correlation_id",
    "correlation_scope",
]
