# backend/portfolio_tracker/services/exceptions.py
"""
Service layer exceptions.

These exceptions represent domain-specific errors and contain NO transport
knowledge. Callers (batch jobs, web handlers) decide how to report them.

Exception Hierarchy:
    ServiceError (base)
    ├── ValidationError
    ├── InvalidAssetClassError
    ├── MarketDataError
    │   └── ApiError
    │       ├── RateLimitError
    │       └── ProviderUnavailableError
    └── FXRateError
        └── NoRateAvailableError

Propagation:
    - ApiError and its subclasses are caught at the router/batch boundary and
      turned into a zero-records result plus an error entry.
    - NoRateAvailableError degrades to "contributes 0" in portfolio rollups
      but is raised by direct conversion calls.
    - ValidationError and InvalidAssetClassError signal defects and are
      always raised to the caller.
"""

from datetime import date


class ServiceError(Exception):
    """
    Base exception for all service layer errors.

    Attributes:
        message: Human-readable error description
    """

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message


# =============================================================================
# VALIDATION ERRORS
# =============================================================================


class ValidationError(ServiceError):
    """
    Raised when a record would violate a data-model invariant.

    Examples:
    - Non-positive quantity or average cost on an open position
    - Non-positive close price written to price history
    - Blank currency codes

    Attributes:
        field: The field that failed validation (optional)
    """

    def __init__(self, message: str, field: str | None = None) -> None:
        self.field = field
        super().__init__(message)


class InvalidAssetClassError(ServiceError):
    """
    Raised when an asset is handed to a fetcher for a different asset class.

    This is raised before any network call is made.

    Attributes:
        symbol: Symbol of the offending asset
        asset_class: The asset's actual class
        expected: The classes the fetcher supports
    """

    def __init__(self, symbol: str, asset_class: str, expected: list[str]) -> None:
        self.symbol = symbol
        self.asset_class = asset_class
        self.expected = expected
        super().__init__(
            f"Asset '{symbol}' has class {asset_class}, expected one of: {', '.join(expected)}"
        )


# =============================================================================
# MARKET DATA PROVIDER ERRORS
# =============================================================================


class MarketDataError(ServiceError):
    """
    Base exception for market data provider failures.

    Attributes:
        provider: Name of the provider that failed
    """

    def __init__(self, message: str, provider: str | None = None) -> None:
        self.provider = provider
        super().__init__(message)


class ApiError(MarketDataError):
    """
    Raised when the provider returns an error payload or a non-success status.

    A JSON body carrying an error status is an ApiError even when the HTTP
    status code is 200.

    Attributes:
        status_code: HTTP status or API error code (if known)
    """

    def __init__(
            self,
            message: str,
            provider: str | None = None,
            status_code: int | None = None,
    ) -> None:
        self.status_code = status_code
        super().__init__(message, provider=provider)


class RateLimitError(ApiError):
    """
    Raised when the provider's rate limit has been exceeded.

    This is a retryable error (with backoff).

    Attributes:
        retry_after: Seconds to wait before retrying (if provided by API)
    """

    def __init__(self, provider: str, retry_after: int | None = None) -> None:
        message = f"Rate limit exceeded for provider '{provider}'"
        if retry_after:
            message += f" (retry after {retry_after}s)"
        super().__init__(message, provider=provider, status_code=429)
        self.retry_after = retry_after


class ProviderUnavailableError(ApiError):
    """
    Raised when a market data provider is temporarily unavailable.

    Examples:
    - Network timeout
    - Server errors (500, 502, 503)

    This is a retryable error.
    """

    def __init__(self, provider: str, reason: str, status_code: int | None = None) -> None:
        message = f"Provider '{provider}' is unavailable: {reason}"
        super().__init__(message, provider=provider, status_code=status_code)
        self.reason = reason


# =============================================================================
# FX RATE ERRORS
# =============================================================================


class FXRateError(ServiceError):
    """
    Base exception for FX rate errors.

    Attributes:
        from_currency: The source currency code
        to_currency: The target currency code
    """

    def __init__(
            self,
            message: str,
            from_currency: str | None = None,
            to_currency: str | None = None,
    ) -> None:
        self.from_currency = from_currency
        self.to_currency = to_currency
        super().__init__(message)


class NoRateAvailableError(FXRateError):
    """
    Raised when no cached, inferable or fetchable rate exists for a pair.

    Attributes:
        date: The date for which the rate was requested
    """

    def __init__(
            self,
            from_currency: str,
            to_currency: str,
            rate_date: date,
            message: str | None = None,
    ) -> None:
        self.date = rate_date
        msg = message or f"No exchange rate available for {from_currency}/{to_currency} on {rate_date}"
        super().__init__(msg, from_currency=from_currency, to_currency=to_currency)


__all__ = [
    # Base
    "ServiceError",
    # Validation
    "ValidationError",
    "InvalidAssetClassError",
    # Market Data
    "MarketDataError",
    "ApiError",
    "RateLimitError",
    "ProviderUnavailableError",
    # FX Rate
    "FXRateError",
    "NoRateAvailableError",
]
