# backend/portfolio_tracker/services/market_data/twelve_data.py
"""
Twelve Data market data provider implementation.

This module implements the MarketDataProvider interface against the Twelve
Data REST API (https://twelvedata.com) using httpx.

Key features:
- One symbol format per asset class (built by the fetchers, used verbatim here)
- Error payloads detected regardless of HTTP status
- Retry mechanism inherited from base class
- Optional quote cache (injected)

Endpoints used:
    GET /quote          ?symbol=THYAO:BIST
    GET /time_series    ?symbol=XAU/USD&interval=1day&outputsize=30
    GET /exchange_rate  ?symbol=USD/TRY

Every request carries `apikey` and `format=JSON`.

Limitations:
- Free plan: 8 calls/minute, 800 calls/day. Batch callers pace themselves
  (see services/batch.py); this client only retries on 429.
"""

import logging
from typing import Any

import httpx

from portfolio_tracker.config import Settings
from portfolio_tracker.services.exceptions import (
    ApiError,
    ProviderUnavailableError,
    RateLimitError,
)
from portfolio_tracker.services.market_data.base import MarketDataProvider
from portfolio_tracker.services.market_data.cache import QuoteCache

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.twelvedata.com"


class TwelveDataProvider(MarketDataProvider):
    """
    Twelve Data implementation of MarketDataProvider.

    Configuration:
        api_key: Twelve Data API key
        base_url: API root (default: https://api.twelvedata.com)
        timeout: Request timeout in seconds (default: 10)
        cache: Optional QuoteCache for quote responses
        client: Optional preconfigured httpx.Client (tests pass one with a
                MockTransport)

    Error mapping:
        body {"status": "error", "code": 429}  -> RateLimitError
        body {"status": "error", ...}          -> ApiError
        HTTP 429                               -> RateLimitError
        HTTP 5xx                               -> ProviderUnavailableError
        other non-2xx                          -> ApiError
        invalid JSON                           -> ApiError
        httpx.RequestError (timeouts, DNS...)  -> ProviderUnavailableError
    """

    def __init__(
            self,
            api_key: str,
            base_url: str = DEFAULT_BASE_URL,
            timeout: float = 10.0,
            cache: QuoteCache | None = None,
            client: httpx.Client | None = None,
    ) -> None:
        if not api_key:
            raise ValueError("Twelve Data API key is not configured")

        self._api_key = api_key
        self._cache = cache
        self._client = client or httpx.Client(base_url=base_url, timeout=timeout)
        logger.info(
            f"TwelveDataProvider initialized (base_url={base_url}, timeout={timeout}s, "
            f"cache={'on' if cache else 'off'})"
        )

    @classmethod
    def from_settings(cls, settings: Settings, cache: QuoteCache | None = None) -> "TwelveDataProvider":
        """Build a provider from application settings."""
        return cls(
            api_key=settings.twelve_data_api_key or "",
            base_url=settings.twelve_data_base_url,
            timeout=settings.twelve_data_timeout,
            cache=cache,
        )

    @property
    def name(self) -> str:
        return "twelve_data"

    def close(self) -> None:
        """Close the underlying HTTP client."""
        self._client.close()

    def __enter__(self) -> "TwelveDataProvider":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    def get_quote(self, symbol: str) -> dict[str, Any]:
        """
        Fetch the latest quote for a symbol.

        Served from the quote cache when a fresh entry exists.
        """
        cache_key = f"quote:{symbol}"
        if self._cache is not None:
            cached = self._cache.get(cache_key)
            if cached is not None:
                return cached

        payload = self._execute_with_retry(self._get, "/quote", {"symbol": symbol})

        if self._cache is not None:
            self._cache.set(cache_key, payload)
        return payload

    def get_time_series(
            self,
            symbol: str,
            interval: str = "1day",
            outputsize: int = 30,
    ) -> dict[str, Any]:
        """Fetch the most recent `outputsize` bars for a symbol."""
        return self._execute_with_retry(
            self._get,
            "/time_series",
            {"symbol": symbol, "interval": interval, "outputsize": outputsize},
        )

    def get_exchange_rate(self, from_currency: str, to_currency: str) -> dict[str, Any]:
        """Fetch the current rate for FROM/TO."""
        return self._execute_with_retry(
            self._get,
            "/exchange_rate",
            {"symbol": f"{from_currency.upper()}/{to_currency.upper()}"},
        )

    # =========================================================================
    # HTTP HELPERS
    # =========================================================================

    def _get(self, path: str, params: dict[str, Any]) -> dict[str, Any]:
        """Internal GET (called by retry wrapper)."""
        query = {"apikey": self._api_key, "format": "JSON", **params}
        logger.debug(f"GET {path} symbol={params.get('symbol')}")

        try:
            response = self._client.get(path, params=query)
        except httpx.RequestError as e:
            raise ProviderUnavailableError(provider=self.name, reason=f"Network error: {e}")

        return self._handle_response(response)

    def _handle_response(self, response: httpx.Response) -> dict[str, Any]:
        """Parse a response, raising typed errors for error payloads and statuses."""
        try:
            parsed = response.json()
        except ValueError as e:
            if response.is_success:
                raise ApiError(f"Invalid JSON response: {e}", provider=self.name)
            parsed = None

        if not response.is_success:
            status = response.status_code
            message = parsed.get("message") if isinstance(parsed, dict) else None
            message = message or response.reason_phrase

            if status == 429:
                raise RateLimitError(provider=self.name)
            if status >= 500:
                raise ProviderUnavailableError(
                    provider=self.name,
                    reason=f"HTTP {status}: {message}",
                    status_code=status,
                )
            raise ApiError(f"HTTP {status}: {message}", provider=self.name, status_code=status)

        if not isinstance(parsed, dict):
            raise ApiError(f"Unexpected response type: {type(parsed).__name__}", provider=self.name)

        # Twelve Data reports most failures with HTTP 200 and an error body
        if parsed.get("status") == "error":
            code = parsed.get("code")
            if code == 429:
                raise RateLimitError(provider=self.name)
            raise ApiError(
                parsed.get("message") or "Unknown API error",
                provider=self.name,
                status_code=code if isinstance(code, int) else None,
            )

        return parsed
