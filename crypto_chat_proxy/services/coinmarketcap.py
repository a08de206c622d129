"""
CoinMarketCap quotes client.

Fetches USD spot prices for a fixed symbol set in a single call to the
`cryptocurrency/quotes/latest` endpoint.
"""

from collections.abc import Sequence
from typing import Any

import httpx
import structlog

from ..core.config import Settings
from ..core.exceptions import UpstreamError

logger = structlog.get_logger()

SERVICE_NAME = "coinmarketcap"
QUOTES_PATH = "/v1/cryptocurrency/quotes/latest"


class CoinMarketCapClient:
    """Thin async client for the CoinMarketCap Pro API."""

    def __init__(self, settings: Settings, client: httpx.AsyncClient | None = None):
        """
        Initialize client.

        Args:
            settings: Application settings with CMC API key and base URL
            client: Optional httpx AsyncClient for connection pooling
        """
        self.api_key = settings.cmc_api_key
        self.timeout = settings.price_timeout_seconds
        self._url = settings.cmc_base_url.rstrip("/") + QUOTES_PATH
        self._client = client
        self._owns_client = client is None

        if not self.api_key:
            logger.warning("CoinMarketCap API key not configured")

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def close(self) -> None:
        """Close HTTP client if we own it."""
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def get_usd_prices(self, symbols: Sequence[str]) -> dict[str, float]:
        """
        Fetch USD prices for every symbol.

        Args:
            symbols: Ticker symbols (e.g., ["BTC", "ETH", "SOL"])

        Returns:
            Mapping of symbol to USD price, containing every requested symbol

        Raises:
            UpstreamError: On network/HTTP failure or if any symbol is missing
        """
        client = await self._get_client()

        try:
            response = await client.get(
                self._url,
                params={"symbol": ",".join(symbols)},
                headers={"X-CMC_PRO_API_KEY": self.api_key},
            )
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPStatusError as e:
            logger.error(
                "CoinMarketCap API HTTP error",
                status_code=e.response.status_code,
            )
            raise UpstreamError(
                f"CoinMarketCap API error: {e.response.status_code}",
                service=SERVICE_NAME,
            ) from e
        except httpx.RequestError as e:
            logger.error("CoinMarketCap API request error", error=str(e))
            raise UpstreamError(
                f"CoinMarketCap request failed: {type(e).__name__}",
                service=SERVICE_NAME,
            ) from e
        except ValueError as e:
            raise UpstreamError(
                "CoinMarketCap response is not JSON", service=SERVICE_NAME
            ) from e

        return self.parse_prices(body, symbols)

    @staticmethod
    def parse_prices(body: Any, symbols: Sequence[str]) -> dict[str, float]:
        """Extract data.<SYM>.quote.USD.price for each symbol, all or nothing."""
        data = body.get("data") if isinstance(body, dict) else None
        if not isinstance(data, dict):
            raise UpstreamError(
                "Invalid data structure in CoinMarketCap response",
                service=SERVICE_NAME,
            )

        prices: dict[str, float] = {}
        missing: list[str] = []
        for symbol in symbols:
            try:
                price = data[symbol]["quote"]["USD"]["price"]
                prices[symbol] = float(price)
            except (KeyError, TypeError, ValueError):
                missing.append(symbol)

        if missing:
            raise UpstreamError(
                "Incomplete CoinMarketCap response",
                service=SERVICE_NAME,
                missing_symbols=missing,
            )
        return prices
