"""
Unit tests for CoinMarketCapClient.

Uses httpx.MockTransport in place of the CoinMarketCap API.
"""

import httpx
import pytest

from crypto_chat_proxy.core.config import Settings
from crypto_chat_proxy.core.exceptions import UpstreamError
from crypto_chat_proxy.services.coinmarketcap import CoinMarketCapClient

SYMBOLS = ("BTC", "ETH", "SOL")


def quote(price: float) -> dict:
    return {"quote": {"USD": {"price": price}}}


def quotes_body(**prices: float) -> dict:
    return {"status": {"error_code": 0}, "data": {s: quote(p) for s, p in prices.items()}}


@pytest.fixture
def settings():
    return Settings(_env_file=None, cmc_api_key="cmc-key")


def make_client(settings, handler) -> CoinMarketCapClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return CoinMarketCapClient(settings, client=http)


class TestGetUsdPrices:
    """Test fetching quotes"""

    @pytest.mark.asyncio
    async def test_success(self, settings):
        captured: dict = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["url"] = request.url
            captured["key"] = request.headers["X-CMC_PRO_API_KEY"]
            return httpx.Response(200, json=quotes_body(BTC=65000.5, ETH=3200, SOL=150.25))

        client = make_client(settings, handler)
        prices = await client.get_usd_prices(SYMBOLS)

        assert prices == {"BTC": 65000.5, "ETH": 3200.0, "SOL": 150.25}
        assert captured["url"].path == "/v1/cryptocurrency/quotes/latest"
        assert captured["url"].params["symbol"] == "BTC,ETH,SOL"
        assert captured["key"] == "cmc-key"

    @pytest.mark.asyncio
    async def test_missing_symbol(self, settings):
        client = make_client(
            settings,
            lambda request: httpx.Response(200, json=quotes_body(BTC=1.0, ETH=2.0)),
        )

        with pytest.raises(UpstreamError) as exc_info:
            await client.get_usd_prices(SYMBOLS)

        assert exc_info.value.context["missing_symbols"] == ["SOL"]

    @pytest.mark.asyncio
    async def test_http_error(self, settings):
        client = make_client(settings, lambda request: httpx.Response(401, json={}))

        with pytest.raises(UpstreamError, match="401"):
            await client.get_usd_prices(SYMBOLS)

    @pytest.mark.asyncio
    async def test_network_error(self, settings):
        def handler(request):
            raise httpx.ConnectError("dns", request=request)

        client = make_client(settings, handler)

        with pytest.raises(UpstreamError):
            await client.get_usd_prices(SYMBOLS)


class TestParsePrices:
    """Test response validation"""

    def test_no_data(self):
        with pytest.raises(UpstreamError):
            CoinMarketCapClient.parse_prices({"status": {}}, SYMBOLS)

    def test_malformed_quote(self):
        body = quotes_body(BTC=1.0, ETH=2.0)
        body["data"]["SOL"] = {"quote": {"EUR": {"price": 3.0}}}

        with pytest.raises(UpstreamError):
            CoinMarketCapClient.parse_prices(body, SYMBOLS)

    def test_null_price(self):
        body = quotes_body(BTC=1.0, ETH=2.0, SOL=3.0)
        body["data"]["ETH"]["quote"]["USD"]["price"] = None

        with pytest.raises(UpstreamError):
            CoinMarketCapClient.parse_prices(body, SYMBOLS)
