"""
Unit tests for PriceCache and PriceCacheRefresher.

Tests availability before first refresh, wholesale replacement and
preservation of the last good snapshot on failure.
"""

import asyncio
from datetime import UTC, datetime
from unittest.mock import AsyncMock, Mock

import pytest

from crypto_chat_proxy.core.exceptions import UpstreamError
from crypto_chat_proxy.services.price_cache import (
    TRACKED_SYMBOLS,
    PriceCache,
    PriceCacheRefresher,
    PriceSnapshot,
)

FIRST_FETCH = datetime(2025, 1, 1, 12, 0, tzinfo=UTC)
SECOND_FETCH = datetime(2025, 1, 1, 12, 5, tzinfo=UTC)


@pytest.fixture
def cache():
    return PriceCache()


@pytest.fixture
def mock_cmc():
    client = Mock()
    client.get_usd_prices = AsyncMock(
        return_value={"BTC": 65000.0, "ETH": 3200.0, "SOL": 150.0}
    )
    return client


@pytest.fixture
def refresher(cache, mock_cmc):
    times = iter([FIRST_FETCH, SECOND_FETCH])
    return PriceCacheRefresher(cache, mock_cmc, interval_seconds=300, clock=lambda: next(times))


class TestPriceCache:
    """Test reader contract"""

    def test_unavailable_before_refresh(self, cache):
        assert cache.read() is None
        assert cache.is_populated is False

    def test_snapshot_response_shape(self):
        snapshot = PriceSnapshot(1.0, 2.0, 3.0, FIRST_FETCH)

        assert snapshot.to_response() == {
            "btcPrice": 1.0,
            "ethPrice": 2.0,
            "solPrice": 3.0,
            "lastUpdated": "2025-01-01T12:00:00+00:00",
        }


class TestRefresh:
    """Test polling"""

    @pytest.mark.asyncio
    async def test_successful_refresh_populates(self, refresher, cache, mock_cmc):
        assert await refresher.refresh() is True

        snapshot = cache.read()
        assert snapshot == PriceSnapshot(65000.0, 3200.0, 150.0, FIRST_FETCH)
        mock_cmc.get_usd_prices.assert_awaited_once_with(TRACKED_SYMBOLS)

    @pytest.mark.asyncio
    async def test_incomplete_response_keeps_previous_snapshot(
        self, refresher, cache, mock_cmc
    ):
        await refresher.refresh()
        before = cache.read()

        mock_cmc.get_usd_prices.side_effect = UpstreamError(
            "Incomplete CoinMarketCap response",
            service="coinmarketcap",
            missing_symbols=["SOL"],
        )
        assert await refresher.refresh() is False

        assert cache.read() is before

    @pytest.mark.asyncio
    async def test_failure_before_first_success_stays_unavailable(
        self, refresher, cache, mock_cmc
    ):
        mock_cmc.get_usd_prices.side_effect = UpstreamError("down", service="coinmarketcap")

        assert await refresher.refresh() is False
        assert cache.read() is None

    @pytest.mark.asyncio
    async def test_unexpected_error_is_swallowed(self, refresher, cache, mock_cmc):
        mock_cmc.get_usd_prices.side_effect = RuntimeError("bug")

        assert await refresher.refresh() is False
        assert cache.read() is None

    @pytest.mark.asyncio
    async def test_second_refresh_replaces_wholesale(self, refresher, cache, mock_cmc):
        await refresher.refresh()
        mock_cmc.get_usd_prices.return_value = {"BTC": 1.0, "ETH": 2.0, "SOL": 3.0}

        await refresher.refresh()

        assert cache.read() == PriceSnapshot(1.0, 2.0, 3.0, SECOND_FETCH)


class TestSchedule:
    """Test background loop"""

    @pytest.mark.asyncio
    async def test_start_refreshes_immediately(self, cache, mock_cmc):
        refresher = PriceCacheRefresher(cache, mock_cmc, interval_seconds=300)

        await refresher.start()
        for _ in range(50):
            if cache.is_populated:
                break
            await asyncio.sleep(0.01)
        await refresher.stop()

        assert cache.is_populated
        assert mock_cmc.get_usd_prices.await_count == 1

    @pytest.mark.asyncio
    async def test_loop_keeps_running_after_failures(self, cache, mock_cmc):
        mock_cmc.get_usd_prices.side_effect = UpstreamError("down", service="coinmarketcap")
        refresher = PriceCacheRefresher(cache, mock_cmc, interval_seconds=0)

        await refresher.start()
        for _ in range(50):
            if mock_cmc.get_usd_prices.await_count >= 3:
                break
            await asyncio.sleep(0.01)
        await refresher.stop()

        assert mock_cmc.get_usd_prices.await_count >= 3
        assert cache.read() is None
