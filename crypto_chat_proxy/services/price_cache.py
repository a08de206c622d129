"""
Process-wide crypto price cache.

PriceCacheRefresher polls CoinMarketCap at startup and then on a fixed
interval; PriceCache serves the latest complete snapshot. A failed or
incomplete poll keeps the previous snapshot, so staleness (visible through
`last_updated`) is the only symptom of upstream trouble.
"""

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

import structlog

from ..core.exceptions import UpstreamError
from .coinmarketcap import CoinMarketCapClient

logger = structlog.get_logger()

TRACKED_SYMBOLS: tuple[str, ...] = ("BTC", "ETH", "SOL")


@dataclass(frozen=True)
class PriceSnapshot:
    """Latest complete set of polled prices plus its fetch time."""

    btc_price: float
    eth_price: float
    sol_price: float
    last_updated: datetime

    @classmethod
    def from_prices(cls, prices: dict[str, float], fetched_at: datetime) -> "PriceSnapshot":
        return cls(
            btc_price=prices["BTC"],
            eth_price=prices["ETH"],
            sol_price=prices["SOL"],
            last_updated=fetched_at,
        )

    def to_response(self) -> dict[str, Any]:
        """Boundary shape served by /proxy/cmc/prices."""
        return {
            "btcPrice": self.btc_price,
            "ethPrice": self.eth_price,
            "solPrice": self.sol_price,
            "lastUpdated": self.last_updated.isoformat(),
        }


class PriceCache:
    """Holds the current snapshot. Only the refresher writes it."""

    def __init__(self) -> None:
        self._snapshot: PriceSnapshot | None = None

    def read(self) -> PriceSnapshot | None:
        """Latest snapshot, or None until the first successful refresh."""
        return self._snapshot

    def replace(self, snapshot: PriceSnapshot) -> None:
        # Single reference swap: readers see the old or the new snapshot, never a mix
        self._snapshot = snapshot

    @property
    def is_populated(self) -> bool:
        return self._snapshot is not None


class PriceCacheRefresher:
    """Polls prices into a PriceCache on a fixed schedule."""

    def __init__(
        self,
        cache: PriceCache,
        client: CoinMarketCapClient,
        interval_seconds: int = 300,
        symbols: tuple[str, ...] = TRACKED_SYMBOLS,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ):
        """
        Initialize refresher.

        Args:
            cache: Cache to populate
            client: CoinMarketCap client used for each poll
            interval_seconds: Delay between polls (default: 5 minutes)
            symbols: Symbols that must all be present for a poll to count
            clock: Timestamp source for `last_updated`
        """
        self.cache = cache
        self.client = client
        self.interval = interval_seconds
        self.symbols = symbols
        self._clock = clock
        self._task: asyncio.Task | None = None

    async def refresh(self) -> bool:
        """
        Poll once. Never raises.

        Returns:
            True if the snapshot was replaced, False if the old one was kept
        """
        try:
            prices = await self.client.get_usd_prices(self.symbols)
        except UpstreamError as e:
            logger.error("Price refresh failed, keeping previous snapshot", **e.to_dict())
            return False
        except Exception as e:
            logger.error(
                "Unexpected error refreshing prices",
                error=str(e),
                error_type=type(e).__name__,
            )
            return False

        snapshot = PriceSnapshot.from_prices(prices, self._clock())
        self.cache.replace(snapshot)
        logger.info(
            "Crypto prices updated",
            btc_price=snapshot.btc_price,
            eth_price=snapshot.eth_price,
            sol_price=snapshot.sol_price,
        )
        return True

    async def start(self) -> None:
        """Refresh immediately, then keep refreshing in the background."""
        if self._task is None:
            self._task = asyncio.create_task(self._refresh_loop())
            logger.info("Price refresher started", interval_seconds=self.interval)

    async def stop(self) -> None:
        """Stop background refresh task."""
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
            logger.info("Price refresher stopped")

    async def _refresh_loop(self) -> None:
        while True:
            try:
                await self.refresh()
                await asyncio.sleep(self.interval)
            except asyncio.CancelledError:
                logger.info("Price refresh loop cancelled")
                break
