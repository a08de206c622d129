"""
Cached crypto price endpoint.

Serves the latest snapshot from the in-process price cache; never calls
CoinMarketCap on the request path.
"""

import structlog
from fastapi import APIRouter, Depends

from ..core.exceptions import PricesUnavailableError
from ..services.price_cache import PriceCache
from .dependencies.app_state import get_price_cache
from .schemas import PriceResponse

logger = structlog.get_logger()

router = APIRouter()


@router.get("/proxy/cmc/prices", response_model=PriceResponse)
async def get_cached_prices(
    cache: PriceCache = Depends(get_price_cache),
) -> PriceResponse:
    """Latest BTC/ETH/SOL prices, or 503 until the first refresh succeeds."""
    snapshot = cache.read()
    if snapshot is None:
        raise PricesUnavailableError()
    return PriceResponse(**snapshot.to_response())
