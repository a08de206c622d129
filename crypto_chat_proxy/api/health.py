"""
Health check endpoints for monitoring and connectivity verification.
"""

from typing import Any

import structlog
from fastapi import APIRouter, Depends

from ..agent.session_store import SessionConversationStore
from ..core.config import Settings, get_settings
from ..database.redis import RedisCache
from ..services.price_cache import PriceCache
from .dependencies.app_state import get_price_cache, get_redis, get_session_store

logger = structlog.get_logger()

router = APIRouter()


@router.get("/health")
async def health_check(
    price_cache: PriceCache = Depends(get_price_cache),
    session_store: SessionConversationStore = Depends(get_session_store),
    redis_cache: RedisCache | None = Depends(get_redis),
    settings: Settings = Depends(get_settings),
) -> dict[str, Any]:
    """
    Component health.

    Prices not yet fetched or Redis unreachable report "degraded"; the
    service still answers requests in that state.
    """
    snapshot = price_cache.read()
    redis_status: dict[str, Any] | None = None
    if redis_cache is not None:
        redis_status = await redis_cache.health_check()

    healthy = snapshot is not None and (
        redis_status is None or bool(redis_status.get("connected", False))
    )

    response = {
        "status": "ok" if healthy else "degraded",
        "environment": settings.environment,
        "chat_executor": settings.chat_executor,
        "active_sessions": session_store.session_count(),
        "prices": {
            "available": snapshot is not None,
            "last_updated": snapshot.last_updated.isoformat() if snapshot else None,
        },
        "dependencies": {"redis": redis_status},
    }

    if not healthy:
        logger.warning("Health check degraded", dependencies=response["dependencies"])

    return response


@router.get("/health/live")
async def liveness_check() -> dict[str, Any]:
    """Liveness probe: the process is up."""
    return {"alive": True, "status": "ok"}
