"""
Dependencies resolving long-lived components from app state.

Everything is created once in the application lifespan; routes receive it
through these functions so tests can swap them via dependency_overrides.
"""

from fastapi import Request

from ...agent.chat_pipeline import ChatPipeline
from ...agent.session_store import SessionConversationStore
from ...database.redis import RedisCache
from ...services.price_cache import PriceCache


def get_chat_pipeline(request: Request) -> ChatPipeline:
    """Get the chat pipeline from app state."""
    pipeline: ChatPipeline = request.app.state.chat_pipeline
    return pipeline


def get_session_store(request: Request) -> SessionConversationStore:
    """Get the session store from app state."""
    store: SessionConversationStore = request.app.state.session_store
    return store


def get_price_cache(request: Request) -> PriceCache:
    """Get the price cache from app state."""
    cache: PriceCache = request.app.state.price_cache
    return cache


def get_redis(request: Request) -> RedisCache | None:
    """Get the Redis connection from app state, if one was configured."""
    return getattr(request.app.state, "redis", None)
