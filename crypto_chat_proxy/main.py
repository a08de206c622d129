"""
FastAPI application entry point for the crypto chat proxy.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from .agent.chat_pipeline import ChatPipeline
from .agent.executors import build_completion_executor
from .agent.llm_client import ChatCompletionGateway
from .agent.session_store import SessionConversationStore
from .api.chat import router as chat_router
from .api.dependencies.rate_limit import limiter
from .api.health import router as health_router
from .api.prices import router as prices_router
from .core.config import get_settings
from .core.exceptions import AppError, ConfigurationError
from .database.redis import RedisCache
from .services.coinmarketcap import CoinMarketCapClient
from .services.price_cache import PriceCache, PriceCacheRefresher
from .workers.completion_queue import (
    CompletionQueue,
    InMemoryCompletionQueue,
    RedisCompletionQueue,
)
from .workers.completion_worker import CompletionWorker

logging.basicConfig(level=logging.INFO)

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Build and tear down the long-lived components."""
    settings = get_settings()

    logger.info(
        "Starting crypto chat proxy",
        environment=settings.environment,
        chat_executor=settings.chat_executor,
    )

    if settings.environment == "production" and not (
        settings.kluster_api_key and settings.cmc_api_key
    ):
        raise ConfigurationError("KLUSTER_API_KEY and CMC_API_KEY must be set")

    redis_cache: RedisCache | None = None
    worker: CompletionWorker | None = None

    price_cache = PriceCache()
    cmc_client = CoinMarketCapClient(settings)
    refresher = PriceCacheRefresher(
        price_cache,
        cmc_client,
        interval_seconds=settings.price_refresh_interval_seconds,
    )
    session_store = SessionConversationStore(
        max_messages=settings.session_max_messages,
        ttl_minutes=settings.session_ttl_minutes,
        cleanup_interval_seconds=settings.session_cleanup_interval_seconds,
    )
    gateway = ChatCompletionGateway(settings)

    try:
        queue: CompletionQueue | None = None
        if settings.uses_queue:
            if settings.redis_url:
                redis_cache = RedisCache()
                await redis_cache.connect(settings.redis_url)
                queue = RedisCompletionQueue(redis_cache)
            else:
                logger.warning("No REDIS_URL configured, using in-memory completion queue")
                queue = InMemoryCompletionQueue()

            if settings.embedded_worker or redis_cache is None:
                worker = CompletionWorker(queue, gateway)
                await worker.start()

        executor = build_completion_executor(settings, gateway, queue)

        await session_store.start()
        await refresher.start()

        app.state.price_cache = price_cache
        app.state.session_store = session_store
        app.state.chat_pipeline = ChatPipeline(session_store, executor)
        app.state.redis = redis_cache

        logger.info("Proxy server running", port=settings.port)

        yield

    finally:
        await refresher.stop()
        await session_store.stop()
        if worker:
            await worker.stop()
        await gateway.close()
        await cmc_client.close()
        if redis_cache:
            await redis_cache.disconnect()
        logger.info("Proxy server stopped")


def register_exception_handlers(app: FastAPI) -> None:
    """Map AppError and request validation failures to JSON error bodies."""

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
        """
        Handle all custom AppError exceptions with proper HTTP status codes.

        Full context goes to the log; the caller only sees the message.
        """
        logger.error(
            "Application error occurred",
            path=request.url.path,
            method=request.method,
            **exc.to_dict(),
        )
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.message, "error_type": exc.error_type},
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        logger.warning(
            "Malformed request",
            path=request.url.path,
            errors=len(exc.errors()),
        )
        return JSONResponse(
            status_code=400,
            content={
                "error": "Invalid input: message must be a non-empty string.",
                "error_type": "validation_error",
            },
        )


def create_app() -> FastAPI:
    """Create and configure FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Crypto Chat Proxy",
        description="Chat completion and crypto price proxy",
        version="0.1.0",
        docs_url="/docs" if settings.is_development else None,
        redoc_url=None,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    # Rate limiting - SlowAPI integration
    app.state.limiter = limiter
    # Middleware breaks FastAPI TestClient
    if settings.environment != "test":
        app.add_middleware(SlowAPIMiddleware)

    @app.exception_handler(RateLimitExceeded)
    async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
        return JSONResponse(
            status_code=429,
            content={"error": f"Rate limit exceeded: {exc.detail}"},
            headers={"Retry-After": str(60)},
        )

    register_exception_handlers(app)

    app.include_router(health_router, prefix="/api", tags=["health"])
    app.include_router(prices_router, tags=["prices"])
    app.include_router(chat_router, tags=["chat"])

    @app.get("/", response_class=PlainTextResponse)
    async def root() -> str:
        """Root endpoint for basic connectivity check."""
        return "Server is running!"

    return app


# Create app instance
app = create_app()

if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "crypto_chat_proxy.main:app",
        host="0.0.0.0",  # nosec B104 - Required for container deployment
        port=settings.port,
        reload=settings.is_development,
        log_config=None,  # Use structlog configuration
    )
