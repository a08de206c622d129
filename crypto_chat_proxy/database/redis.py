"""
Redis connection management.

Redis is optional: it only backs the durable chat completion queue when a
REDIS_URL is configured.
"""

import redis.asyncio as redis
import structlog

logger = structlog.get_logger()


class RedisCache:
    """Redis connection manager with async support."""

    def __init__(self) -> None:
        self.client: redis.Redis | None = None

    async def connect(self, redis_url: str) -> None:
        """Establish connection to Redis."""
        try:
            self.client = redis.from_url(redis_url, decode_responses=True)

            # Test connection
            await self.client.ping()

            logger.info("Redis connection established")

        except Exception as e:
            logger.error("Failed to connect to Redis", error=str(e))
            raise

    async def disconnect(self) -> None:
        """Close Redis connection."""
        if self.client:
            await self.client.aclose()
            self.client = None
            logger.info("Redis connection closed")

    async def health_check(self) -> dict[str, bool | str]:
        """Check Redis connection health."""
        try:
            if not self.client:
                return {"connected": False, "error": "No client connection"}

            await self.client.ping()
            info = await self.client.info()

            return {
                "connected": True,
                "version": info.get("redis_version", "unknown"),
                "memory_usage": info.get("used_memory_human", "unknown"),
            }

        except Exception as e:
            logger.error("Redis health check failed", error=str(e))
            return {"connected": False, "error": str(e)}

    def require_client(self) -> redis.Redis:
        """Return the live client or fail loudly if connect() was never called."""
        if not self.client:
            raise RuntimeError("Redis connection not established")
        return self.client
