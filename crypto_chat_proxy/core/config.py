"""
Application configuration using Pydantic Settings.

Values come from environment variables (highest priority) or a local .env
file. Credentials have no defaults and must be supplied by the deployment.
"""

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    environment: Literal["development", "test", "production"] = "development"
    port: int = 3000

    # CORS / rate limiting
    cors_origins: list[str] = ["*"]
    rate_limit_default: str = "500 per 15 minutes"
    rate_limit_storage_uri: str = "memory://"

    # Upstream chat completion API (OpenAI-compatible)
    kluster_api_key: str = ""
    kluster_base_url: str = "https://api.kluster.ai/v1"
    chat_model: str = "klusterai/Meta-Llama-3.3-70B-Instruct-Turbo"
    chat_temperature: float = 0.7
    chat_top_p: float = 0.9
    chat_max_completion_tokens: int = 1000
    chat_timeout_seconds: float = 10.0

    # Chat pipeline
    chat_executor: Literal["inline", "queued"] = "inline"
    chat_max_attempts: int = 3
    chat_retry_delay_seconds: float = 2.0
    chat_queue_result_timeout_seconds: float = 60.0
    embedded_worker: bool = True  # run a completion worker inside the API process
    default_session_id: str = "default-session"
    require_session_id: bool = False

    # Session store
    session_max_messages: int = 50
    session_ttl_minutes: int = 60
    session_cleanup_interval_seconds: int = 60

    # Optional Redis broker for the queued executor
    redis_url: str | None = None

    # CoinMarketCap price cache
    cmc_api_key: str = ""
    cmc_base_url: str = "https://pro-api.coinmarketcap.com"
    price_refresh_interval_seconds: int = 300
    price_timeout_seconds: float = 10.0

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment == "development"

    @property
    def uses_queue(self) -> bool:
        """Whether chat completions go through the job queue."""
        return self.chat_executor == "queued"


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
