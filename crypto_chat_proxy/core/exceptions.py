"""
Custom exception hierarchy for error categorization and HTTP status mapping.

Distinguishes:
- User errors (400): client sent bad data
- Upstream errors: a third-party API (chat completion, CoinMarketCap) failed
- Server errors (500/503): retries exhausted or data not ready yet

Usage:
    from crypto_chat_proxy.core.exceptions import UpstreamError

    raise UpstreamError("Chat completion timed out", service="kluster")
"""

from typing import Any


class AppError(Exception):
    """
    Base application error with HTTP status mapping.

    All custom exceptions inherit from this to enable consistent error handling.
    """

    status_code: int = 500
    error_type: str = "internal_error"

    def __init__(self, message: str, **context: Any):
        """
        Initialize error with message and optional context.

        Args:
            message: Human-readable error description
            **context: Additional key-value pairs for logging (e.g., session_id)
        """
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict for JSON response and structured logging."""
        return {
            "error_type": self.error_type,
            "message": self.message,
            "status_code": self.status_code,
            **self.context,
        }


# ===== 400-level: Client Errors =====


class ValidationError(AppError):
    """User provided invalid input (e.g., missing or empty chat message)."""

    status_code = 400
    error_type = "validation_error"


# ===== External Service Errors =====


class UpstreamError(AppError):
    """
    Third-party API failed: timeout, transport error, non-2xx, malformed body.

    Transient by nature. The chat pipeline may retry it; the price refresher
    waits for its next scheduled tick.
    """

    status_code = 502
    error_type = "upstream_error"

    def __init__(self, message: str, service: str, **context: Any):
        """
        Initialize with service name for easier debugging.

        Args:
            message: Error description
            service: Service identifier (e.g., "kluster", "coinmarketcap")
            **context: Additional context (e.g., attempt, status_code)
        """
        super().__init__(message, service=service, **context)


# ===== 500-level: Server Errors =====


class ServiceUnavailableError(AppError):
    """
    Chat completion could not be obtained (retries exhausted or job failed).

    The message is generic and safe to show to callers; upstream detail goes
    to the logs only.
    """

    status_code = 500
    error_type = "service_unavailable"

    def __init__(
        self,
        message: str = "The AI is currently unavailable. Please try again later.",
        **context: Any,
    ):
        super().__init__(message, **context)


class PricesUnavailableError(AppError):
    """No price snapshot has been fetched yet."""

    status_code = 503
    error_type = "prices_unavailable"

    def __init__(self, message: str = "Crypto prices not available yet", **context: Any):
        super().__init__(message, **context)


class ConfigurationError(AppError):
    """
    Application misconfigured (e.g., missing API key, unknown executor).

    Should be caught during startup, not during request handling.
    """

    status_code = 500
    error_type = "configuration_error"
