"""
Rate limiting for API endpoints.

Uses slowapi keyed on the client address. Storage defaults to in-memory;
point RATE_LIMIT_STORAGE_URI at Redis to share limits across instances.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from ...core.config import get_settings

_settings = get_settings()

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[_settings.rate_limit_default],
    storage_uri=_settings.rate_limit_storage_uri,
)
