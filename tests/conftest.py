"""Shared test setup."""

import os

# Must be set before crypto_chat_proxy.core.config.get_settings() is first called
os.environ.setdefault("ENVIRONMENT", "test")
