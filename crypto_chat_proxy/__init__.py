"""Chat completion and crypto price proxy."""

__version__ = "0.1.0"
