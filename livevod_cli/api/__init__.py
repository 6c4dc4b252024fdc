"""
Live Platform API Layer.

This package handles all communication with the platform's replay API.
"""

from .client import DEFAULT_STREAM_HEADERS, LiveApiClient

__all__ = ["DEFAULT_STREAM_HEADERS", "LiveApiClient"]
