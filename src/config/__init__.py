"""
Backend configuration from environment variables and .env.

Mock modes for storage, Firebase and the Google AI APIs let the whole
backend run without cloud credentials.
"""

from .settings import Settings, get_settings

__all__ = ["Settings", "get_settings"]
