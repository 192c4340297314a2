"""
API Routers package.
"""

from . import sync, cache, readings

__all__ = ["sync", "cache", "readings"]
