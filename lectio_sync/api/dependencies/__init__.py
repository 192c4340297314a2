"""
API Dependencies package.

Cross-cutting concerns like authentication and engine access.
"""

from .auth import verify_api_key, API_AUTH_ENABLED
from .engine import get_engine

__all__ = ["verify_api_key", "API_AUTH_ENABLED", "get_engine"]
