"""
API key gate for the sync control surface.

/sync, /cache and /readings are wrapped in verify_api_key when
API_AUTH_ENABLED is set; /health stays open for liveness probes.
The flag accepts the same spellings as the LECTIO_* switches
(true/1/yes/on). The key travels in the X-API-Key header and is compared
against API_KEY in constant time.
"""

import logging
import os
import secrets
from typing import Optional

from fastapi import HTTPException, Request, Security, status
from fastapi.security import APIKeyHeader

from lectio_sync.infra.settings import _get_env_bool


logger = logging.getLogger(__name__)

API_KEY_HEADER = "X-API-Key"

API_AUTH_ENABLED = _get_env_bool("API_AUTH_ENABLED", False)
API_KEY = os.getenv("API_KEY", "")

if API_AUTH_ENABLED and not API_KEY:
    logger.warning("API_AUTH_ENABLED is set without API_KEY; every protected call will be rejected")

api_key_header = APIKeyHeader(
    name=API_KEY_HEADER,
    auto_error=False,
    description="Sync API key (required when API_AUTH_ENABLED is set)",
)


def _reject(request: Request, detail: str) -> HTTPException:
    logger.warning(f"Rejected {request.method} {request.url.path}: {detail}")
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "ApiKey"},
    )


async def verify_api_key(
    request: Request,
    api_key: Optional[str] = Security(api_key_header),
) -> Optional[str]:
    """
    Router dependency guarding sync triggers, cache admin and readings.

    Returns:
        The accepted key, or None while the gate is disabled

    Raises:
        HTTPException: 401 when the header is missing or does not match
    """
    if not API_AUTH_ENABLED:
        return None

    if not api_key:
        raise _reject(request, f"Missing API key. Provide {API_KEY_HEADER} header.")

    # An empty configured key never matches
    if not API_KEY or not secrets.compare_digest(api_key, API_KEY):
        raise _reject(request, "Invalid API key")

    return api_key
