"""
Authentication dependencies for the clip worker.

Two credentials guard the API:
- WORKER_SECRET: bearer token presented by the scheduler that triggers the worker
- API_KEY: X-API-Key header for enqueue and status routes
"""

import hmac
import logging
from typing import Optional

from fastapi import Header, HTTPException, status

from clipworker.config import get_settings

logger = logging.getLogger(__name__)


async def verify_worker_secret(
    authorization: Optional[str] = Header(None),
) -> None:
    """
    FastAPI dependency to verify the worker bearer token.

    Unlike the API key, the worker secret is mandatory: an unconfigured secret
    disables the worker route instead of opening it.

    Raises:
        HTTPException: 503 if WORKER_SECRET is not configured,
            401 if the token is missing or wrong
    """
    expected = get_settings().worker_secret
    if not expected:
        logger.error("WORKER_SECRET not configured, refusing worker invocation")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Worker secret not configured",
        )

    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not hmac.compare_digest(token.strip(), expected):
        logger.warning("Unauthorized worker invocation")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )


async def verify_api_key(
    x_api_key: Optional[str] = Header(None, alias="X-API-Key"),
) -> None:
    """
    FastAPI dependency to verify the API key.

    If API_KEY is configured, requests must include a matching X-API-Key
    header. If not configured, authentication is skipped (development mode).

    Raises:
        HTTPException: 401 if API key is missing or invalid
    """
    expected_key = get_settings().api_key

    # If no API key configured, skip validation (development mode)
    if not expected_key:
        logger.debug("API_KEY not configured, skipping authentication")
        return

    if not x_api_key:
        logger.warning("Request missing X-API-Key header")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing API key",
            headers={"WWW-Authenticate": "X-API-Key"},
        )

    if x_api_key != expected_key:
        logger.warning("Invalid API key received")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
            headers={"WWW-Authenticate": "X-API-Key"},
        )
