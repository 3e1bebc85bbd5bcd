"""
API authentication using X-API-KEY header.

WebSocket upgrades cannot carry custom headers from browsers, so the live
endpoint passes the key as an ``api_key`` query parameter and checks it
with ``is_valid_api_key``.
"""

from fastapi import HTTPException, Security, status
from fastapi.security import APIKeyHeader

from src.config.settings import get_settings

# API key header scheme
api_key_header = APIKeyHeader(name="X-API-KEY", auto_error=False)


def is_valid_api_key(api_key: str | None) -> bool:
    """True when the key is configured, or when no keys are configured (dev mode)."""
    valid_keys = get_settings().api_key_list
    if not valid_keys:
        return True
    return api_key is not None and api_key in valid_keys


async def verify_api_key(api_key: str | None = Security(api_key_header)) -> str:
    """
    Verify API key from X-API-KEY header.

    Args:
        api_key: API key from header

    Returns:
        The validated API key

    Raises:
        HTTPException: If API key is missing or invalid
    """
    if not get_settings().api_key_list:
        return "dev-mode"

    if api_key is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing API key. Provide X-API-KEY header.",
        )

    if not is_valid_api_key(api_key):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
        )

    return api_key
