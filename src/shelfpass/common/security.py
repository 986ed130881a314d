"""API key authentication dependencies."""

import hmac

from fastapi import Header, HTTPException


async def require_api_key(
    x_shelfpass_api_key: str = Header(..., alias="X-Shelfpass-Api-Key"),
) -> str:
    """FastAPI dependency that validates the API key from header."""
    from shelfpass.common.config import get_settings

    settings = get_settings()
    if not hmac.compare_digest(x_shelfpass_api_key, settings.api_key):
        raise HTTPException(status_code=403, detail="Invalid API key")
    return x_shelfpass_api_key
