"""API key authentication for the admin dashboard endpoints.

Public funnel endpoints are anonymous; everything under /admin requires the
operator key in the x-api-key header.

Note: the key is compared as a SHA256 digest with a constant-time check.
Admin keys are high-entropy random strings, not user-chosen passwords, so a
fast hash is sufficient.
"""
import hashlib
import hmac
from fastapi import HTTPException, Security
from fastapi.security import APIKeyHeader
from typing import Optional

from funnellab.config import get_settings
from funnellab.middleware.logging import get_logger

logger = get_logger()

# API key header
api_key_header = APIKeyHeader(name="x-api-key", auto_error=False)


def hash_api_key(api_key: str) -> str:
    """
    Hash an API key using SHA256.

    Args:
        api_key: Plain text API key

    Returns:
        SHA256 hex digest of the API key
    """
    return hashlib.sha256(api_key.encode()).hexdigest()


def verify_api_key(api_key: str, expected_key: str) -> bool:
    """Constant-time comparison of two keys by their digests."""
    return hmac.compare_digest(hash_api_key(api_key), hash_api_key(expected_key))


async def require_admin(api_key: Optional[str] = Security(api_key_header)) -> str:
    """
    Dependency that rejects requests without the admin API key.

    Usage:
        @router.get("/admin/funnels/campaigns")
        def list_campaigns(_: str = Depends(require_admin)):
            ...

    Raises:
        HTTPException: 401 if API key is invalid or missing
    """
    if not api_key:
        raise HTTPException(
            status_code=401,
            detail="Missing API key",
            headers={"WWW-Authenticate": "ApiKey"}
        )

    if not verify_api_key(api_key, get_settings().admin_api_key):
        logger.warning("admin_auth_failed")
        raise HTTPException(
            status_code=401,
            detail="Invalid API key",
            headers={"WWW-Authenticate": "ApiKey"}
        )

    return api_key
