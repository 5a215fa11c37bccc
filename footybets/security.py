"""Security: rate limiting and bearer-token authentication for cron endpoints."""

import hmac
import logging
from typing import Optional

from fastapi import Header, HTTPException
from slowapi import Limiter
from slowapi.util import get_remote_address

from footybets.config import get_settings

logger = logging.getLogger(__name__)

# Rate limiter using client IP
limiter = Limiter(key_func=get_remote_address)


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Extract the token from "Bearer <token>", or None if malformed."""
    if not authorization:
        return None
    parts = authorization.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    return parts[1].strip()


async def verify_cron_secret(
    authorization: Optional[str] = Header(None, alias="Authorization"),
) -> bool:
    """
    Verify the shared cron secret for /cron/* endpoints.

    SECURITY: fail-closed. An unset CRON_SECRET rejects every request, so a
    misconfigured deploy can't be triggered by anyone.
    """
    expected = get_settings().CRON_SECRET
    if not expected:
        logger.error("CRON_SECRET not configured - blocking cron access")
        raise HTTPException(status_code=401, detail="Unauthorized")

    token = _bearer_token(authorization)
    if token is None or not hmac.compare_digest(token, expected):
        logger.warning("Invalid cron token attempt")
        raise HTTPException(status_code=401, detail="Unauthorized")

    return True


def verify_metrics_token(authorization: Optional[str]) -> Optional[str]:
    """
    Check the optional METRICS_BEARER_TOKEN.

    Returns None when access is allowed, otherwise the reason for rejection.
    """
    expected = get_settings().METRICS_BEARER_TOKEN
    if not expected:
        return None
    if not authorization:
        return "Missing Authorization header"
    token = _bearer_token(authorization)
    if token is None:
        return "Invalid Authorization format"
    if not hmac.compare_digest(token, expected):
        return "Invalid token"
    return None
