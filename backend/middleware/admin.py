"""
Admin authentication dependency

Admin routes require the X-Admin-Secret header to match ADMIN_SECRET.
With no secret configured the routes answer 503 instead of being open.
"""
import hmac
import logging
from typing import Optional

from fastapi import Depends, Header, HTTPException

from config import Settings, get_settings

logger = logging.getLogger(__name__)


async def require_admin(
    x_admin_secret: Optional[str] = Header(None),
    settings: Settings = Depends(get_settings),
) -> None:
    """
    Raises:
        HTTPException 503 if ADMIN_SECRET is not configured
        HTTPException 401 if the header is missing or wrong
    """
    if not settings.admin_secret:
        logger.warning("[admin] ADMIN_SECRET not configured - admin endpoints disabled")
        raise HTTPException(
            status_code=503,
            detail="Admin endpoints not configured. Set ADMIN_SECRET environment variable to enable.",
        )

    if not x_admin_secret or not hmac.compare_digest(
        x_admin_secret.encode("utf-8"), settings.admin_secret.encode("utf-8")
    ):
        raise HTTPException(status_code=401, detail="Invalid or missing admin secret")
