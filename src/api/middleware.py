"""Admin API key check for FastAPI routes."""

from __future__ import annotations

import hmac

from fastapi import Header, HTTPException, status

from config.settings import get_settings
from src.core.logging import get_logger

log = get_logger(__name__)


async def require_admin_key(
    x_admin_key: str | None = Header(default=None),
) -> str:
    """Verify the ``X-Admin-Key`` header and return the actor name.

    With no key configured (development only; production refuses to start
    without one) every request is accepted as the ``dev`` actor.
    """
    settings = get_settings()
    expected = settings.admin_api_key.get_secret_value()
    if not expected:
        return "dev"

    if not x_admin_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing admin key",
        )
    if not hmac.compare_digest(x_admin_key, expected):
        log.warning("admin_key_rejected")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid admin key",
        )
    return "admin"
