"""
API dependencies for admin authorization.
"""
import secrets
from typing import Annotated, Optional

from fastapi import Depends, Header, HTTPException, status

from decksync.core.config import settings


async def require_admin_token(
    x_admin_token: Annotated[Optional[str], Header()] = None,
) -> None:
    """
    Check the X-Admin-Token header against the configured admin token.

    Raises HTTPException 503 when no token is configured, 401 when the header
    is missing and 403 when it does not match.
    """
    expected = settings.sync_admin_token
    if not expected:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Admin endpoints are disabled",
        )

    if not x_admin_token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )

    if not secrets.compare_digest(x_admin_token.encode(), expected.encode()):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid admin token",
        )


AdminToken = Annotated[None, Depends(require_admin_token)]
