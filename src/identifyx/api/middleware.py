"""Middleware: optional bearer-token protection for the JSON API."""

from __future__ import annotations

import logging
import secrets
from typing import TYPE_CHECKING, Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

if TYPE_CHECKING:
    from identifyx.config import Settings

logger = logging.getLogger(__name__)

_bearer_scheme = HTTPBearer(auto_error=False)


def token_matches(expected: str, credentials: HTTPAuthorizationCredentials | None) -> bool:
    if credentials is None:
        return False
    return secrets.compare_digest(credentials.credentials.encode(), expected.encode())


async def verify_api_key(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(_bearer_scheme)],
) -> None:
    """Reject API calls without the configured key.

    With IDENTIFYX_API_KEY unset the API is open, matching the HTML pages.
    Otherwise requests must send 'Authorization: Bearer <key>'.
    """
    settings: Settings = request.app.state.settings
    if settings.api_key is None or token_matches(settings.api_key, credentials):
        return

    logger.warning("Rejected API request to %s: bad or missing API key", request.url.path)
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid or missing API key",
        headers={"WWW-Authenticate": "Bearer"},
    )
