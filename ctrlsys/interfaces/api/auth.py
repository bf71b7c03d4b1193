"""Static bearer-token check for the control plane API."""

import logging
import secrets
from typing import Iterable, Optional

from fastapi import Header, HTTPException, Request, WebSocket

logger = logging.getLogger(__name__)


def _extract_bearer(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def token_allowed(token: Optional[str], allowed: Iterable[str]) -> bool:
    allowed = list(allowed)
    if not allowed:
        return True
    if not token:
        return False
    return any(secrets.compare_digest(token, candidate) for candidate in allowed)


async def require_api_token(
    request: Request,
    authorization: Optional[str] = Header(None, alias="Authorization"),
) -> None:
    """
    Reject the request unless it carries one of ``app.state.api_tokens``.

    An empty token list disables the check.
    """
    allowed = getattr(request.app.state, "api_tokens", [])
    if not allowed:
        return
    if not authorization:
        logger.warning("[Auth] missing Authorization header on %s", request.url.path)
        raise HTTPException(status_code=401, detail="Authorization header is required")

    token = _extract_bearer(authorization)
    if token is None:
        raise HTTPException(status_code=401, detail="Authorization header must start with 'Bearer '")
    if not token_allowed(token, allowed):
        logger.warning("[Auth] rejected token on %s", request.url.path)
        raise HTTPException(status_code=401, detail="Invalid token")


def websocket_authorized(websocket: WebSocket) -> bool:
    """Header ``Authorization: Bearer …`` or ``?token=…`` (browsers cannot set headers)."""
    allowed = getattr(websocket.app.state, "api_tokens", [])
    token = _extract_bearer(websocket.headers.get("authorization")) or websocket.query_params.get("token")
    return token_allowed(token, allowed)
