"""
Identity provider adapter.

The identity provider is external: it issues a signed JWT per session and
its ``sub`` claim is the stable user id. This module only verifies the token
and hands the uid to the routes.
"""

from typing import Optional

from fastapi import Depends, HTTPException, WebSocket, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from chatsync.core.config import settings
from chatsync.core.logging import get_logger

logger = get_logger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def decode_user_id(token: str) -> str:
    """
    Verify ``token`` and return its subject.

    Raises:
        HTTPException: 401 if the token is invalid, expired or has no subject
    """
    options = {"verify_aud": bool(settings.AUTH_AUDIENCE)}
    try:
        claims = jwt.decode(
            token,
            settings.AUTH_SECRET,
            algorithms=[settings.AUTH_ALGORITHM],
            audience=settings.AUTH_AUDIENCE or None,
            options=options,
        )
    except JWTError as e:
        logger.warning("Token validation failed: %s", e)
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid token")

    uid = claims.get("sub")
    if not uid:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Token has no subject")
    return uid


async def get_current_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> str:
    """
    Current authenticated user id.
    Use as dependency for protected endpoints.
    """
    if credentials is None:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Not authenticated")
    return decode_user_id(credentials.credentials)


def websocket_user_id(websocket: WebSocket) -> Optional[str]:
    """Resolve the uid from the ``token`` query parameter, or None."""
    token = websocket.query_params.get("token")
    if not token:
        return None
    try:
        return decode_user_id(token)
    except HTTPException:
        return None
