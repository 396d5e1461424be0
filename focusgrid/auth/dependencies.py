"""FastAPI dependencies for authentication and job authorization."""

import hmac
import logging
import os
from typing import Optional
from fastapi import Depends, HTTPException, Header, WebSocket, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from focusgrid.auth.jwt import get_user_id_from_token

logger = logging.getLogger(__name__)

# HTTP Bearer token security scheme
security = HTTPBearer(auto_error=False)

SCHEDULER_MARKER_HEADER = "X-Scheduler-Cron"


def _secret_matches(candidate: Optional[str], secret: str) -> bool:
    return bool(candidate) and hmac.compare_digest(candidate.encode(), secret.encode())


def _unauthorized(detail: str = "Unauthorized") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_current_user_id(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> str:
    """Owner ID from the bearer JWT.

    Raises:
        HTTPException: 401 if the token is missing, invalid or expired
    """
    if not credentials:
        raise _unauthorized("Not authenticated")
    user_id = get_user_id_from_token(credentials.credentials)
    if not user_id:
        raise _unauthorized("Invalid or expired token")
    return user_id


def require_cron_authorization(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    scheduler_marker: str = Header(default="", alias=SCHEDULER_MARKER_HEADER),
) -> None:
    """Allow the scheduled job trigger.

    Accepted: the scheduler-origin marker header, or a bearer equal to
    CRON_SECRET. Without CRON_SECRET only the marker is accepted.
    """
    if scheduler_marker:
        return
    secret = os.getenv("CRON_SECRET")
    if secret and credentials and _secret_matches(credentials.credentials, secret):
        return
    logger.warning("Rejected unauthorized cron trigger")
    raise _unauthorized()


def require_internal_secret(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    x_api_key: str = Header(default="", alias="X-API-Key"),
) -> None:
    """Allow internal callers presenting INTERNAL_API_SECRET (bearer or X-API-Key).

    Without a configured secret every call is rejected.
    """
    secret = os.getenv("INTERNAL_API_SECRET")
    if secret:
        bearer = credentials.credentials if credentials else None
        if _secret_matches(bearer, secret) or _secret_matches(x_api_key, secret):
            return
    logger.warning("Rejected unauthorized internal API call")
    raise _unauthorized()


def get_websocket_user_id(websocket: WebSocket, token: Optional[str] = None) -> Optional[str]:
    """Owner ID for a WebSocket client, or None if it is not authenticated.

    The bearer JWT is read from the Authorization header, or from the `token`
    query parameter for clients that cannot set handshake headers.
    """
    scheme, _, credentials = websocket.headers.get("authorization", "").partition(" ")
    if scheme.lower() != "bearer" or not credentials:
        credentials = token
    if not credentials:
        logger.warning("No token provided for change stream")
        return None
    user_id = get_user_id_from_token(credentials)
    if not user_id:
        logger.warning("Change stream token verification failed")
    return user_id
