"""Bearer-token dependencies for user routes and the operator-only sweep trigger."""
import hmac
import logging

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from fulfillment.config import Settings, get_settings

logger = logging.getLogger(__name__)

bearer = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_current_user_id(
    credentials: HTTPAuthorizationCredentials = Depends(bearer),
    settings: Settings = Depends(get_settings),
) -> str:
    """Resolve the calling user from an HS256 access token (``sub`` claim)."""
    if credentials is None:
        raise _unauthorized("Missing authorization header")
    try:
        claims = jwt.decode(
            credentials.credentials,
            settings.AUTH_JWT_SECRET,
            algorithms=["HS256"],
            audience=settings.AUTH_JWT_AUDIENCE,
        )
    except jwt.PyJWTError as e:
        logger.info("Rejected access token: %s", e)
        raise _unauthorized("Invalid or expired token")

    user_id = claims.get("sub")
    if not user_id:
        raise _unauthorized("Token has no subject")
    return user_id


def require_scheduler(
    credentials: HTTPAuthorizationCredentials = Depends(bearer),
    settings: Settings = Depends(get_settings),
) -> None:
    """Only the cron caller holding ``SCHEDULER_TOKEN`` may trigger a sweep."""
    if not settings.SCHEDULER_TOKEN:
        logger.error("SCHEDULER_TOKEN not configured, refusing sweep trigger")
        raise _unauthorized("Scheduler token not configured")
    if credentials is None or not hmac.compare_digest(credentials.credentials, settings.SCHEDULER_TOKEN):
        raise _unauthorized("Invalid scheduler token")
