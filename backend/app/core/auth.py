"""Bearer token authentication for FastAPI."""

import uuid

import jwt as pyjwt
import structlog
from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.api.deps import get_auth_service
from app.core.security import decode_access_token
from app.db.models.user import User
from app.services.auth_service import AuthService

logger = structlog.get_logger(__name__)

_bearer_scheme = HTTPBearer(auto_error=False)


def decode_user_id(token: str, request: Request) -> uuid.UUID:
    """Verify a bearer token and return the user id it was issued for.

    Raises ``HTTPException(401)`` on any validation failure.
    """
    settings = request.app.state.settings
    try:
        payload = decode_access_token(token, settings)
    except pyjwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Token not valid")

    try:
        return uuid.UUID(str(payload["id"]))
    except ValueError:
        raise HTTPException(status_code=401, detail="Token not valid")


async def require_auth(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
    auth_service: AuthService = Depends(get_auth_service),
) -> User:
    """FastAPI dependency that resolves the bearer token to an active user.

    Usage::

        @router.get("/protected")
        async def protected(user: User = Depends(require_auth)):
            ...
    """
    if credentials is None:
        raise HTTPException(status_code=401, detail="Missing authorization header")

    user_id = decode_user_id(credentials.credentials, request)

    user = await auth_service.get_user(user_id)
    if user is None:
        raise HTTPException(status_code=401, detail="Token not valid")

    if not user.is_active:
        logger.info("inactive_user_rejected", user_id=str(user_id))
        raise HTTPException(status_code=401, detail="User is inactive, talk with an admin")

    # Set user_id on request state for downstream use (error handlers, audit logging)
    request.state.user_id = str(user.id)

    return user
