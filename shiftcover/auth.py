import logging

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from shiftcover.errors import AuthenticationError
from shiftcover.identity import AuthUser

logger = logging.getLogger(__name__)

# errors are raised by us so they render as {"error": ...} like every other
security = HTTPBearer(auto_error=False)


async def get_access_token(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> str:
    if credentials is None or not credentials.credentials:
        raise AuthenticationError("Missing auth token")
    return credentials.credentials


async def get_current_user(
    request: Request, token: str = Depends(get_access_token)
) -> AuthUser:
    """Resolve the bearer token to a user through the identity provider"""
    try:
        return request.app.state.identity.get_user(token)
    except AuthenticationError:
        logger.warning("rejected request with an invalid session token")
        raise
