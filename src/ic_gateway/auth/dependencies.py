"""FastAPI dependencies: get_current_user_id, require_admin.

Usage in any protected router:
    from src.ic_gateway.auth.dependencies import get_current_user_id

    @router.get("/protected")
    async def protected(user_id: str = Depends(get_current_user_id)):
        ...
"""

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from config.settings import settings
from src.ic_common.errors import AdminRequiredError, InvalidCredentialsError
from src.ic_gateway.auth.jwt_handler import decode_access_token

bearer_scheme = HTTPBearer(auto_error=False)

# Reusable 401 exception with WWW-Authenticate header (OAuth2 standard)
_CREDENTIALS_EXCEPTION = HTTPException(
    status_code=status.HTTP_401_UNAUTHORIZED,
    detail="Invalid or expired token",
    headers={"WWW-Authenticate": "Bearer"},
)


async def get_current_user_id(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> str:
    """Return the ``sub`` of a valid Bearer token; HTTP 401 otherwise.

    The user id is also left on request.state for the request log line.
    """
    if credentials is None:
        raise _CREDENTIALS_EXCEPTION
    try:
        payload = decode_access_token(credentials.credentials)
    except InvalidCredentialsError:
        raise _CREDENTIALS_EXCEPTION from None

    user_id = payload.get("sub")
    if not user_id:
        raise _CREDENTIALS_EXCEPTION
    request.state.user_id = user_id
    return user_id


async def require_admin(user_id: str = Depends(get_current_user_id)) -> str:
    """Only users listed in ADMIN_USER_IDS may call operator endpoints."""
    if user_id not in settings.ADMIN_USER_IDS:
        raise AdminRequiredError()
    return user_id
