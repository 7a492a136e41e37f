"""API dependencies for authentication and shared components."""

import hmac
from typing import Annotated

from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from arena.context import AppContext
from arena.utils.security import TokenError, verify_access_token

# HTTP Bearer security scheme
security = HTTPBearer(auto_error=False)


def _auth_error(code: str, message: str, status_code: int = status.HTTP_401_UNAUTHORIZED) -> HTTPException:
    return HTTPException(
        status_code=status_code,
        detail={
            "error": {
                "code": code,
                "message": message,
                "details": {},
            }
        },
        headers={"WWW-Authenticate": "Bearer"} if status_code == status.HTTP_401_UNAUTHORIZED else None,
    )


def get_context(request: Request) -> AppContext:
    """The application context built in the lifespan."""
    context = getattr(request.app.state, "context", None)
    if context is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={
                "error": {
                    "code": "SERVICE_STARTING",
                    "message": "Service is starting up",
                    "details": {},
                }
            },
        )
    return context


Context = Annotated[AppContext, Depends(get_context)]


async def get_current_actor(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    context: Context,
) -> str:
    """Actor id (``sub``) from the bearer token.

    Raises:
        HTTPException: If not authenticated or token invalid
    """
    if not credentials:
        raise _auth_error("AUTH_REQUIRED", "Authentication required")

    try:
        payload = verify_access_token(credentials.credentials, context.settings)
    except TokenError as e:
        raise _auth_error(e.code, e.message)

    actor_id = payload.get("sub")
    if not actor_id:
        raise _auth_error("AUTH_INVALID_TOKEN", "Invalid token payload")
    return str(actor_id)


async def require_admin_key(
    context: Context,
    x_api_key: Annotated[str | None, Header()] = None,
) -> None:
    """Operator endpoints require the ``X-API-Key`` header."""
    if not x_api_key or not hmac.compare_digest(x_api_key, context.settings.admin_api_key):
        raise _auth_error("FORBIDDEN", "Admin access required", status.HTTP_403_FORBIDDEN)


async def require_cron_secret(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    context: Context,
) -> None:
    """The scheduled trigger authenticates with ``Authorization: Bearer <cron_secret>``."""
    if not credentials or not hmac.compare_digest(credentials.credentials, context.settings.cron_secret):
        raise _auth_error("UNAUTHORIZED", "Invalid cron secret")


# Type aliases for cleaner annotations
CurrentActor = Annotated[str, Depends(get_current_actor)]
