"""JWT verification for player requests.

Access tokens are issued by the identity service; this service only checks
them and reads the actor id from ``sub``. ``create_access_token`` exists for
local tooling and tests.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

from jose import JWTError, jwt

from arena.config import Settings
from arena.logging_config import get_logger

logger = get_logger(__name__)


class TokenError(Exception):
    """Token validation error with specific code."""

    def __init__(self, code: str, message: str):
        self.code = code
        self.message = message
        super().__init__(message)


def create_access_token(
    user_id: str,
    settings: Settings,
    additional_claims: dict[str, Any] | None = None,
    expires_delta: timedelta | None = None,
) -> str:
    """Create a signed access token for ``user_id``."""
    if expires_delta is None:
        expires_delta = timedelta(minutes=settings.jwt_access_token_expire_minutes)

    now = datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "type": "access",
        "iat": now,
        "exp": now + expires_delta,
    }
    if additional_claims:
        payload.update(additional_claims)

    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def verify_access_token(token: str, settings: Settings) -> dict[str, Any]:
    """Verify an access token and return its payload.

    Raises:
        TokenError: TOKEN_EXPIRED for expired tokens, TOKEN_INVALID otherwise
    """
    if not token:
        raise TokenError("TOKEN_INVALID", "Empty token")

    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
            options={"require_exp": True, "require_sub": True, "require_iat": True},
        )
    except jwt.ExpiredSignatureError:
        raise TokenError("TOKEN_EXPIRED", "Token has expired")
    except JWTError as e:
        logger.warning("access_token_rejected", error_type=type(e).__name__)
        raise TokenError("TOKEN_INVALID", "Invalid token")

    if payload.get("type") != "access":
        raise TokenError("TOKEN_INVALID", "Wrong token type")

    return payload
