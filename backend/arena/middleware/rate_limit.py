"""Rate limiting middleware.

Applies the GENERAL_API sliding window to every ``/api/v1`` request, keyed
by client IP. Score submission, entries and verification get their own,
stricter windows inside the services.
"""

from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from arena.guards.rate_limit import LimiterClass
from arena.logging_config import get_logger
from arena.utils.json_utils import ORJSONResponse

logger = get_logger(__name__)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Redis-backed general API rate limiting.

    The limiter is looked up on ``app.state.context`` per request, so the
    middleware can be registered before the lifespan builds it. Without a
    context (or with Redis down) requests pass through.
    """

    PROTECTED_PREFIX = "/api/v1"
    SKIP_PREFIXES = ("/api/v1/cron", "/api/v1/admin")

    def __init__(self, app: Callable, limiter_class: LimiterClass = LimiterClass.GENERAL_API):
        super().__init__(app)
        self.limiter_class = limiter_class

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """Check rate limit before processing request."""
        # BaseHTTPMiddleware doesn't handle WebSocket upgrades
        if request.headers.get("upgrade", "").lower() == "websocket":
            return await call_next(request)

        path = request.url.path
        if not path.startswith(self.PROTECTED_PREFIX) or path.startswith(self.SKIP_PREFIXES):
            return await call_next(request)

        context = getattr(request.app.state, "context", None)
        if context is None:
            return await call_next(request)

        client_ip = self._get_client_ip(request)
        result = await context.rate_limiter.check_limit(client_ip, self.limiter_class)

        if not result.allowed:
            logger.warning(
                "rate_limit_exceeded",
                client_ip=client_ip,
                path=path,
                limit=result.limit,
            )
            return ORJSONResponse(
                status_code=429,
                content={
                    "error": {
                        "code": "RATE_LIMIT_EXCEEDED",
                        "message": "Too many requests. Please try again later.",
                        "details": {
                            "limiter": self.limiter_class.value,
                            "limit": result.limit,
                            "retry_after": result.retry_after,
                        },
                    },
                    "traceId": getattr(request.state, "request_id", None),
                },
                headers={"Retry-After": str(result.retry_after)},
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(result.limit)
        response.headers["X-RateLimit-Remaining"] = str(result.remaining)
        response.headers["X-RateLimit-Reset"] = str(int(result.reset_at))
        return response

    def _get_client_ip(self, request: Request) -> str:
        """Extract client IP from request.

        Handles X-Forwarded-For header for reverse proxy setups.
        """
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            # First IP in the chain is the original client
            return forwarded.split(",")[0].strip()
        return request.client.host if request.client else "unknown"
