"""FastAPI application entry point.

Weekly arena tournament API: score submission, leaderboards, entry payments,
the scheduled lifecycle trigger and operator endpoints.
"""

import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from arena import __version__
from arena.api import (
    admin_router,
    cron_router,
    leaderboard_router,
    scores_router,
    stream_router,
    tournament_router,
)
from arena.config import get_settings
from arena.context import AppContext
from arena.logging_config import bind_context, clear_context, configure_logging, get_logger
from arena.middleware.prometheus import setup_prometheus
from arena.middleware.rate_limit import RateLimitMiddleware
from arena.middleware.sentry import init_sentry
from arena.utils.errors import ArenaError, ErrorCode, LifecycleError, RateLimitExceededError
from arena.utils.json_utils import ORJSONResponse

settings = get_settings()

configure_logging(
    log_level=settings.log_level,
    json_logs=settings.app_env == "production",
    app_env=settings.app_env,
)
logger = get_logger(__name__)

sentry_enabled = init_sentry(
    dsn=settings.sentry_dsn,
    environment=settings.app_env,
    release=settings.app_version,
    traces_sample_rate=settings.sentry_traces_sample_rate
    if settings.app_env == "production"
    else 0.0,
)
if sentry_enabled:
    logger.info("sentry_initialized")
elif settings.app_env == "production":
    logger.warning("sentry_dsn_missing")


# =============================================================================
# Lifespan Events
# =============================================================================


@asynccontextmanager
async def lifespan(_app: FastAPI):
    """Build the application context on startup, release it on shutdown."""
    logger.info("application_starting", version=__version__)

    owns_context = getattr(_app.state, "context", None) is None
    if owns_context:
        _app.state.context = AppContext.build(settings)
    context: AppContext = _app.state.context

    if not await context.redis.ping():
        # Every Redis consumer degrades to the database path
        logger.warning("redis_unavailable_at_startup")

    if context.warmer is not None:
        await context.warmer.start()

    logger.info("application_started")

    yield

    logger.info("application_stopping")
    try:
        if owns_context:
            await context.close()
            _app.state.context = None
        elif context.warmer is not None:
            await context.warmer.stop()
    except Exception as e:
        logger.error("shutdown_error", error=str(e))
    logger.info("application_stopped")


# =============================================================================
# FastAPI Application
# =============================================================================


app = FastAPI(
    title="Arena Weekly Tournament API",
    version=__version__,
    description="Weekly competitive leaderboard backend",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
    default_response_class=ORJSONResponse,
)

prometheus_instrumentator = setup_prometheus(app, app_version=__version__)


# =============================================================================
# Middleware
# =============================================================================


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Middleware to add X-Request-ID header to all requests and responses."""

    async def dispatch(self, request: Request, call_next):
        # Skip WebSocket upgrade requests - BaseHTTPMiddleware doesn't handle them properly
        if request.headers.get("upgrade", "").lower() == "websocket":
            return await call_next(request)

        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        request.state.start_time = datetime.now(timezone.utc)

        clear_context()
        bind_context(request_id=request_id)

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id

        duration = (datetime.now(timezone.utc) - request.state.start_time).total_seconds()
        logger.info(
            "request_completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_seconds=round(duration, 3),
        )
        return response


# Added first so it runs inside RequestIDMiddleware and sees request.state.request_id
app.add_middleware(RateLimitMiddleware)
app.add_middleware(RequestIDMiddleware)

cors_origins = [origin.strip() for origin in settings.cors_origins.split(",")]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Request-ID", "X-API-Key"],
    expose_headers=["X-Request-ID", "X-RateLimit-Limit", "X-RateLimit-Remaining", "Retry-After"],
)


# =============================================================================
# Error Handlers
# =============================================================================


STATUS_BY_CODE: dict[str, int] = {
    ErrorCode.INVALID_SCORE.value: status.HTTP_400_BAD_REQUEST,
    ErrorCode.INVALID_PAYMENT.value: status.HTTP_400_BAD_REQUEST,
    ErrorCode.INVALID_REQUEST.value: status.HTTP_400_BAD_REQUEST,
    ErrorCode.ENTRY_NOT_FOUND.value: status.HTTP_404_NOT_FOUND,
    ErrorCode.TOURNAMENT_NOT_FOUND.value: status.HTTP_404_NOT_FOUND,
    ErrorCode.DUPLICATE_SUBMISSION.value: status.HTTP_409_CONFLICT,
    ErrorCode.TOURNAMENT_CLOSED.value: status.HTTP_409_CONFLICT,
    ErrorCode.PAYOUT_NOT_ELIGIBLE.value: status.HTTP_409_CONFLICT,
    ErrorCode.RATE_LIMIT_EXCEEDED.value: status.HTTP_429_TOO_MANY_REQUESTS,
    ErrorCode.GRACE_PERIOD.value: status.HTTP_403_FORBIDDEN,
}


def get_request_id(request: Request) -> str:
    """Get request ID from request state or headers."""
    if hasattr(request.state, "request_id"):
        return request.state.request_id
    return request.headers.get("X-Request-ID", str(uuid.uuid4()))


def create_error_response(
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
    trace_id: str | None = None,
) -> dict[str, Any]:
    """Create standardized error response."""
    return {
        "error": {
            "code": code,
            "message": message,
            "details": details or {},
        },
        "traceId": trace_id,
    }


@app.exception_handler(LifecycleError)
async def lifecycle_error_handler(request: Request, exc: LifecycleError) -> ORJSONResponse:
    """Lifecycle faults surface as a generic unavailable state."""
    trace_id = get_request_id(request)
    logger.error(
        "tournament_unavailable",
        code=exc.code,
        message=exc.message,
        details=exc.details,
        trace_id=trace_id,
    )
    return ORJSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content=create_error_response(
            code=ErrorCode.TOURNAMENT_UNAVAILABLE.value,
            message="Tournament is temporarily unavailable",
            trace_id=trace_id,
        ),
    )


@app.exception_handler(ArenaError)
async def arena_error_handler(request: Request, exc: ArenaError) -> ORJSONResponse:
    """Handle write-path rejections and lookup errors."""
    trace_id = get_request_id(request)
    status_code = STATUS_BY_CODE.get(exc.code, status.HTTP_400_BAD_REQUEST)

    headers = None
    if isinstance(exc, RateLimitExceededError):
        headers = {"Retry-After": str(exc.retry_after)}

    logger.info("request_rejected", code=exc.code, message=exc.message, trace_id=trace_id)

    return ORJSONResponse(
        status_code=status_code,
        content=create_error_response(
            code=exc.code,
            message=exc.message,
            details=exc.details,
            trace_id=trace_id,
        ),
        headers=headers,
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> ORJSONResponse:
    """Malformed bodies and query parameters."""
    trace_id = get_request_id(request)
    errors = [
        {"field": ".".join(str(p) for p in err.get("loc", ())), "message": err.get("msg", "")}
        for err in exc.errors()
    ]
    return ORJSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=create_error_response(
            code=ErrorCode.INVALID_REQUEST.value,
            message="Invalid request",
            details={"errors": errors},
            trace_id=trace_id,
        ),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> ORJSONResponse:
    """Handle HTTP exceptions."""
    trace_id = get_request_id(request)

    # Check if detail is already formatted
    if isinstance(exc.detail, dict) and "error" in exc.detail:
        content = dict(exc.detail)
        content["traceId"] = trace_id
    else:
        content = create_error_response(
            code="HTTP_ERROR",
            message=str(exc.detail),
            trace_id=trace_id,
        )

    return ORJSONResponse(
        status_code=exc.status_code,
        content=content,
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception) -> ORJSONResponse:
    """Handle unexpected exceptions."""
    trace_id = get_request_id(request)

    logger.error(
        "unexpected_error",
        error_type=type(exc).__name__,
        error_message=str(exc),
        trace_id=trace_id,
        exc_info=True,
    )

    # Don't expose internal error details in production
    message = "Internal server error"
    if settings.app_debug:
        message = f"{type(exc).__name__}: {exc}"

    return ORJSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=create_error_response(
            code=ErrorCode.INTERNAL_ERROR.value,
            message=message,
            trace_id=trace_id,
        ),
    )


# =============================================================================
# Health Check Endpoints
# =============================================================================


@app.get("/health", tags=["Health"], summary="Health check endpoint")
async def health_check(request: Request) -> dict[str, Any]:
    """Database and Redis connectivity.

    Redis being down degrades the service but does not stop it; reads fall
    back to the database.
    """
    context: AppContext | None = getattr(request.app.state, "context", None)
    health_status: dict[str, Any] = {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": __version__,
        "services": {
            "database": "unknown",
            "redis": "unknown",
        },
    }
    if context is None:
        health_status["status"] = "starting"
        return health_status

    try:
        await context.database.ping()
        health_status["services"]["database"] = "healthy"
    except Exception as e:
        health_status["services"]["database"] = f"unhealthy: {e}"
        health_status["status"] = "unhealthy"
        logger.error("database_health_check_failed", error=str(e))

    if await context.redis.ping():
        health_status["services"]["redis"] = "healthy"
    else:
        health_status["services"]["redis"] = "unhealthy"
        if health_status["status"] == "healthy":
            health_status["status"] = "degraded"

    return health_status


@app.get("/health/live", tags=["Health"], summary="Liveness probe")
async def liveness_probe() -> dict[str, str]:
    return {"status": "alive"}


@app.get("/health/ready", tags=["Health"], summary="Readiness probe")
async def readiness_probe(request: Request):
    """Ready once the context exists and the database answers."""
    context: AppContext | None = getattr(request.app.state, "context", None)
    try:
        if context is None:
            raise RuntimeError("application context not built")
        await context.database.ping()
        return {"status": "ready"}
    except Exception as e:
        logger.error("readiness_probe_failed", error=str(e))
        return ORJSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "not ready", "error": str(e)},
        )


# =============================================================================
# API Routers
# =============================================================================


API_V1_PREFIX = "/api/v1"

app.include_router(scores_router, prefix=API_V1_PREFIX)
app.include_router(leaderboard_router, prefix=API_V1_PREFIX)
app.include_router(tournament_router, prefix=API_V1_PREFIX)
app.include_router(cron_router, prefix=API_V1_PREFIX)
app.include_router(admin_router, prefix=API_V1_PREFIX)

# WebSocket router (no prefix - endpoint is /ws/leaderboard)
app.include_router(stream_router)


@app.get("/", tags=["Root"], summary="API root endpoint")
async def root() -> dict[str, str]:
    return {
        "name": "Arena Weekly Tournament API",
        "version": __version__,
        "docs": "/docs",
        "health": "/health",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "arena.main:app",
        host=settings.app_host,
        port=settings.app_port,
        reload=settings.app_debug,
        log_level=settings.log_level.lower(),
    )
