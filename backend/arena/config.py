"""Application configuration."""
from datetime import time
from functools import lru_cache

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings."""

    # App
    app_env: str = "development"
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    app_debug: bool = True
    app_version: str = "1.0.0"
    log_level: str = "DEBUG"

    # Database - required
    database_url: str = Field(
        ...,
        description="Database connection URL (required)",
    )
    db_pool_size: int = Field(
        default=20,
        description="DB connection pool size",
    )
    db_max_overflow: int = Field(
        default=10,
        description="Max overflow connections",
    )
    db_echo: bool = Field(
        default=False,
        description="Echo SQL statements (debugging only)",
    )

    # Redis - required
    redis_url: str = Field(
        ...,
        description="Redis connection URL (required)",
    )
    redis_max_connections: int = Field(
        default=50,
        description="Redis max connections",
    )
    redis_socket_timeout: float = Field(
        default=3.0,
        description="Redis socket timeout in seconds",
    )
    redis_socket_connect_timeout: float = Field(
        default=3.0,
        description="Redis socket connect timeout in seconds",
    )
    redis_health_check_interval: int = Field(
        default=30,
        description="Redis health check interval in seconds",
    )

    # JWT (tokens are issued by the identity service, only verified here)
    jwt_secret_key: str = Field(
        ...,
        description="JWT secret key (required, minimum 32 characters)",
    )
    jwt_algorithm: str = "HS256"
    jwt_access_token_expire_minutes: int = 30

    # Privileged callers
    admin_api_key: str = Field(
        ...,
        description="API key for operator endpoints (X-API-Key header, required)",
    )
    cron_secret: str = Field(
        ...,
        description="Bearer secret for the scheduled lifecycle trigger (required)",
    )

    # Sentry
    sentry_dsn: str | None = Field(
        default=None,
        description="Sentry DSN for error tracking",
    )
    sentry_traces_sample_rate: float = Field(
        default=0.05,
        description="Sentry transaction sampling rate (0.0-1.0)",
    )

    # CORS
    cors_origins: str = "http://localhost:3000"

    # Tournament cycle
    cycle_boundary_weekday: int = Field(
        default=6,
        ge=0,
        le=6,
        description="Weekday of the cycle boundary (Monday=0, Sunday=6)",
    )
    cycle_boundary_time: time = Field(
        default=time(15, 30),
        description="Time of day (UTC) of the cycle boundary",
    )
    grace_period_minutes: int = Field(
        default=30,
        description="Window before the boundary during which entries are rejected",
    )
    ranked_store_ttl_margin_hours: int = Field(
        default=24,
        description="Extra lifetime of ranked store keys beyond the cycle length",
    )

    # Response cache
    cache_leaderboard_ttl_seconds: int = Field(
        default=15,
        description="TTL of cached leaderboard pages",
    )
    cache_stats_ttl_seconds: int = Field(
        default=180,
        description="TTL of cached tournament stats",
    )
    cache_prizes_ttl_seconds: int = Field(
        default=180,
        description="TTL of cached prize breakdowns",
    )
    cache_no_tournament_ttl_seconds: int = Field(
        default=300,
        description="TTL of the cached 'no active tournament' answer",
    )
    cache_op_timeout_seconds: float = Field(
        default=3.0,
        description="Upper bound for a single cache operation",
    )
    cache_rewarm_timeout_seconds: float = Field(
        default=5.0,
        description="Upper bound for one rewarm pass",
    )
    cache_warm_interval_seconds: int = Field(
        default=120,
        description="Background warm loop interval (0 disables the loop)",
    )

    # Rewarm debounce
    rewarm_burst_threshold_seconds: float = Field(
        default=2.0,
        description="Invalidations closer together than this count as a burst",
    )
    rewarm_quiet_period_seconds: float = Field(
        default=1.0,
        description="Quiet period before rewarm when invalidations are sparse",
    )
    rewarm_burst_quiet_period_seconds: float = Field(
        default=5.0,
        description="Quiet period before rewarm during a burst",
    )

    # Write-path guards
    idempotency_ttl_seconds: int = Field(
        default=300,
        description="Lifetime of idempotency markers",
    )
    rate_limit_score_per_minute: int = 10
    rate_limit_entry_per_minute: int = 5
    rate_limit_verification_per_minute: int = 3
    rate_limit_api_per_minute: int = 30
    rate_limit_window_seconds: int = 60

    # Lifecycle lock
    lifecycle_lock_timeout_ms: int = Field(
        default=30000,
        description="Auto-expiry of the lifecycle lock",
    )
    lifecycle_lock_wait_ms: int = Field(
        default=10000,
        description="How long a trigger waits for the lifecycle lock",
    )

    # Leaderboard stream
    stream_heartbeat_seconds: float = Field(
        default=15.0,
        description="Interval between PING frames on the leaderboard stream",
    )
    stream_reconnect_base_ms: int = 1000
    stream_reconnect_max_ms: int = 30000

    # Celery
    celery_broker_url: str | None = Field(
        default=None,
        description="Celery broker URL (defaults to redis_url)",
    )

    @field_validator("jwt_secret_key")
    @classmethod
    def validate_jwt_secret_key(cls, v: str) -> str:
        """Validate JWT secret key length."""
        if len(v) < 32:
            raise ValueError(
                "jwt_secret_key must be at least 32 characters long"
            )
        return v

    @field_validator("admin_api_key", "cron_secret")
    @classmethod
    def validate_shared_secret(cls, v: str) -> str:
        """Validate operator secrets strength."""
        if len(v) < 16:
            raise ValueError("operator secrets must be at least 16 characters long")
        return v

    @model_validator(mode="after")
    def validate_production_settings(self) -> "Settings":
        """Validate settings for production environment."""
        if self.app_env == "production":
            if self.app_debug:
                raise ValueError(
                    "app_debug must be False in production environment"
                )

            origins = [o.strip() for o in self.cors_origins.split(",")]
            if "*" in origins:
                raise ValueError(
                    "CORS wildcard '*' is not allowed in production environment. "
                    "Specify explicit allowed origins."
                )

        if self.rewarm_burst_quiet_period_seconds < self.rewarm_quiet_period_seconds:
            raise ValueError(
                "rewarm_burst_quiet_period_seconds must not be shorter than "
                "rewarm_quiet_period_seconds"
            )

        return self

    model_config = {
        "env_file": ".env",
        "extra": "ignore",
    }


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
