"""Prometheus metrics instrumentation and custom metrics.

- HTTP request metrics (latency, count, errors)
- Response cache hit/miss counters
- Write-path rejections by reason
- Rewarm and lifecycle outcomes
- Leaderboard stream connections
"""

from fastapi import FastAPI
from prometheus_client import Counter, Gauge, Histogram, Info
from prometheus_fastapi_instrumentator import Instrumentator, metrics


# =============================================================================
# Custom Metrics
# =============================================================================

APP_INFO = Info("arena_app", "Application information")

CACHE_HITS = Counter(
    "arena_cache_hits_total",
    "Response cache hit count",
    ["cache_type"],  # leaderboard, stats, prizes
)

CACHE_MISSES = Counter(
    "arena_cache_misses_total",
    "Response cache miss count",
    ["cache_type"],
)

LEADERBOARD_READ_SOURCE = Counter(
    "arena_leaderboard_reads_total",
    "Leaderboard reads by serving tier",
    ["source"],  # cache, ranked_store, database
)

SCORE_SUBMISSIONS = Counter(
    "arena_score_submissions_total",
    "Score submissions by outcome",
    ["outcome"],  # accepted, personal_best, invalid, duplicate, rate_limited
)

REWARMS = Counter(
    "arena_cache_rewarms_total",
    "Debounced cache rewarms by outcome",
    ["outcome"],  # ok, failed, timeout
)

REWARM_DURATION = Histogram(
    "arena_cache_rewarm_duration_seconds",
    "Duration of one rewarm pass",
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5],
)

LIFECYCLE_RUNS = Counter(
    "arena_lifecycle_runs_total",
    "ensure_current_tournament outcomes",
    ["outcome"],  # created, reactivated, unchanged, failed
)

STREAM_CONNECTIONS = Gauge(
    "arena_stream_connections",
    "Open leaderboard stream connections",
)


# =============================================================================
# Instrumentator Setup
# =============================================================================

def setup_prometheus(app: FastAPI, app_version: str = "1.0.0") -> Instrumentator:
    """Instrument the app and expose /metrics.

    Args:
        app: FastAPI application instance
        app_version: Application version string

    Returns:
        Configured Instrumentator instance
    """
    APP_INFO.info({
        "version": app_version,
        "app_name": "weekly-arena",
    })

    instrumentator = Instrumentator(
        should_group_status_codes=True,
        should_ignore_untemplated=True,
        should_respect_env_var=True,
        should_instrument_requests_inprogress=True,
        excluded_handlers=["/health", "/health/live", "/health/ready", "/metrics"],
        inprogress_name="arena_http_requests_inprogress",
        inprogress_labels=True,
    )

    instrumentator.add(
        metrics.default(
            metric_namespace="arena",
            metric_subsystem="http",
            latency_highr_buckets=(0.01, 0.025, 0.05, 0.075, 0.1, 0.25, 0.5, 0.75, 1.0, 2.5),
        )
    )

    instrumentator.instrument(app)
    instrumentator.expose(app, endpoint="/metrics", include_in_schema=True, tags=["Monitoring"])

    return instrumentator
