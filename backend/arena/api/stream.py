"""Leaderboard push stream over WebSocket.

Endpoint: ``/ws/leaderboard?tournament_day=<key|current>&attempt=<n>``

Frames (server -> client, JSON ``{type, payload, timestamp}``):

    CONNECTED             first frame; carries the reconnect backoff hint
    LEADERBOARD_UPDATED   the day's caches were refreshed; refetch
    TOURNAMENT_ROLLED_OVER  the day ended; ``payload.next`` is the new key
    PING                  heartbeat
    RECONNECT             the server is dropping the stream; retry after
                          ``retry_after_ms``

Clients pass the number of consecutive failed attempts in ``attempt`` so the
hint grows exponentially up to the configured ceiling.
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect, status

from arena.leaderboard.cache_keys import CURRENT
from arena.leaderboard.coordinator import BACKEND_ERRORS
from arena.logging_config import get_logger
from arena.middleware.prometheus import STREAM_CONNECTIONS

logger = get_logger(__name__)
router = APIRouter(tags=["WebSocket"])


def backoff_ms(attempt: int, base_ms: int, max_ms: int) -> int:
    """Exponential reconnect delay: base * 2^attempt, capped at max."""
    attempt = max(0, min(attempt, 16))
    return min(base_ms * (2 ** attempt), max_ms)


def _frame(frame_type: str, **payload: Any) -> dict[str, Any]:
    return {
        "type": frame_type,
        "payload": payload,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


def event_frame(event: dict[str, Any]) -> dict[str, Any]:
    """Re-shape a pub/sub event into a client frame, keeping its publish time."""
    frame = _frame(event["type"])
    frame["payload"] = {"tournament_day": event.get("tournament_day"), **(event.get("data") or {})}
    published_at = event.get("timestamp")
    if isinstance(published_at, (int, float)):
        frame["timestamp"] = datetime.fromtimestamp(published_at, timezone.utc).isoformat()
    return frame


@router.websocket("/ws/leaderboard")
async def leaderboard_stream(
    websocket: WebSocket,
    tournament_day: str | None = Query(None),
    attempt: int = Query(0, ge=0),
) -> None:
    context = getattr(websocket.app.state, "context", None)
    if context is None:
        await websocket.close(code=status.WS_1013_TRY_AGAIN_LATER)
        return

    settings = context.settings
    await websocket.accept()

    day = tournament_day
    if day is None or day == CURRENT:
        day = await context.lifecycle.active_key()
    if day is None:
        await websocket.send_json(_frame(
            "RECONNECT",
            reason="no_active_tournament",
            retry_after_ms=backoff_ms(attempt + 1, settings.stream_reconnect_base_ms, settings.stream_reconnect_max_ms),
        ))
        await websocket.close(code=status.WS_1013_TRY_AGAIN_LATER)
        return

    STREAM_CONNECTIONS.inc()
    logger.info("leaderboard_stream_opened", tournament_day=day, attempt=attempt)
    try:
        await websocket.send_json(_frame(
            "CONNECTED",
            tournament_day=day,
            heartbeat_seconds=settings.stream_heartbeat_seconds,
            reconnect_after_ms=backoff_ms(0, settings.stream_reconnect_base_ms, settings.stream_reconnect_max_ms),
        ))

        last_ping = time.monotonic()
        poll_timeout = min(1.0, settings.stream_heartbeat_seconds)
        async for event in context.publisher.subscribe(day, poll_timeout=poll_timeout):
            if event is not None:
                await websocket.send_json(event_frame(event))
            if time.monotonic() - last_ping >= settings.stream_heartbeat_seconds:
                await websocket.send_json(_frame("PING"))
                last_ping = time.monotonic()

    except WebSocketDisconnect:
        logger.debug("leaderboard_stream_client_closed", tournament_day=day)

    except BACKEND_ERRORS as e:
        retry_after = backoff_ms(attempt + 1, settings.stream_reconnect_base_ms, settings.stream_reconnect_max_ms)
        logger.warning(
            "leaderboard_stream_backend_error",
            tournament_day=day,
            error=str(e),
            retry_after_ms=retry_after,
        )
        try:
            await websocket.send_json(_frame("RECONNECT", reason="backend_unavailable", retry_after_ms=retry_after))
            await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
        except (WebSocketDisconnect, RuntimeError):
            pass

    finally:
        STREAM_CONNECTIONS.dec()
        logger.info("leaderboard_stream_closed", tournament_day=day)
