"""Async utilities for safe task management and bounded awaits."""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Coroutine, TypeVar

from arena.logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


def create_safe_task(
    coro: Coroutine[Any, Any, T],
    *,
    name: str | None = None,
    on_error: Callable[[BaseException], None] | None = None,
) -> asyncio.Task[T]:
    """Create an asyncio task whose failure is logged instead of lost.

    Args:
        coro: The coroutine to run as a task
        name: Optional name for the task (for logging)
        on_error: Optional callback for exception handling

    Returns:
        The created task
    """
    task = asyncio.create_task(coro, name=name)

    def handle_exception(t: asyncio.Task) -> None:
        if t.cancelled():
            return

        exc = t.exception()
        if exc is None:
            return

        logger.error(
            "background_task_failed",
            task=name or "unnamed",
            error_type=type(exc).__name__,
            error=str(exc),
        )

        if on_error:
            try:
                on_error(exc)
            except Exception as handler_exc:
                logger.error("task_error_handler_failed", task=name, error=str(handler_exc))

    task.add_done_callback(handle_exception)
    return task


async def cancel_task_safe(task: asyncio.Task | None, timeout: float = 5.0) -> bool:
    """Cancel a task and wait (bounded) for it to finish.

    Returns:
        True if the task is finished, False if cancellation timed out
    """
    if task is None or task.done():
        return True

    task.cancel()

    try:
        await asyncio.wait_for(asyncio.shield(task), timeout=timeout)
    except asyncio.CancelledError:
        return True
    except asyncio.TimeoutError:
        logger.warning("task_cancel_timeout", timeout=timeout)
        return False
    except Exception as e:
        logger.debug("task_raised_during_cancel", error=str(e))
        return True

    return task.done()

