"""Fire-and-forget deferred invocation."""

from __future__ import annotations

from typing import Any, Callable

from loguru import logger

from funkit.core.base import describe, ensure_callable, ensure_wait, run_scheduled
from funkit.core.scheduler import TimerHandle, get_default_scheduler


def delay(func: Callable[..., Any], wait_ms: float, *args: Any, **kwargs: Any) -> TimerHandle:
    """Call ``func(*args, **kwargs)`` once, no earlier than *wait_ms* from now.

    Returns immediately with the :class:`TimerHandle`; callers that do not need
    to cancel can ignore it.  The call is always unbound: *func* receives
    exactly the given arguments, so pass a bound method to target an object.
    A failure in *func* is logged with its traceback and dropped.

    Example::

        delay(print, 500, "a", "b")  # prints "a b" after ~500ms
    """
    ensure_callable(func, "func")
    wait = ensure_wait(wait_ms)
    scheduler = get_default_scheduler()
    # Fixed before arming: a thread timer may fire before call_later returns.
    due_at = scheduler.now() + wait

    def _run() -> None:
        run_scheduled(func, args, kwargs, scheduled_for=due_at)

    handle = scheduler.call_later(wait, _run)
    logger.debug("delay: {} scheduled in {} ms", describe(func), wait)
    return handle
