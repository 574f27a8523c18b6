"""Cancellable timer facility used by the deferred and rate-limited wrappers.

All times are milliseconds on a monotonic clock owned by the scheduler, so a
wrapper never mixes wall-clock and timer time.  Three implementations ship:

* :class:`ThreadScheduler` – default; one daemon ``threading.Timer`` per call.
* :class:`AsyncioScheduler` – ``loop.call_later`` on the running event loop;
  callbacks fire on the loop thread that services the calls.
* :class:`ManualScheduler` – virtual clock advanced by hand; deterministic,
  used by the test-suite and handy for simulations.

Usage::

    from funkit.core.scheduler import ManualScheduler

    clock = ManualScheduler()
    handle = clock.call_later(100, lambda: print("tick"))
    clock.advance(100)  # prints "tick"
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
import threading
import time
from typing import Callable, List, Optional, Protocol, Tuple

from loguru import logger

from funkit.settings import settings


class TimerHandle:
    """Handle to one scheduled callback.

    A handle is either *active*, *cancelled* or *fired*; the transition out of
    *active* happens exactly once, so a callback can never run after a
    successful :meth:`cancel`.
    """

    __slots__ = ("due_at", "_cancel_hook", "_lock", "_state")

    def __init__(self, due_at: float, cancel_hook: Optional[Callable[[], None]] = None) -> None:
        self.due_at = due_at
        self._cancel_hook = cancel_hook
        self._lock = threading.Lock()
        self._state = "active"

    @property
    def active(self) -> bool:
        return self._state == "active"

    @property
    def cancelled(self) -> bool:
        return self._state == "cancelled"

    def cancel(self) -> bool:
        """Prevent the callback from running.  Return *False* if it already ran."""
        with self._lock:
            if self._state != "active":
                return False
            self._state = "cancelled"
        if self._cancel_hook is not None:
            self._cancel_hook()
        return True

    def _claim(self) -> bool:
        """Mark the handle as fired; *False* when it was cancelled first."""
        with self._lock:
            if self._state != "active":
                return False
            self._state = "fired"
            return True

    def __repr__(self) -> str:  # pragma: no cover – debugging aid
        return f"<TimerHandle due_at={self.due_at:.1f} {self._state}>"


def _fire(handle: TimerHandle, callback: Callable[[], None]) -> None:
    if not handle._claim():
        return
    try:
        callback()
    except Exception:
        # Wrappers report their own failures; this only catches bugs in a raw callback.
        logger.exception("Timer callback {} raised", getattr(callback, "__qualname__", callback))


class Scheduler(Protocol):
    """Minimal timer facility every wrapper depends on."""

    def now(self) -> float:  # pragma: no cover – interface
        """Current time in milliseconds."""

    def call_later(self, delay_ms: float, callback: Callable[[], None]) -> TimerHandle:  # pragma: no cover – interface
        """Run *callback* once, no earlier than *delay_ms* from now."""


# ---------------------------------------------------------------------------
# Thread-backed scheduler
# ---------------------------------------------------------------------------


class ThreadScheduler:
    """Fire callbacks from daemon ``threading.Timer`` threads."""

    def now(self) -> float:
        return time.monotonic() * 1000.0

    def call_later(self, delay_ms: float, callback: Callable[[], None]) -> TimerHandle:
        delay_ms = max(0.0, delay_ms)
        timer = threading.Timer(delay_ms / 1000.0, lambda: _fire(handle, callback))
        timer.daemon = True
        handle = TimerHandle(self.now() + delay_ms, cancel_hook=timer.cancel)
        timer.start()
        return handle


# ---------------------------------------------------------------------------
# asyncio-backed scheduler
# ---------------------------------------------------------------------------


class AsyncioScheduler:
    """Fire callbacks from an asyncio event loop.

    When *loop* is *None* the loop running at call time is used, so the
    scheduler must then be driven from inside a coroutine.  Calls are expected
    on the loop thread; use :class:`ThreadScheduler` for multi-threaded callers.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        return self._loop if self._loop is not None else asyncio.get_running_loop()

    def now(self) -> float:
        return self._get_loop().time() * 1000.0

    def call_later(self, delay_ms: float, callback: Callable[[], None]) -> TimerHandle:
        loop = self._get_loop()
        delay_ms = max(0.0, delay_ms)
        timer = loop.call_later(delay_ms / 1000.0, lambda: _fire(handle, callback))
        handle = TimerHandle(loop.time() * 1000.0 + delay_ms, cancel_hook=timer.cancel)
        return handle


# ---------------------------------------------------------------------------
# Virtual-clock scheduler
# ---------------------------------------------------------------------------


class ManualScheduler:
    """Deterministic scheduler whose clock only moves on :meth:`advance`.

    Due callbacks fire in due-time order (FIFO among equal due times) and the
    clock reads exactly the due time while each one runs.  Callbacks scheduled
    while advancing fire in the same pass if they fall inside the target time.
    """

    def __init__(self, start: float = 0.0) -> None:
        self._now = float(start)
        self._queue: List[Tuple[float, int, TimerHandle, Callable[[], None]]] = []
        self._counter = itertools.count()
        self._lock = threading.RLock()

    def now(self) -> float:
        return self._now

    def call_later(self, delay_ms: float, callback: Callable[[], None]) -> TimerHandle:
        with self._lock:
            handle = TimerHandle(self._now + max(0.0, delay_ms))
            heapq.heappush(self._queue, (handle.due_at, next(self._counter), handle, callback))
            return handle

    @property
    def pending(self) -> int:
        """Number of callbacks still waiting to fire."""
        with self._lock:
            return sum(1 for _, _, handle, _ in self._queue if handle.active)

    def advance(self, delta_ms: float) -> int:
        """Move the clock forward by *delta_ms*; return how many callbacks fired."""
        return self.advance_to(self._now + delta_ms)

    def advance_to(self, target: float) -> int:
        """Move the clock to *target*, firing everything due on the way."""
        if target < self._now:
            raise ValueError(f"cannot move clock backwards ({target} < {self._now})")
        fired = 0
        while True:
            with self._lock:
                if not self._queue or self._queue[0][0] > target:
                    break
                due_at, _, handle, callback = heapq.heappop(self._queue)
                self._now = max(self._now, due_at)
            if handle.active:
                _fire(handle, callback)
                fired += 1
        with self._lock:
            self._now = target
        return fired


# ---------------------------------------------------------------------------
# Default scheduler registry
# ---------------------------------------------------------------------------

_default_scheduler: Optional[Scheduler] = None
_default_lock = threading.Lock()


def _build_default() -> Scheduler:
    if settings.DEFAULT_SCHEDULER == "asyncio":
        return AsyncioScheduler()
    return ThreadScheduler()


def get_default_scheduler() -> Scheduler:
    """Get or create the process-wide scheduler used when none is passed."""
    global _default_scheduler
    with _default_lock:
        if _default_scheduler is None:
            _default_scheduler = _build_default()
            logger.debug("Default scheduler initialised: {}", type(_default_scheduler).__name__)
        return _default_scheduler


def set_default_scheduler(scheduler: Optional[Scheduler]) -> Optional[Scheduler]:
    """Install *scheduler* as default (``None`` resets to settings); return the previous one."""
    global _default_scheduler
    with _default_lock:
        previous = _default_scheduler
        _default_scheduler = scheduler
        return previous
