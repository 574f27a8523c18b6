"""Rate-limited invocation: ``throttle`` and ``queue``.

Both wrappers keep an :class:`~funkit.core.state.InvocationState` and allow
one execution start per *wait_ms* window.  They differ in what happens to a
call that arrives while the window is still open:

* ``throttle`` keeps at most one trailing call, fired when the window closes
  with the arguments of the call that claimed the slot.  Calls arriving while
  that slot is taken are dropped.
* ``queue`` never drops: each call gets its own timer, spaced *wait_ms* after
  the previous slot, and the queued calls run strictly in arrival order.

Callers always get a value back synchronously: the fresh result when the call
ran immediately, otherwise the result of the last *completed* run.

Pending timers hold only a weak reference to their wrapper, and a finalizer
cancels them when the wrapper is garbage-collected, so nothing fires after
the wrapper is gone.
"""

from __future__ import annotations

import functools
import threading
import weakref
from typing import Any, Callable, Deque, Optional

from loguru import logger

from funkit.core.base import FailureHandler, WrappedFunction, describe, ensure_callable, ensure_wait, run_scheduled
from funkit.core.scheduler import Scheduler, get_default_scheduler
from funkit.core.state import InvocationState, ScheduledCall
from funkit.errors import InvalidArgumentError, QueueFullError
from funkit.models import InvocationSnapshot
from funkit.settings import settings

_UNSET: Any = object()


def _cancel_pending(pending: Deque[ScheduledCall]) -> int:
    dropped = 0
    while pending:
        call = pending.popleft()
        if call.handle is not None:
            call.handle.cancel()
        dropped += 1
    return dropped


def _on_timer(ref: "weakref.ReferenceType[RateLimitedFunction]", call: ScheduledCall) -> None:
    wrapper = ref()
    if wrapper is not None:
        wrapper._run_scheduled(call)


class RateLimitedFunction(WrappedFunction):
    """Common bookkeeping for :class:`ThrottledFunction` and :class:`QueuedFunction`."""

    kind = "rate-limited"

    def __init__(
        self,
        func: Callable[..., Any],
        wait_ms: float,
        *,
        scheduler: Optional[Scheduler] = None,
        on_error: Optional[FailureHandler] = None,
    ) -> None:
        super().__init__(func)
        self.wait_ms = ensure_wait(wait_ms)
        if on_error is not None:
            ensure_callable(on_error, "on_error")
        self._scheduler = scheduler if scheduler is not None else get_default_scheduler()
        self._on_error = on_error
        self._state = InvocationState()
        self._lock = threading.RLock()  # guards _state
        self._exec_lock = threading.RLock()  # serialises runs of func
        self._finalizer = weakref.finalize(self, _cancel_pending, self._state.pending)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------
    @property
    def last_result(self) -> Any:
        with self._lock:
            return self._state.last_result

    def snapshot(self) -> InvocationSnapshot:
        with self._lock:
            state = self._state
            return InvocationSnapshot(
                function=describe(self.func),
                phase=state.phase(self._scheduler.now(), self.wait_ms),
                wait_ms=self.wait_ms,
                last_fired_at=state.last_fired_at,
                pending=len(state.pending),
                executions=state.executions,
                absorbed=state.absorbed,
            )

    def cancel(self) -> int:
        """Drop every scheduled execution; return how many were dropped.

        The window is rewound to the last slot that actually started, so the
        next call is paced from real history rather than from cancelled slots.
        """
        with self._lock:
            pending = self._state.pending
            if pending:
                self._state.last_fired_at = pending[0].due_at - self.wait_ms
            dropped = _cancel_pending(pending)
            self._state.generation += 1
        if dropped:
            logger.debug("{}: {} cancelled {} pending call(s)", self.kind, describe(self.func), dropped)
        return dropped

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------
    def _run_now(self, args: tuple, kwargs: dict) -> Any:
        with self._exec_lock:
            try:
                result = self.func(*args, **kwargs)
            finally:
                with self._lock:
                    self._state.executions += 1
            with self._lock:
                self._state.last_result = result
        return result

    def _schedule(self, args: tuple, kwargs: dict, due_at: float, now: float) -> ScheduledCall:
        """Append a pending call and arm its timer.  Caller holds ``_lock``."""
        call = ScheduledCall(args=args, kwargs=kwargs, due_at=due_at, generation=self._state.generation)
        self._state.pending.append(call)
        call.handle = self._scheduler.call_later(due_at - now, functools.partial(_on_timer, weakref.ref(self), call))
        return call

    def _claim_slot(self, call: ScheduledCall) -> None:
        """Bookkeeping for a timer-started run, done before func executes.  Caller holds ``_lock``."""

    def _run_scheduled(self, fired: ScheduledCall) -> None:
        with self._exec_lock:
            with self._lock:
                pending = self._state.pending
                # Stale timer from before cancel(), or nothing left to run.
                if fired.generation != self._state.generation or not pending:
                    return
                # Each firing runs the oldest call, whichever timer fired.
                call = pending.popleft()
                self._claim_slot(call)
            ok, result = run_scheduled(
                self.func, call.args, call.kwargs, on_error=self._on_error, scheduled_for=call.due_at
            )
            with self._lock:
                self._state.executions += 1
                if ok:
                    self._state.last_result = result


class ThrottledFunction(RateLimitedFunction):
    """At most one execution start per window; extra calls are dropped."""

    kind = "throttle"

    def __call__(self, *args: Any, **kwargs: Any) -> Any:
        with self._lock:
            state = self._state
            now = self._scheduler.now()
            if state.pending:
                state.absorbed += 1
                logger.debug("throttle: {} absorbed, trailing call already scheduled", describe(self.func))
                return state.last_result
            if not state.window_elapsed(now, self.wait_ms):
                call = self._schedule(args, kwargs, state.last_fired_at + self.wait_ms, now)
                logger.debug("throttle: {} trailing call scheduled for {:.1f}", describe(self.func), call.due_at)
                return state.last_result
            state.last_fired_at = now
        logger.debug("throttle: {} executed immediately", describe(self.func))
        return self._run_now(args, kwargs)

    def _claim_slot(self, call: ScheduledCall) -> None:
        # The trailing run opens a fresh window starting now.
        self._state.last_fired_at = self._scheduler.now()


class QueuedFunction(RateLimitedFunction):
    """Defer calls to the next free slot instead of dropping them."""

    kind = "queue"

    def __init__(
        self,
        func: Callable[..., Any],
        wait_ms: float,
        *,
        scheduler: Optional[Scheduler] = None,
        on_error: Optional[FailureHandler] = None,
        max_pending: Optional[int] = _UNSET,
    ) -> None:
        super().__init__(func, wait_ms, scheduler=scheduler, on_error=on_error)
        if max_pending is _UNSET:
            max_pending = settings.QUEUE_MAX_PENDING
        if max_pending is not None and (isinstance(max_pending, bool) or not isinstance(max_pending, int) or max_pending < 1):
            raise InvalidArgumentError(
                f"max_pending must be a positive int or None, got {max_pending!r}",
                data={"argument": "max_pending", "value": repr(max_pending)},
            )
        self.max_pending = max_pending

    def __call__(self, *args: Any, **kwargs: Any) -> Any:
        with self._lock:
            state = self._state
            now = self._scheduler.now()
            if not state.pending and state.window_elapsed(now, self.wait_ms):
                state.last_fired_at = now
            else:
                if self.max_pending is not None and len(state.pending) >= self.max_pending:
                    raise QueueFullError(
                        f"{describe(self.func)} already has {len(state.pending)} queued call(s)",
                        data={"function": describe(self.func), "max_pending": self.max_pending},
                    )
                # Advance the slot so back-to-back calls space out by wait_ms.
                state.last_fired_at += self.wait_ms
                call = self._schedule(args, kwargs, state.last_fired_at, now)
                logger.debug(
                    "queue: {} queued for {:.1f} ({} pending)", describe(self.func), call.due_at, len(state.pending)
                )
                return state.last_result
        logger.debug("queue: {} executed immediately", describe(self.func))
        return self._run_now(args, kwargs)


def _decorator(cls, func, wait_ms, **options):
    if func is not None:
        ensure_callable(func, "func")
    if wait_ms is None:
        raise InvalidArgumentError("wait_ms is required", data={"argument": "wait_ms"})
    if func is None:
        ensure_wait(wait_ms)
        return functools.partial(cls, wait_ms=wait_ms, **options)
    return cls(func, wait_ms, **options)


def throttle(
    func: Optional[Callable[..., Any]] = None,
    wait_ms: Optional[float] = None,
    *,
    scheduler: Optional[Scheduler] = None,
    on_error: Optional[FailureHandler] = None,
):
    """Run *func* at most once per *wait_ms*, keeping a single trailing call.

    ``throttle(fn, 100)`` wraps directly; ``@throttle(wait_ms=100)`` works as a
    decorator factory.
    """
    return _decorator(ThrottledFunction, func, wait_ms, scheduler=scheduler, on_error=on_error)


def queue(
    func: Optional[Callable[..., Any]] = None,
    wait_ms: Optional[float] = None,
    *,
    scheduler: Optional[Scheduler] = None,
    on_error: Optional[FailureHandler] = None,
    max_pending: Optional[int] = _UNSET,
):
    """Run every call to *func*, spacing executions at least *wait_ms* apart.

    Calls beyond *max_pending* (default ``settings.QUEUE_MAX_PENDING``) raise
    :class:`~funkit.errors.QueueFullError`; pass ``None`` for no cap.
    """
    return _decorator(
        QueuedFunction, func, wait_ms, scheduler=scheduler, on_error=on_error, max_pending=max_pending
    )
