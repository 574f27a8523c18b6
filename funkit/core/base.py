"""Shared plumbing for every decorator.

* :class:`WrappedFunction` – callable object that forwards ``*args``/``**kwargs``
  unchanged and binds like a plain function when stored on a class, so the
  receiver reaches the wrapped function as its first positional argument.
* Argument validation raising :class:`~funkit.errors.InvalidArgumentError`.
* The failure-reporting channel for executions started by a timer.
"""

from __future__ import annotations

import functools
import math
import traceback
import types
from typing import Any, Callable, Dict, Optional, Tuple

from loguru import logger

from funkit.errors import ExecutionFailure, InvalidArgumentError
from funkit.models import FailureReport

FailureHandler = Callable[[ExecutionFailure], Any]


def describe(func: Any) -> str:
    return getattr(func, "__qualname__", None) or getattr(func, "__name__", None) or repr(func)


def ensure_callable(value: Any, name: str) -> None:
    if not callable(value):
        raise InvalidArgumentError(
            f"{name} must be callable, got {type(value).__name__}",
            data={"argument": name, "type": type(value).__name__},
        )


def ensure_wait(wait_ms: Any) -> float:
    """Return *wait_ms* as a float, rejecting bools, NaN/inf and negatives."""
    if isinstance(wait_ms, bool) or not isinstance(wait_ms, (int, float)):
        raise InvalidArgumentError(
            f"wait_ms must be a number of milliseconds, got {type(wait_ms).__name__}",
            data={"argument": "wait_ms", "value": repr(wait_ms)},
        )
    if not math.isfinite(wait_ms) or wait_ms < 0:
        raise InvalidArgumentError(
            f"wait_ms must be a finite, non-negative number, got {wait_ms!r}",
            data={"argument": "wait_ms", "value": repr(wait_ms)},
        )
    return float(wait_ms)


# ---------------------------------------------------------------------------
# Failure reporting
# ---------------------------------------------------------------------------


def log_failure(failure: ExecutionFailure) -> None:
    """Default ``on_error`` policy: log at ERROR with the original traceback and drop."""
    logger.opt(exception=failure.__cause__).error(
        "Scheduled call to {} failed: {}", failure.report.function, failure.report.message
    )


def report_failure(
    func: Callable[..., Any],
    exc: Exception,
    on_error: Optional[FailureHandler] = None,
    *,
    scheduled_for: Optional[float] = None,
) -> ExecutionFailure:
    name = describe(func)
    report = FailureReport(
        function=name,
        error_type=type(exc).__name__,
        message=str(exc),
        details="".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
        scheduled_for=scheduled_for,
    )
    failure = ExecutionFailure(f"Scheduled call to {name} failed", report=report)
    failure.__cause__ = exc

    handler = on_error or log_failure
    try:
        handler(failure)
    except Exception:
        # Never let a broken handler kill the timer thread.
        logger.exception("on_error handler for {} raised while reporting {}", name, report.error_type)
    return failure


def run_scheduled(
    func: Callable[..., Any],
    args: Tuple[Any, ...],
    kwargs: Dict[str, Any],
    *,
    on_error: Optional[FailureHandler] = None,
    scheduled_for: Optional[float] = None,
) -> Tuple[bool, Any]:
    """Run *func* from a timer; return ``(ok, result)`` and route failures to *on_error*."""
    try:
        return True, func(*args, **kwargs)
    except Exception as exc:
        report_failure(func, exc, on_error, scheduled_for=scheduled_for)
        return False, None


# ---------------------------------------------------------------------------
# Wrapper base class
# ---------------------------------------------------------------------------


class WrappedFunction:
    """Callable stand-in for *func* carrying private per-wrapper state."""

    def __init__(self, func: Callable[..., Any]) -> None:
        ensure_callable(func, "func")
        functools.update_wrapper(self, func)

    @property
    def func(self) -> Callable[..., Any]:
        return self.__wrapped__  # type: ignore[attr-defined]

    def __call__(self, *args: Any, **kwargs: Any) -> Any:  # pragma: no cover – interface
        raise NotImplementedError

    def __get__(self, instance: Any, owner: Any = None) -> Any:
        # Bind like a function: the receiver becomes the first positional argument.
        if instance is None:
            return self
        return types.MethodType(self, instance)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} wrapping {describe(self.func)}>"
