"""Single-shot wrappers: ``once`` and ``memoize``.

Both run the wrapped function synchronously on the caller's thread; failures
propagate unchanged and are never cached.
"""

from __future__ import annotations

import functools
import threading
from typing import Any, Callable, Optional

from loguru import logger

from funkit.core.base import WrappedFunction, describe
from funkit.core.state import MISSING, MemoState
from funkit.errors import InvalidArgumentError


class OnceFunction(WrappedFunction):
    """Run *func* on the first call only; every later call returns that result.

    The claim is atomic: concurrent first calls block on the lock and then
    observe the stored result.  A call re-entering from inside *func* returns
    the (still unset) result instead of recursing.  If the first run raises,
    nothing is stored and the next call tries again.
    """

    def __init__(self, func: Callable[..., Any]) -> None:
        super().__init__(func)
        self._lock = threading.RLock()
        self._claimed = False
        self._called = False
        self._result: Any = None

    @property
    def called(self) -> bool:
        return self._called

    def __call__(self, *args: Any, **kwargs: Any) -> Any:
        with self._lock:
            if self._claimed:
                return self._result
            self._claimed = True
            try:
                result = self.func(*args, **kwargs)
            except BaseException:
                self._claimed = False
                raise
            self._result = result
            self._called = True
            logger.debug("once: {} executed, result fixed", describe(self.func))
            return result


class MemoizedFunction(WrappedFunction):
    """Return the cached result when called again with equal arguments.

    Only the latest argument set is remembered unless *maxsize* says
    otherwise.  Keys compare by value (``==``) and include the receiver when
    the wrapper is used as a method, so arguments need not be hashable.
    """

    def __init__(self, func: Callable[..., Any], maxsize: Optional[int] = 1) -> None:
        super().__init__(func)
        if maxsize is not None and (isinstance(maxsize, bool) or not isinstance(maxsize, int) or maxsize < 1):
            raise InvalidArgumentError(
                f"maxsize must be a positive int or None, got {maxsize!r}",
                data={"argument": "maxsize", "value": repr(maxsize)},
            )
        self._state = MemoState(maxsize=maxsize)
        self._lock = threading.RLock()

    @property
    def maxsize(self) -> Optional[int]:
        return self._state.maxsize

    def cache_clear(self) -> None:
        with self._lock:
            self._state.clear()

    def __call__(self, *args: Any, **kwargs: Any) -> Any:
        key = (args, tuple(sorted(kwargs.items())))
        with self._lock:
            cached = self._state.lookup(key)
            if cached is not MISSING:
                return cached
            result = self.func(*args, **kwargs)
            self._state.store(key, result)
            return result


def once(func: Callable[..., Any]) -> OnceFunction:
    """Return a wrapper that runs *func* at most once and then replays its result."""
    return OnceFunction(func)


def memoize(func: Optional[Callable[..., Any]] = None, *, maxsize: Optional[int] = 1):
    """Cache *func* by argument value.

    Usable bare (``@memoize``) or with options (``@memoize(maxsize=32)``).
    """
    if func is None:
        return functools.partial(MemoizedFunction, maxsize=maxsize)
    return MemoizedFunction(func, maxsize=maxsize)
