"""Explicit per-wrapper state.

Every decorator owns exactly one of these structs; nothing here is shared
between wrappers.  Initial values mean "no prior call, nothing pending".

Transition table for the rate-limited wrappers (``throttle`` / ``queue``)::

    phase       event                         next phase
    ---------   ---------------------------   -----------------------------
    IDLE        call                          EXECUTED   (F runs now)
    EXECUTED    call, window open (throttle)  SCHEDULED  (one trailing slot)
    EXECUTED    call, window open (queue)     SCHEDULED  (one timer per call)
    SCHEDULED   call (throttle)               SCHEDULED  (absorbed)
    SCHEDULED   call (queue)                  SCHEDULED  (appended)
    SCHEDULED   timer fires, nothing left     EXECUTED   (fresh window)
    EXECUTED    wait_ms elapses               IDLE
    any         cancel()                      EXECUTED / IDLE
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Deque, Dict, List, Optional, Tuple

from funkit.core.scheduler import TimerHandle


class Phase(str, Enum):
    IDLE = "idle"
    EXECUTED = "executed"
    SCHEDULED = "scheduled"


@dataclass
class ScheduledCall:
    """Arguments captured for an execution that a timer will start later."""

    args: Tuple[Any, ...]
    kwargs: Dict[str, Any]
    due_at: float
    handle: Optional[TimerHandle] = None
    generation: int = 0


@dataclass
class InvocationState:
    last_fired_at: Optional[float] = None
    pending: Deque[ScheduledCall] = field(default_factory=deque)
    last_result: Any = None
    executions: int = 0
    absorbed: int = 0
    # Bumped by cancel(); timers armed before it are stale.
    generation: int = 0

    def phase(self, now: float, wait_ms: float) -> Phase:
        if self.pending:
            return Phase.SCHEDULED
        if self.last_fired_at is None or now - self.last_fired_at >= wait_ms:
            return Phase.IDLE
        return Phase.EXECUTED

    def window_elapsed(self, now: float, wait_ms: float) -> bool:
        return self.last_fired_at is None or now - self.last_fired_at >= wait_ms


MISSING = object()


@dataclass
class MemoState:
    """Argument-key -> result entries, most recently used last.

    ``maxsize`` is 1 unless the caller asks for more: the cache remembers only
    the latest argument set, so alternating arguments always recompute.
    """

    maxsize: Optional[int] = 1
    entries: List[Tuple[Any, Any]] = field(default_factory=list)

    def lookup(self, key: Any) -> Any:
        """Return the cached result for *key* or the ``MISSING`` sentinel."""
        for index, (cached_key, result) in enumerate(self.entries):
            if cached_key == key:
                if index != len(self.entries) - 1:
                    self.entries.append(self.entries.pop(index))
                return result
        return MISSING

    def store(self, key: Any, result: Any) -> None:
        self.entries.append((key, result))
        if self.maxsize is not None:
            # Drop least recently used entries from the front.
            del self.entries[: max(0, len(self.entries) - self.maxsize)]

    def clear(self) -> None:
        self.entries.clear()
