# ---------------------------------------------------------------------------
# Public library API – import-light facade
# ---------------------------------------------------------------------------

# Iteration kernel and helpers
from .iteration import (  # noqa: F401
    contains,
    difference,
    each,
    every,
    filter,
    first,
    identity,
    index_of,
    intersection,
    invoke,
    last,
    map,
    pluck,
    reduce,
    reject,
    shuffle,
    some,
    uniq,
)

# Call-rate-control decorators
from .core.wrappers import memoize, once  # noqa: F401
from .core.deferred import delay  # noqa: F401
from .core.rate_limiter import queue, throttle  # noqa: F401

# Timer facility
from .core.scheduler import (  # noqa: F401
    AsyncioScheduler,
    ManualScheduler,
    ThreadScheduler,
    TimerHandle,
    get_default_scheduler,
    set_default_scheduler,
)

# Errors
from .errors import (  # noqa: F401
    EmptyCollectionError,
    ExecutionFailure,
    FunkitError,
    InvalidArgumentError,
    QueueFullError,
)

from .logging import setup_logger  # noqa: F401

__all__ = [
    "identity",
    "each",
    "map",
    "filter",
    "reject",
    "reduce",
    "contains",
    "every",
    "some",
    "first",
    "last",
    "index_of",
    "uniq",
    "pluck",
    "invoke",
    "shuffle",
    "intersection",
    "difference",
    "once",
    "memoize",
    "delay",
    "throttle",
    "queue",
    "TimerHandle",
    "ThreadScheduler",
    "AsyncioScheduler",
    "ManualScheduler",
    "get_default_scheduler",
    "set_default_scheduler",
    "FunkitError",
    "EmptyCollectionError",
    "InvalidArgumentError",
    "ExecutionFailure",
    "QueueFullError",
    "setup_logger",
]

__version__ = "0.1.0"
