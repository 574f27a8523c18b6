"""Centralised error types for funkit.

Each custom error is JSON-serialisable via ``to_dict`` so failure handlers and
log sinks can record machine-readable diagnostics instead of free-form strings.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, Optional

if TYPE_CHECKING:  # pragma: no cover
    from funkit.models import FailureReport


class FunkitError(Exception):
    """Base class for all structured funkit exceptions."""

    code: str = "FUNKIT_ERROR"
    status: str = "error"

    def __init__(self, message: str, *, data: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.data = data or {}

    # ------------------------------------------------------------------
    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "code": self.code,
            "message": self.message,
            "data": self.data,
        }

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


class EmptyCollectionError(FunkitError, ValueError):
    """``reduce`` was asked to fold an empty collection without an initial value."""

    code = "EMPTY_COLLECTION"


class InvalidArgumentError(FunkitError, TypeError):
    code = "INVALID_ARGUMENT"


class QueueFullError(FunkitError):
    code = "QUEUE_FULL"


class ExecutionFailure(FunkitError):
    """The wrapped function raised while running from a timer.

    Scheduled executions have no caller left to propagate to, so the original
    exception is chained as ``__cause__`` and handed to the wrapper's
    ``on_error`` handler together with a :class:`~funkit.models.FailureReport`.
    """

    code = "EXECUTION_FAILURE"

    def __init__(self, message: str, *, report: "FailureReport", data: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, data=data or report.model_dump(mode="json"))
        self.report = report
