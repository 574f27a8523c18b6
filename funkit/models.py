from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field

from funkit.core.state import Phase


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FailureReport(BaseModel):
    """Structured record of a wrapped function failing inside a timer callback.

    Mirrors the fields a log sink or monitoring hook needs to correlate the
    failure with the wrapper that scheduled it.
    """

    function: str = Field(..., description="Qualified name of the wrapped function")
    error_type: str = Field(..., description="Class name of the raised exception")
    message: str = Field(..., description="str() of the raised exception")
    details: Optional[str] = Field(None, description="Formatted traceback")
    scheduled_for: Optional[float] = Field(
        None, description="Scheduler time (ms) the execution was due at"
    )
    timestamp: datetime = Field(default_factory=_utcnow)


class InvocationSnapshot(BaseModel):
    """Read-only view of a rate-limited wrapper's bookkeeping."""

    function: str
    phase: Phase
    wait_ms: float
    last_fired_at: Optional[float] = Field(None, description="Scheduler time (ms) F last started")
    pending: int = Field(0, description="Scheduled executions that have not run yet")
    executions: int = Field(0, description="Completed or failed runs of F")
    absorbed: int = Field(0, description="Calls dropped because a trailing call was already scheduled")
