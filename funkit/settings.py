from __future__ import annotations

from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

_LOG_LEVELS = {"TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"}


class Settings(BaseSettings):
    """Project-wide configuration loaded from ``FUNKIT_*`` environment variables (.env optional)."""

    # Logging
    LOG_LEVEL: str = Field("INFO", description="Level of the stderr Loguru sink")
    LOG_DIR: str | None = Field(
        None,
        description="Directory for rotating log files; file sinks are skipped when unset",
    )

    # Scheduling
    DEFAULT_SCHEDULER: Literal["thread", "asyncio"] = Field(
        "thread",
        description="Timer facility used when a decorator is not given an explicit scheduler",
    )
    QUEUE_MAX_PENDING: int = Field(
        1000,
        description="Default cap on scheduled-but-not-run calls held by a queue() wrapper",
        ge=1,
    )

    model_config = {
        "env_file": ".env",
        "env_prefix": "FUNKIT_",
        "case_sensitive": False,
        "extra": "ignore",
    }

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------
    @field_validator("LOG_LEVEL")
    @classmethod
    def _known_level(cls, value: str) -> str:
        """Normalise and reject level names Loguru does not know."""
        level = value.upper()
        if level not in _LOG_LEVELS:
            raise ValueError(f"Unknown log level {value!r}; expected one of {sorted(_LOG_LEVELS)}")
        return level


settings = Settings()
